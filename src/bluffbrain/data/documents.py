"""Schemas for every persisted document.

Each logical document has a pydantic model that is applied on both save and
load, so a tampered or truncated file is rejected at the deserialisation
boundary instead of leaking malformed data into the learners.  Collection
caps are part of the schema for the same reason.
"""

from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.codec import StateActionKey
from ..core.models import RANKS

__all__ = [
    "MAX_ARRAY_ELEMENTS",
    "MAX_DECISIONS",
    "MAX_HISTORY",
    "MAX_MODEL_UPDATES",
    "MAX_OUTCOME_PATTERNS",
    "MAX_REWARD_WINDOW",
    "BluffTriggers",
    "ChallengeTriggers",
    "DecisionHistoryDocument",
    "DecisionMetricsRecord",
    "DecisionSummary",
    "GameStateSummary",
    "MetricsDocument",
    "ModelPerformance",
    "ModelUpdate",
    "MoveRecord",
    "Outcome",
    "PatternRecordDocument",
    "PolicyEntryModel",
    "PolicyTableDocument",
    "SignalSnapshot",
]

MAX_ARRAY_ELEMENTS = 10_000
MAX_REWARD_WINDOW = 100
MAX_HISTORY = 20
MAX_OUTCOME_PATTERNS = 100
MAX_DECISIONS = 1000
MAX_MODEL_UPDATES = 1000

ActionType = Literal["PLAY_CARDS", "CHALLENGE", "PASS"]


class _Document(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
        protected_namespaces=(),
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _finite(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError("value must be finite")
    return value


# --------------------------------------------------------------------------- policy


class PolicyEntryModel(_Document):
    value: float
    visit_count: int = Field(default=0, ge=0)
    reward_window: list[float] = Field(default_factory=list, max_length=MAX_REWARD_WINDOW)

    @field_validator("value")
    @classmethod
    def _finite_value(cls, value: float) -> float:
        return _finite(value)

    @field_validator("reward_window")
    @classmethod
    def _finite_rewards(cls, values: list[float]) -> list[float]:
        return [_finite(v) for v in values]


class PolicyTableDocument(_Document):
    entries: dict[str, PolicyEntryModel] = Field(default_factory=dict, max_length=MAX_ARRAY_ELEMENTS)

    @field_validator("entries")
    @classmethod
    def _keys_parse(cls, entries: dict[str, PolicyEntryModel]) -> dict[str, PolicyEntryModel]:
        for raw in entries:
            try:
                StateActionKey.parse(raw)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"invalid policy key {raw!r}") from exc
        return entries


# --------------------------------------------------------------------------- patterns


class MoveRecord(_Document):
    type: ActionType
    card_count: int | None = Field(default=None, ge=1, le=4)
    declared_rank: str | None = None
    bluff: bool = False

    @field_validator("declared_rank")
    @classmethod
    def _known_rank(cls, value: str | None) -> str | None:
        if value is not None and value not in RANKS:
            raise ValueError(f"unknown rank {value!r}")
        return value


class BluffTriggers(_Document):
    low_rank: int = Field(default=0, ge=0)
    high_rank: int = Field(default=0, ge=0)
    under_pressure: int = Field(default=0, ge=0)

    def total(self) -> int:
        return self.low_rank + self.high_rank + self.under_pressure


class ChallengeTriggers(_Document):
    after_streak: int = Field(default=0, ge=0)
    low_rank_seen: int = Field(default=0, ge=0)
    high_rank_seen: int = Field(default=0, ge=0)

    def total(self) -> int:
        return self.after_streak + self.low_rank_seen + self.high_rank_seen


class PatternRecordDocument(_Document):
    move_history: list[MoveRecord] = Field(default_factory=list, max_length=MAX_HISTORY)
    bluff_triggers: BluffTriggers = Field(default_factory=BluffTriggers)
    challenge_triggers: ChallengeTriggers = Field(default_factory=ChallengeTriggers)
    successful_patterns: list[MoveRecord] = Field(default_factory=list, max_length=MAX_OUTCOME_PATTERNS)
    failed_patterns: list[MoveRecord] = Field(default_factory=list, max_length=MAX_OUTCOME_PATTERNS)


# --------------------------------------------------------------------------- monitoring


class GameStateSummary(_Document):
    ai_cards: int = Field(ge=0)
    player_cards: int = Field(ge=0)
    center_pile: int = Field(ge=0)
    current_turn: Literal["player", "ai"]


class SignalSnapshot(_Document):
    bluff_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    challenge_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    pattern_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_level: float = Field(default=0.0, ge=0.0, le=1.0)


class DecisionSummary(_Document):
    type: ActionType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    alternatives_considered: list[ActionType] = Field(default_factory=list, max_length=3)
    declared_rank: str | None = None
    card_count: int | None = Field(default=None, ge=1)
    bluff: bool = False


class Outcome(_Document):
    successful: bool
    reward: float

    @field_validator("reward")
    @classmethod
    def _finite_reward(cls, value: float) -> float:
        return _finite(value)


class DecisionMetricsRecord(_Document):
    timestamp: float
    game_state_summary: GameStateSummary
    signal_snapshot: SignalSnapshot
    decision: DecisionSummary
    outcome: Outcome | None = None


class ModelPerformance(_Document):
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    bluff_success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    challenge_success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    average_reward: float = 0.0
    games_played: int = Field(default=0, ge=0)
    total_moves: int = Field(default=0, ge=0)
    plays: int = Field(default=0, ge=0)
    challenges: int = Field(default=0, ge=0)
    bluffs: int = Field(default=0, ge=0)


class DecisionHistoryDocument(_Document):
    decisions: list[DecisionMetricsRecord] = Field(default_factory=list, max_length=MAX_DECISIONS)
    performance: ModelPerformance = Field(default_factory=ModelPerformance)


class ModelUpdate(_Document):
    timestamp: float
    result: Literal["win", "loss"]
    success: bool


class MetricsDocument(_Document):
    model_updates: list[ModelUpdate] = Field(default_factory=list, max_length=MAX_MODEL_UPDATES)
    model_update_success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    win_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    games_played: int = Field(default=0, ge=0)
