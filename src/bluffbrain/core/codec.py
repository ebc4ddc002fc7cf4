"""State codec: policy-table keys and cache fingerprints.

``discretize`` produces the compact learning key; ``fingerprint`` is the
cheaper identity used for decision memoisation.  The two are deliberately
different: many states share a policy key, but a fingerprint covers every
field that can change the optimal action (individual cards included), so a
cache hit can never return a decision made for a different state.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import astuple, dataclass
from typing import Any

from .models import ActionKind, ActionTemplate, Card, GameState, rank_index

__all__ = [
    "StateActionKey",
    "StateFeatures",
    "discretize",
    "fingerprint",
    "state_features",
]


@dataclass(frozen=True, slots=True)
class StateFeatures:
    ai_card_count: int
    player_card_count: int
    center_pile_size: int
    last_declared_rank: str | None = None
    last_play_count: int | None = None


@dataclass(frozen=True, slots=True)
class StateActionKey:
    """Order-fixed key of the policy table.

    Field order is part of the serialised form; never reorder these.
    """

    ai_card_count: int
    player_card_count: int
    center_pile_size: int
    last_declared_rank: str | None
    last_play_count: int | None
    action_type: str
    action_card_count: int | None = None
    action_declared_rank: str | None = None

    def serialize(self) -> str:
        return json.dumps(list(astuple(self)), separators=(",", ":"))

    @classmethod
    def parse(cls, raw: str) -> StateActionKey:
        values = json.loads(raw)
        if not isinstance(values, list) or len(values) != 8:
            raise ValueError(f"malformed state-action key {raw!r}")
        key = cls(*values)
        if key.action_type not in ActionKind.__members__:
            raise ValueError(f"unknown action type in key {raw!r}")
        return key

    @property
    def state(self) -> StateFeatures:
        return StateFeatures(
            self.ai_card_count,
            self.player_card_count,
            self.center_pile_size,
            self.last_declared_rank,
            self.last_play_count,
        )

    @property
    def template(self) -> ActionTemplate:
        return ActionTemplate(ActionKind(self.action_type), self.action_card_count, self.action_declared_rank)

    def to_dict(self) -> dict[str, Any]:
        return {
            "aiCardCount": self.ai_card_count,
            "playerCardCount": self.player_card_count,
            "centerPileSize": self.center_pile_size,
            "lastDeclaredRank": self.last_declared_rank,
            "lastPlayCount": self.last_play_count,
            "actionType": self.action_type,
            "actionCardCount": self.action_card_count,
            "actionDeclaredRank": self.action_declared_rank,
        }


def state_features(state: GameState) -> StateFeatures:
    last = state.last_play
    return StateFeatures(
        ai_card_count=len(state.ai_hand),
        player_card_count=len(state.player_hand),
        center_pile_size=len(state.center_pile),
        last_declared_rank=last.declared_rank if last else None,
        last_play_count=len(last.actual_cards) if last else None,
    )


def discretize(state: GameState | StateFeatures, template: ActionTemplate) -> StateActionKey:
    features = state if isinstance(state, StateFeatures) else state_features(state)
    return StateActionKey(
        ai_card_count=features.ai_card_count,
        player_card_count=features.player_card_count,
        center_pile_size=features.center_pile_size,
        last_declared_rank=features.last_declared_rank,
        last_play_count=features.last_play_count,
        action_type=template.kind.value,
        action_card_count=template.card_count,
        action_declared_rank=template.declared_rank,
    )


def _zone(cards: tuple[Card, ...]) -> list[list[str]]:
    return sorted([card.id, card.suit, card.rank] for card in cards)


def fingerprint(state: GameState) -> str:
    """SHA-256 over a canonical encoding of everything that affects the decision."""

    last = state.last_play
    canonical = {
        "ai": _zone(state.ai_hand),
        "player": _zone(state.player_hand),
        "pile": _zone(state.center_pile),
        "turn": state.current_turn,
        "last": None
        if last is None
        else {
            "actor": last.actor,
            "declared": rank_index(last.declared_rank),
            "cards": _zone(last.actual_cards),
        },
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
