from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "DecisionPayload",
    "OutcomePayload",
    "PerformancePayload",
    "SignalPayload",
]


class _APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SignalPayload(_APIModel):
    bluff_probability: float
    challenge_probability: float
    pattern_confidence: float
    risk_level: float
    failed_signals: list[str] = Field(default_factory=list)


class DecisionPayload(_APIModel):
    action: dict[str, Any]
    source: str
    recovered: bool
    reason: str | None = None
    alternatives: list[str] = Field(default_factory=list)
    signals: SignalPayload | None = None


class OutcomePayload(_APIModel):
    accepted: bool
    policy_applied: bool = False
    policy_persisted: bool = False
    monitored: bool = False
    observed: bool = False
    reason: str | None = None


class PerformancePayload(_APIModel):
    performance: dict[str, Any]
    metrics: dict[str, Any]
    distribution: dict[str, int]
    learning: dict[str, Any]
    errors: dict[str, dict[str, Any]] = Field(default_factory=dict)
