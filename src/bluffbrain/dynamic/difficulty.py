"""Difficulty and personality modifiers.

``modifiers`` is pure: it looks only at the performance numbers Monitoring
already tracks and returns multipliers that keep the opponent's success rate
inside a target band.  Personas describe the opponent's temperament; their
``risk_tolerance`` feeds the risk level used when fusing signals.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..data.documents import ModelPerformance

__all__ = [
    "DEFAULT_PERSONA",
    "MIN_SAMPLE_MOVES",
    "NEUTRAL_MODIFIERS",
    "PERSONA_LIBRARY",
    "TARGET_BAND",
    "DifficultyModifiers",
    "PersonalityProfile",
    "available_personas",
    "modifiers",
    "persona_for",
    "risk_level",
]

TARGET_BAND = (0.4, 0.6)
MIN_SAMPLE_MOVES = 5
MULTIPLIER_FLOOR = 0.5
MULTIPLIER_CEILING = 1.5
BLUFF_SENSITIVITY = 2.0
RISK_SENSITIVITY = 1.5


@dataclass(frozen=True)
class DifficultyModifiers:
    bluff_multiplier: float = 1.0
    risk_multiplier: float = 1.0


NEUTRAL_MODIFIERS = DifficultyModifiers()


def _clamp(value: float) -> float:
    return max(MULTIPLIER_FLOOR, min(MULTIPLIER_CEILING, value))


def modifiers(performance: ModelPerformance | None) -> DifficultyModifiers:
    """Ease off when the opponent is winning too much, sharpen when it is losing."""

    if performance is None or performance.total_moves < MIN_SAMPLE_MOVES:
        return NEUTRAL_MODIFIERS
    low, high = TARGET_BAND
    rate = performance.accuracy
    if low <= rate <= high:
        return NEUTRAL_MODIFIERS
    gap = rate - high if rate > high else rate - low
    return DifficultyModifiers(
        bluff_multiplier=_clamp(1.0 - BLUFF_SENSITIVITY * gap),
        risk_multiplier=_clamp(1.0 - RISK_SENSITIVITY * gap),
    )


@dataclass(frozen=True)
class PersonalityProfile:
    name: str
    risk_tolerance: float = 0.6
    aggressiveness: float = 0.7
    adaptability: float = 0.5
    deceptiveness: float = 0.6
    confidence: float = 0.7
    impulsiveness: float = 0.4

    def to_dict(self) -> dict[str, float | str]:
        return {
            "name": self.name,
            "riskTolerance": self.risk_tolerance,
            "aggressiveness": self.aggressiveness,
            "adaptability": self.adaptability,
            "deceptiveness": self.deceptiveness,
            "confidence": self.confidence,
            "impulsiveness": self.impulsiveness,
        }


PERSONA_LIBRARY: dict[str, PersonalityProfile] = {
    "balanced": PersonalityProfile("balanced"),
    "aggressive": PersonalityProfile(
        name="aggressive",
        risk_tolerance=0.8,
        aggressiveness=0.9,
        adaptability=0.4,
        deceptiveness=0.75,
        confidence=0.8,
        impulsiveness=0.6,
    ),
    "cautious": PersonalityProfile(
        name="cautious",
        risk_tolerance=0.35,
        aggressiveness=0.4,
        adaptability=0.6,
        deceptiveness=0.4,
        confidence=0.55,
        impulsiveness=0.2,
    ),
}

DEFAULT_PERSONA = PERSONA_LIBRARY["balanced"]


def available_personas() -> tuple[str, ...]:
    return tuple(PERSONA_LIBRARY)


def persona_for(name: str | None) -> PersonalityProfile:
    key = (name or "balanced").strip().lower()
    return PERSONA_LIBRARY.get(key, DEFAULT_PERSONA)


def risk_level(persona: PersonalityProfile, mods: DifficultyModifiers) -> float:
    return max(0.0, min(1.0, persona.risk_tolerance * mods.risk_multiplier))
