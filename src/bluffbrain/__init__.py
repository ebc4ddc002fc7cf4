"""Decision-serving core for an automated opponent in a bluffing card game."""

from __future__ import annotations

from .core.config import EngineConfig
from .core.models import Action, Challenge, GameState, Pass, PlayCards
from .core.results import Ok, Recovered
from .features.decision import DecisionContext, DecisionEngine, DecisionResult

__all__ = [
    "Action",
    "Challenge",
    "DecisionContext",
    "DecisionEngine",
    "DecisionResult",
    "EngineConfig",
    "GameState",
    "Ok",
    "Pass",
    "PlayCards",
    "Recovered",
]
