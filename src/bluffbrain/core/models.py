from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

from .errors import ValidationError

__all__ = [
    "AI",
    "PLAYER",
    "RANKS",
    "SUITS",
    "UPPER_HALF_START",
    "Action",
    "ActionKind",
    "ActionTemplate",
    "Card",
    "Challenge",
    "GameState",
    "LastPlay",
    "Pass",
    "PlayCards",
    "action_from_dict",
    "hand_groups",
    "is_upper_half",
    "rank_index",
    "validate_action",
]

RANKS: tuple[str, ...] = ("2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A")
SUITS: tuple[str, ...] = ("hearts", "diamonds", "clubs", "spades")

# Ranks from "9" upwards count as the upper half of the order.
UPPER_HALF_START = 7

PLAYER = "player"
AI = "ai"
_ACTORS = (PLAYER, AI)

_RANK_ALIASES = {"T": "10", "JACK": "J", "QUEEN": "Q", "KING": "K", "ACE": "A", "1": "A"}
_INDEX = {rank: idx for idx, rank in enumerate(RANKS)}


def _normalise_rank(raw: object) -> str:
    token = str(raw).strip().upper()
    token = _RANK_ALIASES.get(token, token)
    if token not in _INDEX:
        raise ValidationError(f"unknown rank {raw!r}")
    return token


def rank_index(rank: str) -> int:
    """Position of *rank* in the fixed 13-value order."""

    try:
        return _INDEX[rank]
    except KeyError as exc:
        raise ValidationError(f"unknown rank {rank!r}") from exc


def is_upper_half(rank: str) -> bool:
    return rank_index(rank) >= UPPER_HALF_START


@dataclass(frozen=True, slots=True)
class Card:
    suit: str
    rank: str
    id: str

    def __post_init__(self) -> None:
        if self.suit not in SUITS:
            raise ValidationError(f"unknown suit {self.suit!r}")
        if self.rank not in _INDEX:
            raise ValidationError(f"unknown rank {self.rank!r}")
        if not isinstance(self.id, str) or not self.id:
            raise ValidationError("card id must be a non-empty string")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Card:
        if not isinstance(raw, Mapping):
            raise ValidationError("card must be an object")
        suit = str(raw.get("suit", "")).strip().lower()
        rank = _normalise_rank(raw.get("rank", raw.get("value", "")))
        card_id = raw.get("id")
        if card_id is None or card_id == "":
            card_id = f"{rank}-{suit}"
        return cls(suit=suit, rank=rank, id=str(card_id))

    def to_dict(self) -> dict[str, str]:
        return {"suit": self.suit, "rank": self.rank, "id": self.id}


def _cards(raw: object, label: str) -> tuple[Card, ...]:
    if raw is None:
        raise ValidationError(f"{label} is required")
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
        raise ValidationError(f"{label} must be a list of cards")
    return tuple(card if isinstance(card, Card) else Card.from_dict(card) for card in raw)


@dataclass(frozen=True, slots=True)
class LastPlay:
    actor: str
    declared_rank: str
    actual_cards: tuple[Card, ...]

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> LastPlay:
        if not isinstance(raw, Mapping):
            raise ValidationError("lastPlay must be an object")
        actor = str(raw.get("actor", raw.get("player", ""))).strip().lower()
        if actor not in _ACTORS:
            raise ValidationError(f"unknown lastPlay actor {actor!r}")
        declared = raw.get("declaredRank", raw.get("declared_rank", raw.get("declaredCards")))
        actual = raw.get("actualCards", raw.get("actual_cards"))
        return cls(actor=actor, declared_rank=_normalise_rank(declared), actual_cards=_cards(actual, "actualCards"))

    @property
    def is_bluff(self) -> bool:
        return any(card.rank != self.declared_rank for card in self.actual_cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor": self.actor,
            "declaredRank": self.declared_rank,
            "actualCards": [card.to_dict() for card in self.actual_cards],
        }


@dataclass(frozen=True, slots=True)
class GameState:
    """Read-only snapshot handed over by the rules engine for one decision."""

    player_hand: tuple[Card, ...]
    ai_hand: tuple[Card, ...]
    center_pile: tuple[Card, ...]
    current_turn: str = AI
    last_play: LastPlay | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> GameState:
        """Parse the upstream JSON shape (camelCase or snake_case keys)."""

        if not isinstance(raw, Mapping):
            raise ValidationError("game state must be an object")

        def pick(camel: str, snake: str) -> Any:
            return raw.get(camel, raw.get(snake))

        turn = str(pick("currentTurn", "current_turn") or AI).strip().lower()
        if turn not in _ACTORS:
            raise ValidationError(f"unknown currentTurn {turn!r}")
        last_raw = pick("lastPlay", "last_play")
        return cls(
            player_hand=_cards(pick("playerHand", "player_hand"), "playerHand"),
            ai_hand=_cards(pick("aiHand", "ai_hand"), "aiHand"),
            center_pile=_cards(pick("centerPile", "center_pile"), "centerPile"),
            current_turn=turn,
            last_play=LastPlay.from_dict(last_raw) if last_raw else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "playerHand": [card.to_dict() for card in self.player_hand],
            "aiHand": [card.to_dict() for card in self.ai_hand],
            "centerPile": [card.to_dict() for card in self.center_pile],
            "currentTurn": self.current_turn,
        }
        if self.last_play is not None:
            payload["lastPlay"] = self.last_play.to_dict()
        return payload

    @property
    def opponent_played_last(self) -> bool:
        return self.last_play is not None and self.last_play.actor == PLAYER


class ActionKind(str, Enum):
    PLAY_CARDS = "PLAY_CARDS"
    CHALLENGE = "CHALLENGE"
    PASS = "PASS"


@dataclass(frozen=True, slots=True)
class PlayCards:
    cards: tuple[Card, ...]
    declared_rank: str
    kind: ClassVar[ActionKind] = ActionKind.PLAY_CARDS

    @property
    def is_bluff(self) -> bool:
        return any(card.rank != self.declared_rank for card in self.cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "cards": [card.to_dict() for card in self.cards],
            "declaredRank": self.declared_rank,
        }


@dataclass(frozen=True, slots=True)
class Challenge:
    kind: ClassVar[ActionKind] = ActionKind.CHALLENGE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value}


@dataclass(frozen=True, slots=True)
class Pass:
    kind: ClassVar[ActionKind] = ActionKind.PASS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value}


Action = Union[PlayCards, Challenge, Pass]


def action_from_dict(raw: Mapping[str, Any]) -> Action:
    if not isinstance(raw, Mapping):
        raise ValidationError("action must be an object")
    kind = str(raw.get("type", "")).strip().upper()
    if kind == ActionKind.PASS.value:
        return Pass()
    if kind == ActionKind.CHALLENGE.value:
        return Challenge()
    if kind == ActionKind.PLAY_CARDS.value:
        payload = raw.get("payload") if isinstance(raw.get("payload"), Mapping) else raw
        declared = payload.get("declaredRank", payload.get("declaredValue"))
        action = PlayCards(cards=_cards(payload.get("cards"), "cards"), declared_rank=_normalise_rank(declared))
        validate_action(action)
        return action
    raise ValidationError(f"unknown action type {kind!r}")


def validate_action(action: object) -> Action:
    """Check that *action* is exactly one well-formed variant and return it."""

    if isinstance(action, (Pass, Challenge)):
        return action
    if not isinstance(action, PlayCards):
        raise ValidationError(f"not an action: {type(action).__name__}")
    if not action.cards:
        raise ValidationError("PLAY_CARDS requires at least one card")
    if not all(isinstance(card, Card) for card in action.cards):
        raise ValidationError("PLAY_CARDS cards must be Card instances")
    if action.declared_rank not in _INDEX:
        raise ValidationError(f"PLAY_CARDS declared rank {action.declared_rank!r} is invalid")
    return action


@dataclass(frozen=True, slots=True)
class ActionTemplate:
    """Abstract action the policy reasons about (no concrete cards)."""

    kind: ActionKind
    card_count: int | None = None
    declared_rank: str | None = None

    @classmethod
    def of(cls, action: Action) -> ActionTemplate:
        if isinstance(action, PlayCards):
            return cls(ActionKind.PLAY_CARDS, len(action.cards), action.declared_rank)
        return cls(action.kind)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.kind.value}
        if self.card_count is not None:
            payload["cardCount"] = self.card_count
        if self.declared_rank is not None:
            payload["declaredRank"] = self.declared_rank
        return payload


def hand_groups(cards: Sequence[Card]) -> dict[str, list[Card]]:
    groups: dict[str, list[Card]] = {}
    for card in cards:
        groups.setdefault(card.rank, []).append(card)
    return groups

