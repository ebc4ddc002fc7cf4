"""Opponent behaviour tracking.

Keeps a short rolling window of the opponent's moves plus trigger counters
for the situations in which they bluff or challenge, and turns those into two
frequency estimates. Finished games tag the closing play as part of a
winning or losing pattern.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from ..core.errors import LockError, PersistenceError
from ..core.models import Action, Challenge, GameState, LastPlay, PlayCards, is_upper_half
from ..data.documents import (
    MAX_HISTORY,
    MAX_OUTCOME_PATTERNS,
    BluffTriggers,
    ChallengeTriggers,
    MoveRecord,
    PatternRecordDocument,
)
from ..data.locks import LockManager, hold
from ..data.store import PATTERN_RECORD, DocumentStore

__all__ = ["PatternPrediction", "PatternPredictor", "document_name"]

logger = logging.getLogger(__name__)

PRESSURE_HAND_SIZE = 5
STREAK_TRIGGER = 3


@dataclass(frozen=True)
class PatternPrediction:
    likely_to_bluff: float = 0.0
    likely_to_challenge: float = 0.0


NEUTRAL_PREDICTION = PatternPrediction()


def document_name(opponent_id: str | None) -> str:
    return PATTERN_RECORD if not opponent_id else f"{PATTERN_RECORD}-{opponent_id}"


def _move_record(action: Action) -> MoveRecord:
    if isinstance(action, PlayCards):
        return MoveRecord(
            type=action.kind.value,
            card_count=min(4, len(action.cards)) if action.cards else None,
            declared_rank=action.declared_rank,
            bluff=action.is_bluff,
        )
    return MoveRecord(type=action.kind.value)


def _closing_record(play: LastPlay) -> MoveRecord:
    return MoveRecord(
        type=PlayCards.kind.value,
        card_count=min(4, len(play.actual_cards)) if play.actual_cards else None,
        declared_rank=play.declared_rank,
        bluff=play.is_bluff,
    )


class PatternPredictor:
    def __init__(
        self,
        store: DocumentStore | None = None,
        locks: LockManager | None = None,
        *,
        opponent_id: str | None = None,
        history_limit: int = MAX_HISTORY,
        lock_ttl: float = 30.0,
    ) -> None:
        self._store = store
        self._locks = locks
        self._document = document_name(opponent_id)
        self._limit = max(1, min(MAX_HISTORY, history_limit))
        self._lock_ttl = lock_ttl
        self._history: deque[MoveRecord] = deque(maxlen=self._limit)
        self._bluff = BluffTriggers()
        self._challenge = ChallengeTriggers()
        self._successful: deque[MoveRecord] = deque(maxlen=MAX_OUTCOME_PATTERNS)
        self._failed: deque[MoveRecord] = deque(maxlen=MAX_OUTCOME_PATTERNS)

    @property
    def history(self) -> tuple[MoveRecord, ...]:
        return tuple(self._history)

    @property
    def successful_patterns(self) -> tuple[MoveRecord, ...]:
        return tuple(self._successful)

    @property
    def failed_patterns(self) -> tuple[MoveRecord, ...]:
        return tuple(self._failed)

    @property
    def bluff_triggers(self) -> BluffTriggers:
        return self._bluff.model_copy()

    @property
    def challenge_triggers(self) -> ChallengeTriggers:
        return self._challenge.model_copy()

    def _play_streak(self) -> int:
        streak = 0
        for record in reversed(self._history):
            if record.type != PlayCards.kind.value:
                break
            streak += 1
        return streak

    def record(self, action: Action, opponent_hand_size: int) -> MoveRecord:
        """Fold one observed opponent move into the counters (in memory only)."""

        streak = self._play_streak() if isinstance(action, Challenge) else 0
        move = _move_record(action)
        self._history.append(move)
        if isinstance(action, PlayCards) and move.bluff:
            if opponent_hand_size <= PRESSURE_HAND_SIZE:
                self._bluff.under_pressure += 1
            elif is_upper_half(action.declared_rank):
                self._bluff.high_rank += 1
            else:
                self._bluff.low_rank += 1
        elif isinstance(action, Challenge) and streak >= STREAK_TRIGGER:
            self._challenge.after_streak += 1
        return move

    async def observe(self, action: Action, opponent_hand_size: int) -> bool:
        """Record a move and persist the record; returns False when the update was skipped."""

        if self._locks is None:
            self.record(action, opponent_hand_size)
            await self.save()
            return True
        try:
            async with hold(self._locks, self._document, self._lock_ttl):
                self.record(action, opponent_hand_size)
                await self.save()
        except LockError as exc:
            logger.warning("pattern update skipped", extra={"document": self._document, "error": str(exc)})
            return False
        return True

    def tag_result(self, state: GameState, won: bool) -> MoveRecord | None:
        """File the closing play of a finished game under the winning or losing patterns."""

        if state.last_play is None:
            return None
        move = _closing_record(state.last_play)
        (self._successful if won else self._failed).append(move)
        return move

    async def record_result(self, state: GameState, won: bool) -> bool:
        if self._locks is None:
            self.tag_result(state, won)
            await self.save()
            return True
        try:
            async with hold(self._locks, self._document, self._lock_ttl):
                self.tag_result(state, won)
                await self.save()
        except LockError as exc:
            logger.warning("pattern result skipped", extra={"document": self._document, "error": str(exc)})
            return False
        return True

    def predict(self) -> PatternPrediction:
        moves = max(1, len(self._history))
        return PatternPrediction(
            likely_to_bluff=min(1.0, self._bluff.total() / moves),
            likely_to_challenge=min(1.0, self._challenge.total() / moves),
        )

    # ------------------------------------------------------------------ persistence
    def to_document(self) -> PatternRecordDocument:
        return PatternRecordDocument(
            move_history=list(self._history),
            bluff_triggers=self._bluff.model_copy(),
            challenge_triggers=self._challenge.model_copy(),
            successful_patterns=list(self._successful),
            failed_patterns=list(self._failed),
        )

    def restore(self, document: PatternRecordDocument) -> None:
        self._history = deque(document.move_history[-self._limit :], maxlen=self._limit)
        self._bluff = document.bluff_triggers.model_copy()
        self._challenge = document.challenge_triggers.model_copy()
        self._successful = deque(document.successful_patterns, maxlen=MAX_OUTCOME_PATTERNS)
        self._failed = deque(document.failed_patterns, maxlen=MAX_OUTCOME_PATTERNS)

    async def save(self) -> bool:
        if self._store is None:
            return False
        try:
            await self._store.save_async(self._document, self.to_document())
        except PersistenceError as exc:
            logger.error("failed to persist pattern record", extra={"document": self._document, "error": str(exc)})
            return False
        return True

    async def load(self) -> None:
        if self._store is None:
            return
        self.restore(await self._store.load_or_default_async(self._document, PatternRecordDocument))
