"""Decision telemetry and running performance figures.

Every decision is stored with the signal snapshot that produced it so that a
later outcome can be attributed to it.  The history is capped; performance
numbers are running averages that survive truncation of the history.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Sequence

from ..core.errors import LockError, PersistenceError, ValidationError
from ..core.models import Action, ActionKind, GameState, PlayCards
from ..data.documents import (
    MAX_DECISIONS,
    MAX_MODEL_UPDATES,
    DecisionHistoryDocument,
    DecisionMetricsRecord,
    DecisionSummary,
    GameStateSummary,
    MetricsDocument,
    ModelPerformance,
    ModelUpdate,
    Outcome,
    SignalSnapshot,
)
from ..data.locks import LockManager, hold
from ..data.store import DECISION_HISTORY, METRICS, DocumentStore

__all__ = ["UPDATE_WINDOW", "ModelMonitor", "clamp_snapshot", "decision_confidence"]

logger = logging.getLogger(__name__)

UPDATE_WINDOW = 100


def _unit(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


def clamp_snapshot(
    *,
    bluff_probability: float,
    challenge_probability: float,
    pattern_confidence: float,
    risk_level: float,
) -> SignalSnapshot:
    return SignalSnapshot(
        bluff_probability=_unit(bluff_probability),
        challenge_probability=_unit(challenge_probability),
        pattern_confidence=_unit(pattern_confidence),
        risk_level=_unit(risk_level),
    )


def decision_confidence(action: Action, snapshot: SignalSnapshot) -> float:
    """How strongly the signals backed the chosen action, in [0, 1]."""

    if action.kind is ActionKind.CHALLENGE:
        return _unit(snapshot.bluff_probability * (1.0 - snapshot.risk_level))
    if isinstance(action, PlayCards) and action.is_bluff:
        return _unit((1.0 - snapshot.challenge_probability) * snapshot.risk_level)
    return _unit(snapshot.pattern_confidence)


def _running(mean: float, count: int, sample: float) -> float:
    return mean + (sample - mean) / count


class ModelMonitor:
    def __init__(
        self,
        store: DocumentStore | None = None,
        locks: LockManager | None = None,
        *,
        limit: int = MAX_DECISIONS,
        lock_ttl: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._locks = locks
        self._limit = max(1, min(MAX_DECISIONS, limit))
        self._lock_ttl = lock_ttl
        self._clock = clock
        self._history = DecisionHistoryDocument()
        self._metrics = MetricsDocument()

    # ------------------------------------------------------------------ recording
    def build_record(
        self,
        state: GameState,
        snapshot: SignalSnapshot,
        action: Action,
        alternatives: Sequence[ActionKind] = (),
    ) -> DecisionMetricsRecord:
        summary = DecisionSummary(
            type=action.kind.value,
            confidence=decision_confidence(action, snapshot),
            alternatives_considered=[kind.value for kind in alternatives][:3],
        )
        if isinstance(action, PlayCards):
            summary.declared_rank = action.declared_rank
            summary.card_count = len(action.cards)
            summary.bluff = action.is_bluff
        return DecisionMetricsRecord(
            timestamp=self._clock(),
            game_state_summary=GameStateSummary(
                ai_cards=len(state.ai_hand),
                player_cards=len(state.player_hand),
                center_pile=len(state.center_pile),
                current_turn=state.current_turn,
            ),
            signal_snapshot=snapshot,
            decision=summary,
        )

    def note_decision(self, record: DecisionMetricsRecord) -> DecisionMetricsRecord:
        decisions = self._history.decisions
        decisions.append(record)
        del decisions[: max(0, len(decisions) - self._limit)]
        return record

    def note_outcome(self, successful: bool, reward: float) -> DecisionMetricsRecord | None:
        """Attach an outcome to the latest open decision and update the averages."""

        target = next((rec for rec in reversed(self._history.decisions) if rec.outcome is None), None)
        if target is not None:
            target.outcome = Outcome(successful=successful, reward=reward)
        perf = self._history.performance
        hit = 1.0 if successful else 0.0
        perf.total_moves += 1
        perf.accuracy = _running(perf.accuracy, perf.total_moves, hit)
        perf.average_reward = _running(perf.average_reward, perf.total_moves, float(reward))
        kind = target.decision.type if target is not None else None
        if kind == ActionKind.CHALLENGE.value:
            perf.challenges += 1
            perf.challenge_success_rate = _running(perf.challenge_success_rate, perf.challenges, hit)
        elif kind == ActionKind.PLAY_CARDS.value:
            perf.plays += 1
            if target.decision.bluff:
                perf.bluffs += 1
                perf.bluff_success_rate = _running(perf.bluff_success_rate, perf.bluffs, hit)
        return target

    def note_model_update(self, result: str, success: bool = True) -> MetricsDocument:
        """Log the end of a game; *result* is ``"win"`` or ``"loss"`` from the engine's side."""

        if result not in ("win", "loss"):
            raise ValidationError(f"unknown game result {result!r}")
        metrics = self._metrics
        metrics.model_updates.append(ModelUpdate(timestamp=self._clock(), result=result, success=success))
        del metrics.model_updates[: max(0, len(metrics.model_updates) - MAX_MODEL_UPDATES)]
        recent = metrics.model_updates[-UPDATE_WINDOW:]
        metrics.model_update_success_rate = sum(1 for upd in recent if upd.success) / len(recent)
        metrics.games_played += 1
        metrics.win_rate = _running(metrics.win_rate, metrics.games_played, 1.0 if result == "win" else 0.0)
        self._history.performance.games_played = metrics.games_played
        return metrics.model_copy(deep=True)

    async def flush(self, name: str = DECISION_HISTORY) -> None:
        """Persist one monitoring document; raises so a retry wrapper can try again."""

        if name == DECISION_HISTORY:
            await self._persist(name, self._history)
        elif name == METRICS:
            await self._persist(name, self._metrics)
        else:
            raise PersistenceError(f"monitoring does not own document {name!r}")

    async def record_decision(self, record: DecisionMetricsRecord) -> DecisionMetricsRecord:
        self.note_decision(record)
        await self.flush(DECISION_HISTORY)
        return record

    async def record_outcome(self, successful: bool, reward: float) -> DecisionMetricsRecord | None:
        target = self.note_outcome(successful, reward)
        await self.flush(DECISION_HISTORY)
        return target

    async def record_model_update(self, result: str, success: bool = True) -> MetricsDocument:
        metrics = self.note_model_update(result, success)
        await self.flush(METRICS)
        return metrics

    # ------------------------------------------------------------------ reporting
    def performance(self) -> ModelPerformance:
        return self._history.performance.model_copy()

    def metrics(self) -> MetricsDocument:
        return self._metrics.model_copy(deep=True)

    def recent_decisions(self, limit: int = 10) -> list[DecisionMetricsRecord]:
        if limit <= 0:
            return []
        return [rec.model_copy(deep=True) for rec in self._history.decisions[-limit:]]

    def decision_distribution(self) -> dict[str, int]:
        counts = Counter(rec.decision.type for rec in self._history.decisions)
        return {kind.value: counts.get(kind.value, 0) for kind in ActionKind}

    def __len__(self) -> int:
        return len(self._history.decisions)

    # ------------------------------------------------------------------ persistence
    async def _persist(self, name: str, document: DecisionHistoryDocument | MetricsDocument) -> None:
        # Raises so that callers wrapped in a retry get another attempt.
        if self._store is None:
            return
        if self._locks is None:
            await self._store.save_async(name, document)
            return
        async with hold(self._locks, name, self._lock_ttl):
            await self._store.save_async(name, document)

    async def load(self) -> None:
        if self._store is None:
            return
        self._history = await self._store.load_or_default_async(DECISION_HISTORY, DecisionHistoryDocument)
        self._metrics = await self._store.load_or_default_async(METRICS, MetricsDocument)
        del self._history.decisions[: max(0, len(self._history.decisions) - self._limit)]
        logger.info("monitoring history loaded", extra={"decisions": len(self._history.decisions)})

    async def save(self) -> bool:
        try:
            await self._persist(DECISION_HISTORY, self._history)
            await self._persist(METRICS, self._metrics)
        except (LockError, PersistenceError) as exc:
            logger.error("failed to persist monitoring documents", extra={"error": str(exc)})
            return False
        return True
