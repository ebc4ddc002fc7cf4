"""Decision orchestration.

``DecisionEngine.decide`` turns one game state (plus optional table talk) into
exactly one action:

1. validate the state; malformed input short-circuits to ``Pass``
2. look the state's fingerprint up in the decision cache
3. on a miss, gather the policy, pattern, difficulty and chat signals
   concurrently, each with its own timeout and neutral default
4. fuse the signals into a concrete action
5. validate the action against the state, substituting ``Pass`` if needed
6. record the decision and fill the cache, retrying both and tolerating
   their failure

Nothing in that pipeline is allowed to escape as an exception.  Everything an
engine needs lives on its :class:`DecisionContext`, so two engines never share
state unless they are handed the same context.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from ...analysis.monitoring import ModelMonitor, clamp_snapshot
from ...core import feature_flags
from ...core.config import EngineConfig
from ...core.errors import CacheError, RetryExhaustedError, SignalError, ValidationError
from ...core.models import (
    RANKS,
    Action,
    ActionKind,
    ActionTemplate,
    Card,
    Challenge,
    GameState,
    Pass,
    PlayCards,
    action_from_dict,
    hand_groups,
    rank_index,
    validate_action,
)
from ...core.results import ActionResult, Ok, Recovered
from ...data.documents import DecisionMetricsRecord, MetricsDocument, ModelPerformance, SignalSnapshot
from ...data.locks import InMemoryLockManager, LockManager, RedisLockManager
from ...data.store import DECISION_HISTORY, METRICS, DocumentStore
from ...dynamic.difficulty import (
    DEFAULT_PERSONA,
    NEUTRAL_MODIFIERS,
    DifficultyModifiers,
    PersonalityProfile,
    modifiers,
    persona_for,
    risk_level,
)
from ...dynamic.patterns import NEUTRAL_PREDICTION, PatternPrediction, PatternPredictor
from ...dynamic.policy import LearningProgress, QPolicy, UpdateReport
from ...dynamic.sentiment import ChatAnalysis, analyze_chat
from .cache import DecisionCache
from .recovery import ErrorStats, with_fallback, with_retry
from .schemas import DecisionPayload, OutcomePayload, SignalPayload

__all__ = [
    "DecisionContext",
    "DecisionEngine",
    "DecisionResult",
    "Signals",
    "coerce_action",
    "coerce_state",
]

logger = logging.getLogger(__name__)

MAX_PLAY_CARDS = 4
HIGH_RISK = 0.7
_OPPONENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

ChatAnalyzer = Callable[[str], Union[ChatAnalysis, Awaitable[ChatAnalysis]]]


def coerce_state(value: GameState | Mapping[str, Any]) -> GameState:
    if isinstance(value, GameState):
        return value
    if isinstance(value, Mapping):
        return GameState.from_dict(value)
    raise ValidationError(f"expected a game state, got {type(value).__name__}")


def coerce_action(value: Action | Mapping[str, Any]) -> Action:
    if isinstance(value, Mapping):
        return action_from_dict(value)
    return validate_action(value)


def _opponent_key(opponent_id: str | None) -> str:
    if opponent_id is None or opponent_id == "":
        return ""
    if not isinstance(opponent_id, str) or not _OPPONENT_ID.fullmatch(opponent_id):
        raise ValidationError(f"invalid opponent id {opponent_id!r}")
    return opponent_id


def check_playable(state: GameState, action: Action) -> Action:
    """Raise :class:`ValidationError` unless *action* can be taken in *state*."""

    validate_action(action)
    if isinstance(action, Challenge) and not state.opponent_played_last:
        raise ValidationError("nothing to challenge")
    if isinstance(action, PlayCards):
        if len(action.cards) > MAX_PLAY_CARDS:
            raise ValidationError(f"cannot play more than {MAX_PLAY_CARDS} cards")
        held = {card.id for card in state.ai_hand}
        ids = [card.id for card in action.cards]
        if len(set(ids)) != len(ids) or not held.issuperset(ids):
            raise ValidationError("played cards are not all in hand")
        if state.last_play is not None and rank_index(action.declared_rank) < rank_index(state.last_play.declared_rank):
            raise ValidationError("declared rank is below the previous claim")
    return action


def _by_rank(cards: tuple[Card, ...]) -> list[Card]:
    return sorted(cards, key=lambda card: rank_index(card.rank))


def _from_template(hand: tuple[Card, ...], template: ActionTemplate) -> PlayCards:
    count = min(template.card_count or 1, len(hand), MAX_PLAY_CARDS)
    declared = template.declared_rank or hand[0].rank
    matching = [card for card in hand if card.rank == declared]
    filler = [card for card in _by_rank(hand) if card.rank != declared]
    return PlayCards(cards=tuple((matching + filler)[:count]), declared_rank=declared)


def _honest_play(hand: tuple[Card, ...], floor: int, tie_break: str) -> PlayCards:
    groups = {rank: cards for rank, cards in hand_groups(hand).items() if rank_index(rank) >= floor}
    if not groups:
        # Nothing at or above the previous claim: the cheapest card has to carry it.
        return PlayCards(cards=(_by_rank(hand)[0],), declared_rank=RANKS[floor])
    sign = -1 if tie_break == "lowest" else 1
    rank = max(groups, key=lambda r: (len(groups[r]), sign * rank_index(r)))
    return PlayCards(cards=tuple(groups[rank][:MAX_PLAY_CARDS]), declared_rank=rank)


def _bluff(hand: tuple[Card, ...], declared: str, risk: float) -> PlayCards:
    claim = RANKS[min(rank_index(declared) + 1, len(RANKS) - 1)]
    count = 2 if risk > HIGH_RISK else 1
    return PlayCards(cards=tuple(_by_rank(hand)[: min(count, len(hand))]), declared_rank=claim)


@dataclass(frozen=True)
class Signals:
    suggestion: ActionTemplate | None = None
    prediction: PatternPrediction = NEUTRAL_PREDICTION
    modifiers: DifficultyModifiers = NEUTRAL_MODIFIERS
    persona: PersonalityProfile = DEFAULT_PERSONA
    chat: ChatAnalysis | None = None
    failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class DecisionResult:
    result: ActionResult
    source: str
    snapshot: SignalSnapshot | None = None
    alternatives: tuple[ActionKind, ...] = ()
    failed_signals: tuple[str, ...] = ()

    @property
    def action(self) -> Action:
        return self.result.action

    @property
    def recovered(self) -> bool:
        return self.result.recovered

    def to_payload(self) -> DecisionPayload:
        signals = None
        if self.snapshot is not None:
            signals = SignalPayload(
                bluff_probability=self.snapshot.bluff_probability,
                challenge_probability=self.snapshot.challenge_probability,
                pattern_confidence=self.snapshot.pattern_confidence,
                risk_level=self.snapshot.risk_level,
                failed_signals=list(self.failed_signals),
            )
        return DecisionPayload(
            action=self.action.to_dict(),
            source=self.source,
            recovered=self.recovered,
            reason=getattr(self.result, "reason", None),
            alternatives=[kind.value for kind in self.alternatives],
            signals=signals,
        )


def _fallback(reason: str) -> DecisionResult:
    return DecisionResult(result=Recovered(Pass(), reason), source="fallback")


@dataclass
class DecisionContext:
    """Everything one engine instance reads or mutates."""

    config: EngineConfig
    store: DocumentStore | None
    locks: LockManager | None
    policy: QPolicy
    monitor: ModelMonitor
    cache: DecisionCache
    rng: random.Random
    errors: ErrorStats = field(default_factory=ErrorStats)
    chat_analyzer: ChatAnalyzer = analyze_chat
    predictors: dict[str, PatternPredictor] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        config: EngineConfig | None = None,
        *,
        store: DocumentStore | None = None,
        locks: LockManager | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
        persistent: bool = True,
    ) -> DecisionContext:
        cfg = (config or EngineConfig.from_env()).normalised()
        if store is None and persistent:
            store = DocumentStore(cfg.storage_dir)
        if locks is None:
            locks = RedisLockManager.from_url(cfg.redis_url) if cfg.redis_url else InMemoryLockManager()
        policy = QPolicy(
            store,
            locks,
            exploration_rate=cfg.exploration_rate,
            learning_rate=cfg.learning_rate,
            discount_factor=cfg.discount_factor,
            lock_ttl=cfg.lock_ttl,
            reward_window=cfg.reward_window,
        )
        monitor = ModelMonitor(store, locks, limit=cfg.decision_history_limit, lock_ttl=cfg.lock_ttl)
        cache = DecisionCache(ttl=cfg.cache_ttl, max_entries=cfg.cache_size, clock=clock or time.monotonic)
        return cls(
            config=cfg,
            store=store,
            locks=locks,
            policy=policy,
            monitor=monitor,
            cache=cache,
            rng=rng if rng is not None else random.Random(cfg.seed),
        )

    def predictor(self, opponent_id: str | None = None) -> tuple[PatternPredictor, bool]:
        """Return the predictor for *opponent_id* and whether it was just created."""

        key = _opponent_key(opponent_id)
        existing = self.predictors.get(key)
        if existing is not None:
            return existing, False
        created = PatternPredictor(
            self.store,
            self.locks,
            opponent_id=key or None,
            history_limit=self.config.history_limit,
            lock_ttl=self.config.lock_ttl,
        )
        self.predictors[key] = created
        return created, True


class DecisionEngine:
    def __init__(self, context: DecisionContext) -> None:
        self._ctx = context

    @classmethod
    def create(cls, config: EngineConfig | None = None, **kwargs: Any) -> DecisionEngine:
        return cls(DecisionContext.create(config, **kwargs))

    @property
    def context(self) -> DecisionContext:
        return self._ctx

    async def load(self) -> None:
        """Restore learned state from the store; unreadable documents start fresh."""

        ctx = self._ctx
        await with_fallback(ctx.policy.load, lambda: 0, "policy.load", stats=ctx.errors)
        await with_fallback(ctx.monitor.load, lambda: None, "monitor.load", stats=ctx.errors)
        await self._predictor(None)

    async def _predictor(self, opponent_id: str | None) -> PatternPredictor:
        predictor, created = self._ctx.predictor(opponent_id)
        if created:
            await with_fallback(predictor.load, lambda: None, "patterns.load", stats=self._ctx.errors)
        return predictor

    # ------------------------------------------------------------------ decide
    async def decide(
        self,
        state: GameState | Mapping[str, Any],
        chat: str | None = None,
        *,
        opponent_id: str | None = None,
        previous_state: GameState | Mapping[str, Any] | None = None,
    ) -> Action:
        result = await self.decide_detailed(state, chat, opponent_id=opponent_id, previous_state=previous_state)
        return result.action

    def decide_sync(self, state: GameState | Mapping[str, Any], chat: str | None = None, **kwargs: Any) -> Action:
        return asyncio.run(self.decide(state, chat, **kwargs))

    async def decide_detailed(
        self,
        state: GameState | Mapping[str, Any],
        chat: str | None = None,
        *,
        opponent_id: str | None = None,
        previous_state: GameState | Mapping[str, Any] | None = None,
    ) -> DecisionResult:
        try:
            return await self._decide(state, chat, opponent_id, previous_state)
        except Exception as exc:
            self._ctx.errors.record("decide", exc)
            logger.exception("decision pipeline failed; passing")
            return _fallback(f"internal error: {type(exc).__name__}")

    async def _decide(
        self,
        state: GameState | Mapping[str, Any],
        chat: str | None,
        opponent_id: str | None,
        previous_state: GameState | Mapping[str, Any] | None,
    ) -> DecisionResult:
        ctx = self._ctx
        try:
            game = coerce_state(state)
            _opponent_key(opponent_id)
        except ValidationError as exc:
            logger.warning("rejected malformed decision request", extra={"error": str(exc)})
            return _fallback(f"invalid input: {exc}")

        if previous_state is not None:
            self.invalidate(previous_state)

        use_cache = not feature_flags.is_enabled(feature_flags.CACHE_BYPASS)
        if use_cache:
            cached = await with_fallback(lambda: ctx.cache.get(game), lambda: None, "cache.get", stats=ctx.errors)
            if cached is not None:
                try:
                    return DecisionResult(result=Ok(check_playable(game, cached)), source="cache")
                except ValidationError as exc:
                    logger.warning("discarding unusable cached decision", extra={"error": str(exc)})
                    self.invalidate(game)

        signals = await self._gather(game, chat, opponent_id)
        action, alternatives, risk = self._fuse(game, signals)
        result: ActionResult
        try:
            result = Ok(check_playable(game, action))
        except ValidationError as exc:
            logger.warning("fused action failed validation; passing", extra={"error": str(exc)})
            result = Recovered(Pass(), f"invalid action: {exc}")

        snapshot = clamp_snapshot(
            bluff_probability=signals.prediction.likely_to_bluff * signals.modifiers.bluff_multiplier,
            challenge_probability=signals.prediction.likely_to_challenge,
            pattern_confidence=signals.prediction.likely_to_bluff,
            risk_level=risk,
        )
        await self._record(game, snapshot, result, alternatives, use_cache)
        return DecisionResult(
            result=result,
            source="computed",
            snapshot=snapshot,
            alternatives=alternatives,
            failed_signals=signals.failed,
        )

    async def _signal(self, name: str, factory: Callable[[], Awaitable[Any]], default: Any) -> tuple[Any, str | None]:
        try:
            value = await asyncio.wait_for(factory(), timeout=self._ctx.config.signal_timeout)
        except Exception as exc:
            error = SignalError(name, str(exc) or type(exc).__name__)
            self._ctx.errors.record(f"signal.{name}", error)
            logger.warning("signal unavailable; using neutral default", extra={"signal": name, "error": str(error)})
            return default, name
        return value, None

    async def _gather(self, game: GameState, chat: str | None, opponent_id: str | None) -> Signals:
        ctx = self._ctx
        predictor = await self._predictor(opponent_id)

        async def policy() -> ActionTemplate:
            return ctx.policy.suggest(game, ctx.rng)

        async def patterns() -> PatternPrediction:
            return predictor.predict()

        async def difficulty() -> tuple[DifficultyModifiers, PersonalityProfile]:
            return modifiers(ctx.monitor.performance()), persona_for(ctx.config.personality)

        async def talk() -> ChatAnalysis | None:
            if not chat:
                return None
            analysis = ctx.chat_analyzer(chat)
            if inspect.isawaitable(analysis):
                analysis = await analysis
            return analysis

        gathered = await asyncio.gather(
            self._signal("policy", policy, None),
            self._signal("patterns", patterns, NEUTRAL_PREDICTION),
            self._signal("difficulty", difficulty, (NEUTRAL_MODIFIERS, DEFAULT_PERSONA)),
            self._signal("chat", talk, None),
        )
        (suggestion, _), (prediction, _), ((mods, persona), _), (analysis, _) = gathered
        return Signals(
            suggestion=suggestion,
            prediction=prediction,
            modifiers=mods,
            persona=persona,
            chat=analysis,
            failed=tuple(name for _, name in gathered if name is not None),
        )

    def _fuse(self, game: GameState, signals: Signals) -> tuple[Action, tuple[ActionKind, ...], float]:
        cfg = self._ctx.config
        risk = risk_level(signals.persona, signals.modifiers)
        suggested = signals.suggestion.kind if signals.suggestion is not None else None

        if game.opponent_played_last:
            pressure = signals.prediction.likely_to_challenge * signals.modifiers.risk_multiplier
            if signals.chat is not None and cfg.chat_fusion == "scale":
                pressure *= signals.chat.bluff_indicators.probability
            alternatives = (ActionKind.PASS, ActionKind.CHALLENGE)
            if suggested is ActionKind.CHALLENGE or pressure > cfg.challenge_threshold:
                return Challenge(), alternatives, risk
            return Pass(), alternatives, risk

        if not game.ai_hand:
            return Pass(), (ActionKind.PASS,), risk

        alternatives = (ActionKind.PASS, ActionKind.PLAY_CARDS)
        if suggested is ActionKind.PLAY_CARDS:
            play = _from_template(game.ai_hand, signals.suggestion)
        else:
            floor = rank_index(game.last_play.declared_rank) if game.last_play is not None else 0
            play = _honest_play(game.ai_hand, floor, cfg.bluff_tie_break)
        if self._ctx.rng.random() < signals.modifiers.bluff_multiplier * cfg.base_bluff_likelihood:
            play = _bluff(game.ai_hand, play.declared_rank, risk)
        return play, alternatives, risk

    async def _record(
        self,
        game: GameState,
        snapshot: SignalSnapshot,
        result: ActionResult,
        alternatives: tuple[ActionKind, ...],
        use_cache: bool,
    ) -> None:
        ctx = self._ctx
        ctx.monitor.note_decision(ctx.monitor.build_record(game, snapshot, result.action, alternatives))
        await self._retry(lambda: ctx.monitor.flush(DECISION_HISTORY), "monitoring.decision")
        if use_cache and isinstance(result, Ok):
            await self._retry(lambda: ctx.cache.put(game, result.action), "cache.put")

    async def _retry(self, op: Callable[[], Any], label: str) -> bool:
        cfg = self._ctx.config
        try:
            await with_retry(
                op,
                label,
                max_attempts=cfg.retry_attempts,
                base_delay=cfg.retry_base_delay,
                max_delay=cfg.retry_max_delay,
                stats=self._ctx.errors,
            )
        except RetryExhaustedError as exc:
            logger.warning("best-effort step abandoned", extra={"operation": label, "error": str(exc.__cause__)})
            return False
        return True

    # ------------------------------------------------------------------ learning
    async def record_outcome(
        self,
        state: GameState | Mapping[str, Any],
        action: Action | Mapping[str, Any],
        reward: float,
        next_state: GameState | Mapping[str, Any],
        *,
        opponent_action: Action | Mapping[str, Any] | None = None,
        opponent_id: str | None = None,
    ) -> OutcomePayload:
        """Feed one observed reward back into the policy, monitoring and patterns."""

        ctx = self._ctx
        try:
            game = coerce_state(state)
            after = coerce_state(next_state)
            chosen = coerce_action(action)
            opponent_move = coerce_action(opponent_action) if opponent_action is not None else None
            _opponent_key(opponent_id)
            value = float(reward)
            if not math.isfinite(value):
                raise ValidationError("reward must be finite")
        except (TypeError, ValueError) as exc:
            logger.warning("rejected outcome", extra={"error": str(exc)})
            return OutcomePayload(accepted=False, reason=str(exc))

        self.invalidate(game)
        update = await with_fallback(
            lambda: ctx.policy.update(game, ActionTemplate.of(chosen), value, after),
            lambda: UpdateReport(applied=False, persisted=False, reason="error"),
            "policy.update",
            stats=ctx.errors,
        )
        ctx.monitor.note_outcome(value > 0, value)
        monitored = await self._retry(lambda: ctx.monitor.flush(DECISION_HISTORY), "monitoring.outcome")
        observed = False
        if opponent_move is not None:
            observed = await self.observe_opponent(opponent_move, len(game.player_hand), opponent_id=opponent_id)
        return OutcomePayload(
            accepted=True,
            policy_applied=update.applied,
            policy_persisted=update.persisted,
            monitored=monitored,
            observed=observed,
            reason=update.reason,
        )

    async def observe_opponent(
        self,
        action: Action | Mapping[str, Any],
        opponent_hand_size: int,
        *,
        opponent_id: str | None = None,
    ) -> bool:
        try:
            move = coerce_action(action)
            predictor = await self._predictor(opponent_id)
        except ValidationError as exc:
            logger.warning("rejected opponent move", extra={"error": str(exc)})
            return False
        return await with_fallback(
            lambda: predictor.observe(move, opponent_hand_size),
            lambda: False,
            "patterns.observe",
            stats=self._ctx.errors,
        )

    async def record_game_result(
        self,
        won: bool,
        *,
        success: bool = True,
        state: GameState | Mapping[str, Any] | None = None,
        opponent_id: str | None = None,
    ) -> MetricsDocument:
        """Count a finished game; with *state*, also tag its closing play as a win or loss pattern."""

        ctx = self._ctx
        metrics = ctx.monitor.note_model_update("win" if won else "loss", success)
        await self._retry(lambda: ctx.monitor.flush(METRICS), "monitoring.game")
        if state is not None:
            try:
                final = coerce_state(state)
                predictor = await self._predictor(opponent_id)
            except ValidationError as exc:
                logger.warning("final state not tagged", extra={"error": str(exc)})
                return metrics
            await with_fallback(
                lambda: predictor.record_result(final, won),
                lambda: False,
                "patterns.result",
                stats=ctx.errors,
            )
        return metrics

    # ------------------------------------------------------------------ cache control
    def invalidate(self, state: GameState | Mapping[str, Any]) -> bool:
        try:
            return self._ctx.cache.invalidate(coerce_state(state))
        except (CacheError, ValidationError) as exc:
            logger.warning("cache invalidation skipped", extra={"error": str(exc)})
            return False

    def invalidate_all(self) -> int:
        return self._ctx.cache.invalidate_all()

    # ------------------------------------------------------------------ reporting
    def performance_snapshot(self) -> ModelPerformance:
        return self._ctx.monitor.performance()

    def metrics(self) -> MetricsDocument:
        return self._ctx.monitor.metrics()

    def recent_decisions(self, limit: int = 10) -> list[DecisionMetricsRecord]:
        return self._ctx.monitor.recent_decisions(limit)

    def decision_distribution(self) -> dict[str, int]:
        return self._ctx.monitor.decision_distribution()

    def learning_progress(self) -> LearningProgress:
        return self._ctx.policy.learning_progress()

    def error_summary(self) -> dict[str, dict[str, object]]:
        return self._ctx.errors.snapshot()
