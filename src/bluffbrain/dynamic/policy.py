"""Tabular Q-learning over discretised game states.

The table maps :class:`StateActionKey` to a :class:`PolicyEntry`.  Selection
is epsilon-greedy; ties on the greedy branch go to the first enumerated action
so that a fixed table and ``epsilon = 0`` always give the same answer.
"""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..core import feature_flags
from ..core.codec import StateActionKey, discretize, state_features
from ..core.errors import LockError, PersistenceError
from ..core.models import RANKS, ActionKind, ActionTemplate, GameState, rank_index
from ..data.documents import MAX_ARRAY_ELEMENTS, MAX_REWARD_WINDOW, PolicyEntryModel, PolicyTableDocument
from ..data.locks import LockManager, hold
from ..data.store import POLICY_TABLE, DocumentStore

__all__ = [
    "ActionStats",
    "LearningProgress",
    "PolicyEntry",
    "QPolicy",
    "UpdateReport",
    "legal_templates",
]

logger = logging.getLogger(__name__)

MAX_PLAY_COUNT = 4
TOP_VISITED = 10
MAX_TABLE_ENTRIES = MAX_ARRAY_ELEMENTS

PASS_TEMPLATE = ActionTemplate(ActionKind.PASS)
CHALLENGE_TEMPLATE = ActionTemplate(ActionKind.CHALLENGE)


@dataclass
class PolicyEntry:
    value: float = 0.0
    visit_count: int = 0
    reward_window: deque[float] = field(default_factory=lambda: deque(maxlen=MAX_REWARD_WINDOW))

    def average_reward(self) -> float:
        if not self.reward_window:
            return 0.0
        return sum(self.reward_window) / len(self.reward_window)


@dataclass(frozen=True)
class ActionStats:
    value: float
    visits: int
    average_reward: float


@dataclass(frozen=True)
class LearningProgress:
    total_states: int
    average_value: float
    most_visited: list[tuple[StateActionKey, int]]

    def to_dict(self) -> dict[str, object]:
        return {
            "totalStates": self.total_states,
            "averageValue": self.average_value,
            "mostVisited": [{"state": key.to_dict(), "visits": visits} for key, visits in self.most_visited],
        }


@dataclass(frozen=True)
class UpdateReport:
    """What happened to one reward observation."""

    applied: bool
    persisted: bool
    value: float | None = None
    reason: str | None = None


def legal_templates(state: GameState) -> list[ActionTemplate]:
    """Enumerate the policy's action space for *state* in a fixed order."""

    templates = [PASS_TEMPLATE]
    if state.opponent_played_last:
        templates.append(CHALLENGE_TEMPLATE)
    floor = rank_index(state.last_play.declared_rank) if state.last_play else 0
    for count in range(1, min(MAX_PLAY_COUNT, len(state.ai_hand)) + 1):
        for rank in RANKS[floor:]:
            templates.append(ActionTemplate(ActionKind.PLAY_CARDS, count, rank))
    return templates


class QPolicy:
    def __init__(
        self,
        store: DocumentStore | None,
        locks: LockManager | None,
        *,
        exploration_rate: float = 0.2,
        learning_rate: float = 0.1,
        discount_factor: float = 0.9,
        lock_ttl: float = 30.0,
        reward_window: int = MAX_REWARD_WINDOW,
    ) -> None:
        self._store = store
        self._locks = locks
        self.exploration_rate = exploration_rate
        self.learning_rate = learning_rate
        self.discount_factor = discount_factor
        self._lock_ttl = lock_ttl
        self.reward_window = max(1, min(MAX_REWARD_WINDOW, reward_window))
        self._table: dict[StateActionKey, PolicyEntry] = {}

    # ------------------------------------------------------------------ lookup
    def __len__(self) -> int:
        return len(self._table)

    def entry(self, key: StateActionKey) -> PolicyEntry | None:
        return self._table.get(key)

    def entries(self) -> Iterable[tuple[StateActionKey, PolicyEntry]]:
        return self._table.items()

    def q_value(self, key: StateActionKey) -> float:
        entry = self._table.get(key)
        return entry.value if entry is not None else 0.0

    def set_value(self, key: StateActionKey, value: float) -> None:
        """Seed a value directly (used when importing or testing a fixed table)."""

        self._entry(key).value = float(value)

    def _entry(self, key: StateActionKey) -> PolicyEntry:
        entry = self._table.get(key)
        if entry is None:
            entry = self._table[key] = PolicyEntry(reward_window=deque(maxlen=self.reward_window))
        return entry

    def effective_exploration_rate(self) -> float:
        if feature_flags.is_enabled(feature_flags.POLICY_GREEDY):
            return 0.0
        return self.exploration_rate

    def best_template(self, state: GameState) -> tuple[ActionTemplate, float]:
        features = state_features(state)
        best: ActionTemplate | None = None
        best_value = float("-inf")
        for template in legal_templates(state):
            value = self.q_value(discretize(features, template))
            if value > best_value:
                best, best_value = template, value
        assert best is not None  # Pass is always legal
        return best, best_value

    def suggest(self, state: GameState, rng: random.Random) -> ActionTemplate:
        templates = legal_templates(state)
        if rng.random() < self.effective_exploration_rate():
            return rng.choice(templates)
        template, _ = self.best_template(state)
        return template

    def max_value(self, state: GameState) -> float:
        _, value = self.best_template(state)
        return value

    # ------------------------------------------------------------------ learning
    def apply(self, key: StateActionKey, reward: float, max_next: float) -> float:
        """Apply one Q-learning step in memory and return the new value."""

        entry = self._entry(key)
        target = reward + self.discount_factor * max_next
        entry.value += self.learning_rate * (target - entry.value)
        entry.visit_count += 1
        entry.reward_window.append(float(reward))
        if len(self._table) > MAX_TABLE_ENTRIES:
            self._evict(keep=key)
        return entry.value

    def _evict(self, keep: StateActionKey) -> None:
        # Drop the least visited entries so the table stays within the persisted cap.
        excess = len(self._table) - MAX_TABLE_ENTRIES
        candidates = sorted((k for k in self._table if k != keep), key=lambda k: self._table[k].visit_count)
        for stale in candidates[:excess]:
            del self._table[stale]
        logger.info("evicted policy entries", extra={"evicted": excess})

    async def update(
        self,
        state: GameState,
        template: ActionTemplate,
        reward: float,
        next_state: GameState,
    ) -> UpdateReport:
        key = discretize(state, template)
        max_next = self.max_value(next_state)
        if self._locks is None:
            value = self.apply(key, reward, max_next)
            persisted = await self._persist()
        else:
            try:
                async with hold(self._locks, POLICY_TABLE, self._lock_ttl):
                    value = self.apply(key, reward, max_next)
                    persisted = await self._persist()
            except LockError as exc:
                logger.warning("policy update skipped", extra={"key": key.serialize(), "error": str(exc)})
                return UpdateReport(applied=False, persisted=False, reason="lock")
        reason = None if persisted or self._store is None else "persistence"
        return UpdateReport(applied=True, persisted=persisted, value=value, reason=reason)

    async def _persist(self) -> bool:
        if self._store is None:
            return False
        try:
            await self._store.save_async(POLICY_TABLE, self.to_document())
        except PersistenceError as exc:
            logger.error("failed to persist policy table", extra={"error": str(exc), "entries": len(self._table)})
            return False
        return True

    # ------------------------------------------------------------------ reporting
    def action_stats(self, key: StateActionKey) -> ActionStats:
        entry = self._table.get(key)
        if entry is None:
            return ActionStats(value=0.0, visits=0, average_reward=0.0)
        return ActionStats(value=entry.value, visits=entry.visit_count, average_reward=entry.average_reward())

    def learning_progress(self) -> LearningProgress:
        total = len(self._table)
        average = sum(entry.value for entry in self._table.values()) / total if total else 0.0
        ordered = sorted(self._table.items(), key=lambda item: item[1].visit_count, reverse=True)
        return LearningProgress(
            total_states=total,
            average_value=average,
            most_visited=[(key, entry.visit_count) for key, entry in ordered[:TOP_VISITED]],
        )

    # ------------------------------------------------------------------ persistence
    def to_document(self) -> PolicyTableDocument:
        return PolicyTableDocument(
            entries={
                key.serialize(): PolicyEntryModel(
                    value=entry.value,
                    visit_count=entry.visit_count,
                    reward_window=list(entry.reward_window),
                )
                for key, entry in self._table.items()
            }
        )

    def restore(self, document: PolicyTableDocument) -> None:
        table: dict[StateActionKey, PolicyEntry] = {}
        for raw, model in document.entries.items():
            window: deque[float] = deque(model.reward_window, maxlen=self.reward_window)
            table[StateActionKey.parse(raw)] = PolicyEntry(model.value, model.visit_count, window)
        self._table = table

    async def load(self) -> int:
        """Restore the table from the store; corrupt documents start empty."""

        if self._store is None:
            return 0
        document = await self._store.load_or_default_async(POLICY_TABLE, PolicyTableDocument)
        self.restore(document)
        logger.info("policy table loaded", extra={"entries": len(self._table)})
        return len(self._table)