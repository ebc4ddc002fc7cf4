from __future__ import annotations

import asyncio
import random

import pytest

from bluffbrain.core import feature_flags
from bluffbrain.core.codec import discretize
from bluffbrain.core.models import RANKS, ActionKind, ActionTemplate, Card, GameState, LastPlay
from bluffbrain.data.locks import InMemoryLockManager
from bluffbrain.data.store import POLICY_TABLE, DocumentStore
from bluffbrain.dynamic.policy import (
    CHALLENGE_TEMPLATE,
    PASS_TEMPLATE,
    QPolicy,
    legal_templates,
)


def _card(rank: str, suit: str = "hearts") -> Card:
    return Card(suit=suit, rank=rank, id=f"{rank}-{suit}")


def _state(ai_hand=None, last_play=None) -> GameState:
    return GameState(
        player_hand=(_card("3"), _card("4")),
        ai_hand=ai_hand if ai_hand is not None else (_card("5"), _card("9", "clubs")),
        center_pile=(),
        last_play=last_play,
    )


def test_legal_templates_order_and_floor() -> None:
    last = LastPlay(actor="player", declared_rank="K", actual_cards=(_card("2", "spades"),))
    templates = legal_templates(_state(last_play=last))
    assert templates[:2] == [PASS_TEMPLATE, CHALLENGE_TEMPLATE]
    plays = templates[2:]
    assert {t.declared_rank for t in plays} == {"K", "A"}
    assert {t.card_count for t in plays} == {1, 2}

    own = LastPlay(actor="ai", declared_rank="2", actual_cards=(_card("2", "spades"),))
    assert CHALLENGE_TEMPLATE not in legal_templates(_state(last_play=own))
    assert legal_templates(_state(ai_hand=())) == [PASS_TEMPLATE]


def test_greedy_selection_breaks_ties_by_enumeration_order() -> None:
    policy = QPolicy(None, None, exploration_rate=0.0)
    state = _state()
    rng = random.Random(0)
    assert policy.suggest(state, rng) == PASS_TEMPLATE

    play_a = ActionTemplate(ActionKind.PLAY_CARDS, 1, "3")
    play_b = ActionTemplate(ActionKind.PLAY_CARDS, 2, "3")
    policy.set_value(discretize(state, play_b), 0.7)
    policy.set_value(discretize(state, play_a), 0.7)
    assert policy.suggest(state, rng) == play_a
    assert [policy.suggest(state, rng) for _ in range(10)] == [play_a] * 10


def test_greedy_flag_disables_exploration() -> None:
    policy = QPolicy(None, None, exploration_rate=1.0)
    with feature_flags.override(enable={feature_flags.POLICY_GREEDY}):
        assert policy.effective_exploration_rate() == 0.0
        assert policy.suggest(_state(), random.Random(3)) == PASS_TEMPLATE
    assert policy.effective_exploration_rate() == 1.0


def test_update_applies_q_learning_rule() -> None:
    policy = QPolicy(None, None)
    state, next_state = _state(), _state(ai_hand=(_card("9", "clubs"),))
    template = ActionTemplate(ActionKind.PLAY_CARDS, 1, "5")
    key = discretize(state, template)
    policy.set_value(key, 0.5)
    policy.set_value(discretize(next_state, PASS_TEMPLATE), 2.0)

    report = asyncio.run(policy.update(state, template, 1.0, next_state))

    expected = 0.5 + 0.1 * (1.0 + 0.9 * 2.0 - 0.5)
    assert report.applied
    assert report.value == pytest.approx(expected)
    assert policy.q_value(key) == pytest.approx(expected)
    stats = policy.action_stats(key)
    assert stats.visits == 1
    assert stats.average_reward == 1.0


@pytest.mark.parametrize("updates", [1, 99, 100, 150])
def test_reward_window_is_bounded(updates) -> None:
    policy = QPolicy(None, None)
    state = _state()
    key = discretize(state, PASS_TEMPLATE)

    async def scenario() -> None:
        for i in range(updates):
            await policy.update(state, PASS_TEMPLATE, float(i), state)

    asyncio.run(scenario())
    entry = policy.entry(key)
    assert entry is not None
    assert len(entry.reward_window) == min(updates, 100)
    assert entry.reward_window[-1] == float(updates - 1)
    assert entry.visit_count == updates


def test_configured_reward_window_is_applied_and_survives_reload(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    policy = QPolicy(store, None, reward_window=5)
    state = _state()
    key = discretize(state, PASS_TEMPLATE)

    async def scenario() -> None:
        for i in range(8):
            await policy.update(state, PASS_TEMPLATE, float(i), state)

    asyncio.run(scenario())
    assert list(policy.entry(key).reward_window) == [3.0, 4.0, 5.0, 6.0, 7.0]

    narrower = QPolicy(store, None, reward_window=2)
    asyncio.run(narrower.load())
    assert list(narrower.entry(key).reward_window) == [6.0, 7.0]
    assert QPolicy(None, None, reward_window=500).reward_window == 100


def test_update_persists_and_reloads(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    locks = InMemoryLockManager()
    policy = QPolicy(store, locks)
    state = _state()

    report = asyncio.run(policy.update(state, PASS_TEMPLATE, 1.0, state))
    assert report.applied and report.persisted
    assert not locks.held(POLICY_TABLE)

    restored = QPolicy(store, locks)
    assert asyncio.run(restored.load()) == 1
    assert restored.q_value(discretize(state, PASS_TEMPLATE)) == pytest.approx(0.1)


def test_update_skipped_when_lock_is_held(tmp_path) -> None:
    locks = InMemoryLockManager()
    policy = QPolicy(DocumentStore(tmp_path), locks)
    state = _state()

    async def scenario():
        await locks.acquire(POLICY_TABLE, 30.0)
        return await policy.update(state, PASS_TEMPLATE, 1.0, state)

    report = asyncio.run(scenario())
    assert not report.applied
    assert report.reason == "lock"
    assert len(policy) == 0


def test_persist_failure_keeps_in_memory_update(tmp_path) -> None:
    store = DocumentStore(tmp_path, max_bytes=10)
    policy = QPolicy(store, None)
    state = _state()
    report = asyncio.run(policy.update(state, PASS_TEMPLATE, 1.0, state))
    assert report.applied
    assert not report.persisted
    assert report.reason == "persistence"
    assert policy.q_value(discretize(state, PASS_TEMPLATE)) == pytest.approx(0.1)


def test_learning_progress_reports_most_visited() -> None:
    policy = QPolicy(None, None)
    empty = policy.learning_progress()
    assert empty.total_states == 0 and empty.average_value == 0.0 and empty.most_visited == []

    state = _state()

    async def scenario() -> None:
        for count in range(1, 13):
            template = ActionTemplate(ActionKind.PLAY_CARDS, 1, RANKS[count - 1])
            for _ in range(count):
                await policy.update(state, template, 0.0, state)

    asyncio.run(scenario())
    progress = policy.learning_progress()
    assert progress.total_states == 12
    assert len(progress.most_visited) == 10
    visits = [v for _, v in progress.most_visited]
    assert visits == sorted(visits, reverse=True)
    assert visits[0] == 12
    assert progress.to_dict()["mostVisited"][0]["state"]["actionDeclaredRank"] == "K"
