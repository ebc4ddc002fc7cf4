from __future__ import annotations

import asyncio

import pytest

from bluffbrain.core.models import Card, Challenge, GameState, LastPlay, Pass, PlayCards
from bluffbrain.data.documents import PatternRecordDocument
from bluffbrain.data.locks import InMemoryLockManager
from bluffbrain.data.store import PATTERN_RECORD, DocumentStore
from bluffbrain.dynamic.patterns import PatternPredictor, document_name


def _play(declared: str, *ranks: str) -> PlayCards:
    cards = tuple(Card(suit="clubs", rank=rank, id=f"{rank}-{i}") for i, rank in enumerate(ranks))
    return PlayCards(cards=cards, declared_rank=declared)


def test_empty_history_predicts_nothing() -> None:
    prediction = PatternPredictor().predict()
    assert prediction.likely_to_bluff == 0.0
    assert prediction.likely_to_challenge == 0.0


def test_history_is_capped_at_twenty() -> None:
    predictor = PatternPredictor()
    for _ in range(35):
        predictor.record(Pass(), 10)
    assert len(predictor.history) == 20


def test_bluff_triggers_are_classified() -> None:
    predictor = PatternPredictor()
    predictor.record(_play("K", "3"), 4)  # small hand
    predictor.record(_play("K", "3"), 9)  # upper half claim
    predictor.record(_play("4", "2"), 9)  # lower half claim
    predictor.record(_play("7", "7"), 9)  # honest
    triggers = predictor.bluff_triggers
    assert (triggers.under_pressure, triggers.high_rank, triggers.low_rank) == (1, 1, 1)
    assert predictor.predict().likely_to_bluff == pytest.approx(3 / 4)


def test_challenge_after_play_streak() -> None:
    predictor = PatternPredictor()
    for _ in range(3):
        predictor.record(_play("5", "5"), 10)
    predictor.record(Challenge(), 10)
    assert predictor.challenge_triggers.after_streak == 1

    predictor.record(_play("6", "6"), 10)
    predictor.record(Challenge(), 10)
    assert predictor.challenge_triggers.after_streak == 1
    assert predictor.predict().likely_to_challenge == pytest.approx(1 / 6)


def test_predictions_never_exceed_one() -> None:
    predictor = PatternPredictor()
    predictor.restore(PatternRecordDocument.model_validate({"bluffTriggers": {"lowRank": 50}}))
    predictor.record(Pass(), 10)
    assert predictor.predict().likely_to_bluff == 1.0


def test_observe_persists_per_opponent_record(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    predictor = PatternPredictor(store, InMemoryLockManager(), opponent_id="alice")

    assert asyncio.run(predictor.observe(_play("A", "2"), 3))
    assert document_name("alice") == f"{PATTERN_RECORD}-alice"
    assert (tmp_path / "patternRecord-alice.json").exists()

    restored = PatternPredictor(store, opponent_id="alice")
    asyncio.run(restored.load())
    assert restored.bluff_triggers.under_pressure == 1
    assert len(restored.history) == 1
    assert restored.history[0].bluff


def test_observe_skipped_while_record_is_locked(tmp_path) -> None:
    locks = InMemoryLockManager()
    predictor = PatternPredictor(DocumentStore(tmp_path), locks)

    async def scenario() -> bool:
        await locks.acquire(PATTERN_RECORD, 30.0)
        return await predictor.observe(Pass(), 5)

    assert asyncio.run(scenario()) is False
    assert predictor.history == ()


def _finished(declared: str, *ranks: str) -> GameState:
    cards = tuple(Card(suit="spades", rank=rank, id=f"s{rank}-{i}") for i, rank in enumerate(ranks))
    return GameState(
        player_hand=(),
        ai_hand=(Card(suit="hearts", rank="4", id="h4"),),
        center_pile=cards,
        last_play=LastPlay(actor="player", declared_rank=declared, actual_cards=cards),
    )


def test_game_results_tag_closing_play_and_survive_reload(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    predictor = PatternPredictor(store, InMemoryLockManager())

    async def scenario() -> None:
        await predictor.record_result(_finished("8", "8", "8"), won=True)
        await predictor.record_result(_finished("Q", "3"), won=False)

    asyncio.run(scenario())
    assert [(m.declared_rank, m.card_count, m.bluff) for m in predictor.successful_patterns] == [("8", 2, False)]
    assert [(m.declared_rank, m.bluff) for m in predictor.failed_patterns] == [("Q", True)]

    restored = PatternPredictor(store)
    asyncio.run(restored.load())
    assert restored.successful_patterns == predictor.successful_patterns
    assert restored.failed_patterns == predictor.failed_patterns


def test_result_patterns_are_capped_and_need_a_closing_play() -> None:
    predictor = PatternPredictor()
    for _ in range(130):
        predictor.tag_result(_finished("5", "5"), won=True)
    assert len(predictor.successful_patterns) == 100
    no_play = GameState(player_hand=(), ai_hand=(), center_pile=())
    assert predictor.tag_result(no_play, won=False) is None
    assert predictor.failed_patterns == ()
