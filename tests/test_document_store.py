from __future__ import annotations

import asyncio
import json

import pytest

from bluffbrain.core.errors import PersistenceError
from bluffbrain.data.documents import (
    MetricsDocument,
    PatternRecordDocument,
    PolicyEntryModel,
    PolicyTableDocument,
)
from bluffbrain.data.store import METRICS, PATTERN_RECORD, POLICY_TABLE, DocumentStore

KEY = '[3,2,1,null,null,"PASS",null,null]'


def test_round_trip_policy_table(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    document = PolicyTableDocument(entries={KEY: PolicyEntryModel(value=0.25, visit_count=2, reward_window=[1.0, -0.5])})
    store.save(POLICY_TABLE, document)

    on_disk = json.loads((tmp_path / "policyTable.json").read_text())
    assert on_disk["entries"][KEY]["visitCount"] == 2
    loaded = store.load(POLICY_TABLE)
    assert loaded == document
    assert not list(tmp_path.glob("*.tmp"))


def test_invalid_document_leaves_previous_file_untouched(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    store.save(METRICS, MetricsDocument(win_rate=0.5, games_played=2))
    before = (tmp_path / "metrics.json").read_bytes()

    with pytest.raises(PersistenceError):
        store.save(METRICS, {"winRate": 1.5})

    assert (tmp_path / "metrics.json").read_bytes() == before
    assert store.load(METRICS).win_rate == 0.5


def test_mutated_model_is_revalidated_on_save(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    document = MetricsDocument()
    document.win_rate = 3.0
    with pytest.raises(PersistenceError):
        store.save(METRICS, document)
    assert not (tmp_path / "metrics.json").exists()


@pytest.mark.parametrize("name", ["../escape", "a/b", "", "name.json", "with space", "..", "ünïcode"])
def test_rejects_unsafe_keys(tmp_path, name) -> None:
    store = DocumentStore(tmp_path)
    with pytest.raises(PersistenceError):
        store.path_for(name)


def test_unknown_document_has_no_schema(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    with pytest.raises(PersistenceError):
        store.save("whatever", {})


def test_per_opponent_documents_use_the_base_schema(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    store.save(f"{PATTERN_RECORD}-alice", PatternRecordDocument())
    assert isinstance(store.load(f"{PATTERN_RECORD}-alice"), PatternRecordDocument)


def test_missing_document_loads_as_none(tmp_path) -> None:
    assert DocumentStore(tmp_path).load(POLICY_TABLE) is None


def test_corrupt_and_tampered_documents_are_rejected(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    (tmp_path / "policyTable.json").write_text("{not json")
    with pytest.raises(PersistenceError):
        store.load(POLICY_TABLE)

    (tmp_path / "policyTable.json").write_text(json.dumps({"entries": {"bogus": {"value": 1.0}}}))
    with pytest.raises(PersistenceError):
        store.load(POLICY_TABLE)

    (tmp_path / "metrics.json").write_text(json.dumps({"winRate": 0.2, "unexpected": True}))
    with pytest.raises(PersistenceError):
        store.load(METRICS)

    fallback = store.load_or_default(POLICY_TABLE, PolicyTableDocument)
    assert fallback.entries == {}


def test_size_and_element_caps(tmp_path) -> None:
    small = DocumentStore(tmp_path, max_bytes=64)
    big = PolicyTableDocument(entries={KEY: PolicyEntryModel(value=1.0, reward_window=[0.5] * 50)})
    with pytest.raises(PersistenceError):
        small.save(POLICY_TABLE, big)
    assert not (tmp_path / "policyTable.json").exists()

    (tmp_path / "policyTable.json").write_text(" " * 128)
    with pytest.raises(PersistenceError):
        small.load(POLICY_TABLE)

    capped = DocumentStore(tmp_path / "capped", max_elements=3)
    with pytest.raises(PersistenceError):
        capped.save(METRICS, {"modelUpdates": [{"timestamp": 1.0, "result": "win", "success": True}] * 4})


def test_reward_window_longer_than_cap_is_rejected(tmp_path) -> None:
    store = DocumentStore(tmp_path)
    with pytest.raises(PersistenceError):
        store.save(POLICY_TABLE, {"entries": {KEY: {"value": 0.0, "rewardWindow": [0.0] * 101}}})


def test_async_wrappers(tmp_path) -> None:
    store = DocumentStore(tmp_path)

    async def scenario() -> MetricsDocument | None:
        await store.save_async(METRICS, MetricsDocument(games_played=3))
        return await store.load_async(METRICS)

    loaded = asyncio.run(scenario())
    assert loaded is not None and loaded.games_played == 3
    assert store.delete(METRICS)
    assert not store.delete(METRICS)
