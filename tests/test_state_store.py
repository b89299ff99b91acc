"""Unit tests for the in-memory sharded state store."""

import threading

import pytest

from conftest import T0
from rate_engine.adapters.state_store import InMemoryStateStore
from rate_engine.engine.models import FixedWindowState


def _factory() -> FixedWindowState:
    return FixedWindowState(count=0, window_start=T0)


def test_locked_creates_state_lazily() -> None:
    store = InMemoryStateStore(shards=4)

    assert store.get("r:global") is None
    with store.locked("r:global", "r", _factory, T0) as entry:
        assert entry.rule_id == "r"
        assert entry.last_seen == T0
        entry.state.count += 1

    assert store.get("r:global").state.count == 1
    assert len(store) == 1


def test_locked_reuses_existing_state_and_tracks_last_seen() -> None:
    store = InMemoryStateStore()
    calls = []

    def factory() -> FixedWindowState:
        calls.append(1)
        return _factory()

    with store.locked("k", "r", factory, T0):
        pass
    with store.locked("k", "r", factory, T0 + 500) as entry:
        assert entry.last_seen == T0 + 500
    with store.locked("k", "r", factory, T0 + 100) as entry:
        assert entry.last_seen == T0 + 500

    assert len(calls) == 1


def test_delete_and_clear() -> None:
    store = InMemoryStateStore(shards=2)
    for key in ("a", "b", "c"):
        with store.locked(key, "r", _factory, T0):
            pass

    assert store.delete("a") is True
    assert store.delete("a") is False
    assert sorted(store.keys()) == ["b", "c"]

    store.clear()
    assert len(store) == 0


def test_sweep_removes_selected_entries() -> None:
    store = InMemoryStateStore(shards=3)
    for i in range(10):
        with store.locked(f"k{i}", "keep" if i % 2 else "drop", _factory, T0):
            pass

    removed = store.sweep(lambda entry: entry.rule_id == "drop")

    assert removed == 5
    assert len(store) == 5
    assert all(store.get(key).rule_id == "keep" for key in store.keys())


@pytest.mark.parametrize("shards", [0, -1])
def test_invalid_shard_count(shards: int) -> None:
    with pytest.raises(ValueError):
        InMemoryStateStore(shards=shards)


def test_concurrent_updates_to_one_key_are_not_lost() -> None:
    store = InMemoryStateStore(shards=4)
    per_thread = 200
    total_threads = 16

    def _worker() -> None:
        for _ in range(per_thread):
            with store.locked("hot", "r", _factory, T0) as entry:
                entry.state.count += 1

    threads = [threading.Thread(target=_worker) for _ in range(total_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("hot").state.count == per_thread * total_threads


def test_concurrent_creation_of_distinct_keys() -> None:
    store = InMemoryStateStore(shards=8)
    total_keys = 100

    def _writer(idx: int) -> None:
        with store.locked(f"k-{idx}", "r", _factory, T0) as entry:
            entry.state.count = idx

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == total_keys
    assert store.get("k-0").state.count == 0
    assert store.get("k-99").state.count == 99
