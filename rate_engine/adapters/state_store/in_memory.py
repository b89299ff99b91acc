"""In-memory sharded state store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: keys are hashed onto shards, each guarded by its own lock, so
  unrelated keys never contend while a single key is always checked and
  updated atomically.
"""

from __future__ import annotations

import threading
import zlib
from contextlib import contextmanager
from typing import Callable, Iterator

from rate_engine.adapters.state_store.base import AbstractStateStore, StateEntry
from rate_engine.engine.models import RateLimitState


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, StateEntry] = {}


class InMemoryStateStore(AbstractStateStore):
    """State store keeping every entry in process memory.

    Important:
        Shard locks are not re-entrant. Code running inside :meth:`locked`
        must not call back into the store.
    """

    def __init__(self, *, shards: int = 16) -> None:
        """Initialize the store.

        Args:
            shards: Number of lock-guarded partitions.

        Raises:
            ValueError: If shards is not positive.
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[zlib.crc32(key.encode()) % len(self._shards)]

    @contextmanager
    def locked(
        self,
        key: str,
        rule_id: str,
        factory: Callable[[], RateLimitState],
        now: float,
    ) -> Iterator[StateEntry]:
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                entry = StateEntry(key=key, rule_id=rule_id, state=factory(), last_seen=now)
                shard.entries[key] = entry
            else:
                entry.last_seen = max(entry.last_seen, now)
            yield entry

    def get(self, key: str) -> StateEntry | None:
        shard = self._shard_for(key)
        with shard.lock:
            return shard.entries.get(key)

    def delete(self, key: str) -> bool:
        shard = self._shard_for(key)
        with shard.lock:
            return shard.entries.pop(key, None) is not None

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def keys(self) -> list[str]:
        result: list[str] = []
        for shard in self._shards:
            with shard.lock:
                result.extend(shard.entries)
        return result

    def sweep(self, should_evict: Callable[[StateEntry], bool]) -> int:
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                doomed = [key for key, entry in shard.entries.items() if should_evict(entry)]
                for key in doomed:
                    del shard.entries[key]
                evicted += len(doomed)
        return evicted

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
