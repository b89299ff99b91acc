"""State store interfaces.

The engine should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable

from rate_engine.engine.models import RateLimitState


@dataclass
class StateEntry:
    """Stored algorithm state plus the bookkeeping needed to evict it.

    Attributes:
        key: Composite key (``<rule id>:<scope discriminator>``).
        rule_id: Rule that owns the state, used to detect orphans.
        state: Algorithm-specific mutable state.
        last_seen: Epoch milliseconds of the last check against this key.
    """

    key: str
    rule_id: str
    state: RateLimitState
    last_seen: float


class AbstractStateStore(ABC):
    """Interface for per-key rate limit state stores."""

    @abstractmethod
    def locked(
        self,
        key: str,
        rule_id: str,
        factory: Callable[[], RateLimitState],
        now: float,
    ) -> AbstractContextManager[StateEntry]:
        """Hold exclusive access to the entry for ``key``.

        The entry is created with ``factory`` on first use. Callers perform
        their whole read-modify-write inside the ``with`` block.

        Args:
            key: Composite state key.
            rule_id: Owning rule id.
            factory: Builds zero state for a new key.
            now: Current epoch milliseconds, recorded as ``last_seen``.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> StateEntry | None:
        """Return the entry for ``key`` without creating it."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""
        raise NotImplementedError

    @abstractmethod
    def keys(self) -> list[str]:
        """Snapshot of stored keys."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, should_evict: Callable[[StateEntry], bool]) -> int:
        """Evict entries selected by ``should_evict``.

        Each entry is inspected while holding the same exclusion used by
        :meth:`locked`, so a sweep never races an in-flight decision.

        Returns:
            Number of evicted entries.
        """
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
