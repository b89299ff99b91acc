"""Per-key state storage adapters.

The engine depends on the abstract store only, so the in-memory sharded
implementation can later be replaced by a shared store without touching the
algorithms or the decision path.
"""

from rate_engine.adapters.state_store.base import AbstractStateStore, StateEntry
from rate_engine.adapters.state_store.in_memory import InMemoryStateStore

__all__ = ["AbstractStateStore", "InMemoryStateStore", "StateEntry"]
