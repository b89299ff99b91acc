"""Periodic eviction of stale state and history."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from rate_engine.adapters.state_store.base import AbstractStateStore, StateEntry
from rate_engine.engine.algorithms import drain_leaky_bucket
from rate_engine.engine.models import (
    FixedWindowState,
    LeakyBucketState,
    RateLimitRule,
    SlidingWindowState,
    now_ms,
)
from rate_engine.engine.rule_registry import RuleRegistry
from rate_engine.engine.stats_collector import StatsCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    states_evicted: int
    history_trimmed: int
    duration_ms: float


def is_stale(
    entry: StateEntry,
    rules: dict[str, RateLimitRule],
    now: float,
    retention_ms: float,
) -> bool:
    """Decide whether a state entry can be dropped.

    An entry is stale when its rule no longer exists, when it has been idle
    longer than the retention period, or when its algorithm state no longer
    holds anything that affects a future decision.
    """
    rule = rules.get(entry.rule_id)
    if rule is None:
        return True
    if now - entry.last_seen > retention_ms:
        return True

    state = entry.state
    if isinstance(state, SlidingWindowState):
        cutoff = now - rule.window
        return all(e.timestamp < cutoff for e in state.entries)
    if isinstance(state, FixedWindowState):
        return now - (state.window_start + rule.window) > retention_ms
    if isinstance(state, LeakyBucketState):
        last_activity = state.last_leak
        drain_leaky_bucket(state, now)
        return not state.queue and now - last_activity > retention_ms
    return False


class CleanupScheduler:
    """Background thread running :meth:`run_once` at a fixed interval.

    Notes:
        The thread is a daemon so a forgotten :meth:`stop` never blocks
        interpreter exit.
    """

    def __init__(
        self,
        *,
        registry: RuleRegistry,
        store: AbstractStateStore,
        stats: StatsCollector,
        interval_seconds: float = 300.0,
        retention_seconds: float = 86400,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")

        self._registry = registry
        self._store = store
        self._stats = stats
        self.interval_seconds = interval_seconds
        self.retention_ms = retention_seconds * 1000.0
        self.clock = clock

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="rate-engine-cleanup", daemon=True)
            self._thread.start()
        logger.info("cleanup.started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
            logger.info("cleanup.stopped")

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("cleanup.failed")

    def run_once(self) -> CleanupReport:
        """Trim old history and evict stale state once."""
        started = now_ms()
        now = self.clock()

        trimmed = self._stats.trim(now - self.retention_ms)

        rules = {rule.id: rule for rule in self._registry.list_rules()}

        def should_evict(entry: StateEntry) -> bool:
            # A rule added after the snapshot may already have state
            if entry.rule_id not in rules:
                late = self._registry.get_rule(entry.rule_id)
                if late is not None:
                    rules[late.id] = late
            return is_stale(entry, rules, now, self.retention_ms)

        evicted = self._store.sweep(should_evict)

        report = CleanupReport(
            states_evicted=evicted,
            history_trimmed=trimmed,
            duration_ms=round(now_ms() - started, 2),
        )
        logger.info(
            "cleanup.completed",
            extra={
                "states_evicted": report.states_evicted,
                "history_trimmed": report.history_trimmed,
                "states_remaining": len(self._store),
                "duration_ms": report.duration_ms,
            },
        )
        return report
