"""Rate limiting service.

Facade over the engine components. It is the only object the HTTP layer
talks to, and every collaborator can be injected for tests:

- RuleRegistry: rule storage and validation
- RequestClassifier: rule selection per request
- DecisionAggregator: per-rule evaluation against the state store
- StatsCollector: decision statistics
- CleanupScheduler: background eviction of stale state and history
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from rate_engine.adapters.state_store import AbstractStateStore, InMemoryStateStore
from rate_engine.core.config import EngineSettings
from rate_engine.core.logging import mask_state_key
from rate_engine.engine.cleanup_scheduler import CleanupReport, CleanupScheduler
from rate_engine.engine.decision_aggregator import DecisionAggregator
from rate_engine.engine.models import (
    MalformedConditionPolicy,
    RateLimitRequest,
    RateLimitResult,
    RateLimitRule,
    now_ms,
)
from rate_engine.engine.request_classifier import RequestClassifier
from rate_engine.engine.rule_registry import RuleRegistry, default_rules
from rate_engine.engine.stats_collector import DecisionEvent, StatsCollector, StatsSnapshot

logger = logging.getLogger(__name__)


class RateLimitingService:
    """Admission control over a prioritised set of rate limit rules."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        clock: Callable[[], float] = now_ms,
        registry: RuleRegistry | None = None,
        store: AbstractStateStore | None = None,
        stats: StatsCollector | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.registry = registry or RuleRegistry()
        self.store = store or InMemoryStateStore(shards=self.settings.state_shards)
        self.stats = stats or StatsCollector(
            history_max_size=self.settings.history_max_size,
            top_n=self.settings.top_n,
            time_series_hours=self.settings.time_series_hours,
            clock=clock,
        )
        self.classifier = RequestClassifier(
            self.registry,
            policy=MalformedConditionPolicy(self.settings.malformed_condition_policy),
            timezone=self.settings.condition_timezone,
        )
        self.aggregator = DecisionAggregator(self.store)
        self.scheduler = CleanupScheduler(
            registry=self.registry,
            store=self.store,
            stats=self.stats,
            interval_seconds=self.settings.cleanup_interval_seconds,
            retention_seconds=self.settings.retention_seconds,
            clock=clock,
        )

        for rule in self.registry.list_rules():
            self.stats.register_rule(rule.id)
        self._seed_default_rules()
        self._closed = False

    # Lifecycle

    def _seed_default_rules(self) -> None:
        if self.settings.seed_default_rules:
            for rule in default_rules():
                self.add_rule(rule)

    def start(self) -> None:
        """Start background cleanup if enabled.

        After :meth:`shutdown` the built-in rules are seeded again, so one
        engine can serve several application lifespans.
        """
        if self._closed:
            self._seed_default_rules()
            self._closed = False
        if self.settings.cleanup_enabled:
            self.scheduler.start()

    def shutdown(self) -> None:
        """Stop background cleanup and drop rules, state and history."""
        self.scheduler.stop()
        for rule_id in self.registry.rule_ids():
            self.stats.unregister_rule(rule_id)
        self.registry.clear()
        self.store.clear()
        self.stats.reset()
        self._closed = True
        logger.info("engine.shutdown")

    def run_cleanup(self) -> CleanupReport:
        return self.scheduler.run_once()

    # Decisions

    def check(self, request: RateLimitRequest) -> RateLimitResult:
        """Decide whether ``request`` may proceed.

        Never raises for a well-formed request.
        """
        started = time.perf_counter()
        now = self.clock()

        matches = self.classifier.classify(request)
        decision = self.aggregator.decide(matches, request, now)
        result = decision.result

        latency_ms = (time.perf_counter() - started) * 1000.0
        self.stats.record(DecisionEvent.from_decision(request, result, decision.evaluated, latency_ms))

        if not result.allowed:
            logger.info(
                "rate_limit.denied",
                extra={
                    "decision_id": request.id,
                    "rule_id": result.matched_rule.id if result.matched_rule else None,
                    "action": result.action.value,
                    "state_key": mask_state_key(result.metadata.key),
                    "retry_after_s": result.retry_after,
                    "status_code": result.status_code,
                },
            )
        return result

    # Rules

    def add_rule(self, rule: RateLimitRule | Mapping[str, Any]) -> RateLimitRule:
        stored = self.registry.add_rule(rule)
        self.stats.register_rule(stored.id)
        return stored

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> RateLimitRule:
        return self.registry.update_rule(rule_id, updates)

    def remove_rule(self, rule_id: str) -> RateLimitRule:
        removed = self.registry.remove_rule(rule_id)
        self.stats.unregister_rule(rule_id)
        return removed

    def get_rule(self, rule_id: str) -> RateLimitRule | None:
        return self.registry.get_rule(rule_id)

    def list_rules(self) -> list[RateLimitRule]:
        return self.registry.list_rules()

    # Stats and state

    def get_stats(self) -> StatsSnapshot:
        return self.stats.snapshot()

    def reset_stats(self) -> None:
        self.stats.reset()
        logger.info("stats.reset")

    def clear_state(self, key: str | None = None) -> int:
        """Drop the state for ``key``, or all state when ``key`` is None.

        Returns:
            Number of entries removed.
        """
        if key is None:
            removed = len(self.store)
            self.store.clear()
        else:
            removed = 1 if self.store.delete(key) else 0
        logger.info(
            "state.cleared",
            extra={"state_key": mask_state_key(key) if key else None, "removed": removed},
        )
        return removed