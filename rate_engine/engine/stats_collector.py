"""Decision statistics.

Recording is split in two so the decision path stays cheap:

- :meth:`StatsCollector.record` appends an event to a pending queue.
- Pending events are folded into the aggregates on read, on the cleanup
  tick, or inline once the queue grows past ``drain_threshold``.

Per-consumer, per-endpoint and hourly aggregates are maintained
incrementally and reversed when an event leaves the bounded history, so
a snapshot never rescans the history.
"""

from __future__ import annotations

import heapq
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from rate_engine.engine.models import Action, RateLimitRequest, RateLimitResult, now_ms

HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class RuleOutcome:
    rule_id: str
    allowed: bool
    action: Action


@dataclass(frozen=True)
class DecisionEvent:
    """One recorded decision."""

    timestamp: float
    consumer: str
    endpoint: str
    allowed: bool
    action: Action
    latency_ms: float
    rule_outcomes: tuple[RuleOutcome, ...] = ()

    @classmethod
    def from_decision(
        cls,
        request: RateLimitRequest,
        result: RateLimitResult,
        evaluated: list[RateLimitResult],
        latency_ms: float,
    ) -> "DecisionEvent":
        return cls(
            timestamp=request.timestamp,
            consumer=request.consumer,
            endpoint=f"{request.method} {request.endpoint}",
            allowed=result.allowed,
            action=result.action,
            latency_ms=latency_ms,
            rule_outcomes=tuple(
                RuleOutcome(r.matched_rule.id, r.allowed, r.action)
                for r in evaluated
                if r.matched_rule is not None
            ),
        )


@dataclass
class RuleStats:
    triggered: int = 0
    allowed: int = 0
    denied: int = 0
    throttled: int = 0
    queued: int = 0


@dataclass
class TrafficCount:
    requests: int = 0
    denied: int = 0


@dataclass
class HourBucket:
    requests: int = 0
    denied: int = 0
    throttled: int = 0


@dataclass(frozen=True)
class TopEntry:
    key: str
    requests: int
    denied: int


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: int
    requests: int
    denied: int
    throttled: int


@dataclass
class StatsSnapshot:
    """Point-in-time copy of every statistic."""

    total_requests: int
    allowed_requests: int
    denied_requests: int
    throttled_requests: int
    queued_requests: int
    average_response_time: float
    top_users: list[TopEntry] = field(default_factory=list)
    top_endpoints: list[TopEntry] = field(default_factory=list)
    rule_stats: dict[str, RuleStats] = field(default_factory=dict)
    time_series: list[TimeSeriesPoint] = field(default_factory=list)


def _hour_start(timestamp_ms: float) -> int:
    return int(timestamp_ms // HOUR_MS) * HOUR_MS


class StatsCollector:
    """Thread-safe decision statistics with a bounded history."""

    def __init__(
        self,
        *,
        history_max_size: int = 10000,
        top_n: int = 10,
        time_series_hours: int = 24,
        drain_threshold: int = 1024,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        if history_max_size < 1:
            raise ValueError("history_max_size must be >= 1")
        if top_n < 1:
            raise ValueError("top_n must be >= 1")
        if time_series_hours < 1:
            raise ValueError("time_series_hours must be >= 1")

        self.history_max_size = history_max_size
        self.top_n = top_n
        self.time_series_hours = time_series_hours
        self.drain_threshold = drain_threshold
        self.clock = clock

        self._lock = threading.Lock()
        # deque.append/popleft are atomic, so record() never takes the lock
        self._pending: deque[DecisionEvent] = deque()
        self._history: deque[DecisionEvent] = deque()
        self._rule_stats: dict[str, RuleStats] = {}
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._total = 0
        self._allowed = 0
        self._denied = 0
        self._throttled = 0
        self._queued = 0
        self._avg_latency = 0.0
        self._consumers: dict[str, TrafficCount] = {}
        self._endpoints: dict[str, TrafficCount] = {}
        self._hours: dict[int, HourBucket] = {}

    # Recording

    def record(self, event: DecisionEvent) -> None:
        """Queue ``event`` for aggregation."""
        self._pending.append(event)
        if len(self._pending) >= self.drain_threshold:
            self.drain()

    def drain(self) -> int:
        """Fold pending events into the aggregates. Returns the number folded."""
        with self._lock:
            return self._drain_locked()

    def _drain_locked(self) -> int:
        folded = 0
        while True:
            try:
                event = self._pending.popleft()
            except IndexError:
                break
            self._apply(event)
            folded += 1
        return folded

    def _apply(self, event: DecisionEvent) -> None:
        self._total += 1
        self._avg_latency += (event.latency_ms - self._avg_latency) / self._total
        if event.allowed:
            self._allowed += 1
        else:
            self._denied += 1
            if event.action is Action.THROTTLE:
                self._throttled += 1
            elif event.action is Action.QUEUE:
                self._queued += 1

        for outcome in event.rule_outcomes:
            stats = self._rule_stats.get(outcome.rule_id)
            if stats is None:
                continue
            stats.triggered += 1
            if outcome.allowed:
                stats.allowed += 1
            else:
                stats.denied += 1
                if outcome.action is Action.THROTTLE:
                    stats.throttled += 1
                elif outcome.action is Action.QUEUE:
                    stats.queued += 1

        self._history.append(event)
        self._count(event, +1)
        while len(self._history) > self.history_max_size:
            self._count(self._history.popleft(), -1)

    def _count(self, event: DecisionEvent, delta: int) -> None:
        denied = 0 if event.allowed else delta
        for table, key in ((self._consumers, event.consumer), (self._endpoints, event.endpoint)):
            count = table.setdefault(key, TrafficCount())
            count.requests += delta
            count.denied += denied
            if count.requests <= 0:
                del table[key]

        hour = _hour_start(event.timestamp)
        bucket = self._hours.setdefault(hour, HourBucket())
        bucket.requests += delta
        bucket.denied += denied
        if not event.allowed and event.action is Action.THROTTLE:
            bucket.throttled += delta
        if bucket.requests <= 0:
            del self._hours[hour]

    # Rule bookkeeping

    def register_rule(self, rule_id: str) -> None:
        with self._lock:
            self._rule_stats.setdefault(rule_id, RuleStats())

    def unregister_rule(self, rule_id: str) -> None:
        with self._lock:
            self._rule_stats.pop(rule_id, None)

    # Maintenance

    def trim(self, older_than: float) -> int:
        """Drop history events with a timestamp before ``older_than``.

        Returns:
            Number of events removed.
        """
        with self._lock:
            self._drain_locked()
            removed = 0
            while self._history and self._history[0].timestamp < older_than:
                self._count(self._history.popleft(), -1)
                removed += 1
            return removed

    def reset(self) -> None:
        """Zero every counter and clear the history. Registered rules stay registered."""
        with self._lock:
            self._pending.clear()
            self._history.clear()
            self._reset_counters()
            for rule_id in self._rule_stats:
                self._rule_stats[rule_id] = RuleStats()

    def history_size(self) -> int:
        with self._lock:
            self._drain_locked()
            return len(self._history)

    # Reading

    def snapshot(self) -> StatsSnapshot:
        """Drain pending events and return a copy of every statistic."""
        with self._lock:
            self._drain_locked()
            current_hour = _hour_start(self.clock())
            series = []
            for i in range(self.time_series_hours - 1, -1, -1):
                hour = current_hour - i * HOUR_MS
                bucket = self._hours.get(hour) or HourBucket()
                series.append(TimeSeriesPoint(hour, bucket.requests, bucket.denied, bucket.throttled))

            return StatsSnapshot(
                total_requests=self._total,
                allowed_requests=self._allowed,
                denied_requests=self._denied,
                throttled_requests=self._throttled,
                queued_requests=self._queued,
                average_response_time=self._avg_latency,
                top_users=self._top(self._consumers),
                top_endpoints=self._top(self._endpoints),
                rule_stats={k: RuleStats(**vars(v)) for k, v in self._rule_stats.items()},
                time_series=series,
            )

    def _top(self, table: dict[str, TrafficCount]) -> list[TopEntry]:
        ranked = heapq.nlargest(self.top_n, table.items(), key=lambda item: item[1].requests)
        return [TopEntry(key, count.requests, count.denied) for key, count in ranked]

