"""Unit tests for decision statistics."""

from unittest.mock import Mock

import pytest

from conftest import T0
from rate_engine.engine.models import Action
from rate_engine.engine.stats_collector import HOUR_MS, DecisionEvent, RuleOutcome, StatsCollector


def _event(
    *,
    consumer: str = "alice",
    endpoint: str = "GET /api/items",
    allowed: bool = True,
    action: Action = Action.ALLOW,
    timestamp: float = T0,
    latency_ms: float = 1.0,
    rules: tuple = (),
) -> DecisionEvent:
    return DecisionEvent(
        timestamp=timestamp,
        consumer=consumer,
        endpoint=endpoint,
        allowed=allowed,
        action=action,
        latency_ms=latency_ms,
        rule_outcomes=rules,
    )


def _collector(**kwargs) -> StatsCollector:
    kwargs.setdefault("clock", Mock(return_value=T0))
    return StatsCollector(**kwargs)


def test_counters() -> None:
    stats = _collector()
    stats.record(_event())
    stats.record(_event(allowed=False, action=Action.DENY))
    stats.record(_event(allowed=False, action=Action.THROTTLE))
    stats.record(_event(allowed=False, action=Action.QUEUE))
    stats.record(_event(allowed=True, action=Action.THROTTLE))

    snapshot = stats.snapshot()

    assert snapshot.total_requests == 5
    assert snapshot.allowed_requests == 2
    assert snapshot.denied_requests == 3
    assert snapshot.throttled_requests == 1
    assert snapshot.queued_requests == 1


def test_average_response_time() -> None:
    stats = _collector()
    for latency in (1.0, 2.0, 6.0):
        stats.record(_event(latency_ms=latency))

    assert stats.snapshot().average_response_time == pytest.approx(3.0)


def test_rule_stats_only_for_registered_rules() -> None:
    stats = _collector()
    stats.register_rule("a")
    stats.record(
        _event(
            allowed=False,
            action=Action.THROTTLE,
            rules=(
                RuleOutcome("a", True, Action.ALLOW),
                RuleOutcome("gone", False, Action.THROTTLE),
            ),
        )
    )
    stats.record(_event(allowed=False, action=Action.QUEUE, rules=(RuleOutcome("a", False, Action.QUEUE),)))

    rule_stats = stats.snapshot().rule_stats

    assert set(rule_stats) == {"a"}
    assert rule_stats["a"].triggered == 2
    assert rule_stats["a"].allowed == 1
    assert rule_stats["a"].denied == 1
    assert rule_stats["a"].queued == 1
    assert rule_stats["a"].throttled == 0


def test_top_consumers_and_endpoints() -> None:
    stats = _collector(top_n=2)
    for consumer, count in (("alice", 3), ("bob", 5), ("carol", 1)):
        for _ in range(count):
            stats.record(_event(consumer=consumer, endpoint=f"GET /{consumer}"))
    stats.record(_event(consumer="bob", endpoint="GET /bob", allowed=False, action=Action.DENY))

    snapshot = stats.snapshot()

    assert [(e.key, e.requests, e.denied) for e in snapshot.top_users] == [("bob", 6, 1), ("alice", 3, 0)]
    assert [e.key for e in snapshot.top_endpoints] == ["GET /bob", "GET /alice"]


def test_history_is_bounded_and_aggregates_follow_evictions() -> None:
    stats = _collector(history_max_size=3)
    for consumer in ("old", "old", "new", "new", "new"):
        stats.record(_event(consumer=consumer))

    snapshot = stats.snapshot()

    assert stats.history_size() == 3
    assert [(e.key, e.requests) for e in snapshot.top_users] == [("new", 3)]
    # Totals are lifetime counters, not history counters
    assert snapshot.total_requests == 5


def test_time_series_has_hourly_buckets_ending_now() -> None:
    clock = Mock(return_value=T0 + 2 * HOUR_MS + 1234)
    stats = _collector(clock=clock)
    stats.record(_event(timestamp=T0 + 10))
    stats.record(_event(timestamp=T0 + 2 * HOUR_MS + 5, allowed=False, action=Action.THROTTLE))

    series = stats.snapshot().time_series

    assert len(series) == 24
    assert series[-1].timestamp == T0 + 2 * HOUR_MS
    assert series[-1].requests == 1
    assert series[-1].denied == 1
    assert series[-1].throttled == 1
    assert series[-3].timestamp == T0
    assert series[-3].requests == 1
    assert sum(p.requests for p in series) == 2


def test_snapshot_is_stable_without_new_traffic() -> None:
    stats = _collector()
    stats.record(_event())

    assert stats.snapshot() == stats.snapshot()


def test_history_size_includes_pending_events() -> None:
    stats = _collector(drain_threshold=1000)
    stats.record(_event())

    assert stats.history_size() == 1


def test_trim_drops_old_history() -> None:
    stats = _collector()
    stats.record(_event(consumer="old", timestamp=T0 - 10))
    stats.record(_event(consumer="new", timestamp=T0))

    removed = stats.trim(older_than=T0 - 5)

    assert removed == 1
    assert [e.key for e in stats.snapshot().top_users] == ["new"]


def test_reset_keeps_registered_rules() -> None:
    stats = _collector()
    stats.register_rule("a")
    stats.record(_event(rules=(RuleOutcome("a", True, Action.ALLOW),)))

    stats.reset()
    snapshot = stats.snapshot()

    assert snapshot.total_requests == 0
    assert snapshot.top_users == []
    assert snapshot.rule_stats["a"].triggered == 0


def test_unregister_rule() -> None:
    stats = _collector()
    stats.register_rule("a")
    stats.unregister_rule("a")

    assert stats.snapshot().rule_stats == {}


@pytest.mark.parametrize(
    "kwargs",
    [{"history_max_size": 0}, {"top_n": 0}, {"time_series_hours": 0}],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        StatsCollector(**kwargs)
