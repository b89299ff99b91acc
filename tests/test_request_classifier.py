"""Unit tests for rule selection and condition matching."""

from datetime import datetime, timezone

import pytest

from conftest import make_request, make_rule
from rate_engine.engine.models import MalformedConditionPolicy, RuleConditions, TimeRange
from rate_engine.engine.request_classifier import (
    MalformedConditionError,
    RequestClassifier,
    conditions_match,
    ip_in_ranges,
    time_in_ranges,
)
from rate_engine.engine.rule_registry import RuleRegistry


def _ms(hour: int, minute: int) -> float:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc).timestamp() * 1000


def _classifier(*rules, policy=MalformedConditionPolicy.FAIL_OPEN) -> RequestClassifier:
    registry = RuleRegistry()
    for rule in rules:
        registry.add_rule(rule)
    return RequestClassifier(registry, policy=policy, timezone="UTC")


class TestIpRanges:
    @pytest.mark.parametrize(
        "ip, ranges, expected",
        [
            ("192.168.1.20", ["192.168.0.0/16"], True),
            ("192.169.1.20", ["192.168.0.0/16"], False),
            ("10.0.1.5", ["10.0.1.0/24"], True),
            ("10.0.10.5", ["10.0.1.0/24"], False),
            ("10.0.0.1", ["10.0.0.1"], True),
            ("10.0.0.10", ["10.0.0.1"], False),
            ("10.0.0.1", ["10.0.0.1/32"], True),
            ("8.8.8.8", ["0.0.0.0/0"], True),
            ("172.16.5.4", ["10.0.0.0/8", "172.16.0.0/12"], True),
            ("2001:db8::1", ["2001:db8::/32"], True),
            ("2001:db9::1", ["2001:db8::/32"], False),
        ],
    )
    def test_prefix_match(self, ip: str, ranges: list, expected: bool) -> None:
        assert ip_in_ranges(ip, ranges) is expected

    def test_prefix_is_octet_aligned(self) -> None:
        # /20 keeps only the first two octets
        assert ip_in_ranges("10.1.200.1", ["10.1.0.0/20"]) is True

    @pytest.mark.parametrize(
        "ip, ranges",
        [
            ("not-an-ip", ["10.0.0.0/8"]),
            ("10.0.0.1", ["10.0.0.0/99"]),
            ("10.0.0.1", ["banana"]),
        ],
    )
    def test_malformed_data_raises(self, ip: str, ranges: list) -> None:
        with pytest.raises(MalformedConditionError):
            ip_in_ranges(ip, ranges)


class TestTimeRanges:
    def test_inclusive_bounds(self) -> None:
        ranges = [TimeRange(start="09:00", end="17:00")]

        assert time_in_ranges(_ms(9, 0), ranges, timezone.utc) is True
        assert time_in_ranges(_ms(17, 0), ranges, timezone.utc) is True
        assert time_in_ranges(_ms(17, 1), ranges, timezone.utc) is False
        assert time_in_ranges(_ms(8, 59), ranges, timezone.utc) is False

    def test_range_wrapping_midnight(self) -> None:
        ranges = [TimeRange(start="22:00", end="06:00")]

        assert time_in_ranges(_ms(23, 30), ranges, timezone.utc) is True
        assert time_in_ranges(_ms(3, 0), ranges, timezone.utc) is True
        assert time_in_ranges(_ms(12, 0), ranges, timezone.utc) is False


class TestConditions:
    def test_role_must_be_present_and_allowed(self) -> None:
        conditions = RuleConditions(user_roles=["premium"])

        assert conditions_match(conditions, make_request(role="premium")) is True
        assert conditions_match(conditions, make_request(role="basic")) is False
        assert conditions_match(conditions, make_request()) is False

    def test_endpoint_prefix(self) -> None:
        conditions = RuleConditions(endpoints=["/api/auth"])

        assert conditions_match(conditions, make_request(endpoint="/api/auth/login")) is True
        assert conditions_match(conditions, make_request(endpoint="/api/items")) is False

    def test_method_is_case_insensitive_on_input(self) -> None:
        conditions = RuleConditions(methods=["post"])

        assert conditions_match(conditions, make_request(method="post")) is True
        assert conditions_match(conditions, make_request(method="GET")) is False

    def test_all_conditions_must_match(self) -> None:
        conditions = RuleConditions(endpoints=["/api/auth"], methods=["POST"])

        assert conditions_match(conditions, make_request(endpoint="/api/auth/login", method="GET")) is False


class TestClassifier:
    def test_unconditional_rule_always_matches(self) -> None:
        classifier = _classifier(make_rule(id="all"))

        assert [m.rule.id for m in classifier.classify(make_request())] == ["all"]

    def test_disabled_rules_are_skipped(self) -> None:
        classifier = _classifier(make_rule(id="off", enabled=False))

        assert classifier.classify(make_request()) == []

    def test_sorted_by_priority_with_stable_ties(self) -> None:
        classifier = _classifier(
            make_rule(id="p5", priority=5),
            make_rule(id="p1", priority=1),
            make_rule(id="p5b", priority=5),
        )

        assert [m.rule.id for m in classifier.classify(make_request())] == ["p1", "p5", "p5b"]

    def test_time_condition_uses_request_timestamp(self) -> None:
        rule = make_rule(id="night", conditions={"time_ranges": [{"start": "22:00", "end": "06:00"}]})
        classifier = _classifier(rule)

        assert classifier.classify(make_request(timestamp=_ms(23, 0)))
        assert classifier.classify(make_request(timestamp=_ms(12, 0))) == []

    def test_malformed_ip_fails_open_by_default(self) -> None:
        rule = make_rule(id="lan", conditions={"ip_ranges": ["10.0.0.0/8"]})
        classifier = _classifier(rule)

        assert classifier.classify(make_request(ip_address="garbage")) == []

    def test_malformed_ip_is_flagged_when_failing_closed(self) -> None:
        rule = make_rule(id="lan", conditions={"ip_ranges": ["10.0.0.0/8"]})
        classifier = _classifier(rule, policy=MalformedConditionPolicy.FAIL_CLOSED)

        matches = classifier.classify(make_request(ip_address="garbage"))

        assert len(matches) == 1
        assert matches[0].rule.id == "lan"
        assert "garbage" in matches[0].malformed

    def test_rule_updates_are_visible_immediately(self) -> None:
        registry = RuleRegistry()
        registry.add_rule(make_rule(id="r"))
        classifier = RequestClassifier(registry)

        registry.update_rule("r", {"enabled": False})

        assert classifier.classify(make_request()) == []
