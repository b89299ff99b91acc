"""Request classification: which rules apply to a request.

Condition semantics:
- user_roles: the request must carry a role from the list.
- endpoints: the request endpoint must start with one of the prefixes.
- methods: exact HTTP method match.
- ip_ranges: simplified prefix match, see :func:`ip_in_ranges`.
- time_ranges: local ``HH:MM`` of the request inside any inclusive range.

Known limitation:
    IP matching is a textual prefix check on octet boundaries, not a real
    CIDR computation. ``10.1.0.0/20`` is treated like ``10.1.0.0/16``.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from rate_engine.engine.models import (
    MalformedConditionPolicy,
    RateLimitRequest,
    RateLimitRule,
    RuleConditions,
    TimeRange,
)
from rate_engine.engine.rule_registry import RuleRegistry

logger = logging.getLogger(__name__)


class MalformedConditionError(ValueError):
    """Raised when condition data or request data cannot be evaluated."""


@dataclass(frozen=True)
class RuleMatch:
    """A rule selected for a request.

    Attributes:
        rule: The matching rule.
        malformed: Reason the rule's conditions could not be evaluated.
            Only set under the fail-closed policy.
    """

    rule: RateLimitRule
    malformed: str | None = None


def ip_in_ranges(ip: str, ranges: list[str]) -> bool:
    """Check ``ip`` against configured ranges using a simplified prefix match.

    ``a.b.c.d/n`` keeps the first ``n // 8`` octets of the network as a
    textual prefix; a range without a prefix length must equal the address.
    IPv6 networks compare the text up to the last ``:`` of the network part.

    Raises:
        MalformedConditionError: If the address or a range cannot be parsed.

    Examples:
        >>> ip_in_ranges("192.168.1.20", ["192.168.0.0/16"])
        True
        >>> ip_in_ranges("10.0.10.5", ["10.0.1.0/24"])
        False
    """
    try:
        ipaddress.ip_address(ip)
    except ValueError as exc:
        raise MalformedConditionError(f"unparsable request IP {ip!r}") from exc

    for raw in ranges:
        network, sep, prefix_len = raw.partition("/")
        try:
            ipaddress.ip_network(raw, strict=False)
        except ValueError as exc:
            raise MalformedConditionError(f"unparsable IP range {raw!r}") from exc

        if not sep:
            if ip == network:
                return True
            continue

        bits = int(prefix_len)
        if ":" in network:
            prefix = network.rsplit(":", 1)[0] if bits < 128 else network
            if ip.startswith(prefix):
                return True
            continue

        octets = bits // 8
        if octets == 0:
            return True
        prefix = ".".join(network.split(".")[:octets])
        if octets == 4:
            if ip == prefix:
                return True
        elif ip.startswith(prefix + "."):
            return True
    return False


def time_in_ranges(timestamp_ms: float, ranges: list[TimeRange], tz: tzinfo | None = None) -> bool:
    """Check whether the local time-of-day of ``timestamp_ms`` falls in a range.

    Ranges are inclusive on both ends; a range with ``start > end`` wraps
    past midnight.
    """
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=tz)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedConditionError(f"unusable request timestamp {timestamp_ms!r}") from exc

    hhmm = moment.strftime("%H:%M")
    for time_range in ranges:
        if time_range.start <= time_range.end:
            if time_range.start <= hhmm <= time_range.end:
                return True
        elif hhmm >= time_range.start or hhmm <= time_range.end:
            return True
    return False


def conditions_match(
    conditions: RuleConditions,
    request: RateLimitRequest,
    tz: tzinfo | None = None,
) -> bool:
    """Evaluate every configured condition against ``request``.

    Raises:
        MalformedConditionError: If a condition cannot be evaluated.
    """
    if conditions.user_roles is not None:
        if request.role is None or request.role not in conditions.user_roles:
            return False

    if conditions.endpoints is not None:
        if not any(request.endpoint.startswith(prefix) for prefix in conditions.endpoints):
            return False

    if conditions.methods is not None and request.method not in conditions.methods:
        return False

    if conditions.ip_ranges is not None and not ip_in_ranges(request.ip_address, conditions.ip_ranges):
        return False

    if conditions.time_ranges is not None and not time_in_ranges(request.timestamp, conditions.time_ranges, tz):
        return False

    return True


class RequestClassifier:
    """Select the enabled rules that apply to a request, in priority order."""

    def __init__(
        self,
        registry: RuleRegistry,
        *,
        policy: MalformedConditionPolicy = MalformedConditionPolicy.FAIL_OPEN,
        timezone: str | None = None,
    ) -> None:
        self._registry = registry
        self.policy = policy
        self._tz: tzinfo | None = ZoneInfo(timezone) if timezone else None

    def classify(self, request: RateLimitRequest) -> list[RuleMatch]:
        """Return matching rules sorted by ascending priority.

        Rules with equal priority keep registration order.
        """
        matches: list[RuleMatch] = []
        for rule in self._registry.list_rules():
            if not rule.enabled:
                continue
            if rule.conditions is None:
                matches.append(RuleMatch(rule))
                continue
            try:
                if conditions_match(rule.conditions, request, self._tz):
                    matches.append(RuleMatch(rule))
            except MalformedConditionError as exc:
                logger.warning(
                    "rule.condition_malformed",
                    extra={
                        "rule_id": rule.id,
                        "reason": str(exc),
                        "policy": self.policy.value,
                    },
                )
                if self.policy is MalformedConditionPolicy.FAIL_CLOSED:
                    matches.append(RuleMatch(rule, malformed=str(exc)))

        matches.sort(key=lambda m: m.rule.priority)
        return matches
