"""Combine per-rule results into one decision.

The first denial wins and stops evaluation, so rules after it consume no
quota. Rules evaluated before a denial keep the quota they consumed.
When every rule allows, the most restrictive result (lowest ``remaining``)
is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from rate_engine.adapters.state_store.base import AbstractStateStore
from rate_engine.engine.algorithms import build_headers, evaluate, new_state, quota_limit
from rate_engine.engine.keys import build_state_key
from rate_engine.engine.models import (
    RateLimitRequest,
    RateLimitResult,
    RateLimitRule,
    ResultMetadata,
    default_allow_result,
)
from rate_engine.engine.request_classifier import RuleMatch

logger = logging.getLogger(__name__)

DEFAULT_DENY_MESSAGE = "Rate limit exceeded"
MALFORMED_DENY_MESSAGE = "Rate limit rule could not be evaluated"


@dataclass
class Decision:
    """Final result plus every per-rule result produced on the way."""

    result: RateLimitResult
    evaluated: list[RateLimitResult] = field(default_factory=list)


class DecisionAggregator:
    """Evaluate matched rules against the state store."""

    def __init__(self, store: AbstractStateStore) -> None:
        self._store = store

    def decide(
        self,
        matches: list[RuleMatch],
        request: RateLimitRequest,
        now: float,
    ) -> Decision:
        """Evaluate ``matches`` in order and return the final decision."""

        if not matches:
            return Decision(default_allow_result(now))

        evaluated: list[RateLimitResult] = []
        best: RateLimitResult | None = None
        for match in matches:
            rule = match.rule
            key = build_state_key(rule, request)

            if match.malformed is not None:
                result = _malformed_denial(rule, key, now)
            else:
                with self._store.locked(key, rule.id, lambda: new_state(rule, now), now) as entry:
                    result = evaluate(rule, entry, request, now)
            evaluated.append(result)

            if not result.allowed:
                return Decision(apply_denial(result), evaluated)
            if best is None or result.remaining < best.remaining:
                best = result

        assert best is not None
        return Decision(best, evaluated)


def apply_denial(result: RateLimitResult) -> RateLimitResult:
    """Attach status, message and headers of the rule's custom response.

    ``Retry-After`` always reflects the computed wait when one is known.
    """
    rule = result.matched_rule
    custom = rule.actions.custom_response if rule is not None else None

    headers = dict(result.headers)
    status_code = 429
    message = DEFAULT_DENY_MESSAGE if result.message is None else result.message
    if custom is not None:
        status_code = custom.status
        message = custom.message
        headers.update(custom.headers)
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)

    return replace(result, headers=headers, status_code=status_code, message=message)


def _malformed_denial(rule: RateLimitRule, key: str, now: float) -> RateLimitResult:
    logger.warning("rate_limit.malformed_denial", extra={"rule_id": rule.id})
    return RateLimitResult(
        allowed=False,
        action=rule.actions.on_exceed,
        remaining=0,
        reset_time=now,
        retry_after=None,
        headers=build_headers(rule, 0, now),
        matched_rule=rule,
        message=MALFORMED_DENY_MESSAGE,
        metadata=ResultMetadata(
            algorithm=rule.algorithm,
            scope=rule.scope,
            key=key,
            current_usage=0,
            limit=quota_limit(rule),
            window=rule.window,
        ),
    )
