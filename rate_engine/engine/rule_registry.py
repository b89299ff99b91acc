"""Rule registry.

Stores rate limit rules keyed by id. Rules are validated on insert and on
every update; an invalid rule is never stored. Reads return the live rule
objects, so an update is visible to the very next decision.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from pydantic import ValidationError

from rate_engine.core.errors import NotFoundAppError, ValidationAppError
from rate_engine.engine.models import (
    Action,
    Algorithm,
    CustomResponse,
    RateLimitRule,
    RuleActions,
    RuleConditions,
    Scope,
)

logger = logging.getLogger(__name__)


def _validation_error(exc: ValidationError, rule_id: str | None) -> ValidationAppError:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "invalid rule"}
    return ValidationAppError(
        code="invalid_rule",
        message=f"Invalid rule: {first['field']}: {first['message']}",
        details={"rule_id": rule_id or "", "errors": errors},
    )


def validate_rule(rule: RateLimitRule | Mapping[str, Any]) -> RateLimitRule:
    """Validate rule data and return a rule model.

    Model instances are re-validated from their dumped form, which catches
    instances built with ``model_construct`` or mutated after creation.

    Raises:
        ValidationAppError: If any field is invalid.
    """
    data = rule.model_dump() if isinstance(rule, RateLimitRule) else dict(rule)
    try:
        return RateLimitRule.model_validate(data)
    except ValidationError as exc:
        raise _validation_error(exc, data.get("id")) from exc


class RuleRegistry:
    """Thread-safe store of rate limit rules."""

    def __init__(self) -> None:
        self._rules: dict[str, RateLimitRule] = {}
        self._lock = threading.RLock()

    def add_rule(self, rule: RateLimitRule | Mapping[str, Any]) -> RateLimitRule:
        """Validate and store a rule, replacing any rule with the same id.

        Returns:
            The stored rule.

        Raises:
            ValidationAppError: If the rule is invalid. Nothing is stored.
        """
        validated = validate_rule(rule)
        with self._lock:
            replaced = validated.id in self._rules
            self._rules[validated.id] = validated

        logger.info(
            "rule.added",
            extra={
                "rule_id": validated.id,
                "algorithm": validated.algorithm.value,
                "scope": validated.scope.value,
                "limit": validated.limit,
                "window_ms": validated.window,
                "priority": validated.priority,
                "replaced": replaced,
            },
        )
        return validated

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> RateLimitRule:
        """Merge ``updates`` into an existing rule.

        Nested ``conditions`` and ``actions`` are replaced as a whole. The id
        cannot be changed.

        Raises:
            NotFoundAppError: If no rule has ``rule_id``.
            ValidationAppError: If the merged rule is invalid; the previous
                rule stays in place.
        """
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise NotFoundAppError(
                    code="rule_not_found",
                    message=f"Rule {rule_id!r} does not exist",
                    details={"rule_id": rule_id},
                )
            merged = current.model_dump()
            merged.update({k: v for k, v in updates.items() if k != "id"})
            validated = validate_rule(merged)
            self._rules[rule_id] = validated

        logger.info(
            "rule.updated",
            extra={"rule_id": rule_id, "fields": sorted(k for k in updates if k != "id")},
        )
        return validated

    def remove_rule(self, rule_id: str) -> RateLimitRule:
        """Remove a rule. Its per-key state is left for the cleanup sweep.

        Raises:
            NotFoundAppError: If no rule has ``rule_id``.
        """
        with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is None:
            raise NotFoundAppError(
                code="rule_not_found",
                message=f"Rule {rule_id!r} does not exist",
                details={"rule_id": rule_id},
            )
        logger.info("rule.removed", extra={"rule_id": rule_id})
        return removed

    def get_rule(self, rule_id: str) -> RateLimitRule | None:
        with self._lock:
            return self._rules.get(rule_id)

    def list_rules(self) -> list[RateLimitRule]:
        """All rules in registration order."""
        with self._lock:
            return list(self._rules.values())

    def rule_ids(self) -> set[str]:
        with self._lock:
            return set(self._rules)

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        with self._lock:
            return rule_id in self._rules


def default_rules() -> list[RateLimitRule]:
    """Built-in rule set registered on startup."""

    return [
        RateLimitRule(
            id="global_limit",
            name="Global API Limit",
            algorithm=Algorithm.SLIDING_WINDOW,
            scope=Scope.GLOBAL,
            limit=10000,
            window=60000,
            priority=1,
            actions=RuleActions(
                on_limit=Action.THROTTLE,
                on_exceed=Action.DENY,
                custom_response=CustomResponse(
                    status=429,
                    message="Global rate limit exceeded",
                    headers={"Retry-After": "60"},
                ),
            ),
        ),
        RateLimitRule(
            id="user_limit",
            name="Per User Limit",
            algorithm=Algorithm.TOKEN_BUCKET,
            scope=Scope.USER,
            limit=1000,
            window=60000,
            burst=100,
            refill_rate=16.67,
            priority=2,
        ),
        RateLimitRule(
            id="ip_limit",
            name="Per IP Limit",
            algorithm=Algorithm.SLIDING_WINDOW,
            scope=Scope.IP,
            limit=500,
            window=60000,
            priority=3,
        ),
        RateLimitRule(
            id="auth_endpoint_limit",
            name="Authentication Endpoint Limit",
            algorithm=Algorithm.FIXED_WINDOW,
            scope=Scope.ENDPOINT,
            limit=5,
            window=300000,
            priority=4,
            conditions=RuleConditions(
                endpoints=["/api/auth/login", "/api/auth/register"],
                methods=["POST"],
            ),
            actions=RuleActions(
                on_limit=Action.DENY,
                on_exceed=Action.DENY,
                custom_response=CustomResponse(
                    status=429,
                    message="Too many authentication attempts",
                    headers={"Retry-After": "300"},
                ),
            ),
        ),
        RateLimitRule(
            id="premium_user_limit",
            name="Premium User Limit",
            algorithm=Algorithm.TOKEN_BUCKET,
            scope=Scope.USER,
            limit=5000,
            window=60000,
            burst=500,
            refill_rate=83.33,
            priority=1,
            conditions=RuleConditions(user_roles=["premium", "enterprise"]),
            actions=RuleActions(on_limit=Action.THROTTLE, on_exceed=Action.QUEUE),
        ),
    ]
