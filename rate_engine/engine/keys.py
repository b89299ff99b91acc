"""Composite state keys."""

from __future__ import annotations

from typing import assert_never

from rate_engine.engine.models import RateLimitRequest, RateLimitRule, Scope


def scope_discriminator(scope: Scope, request: RateLimitRequest) -> str:
    """Identity part of the state key for ``scope``.

    Examples:
        >>> req = RateLimitRequest(ip_address="10.0.0.1", endpoint="/a", method="get")
        >>> scope_discriminator(Scope.USER, req)
        'user:anonymous'
        >>> scope_discriminator(Scope.ENDPOINT, req)
        'endpoint:/a:GET'
    """
    if scope is Scope.GLOBAL:
        return "global"
    if scope is Scope.USER:
        return f"user:{request.user_id or 'anonymous'}"
    if scope is Scope.IP:
        return f"ip:{request.ip_address}"
    if scope is Scope.API_KEY:
        return f"api_key:{request.api_key or 'none'}"
    if scope is Scope.ENDPOINT:
        return f"endpoint:{request.endpoint}:{request.method}"
    assert_never(scope)


def build_state_key(rule: RateLimitRule, request: RateLimitRequest) -> str:
    """Build the ``<rule id>:<scope discriminator>`` key for a rule/request pair."""

    return f"{rule.id}:{scope_discriminator(rule.scope, request)}"
