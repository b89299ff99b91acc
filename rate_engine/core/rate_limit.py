"""Rate limiting dependency for FastAPI routes.

Runs the incoming HTTP request through the application's engine, the same
way an external caller would through ``POST /v1/decisions``:

- Allowed: the ``X-RateLimit-*`` headers are attached to the response.
- Denied: HTTP 429 (or the rule's custom status) with ``Retry-After``.

Client identity is the caller's IP and ``X-API-Key``; no user or role is
derived from headers.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, Response

from rate_engine.core.config import settings
from rate_engine.engine.models import RateLimitRequest
from rate_engine.engine.service import RateLimitingService

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> RateLimitingService:
    """Return the engine owned by the running application."""

    return request.app.state.engine


def build_rate_limit_request(request: Request, api_key: str | None) -> RateLimitRequest:
    """Normalize a FastAPI request for the engine."""

    client_host = request.client.host if request.client else "unknown"
    return RateLimitRequest(
        ip_address=client_host,
        endpoint=request.url.path,
        method=request.method,
        api_key=api_key,
        user_agent=request.headers.get("user-agent"),
    )


async def enforce_rate_limit(
    request: Request,
    response: Response,
    engine: Annotated[RateLimitingService, Depends(get_engine)],
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency admitting or rejecting the current request.

    Raises:
        HTTPException: With the decision's status code when denied.
    """

    if not settings.app.rate_limit_enabled:
        return

    result = engine.check(build_rate_limit_request(request, x_api_key))
    include_headers = settings.app.rate_limit_include_headers

    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "path": request.url.path,
                "rule_id": result.matched_rule.id if result.matched_rule else None,
                "remaining": result.remaining,
            },
        )
        if include_headers:
            response.headers.update(result.headers)
        return

    headers = dict(result.headers) if include_headers else {}
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)

    raise HTTPException(
        status_code=result.status_code,
        detail={
            "error": result.message,
            "retry_after": result.retry_after,
            "limit": result.metadata.limit,
            "remaining": result.remaining,
            "reset_time": result.reset_time,
        },
        headers=headers or None,
    )
