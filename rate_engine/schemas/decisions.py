"""Pydantic schemas for the decision endpoint."""

from __future__ import annotations

import math
from typing import Any, Dict

from pydantic import BaseModel, Field

from rate_engine.engine.models import Action, Algorithm, RateLimitRequest, RateLimitResult, Scope


class DecisionRequest(BaseModel):
    """Normalized description of the request to admit."""

    ip_address: str = Field(..., description="Client IP address.")
    endpoint: str = Field(..., description="Request path, e.g. /api/users.")
    method: str = Field(..., description="HTTP method.")
    id: str | None = Field(default=None, description="Caller-supplied request id.")
    user_id: str | None = None
    api_key: str | None = None
    role: str | None = Field(default=None, description="Role of the authenticated user.")
    user_agent: str | None = None
    timestamp: float | None = Field(
        default=None,
        description="Epoch milliseconds; defaults to the time of the decision.",
    )
    headers: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> RateLimitRequest:
        data = self.model_dump(exclude_none=True)
        return RateLimitRequest(**data)


class DecisionMetadata(BaseModel):
    algorithm: Algorithm | None
    scope: Scope
    key: str
    current_usage: float
    limit: float | None = Field(description="Null when no rule applied.")
    window: int


class DecisionResponse(BaseModel):
    """Admission decision.

    ``remaining`` is null when no rule applied (unlimited).
    """

    allowed: bool
    action: Action
    remaining: int | None
    reset_time: float = Field(..., description="Epoch milliseconds when quota frees up.")
    retry_after: int | None = Field(default=None, description="Seconds to wait (denials only).")
    status_code: int
    message: str | None = None
    headers: Dict[str, str] = Field(default_factory=dict)
    matched_rule_id: str | None = None
    metadata: DecisionMetadata

    @classmethod
    def from_result(cls, result: RateLimitResult) -> "DecisionResponse":
        meta = result.metadata
        return cls(
            allowed=result.allowed,
            action=result.action,
            remaining=None if math.isinf(result.remaining) else int(result.remaining),
            reset_time=result.reset_time,
            retry_after=result.retry_after,
            status_code=result.status_code,
            message=result.message,
            headers=result.headers,
            matched_rule_id=result.matched_rule.id if result.matched_rule else None,
            metadata=DecisionMetadata(
                algorithm=meta.algorithm,
                scope=meta.scope,
                key=meta.key,
                current_usage=meta.current_usage,
                limit=None if math.isinf(meta.limit) else meta.limit,
                window=meta.window,
            ),
        )
