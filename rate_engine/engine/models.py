"""Domain models for the rate limiting engine.

Rules are pydantic models because they sit on the configuration boundary and
must be validated on insert and update. Requests, results and per-key state
are plain dataclasses: they live on the hot decision path and never cross a
trust boundary without going through an API schema first.
"""

from __future__ import annotations

import math
import re
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from pydantic import BaseModel, Field, field_validator

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def now_ms() -> float:
    """Wall-clock time in epoch milliseconds."""

    return time.time() * 1000.0


class Algorithm(str, Enum):
    """Quota enforcement algorithms."""

    TOKEN_BUCKET = "token_bucket"
    SLIDING_WINDOW = "sliding_window"
    FIXED_WINDOW = "fixed_window"
    LEAKY_BUCKET = "leaky_bucket"


class Scope(str, Enum):
    """Identity dimension a quota is keyed on."""

    GLOBAL = "global"
    USER = "user"
    IP = "ip"
    API_KEY = "api_key"
    ENDPOINT = "endpoint"


class Action(str, Enum):
    """What the caller should do with a request."""

    ALLOW = "allow"
    DENY = "deny"
    THROTTLE = "throttle"
    QUEUE = "queue"


class MalformedConditionPolicy(str, Enum):
    """Treatment of rule conditions that cannot be evaluated."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class TimeRange(BaseModel):
    """Inclusive local time-of-day range in ``HH:MM`` format.

    A range whose start is later than its end wraps past midnight.
    """

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not _HHMM_RE.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value


class RuleConditions(BaseModel):
    """Optional filters restricting which requests a rule applies to."""

    user_roles: list[str] | None = None
    endpoints: list[str] | None = None
    methods: list[str] | None = None
    ip_ranges: list[str] | None = None
    time_ranges: list[TimeRange] | None = None

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [m.upper() for m in value]


class CustomResponse(BaseModel):
    """Response override applied when the rule denies a request."""

    status: int = Field(429, ge=400, le=599)
    message: str = "Rate limit exceeded"
    headers: dict[str, str] = Field(default_factory=dict)


class RuleActions(BaseModel):
    """Actions attached to a rule.

    Attributes:
        on_limit: Action reported when an allowed request uses the last unit.
        on_exceed: Action reported when the rule denies a request.
        custom_response: Optional status/message/headers for denials.
    """

    on_limit: Action = Action.THROTTLE
    on_exceed: Action = Action.DENY
    custom_response: CustomResponse | None = None


class RateLimitRule(BaseModel):
    """Configuration for a single rate limit rule.

    Attributes:
        id: Unique rule identifier.
        name: Human-readable name.
        algorithm: Which algorithm enforces the quota.
        scope: What the quota is keyed on.
        limit: Requests allowed per window (queue size for leaky bucket).
        window: Window length in milliseconds.
        burst: Token bucket capacity (defaults to limit).
        refill_rate: Token bucket refill in tokens/second
            (defaults to limit per window).
        priority: Evaluation order; lower numbers are evaluated first.
        enabled: Disabled rules never match.
        conditions: Optional request filters.
        actions: Actions and custom response for this rule.
    """

    id: str = Field(min_length=1)
    name: str = "Custom Rule"
    algorithm: Algorithm
    scope: Scope
    limit: int = Field(gt=0)
    window: int = Field(gt=0, description="Window length in milliseconds")
    burst: int | None = Field(default=None, gt=0)
    refill_rate: float | None = Field(default=None, gt=0)
    priority: int = 10
    enabled: bool = True
    conditions: RuleConditions | None = None
    actions: RuleActions = Field(default_factory=RuleActions)

    @property
    def capacity(self) -> int:
        """Token bucket capacity."""
        return self.burst or self.limit

    @property
    def default_rate(self) -> float:
        """Units per second implied by ``limit`` over ``window``."""
        return self.limit / (self.window / 1000.0)


def build_rule(**config: Any) -> RateLimitRule:
    """Build a rule from partial configuration, filling in defaults.

    Unspecified fields fall back to a global sliding window of 100 requests
    per minute with priority 10.
    """

    return RateLimitRule.model_validate(rule_defaults(config))


def rule_defaults(config: Mapping[str, Any]) -> dict[str, Any]:
    """Merge partial rule configuration over the default rule fields."""

    config = dict(config)
    overrides = config.pop("actions", None) or {}
    if isinstance(overrides, RuleActions):
        overrides = overrides.model_dump(exclude_unset=True)
    actions: dict[str, Any] = {"on_limit": Action.THROTTLE, "on_exceed": Action.DENY}
    actions.update(overrides)
    data: dict[str, Any] = {
        "id": f"rule_{int(now_ms())}",
        "name": "Custom Rule",
        "algorithm": Algorithm.SLIDING_WINDOW,
        "scope": Scope.GLOBAL,
        "limit": 100,
        "window": 60000,
        "priority": 10,
        "enabled": True,
    }
    data.update(config)
    data["actions"] = actions
    return data


@dataclass
class RateLimitRequest:
    """Normalized description of an inbound request."""

    ip_address: str
    endpoint: str
    method: str
    id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    user_id: str | None = None
    api_key: str | None = None
    role: str | None = None
    user_agent: str | None = None
    timestamp: float = field(default_factory=now_ms)
    headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @property
    def consumer(self) -> str:
        """Identity used for per-consumer statistics."""
        return self.user_id or self.ip_address


@dataclass(frozen=True)
class ResultMetadata:
    """Diagnostic context describing which quota produced a result."""

    algorithm: Algorithm | None
    scope: Scope
    key: str
    current_usage: float
    limit: float
    window: int


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        action: What the caller should do with the request.
        remaining: Units left before the quota is exhausted.
        reset_time: Epoch milliseconds when the quota frees up.
        retry_after: Seconds to wait before retrying (denials only).
        headers: Response headers to attach.
        matched_rule: Rule that produced this result, if any.
        status_code: HTTP status to respond with when denied.
        message: Error message to respond with when denied.
        metadata: Algorithm, scope, key and usage details.
    """

    allowed: bool
    action: Action
    remaining: float
    reset_time: float
    metadata: ResultMetadata
    retry_after: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    matched_rule: RateLimitRule | None = None
    status_code: int = 429
    message: str | None = None


def default_allow_result(now: float) -> RateLimitResult:
    """Result used when no rule applies to a request."""

    return RateLimitResult(
        allowed=True,
        action=Action.ALLOW,
        remaining=math.inf,
        reset_time=now + 60000,
        metadata=ResultMetadata(
            algorithm=None,
            scope=Scope.GLOBAL,
            key="default",
            current_usage=0,
            limit=math.inf,
            window=60000,
        ),
        status_code=200,
    )


@dataclass
class TokenBucketState:
    tokens: float
    capacity: int
    refill_rate: float
    last_refill: float


@dataclass
class WindowEntry:
    timestamp: float
    count: int


@dataclass
class SlidingWindowState:
    entries: deque[WindowEntry] = field(default_factory=deque)


@dataclass
class FixedWindowState:
    count: int
    window_start: float


@dataclass
class QueuedRequest:
    timestamp: float
    request_id: str


@dataclass
class LeakyBucketState:
    leak_rate: float
    last_leak: float
    queue: deque[QueuedRequest] = field(default_factory=deque)


RateLimitState = Union[TokenBucketState, SlidingWindowState, FixedWindowState, LeakyBucketState]
