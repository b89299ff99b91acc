"""Rate limiting algorithms.

Each algorithm is a state-transition function: it consumes the current state
of one key, mutates it in place and returns a :class:`RateLimitResult`.
Callers must hold the key's lock for the duration of the call.

Time is expressed in epoch milliseconds throughout; ``retry_after`` is the
only value reported in seconds.

Algorithms:
    - Token bucket: capped reservoir refilled continuously, one token per
      request. Allows bursts up to the capacity.
    - Sliding window: counts requests inside a window ending "now".
      Requests less than a second apart share one entry to bound memory.
    - Fixed window: counter reset at exact window boundaries.
    - Leaky bucket: FIFO queue drained at a constant rate; admission depends
      on queue occupancy, not on the burst pattern.
"""

from __future__ import annotations

import math
from typing import assert_never

from rate_engine.engine.models import (
    Action,
    Algorithm,
    FixedWindowState,
    LeakyBucketState,
    QueuedRequest,
    RateLimitRequest,
    RateLimitResult,
    RateLimitRule,
    RateLimitState,
    ResultMetadata,
    SlidingWindowState,
    TokenBucketState,
    WindowEntry,
)
from rate_engine.adapters.state_store.base import StateEntry

# Allowed requests closer than this to the newest entry are merged into it.
SLIDING_WINDOW_COALESCE_MS = 1000

ALGORITHM_HEADER_NAMES: dict[Algorithm, str] = {
    Algorithm.TOKEN_BUCKET: "token-bucket",
    Algorithm.SLIDING_WINDOW: "sliding-window",
    Algorithm.FIXED_WINDOW: "fixed-window",
    Algorithm.LEAKY_BUCKET: "leaky-bucket",
}

_STATE_TYPES: dict[Algorithm, type] = {
    Algorithm.TOKEN_BUCKET: TokenBucketState,
    Algorithm.SLIDING_WINDOW: SlidingWindowState,
    Algorithm.FIXED_WINDOW: FixedWindowState,
    Algorithm.LEAKY_BUCKET: LeakyBucketState,
}


def new_state(rule: RateLimitRule, now: float) -> RateLimitState:
    """Build zero state for ``rule``.

    A token bucket starts full; every other algorithm starts empty.
    """
    algorithm = rule.algorithm
    if algorithm is Algorithm.TOKEN_BUCKET:
        return TokenBucketState(
            tokens=float(rule.capacity),
            capacity=rule.capacity,
            refill_rate=rule.refill_rate or rule.default_rate,
            last_refill=now,
        )
    if algorithm is Algorithm.SLIDING_WINDOW:
        return SlidingWindowState()
    if algorithm is Algorithm.FIXED_WINDOW:
        return FixedWindowState(count=0, window_start=now)
    if algorithm is Algorithm.LEAKY_BUCKET:
        return LeakyBucketState(leak_rate=rule.default_rate, last_leak=now)
    assert_never(algorithm)


def evaluate(
    rule: RateLimitRule,
    entry: StateEntry,
    request: RateLimitRequest,
    now: float,
) -> RateLimitResult:
    """Apply ``rule``'s algorithm to the state held in ``entry``.

    If the rule switched algorithm since the state was created, the state is
    replaced with fresh state for the new algorithm.
    """
    if not isinstance(entry.state, _STATE_TYPES[rule.algorithm]):
        entry.state = new_state(rule, now)

    state = entry.state
    algorithm = rule.algorithm
    if algorithm is Algorithm.TOKEN_BUCKET:
        assert isinstance(state, TokenBucketState)
        return check_token_bucket(rule, state, entry.key, now)
    if algorithm is Algorithm.SLIDING_WINDOW:
        assert isinstance(state, SlidingWindowState)
        return check_sliding_window(rule, state, entry.key, now)
    if algorithm is Algorithm.FIXED_WINDOW:
        assert isinstance(state, FixedWindowState)
        return check_fixed_window(rule, state, entry.key, now)
    if algorithm is Algorithm.LEAKY_BUCKET:
        assert isinstance(state, LeakyBucketState)
        return check_leaky_bucket(rule, state, request, entry.key, now)
    assert_never(algorithm)


def check_token_bucket(
    rule: RateLimitRule,
    state: TokenBucketState,
    key: str,
    now: float,
) -> RateLimitResult:
    """Refill proportionally to elapsed time, then spend one token if available."""

    # Capacity and rate track the live rule so updates apply immediately
    state.capacity = rule.capacity
    state.refill_rate = rule.refill_rate or rule.default_rate

    elapsed_s = max(0.0, now - state.last_refill) / 1000.0
    state.tokens = min(float(state.capacity), state.tokens + elapsed_s * state.refill_rate)
    state.last_refill = max(state.last_refill, now)

    allowed = state.tokens >= 1
    if allowed:
        state.tokens -= 1

    if state.tokens >= 1:
        reset_time = now
    else:
        reset_time = now + (1 - state.tokens) / state.refill_rate * 1000.0

    retry_after = None
    if not allowed:
        retry_after = math.ceil((1 - state.tokens) / state.refill_rate)

    return _build_result(
        rule,
        key,
        allowed=allowed,
        remaining=math.floor(state.tokens),
        current_usage=state.capacity - state.tokens,
        reset_time=reset_time,
        retry_after=retry_after,
    )


def check_sliding_window(
    rule: RateLimitRule,
    state: SlidingWindowState,
    key: str,
    now: float,
) -> RateLimitResult:
    """Count retained entries inside ``[now - window, now]`` against the limit."""

    entries = state.entries
    cutoff = now - rule.window
    while entries and entries[0].timestamp < cutoff:
        entries.popleft()

    current = sum(e.count for e in entries)
    allowed = current < rule.limit
    if allowed:
        last = entries[-1] if entries else None
        # Merging into a newer entry on clock skew keeps the deque sorted
        if last is not None and now - last.timestamp < SLIDING_WINDOW_COALESCE_MS:
            last.count += 1
        else:
            entries.append(WindowEntry(timestamp=now, count=1))
        current += 1

    reset_time = entries[0].timestamp + rule.window if entries else now + rule.window

    retry_after = None
    if not allowed:
        retry_after = max(0, math.ceil((reset_time - now) / 1000.0))

    return _build_result(
        rule,
        key,
        allowed=allowed,
        remaining=rule.limit - current,
        current_usage=current,
        reset_time=reset_time,
        retry_after=retry_after,
    )


def check_fixed_window(
    rule: RateLimitRule,
    state: FixedWindowState,
    key: str,
    now: float,
) -> RateLimitResult:
    """Count requests in the current fixed window.

    ``window_start`` only ever advances in whole multiples of ``window``, so
    the reset boundary is deterministic.
    """

    elapsed = now - state.window_start
    if elapsed >= rule.window:
        state.window_start += (elapsed // rule.window) * rule.window
        state.count = 0

    allowed = state.count < rule.limit
    if allowed:
        state.count += 1

    reset_time = state.window_start + rule.window

    retry_after = None
    if not allowed:
        retry_after = max(0, math.ceil((reset_time - now) / 1000.0))

    return _build_result(
        rule,
        key,
        allowed=allowed,
        remaining=rule.limit - state.count,
        current_usage=state.count,
        reset_time=reset_time,
        retry_after=retry_after,
    )


def drain_leaky_bucket(state: LeakyBucketState, now: float) -> None:
    """Leak queued items that left the bucket since ``last_leak``.

    The fractional part of the elapsed time is carried forward in
    ``last_leak``, so frequent checks do not stall the drain.
    """
    queue = state.queue
    if not queue:
        state.last_leak = max(state.last_leak, now)
        return

    elapsed_s = max(0.0, now - state.last_leak) / 1000.0
    leaked = math.floor(elapsed_s * state.leak_rate)
    if leaked <= 0:
        return
    if leaked >= len(queue):
        queue.clear()
        state.last_leak = max(state.last_leak, now)
        return
    for _ in range(leaked):
        queue.popleft()
    state.last_leak += leaked / state.leak_rate * 1000.0


def check_leaky_bucket(
    rule: RateLimitRule,
    state: LeakyBucketState,
    request: RateLimitRequest,
    key: str,
    now: float,
) -> RateLimitResult:
    """Drain the queue at the leak rate, then enqueue if there is room."""

    state.leak_rate = rule.default_rate
    drain_leaky_bucket(state, now)

    queue = state.queue
    allowed = len(queue) < rule.limit
    if allowed:
        queue.append(QueuedRequest(timestamp=now, request_id=request.id))

    if queue:
        reset_time = state.last_leak + len(queue) / state.leak_rate * 1000.0
    else:
        reset_time = now

    retry_after = None
    if not allowed:
        retry_after = math.ceil(len(queue) / state.leak_rate)

    return _build_result(
        rule,
        key,
        allowed=allowed,
        remaining=rule.limit - len(queue),
        current_usage=len(queue),
        reset_time=reset_time,
        retry_after=retry_after,
    )


def quota_limit(rule: RateLimitRule) -> int:
    """Largest ``remaining`` the rule can report.

    A token bucket holds at most ``capacity`` tokens, which differs from
    ``limit`` whenever ``burst`` is set.
    """
    if rule.algorithm is Algorithm.TOKEN_BUCKET:
        return rule.capacity
    return rule.limit


def build_headers(rule: RateLimitRule, remaining: int, reset_time: float) -> dict[str, str]:
    """Standard ``X-RateLimit-*`` response headers."""

    return {
        "X-RateLimit-Limit": str(quota_limit(rule)),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(math.ceil(reset_time / 1000.0)),
        "X-RateLimit-Algorithm": ALGORITHM_HEADER_NAMES[rule.algorithm],
    }


def _build_result(
    rule: RateLimitRule,
    key: str,
    *,
    allowed: bool,
    remaining: int,
    current_usage: float,
    reset_time: float,
    retry_after: int | None,
) -> RateLimitResult:
    limit = quota_limit(rule)
    remaining = max(0, min(limit, int(remaining)))

    if not allowed:
        action = rule.actions.on_exceed
    elif remaining == 0:
        action = rule.actions.on_limit
    else:
        action = Action.ALLOW

    return RateLimitResult(
        allowed=allowed,
        action=action,
        remaining=remaining,
        reset_time=reset_time,
        retry_after=retry_after,
        headers=build_headers(rule, remaining, reset_time),
        matched_rule=rule,
        status_code=200 if allowed else 429,
        metadata=ResultMetadata(
            algorithm=rule.algorithm,
            scope=rule.scope,
            key=key,
            current_usage=current_usage,
            limit=limit,
            window=rule.window,
        ),
    )
