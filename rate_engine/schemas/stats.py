"""Pydantic schemas for statistics responses."""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

from rate_engine.engine.stats_collector import StatsSnapshot


class TopEntryOut(BaseModel):
    key: str
    requests: int
    denied: int


class RuleStatsOut(BaseModel):
    triggered: int
    allowed: int
    denied: int
    throttled: int
    queued: int


class TimeSeriesPointOut(BaseModel):
    timestamp: int = Field(..., description="Start of the hour, epoch milliseconds.")
    requests: int
    denied: int
    throttled: int


class StatsResponse(BaseModel):
    """Aggregated decision statistics."""

    total_requests: int
    allowed_requests: int
    denied_requests: int
    throttled_requests: int
    queued_requests: int
    average_response_time: float = Field(..., description="Mean decision latency in milliseconds.")
    top_users: List[TopEntryOut]
    top_endpoints: List[TopEntryOut]
    rule_stats: Dict[str, RuleStatsOut]
    time_series: List[TimeSeriesPointOut]

    @classmethod
    def from_snapshot(cls, snapshot: StatsSnapshot) -> "StatsResponse":
        return cls(
            total_requests=snapshot.total_requests,
            allowed_requests=snapshot.allowed_requests,
            denied_requests=snapshot.denied_requests,
            throttled_requests=snapshot.throttled_requests,
            queued_requests=snapshot.queued_requests,
            average_response_time=snapshot.average_response_time,
            top_users=[TopEntryOut(**vars(e)) for e in snapshot.top_users],
            top_endpoints=[TopEntryOut(**vars(e)) for e in snapshot.top_endpoints],
            rule_stats={k: RuleStatsOut(**vars(v)) for k, v in snapshot.rule_stats.items()},
            time_series=[TimeSeriesPointOut(**vars(p)) for p in snapshot.time_series],
        )


class StateClearedResponse(BaseModel):
    removed: int = Field(..., description="Number of per-key state entries removed.")
