from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from rate_engine.core.auth import verify_api_key
from rate_engine.core.rate_limit import enforce_rate_limit, get_engine
from rate_engine.engine.service import RateLimitingService
from rate_engine.schemas.stats import StatsResponse

# GET /stats is side-effect free: it is not admitted through the engine.
router = APIRouter(
    prefix="/stats",
    tags=["Stats"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("", response_model=StatsResponse)
def get_stats(engine: Annotated[RateLimitingService, Depends(get_engine)]) -> StatsResponse:
    """Current counters, top consumers/endpoints, per-rule stats and the hourly series."""

    return StatsResponse.from_snapshot(engine.get_stats())


@router.post(
    "/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(enforce_rate_limit)],
)
def reset_stats(engine: Annotated[RateLimitingService, Depends(get_engine)]) -> Response:
    engine.reset_stats()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
