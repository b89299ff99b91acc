from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from rate_engine.core.auth import verify_api_key
from rate_engine.core.rate_limit import enforce_rate_limit, get_engine
from rate_engine.engine.service import RateLimitingService
from rate_engine.schemas.stats import StateClearedResponse

router = APIRouter(
    prefix="/state",
    tags=["State"],
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit)],
)


@router.delete("", response_model=StateClearedResponse)
def clear_state(
    engine: Annotated[RateLimitingService, Depends(get_engine)],
    key: Annotated[str | None, Query(description="State key to clear; all state when omitted.")] = None,
) -> StateClearedResponse:
    """Drop per-key algorithm state, e.g. to lift a limit on one client."""

    return StateClearedResponse(removed=engine.clear_state(key))
