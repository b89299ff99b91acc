from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from rate_engine.core.rate_limit import get_engine
from rate_engine.engine.service import RateLimitingService
from rate_engine.schemas.decisions import DecisionRequest, DecisionResponse

router = APIRouter(tags=["Decisions"])


@router.post("/decisions", response_model=DecisionResponse)
def create_decision(
    payload: DecisionRequest,
    engine: Annotated[RateLimitingService, Depends(get_engine)],
) -> DecisionResponse:
    """Evaluate a request against the active rules.

    Always answers 200: a denial is reported in the body through
    ``allowed``, ``status_code`` and ``headers`` for the caller to apply.
    """

    result = engine.check(payload.to_request())
    return DecisionResponse.from_result(result)
