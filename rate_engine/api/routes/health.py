from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from rate_engine.core.rate_limit import get_engine
from rate_engine.engine.service import RateLimitingService

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(engine: Annotated[RateLimitingService, Depends(get_engine)]) -> dict:
    """Liveness check.

    Returns:
        dict: ``status`` plus the number of loaded rules and tracked keys.
    """

    return {
        "status": "ok",
        "rules": len(engine.registry),
        "tracked_keys": len(engine.store),
        "cleanup_running": engine.scheduler.running,
    }
