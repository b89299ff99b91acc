from __future__ import annotations

from rate_engine.api.routes.decisions import router as decisions_router
from rate_engine.api.routes.health import router as health_router
from rate_engine.api.routes.rules import router as rules_router
from rate_engine.api.routes.state import router as state_router
from rate_engine.api.routes.stats import router as stats_router

__all__ = [
    "decisions_router",
    "health_router",
    "rules_router",
    "state_router",
    "stats_router",
]
