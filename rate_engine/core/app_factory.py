"""Application factory for the FastAPI app.

Builds the engine, middleware, handlers and routers in one place so tests
can create isolated app instances.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from rate_engine.api.routes import (
    decisions_router,
    health_router,
    rules_router,
    state_router,
    stats_router,
)
from rate_engine.core.config import EngineSettings, settings
from rate_engine.core.exception_handlers import setup_exception_handlers
from rate_engine.core.logging import configure_logging
from rate_engine.core.middleware import request_id_middleware
from rate_engine.core.openapi import TAGS_METADATA, apply_openapi_customizations
from rate_engine.engine.service import RateLimitingService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    engine: RateLimitingService = app.state.engine
    engine.start()
    try:
        yield
    finally:
        engine.shutdown()


def create_app(
    engine_settings: EngineSettings | None = None,
    engine: RateLimitingService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine_settings: Settings for a new engine; defaults to ``settings.engine``.
        engine: Pre-built engine to serve instead of a new one.

    Returns:
        Configured app. The engine is available as ``app.state.engine``.
    """
    configure_logging(settings.log)

    app = FastAPI(
        title="Rate Engine",
        description=(
            "Multi-algorithm rate limiting and admission control. Evaluates "
            "requests against prioritised rules (token bucket, sliding window, "
            "fixed window, leaky bucket) and reports allow/deny/throttle/queue "
            "decisions with standard X-RateLimit headers."
        ),
        version="0.1.0",
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )
    app.state.engine = engine or RateLimitingService(engine_settings or settings.engine)

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(decisions_router, prefix="/v1")
    app.include_router(rules_router, prefix="/v1")
    app.include_router(stats_router, prefix="/v1")
    app.include_router(state_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
