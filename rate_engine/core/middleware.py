"""HTTP middleware for request ID propagation.

Every request/response pair carries a correlation id: the incoming
``X-Request-ID`` (header name configurable via ``LOG_REQUEST_ID_HEADER``)
or a generated UUID. The id is stored in contextvars for the lifetime of
the request so every log line emitted while serving it is tagged.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from rate_engine.core.config import settings
from rate_engine.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Tag the request with a correlation id and echo it on the response.

    Also adds ``X-Request-Duration-ms`` with the wall time spent serving the
    request.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}")
    return response
