"""Application middleware: request-scoped logging context."""

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id for every log line emitted while serving a request.

    Categorization runs synchronously inside record creation and bulk apply
    calls, so engine events (rule applied, regex failure...) end up tagged
    with the request that triggered them.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            structlog.contextvars.bind_contextvars(duration_ms=round(duration_ms, 2))

        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
        )
        structlog.contextvars.clear_contextvars()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
