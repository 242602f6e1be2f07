"""HTTP middleware for request correlation and access logging.

Every request gets a correlation ID bound into the structlog context so all
log lines emitted while serving it (including provider and token-accounting
logs) carry the same ``request_id``.
"""

import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.conduit.core.logging_config import bind_contextvars, clear_contextvars, get_logger

REQUEST_ID_HEADER = "X-Request-ID"

logger = get_logger(__name__)


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to the logging context and the response.

    An upstream ``X-Request-ID`` (load balancer, gateway) is reused; otherwise
    a UUID4 is generated.
    """

    async def dispatch(self, request: Request, call_next):
        # Context may survive across tasks; start every request clean.
        clear_contextvars()

        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
