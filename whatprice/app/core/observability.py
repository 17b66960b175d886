"""
Observability Middleware.

Tags every request with a correlation ID and emits one access log line
per request on the "whatprice.http" logger.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"

# Root of the application logger tree ("whatprice.billing", "whatprice.views", ...)
logger = logging.getLogger("whatprice")
access_logger = logging.getLogger("whatprice.http")


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the application logger."""
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        logger.addHandler(handler)


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(elapsed_ms)

        context = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
        }

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        access_logger.log(level, "%s %s -> %s", request.method, request.url.path,
                          response.status_code, extra=context)

        return response
