import logging
from contextvars import ContextVar
from typing import Optional
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

CORRELATION_ID_HEADER = "X-Correlation-ID"

logger = structlog.get_logger(__name__)


def get_correlation_id() -> str:
    """Returns the current correlation ID. Defaults to 'unknown' if not set."""
    return correlation_id_ctx.get() or "unknown"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Extracts the Correlation ID from the request headers (or mints one)
    and sets it in the ContextVar for the duration of the request.
    """

    async def dispatch(self, request: Request, call_next):
        incoming_id = (
            request.headers.get("x-correlation-id")
            or request.headers.get("x-trace-id")
            or request.headers.get("x-request-id")
        )

        if not incoming_id:
            incoming_id = str(uuid4())
            log_method = logger.debug if request.url.path.startswith("/health") else logger.info
            log_method("trace_header_missing_generated", new_trace_id=incoming_id, path=request.url.path)

        token = correlation_id_ctx.set(incoming_id)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = incoming_id
            return response
        finally:
            correlation_id_ctx.reset(token)


class CorrelationLogFilter(logging.Filter):
    """
    Logging filter to inject correlation ID into log records.
    """

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True
