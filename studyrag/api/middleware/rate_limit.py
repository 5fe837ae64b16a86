import structlog
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from studyrag.api.v1.auth import USER_ID_HEADER, client_ip, is_trusted_service_call
from studyrag.api.v1.errors import error_body
from studyrag.core.settings import settings
from studyrag.infrastructure.observability.ingestion_logging import compact_error

EXEMPT_PATHS = {"/health", "/openapi.json"}

logger = structlog.get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window request limiter applied before any handler runs.
    A user id gets the authenticated ceiling keyed by user only when the request
    also carries the service secret, since X-User-ID is asserted by the web tier.
    Everything else is keyed by client IP with the public ceiling.
    """

    @staticmethod
    def _resolve_bucket(request: Request) -> tuple[str, int, int]:
        user_id = str(request.headers.get(USER_ID_HEADER) or "").strip()
        if user_id and is_trusted_service_call(request):
            return (
                f"ratelimit:auth:{user_id}",
                int(settings.RATE_LIMIT_AUTH_REQUESTS),
                int(settings.RATE_LIMIT_AUTH_WINDOW_SECONDS),
            )
        return (
            f"ratelimit:public:{client_ip(request)}",
            int(settings.RATE_LIMIT_PUBLIC_REQUESTS),
            int(settings.RATE_LIMIT_PUBLIC_WINDOW_SECONDS),
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or path in EXEMPT_PATHS or path.startswith("/docs"):
            return await call_next(request)

        container = getattr(request.app.state, "container", None)
        if container is None:
            return await call_next(request)

        key, limit, window_seconds = self._resolve_bucket(request)
        try:
            decision = await container.window_store.hit(key, limit, window_seconds)
        except Exception as exc:
            # Request limiting fails open; the LLM quota gate still fails closed.
            logger.warning("http_rate_limit_store_failed", path=path, error=compact_error(exc))
            return await call_next(request)

        if not decision.allowed:
            logger.warning(
                "http_rate_limited",
                path=path,
                bucket=key.split(":", 2)[1],
                retry_after_seconds=decision.retry_after_seconds,
            )
            return JSONResponse(
                status_code=429,
                content=error_body(
                    "RATE_LIMITED",
                    "Too many requests. Please try again later.",
                    {"retry_after_seconds": decision.retry_after_seconds},
                ),
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
