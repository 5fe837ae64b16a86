from __future__ import annotations

import structlog
from fastapi import Header, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from studyrag.api.v1.errors import ApiError
from studyrag.core.settings import settings
from studyrag.domain.ingestion.models import CallerContext
from studyrag.infrastructure.observability.context_vars import bind_context, user_id_ctx

logger = structlog.get_logger(__name__)

USER_ID_HEADER = "X-User-ID"

bearer_auth = HTTPBearer(
    auto_error=False,
    scheme_name="BearerAuth",
    description="Authorization Bearer token. Use SERVICE_SECRET as token value.",
)
service_secret_auth = APIKeyHeader(
    name="X-Service-Secret",
    auto_error=False,
    scheme_name="ServiceSecretAuth",
    description="Service secret header for calls from the web tier.",
)


async def require_service_auth(
    bearer_credentials: HTTPAuthorizationCredentials | None = Security(bearer_auth),
    x_service_secret: str | None = Security(service_secret_auth),
) -> None:
    """
    Enforces API auth only in deployed environments.
    Accepts either Bearer token or X-Service-Secret using the SERVICE_SECRET value.
    """
    expected = _expected_secret()
    if not settings.is_deployed_environment:
        logger.debug("service_auth_bypass", auth_mode="local_bypass")
        return

    if not expected or expected == "development-secret":
        raise ApiError(
            status_code=500,
            code="AUTH_MISCONFIGURED",
            message="Service secret must be configured in deployed environments",
        )

    bearer = None
    if bearer_credentials and str(bearer_credentials.scheme or "").lower() == "bearer":
        bearer = (bearer_credentials.credentials or "").strip() or None
    header_secret = x_service_secret.strip() if x_service_secret else None
    candidate = bearer or header_secret
    caller_auth_mode = "bearer" if bearer else ("x_service_secret" if header_secret else "missing")

    if candidate != expected:
        logger.warning("service_auth_failed", caller_auth_mode=caller_auth_mode)
        raise ApiError(
            status_code=401,
            code="UNAUTHORIZED",
            message="Unauthorized",
            details="Missing or invalid service token",
        )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def _expected_secret() -> str:
    return str(settings.SERVICE_SECRET or "").strip()


def is_trusted_service_call(request: Request) -> bool:
    """
    Same credential check as require_service_auth, read straight from the headers
    for middleware that runs before dependency resolution. Always true outside
    deployed environments, where service auth is bypassed.
    """
    if not settings.is_deployed_environment:
        return True
    expected = _expected_secret()
    if not expected or expected == "development-secret":
        return False
    scheme, _, token = str(request.headers.get("authorization") or "").partition(" ")
    bearer = token.strip() if scheme.lower() == "bearer" else ""
    header_secret = str(request.headers.get("x-service-secret") or "").strip()
    return (bearer or header_secret) == expected


async def require_caller(
    request: Request,
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> CallerContext:
    """Identity of the end user, asserted by the upstream web tier."""
    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise ApiError(
            status_code=401,
            code="UNAUTHORIZED",
            message="Unauthorized",
            details=f"Missing required {USER_ID_HEADER} header",
        )
    user_id_ctx.set(user_id)
    bind_context(user_id=user_id)
    return CallerContext(user_id=user_id, client_ip=client_ip(request))
