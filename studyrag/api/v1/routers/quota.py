import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from studyrag.api.v1.auth import require_caller, require_service_auth
from studyrag.api.v1.dependencies import get_quota_service
from studyrag.api.v1.errors import ERROR_RESPONSES, ApiError
from studyrag.domain.ingestion.models import CallerContext
from studyrag.infrastructure.observability.ingestion_logging import compact_error
from studyrag.services.quota_service import AccessLimits, QuotaService, QuotaStatus

logger = structlog.get_logger(__name__)
router = APIRouter(
    prefix="/quota",
    tags=["quota"],
    dependencies=[Depends(require_service_auth)],
    responses={k: ERROR_RESPONSES[k] for k in (401, 429, 500)},
)


class QuotaResponse(BaseModel):
    status: QuotaStatus
    limits: AccessLimits


@router.get("", response_model=QuotaResponse)
async def get_quota(
    caller: CallerContext = Depends(require_caller),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """Read-only usage snapshot; does not consume quota."""
    try:
        status = await quota_service.status(caller.user_id)
    except Exception as exc:
        logger.error("quota_status_failed", error=compact_error(exc))
        raise ApiError(status_code=503, code="QUOTA_ERROR", message="Unable to verify usage quota")
    return QuotaResponse(status=status, limits=quota_service.limits())
