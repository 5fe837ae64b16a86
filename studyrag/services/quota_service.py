from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from studyrag.core.settings import settings
from studyrag.domain.exceptions import QuotaCheckError, QuotaExceededError
from studyrag.domain.ingestion.models import QuotaResult, RateLimitDecision
from studyrag.domain.ingestion.ports import IDailyQuotaStore, IProfileRepository, IRateWindowStore
from studyrag.domain.ingestion.types import SubscriptionTier
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)


class QuotaStatus(BaseModel):
    can_send: bool
    usage: int
    limit: int
    remaining: int
    is_pro: bool


class AccessLimits(BaseModel):
    daily_limit_free: int
    daily_limit_pro: int
    rate_limit_llm_free_requests: int
    rate_limit_llm_free_window_seconds: int
    rate_limit_llm_pro_requests: int
    rate_limit_llm_pro_window_seconds: int
    max_file_size_mb: int


class QuotaCheck(BaseModel):
    allowed: bool
    usage: int
    limit: int
    remaining: int
    is_pro: bool
    bypassed: bool = False


def daily_quota_key(user_id: str, now: datetime) -> str:
    return f"usage:llm:{user_id}:{now.astimezone(timezone.utc).strftime('%Y-%m-%d')}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaService:
    """
    Daily LLM quota plus a per-tier LLM request window.

    The daily counter is consumed first; the window limiter only sees requests
    that passed it. Any store failure fails closed with QUOTA_ERROR.
    """

    def __init__(
        self,
        *,
        quota_store: IDailyQuotaStore,
        window_store: IRateWindowStore,
        profiles: IProfileRepository,
        clock: Callable[[], datetime] = _utc_now,
        enabled: Optional[bool] = None,
    ):
        self.quota_store = quota_store
        self.window_store = window_store
        self.profiles = profiles
        self._clock = clock
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else bool(enabled)

    async def resolve_tier(self, user_id: str) -> SubscriptionTier:
        status = await self.profiles.get_subscription_status(user_id)
        if str(status or "").strip().lower() in settings.pro_subscription_statuses:
            return SubscriptionTier.PRO
        return SubscriptionTier.FREE

    @staticmethod
    def daily_limit(tier: SubscriptionTier) -> int:
        if tier == SubscriptionTier.PRO:
            return int(settings.LLM_LIMIT_DAILY_PRO)
        return int(settings.LLM_LIMIT_DAILY_FREE)

    @staticmethod
    def window_limit(tier: SubscriptionTier) -> tuple[int, int]:
        if tier == SubscriptionTier.PRO:
            return int(settings.RATE_LIMIT_LLM_PRO_REQUESTS), int(settings.RATE_LIMIT_LLM_PRO_WINDOW_SECONDS)
        return int(settings.RATE_LIMIT_LLM_FREE_REQUESTS), int(settings.RATE_LIMIT_LLM_FREE_WINDOW_SECONDS)

    async def check_and_increment(self, user_id: str, limit: int) -> QuotaResult:
        """Atomic consume-or-reject on today's counter for ``user_id``."""
        key = daily_quota_key(user_id, self._clock())
        return await self.quota_store.check_and_increment(
            key, int(limit), int(settings.QUOTA_COUNTER_TTL_SECONDS)
        )

    async def enforce(self, user_id: str) -> QuotaCheck:
        if not self.enabled:
            emit_event(logger, "quota_gate_bypass", user_id=user_id, reason="rate_limit_disabled")
            return QuotaCheck(allowed=True, usage=0, limit=0, remaining=0, is_pro=False, bypassed=True)

        try:
            tier = await self.resolve_tier(user_id)
            limit = self.daily_limit(tier)
            result = await self.check_and_increment(user_id, limit)
            window: Optional[RateLimitDecision] = None
            if result.success:
                window_requests, window_seconds = self.window_limit(tier)
                window = await self.window_store.hit(
                    f"ratelimit:llm:{tier.value}:{user_id}", window_requests, window_seconds
                )
        except Exception as exc:
            emit_event(logger, "quota_check_failed", level="error", user_id=user_id, error=compact_error(exc))
            raise QuotaCheckError() from exc

        is_pro = tier == SubscriptionTier.PRO
        if not result.success:
            emit_event(logger, "daily_quota_exceeded", level="warning", user_id=user_id, count=result.count, limit=limit)
            raise QuotaExceededError(
                f"Daily limit reached ({result.count}/{limit}). Please upgrade to Pro for more.",
                details={"usage": result.count, "limit": limit},
            )
        if window is not None and not window.allowed:
            emit_event(
                logger,
                "llm_window_limit_exceeded",
                level="warning",
                user_id=user_id,
                retry_after_seconds=window.retry_after_seconds,
            )
            raise QuotaExceededError(
                "Too many requests in this time window. Please try again later.",
                details={"retry_after_seconds": window.retry_after_seconds},
            )

        return QuotaCheck(
            allowed=True,
            usage=result.count,
            limit=limit,
            remaining=result.remaining,
            is_pro=is_pro,
        )

    async def status(self, user_id: str) -> QuotaStatus:
        tier = await self.resolve_tier(user_id)
        limit = self.daily_limit(tier)
        usage = await self.quota_store.get_count(daily_quota_key(user_id, self._clock()))
        return QuotaStatus(
            can_send=usage < limit,
            usage=usage,
            limit=limit,
            remaining=max(0, limit - usage),
            is_pro=tier == SubscriptionTier.PRO,
        )

    @staticmethod
    def limits() -> AccessLimits:
        return AccessLimits(
            daily_limit_free=settings.LLM_LIMIT_DAILY_FREE,
            daily_limit_pro=settings.LLM_LIMIT_DAILY_PRO,
            rate_limit_llm_free_requests=settings.RATE_LIMIT_LLM_FREE_REQUESTS,
            rate_limit_llm_free_window_seconds=settings.RATE_LIMIT_LLM_FREE_WINDOW_SECONDS,
            rate_limit_llm_pro_requests=settings.RATE_LIMIT_LLM_PRO_REQUESTS,
            rate_limit_llm_pro_window_seconds=settings.RATE_LIMIT_LLM_PRO_WINDOW_SECONDS,
            max_file_size_mb=settings.MAX_UPLOAD_SIZE_MB,
        )
