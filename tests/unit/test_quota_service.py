import asyncio
from datetime import datetime, timezone

import pytest

from studyrag.core.settings import settings
from studyrag.domain.exceptions import IngestionErrorCode, QuotaCheckError, QuotaExceededError
from studyrag.domain.ingestion.models import RateLimitDecision
from studyrag.infrastructure.quota.daily_quota_store import InMemoryDailyQuotaStore
from studyrag.infrastructure.quota.rate_window_store import InMemoryRateWindowStore
from studyrag.services.quota_service import QuotaService, daily_quota_key

FIXED_NOW = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)


class _FakeProfiles:
    def __init__(self, statuses: dict[str, str | None] | None = None, fail: bool = False) -> None:
        self.statuses = statuses or {}
        self.fail = fail

    async def get_subscription_status(self, user_id: str):
        if self.fail:
            raise RuntimeError("profiles table unreachable")
        return self.statuses.get(user_id)


class _BrokenQuotaStore:
    async def check_and_increment(self, key, limit, ttl_seconds):
        raise ConnectionError("redis down")

    async def get_count(self, key):
        raise ConnectionError("redis down")


class _DenyingWindowStore:
    def __init__(self) -> None:
        self.keys: list[str] = []

    async def hit(self, key, limit, window_seconds):
        self.keys.append(key)
        return RateLimitDecision(allowed=False, limit=limit, remaining=0, retry_after_seconds=42)


def _service(profiles=None, quota_store=None, window_store=None, enabled=True) -> QuotaService:
    return QuotaService(
        quota_store=quota_store or InMemoryDailyQuotaStore(),
        window_store=window_store or InMemoryRateWindowStore(),
        profiles=profiles or _FakeProfiles(),
        clock=lambda: FIXED_NOW,
        enabled=enabled,
    )


def test_daily_quota_key_uses_utc_date() -> None:
    local = datetime(2026, 10, 19, 1, 30).astimezone()
    assert daily_quota_key("u1", FIXED_NOW) == "usage:llm:u1:2026-10-18"
    assert daily_quota_key("u1", local).startswith("usage:llm:u1:")


def test_free_user_blocked_after_daily_limit() -> None:
    service = _service(window_store=InMemoryRateWindowStore(clock=lambda: 0.0))
    original = settings.RATE_LIMIT_LLM_FREE_REQUESTS
    settings.RATE_LIMIT_LLM_FREE_REQUESTS = 100

    async def _run() -> None:
        checks = [await service.enforce("free-user") for _ in range(settings.LLM_LIMIT_DAILY_FREE)]
        assert [c.usage for c in checks] == list(range(1, settings.LLM_LIMIT_DAILY_FREE + 1))
        assert checks[-1].remaining == 0
        assert checks[-1].is_pro is False

        with pytest.raises(QuotaExceededError, match="Daily limit reached") as exc_info:
            await service.enforce("free-user")
        assert exc_info.value.code == IngestionErrorCode.QUOTA_EXCEEDED
        assert exc_info.value.to_payload()["isQuotaError"] is True

    try:
        asyncio.run(_run())
    finally:
        settings.RATE_LIMIT_LLM_FREE_REQUESTS = original


def test_pro_tier_resolved_from_subscription_status() -> None:
    service = _service(profiles=_FakeProfiles({"pro-user": "Trialing", "lapsed": "canceled"}))

    async def _run() -> None:
        pro = await service.enforce("pro-user")
        assert pro.is_pro is True
        assert pro.limit == settings.LLM_LIMIT_DAILY_PRO

        status = await service.status("lapsed")
        assert status.is_pro is False
        assert status.limit == settings.LLM_LIMIT_DAILY_FREE

    asyncio.run(_run())


def test_window_limiter_applies_after_daily_quota() -> None:
    window = _DenyingWindowStore()
    quota_store = InMemoryDailyQuotaStore()
    service = _service(quota_store=quota_store, window_store=window)

    async def _run() -> None:
        with pytest.raises(QuotaExceededError, match="time window") as exc_info:
            await service.enforce("free-user")
        assert exc_info.value.details == {"retry_after_seconds": 42}
        assert window.keys == ["ratelimit:llm:free:free-user"]
        assert await quota_store.get_count(daily_quota_key("free-user", FIXED_NOW)) == 1

    asyncio.run(_run())


def test_store_failure_fails_closed() -> None:
    service = _service(quota_store=_BrokenQuotaStore())

    async def _run() -> None:
        with pytest.raises(QuotaCheckError) as exc_info:
            await service.enforce("u1")
        assert exc_info.value.code == IngestionErrorCode.QUOTA_ERROR
        assert exc_info.value.is_quota_error is True

    asyncio.run(_run())


def test_profile_lookup_failure_fails_closed() -> None:
    service = _service(profiles=_FakeProfiles(fail=True))

    async def _run() -> None:
        with pytest.raises(QuotaCheckError):
            await service.enforce("u1")

    asyncio.run(_run())


def test_disabled_gate_bypasses_stores() -> None:
    service = _service(quota_store=_BrokenQuotaStore(), enabled=False)

    async def _run() -> None:
        check = await service.enforce("u1")
        assert check.allowed is True
        assert check.bypassed is True

    asyncio.run(_run())


def test_status_is_read_only() -> None:
    quota_store = InMemoryDailyQuotaStore()
    service = _service(quota_store=quota_store)

    async def _run() -> None:
        await service.enforce("u1")
        first = await service.status("u1")
        second = await service.status("u1")
        assert first == second
        assert first.usage == 1
        assert first.remaining == settings.LLM_LIMIT_DAILY_FREE - 1
        assert first.can_send is True

    asyncio.run(_run())


def test_limits_reflect_configuration() -> None:
    limits = QuotaService.limits()

    assert limits.daily_limit_free == settings.LLM_LIMIT_DAILY_FREE
    assert limits.daily_limit_pro == settings.LLM_LIMIT_DAILY_PRO
    assert limits.max_file_size_mb == settings.MAX_UPLOAD_SIZE_MB
