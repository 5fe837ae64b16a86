from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import structlog

from studyrag.domain.ingestion.models import QuotaResult
from studyrag.domain.ingestion.ports import IDailyQuotaStore

logger = structlog.get_logger(__name__)

# KEYS[1] counter key; ARGV[1] limit; ARGV[2] ttl seconds.
# Returns {allowed, count}. The ceiling check and increment run as one step.
CHECK_AND_INCREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
if current >= limit then
  return {0, current}
end
local updated = redis.call('INCR', KEYS[1])
if updated == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
end
return {1, updated}
"""


def _result(allowed: bool, count: int, limit: int) -> QuotaResult:
    return QuotaResult(success=allowed, remaining=max(0, limit - count), count=count)


class InMemoryDailyQuotaStore(IDailyQuotaStore):
    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval_seconds: float = 60.0):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._counters: dict[str, tuple[int, float]] = {}
        self._sweep_interval_seconds = float(sweep_interval_seconds)
        self._last_sweep = 0.0

    async def check_and_increment(self, key: str, limit: int, ttl_seconds: int) -> QuotaResult:
        async with self._lock:
            now = self._clock()
            self._evict_expired(now)
            count = self._current(key, now)
            if count >= limit:
                return _result(False, count, limit)
            expires_at = self._counters[key][1] if count > 0 else now + ttl_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            return _result(True, count, limit)

    async def get_count(self, key: str) -> int:
        async with self._lock:
            return self._current(key, self._clock())

    def _evict_expired(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval_seconds:
            return
        self._last_sweep = now
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    def _current(self, key: str, now: float) -> int:
        row = self._counters.get(key)
        if row is None:
            return 0
        count, expires_at = row
        if expires_at <= now:
            self._counters.pop(key, None)
            return 0
        return count


class RedisDailyQuotaStore(IDailyQuotaStore):
    def __init__(self, redis_client: Any):
        self._redis = redis_client
        self._script = redis_client.register_script(CHECK_AND_INCREMENT_SCRIPT)

    async def check_and_increment(self, key: str, limit: int, ttl_seconds: int) -> QuotaResult:
        allowed, count = await self._script(keys=[key], args=[int(limit), int(ttl_seconds)])
        return _result(bool(int(allowed)), int(count), limit)

    async def get_count(self, key: str) -> int:
        raw = await self._redis.get(key)
        return int(raw or 0)
