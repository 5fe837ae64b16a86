from __future__ import annotations

import asyncio
import math
import time
import uuid
from collections import deque
from typing import Any, Callable

from studyrag.domain.ingestion.models import RateLimitDecision
from studyrag.domain.ingestion.ports import IRateWindowStore

# KEYS[1] sorted set; ARGV: now_ms, window_ms, limit, member.
# Prunes expired hits, then admits and records the hit only if under the limit.
# Returns {allowed, count, oldest_ms}.
SLIDING_WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', KEYS[1], 0, now - window)
local count = redis.call('ZCARD', KEYS[1])
if count >= limit then
  local oldest = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
  return {0, count, tonumber(oldest[2] or now)}
end
redis.call('ZADD', KEYS[1], now, ARGV[4])
redis.call('PEXPIRE', KEYS[1], window)
return {1, count + 1, now}
"""


def _retry_after(oldest_ms: float, window_ms: float, now_ms: float) -> int:
    return max(1, int(math.ceil((oldest_ms + window_ms - now_ms) / 1000.0)))


class InMemoryRateWindowStore(IRateWindowStore):
    """Per-process sliding windows; idle keys are swept so the map stays bounded."""

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval_seconds: float = 60.0):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._hits: dict[str, deque[float]] = {}
        self._windows_ms: dict[str, float] = {}
        self._sweep_interval_ms = float(sweep_interval_seconds) * 1000.0
        self._last_sweep_ms = 0.0

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        async with self._lock:
            now_ms = self._clock() * 1000.0
            window_ms = float(window_seconds) * 1000.0
            self._sweep(now_ms)
            hits = self._hits.get(key) or deque()
            while hits and hits[0] <= now_ms - window_ms:
                hits.popleft()
            if len(hits) >= limit:
                self._store(key, hits, window_ms)
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after_seconds=_retry_after(hits[0] if hits else now_ms, window_ms, now_ms),
                )
            hits.append(now_ms)
            self._store(key, hits, window_ms)
            return RateLimitDecision(allowed=True, limit=limit, remaining=max(0, limit - len(hits)))

    def _store(self, key: str, hits: deque[float], window_ms: float) -> None:
        if hits:
            self._hits[key] = hits
            self._windows_ms[key] = window_ms
        else:
            self._hits.pop(key, None)
            self._windows_ms.pop(key, None)

    def _sweep(self, now_ms: float) -> None:
        if now_ms - self._last_sweep_ms < self._sweep_interval_ms:
            return
        self._last_sweep_ms = now_ms
        for key in list(self._hits):
            hits = self._hits[key]
            if not hits or hits[-1] <= now_ms - self._windows_ms.get(key, 0.0):
                self._hits.pop(key, None)
                self._windows_ms.pop(key, None)


class RedisRateWindowStore(IRateWindowStore):
    def __init__(self, redis_client: Any, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._script = redis_client.register_script(SLIDING_WINDOW_SCRIPT)

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now_ms = int(self._clock() * 1000)
        window_ms = int(window_seconds) * 1000
        allowed, count, oldest = await self._script(
            keys=[key],
            args=[now_ms, window_ms, int(limit), f"{now_ms}-{uuid.uuid4().hex}"],
        )
        if int(allowed):
            return RateLimitDecision(allowed=True, limit=limit, remaining=max(0, limit - int(count)))
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            retry_after_seconds=_retry_after(float(oldest), window_ms, now_ms),
        )
