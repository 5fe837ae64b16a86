from __future__ import annotations

from typing import Any, Optional

import structlog
from redis import asyncio as redis_async

from studyrag.core.settings import settings

logger = structlog.get_logger(__name__)


async def build_redis_client(redis_url: Optional[str] = None) -> Optional[Any]:
    """
    Connects to Redis when a URL is configured. Returns None when no URL is
    set so callers select their in-memory backend. In deployed environments an
    unreachable Redis is fatal, since in-memory counters would split per process.
    """
    url = str(redis_url if redis_url is not None else settings.REDIS_URL or "").strip()
    if not url:
        logger.info("redis_not_configured", backend="memory")
        return None

    client = redis_async.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except Exception as exc:
        if settings.is_deployed_environment:
            raise
        logger.warning("redis_unavailable_fallback_memory", error=str(exc))
        await client.aclose()
        return None
    logger.info("redis_client_initialized", backend="redis")
    return client
