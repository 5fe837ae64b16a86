import asyncio

from studyrag.core.settings import settings
from studyrag.infrastructure.container import ServiceContainer
from studyrag.infrastructure.quota.daily_quota_store import InMemoryDailyQuotaStore
from studyrag.infrastructure.quota.rate_window_store import InMemoryRateWindowStore
from studyrag.infrastructure.redis.client import build_redis_client


def test_container_falls_back_to_memory_stores_without_redis() -> None:
    original = settings.REDIS_URL
    settings.REDIS_URL = None
    container = ServiceContainer()

    async def _run() -> None:
        await container.startup()
        try:
            assert isinstance(container.quota_store, InMemoryDailyQuotaStore)
            assert isinstance(container.window_store, InMemoryRateWindowStore)
            use_case = container.ingestion_use_case
            assert use_case.quota_service is container.quota_service
            assert use_case.registry is container.run_registry
            assert use_case.validator.max_bytes == settings.max_upload_bytes
            assert container.retrieval_engine.embedding_service is container.embedding_service
            assert container.document_management_use_case.chunk_repository is container.chunk_repository
        finally:
            await container.shutdown()

    try:
        asyncio.run(_run())
    finally:
        settings.REDIS_URL = original


def test_unreachable_redis_falls_back_outside_deployed_environments() -> None:
    original = (settings.APP_ENV, settings.ENVIRONMENT, settings.RUNNING_IN_DOCKER)
    settings.APP_ENV, settings.ENVIRONMENT, settings.RUNNING_IN_DOCKER = "local", "development", False
    try:
        assert asyncio.run(build_redis_client("redis://127.0.0.1:1/0")) is None
        assert asyncio.run(build_redis_client("")) is None
    finally:
        settings.APP_ENV, settings.ENVIRONMENT, settings.RUNNING_IN_DOCKER = original
