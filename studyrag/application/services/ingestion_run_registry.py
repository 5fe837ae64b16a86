import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Set

import structlog

from studyrag.domain.exceptions import AlreadyProcessingError

logger = structlog.get_logger(__name__)


class IngestionRunRegistry:
    """
    Tracks in-flight ingestion targets within this process. A target is
    claimed by owner + file name before the duplicate check and by document
    id once the record exists, so two uploads cannot race past the check.
    """

    def __init__(self) -> None:
        self._active: Set[str] = set()
        self._lock = asyncio.Lock()

    @staticmethod
    def name_key(owner_id: str, name_key: str) -> str:
        return f"name:{owner_id}:{name_key}"

    @staticmethod
    def document_key(document_id: str) -> str:
        return f"doc:{document_id}"

    async def try_acquire(self, key: str) -> bool:
        async with self._lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._active.discard(key)

    async def is_active(self, key: str) -> bool:
        async with self._lock:
            return key in self._active

    @asynccontextmanager
    async def claim(self, key: str) -> AsyncIterator[None]:
        if not await self.try_acquire(key):
            logger.warning("ingestion_target_already_active", key=key)
            raise AlreadyProcessingError()
        try:
            yield
        finally:
            await self.release(key)
