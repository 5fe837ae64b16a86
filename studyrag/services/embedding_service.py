import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from studyrag.core.settings import settings
from studyrag.domain.exceptions import EmbeddingError
from studyrag.domain.interfaces.embedding_provider import IEmbeddingProvider
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)

QUERY_TASK = "retrieval.query"
PASSAGE_TASK = "retrieval.passage"


class EmbeddingService:
    """
    Facade Service for Embeddings.

    Bulk requests go out in provider-sized groups. A group that fails or comes
    back malformed is re-embedded one text at a time, each text retried with
    exponential backoff. Callers get a vector for every input or an
    EmbeddingError, never a partial list. Query embeddings are cached (LRU + TTL).
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        *,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self.dimensions = int(provider.embedding_dimensions)
        self.batch_size = max(1, int(batch_size or settings.EMBEDDING_BATCH_SIZE))
        self.max_attempts = max(1, int(max_attempts or settings.EMBEDDING_RETRY_MAX_ATTEMPTS))
        self.base_delay_seconds = float(
            settings.EMBEDDING_RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
        )
        self._sleep = sleep

        # Caching for query embeddings
        self._cache: "OrderedDict[tuple[str, str], tuple[list[float], float]]" = OrderedDict()
        self._cache_max_size = max(100, int(settings.EMBEDDING_CACHE_MAX_SIZE))
        self._cache_ttl_seconds = max(30, int(settings.EMBEDDING_CACHE_TTL_SECONDS))

        # Throughput controls
        self.embedding_concurrency = max(1, int(concurrency or settings.EMBEDDING_CONCURRENCY))
        self._embedding_semaphore = asyncio.Semaphore(self.embedding_concurrency)

    def profile(self) -> Dict[str, Any]:
        return self.provider.profile()

    async def embed_text(self, text: str, task: str = PASSAGE_TASK) -> List[float]:
        vectors = await self.embed_texts([text], task=task)
        return vectors[0]

    async def embed_texts(self, texts: List[str], task: str = PASSAGE_TASK) -> List[List[float]]:
        if not texts:
            return []

        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: List[int] = []
        if task == QUERY_TASK:
            now = time.monotonic()
            for i, text in enumerate(texts):
                cached = self._cache_get((text, task), now)
                if cached is not None:
                    results[i] = cached
                else:
                    missing.append(i)
        else:
            missing = list(range(len(texts)))

        for start in range(0, len(missing), self.batch_size):
            group = missing[start : start + self.batch_size]
            vectors = await self._embed_group([texts[i] for i in group], task)
            for idx, vector in zip(group, vectors):
                results[idx] = vector
                if task == QUERY_TASK:
                    self._cache_put((texts[idx], task), vector)

        if any(vector is None for vector in results):
            raise EmbeddingError("Embedding result incomplete")
        return [vector for vector in results if vector is not None]

    async def _embed_group(self, texts: List[str], task: str) -> List[List[float]]:
        try:
            async with self._embedding_semaphore:
                vectors = await self.provider.embed(texts, task=task)
            if self._is_well_formed(vectors, expected=len(texts)):
                return vectors
            emit_event(
                logger,
                "embedding_batch_malformed_fallback",
                level="warning",
                texts_count=len(texts),
                returned_count=len(vectors or []),
            )
        except Exception as exc:
            emit_event(
                logger,
                "embedding_batch_failed_fallback",
                level="warning",
                texts_count=len(texts),
                error=compact_error(exc),
            )

        return [await self._embed_single(text, task) for text in texts]

    async def _embed_single(self, text: str, task: str) -> List[float]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_seconds, exp_base=2, min=self.base_delay_seconds),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    async with self._embedding_semaphore:
                        vectors = await self.provider.embed([text], task=task)
                    if not self._is_well_formed(vectors, expected=1):
                        raise EmbeddingError(
                            f"Provider returned a malformed embedding (expected 1x{self.dimensions})"
                        )
                    return vectors[0]
        except Exception as exc:
            emit_event(
                logger,
                "embedding_generation_failed",
                level="error",
                attempts=self.max_attempts,
                error=compact_error(exc),
            )
            raise EmbeddingError(f"Failed to generate embedding: {compact_error(exc)}") from exc
        raise EmbeddingError("Failed to generate embedding")

    def _is_well_formed(self, vectors: Any, *, expected: int) -> bool:
        if not isinstance(vectors, list) or len(vectors) != expected:
            return False
        return all(isinstance(v, list) and len(v) == self.dimensions for v in vectors)

    def _cache_get(self, key: tuple[str, str], now: float) -> Optional[List[float]]:
        cached = self._cache.get(key)
        if cached is None:
            return None
        embedding, expires_at = cached
        if expires_at <= now:
            self._cache.pop(key, None)
            return None
        self._cache.move_to_end(key)
        return embedding

    def _cache_put(self, key: tuple[str, str], embedding: List[float]) -> None:
        self._cache[key] = (embedding, time.monotonic() + float(self._cache_ttl_seconds))
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_max_size:
            self._cache.popitem(last=False)

    async def close(self) -> None:
        close_fn = getattr(self.provider, "close", None)
        if callable(close_fn):
            result = close_fn()
            if asyncio.iscoroutine(result):
                await result
