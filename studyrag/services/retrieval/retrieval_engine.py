from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from studyrag.core.settings import settings
from studyrag.domain.retrieval.fusion import row_to_chunk, rrf_merge
from studyrag.domain.retrieval.ports import IChunkSearchRepository
from studyrag.domain.retrieval.types import RetrievedChunk
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event
from studyrag.services.embedding_service import QUERY_TASK, EmbeddingService

logger = structlog.get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def format_citation(pages: List[int]) -> str:
    if not pages:
        return ""
    if len(pages) == 1:
        return f" (Page {pages[0]})"
    return " (Pages " + ", ".join(str(p) for p in pages) + ")"


def format_context(chunks: List[RetrievedChunk]) -> str:
    return CONTEXT_SEPARATOR.join(chunk.content + format_citation(chunk.page_refs) for chunk in chunks)


class RetrievalEngine:
    """
    Hybrid retrieval over one course: vector similarity and keyword rank are
    fetched concurrently and fused with reciprocal rank fusion.

    Retrieval is best-effort context for the chat flow. Any backend error or a
    timeout yields an empty result instead of an exception.
    """

    def __init__(
        self,
        *,
        embedding_service: EmbeddingService,
        search_repository: IChunkSearchRepository,
        match_threshold: Optional[float] = None,
        rrf_k: Optional[int] = None,
        fetch_multiplier: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        weights: Optional[tuple[float, float]] = None,
    ):
        self.embedding_service = embedding_service
        self.search_repository = search_repository
        self.match_threshold = float(
            settings.RETRIEVAL_MATCH_THRESHOLD if match_threshold is None else match_threshold
        )
        self.rrf_k = max(1, int(rrf_k or settings.RETRIEVAL_RRF_K))
        self.fetch_multiplier = max(1, int(fetch_multiplier or settings.RETRIEVAL_FETCH_MULTIPLIER))
        self.timeout_seconds = float(timeout_seconds or settings.RETRIEVAL_TIMEOUT_SECONDS)
        self.weights = weights or (
            float(settings.RETRIEVAL_VECTOR_WEIGHT),
            float(settings.RETRIEVAL_KEYWORD_WEIGHT),
        )

    async def search(
        self,
        query: str,
        course_id: str,
        metadata_filter: Optional[Dict[str, Any]] = None,
        k: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        query_text = str(query or "").strip()
        if not query_text or not course_id:
            return []
        top_k = max(1, int(k or settings.RETRIEVAL_MATCH_COUNT))
        try:
            return await asyncio.wait_for(
                self._search(query_text, course_id, metadata_filter or {}, top_k),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            emit_event(
                logger,
                "retrieval_timeout_fail_open",
                level="warning",
                course_id=course_id,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as exc:
            emit_event(
                logger,
                "retrieval_failed_fail_open",
                level="warning",
                course_id=course_id,
                error=compact_error(exc),
            )
        return []

    async def _search(
        self, query: str, course_id: str, metadata_filter: Dict[str, Any], top_k: int
    ) -> List[RetrievedChunk]:
        fetch_count = top_k * self.fetch_multiplier
        embedding = await self.embedding_service.embed_text(query, task=QUERY_TASK)
        vector_rows, keyword_rows = await asyncio.gather(
            self.search_repository.vector_search(
                query_embedding=embedding,
                course_id=course_id,
                match_threshold=self.match_threshold,
                match_count=fetch_count,
                metadata_filter=metadata_filter,
            ),
            self.search_repository.keyword_search(
                query_text=query,
                course_id=course_id,
                match_count=fetch_count,
                metadata_filter=metadata_filter,
            ),
        )
        merged = rrf_merge(
            [
                [row_to_chunk(row) for row in vector_rows],
                [row_to_chunk(row) for row in keyword_rows],
            ],
            rrf_k=self.rrf_k,
            top_k=top_k,
            weights=self.weights,
        )
        logger.info(
            "hybrid_retrieval_completed",
            course_id=course_id,
            vector_hits=len(vector_rows),
            keyword_hits=len(keyword_rows),
            returned=len(merged),
        )
        return merged

    async def retrieve(
        self,
        query: str,
        course_id: str,
        metadata_filter: Optional[Dict[str, Any]] = None,
        k: Optional[int] = None,
    ) -> str:
        """Context block for the chat prompt; empty string when nothing matched."""
        chunks = await self.search(query, course_id, metadata_filter, k)
        return format_context(chunks)
