from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class IChunkSearchRepository(ABC):
    """Row-level access to the two halves of hybrid search."""

    @abstractmethod
    async def vector_search(
        self,
        *,
        query_embedding: List[float],
        course_id: str,
        match_threshold: float,
        match_count: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def keyword_search(
        self,
        *,
        query_text: str,
        course_id: str,
        match_count: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        pass
