from typing import Any, Dict, List, Optional

from studyrag.core.settings import settings
from studyrag.domain.retrieval.ports import IChunkSearchRepository
from studyrag.infrastructure.supabase.client import get_async_supabase_client

VECTOR_SEARCH_RPC = "match_document_chunks"
KEYWORD_SEARCH_RPC = "keyword_search_chunks"


class SupabaseChunkSearchRepository(IChunkSearchRepository):
    """
    Calls the two search RPCs. Both only see chunks of ready documents in
    the requested course, further narrowed by JSONB containment on metadata.
    """

    def __init__(self, client: Optional[Any] = None):
        self._supabase = client

    async def get_client(self):
        if self._supabase is None:
            self._supabase = await get_async_supabase_client()
        return self._supabase

    async def vector_search(
        self,
        *,
        query_embedding: List[float],
        course_id: str,
        match_threshold: float,
        match_count: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        client = await self.get_client()
        payload = {
            "query_embedding": query_embedding,
            "p_course_id": course_id,
            "match_threshold": float(match_threshold),
            "match_count": int(match_count),
            "filter": metadata_filter or {},
        }
        res = await client.rpc(VECTOR_SEARCH_RPC, payload).execute()
        return list(res.data or [])

    async def keyword_search(
        self,
        *,
        query_text: str,
        course_id: str,
        match_count: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        client = await self.get_client()
        payload = {
            "query_text": query_text,
            "p_course_id": course_id,
            "match_count": int(match_count),
            "filter": metadata_filter or {},
            "search_language": settings.RETRIEVAL_KEYWORD_LANGUAGE,
        }
        res = await client.rpc(KEYWORD_SEARCH_RPC, payload).execute()
        return list(res.data or [])
