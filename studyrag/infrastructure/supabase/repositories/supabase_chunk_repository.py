from typing import Any, Dict, List, Optional

import structlog
from pydantic import TypeAdapter

from studyrag.domain.exceptions import StoreError
from studyrag.domain.ingestion.models import Chunk, ChunkDraft, ChunkMetadata
from studyrag.domain.ingestion.ports import IChunkRepository
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event
from studyrag.infrastructure.supabase.client import get_async_supabase_client

logger = structlog.get_logger(__name__)

CHUNKS_TABLE = "document_chunks"
CHUNK_COLUMNS = "id, document_id, content, metadata"
DELETE_BATCH_SIZE = 500

_metadata_adapter = TypeAdapter(ChunkMetadata)


def _to_chunk(row: Dict[str, Any], *, with_embedding: bool = False) -> Chunk:
    return Chunk(
        id=str(row["id"]),
        document_id=str(row.get("document_id") or ""),
        content=str(row.get("content") or ""),
        metadata=_metadata_adapter.validate_python(row.get("metadata") or {}),
        embedding=row.get("embedding") if with_embedding else None,
    )


def _dump_metadata(metadata: Any) -> Dict[str, Any]:
    return _metadata_adapter.dump_python(metadata, by_alias=True, mode="json")


class SupabaseChunkRepository(IChunkRepository):
    """
    Chunk persistence. Each ingestion batch is written with a single insert
    so a batch is either fully visible or not at all.
    """

    def __init__(self, client: Optional[Any] = None):
        self._supabase = client

    async def get_client(self):
        if self._supabase is None:
            self._supabase = await get_async_supabase_client()
        return self._supabase

    async def insert_chunks(
        self, document_id: str, drafts: List[ChunkDraft], embeddings: List[List[float]]
    ) -> List[str]:
        if not drafts:
            return []
        if len(drafts) != len(embeddings):
            raise StoreError(
                f"Chunk/embedding count mismatch: {len(drafts)} chunks, {len(embeddings)} embeddings"
            )
        client = await self.get_client()
        rows = [
            {
                "document_id": document_id,
                "content": draft.content,
                "metadata": _dump_metadata(draft.metadata),
                "embedding": embedding,
            }
            for draft, embedding in zip(drafts, embeddings)
        ]
        try:
            res = await client.table(CHUNKS_TABLE).insert(rows).execute()
        except Exception as exc:
            emit_event(
                logger,
                "chunk_batch_insert_failed",
                level="error",
                document_id=document_id,
                batch_size=len(rows),
                error=compact_error(exc),
            )
            raise
        inserted = res.data or []
        if len(inserted) != len(rows):
            raise StoreError(
                f"Chunk insert returned {len(inserted)} rows for a batch of {len(rows)}"
            )
        return [str(row["id"]) for row in inserted]

    async def delete_chunks_by_document(self, document_id: str) -> int:
        if not document_id:
            return 0
        client = await self.get_client()
        emit_event(logger, "chunk_cleanup_started", document_id=document_id)

        res = await client.table(CHUNKS_TABLE).select("id").eq("document_id", document_id).execute()
        ids = [r["id"] for r in res.data or []]
        if not ids:
            emit_event(logger, "chunk_cleanup_skipped", document_id=document_id, reason="no_chunks")
            return 0

        for i in range(0, len(ids), DELETE_BATCH_SIZE):
            batch_ids = ids[i : i + DELETE_BATCH_SIZE]
            await client.table(CHUNKS_TABLE).delete().in_("id", batch_ids).execute()

        emit_event(logger, "chunk_cleanup_completed", document_id=document_id, total_chunks=len(ids))
        return len(ids)

    async def list_chunks(self, document_id: str) -> List[Chunk]:
        client = await self.get_client()
        res = await (
            client.table(CHUNKS_TABLE)
            .select(CHUNK_COLUMNS)
            .eq("document_id", document_id)
            .order("created_at")
            .execute()
        )
        return [_to_chunk(row) for row in res.data or []]

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        client = await self.get_client()
        res = await client.table(CHUNKS_TABLE).select(CHUNK_COLUMNS).eq("id", chunk_id).limit(1).execute()
        rows = res.data or []
        return _to_chunk(rows[0]) if rows else None

    async def update_chunk(
        self,
        chunk_id: str,
        *,
        content: str,
        metadata: Dict[str, Any],
        embedding: List[float],
    ) -> Chunk:
        client = await self.get_client()
        res = await (
            client.table(CHUNKS_TABLE)
            .update({"content": content, "metadata": metadata, "embedding": embedding})
            .eq("id", chunk_id)
            .execute()
        )
        rows = res.data or []
        if not rows:
            raise StoreError(f"Chunk {chunk_id} not found for update")
        return _to_chunk(rows[0])

    async def delete_chunk(self, chunk_id: str) -> None:
        client = await self.get_client()
        await client.table(CHUNKS_TABLE).delete().eq("id", chunk_id).execute()
