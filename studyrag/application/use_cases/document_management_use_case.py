from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from studyrag.domain.exceptions import ResourceNotFoundError
from studyrag.domain.ingestion.models import Chunk, Document
from studyrag.domain.ingestion.ports import IChunkRepository, IDocumentRepository
from studyrag.infrastructure.observability.ingestion_logging import emit_event
from studyrag.services.embedding_service import PASSAGE_TASK, EmbeddingService

logger = structlog.get_logger(__name__)


class DocumentManagementUseCase:
    """
    Owner-scoped reads and edits of documents and their chunks.
    Chunk edits are last-write-wins and replace the embedding wholesale.
    """

    def __init__(
        self,
        *,
        document_repository: IDocumentRepository,
        chunk_repository: IChunkRepository,
        embedding_service: EmbeddingService,
    ):
        self.document_repository = document_repository
        self.chunk_repository = chunk_repository
        self.embedding_service = embedding_service

    async def get_document(self, owner_id: str, document_id: str) -> Document:
        document = await self.document_repository.get_document(document_id)
        if document is None or document.owner_id != owner_id:
            raise ResourceNotFoundError("Document", document_id)
        return document

    async def list_chunks(self, owner_id: str, document_id: str) -> List[Chunk]:
        await self.get_document(owner_id, document_id)
        return await self.chunk_repository.list_chunks(document_id)

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        await self.get_document(owner_id, document_id)
        await self.document_repository.delete_document(document_id)

    async def _owned_chunk(self, owner_id: str, chunk_id: str) -> Chunk:
        chunk = await self.chunk_repository.get_chunk(chunk_id)
        if chunk is None:
            raise ResourceNotFoundError("Chunk", chunk_id)
        try:
            await self.get_document(owner_id, chunk.document_id)
        except ResourceNotFoundError:
            raise ResourceNotFoundError("Chunk", chunk_id) from None
        return chunk

    async def update_chunk(
        self,
        owner_id: str,
        chunk_id: str,
        *,
        content: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Chunk:
        chunk = await self._owned_chunk(owner_id, chunk_id)
        metadata = chunk.metadata.model_copy(
            update={"extra": {**chunk.metadata.extra, **(extra or {}), "manuallyEdited": True}}
        )
        embedding = await self.embedding_service.embed_text(content, task=PASSAGE_TASK)
        updated = await self.chunk_repository.update_chunk(
            chunk_id,
            content=content,
            metadata=metadata.model_dump(by_alias=True, mode="json"),
            embedding=embedding,
        )
        emit_event(logger, "chunk_updated", chunk_id=chunk_id, document_id=chunk.document_id)
        return updated

    async def delete_chunk(self, owner_id: str, chunk_id: str) -> None:
        chunk = await self._owned_chunk(owner_id, chunk_id)
        await self.chunk_repository.delete_chunk(chunk_id)
        emit_event(logger, "chunk_deleted", chunk_id=chunk_id, document_id=chunk.document_id)
