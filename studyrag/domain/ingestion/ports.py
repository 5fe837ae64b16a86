from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from studyrag.domain.ingestion.models import Chunk, ChunkDraft, Document, QuotaResult, RateLimitDecision
from studyrag.domain.ingestion.types import DocType, DocumentStatus


class IDocumentRepository(ABC):
    @abstractmethod
    async def find_by_owner_and_name(self, owner_id: str, name: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def create_document(
        self,
        *,
        owner_id: str,
        name: str,
        doc_type: DocType,
        course_id: Optional[str],
        metadata: Dict[str, Any],
    ) -> Document:
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def update_status(
        self, document_id: str, status: DocumentStatus, message: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        pass


class IChunkRepository(ABC):
    @abstractmethod
    async def insert_chunks(
        self, document_id: str, drafts: List[ChunkDraft], embeddings: List[List[float]]
    ) -> List[str]:
        """Writes one batch and returns the new chunk ids in input order."""
        pass

    @abstractmethod
    async def delete_chunks_by_document(self, document_id: str) -> int:
        pass

    @abstractmethod
    async def list_chunks(self, document_id: str) -> List[Chunk]:
        pass

    @abstractmethod
    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        pass

    @abstractmethod
    async def update_chunk(
        self,
        chunk_id: str,
        *,
        content: str,
        metadata: Dict[str, Any],
        embedding: List[float],
    ) -> Chunk:
        pass

    @abstractmethod
    async def delete_chunk(self, chunk_id: str) -> None:
        pass


class IProfileRepository(ABC):
    @abstractmethod
    async def get_subscription_status(self, user_id: str) -> Optional[str]:
        pass


class IDailyQuotaStore(ABC):
    @abstractmethod
    async def check_and_increment(self, key: str, limit: int, ttl_seconds: int) -> QuotaResult:
        """Atomically rejects at the ceiling or increments, setting the TTL on first use."""
        pass

    @abstractmethod
    async def get_count(self, key: str) -> int:
        pass


class IRateWindowStore(ABC):
    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        pass
