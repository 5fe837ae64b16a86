"""
Service Container - studyrag Infrastructure Layer

Centralizes service instantiation and dependency injection.
Clients are built once per process and handed to services through constructors.
"""

from typing import Any, Optional

import structlog

from studyrag.application.services.ingestion_run_registry import IngestionRunRegistry
from studyrag.application.use_cases.document_ingestion_use_case import DocumentIngestionUseCase
from studyrag.application.use_cases.document_management_use_case import DocumentManagementUseCase
from studyrag.core.settings import settings
from studyrag.domain.ingestion.ports import IDailyQuotaStore, IRateWindowStore
from studyrag.domain.ingestion.validation import FileValidator
from studyrag.infrastructure.quota.daily_quota_store import InMemoryDailyQuotaStore, RedisDailyQuotaStore
from studyrag.infrastructure.quota.rate_window_store import InMemoryRateWindowStore, RedisRateWindowStore
from studyrag.infrastructure.redis.client import build_redis_client
from studyrag.infrastructure.services.gemini_completion_client import GeminiCompletionClient
from studyrag.infrastructure.services.gemini_embedding_provider import GeminiEmbeddingProvider
from studyrag.infrastructure.supabase.repositories.supabase_chunk_repository import SupabaseChunkRepository
from studyrag.infrastructure.supabase.repositories.supabase_chunk_search_repository import (
    SupabaseChunkSearchRepository,
)
from studyrag.infrastructure.supabase.repositories.supabase_document_repository import (
    SupabaseDocumentRepository,
)
from studyrag.infrastructure.supabase.repositories.supabase_profile_repository import (
    SupabaseProfileRepository,
)
from studyrag.services.embedding_service import EmbeddingService
from studyrag.services.ingestion.pdf_parser import PdfParserService
from studyrag.services.ingestion.structured_extractor import StructuredExtractor
from studyrag.services.quota_service import QuotaService
from studyrag.services.retrieval.retrieval_engine import RetrievalEngine

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """
    IoC Container for ingestion and retrieval services.
    """

    def __init__(self):
        self._redis: Optional[Any] = None
        self._quota_store: Optional[IDailyQuotaStore] = None
        self._window_store: Optional[IRateWindowStore] = None
        self._document_repository = None
        self._chunk_repository = None
        self._chunk_search_repository = None
        self._profile_repository = None
        self._embedding_service = None
        self._completion_client = None
        self._pdf_parser_service = None
        self._structured_extractor = None
        self._quota_service = None
        self._retrieval_engine = None
        self._run_registry = None
        self._ingestion_use_case = None
        self._document_management_use_case = None

    async def startup(self) -> None:
        self._redis = await build_redis_client()
        if self._redis is not None:
            self._quota_store = RedisDailyQuotaStore(self._redis)
            self._window_store = RedisRateWindowStore(self._redis)
        else:
            self._quota_store = InMemoryDailyQuotaStore()
            self._window_store = InMemoryRateWindowStore()
        logger.info(
            "service_container_started",
            quota_backend="redis" if self._redis is not None else "memory",
            rate_limit_enabled=settings.RATE_LIMIT_ENABLED,
        )

    async def shutdown(self) -> None:
        if self._embedding_service is not None:
            await self._embedding_service.close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("service_container_stopped")

    @property
    def quota_store(self) -> IDailyQuotaStore:
        if self._quota_store is None:
            self._quota_store = InMemoryDailyQuotaStore()
        return self._quota_store

    @property
    def window_store(self) -> IRateWindowStore:
        if self._window_store is None:
            self._window_store = InMemoryRateWindowStore()
        return self._window_store

    @property
    def document_repository(self) -> SupabaseDocumentRepository:
        if self._document_repository is None:
            self._document_repository = SupabaseDocumentRepository()
        return self._document_repository

    @property
    def chunk_repository(self) -> SupabaseChunkRepository:
        if self._chunk_repository is None:
            self._chunk_repository = SupabaseChunkRepository()
        return self._chunk_repository

    @property
    def chunk_search_repository(self) -> SupabaseChunkSearchRepository:
        if self._chunk_search_repository is None:
            self._chunk_search_repository = SupabaseChunkSearchRepository()
        return self._chunk_search_repository

    @property
    def profile_repository(self) -> SupabaseProfileRepository:
        if self._profile_repository is None:
            self._profile_repository = SupabaseProfileRepository()
        return self._profile_repository

    @property
    def embedding_service(self) -> EmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = EmbeddingService(GeminiEmbeddingProvider())
        return self._embedding_service

    @property
    def completion_client(self) -> GeminiCompletionClient:
        if self._completion_client is None:
            self._completion_client = GeminiCompletionClient()
        return self._completion_client

    @property
    def pdf_parser_service(self) -> PdfParserService:
        if self._pdf_parser_service is None:
            self._pdf_parser_service = PdfParserService()
        return self._pdf_parser_service

    @property
    def structured_extractor(self) -> StructuredExtractor:
        if self._structured_extractor is None:
            self._structured_extractor = StructuredExtractor(self.completion_client)
        return self._structured_extractor

    @property
    def quota_service(self) -> QuotaService:
        if self._quota_service is None:
            self._quota_service = QuotaService(
                quota_store=self.quota_store,
                window_store=self.window_store,
                profiles=self.profile_repository,
            )
        return self._quota_service

    @property
    def retrieval_engine(self) -> RetrievalEngine:
        if self._retrieval_engine is None:
            self._retrieval_engine = RetrievalEngine(
                embedding_service=self.embedding_service,
                search_repository=self.chunk_search_repository,
            )
        return self._retrieval_engine

    @property
    def run_registry(self) -> IngestionRunRegistry:
        if self._run_registry is None:
            self._run_registry = IngestionRunRegistry()
        return self._run_registry

    @property
    def ingestion_use_case(self) -> DocumentIngestionUseCase:
        if self._ingestion_use_case is None:
            self._ingestion_use_case = DocumentIngestionUseCase(
                document_repository=self.document_repository,
                chunk_repository=self.chunk_repository,
                quota_service=self.quota_service,
                pdf_parser=self.pdf_parser_service,
                extractor=self.structured_extractor,
                embedding_service=self.embedding_service,
                validator=FileValidator(settings.max_upload_bytes),
                registry=self.run_registry,
            )
        return self._ingestion_use_case

    @property
    def document_management_use_case(self) -> DocumentManagementUseCase:
        if self._document_management_use_case is None:
            self._document_management_use_case = DocumentManagementUseCase(
                document_repository=self.document_repository,
                chunk_repository=self.chunk_repository,
                embedding_service=self.embedding_service,
            )
        return self._document_management_use_case
