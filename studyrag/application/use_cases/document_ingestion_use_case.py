from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import Any, List, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from studyrag.application.services.ingestion_run_registry import IngestionRunRegistry
from studyrag.application.services.progress_emitter import ProgressEmitter
from studyrag.core.settings import settings
from studyrag.core.utils.filename_utils import document_name_key, normalize_document_name
from studyrag.core.utils.redaction import redact_secrets
from studyrag.domain.exceptions import (
    DuplicateDocumentError,
    EmptyPdfError,
    IngestionCancelledError,
    IngestionError,
    IngestionErrorCode,
    RequestValidationFailed,
)
from studyrag.domain.ingestion.chunk_content import build_chunk_draft
from studyrag.domain.ingestion.models import (
    CallerContext,
    Document,
    IngestionRequest,
    KnowledgePoint,
    ParsedQuestion,
    UploadedFile,
)
from studyrag.domain.ingestion.ports import IChunkRepository, IDocumentRepository
from studyrag.domain.ingestion.types import DocumentStatus, IngestionStage
from studyrag.domain.ingestion.validation import FileValidator
from studyrag.infrastructure.observability.context_vars import document_id_ctx
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event
from studyrag.services.embedding_service import PASSAGE_TASK, EmbeddingService
from studyrag.services.ingestion.pdf_parser import PdfParserService
from studyrag.services.ingestion.structured_extractor import StructuredExtractor
from studyrag.services.quota_service import QuotaService

logger = structlog.get_logger(__name__)

Item = Union[KnowledgePoint, ParsedQuestion]

EMPTY_PDF_MESSAGE = "PDF contains no extractable text"
NO_CONTENT_MESSAGE = "No content extracted"


class DocumentIngestionUseCase:
    """
    Runs one upload end to end and reports through a ProgressEmitter.

    validating -> quota_check -> duplicate_check -> document_created ->
    parsing_pdf -> extracting -> embedding -> complete, with error reachable
    from every stage. Chunks are embedded and written in small batches; the
    document only turns ready after the last batch lands, and any failure
    after the record exists deletes what was written and marks it as error.
    """

    def __init__(
        self,
        *,
        document_repository: IDocumentRepository,
        chunk_repository: IChunkRepository,
        quota_service: QuotaService,
        pdf_parser: PdfParserService,
        extractor: StructuredExtractor,
        embedding_service: EmbeddingService,
        validator: FileValidator,
        registry: IngestionRunRegistry,
        persist_batch_size: Optional[int] = None,
    ):
        self.document_repository = document_repository
        self.chunk_repository = chunk_repository
        self.quota_service = quota_service
        self.pdf_parser = pdf_parser
        self.extractor = extractor
        self.embedding_service = embedding_service
        self.validator = validator
        self.registry = registry
        self.persist_batch_size = max(1, int(persist_batch_size or settings.PERSIST_BATCH_SIZE))

    async def run(
        self,
        form: Mapping[str, Any],
        upload: UploadedFile,
        caller: CallerContext,
        emitter: ProgressEmitter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """Returns the document id once one exists, else None."""
        document: Optional[Document] = None
        stage = IngestionStage.VALIDATING
        try:
            async with AsyncExitStack() as claims:
                request = self._validate(form, upload)

                stage = IngestionStage.QUOTA_CHECK
                await self.quota_service.enforce(caller.user_id)

                stage = IngestionStage.DUPLICATE_CHECK
                name = normalize_document_name(upload.filename)
                await claims.enter_async_context(
                    self.registry.claim(self.registry.name_key(caller.user_id, document_name_key(name)))
                )
                existing = await self.document_repository.find_by_owner_and_name(caller.user_id, name)
                if existing is not None:
                    raise DuplicateDocumentError(details={"documentId": existing.id})
                self._check_cancelled(cancel_event)

                stage = IngestionStage.DOCUMENT_CREATED
                document = await self.document_repository.create_document(
                    owner_id=caller.user_id,
                    name=name,
                    doc_type=request.doc_type,
                    course_id=str(request.course_id) if request.course_id else None,
                    metadata={
                        key: value
                        for key, value in {"school": request.school, "course": request.course}.items()
                        if value
                    },
                )
                document_id_ctx.set(document.id)
                await claims.enter_async_context(self.registry.claim(self.registry.document_key(document.id)))
                emitter.document_created(document.id)

                await self._process(document, request, upload, emitter, cancel_event)
                return document.id
        except asyncio.CancelledError:
            if document is not None:
                await asyncio.shield(
                    self._rollback(document, IngestionCancelledError.default_message)
                )
            raise
        except Exception as exc:
            error = self._as_ingestion_error(exc)
            emit_event(
                logger,
                "ingestion_failed",
                level="warning" if isinstance(exc, IngestionError) else "error",
                stage=stage.value if document is None else "processing",
                code=error.code.value,
                document_id=document.id if document else None,
                error=compact_error(exc),
            )
            if document is not None:
                status_message = error.message if isinstance(exc, IngestionError) else compact_error(exc)
                await self._rollback(document, status_message)
            if not emitter.is_closed:
                emitter.error(error)
            return document.id if document else None

    def _validate(self, form: Mapping[str, Any], upload: UploadedFile) -> IngestionRequest:
        self.validator.ensure_valid(upload.content, upload.content_type, upload.size)
        try:
            request = IngestionRequest.model_validate(dict(form))
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise RequestValidationFailed(
                "Invalid upload data", details={"fields": fields}
            ) from exc
        return request

    async def _process(
        self,
        document: Document,
        request: IngestionRequest,
        upload: UploadedFile,
        emitter: ProgressEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        emitter.status(IngestionStage.PARSING_PDF, "Parsing PDF...")
        try:
            pages = await self.pdf_parser.extract_pages(upload.content)
        except EmptyPdfError:
            await self._complete_empty(document, emitter, EMPTY_PDF_MESSAGE)
            return
        self._check_cancelled(cancel_event)

        emitter.status(IngestionStage.EXTRACTING, "AI extracting content...")
        items: List[Item] = []
        async for batch_items in self.extractor.iter_batches(
            pages, request.doc_type, request.has_answers
        ):
            for item in batch_items:
                emitter.item(len(items), item.kind, item.to_wire())
                items.append(item)
            self._check_cancelled(cancel_event)

        if not items:
            await self._complete_empty(document, emitter, NO_CONTENT_MESSAGE)
            return

        total = len(items)
        emitter.status(IngestionStage.EMBEDDING, f"Embedding and saving {total} items...")
        emitter.progress(0, total)
        saved = 0
        extra = {"documentName": document.name}
        for batch_index, start in enumerate(range(0, total, self.persist_batch_size)):
            self._check_cancelled(cancel_event)
            batch = items[start : start + self.persist_batch_size]
            drafts = [build_chunk_draft(item, extra=extra) for item in batch]
            embeddings = await self.embedding_service.embed_texts(
                [draft.content for draft in drafts], task=PASSAGE_TASK
            )
            chunk_ids = await self.chunk_repository.insert_chunks(document.id, drafts, embeddings)
            saved += len(chunk_ids)
            emitter.batch_saved(batch_index, chunk_ids)
            emitter.progress(saved, total)

        await self.document_repository.update_status(document.id, DocumentStatus.READY)
        emit_event(logger, "ingestion_completed", document_id=document.id, items=total)
        emitter.status(IngestionStage.COMPLETE, f"Processed {total} items")

    async def _complete_empty(self, document: Document, emitter: ProgressEmitter, message: str) -> None:
        await self.document_repository.update_status(document.id, DocumentStatus.READY, message)
        emit_event(logger, "ingestion_completed_empty", document_id=document.id, reason=message)
        emitter.progress(0, 0)
        emitter.status(IngestionStage.COMPLETE, message)

    async def _rollback(self, document: Document, message: str) -> None:
        try:
            removed = await self.chunk_repository.delete_chunks_by_document(document.id)
            emit_event(logger, "ingestion_rolled_back", document_id=document.id, removed_chunks=removed)
        except Exception as exc:
            emit_event(
                logger,
                "ingestion_rollback_failed",
                level="error",
                document_id=document.id,
                error=compact_error(exc),
            )
        try:
            await self.document_repository.update_status(
                document.id, DocumentStatus.ERROR, redact_secrets(message)
            )
        except Exception as exc:
            emit_event(
                logger,
                "ingestion_error_status_failed",
                level="error",
                document_id=document.id,
                error=compact_error(exc),
            )

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise IngestionCancelledError()

    @staticmethod
    def _as_ingestion_error(exc: Exception) -> IngestionError:
        if isinstance(exc, IngestionError):
            return exc
        return IngestionError(
            "An unexpected error occurred while processing the document",
            code=IngestionErrorCode.INTERNAL_ERROR,
            details={"error": compact_error(exc)},
        )

