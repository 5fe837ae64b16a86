import asyncio
from typing import Any, Dict, List, Optional, Set

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from studyrag.api.v1.auth import require_caller, require_service_auth
from studyrag.api.v1.dependencies import get_document_management, get_ingestion_use_case
from studyrag.api.v1.errors import ERROR_RESPONSES, ApiError
from studyrag.application.services.progress_emitter import SSE_HEADERS, ProgressEmitter
from studyrag.application.use_cases.document_ingestion_use_case import DocumentIngestionUseCase
from studyrag.application.use_cases.document_management_use_case import DocumentManagementUseCase
from studyrag.core.settings import settings
from studyrag.domain.exceptions import ResourceNotFoundError
from studyrag.domain.ingestion.models import CallerContext, Chunk, Document, UploadedFile
from studyrag.infrastructure.observability.ingestion_logging import compact_error

logger = structlog.get_logger(__name__)
router = APIRouter(
    tags=["documents"],
    dependencies=[Depends(require_service_auth)],
    responses={k: ERROR_RESPONSES[k] for k in (401, 404, 429, 500)},
)

FORM_FIELDS = ("docType", "school", "course", "courseId", "hasAnswers")

# Strong references so running pipelines are not garbage collected mid-flight.
_running_pipelines: Set["asyncio.Task[Optional[str]]"] = set()


class DocumentResponse(BaseModel):
    id: str
    name: str
    doc_type: str
    course_id: Optional[str] = None
    status: str
    status_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkResponse(BaseModel):
    id: str
    document_id: str
    content: str
    metadata: Dict[str, Any]


class ChunkUpdateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=20000)
    extra: Optional[Dict[str, Any]] = None


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        name=document.name,
        doc_type=document.doc_type.value,
        course_id=document.course_id,
        status=document.status.value,
        status_message=document.status_message,
        metadata=document.metadata,
    )


def _chunk_response(chunk: Chunk) -> ChunkResponse:
    return ChunkResponse(
        id=str(chunk.id),
        document_id=chunk.document_id,
        content=chunk.content,
        metadata=chunk.metadata.model_dump(by_alias=True, mode="json"),
    )


def _not_found(exc: ResourceNotFoundError) -> ApiError:
    return ApiError(status_code=404, code="NOT_FOUND", message=f"{exc.resource} not found")


async def _read_upload(form: Any) -> UploadedFile:
    raw = form.get("file")
    if not isinstance(raw, UploadFile):
        return UploadedFile(content=b"", content_type="", size=0, filename="")
    content_type = str(raw.content_type or "")
    declared_size = raw.size
    # Oversized uploads are rejected on the declared size without buffering the body.
    if declared_size is not None and declared_size > settings.max_upload_bytes:
        content = b""
    else:
        content = await raw.read()
        declared_size = len(content)
    return UploadedFile(
        content=content,
        content_type=content_type,
        size=int(declared_size or 0),
        filename=str(raw.filename or ""),
    )


@router.post("/documents/parse")
async def parse_document(
    request: Request,
    caller: CallerContext = Depends(require_caller),
    use_case: DocumentIngestionUseCase = Depends(get_ingestion_use_case),
):
    """
    Multipart upload (`file`, `docType`, `school`, `course`, `courseId`, `hasAnswers`)
    answered with a text/event-stream of ingestion progress.
    """
    form = await request.form()
    fields = {key: form.get(key) for key in FORM_FIELDS if form.get(key) is not None}
    upload = await _read_upload(form)

    emitter = ProgressEmitter()
    cancel_event = asyncio.Event()
    task = asyncio.create_task(use_case.run(fields, upload, caller, emitter, cancel_event))
    _running_pipelines.add(task)

    def _on_done(finished: "asyncio.Task[Optional[str]]") -> None:
        _running_pipelines.discard(finished)
        if not finished.cancelled() and finished.exception() is not None:
            logger.error("ingestion_pipeline_crashed", error=compact_error(finished.exception()))
        emitter.abort()

    task.add_done_callback(_on_done)

    async def event_stream():
        try:
            async for frame in emitter.stream():
                yield frame
        finally:
            if not task.done():
                logger.info("ingestion_client_disconnected", filename=upload.filename)
                cancel_event.set()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    caller: CallerContext = Depends(require_caller),
    management: DocumentManagementUseCase = Depends(get_document_management),
):
    try:
        document = await management.get_document(caller.user_id, document_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc)
    return _document_response(document)


@router.get("/documents/{document_id}/chunks", response_model=List[ChunkResponse])
async def list_document_chunks(
    document_id: str,
    caller: CallerContext = Depends(require_caller),
    management: DocumentManagementUseCase = Depends(get_document_management),
):
    try:
        chunks = await management.list_chunks(caller.user_id, document_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc)
    return [_chunk_response(chunk) for chunk in chunks]


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    caller: CallerContext = Depends(require_caller),
    management: DocumentManagementUseCase = Depends(get_document_management),
):
    try:
        await management.delete_document(caller.user_id, document_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc)


@router.patch("/chunks/{chunk_id}", response_model=ChunkResponse)
async def update_chunk(
    chunk_id: str,
    body: ChunkUpdateRequest,
    caller: CallerContext = Depends(require_caller),
    management: DocumentManagementUseCase = Depends(get_document_management),
):
    try:
        chunk = await management.update_chunk(
            caller.user_id, chunk_id, content=body.content, extra=body.extra
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc)
    return _chunk_response(chunk)


@router.delete("/chunks/{chunk_id}", status_code=204)
async def delete_chunk(
    chunk_id: str,
    caller: CallerContext = Depends(require_caller),
    management: DocumentManagementUseCase = Depends(get_document_management),
):
    try:
        await management.delete_chunk(caller.user_id, chunk_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc)
