from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from studyrag.api.v1.auth import require_caller, require_service_auth
from studyrag.api.v1.dependencies import get_retrieval_engine
from studyrag.api.v1.errors import ERROR_RESPONSES
from studyrag.domain.ingestion.models import CallerContext
from studyrag.services.retrieval.retrieval_engine import RetrievalEngine, format_context

logger = structlog.get_logger(__name__)
router = APIRouter(
    prefix="/retrieval",
    tags=["retrieval"],
    dependencies=[Depends(require_service_auth)],
    responses={k: ERROR_RESPONSES[k] for k in (401, 422, 429)},
)


class RetrievalRequest(BaseModel):
    query: str = Field(min_length=1, max_length=4000)
    course_id: UUID = Field(alias="courseId")
    filter: Optional[Dict[str, Any]] = None
    k: Optional[int] = Field(default=None, ge=1, le=50)


class RetrievedChunkItem(BaseModel):
    id: str
    document_id: Optional[str] = None
    content: str
    score: float
    page_refs: List[int] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetrievalResponse(BaseModel):
    context: str
    items: List[RetrievedChunkItem]


@router.post("/context", response_model=RetrievalResponse)
async def retrieve_context(
    request: RetrievalRequest,
    caller: CallerContext = Depends(require_caller),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
):
    """Hybrid-search context for a chat turn. Backend failures yield an empty context."""
    chunks = await engine.search(request.query, str(request.course_id), request.filter, request.k)
    logger.info("retrieval_context_served", course_id=str(request.course_id), returned=len(chunks))
    return RetrievalResponse(
        context=format_context(chunks),
        items=[
            RetrievedChunkItem(
                id=chunk.id,
                document_id=chunk.document_id,
                content=chunk.content,
                score=chunk.score,
                page_refs=chunk.page_refs,
                metadata=chunk.metadata,
            )
            for chunk in chunks
        ],
    )
