from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studyrag.domain.ingestion.types import DocType, DocumentStatus


class _WireModel(BaseModel):
    """Models exchanged with the LLM and the client use camelCase keys on the wire."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class UploadedFile(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: bytes
    content_type: str
    size: int
    filename: str


class ExtractedPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = Field(ge=1)
    text: str


class KnowledgePoint(_WireModel):
    kind: Literal["knowledge_point"] = Field(default="knowledge_point", exclude=True)
    title: str = Field(min_length=1)
    definition: str = Field(min_length=1)
    key_formulas: Optional[list[str]] = Field(default=None, alias="keyFormulas")
    key_concepts: Optional[list[str]] = Field(default=None, alias="keyConcepts")
    examples: Optional[list[str]] = None
    source_pages: list[int] = Field(default_factory=list, alias="sourcePages")

    @field_validator("title", "definition", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def natural_key(self) -> str:
        return self.title.strip().casefold()

    @property
    def page_refs(self) -> list[int]:
        return sorted({int(p) for p in self.source_pages if int(p) >= 1})


class ParsedQuestion(_WireModel):
    kind: Literal["question"] = Field(default="question", exclude=True)
    question_number: str = Field(alias="questionNumber")
    content: str = Field(min_length=1)
    options: Optional[list[str]] = None
    reference_answer: Optional[str] = Field(default=None, alias="referenceAnswer")
    score: Optional[float] = None
    source_page: Optional[int] = Field(default=None, alias="sourcePage", ge=1)

    @field_validator("question_number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("content", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def natural_key(self) -> str:
        number = self.question_number.strip().casefold()
        return number or self.content.strip().casefold()

    @property
    def page_refs(self) -> list[int]:
        return [self.source_page] if self.source_page is not None else []


ParsedItem = Annotated[Union[KnowledgePoint, ParsedQuestion], Field(discriminator="kind")]


class KnowledgePointMetadata(BaseModel):
    type: Literal["knowledge_point"] = "knowledge_point"
    knowledge_point: dict[str, Any] = Field(alias="knowledgePoint")
    page_refs: list[int] = Field(default_factory=list, alias="pageRefs")
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class QuestionMetadata(BaseModel):
    type: Literal["question"] = "question"
    question: dict[str, Any]
    page_refs: list[int] = Field(default_factory=list, alias="pageRefs")
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


ChunkMetadata = Annotated[
    Union[KnowledgePointMetadata, QuestionMetadata], Field(discriminator="type")
]


class Chunk(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    document_id: str
    content: str
    metadata: ChunkMetadata
    embedding: Optional[list[float]] = None


class ChunkDraft(BaseModel):
    """A chunk built from one parsed item before it is written."""

    content: str
    metadata: ChunkMetadata


class Document(BaseModel):
    id: str
    owner_id: str
    name: str
    doc_type: DocType
    course_id: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PROCESSING
    status_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class IngestionRequest(BaseModel):
    """Form fields accompanying an upload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    doc_type: DocType = Field(alias="docType")
    school: Optional[str] = Field(default=None, max_length=200)
    course: Optional[str] = Field(default=None, max_length=200)
    course_id: Optional[UUID] = Field(default=None, alias="courseId")
    has_answers: bool = Field(default=False, alias="hasAnswers")

    @field_validator("school", "course", "course_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


class CallerContext(BaseModel):
    user_id: str
    client_ip: Optional[str] = None


class QuotaResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    remaining: int
    count: int


class RateLimitDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0
