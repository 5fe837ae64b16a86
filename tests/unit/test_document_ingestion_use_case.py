import asyncio
import json
import re
from typing import Any, Optional

import pytest

from studyrag.application.services.ingestion_run_registry import IngestionRunRegistry
from studyrag.application.services.progress_emitter import ProgressEmitter
from studyrag.application.use_cases.document_ingestion_use_case import DocumentIngestionUseCase
from studyrag.domain.exceptions import EmptyPdfError, ProviderError, QuotaCheckError, QuotaExceededError
from studyrag.domain.ingestion.models import CallerContext, Document, ExtractedPage, UploadedFile
from studyrag.domain.ingestion.types import DocumentStatus
from studyrag.domain.ingestion.validation import FileValidator
from studyrag.services.embedding_service import EmbeddingService
from studyrag.services.ingestion.structured_extractor import StructuredExtractor

PDF = b"%PDF-1.4\nfake body"
CALLER = CallerContext(user_id="user-1", client_ip="10.0.0.1")
_PAGE_MARKER = re.compile(r"\[Page (\d+)\]")


class _FakeDocumentRepository:
    def __init__(self, existing: Optional[list[Document]] = None) -> None:
        self.documents: dict[str, Document] = {d.id: d for d in existing or []}
        self.status_updates: list[tuple[str, DocumentStatus, Optional[str]]] = []

    async def find_by_owner_and_name(self, owner_id: str, name: str) -> Optional[Document]:
        for document in self.documents.values():
            if document.owner_id == owner_id and document.name.casefold() == name.casefold():
                return document
        return None

    async def create_document(self, *, owner_id, name, doc_type, course_id, metadata) -> Document:
        document = Document(
            id=f"doc-{len(self.documents) + 1}",
            owner_id=owner_id,
            name=name,
            doc_type=doc_type,
            course_id=course_id,
            metadata=metadata,
        )
        self.documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> Optional[Document]:
        return self.documents.get(document_id)

    async def update_status(self, document_id: str, status: DocumentStatus, message: Optional[str] = None) -> None:
        self.status_updates.append((document_id, status, message))
        self.documents[document_id] = self.documents[document_id].model_copy(
            update={"status": status, "status_message": message}
        )

    async def delete_document(self, document_id: str) -> None:
        self.documents.pop(document_id, None)


class _FakeChunkRepository:
    def __init__(self, fail_on_insert_call: Optional[int] = None) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.insert_calls = 0
        self.fail_on_insert_call = fail_on_insert_call
        self.deleted_for: list[str] = []

    async def insert_chunks(self, document_id, drafts, embeddings) -> list[str]:
        self.insert_calls += 1
        if self.insert_calls == self.fail_on_insert_call:
            raise ConnectionError("database connection reset")
        ids = []
        for draft, embedding in zip(drafts, embeddings):
            chunk_id = f"chunk-{len(self.rows) + 1}"
            self.rows[chunk_id] = {"document_id": document_id, "draft": draft, "embedding": embedding}
            ids.append(chunk_id)
        return ids

    async def delete_chunks_by_document(self, document_id: str) -> int:
        self.deleted_for.append(document_id)
        doomed = [cid for cid, row in self.rows.items() if row["document_id"] == document_id]
        for chunk_id in doomed:
            del self.rows[chunk_id]
        return len(doomed)


class _FakeQuotaService:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[str] = []

    async def enforce(self, user_id: str):
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error


class _FakePdfParser:
    def __init__(self, pages: Optional[list[ExtractedPage]] = None, error: Optional[Exception] = None) -> None:
        self.pages = pages or []
        self.error = error

    async def extract_pages(self, content: bytes) -> list[ExtractedPage]:
        if self.error is not None:
            raise self.error
        return self.pages


class _FakeCompletionClient:
    """Answers each lecture batch with the knowledge points scripted for its first page."""

    model_name = "fake-model"

    def __init__(self, by_first_page: dict[int, list[dict]]) -> None:
        self.by_first_page = by_first_page
        self.calls = 0

    async def complete_json(self, prompt: str, *, system_instruction=None, temperature=None) -> str:
        self.calls += 1
        first_page = int(_PAGE_MARKER.findall(prompt)[0])
        return json.dumps(self.by_first_page.get(first_page, []))


class _FakeEmbeddingProvider:
    provider_name = "fake"
    model_name = "fake-embed"
    embedding_dimensions = 3

    async def embed(self, texts, task="retrieval.passage"):
        return [[0.1, 0.2, float(len(text))] for text in texts]

    def profile(self):
        return {}


async def _no_sleep(_: float) -> None:
    return None


def _kp(title: str, page: int) -> dict:
    return {"title": title, "definition": f"{title} explained", "sourcePages": [page]}


def _twelve_pages() -> list[ExtractedPage]:
    return [ExtractedPage(page=n, text=f"Thermodynamics page {n}") for n in range(1, 13)]


SEVEN_POINTS = {
    1: [_kp("Entropy", 1), _kp("Enthalpy", 3), _kp("Internal energy", 5), _kp("Heat", 7), _kp("Work", 9)],
    11: [_kp("Carnot cycle", 11), _kp("Entropy", 12), _kp("Efficiency", 12)],
}


def _use_case(
    *,
    documents=None,
    chunks=None,
    quota=None,
    parser=None,
    completion=None,
    registry=None,
) -> DocumentIngestionUseCase:
    return DocumentIngestionUseCase(
        document_repository=documents or _FakeDocumentRepository(),
        chunk_repository=chunks or _FakeChunkRepository(),
        quota_service=quota or _FakeQuotaService(),
        pdf_parser=parser or _FakePdfParser(_twelve_pages()),
        extractor=StructuredExtractor(completion or _FakeCompletionClient(SEVEN_POINTS), page_batch_size=10),
        embedding_service=EmbeddingService(
            _FakeEmbeddingProvider(), max_attempts=2, base_delay_seconds=0.0, sleep=_no_sleep
        ),
        validator=FileValidator(10 * 1024 * 1024),
        registry=registry or IngestionRunRegistry(),
        persist_batch_size=3,
    )


def _upload(name: str = "Thermo Lecture.pdf", content: bytes = PDF, content_type: str = "application/pdf"):
    return UploadedFile(content=content, content_type=content_type, size=len(content), filename=name)


def _form(**overrides: Any) -> dict[str, Any]:
    form = {"docType": "lecture", "course": "Physics", "courseId": "3f2b8c1e-8d4a-4c55-9a53-2d0f1f6b9a10"}
    form.update(overrides)
    return form


def _events(emitter: ProgressEmitter) -> list[tuple[str, dict]]:
    return [(event.type, event.data) for event in emitter.events]


def test_twelve_page_lecture_streams_items_batches_and_completes() -> None:
    documents = _FakeDocumentRepository()
    chunks = _FakeChunkRepository()
    completion = _FakeCompletionClient(SEVEN_POINTS)
    use_case = _use_case(documents=documents, chunks=chunks, completion=completion)
    emitter = ProgressEmitter()

    async def _run() -> Optional[str]:
        return await use_case.run(_form(), _upload(), CALLER, emitter)

    document_id = asyncio.run(_run())
    events = _events(emitter)
    names = [name for name, _ in events]

    assert document_id == "doc-1"
    assert completion.calls == 2
    assert names == [
        "document_created",
        "status",
        "status",
        *["item"] * 7,
        "status",
        "progress",
        "batch_saved",
        "progress",
        "batch_saved",
        "progress",
        "batch_saved",
        "progress",
        "status",
    ]
    items = [data for name, data in events if name == "item"]
    assert [item["index"] for item in items] == list(range(7))
    assert [item["data"]["title"] for item in items][-2:] == ["Carnot cycle", "Efficiency"]
    assert [data for name, data in events if name == "progress"] == [
        {"current": 0, "total": 7},
        {"current": 3, "total": 7},
        {"current": 6, "total": 7},
        {"current": 7, "total": 7},
    ]
    batches = [data for name, data in events if name == "batch_saved"]
    assert [len(batch["chunkIds"]) for batch in batches] == [3, 3, 1]
    assert [batch["batchIndex"] for batch in batches] == [0, 1, 2]
    assert events[-1] == ("status", {"stage": "complete", "message": "Processed 7 items"})

    assert len(chunks.rows) == 7
    stored = chunks.rows["chunk-1"]["draft"]
    assert stored.metadata.extra == {"documentName": "Thermo Lecture.pdf"}
    assert documents.documents["doc-1"].status == DocumentStatus.READY
    assert documents.documents["doc-1"].metadata == {"course": "Physics"}


def test_failure_after_two_batches_rolls_back_and_marks_error() -> None:
    documents = _FakeDocumentRepository()
    chunks = _FakeChunkRepository(fail_on_insert_call=3)
    use_case = _use_case(documents=documents, chunks=chunks)
    emitter = ProgressEmitter()

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter))
    events = _events(emitter)

    assert [name for name, _ in events].count("batch_saved") == 2
    assert events[-1][0] == "error"
    assert events[-1][1]["code"] == "INTERNAL_ERROR"
    assert events[-1][1]["isQuotaError"] is False
    assert chunks.deleted_for == ["doc-1"]
    assert chunks.rows == {}
    final = documents.documents["doc-1"]
    assert final.status == DocumentStatus.ERROR
    assert "connection reset" in (final.status_message or "")


def test_zero_items_completes_with_empty_progress() -> None:
    documents = _FakeDocumentRepository()
    use_case = _use_case(documents=documents, completion=_FakeCompletionClient({}))
    emitter = ProgressEmitter()

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter))
    events = _events(emitter)

    assert events[-2:] == [
        ("progress", {"current": 0, "total": 0}),
        ("status", {"stage": "complete", "message": "No content extracted"}),
    ]
    assert "error" not in [name for name, _ in events]
    assert documents.documents["doc-1"].status == DocumentStatus.READY


def test_pdf_without_text_completes_empty_instead_of_failing() -> None:
    documents = _FakeDocumentRepository()
    use_case = _use_case(documents=documents, parser=_FakePdfParser(error=EmptyPdfError()))
    emitter = ProgressEmitter()

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter))
    events = _events(emitter)

    assert events[-1] == ("status", {"stage": "complete", "message": "PDF contains no extractable text"})
    assert documents.documents["doc-1"].status == DocumentStatus.READY
    assert documents.documents["doc-1"].status_message == "PDF contains no extractable text"


def test_invalid_file_fails_before_quota_is_consumed() -> None:
    quota = _FakeQuotaService()
    documents = _FakeDocumentRepository()
    use_case = _use_case(quota=quota, documents=documents)
    emitter = ProgressEmitter()

    result = asyncio.run(
        use_case.run(_form(), _upload(content=b"GIF89a not a pdf"), CALLER, emitter)
    )

    assert result is None
    assert _events(emitter) == [
        ("error", {"code": "INVALID_FILE", "message": "File content is not a valid PDF", "isQuotaError": False})
    ]
    assert quota.calls == []
    assert documents.documents == {}


def test_invalid_form_fields_fail_with_validation_error() -> None:
    emitter = ProgressEmitter()

    asyncio.run(_use_case().run(_form(docType="novel"), _upload(), CALLER, emitter))

    assert emitter.events[-1].type == "error"
    assert emitter.events[-1].data["code"] == "VALIDATION_ERROR"


@pytest.mark.parametrize(
    "error, code",
    [(QuotaExceededError(), "QUOTA_EXCEEDED"), (QuotaCheckError(), "QUOTA_ERROR")],
)
def test_quota_errors_stop_before_any_document_exists(error: Exception, code: str) -> None:
    documents = _FakeDocumentRepository()
    use_case = _use_case(quota=_FakeQuotaService(error=error), documents=documents)
    emitter = ProgressEmitter()

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter))

    assert _events(emitter) == [
        ("error", {"code": code, "message": error.message, "isQuotaError": True})
    ]
    assert documents.documents == {}


def test_duplicate_name_for_same_owner_is_rejected() -> None:
    existing = Document(id="doc-7", owner_id="user-1", name="thermo lecture.PDF", doc_type="lecture")
    documents = _FakeDocumentRepository(existing=[existing])
    emitter = ProgressEmitter()

    asyncio.run(_use_case(documents=documents).run(_form(), _upload(), CALLER, emitter))

    assert emitter.events[-1].data["code"] == "DUPLICATE"
    assert list(documents.documents) == ["doc-7"]


def test_same_name_for_other_owner_is_not_a_duplicate() -> None:
    existing = Document(id="doc-7", owner_id="someone-else", name="Thermo Lecture.pdf", doc_type="lecture")
    documents = _FakeDocumentRepository(existing=[existing])
    emitter = ProgressEmitter()

    asyncio.run(_use_case(documents=documents).run(_form(), _upload(), CALLER, emitter))

    assert emitter.events[-1].data["stage"] == "complete"


def test_concurrent_upload_of_same_name_is_rejected() -> None:
    registry = IngestionRunRegistry()
    emitter = ProgressEmitter()

    async def _run() -> None:
        async with registry.claim(registry.name_key("user-1", "thermo lecture.pdf")):
            await _use_case(registry=registry).run(_form(), _upload(), CALLER, emitter)

    asyncio.run(_run())

    assert emitter.events[-1].data["code"] == "ALREADY_PROCESSING"


def test_extraction_quota_failure_rolls_back_with_quota_flag() -> None:
    class _QuotaFailingClient(_FakeCompletionClient):
        async def complete_json(self, prompt: str, *, system_instruction=None, temperature=None) -> str:
            raise ProviderError("429 RESOURCE_EXHAUSTED: quota exceeded", status_code=429)

    documents = _FakeDocumentRepository()
    use_case = _use_case(documents=documents, completion=_QuotaFailingClient({}))
    emitter = ProgressEmitter()

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter))

    assert emitter.events[-1].data["code"] == "LLM_QUOTA_EXCEEDED"
    assert emitter.events[-1].data["isQuotaError"] is True
    assert documents.documents["doc-1"].status == DocumentStatus.ERROR
    assert "429 RESOURCE_EXHAUSTED" in emitter.events[-1].data["message"]
    assert "429 RESOURCE_EXHAUSTED" in documents.documents["doc-1"].status_message


def test_cancellation_between_batches_rolls_back() -> None:
    documents = _FakeDocumentRepository()
    chunks = _FakeChunkRepository()
    cancel_event = asyncio.Event()
    use_case = _use_case(documents=documents, chunks=chunks)
    emitter = ProgressEmitter()

    original_insert = chunks.insert_chunks

    async def _insert_then_cancel(document_id, drafts, embeddings):
        ids = await original_insert(document_id, drafts, embeddings)
        cancel_event.set()
        return ids

    chunks.insert_chunks = _insert_then_cancel

    asyncio.run(use_case.run(_form(), _upload(), CALLER, emitter, cancel_event))

    assert emitter.events[-1].data["code"] == "CANCELLED"
    assert [event.type for event in emitter.events].count("batch_saved") == 1
    assert chunks.rows == {}
    assert documents.documents["doc-1"].status == DocumentStatus.ERROR
