from pydantic import TypeAdapter

from studyrag.core.utils.filename_utils import document_name_key, normalize_document_name
from studyrag.domain.ingestion.chunk_content import build_chunk_draft
from studyrag.domain.ingestion.models import (
    ChunkMetadata,
    IngestionRequest,
    KnowledgePoint,
    KnowledgePointMetadata,
    ParsedQuestion,
    QuestionMetadata,
)
from studyrag.domain.ingestion.types import DocType


def test_knowledge_point_chunk_text_and_metadata() -> None:
    point = KnowledgePoint.model_validate(
        {
            "title": "Second law",
            "definition": "Entropy of an isolated system never decreases.",
            "keyFormulas": ["dS >= dQ/T"],
            "keyConcepts": ["entropy", "irreversibility"],
            "sourcePages": [4, 3, 4],
        }
    )

    draft = build_chunk_draft(point, extra={"documentName": "thermo.pdf"})

    assert draft.content == (
        "Second law: Entropy of an isolated system never decreases.\n"
        "Formulas: dS >= dQ/T\n"
        "Key concepts: entropy, irreversibility"
    )
    assert isinstance(draft.metadata, KnowledgePointMetadata)
    assert draft.metadata.model_dump(by_alias=True, mode="json") == {
        "type": "knowledge_point",
        "knowledgePoint": {
            "title": "Second law",
            "definition": "Entropy of an isolated system never decreases.",
            "keyFormulas": ["dS >= dQ/T"],
            "keyConcepts": ["entropy", "irreversibility"],
            "sourcePages": [4, 3, 4],
        },
        "pageRefs": [3, 4],
        "extra": {"documentName": "thermo.pdf"},
    }


def test_question_chunk_text_and_metadata() -> None:
    question = ParsedQuestion.model_validate(
        {
            "questionNumber": "2b",
            "content": "Which process is adiabatic?",
            "options": ["Isothermal", "Adiabatic"],
            "referenceAnswer": "Adiabatic",
            "sourcePage": 7,
        }
    )

    draft = build_chunk_draft(question)

    assert draft.content == (
        "Q2b: Which process is adiabatic?\nOptions: Isothermal | Adiabatic\nAnswer: Adiabatic"
    )
    assert isinstance(draft.metadata, QuestionMetadata)
    assert draft.metadata.page_refs == [7]
    assert draft.metadata.extra == {}


def test_stored_metadata_round_trips_through_tagged_union() -> None:
    adapter = TypeAdapter(ChunkMetadata)
    stored = {
        "type": "question",
        "question": {"questionNumber": "1", "content": "Define work.", "sourcePage": 1},
        "pageRefs": [1],
        "extra": {"manuallyEdited": True},
    }

    metadata = adapter.validate_python(stored)

    assert isinstance(metadata, QuestionMetadata)
    assert metadata.extra["manuallyEdited"] is True


def test_ingestion_request_form_parsing() -> None:
    request = IngestionRequest.model_validate(
        {
            "docType": "exam",
            "school": "  ",
            "course": " Physics 101 ",
            "courseId": "",
            "hasAnswers": "true",
        }
    )

    assert request.doc_type == DocType.EXAM
    assert request.doc_type.yields_questions is True
    assert request.school is None
    assert request.course == "Physics 101"
    assert request.course_id is None
    assert request.has_answers is True


def test_document_name_normalisation() -> None:
    name = normalize_document_name("  Lecture  1́.PDF ")

    assert name.startswith("Lecture 1")
    assert document_name_key("LECTURE 1.pdf") == document_name_key("lecture 1.PDF")
