from __future__ import annotations

from typing import Any, Optional, Union

from studyrag.domain.ingestion.models import (
    ChunkDraft,
    KnowledgePoint,
    KnowledgePointMetadata,
    ParsedQuestion,
    QuestionMetadata,
)


def knowledge_point_content(point: KnowledgePoint) -> str:
    lines = [f"{point.title}: {point.definition}"]
    if point.key_formulas:
        lines.append("Formulas: " + "; ".join(point.key_formulas))
    if point.key_concepts:
        lines.append("Key concepts: " + ", ".join(point.key_concepts))
    if point.examples:
        lines.append("Examples: " + "; ".join(point.examples))
    return "\n".join(lines)


def question_content(question: ParsedQuestion) -> str:
    lines = [f"Q{question.question_number}: {question.content}"]
    if question.options:
        lines.append("Options: " + " | ".join(question.options))
    if question.reference_answer:
        lines.append(f"Answer: {question.reference_answer}")
    return "\n".join(lines)


def build_chunk_draft(
    item: Union[KnowledgePoint, ParsedQuestion],
    *,
    extra: Optional[dict[str, Any]] = None,
) -> ChunkDraft:
    """Maps a parsed item to the text that gets embedded and its typed metadata."""
    extra_fields = dict(extra or {})
    if isinstance(item, KnowledgePoint):
        return ChunkDraft(
            content=knowledge_point_content(item),
            metadata=KnowledgePointMetadata(
                knowledge_point=item.to_wire(),
                page_refs=item.page_refs,
                extra=extra_fields,
            ),
        )
    return ChunkDraft(
        content=question_content(item),
        metadata=QuestionMetadata(
            question=item.to_wire(),
            page_refs=item.page_refs,
            extra=extra_fields,
        ),
    )
