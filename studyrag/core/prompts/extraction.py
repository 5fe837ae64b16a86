"""Prompt templates for structured extraction from lecture and exam pages."""

from typing import Sequence

from studyrag.domain.ingestion.models import ExtractedPage

SYSTEM_INSTRUCTION = "You are an expert academic content analyzer."

KNOWLEDGE_POINT_PROMPT = """Analyze the following lecture content and extract structured knowledge points.

For each knowledge point, extract:
- title: A clear, concise title for the concept
- definition: A comprehensive explanation/definition
- keyFormulas: Any relevant mathematical formulas (optional, omit if none)
- keyConcepts: Related key terms and concepts (optional, omit if none)
- examples: Concrete examples mentioned (optional, omit if none)
- sourcePages: Array of page numbers where this concept appears

Return ONLY a valid JSON array of knowledge points. No markdown, no explanation.

Lecture content:
{pages_text}"""

QUESTION_PROMPT = """Analyze the following exam/assignment document and extract each individual question.

For each question, extract:
- questionNumber: The question number/label as shown (e.g. "1", "1a", "Q1")
- content: The full question text including any sub-parts
- options: Array of answer options if it's a multiple choice question (omit if not MC)
{answer_instruction}
- score: Points/marks allocated if shown (omit if not shown)
- sourcePage: The page number where the question appears

Return ONLY a valid JSON array of questions. No markdown, no explanation.

Document content:
{pages_text}"""

ANSWERS_PRESENT = (
    "- referenceAnswer: The reference answer or solution provided (extract from the document)"
)
ANSWERS_ABSENT = "- referenceAnswer: Omit this field (no answers provided in document)"


def format_pages(pages: Sequence[ExtractedPage]) -> str:
    return "\n\n".join(f"[Page {p.page}]\n{p.text}" for p in pages)


def build_knowledge_point_prompt(pages: Sequence[ExtractedPage]) -> str:
    return KNOWLEDGE_POINT_PROMPT.format(pages_text=format_pages(pages))


def build_question_prompt(pages: Sequence[ExtractedPage], has_answers: bool) -> str:
    return QUESTION_PROMPT.format(
        answer_instruction=ANSWERS_PRESENT if has_answers else ANSWERS_ABSENT,
        pages_text=format_pages(pages),
    )
