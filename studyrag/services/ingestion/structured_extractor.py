from __future__ import annotations

import json
import re
from typing import Any, AsyncIterator, List, Sequence, Type, Union

import structlog
from pydantic import ValidationError

from studyrag.core.prompts.extraction import (
    SYSTEM_INSTRUCTION,
    build_knowledge_point_prompt,
    build_question_prompt,
)
from studyrag.core.settings import settings
from studyrag.core.utils.redaction import redact_secrets
from studyrag.domain.exceptions import ExtractionError, LlmQuotaExceededError, ProviderError
from studyrag.domain.ingestion.models import ExtractedPage, KnowledgePoint, ParsedQuestion
from studyrag.domain.ingestion.types import DocType
from studyrag.domain.interfaces.completion_client import ICompletionClient

logger = structlog.get_logger(__name__)

Item = Union[KnowledgePoint, ParsedQuestion]

_QUOTA_PATTERN = re.compile(r"quota|rate.?limit|429|RESOURCE_EXHAUSTED", re.IGNORECASE)
_STATUS_TOKEN = re.compile(r"\b[A-Z][A-Z_]{3,}\b")


def _quota_category(status_code: Any, message: str) -> str:
    parts = [str(status_code)] if status_code else []
    tokens = [token for token in _STATUS_TOKEN.findall(message) if token != "REDACTED"]
    if tokens:
        parts.append(tokens[0])
    return " ".join(parts) or "quota"


def classify_provider_failure(exc: Exception) -> ExtractionError:
    """Maps an LLM failure to the client-facing extraction error, secrets removed."""
    message = redact_secrets(str(exc)) or exc.__class__.__name__
    status_code = getattr(exc, "status_code", None)
    if status_code == 429 or _QUOTA_PATTERN.search(message):
        category = _quota_category(status_code, message)
        return LlmQuotaExceededError(
            f"{LlmQuotaExceededError.default_message} ({category})",
            details={"provider_message": message},
        )
    return ExtractionError(message)


def page_batches(pages: Sequence[ExtractedPage], batch_size: int) -> List[List[ExtractedPage]]:
    size = max(1, int(batch_size))
    return [list(pages[i : i + size]) for i in range(0, len(pages), size)]


class StructuredExtractor:
    """
    Turns page text into knowledge points (lectures) or questions (exams and
    assignments). Pages are sent in fixed-size batches, one batch at a time;
    results merge in page order with the first occurrence of a natural key kept.
    """

    def __init__(self, completion_client: ICompletionClient, *, page_batch_size: int | None = None):
        self.completion_client = completion_client
        self.page_batch_size = max(1, int(page_batch_size or settings.EXTRACTION_PAGE_BATCH_SIZE))

    async def extract(
        self, pages: Sequence[ExtractedPage], doc_type: DocType, has_answers: bool = False
    ) -> List[Item]:
        items: List[Item] = []
        async for batch_items in self.iter_batches(pages, doc_type, has_answers):
            items.extend(batch_items)
        return items

    async def iter_batches(
        self, pages: Sequence[ExtractedPage], doc_type: DocType, has_answers: bool = False
    ) -> AsyncIterator[List[Item]]:
        """Yields, per page batch, only the items whose natural key is new."""
        batches = page_batches(pages, self.page_batch_size)
        seen: set[str] = set()
        for index, batch in enumerate(batches):
            batch = [page for page in batch if page.text]
            if not batch:
                logger.info("extraction_batch_skipped", batch_index=index, reason="no_text")
                yield []
                continue
            logger.info(
                "extraction_batch_started",
                batch_index=index,
                total_batches=len(batches),
                first_page=batch[0].page,
                last_page=batch[-1].page,
                doc_type=doc_type.value,
            )
            batch_items = await self._extract_batch(batch, doc_type, has_answers)
            fresh: List[Item] = []
            for item in batch_items:
                key = item.natural_key
                if key in seen:
                    continue
                seen.add(key)
                fresh.append(item)
            logger.info(
                "extraction_batch_completed",
                batch_index=index,
                parsed_items=len(batch_items),
                new_items=len(fresh),
            )
            yield fresh

    async def _extract_batch(
        self, pages: Sequence[ExtractedPage], doc_type: DocType, has_answers: bool
    ) -> List[Item]:
        if doc_type.yields_questions:
            prompt = build_question_prompt(pages, has_answers)
            model: Type[Item] = ParsedQuestion
        else:
            prompt = build_knowledge_point_prompt(pages)
            model = KnowledgePoint

        try:
            raw = await self.completion_client.complete_json(prompt, system_instruction=SYSTEM_INSTRUCTION)
        except ProviderError as exc:
            logger.error("extraction_provider_failed", error=redact_secrets(str(exc)), status_code=exc.status_code)
            raise classify_provider_failure(exc) from exc

        payload = self._parse_payload(raw)
        items: List[Item] = []
        for position, element in enumerate(payload):
            try:
                items.append(model.model_validate(element))
            except ValidationError as exc:
                logger.warning(
                    "extraction_item_skipped",
                    position=position,
                    item_type=model.__name__,
                    errors=exc.error_count(),
                )
        return items

    @staticmethod
    def _parse_payload(raw: str) -> List[Any]:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ExtractionError(f"Model returned malformed JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise ExtractionError(
                f"Model returned {type(payload).__name__} where a JSON array was expected"
            )
        return payload
