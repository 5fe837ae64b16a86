import asyncio
import json
import re

import pytest

from studyrag.domain.exceptions import (
    ExtractionError,
    IngestionErrorCode,
    LlmQuotaExceededError,
    ProviderError,
)
from studyrag.domain.ingestion.models import ExtractedPage, KnowledgePoint, ParsedQuestion
from studyrag.domain.ingestion.types import DocType
from studyrag.services.ingestion.structured_extractor import (
    StructuredExtractor,
    classify_provider_failure,
    page_batches,
)

_PAGE_MARKER = re.compile(r"\[Page (\d+)\]")


class _FakeCompletionClient:
    """Returns one scripted response per call and records the pages each prompt covered."""

    model_name = "fake-model"

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.pages_per_call: list[list[int]] = []

    async def complete_json(self, prompt: str, *, system_instruction=None, temperature=None) -> str:
        self.prompts.append(prompt)
        self.pages_per_call.append([int(p) for p in _PAGE_MARKER.findall(prompt)])
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


def _pages(count: int, empty: tuple[int, ...] = ()) -> list[ExtractedPage]:
    return [
        ExtractedPage(page=n, text="" if n in empty else f"Text of page {n}")
        for n in range(1, count + 1)
    ]


def _kp(title: str, pages: list[int]) -> dict:
    return {"title": title, "definition": f"{title} defined", "sourcePages": pages}


def test_page_batches_split_twelve_pages_into_ten_and_two() -> None:
    batches = page_batches(_pages(12), 10)

    assert [[p.page for p in batch] for batch in batches] == [list(range(1, 11)), [11, 12]]


def test_lecture_batches_are_sent_in_order_and_merged() -> None:
    client = _FakeCompletionClient(
        [
            [_kp("Entropy", [1]), _kp("Enthalpy", [4]), _kp("Gibbs energy", [9])],
            [_kp("Carnot cycle", [11])],
        ]
    )
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        items = await extractor.extract(_pages(12), DocType.LECTURE)
        assert [item.title for item in items] == ["Entropy", "Enthalpy", "Gibbs energy", "Carnot cycle"]
        assert all(isinstance(item, KnowledgePoint) for item in items)

    asyncio.run(_run())
    assert client.pages_per_call == [list(range(1, 11)), [11, 12]]


def test_first_occurrence_of_natural_key_wins_across_batches() -> None:
    client = _FakeCompletionClient(
        [
            [_kp("Entropy", [2])],
            [{"title": "  ENTROPY ", "definition": "restated", "sourcePages": [11]}, _kp("Heat", [12])],
        ]
    )
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        batches = [batch async for batch in extractor.iter_batches(_pages(12), DocType.LECTURE)]
        assert [[item.title for item in batch] for batch in batches] == [["Entropy"], ["Heat"]]
        assert batches[0][0].source_pages == [2]

    asyncio.run(_run())


def test_exam_questions_use_question_prompt_with_answers_flag() -> None:
    client = _FakeCompletionClient(
        [
            [
                {"questionNumber": 1, "content": "Define entropy.", "sourcePage": 1},
                {"questionNumber": "2", "content": "Pick one.", "options": ["A", "B"], "sourcePage": 2,
                 "referenceAnswer": "A", "score": 5},
            ]
        ]
    )
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        items = await extractor.extract(_pages(2), DocType.EXAM, has_answers=True)
        assert all(isinstance(item, ParsedQuestion) for item in items)
        assert [item.question_number for item in items] == ["1", "2"]
        assert items[1].to_wire() == {
            "questionNumber": "2",
            "content": "Pick one.",
            "options": ["A", "B"],
            "referenceAnswer": "A",
            "score": 5.0,
            "sourcePage": 2,
        }

    asyncio.run(_run())
    assert "referenceAnswer: The reference answer" in client.prompts[0]


def test_invalid_items_are_skipped_not_fatal() -> None:
    client = _FakeCompletionClient(
        [[_kp("Valid", [1]), {"title": "", "definition": "no title"}, {"unexpected": True}, "text"]]
    )
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        items = await extractor.extract(_pages(1), DocType.LECTURE)
        assert [item.title for item in items] == ["Valid"]

    asyncio.run(_run())


def test_question_without_source_page_is_kept() -> None:
    client = _FakeCompletionClient([[{"questionNumber": "3", "content": "State the second law."}]])
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        items = await extractor.extract(_pages(1), DocType.ASSIGNMENT)
        assert [item.question_number for item in items] == ["3"]
        assert items[0].source_page is None
        assert items[0].page_refs == []

    asyncio.run(_run())


def test_batches_without_text_are_not_sent() -> None:
    client = _FakeCompletionClient([[_kp("Only", [12])]])
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        pages = _pages(12, empty=tuple(range(1, 11)))
        batches = [batch async for batch in extractor.iter_batches(pages, DocType.LECTURE)]
        assert [len(batch) for batch in batches] == [0, 1]

    asyncio.run(_run())
    assert client.pages_per_call == [[11, 12]]


@pytest.mark.parametrize("raw", ["{not json", '{"title": "object not array"}', ""])
def test_malformed_model_output_raises_extraction_error(raw: str) -> None:
    extractor = StructuredExtractor(_FakeCompletionClient([raw]), page_batch_size=10)

    async def _run() -> None:
        with pytest.raises(ExtractionError) as exc_info:
            await extractor.extract(_pages(1), DocType.LECTURE)
        assert exc_info.value.code == IngestionErrorCode.EXTRACTION_ERROR

    asyncio.run(_run())


def test_provider_quota_failure_is_flagged_and_not_retried() -> None:
    client = _FakeCompletionClient([ProviderError("429 RESOURCE_EXHAUSTED", status_code=429), []])
    extractor = StructuredExtractor(client, page_batch_size=10)

    async def _run() -> None:
        with pytest.raises(LlmQuotaExceededError) as exc_info:
            await extractor.extract(_pages(1), DocType.LECTURE)
        assert exc_info.value.to_payload()["isQuotaError"] is True
        assert exc_info.value.message.endswith("(429 RESOURCE_EXHAUSTED)")

    asyncio.run(_run())
    assert len(client.prompts) == 1


def test_classify_provider_failure_redacts_and_categorises() -> None:
    quota = classify_provider_failure(ProviderError("You exceeded your current quota"))
    generic = classify_provider_failure(
        ProviderError("500 INTERNAL at https://api.example/v1?key=AIzaLeakyKey123", status_code=500)
    )

    assert isinstance(quota, LlmQuotaExceededError)
    assert quota.message.endswith("(quota)")
    assert quota.details == {"provider_message": "You exceeded your current quota"}
    assert type(generic) is ExtractionError
    assert "AIzaLeakyKey123" not in generic.message
    assert "500 INTERNAL" in generic.message
