import asyncio

import fitz
import pytest

from studyrag.domain.exceptions import EmptyPdfError, IngestionErrorCode, PdfParseError
from studyrag.services.ingestion.pdf_parser import PdfParserService


def _pdf_bytes(page_texts: list[str]) -> bytes:
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def test_pages_are_one_based_and_in_order() -> None:
    content = _pdf_bytes(["First law", "", "Second law"])

    pages = asyncio.run(PdfParserService().extract_pages(content))

    assert [page.page for page in pages] == [1, 2, 3]
    assert pages[0].text == "First law"
    assert pages[1].text == ""
    assert pages[2].text == "Second law"


def test_pdf_without_any_text_raises_empty_pdf() -> None:
    with pytest.raises(EmptyPdfError) as exc_info:
        PdfParserService().extract_pages_sync(_pdf_bytes(["", ""]))

    assert exc_info.value.code == IngestionErrorCode.EMPTY_PDF


def test_corrupt_bytes_raise_parse_error() -> None:
    with pytest.raises(PdfParseError):
        PdfParserService().extract_pages_sync(b"%PDF-1.7\nthis is not really a pdf")
