import asyncio
from typing import List

import fitz  # PyMuPDF
import structlog

from studyrag.domain.exceptions import EmptyPdfError, PdfParseError
from studyrag.domain.ingestion.models import ExtractedPage

logger = structlog.get_logger(__name__)


class PdfParserService:
    """
    Service for extracting page text from PDF bytes.

    Pages come back 1-based and in document order. Encrypted or corrupt files
    raise PdfParseError; a readable file with no text at all raises EmptyPdfError.
    """

    def extract_pages_sync(self, content: bytes) -> List[ExtractedPage]:
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as exc:
            logger.warning("pdf_open_failed", error=str(exc))
            raise PdfParseError() from exc

        try:
            if doc.needs_pass:
                raise PdfParseError("PDF is password protected")
            if doc.page_count == 0:
                raise PdfParseError("PDF has no pages")
            pages: List[ExtractedPage] = []
            for index, page in enumerate(doc):
                text = page.get_text("text") or ""
                pages.append(ExtractedPage(page=index + 1, text=text.replace("\x00", "").strip()))
        except PdfParseError:
            raise
        except Exception as exc:
            logger.warning("pdf_text_extraction_failed", error=str(exc))
            raise PdfParseError() from exc
        finally:
            doc.close()

        if not any(page.text for page in pages):
            raise EmptyPdfError()

        logger.info(
            "pdf_text_extracted",
            total_pages=len(pages),
            text_pages=sum(1 for page in pages if page.text),
        )
        return pages

    async def extract_pages(self, content: bytes) -> List[ExtractedPage]:
        return await asyncio.to_thread(self.extract_pages_sync, content)
