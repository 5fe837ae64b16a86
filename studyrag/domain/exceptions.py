from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class IngestionErrorCode(str, Enum):
    INVALID_FILE = "INVALID_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    DUPLICATE = "DUPLICATE"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    QUOTA_ERROR = "QUOTA_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    PDF_PARSE_ERROR = "PDF_PARSE_ERROR"
    EMPTY_PDF = "EMPTY_PDF"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    LLM_QUOTA_EXCEEDED = "LLM_QUOTA_EXCEEDED"
    EMBEDDING_ERROR = "EMBEDDING_ERROR"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class IngestionError(Exception):
    """Base error for every failure the ingestion pipeline reports to the client."""

    code: IngestionErrorCode = IngestionErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"
    is_quota_error: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[IngestionErrorCode] = None,
        details: Any = None,
    ):
        self.message = str(message or self.default_message)
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "isQuotaError": bool(self.is_quota_error),
        }


class InvalidFileError(IngestionError):
    code = IngestionErrorCode.INVALID_FILE
    default_message = "Only PDF files are supported"


class FileTooLargeError(IngestionError):
    code = IngestionErrorCode.FILE_TOO_LARGE
    default_message = "File exceeds the maximum upload size"


class DuplicateDocumentError(IngestionError):
    code = IngestionErrorCode.DUPLICATE
    default_message = "A document with this name already exists"


class AlreadyProcessingError(IngestionError):
    code = IngestionErrorCode.ALREADY_PROCESSING
    default_message = "This document is already being processed"


class QuotaExceededError(IngestionError):
    code = IngestionErrorCode.QUOTA_EXCEEDED
    default_message = "Daily processing quota exceeded"
    is_quota_error = True


class QuotaCheckError(IngestionError):
    code = IngestionErrorCode.QUOTA_ERROR
    default_message = "Unable to verify usage quota"
    is_quota_error = True


class PdfParseError(IngestionError):
    code = IngestionErrorCode.PDF_PARSE_ERROR
    default_message = "Failed to read the PDF file"


class EmptyPdfError(IngestionError):
    code = IngestionErrorCode.EMPTY_PDF
    default_message = "PDF contains no extractable text"


class RequestValidationFailed(IngestionError):
    code = IngestionErrorCode.VALIDATION_ERROR
    default_message = "Invalid request"


class ExtractionError(IngestionError):
    code = IngestionErrorCode.EXTRACTION_ERROR
    default_message = "Failed to extract content from the document"


class LlmQuotaExceededError(ExtractionError):
    code = IngestionErrorCode.LLM_QUOTA_EXCEEDED
    default_message = "AI provider quota exceeded, please try again later"
    is_quota_error = True


class EmbeddingError(IngestionError):
    code = IngestionErrorCode.EMBEDDING_ERROR
    default_message = "Failed to generate embeddings"


class IngestionCancelledError(IngestionError):
    code = IngestionErrorCode.CANCELLED
    default_message = "Ingestion cancelled"


class StoreError(Exception):
    """Raised by persistence adapters when the backing store rejects an operation."""


class ProviderError(Exception):
    """
    Raised by LLM/embedding adapters. Carries the HTTP status of the provider
    response when one is known.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceNotFoundError(Exception):
    """Raised when a document or chunk does not exist or belongs to another user."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id
