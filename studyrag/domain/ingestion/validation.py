from __future__ import annotations

from typing import Optional

from studyrag.domain.exceptions import FileTooLargeError, IngestionError, InvalidFileError
from studyrag.domain.ingestion.types import FileCheck

PDF_MIME_TYPE = "application/pdf"
PDF_MAGIC_BYTES = b"%PDF-"


class FileValidator:
    """
    Upload gate: MIME type, size ceiling and PDF signature, in that order.
    The size check runs before anything reads the document body.
    """

    def __init__(self, max_bytes: int):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = int(max_bytes)

    def validate(self, content: bytes, content_type: Optional[str], size: Optional[int] = None) -> FileCheck:
        mime = str(content_type or "").split(";", 1)[0].strip().lower()
        if mime != PDF_MIME_TYPE:
            return FileCheck.NOT_PDF_MIME

        declared = int(size) if size is not None else len(content or b"")
        if max(declared, len(content or b"")) > self.max_bytes:
            return FileCheck.OVERSIZE

        if not (content or b"").startswith(PDF_MAGIC_BYTES):
            return FileCheck.BAD_MAGIC_BYTES

        return FileCheck.VALID

    def error_for(self, check: FileCheck) -> Optional[IngestionError]:
        if check == FileCheck.VALID:
            return None
        if check == FileCheck.OVERSIZE:
            limit_mb = self.max_bytes // (1024 * 1024)
            return FileTooLargeError(f"File exceeds the {limit_mb}MB limit")
        if check == FileCheck.BAD_MAGIC_BYTES:
            return InvalidFileError("File content is not a valid PDF")
        return InvalidFileError("Only PDF files are supported")

    def ensure_valid(self, content: bytes, content_type: Optional[str], size: Optional[int] = None) -> None:
        error = self.error_for(self.validate(content, content_type, size))
        if error is not None:
            raise error
