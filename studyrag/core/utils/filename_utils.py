from __future__ import annotations

import unicodedata


def normalize_document_name(filename: str | None) -> str:
    """Collapses whitespace and Unicode variants so duplicate checks compare like with like."""
    raw = unicodedata.normalize("NFC", str(filename or ""))
    return " ".join(raw.split()).strip()


def document_name_key(filename: str | None) -> str:
    return normalize_document_name(filename).casefold()
