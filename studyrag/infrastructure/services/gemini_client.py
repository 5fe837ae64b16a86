from __future__ import annotations

from typing import Optional

from google import genai
from google.genai import errors as genai_errors

from studyrag.core.ai_models import AIModelConfig
from studyrag.core.utils.redaction import redact_secrets
from studyrag.domain.exceptions import ProviderError

_client: Optional[genai.Client] = None


def get_gemini_client() -> genai.Client:
    """Shared google-genai client built from the model registry."""
    global _client
    if _client is None:
        if not AIModelConfig.is_gemini_available():
            raise ValueError("GEMINI_API_KEY must be set in settings.")
        _client = genai.Client(api_key=AIModelConfig.GEMINI_API_KEY)
    return _client


def to_provider_error(exc: Exception, *, operation: str) -> ProviderError:
    """Normalizes SDK failures, keeping the HTTP status and provider status text."""
    status_code: Optional[int] = None
    status_text = ""
    if isinstance(exc, genai_errors.APIError):
        status_code = int(exc.code) if exc.code is not None else None
        status_text = str(exc.status or "")
    message = redact_secrets(f"Gemini {operation} failed: {status_text} {exc}".replace("  ", " "))
    return ProviderError(message.strip(), status_code=status_code)
