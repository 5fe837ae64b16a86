from __future__ import annotations

from typing import Any, Optional

import structlog
from google.genai import types

from studyrag.core.ai_models import AIModelConfig
from studyrag.domain.exceptions import ProviderError
from studyrag.domain.interfaces.completion_client import ICompletionClient
from studyrag.infrastructure.services.gemini_client import get_gemini_client, to_provider_error

logger = structlog.get_logger(__name__)


class GeminiCompletionClient(ICompletionClient):
    """JSON-mode Gemini generation used for structured extraction."""

    def __init__(self, client: Optional[Any] = None, model_name: Optional[str] = None):
        self._client = client
        self._model_name = model_name or AIModelConfig.GEMINI_GENERATION_MODEL

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = get_gemini_client()
        return self._client

    async def complete_json(
        self,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        client = self._get_client()
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=(
                AIModelConfig.DEFAULT_TEMPERATURE_EXTRACTION if temperature is None else temperature
            ),
            system_instruction=system_instruction,
        )
        try:
            response = await client.aio.models.generate_content(
                model=self._model_name,
                contents=prompt[: AIModelConfig.MAX_GEMINI_PROMPT_CHARS],
                config=config,
            )
        except Exception as exc:
            raise to_provider_error(exc, operation="generation") from exc

        text = getattr(response, "text", None)
        if not text:
            finish_reason = self._extract_finish_reason(response)
            logger.warning("gemini_empty_response", model=self._model_name, finish_reason=finish_reason)
            raise ProviderError(
                f"Gemini returned an empty response (finish_reason={finish_reason or 'unknown'})"
            )
        return str(text)

    @staticmethod
    def _extract_finish_reason(response: Any) -> str:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return ""
        reason = getattr(candidates[0], "finish_reason", None)
        if reason is None:
            return ""
        name = getattr(reason, "name", None)
        if isinstance(name, str) and name:
            return name
        return str(reason)
