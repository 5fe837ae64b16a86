from __future__ import annotations

from typing import Any, List, Optional

from google.genai import types

from studyrag.core.ai_models import AIModelConfig
from studyrag.domain.interfaces.embedding_provider import IEmbeddingProvider
from studyrag.infrastructure.services.gemini_client import get_gemini_client, to_provider_error


class GeminiEmbeddingProvider(IEmbeddingProvider):
    """Gemini text-embedding adapter returning fixed-dimension vectors."""

    def __init__(
        self,
        client: Optional[Any] = None,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        self._client = client
        self._model_name = model_name or AIModelConfig.GEMINI_EMBEDDING_MODEL
        self._dimensions = int(dimensions or AIModelConfig.GEMINI_EMBEDDING_DIMENSIONS)

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def embedding_dimensions(self) -> int:
        return self._dimensions

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = get_gemini_client()
        return self._client

    async def embed(self, texts: List[str], task: str = "retrieval.passage") -> List[List[float]]:
        if not texts:
            return []
        client = self._get_client()
        try:
            response = await client.aio.models.embed_content(
                model=self._model_name,
                contents=list(texts),
                config=types.EmbedContentConfig(
                    task_type=AIModelConfig.gemini_task_type(task),
                    output_dimensionality=self._dimensions,
                ),
            )
        except Exception as exc:
            raise to_provider_error(exc, operation="embedding") from exc

        embeddings = getattr(response, "embeddings", None) or []
        return [list(getattr(item, "values", None) or []) for item in embeddings]
