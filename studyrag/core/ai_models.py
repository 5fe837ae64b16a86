"""
Centralized AI model configuration.
Every Gemini call resolves its model name and sampling defaults here.
"""

from studyrag.core.settings import settings


class AIModelConfig:
    # Gemini Configuration
    GEMINI_API_KEY = settings.GEMINI_API_KEY
    GEMINI_GENERATION_MODEL = settings.GEMINI_GENERATION_MODEL
    GEMINI_EMBEDDING_MODEL = settings.GEMINI_EMBEDDING_MODEL
    GEMINI_EMBEDDING_DIMENSIONS = settings.EMBEDDING_DIMENSIONS

    # Embedding task types understood by the Gemini embedding endpoint
    TASK_TYPE_BY_TASK = {
        "retrieval.passage": "RETRIEVAL_DOCUMENT",
        "retrieval.query": "RETRIEVAL_QUERY",
    }

    # Text Processing Limits
    MAX_GEMINI_PROMPT_CHARS = 100000

    # Default Temperatures
    DEFAULT_TEMPERATURE_EXTRACTION = settings.EXTRACTION_TEMPERATURE

    @classmethod
    def is_gemini_available(cls) -> bool:
        return bool(cls.GEMINI_API_KEY)

    @classmethod
    def gemini_task_type(cls, task: str) -> str:
        return cls.TASK_TYPE_BY_TASK.get(str(task or "").strip(), "RETRIEVAL_DOCUMENT")
