import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    studyrag - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime
    APP_ENV: str = "local"
    ENVIRONMENT: str = "development"
    RUNNING_IN_DOCKER: bool = False
    LOG_LEVEL: str = "INFO"

    # Infrastructure
    SUPABASE_URL: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
    )
    SUPABASE_SERVICE_KEY: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY"),
    )
    REDIS_URL: Optional[str] = None

    # Security
    SERVICE_SECRET: str = "development-secret"

    # AI Models & Services
    GEMINI_API_KEY: Optional[str] = Field(
        None, validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY")
    )
    GEMINI_GENERATION_MODEL: str = "gemini-2.0-flash"
    GEMINI_EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_DIMENSIONS: int = 768
    EXTRACTION_TEMPERATURE: float = 0.2

    # Upload validation
    MAX_UPLOAD_SIZE_MB: int = 10

    # Ingestion pipeline
    EXTRACTION_PAGE_BATCH_SIZE: int = 10
    PERSIST_BATCH_SIZE: int = 3
    EMBEDDING_BATCH_SIZE: int = 100
    EMBEDDING_RETRY_MAX_ATTEMPTS: int = 3
    EMBEDDING_RETRY_BASE_DELAY_SECONDS: float = 1.0
    EMBEDDING_CONCURRENCY: int = 5
    EMBEDDING_CACHE_MAX_SIZE: int = 2000
    EMBEDDING_CACHE_TTL_SECONDS: int = 1800

    # Quota gate
    RATE_LIMIT_ENABLED: bool = True
    LLM_LIMIT_DAILY_FREE: int = 3
    LLM_LIMIT_DAILY_PRO: int = 30
    QUOTA_COUNTER_TTL_SECONDS: int = 86400
    RATE_LIMIT_PUBLIC_REQUESTS: int = 10
    RATE_LIMIT_PUBLIC_WINDOW_SECONDS: int = 10
    RATE_LIMIT_AUTH_REQUESTS: int = 100
    RATE_LIMIT_AUTH_WINDOW_SECONDS: int = 10
    RATE_LIMIT_LLM_FREE_REQUESTS: int = 3
    RATE_LIMIT_LLM_FREE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_LLM_PRO_REQUESTS: int = 60
    RATE_LIMIT_LLM_PRO_WINDOW_SECONDS: int = 60
    PRO_SUBSCRIPTION_STATUSES: str = "active,trialing"

    # Retrieval
    RETRIEVAL_MATCH_THRESHOLD: float = 0.5
    RETRIEVAL_MATCH_COUNT: int = 5
    RETRIEVAL_FETCH_MULTIPLIER: int = 2
    RETRIEVAL_RRF_K: int = 60
    RETRIEVAL_VECTOR_WEIGHT: float = 1.0
    RETRIEVAL_KEYWORD_WEIGHT: float = 1.0
    RETRIEVAL_TIMEOUT_SECONDS: float = 3.0
    RETRIEVAL_KEYWORD_LANGUAGE: Literal["english", "simple"] = "english"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        return str(value or "INFO").strip().upper()

    @property
    def is_deployed_environment(self) -> bool:
        return bool(
            self.RUNNING_IN_DOCKER
            or self.APP_ENV in {"staging", "production", "prod"}
            or self.ENVIRONMENT in {"staging", "production", "prod"}
        )

    @property
    def max_upload_bytes(self) -> int:
        return int(self.MAX_UPLOAD_SIZE_MB) * 1024 * 1024

    @property
    def pro_subscription_statuses(self) -> set[str]:
        return {
            status.strip().lower()
            for status in str(self.PRO_SUBSCRIPTION_STATUSES or "").split(",")
            if status.strip()
        }

    def secret_values(self) -> list[str]:
        """Configured secrets that must never reach logs or user-facing messages."""
        candidates = [self.GEMINI_API_KEY, self.SUPABASE_SERVICE_KEY, self.SERVICE_SECRET]
        return [
            str(value)
            for value in candidates
            if value and str(value) != "development-secret" and len(str(value)) >= 8
        ]


settings = Settings()
