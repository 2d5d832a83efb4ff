"""
Configuration settings for the application.
"""
from typing import Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # FastAPI settings
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    APP_ENV: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS settings
    CORS_ORIGINS: List[str] = ["*"]

    # Frontend URL for redirects
    FRONTEND_URL: str = "http://localhost:3000"

    # LLM settings
    GOOGLE_API_KEY: str = ""
    LLM_MODEL: str = "gemini-1.5-flash"
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_OUTPUT_TOKENS: int = 2048
    LLM_RATE_LIMIT_PER_MINUTE: int = 60

    # Supabase settings
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    VERIFY_JWT: bool = True

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"

    # GPU settings
    USE_GPU: bool = False

    # Embedding retry settings
    EMBEDDING_RETRY_ATTEMPTS: int = 3
    EMBEDDING_RETRY_MULTIPLIER: int = 1
    EMBEDDING_RETRY_MIN_WAIT: int = 2  # seconds
    EMBEDDING_RETRY_MAX_WAIT: int = 10 # seconds

    # Primary and Fallback Embedding Model Names
    # Both must produce vectors of EMBEDDING_DIMENSIONS, the size of the embeddings column
    PRIMARY_EMBEDDING_MODEL_NAME: str = "sentence-transformers/all-mpnet-base-v2"
    FALLBACK_EMBEDDING_MODEL_NAME: str = "sentence-transformers/all-distilroberta-v1"
    EMBEDDING_DIMENSIONS: int = 768

    # Memory retrieval
    MEMORY_MATCH_THRESHOLD: float = 0.5
    MEMORY_LIMIT_PER_LEVEL: int = 5
    MEMORY_CONTEXT_MAX_TOKENS: int = 2000

    # Chain continuation. Without APP_BASE_URL the next task runs in-process.
    APP_BASE_URL: Optional[str] = None
    INTERNAL_TASK_SECRET: str = ""
    CONTINUATION_TIMEOUT_SECONDS: float = 10.0

    # Recovery sweep
    TASK_SWEEP_MAX_SESSIONS: int = 5
    TASK_STALE_AFTER_SECONDS: int = 300

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    @field_validator("USE_GPU", "VERIFY_JWT", "DEBUG", mode="before")
    def parse_boolean(cls, v: Any) -> bool:
        """Parse boolean values, handling comments in env file."""
        if isinstance(v, str):
            # Remove comments and whitespace
            clean_value = v.split('#')[0].strip().lower()
            if clean_value in ('true', '1', 'yes', 'y'):
                return True
            elif clean_value in ('false', '0', 'no', 'n', ''):
                return False
        return bool(v)

    @field_validator("CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        raise ValueError(v)

    @field_validator("APP_BASE_URL", mode="before")
    def strip_base_url(cls, v: Any) -> Optional[str]:
        """Treat an empty base URL as unset and drop any trailing slash."""
        if v is None:
            return None
        v = str(v).strip()
        return v.rstrip("/") or None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Create settings instance
settings = Settings()
