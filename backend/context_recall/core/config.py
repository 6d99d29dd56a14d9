from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Retriever
    RETRIEVER_TOP_K: int = 5
    DOCUMENT_SHARE: float = 0.7  # Share of top_k reserved for the document corpus
    DOCUMENT_SOURCE: str = "documents"
    CONVERSATION_SOURCE: str = "chat-history"

    # Search cache
    SEARCH_CACHE_ENABLED: bool = True
    SEARCH_CACHE_TTL_SECONDS: float = 300.0  # 5 minutes
    SEARCH_CACHE_MAX_ENTRIES: int = 50

    # Multi-turn fan-out
    MAX_CONCURRENCY: int = 4

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in LOG_LEVELS:
                raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("DOCUMENT_SHARE")
    @classmethod
    def check_document_share(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("DOCUMENT_SHARE must be in (0, 1]")
        return v

    @model_validator(mode="after")
    def enforce_positive_limits(self) -> "Settings":
        invalid = [
            name
            for name in ("RETRIEVER_TOP_K", "SEARCH_CACHE_MAX_ENTRIES", "MAX_CONCURRENCY")
            if getattr(self, name) < 1
        ]
        if invalid:
            raise ValueError(f"Settings must be at least 1: {', '.join(invalid)}")
        return self

    model_config = {
        "env_file": ".env",
        "env_prefix": "CONTEXT_RECALL_",
        "extra": "ignore",
    }

settings = Settings()
