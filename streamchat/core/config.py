from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # LLM_API_KEY is the name older deployments use
    OPENAI_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "LLM_API_KEY"),
    )

    # === Model Configuration ===
    LLM_MODEL: str = "gpt-4o-mini"
    FORMATTER_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    LLM_TEMPERATURE: float = 0.0

    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # === Sessions ===
    DEFAULT_SESSION_ID: str = "default"
    SESSION_HISTORY_LIMIT: int = Field(
        default=50,
        description="Maximum user utterances kept per session (oldest evicted first).",
    )

    # === Chat Rate Limit (per client address) ===
    CHAT_RATE_LIMIT: int = 5
    CHAT_RATE_WINDOW_SECONDS: float = 60.0

    # === Agent Configuration ===
    AGENT_MAX_TOOL_CALLS: int = Field(
        default=3, description="Upper bound on tool calls per context-gathering pass"
    )
    AGENT_TIMEOUT: float = Field(default=30.0, description="Timeout for agent LLM calls in seconds")
    STREAM_TIMEOUT: float = Field(default=60.0, description="Timeout for streamed completions")
    FORMATTER_TIMEOUT: float = Field(
        default=20.0, description="Timeout for the post-stream reformatting call in seconds"
    )
    CREDENTIAL_CHECK_TIMEOUT: float = Field(
        default=5.0, description="Timeout for the one-off API key validation call"
    )

    # === PDF Knowledge Base ===
    RETRIEVAL_TOP_K: int = 8
    PDF_CHUNK_SIZE: int = 1500
    PDF_CHUNK_OVERLAP: int = 500
    PDF_MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10 MB
    UPLOAD_DIR: str = "uploads"

    # === Web Search ===
    WEB_SEARCH_MAX_RESULTS: int = 10
    WEB_SEARCH_TIMEOUT: float = 15.0
    WEB_SEARCH_RATE_LIMIT: float = 1.0  # requests per second

    DISCONNECT_POLL_INTERVAL: float = Field(
        default=0.5, description="How often an open SSE stream checks for client disconnect"
    )

    # === Validators ===

    @field_validator("CHAT_RATE_LIMIT", "SESSION_HISTORY_LIMIT", "RETRIEVAL_TOP_K")
    @classmethod
    def validate_positive_counts(cls, v: int) -> int:
        """Counts and limits must be at least one."""
        if v < 1:
            raise ValueError("Value must be >= 1")
        return v

    @field_validator("AGENT_MAX_TOOL_CALLS")
    @classmethod
    def validate_tool_call_limit(cls, v: int) -> int:
        """Keep the reasoning loop bounded."""
        if v < 1:
            raise ValueError("AGENT_MAX_TOOL_CALLS must be >= 1")
        if v > 10:
            raise ValueError("AGENT_MAX_TOOL_CALLS must be <= 10")
        return v

    @field_validator(
        "CHAT_RATE_WINDOW_SECONDS",
        "AGENT_TIMEOUT",
        "STREAM_TIMEOUT",
        "FORMATTER_TIMEOUT",
        "CREDENTIAL_CHECK_TIMEOUT",
        "WEB_SEARCH_TIMEOUT",
        "DISCONNECT_POLL_INTERVAL",
    )
    @classmethod
    def validate_durations(cls, v: float) -> float:
        """Durations are seconds and must be positive."""
        if v <= 0:
            raise ValueError("Duration must be > 0 seconds")
        return v

    @field_validator("WEB_SEARCH_RATE_LIMIT")
    @classmethod
    def validate_rate_limit(cls, v: float) -> float:
        """Validate outbound search rate (requests per second)."""
        if v < 0.1:
            raise ValueError("Rate limit must be >= 0.1 requests/sec (minimum reasonable)")
        if v > 100.0:
            raise ValueError("Rate limit must be <= 100 requests/sec")
        return v

    @field_validator("PDF_CHUNK_OVERLAP")
    @classmethod
    def validate_chunk_overlap(cls, v: int, info) -> int:
        """Overlap must be smaller than the chunk it is carved from."""
        if v < 0:
            raise ValueError("PDF_CHUNK_OVERLAP must be >= 0")
        chunk_size = info.data.get("PDF_CHUNK_SIZE")
        if chunk_size is not None and v >= chunk_size:
            raise ValueError("PDF_CHUNK_OVERLAP must be smaller than PDF_CHUNK_SIZE")
        return v

    @field_validator("LLM_TEMPERATURE")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError("LLM_TEMPERATURE must be between 0.0 and 2.0")
        return v


settings = Settings()
