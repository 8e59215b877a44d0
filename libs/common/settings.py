"""Application settings for the athlete governance agent."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.common.errors import ConfigurationError


class CircuitBreakerConfig(BaseModel):
    """Thresholds for a single dependency breaker."""

    failure_threshold: int = Field(default=5, ge=1, description="Consecutive failures before opening")
    reset_timeout: float = Field(default=30.0, gt=0, description="Seconds spent open before a trial call")
    half_open_max_calls: int = Field(default=1, ge=1, description="Trial calls allowed while half-open")
    success_threshold: int = Field(default=1, ge=1, description="Trial successes needed to close")
    call_timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    error_rate_threshold: Optional[float] = Field(
        default=None, gt=0, le=1, description="Failure rate over the rolling window that opens the circuit"
    )
    rolling_window: float = Field(default=60.0, gt=0, description="Seconds of outcomes counted for the error rate")
    minimum_calls: int = Field(default=10, ge=1, description="Outcomes required before the error rate applies")


class Settings(BaseSettings):
    """Agent settings, read from AGENT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "test", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # External services
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    tavily_api_key: Optional[str] = None

    # Models
    agent_model: str = "gpt-4o"
    agent_temperature: float = 0.1
    agent_max_tokens: int = 4096
    classifier_model: str = "gpt-4o-mini"
    utility_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"

    # Vector store
    vector_collection: str = "governance_documents"

    # Routing thresholds
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    gray_zone_upper_threshold: float = Field(default=0.75, ge=0.0, le=1.0)

    # Retrieval
    top_k: int = 10
    narrow_top_k: int = 20
    broad_top_k: int = 20
    expansion_top_k: int = 5
    dedup_similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    web_search_max_results: int = 5

    # Quality gate
    quality_max_retries: int = Field(default=1, ge=0)

    # Conversation memory
    max_history_turns: int = 5
    summary_history_turns: int = 2
    max_message_chars: int = 500
    summary_ttl_seconds: int = 3600

    # Streaming
    stream_queue_size: int = 256

    # Feature flags
    feature_quality_checker: bool = True
    feature_retrieval_expansion: bool = True
    feature_conversation_memory: bool = True

    # Circuit breakers, one per external dependency
    llm_breaker: CircuitBreakerConfig = CircuitBreakerConfig(
        failure_threshold=3, reset_timeout=60.0, call_timeout=30.0
    )
    embeddings_breaker: CircuitBreakerConfig = CircuitBreakerConfig(
        failure_threshold=5, reset_timeout=30.0, call_timeout=10.0
    )
    vector_store_read_breaker: CircuitBreakerConfig = CircuitBreakerConfig(
        failure_threshold=5, reset_timeout=15.0, call_timeout=10.0
    )
    vector_store_write_breaker: CircuitBreakerConfig = CircuitBreakerConfig(
        failure_threshold=3, reset_timeout=30.0, call_timeout=30.0
    )
    web_search_breaker: CircuitBreakerConfig = CircuitBreakerConfig(
        failure_threshold=3, reset_timeout=30.0, call_timeout=15.0
    )

    @field_validator("gray_zone_upper_threshold")
    @classmethod
    def validate_gray_zone(cls, v, info):
        """Upper gray-zone bound may not sit below the base threshold."""
        lower = info.data.get("confidence_threshold")
        if lower is not None and v < lower:
            raise ValueError("gray_zone_upper_threshold must be >= confidence_threshold")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_test(self) -> bool:
        """Check if running under the test suite."""
        return self.app_env == "test"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def validate_runtime_settings(settings: Settings) -> None:
    """Fail start-up when a required service is not configured.

    Raises:
        ConfigurationError: database URL or OpenAI key missing outside tests
    """
    if settings.is_test:
        return

    missing = [
        name
        for name, value in (
            ("AGENT_DATABASE_URL", settings.database_url),
            ("AGENT_OPENAI_API_KEY", settings.openai_api_key),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
