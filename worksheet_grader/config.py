"""
Configuration management for the Worksheet Grader pipeline.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
Pipeline tuning constants come from a named profile and can be overridden one by one.
"""

from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from worksheet_grader.errors import ErrorKind


class PipelineProfile(str, Enum):
    """Tuning profile for the grading pipeline."""

    BALANCED = "balanced"  # Conservative spacing, long timeouts
    LOW_LATENCY = "low_latency"  # Tight spacing, quick progress updates


class PipelineTuning(BaseModel):
    """Resolved tuning constants for one pipeline run."""

    model_config = ConfigDict(frozen=True)

    min_request_interval_ms: int = Field(..., ge=0)
    max_retries: int = Field(..., ge=0, le=10)
    base_delay_ms: int = Field(..., ge=0)
    max_delay_ms: int = Field(..., ge=0)
    backoff_multiplier: float = Field(..., ge=1.0)
    callback_throttle_ms: int = Field(..., ge=0)
    partial_extraction_interval: int = Field(..., ge=1)
    operation_timeout_s: float = Field(..., gt=0)
    max_output_tokens: int = Field(..., ge=1)
    temperature: float = Field(..., ge=0.0, le=2.0)


PROFILE_TUNING: dict[PipelineProfile, PipelineTuning] = {
    PipelineProfile.BALANCED: PipelineTuning(
        min_request_interval_ms=1000,
        max_retries=3,
        base_delay_ms=1000,
        max_delay_ms=30000,
        backoff_multiplier=2.0,
        callback_throttle_ms=100,
        partial_extraction_interval=5,
        operation_timeout_s=120.0,
        max_output_tokens=8192,
        temperature=0.2,
    ),
    PipelineProfile.LOW_LATENCY: PipelineTuning(
        min_request_interval_ms=200,
        max_retries=2,
        base_delay_ms=500,
        max_delay_ms=5000,
        backoff_multiplier=2.0,
        callback_throttle_ms=50,
        partial_extraction_interval=3,
        operation_timeout_s=60.0,
        max_output_tokens=4096,
        temperature=0.2,
    ),
}

# Values shipped in example .env files; treated as "no real key configured"
PLACEHOLDER_API_KEYS = frozenset(
    {
        "your-api-key",
        "your-api-key-here",
        "your_api_key_here",
        "your-zenmux-api-key",
        "your_zenmux_api_key",
        "changeme",
        "placeholder",
        "test",
        "xxx",
    }
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The API key is optional: without a usable key the pipeline still
    answers, from the offline fallback generator.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ZenMux API Configuration
    # ==========================================================================
    zenmux_api_key: str | None = Field(
        default=None,
        description="API key for ZenMux (OpenAI-compatible endpoint)",
    )

    zenmux_base_url: str = Field(
        default="https://zenmux.ai/api/v1",
        description="Base URL for the ZenMux API",
    )

    zenmux_model: str = Field(
        default="google/gemini-2.5-flash",
        description="Model to use for grading",
    )

    # ==========================================================================
    # Pipeline Configuration
    # ==========================================================================
    pipeline_profile: PipelineProfile = Field(
        default=PipelineProfile.BALANCED,
        description="Tuning profile for rate limiting, retries and streaming",
    )

    streaming_threshold_bytes: int = Field(
        default=2048,
        ge=0,
        description="Text payloads at least this large are streamed; images always are",
    )

    # Per-constant overrides; None keeps the profile value
    min_request_interval_ms: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=0, le=10)
    base_delay_ms: int | None = Field(default=None, ge=0)
    max_delay_ms: int | None = Field(default=None, ge=0)
    backoff_multiplier: float | None = Field(default=None, ge=1.0)
    callback_throttle_ms: int | None = Field(default=None, ge=0)
    partial_extraction_interval: int | None = Field(default=None, ge=1)
    operation_timeout_s: float | None = Field(default=None, gt=0)
    max_output_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Root log level used by the CLI",
    )

    @field_validator("zenmux_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def tuning(self) -> PipelineTuning:
        """Resolve the profile tuning with any explicit overrides applied."""
        base = PROFILE_TUNING[self.pipeline_profile]
        overrides = {
            name: getattr(self, name)
            for name in PipelineTuning.model_fields
            if getattr(self, name) is not None
        }
        return base.model_copy(update=overrides)

    def credential_problem(self) -> ErrorKind | None:
        """
        Check the configured API key before any network call.

        Returns:
            MISSING_CREDENTIAL, INVALID_CREDENTIAL for a known placeholder,
            or None when the key looks usable.
        """
        key = (self.zenmux_api_key or "").strip()
        if not key:
            return ErrorKind.MISSING_CREDENTIAL
        if key.lower() in PLACEHOLDER_API_KEYS or key.lower().startswith("your"):
            return ErrorKind.INVALID_CREDENTIAL
        return None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
