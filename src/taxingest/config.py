"""Configuration for the taxingest pipeline.

Pydantic Settings-based configuration with environment variable support and
defaults matching the upload limits and backend polling budget of the import
service.

Usage:
    from taxingest.config import IngestSettings

    # Load from environment variables and .env file
    settings = IngestSettings()

    print(settings.max_file_size)
    if settings.backend.is_configured:
        print(settings.backend.endpoint)
"""

import logging
from typing import Optional

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class BackendSettings(BaseSettings):
    """Document-intelligence backend settings.

    Environment Variables:
        TAXINGEST_BACKEND_ENDPOINT: Base URL of the analysis service
        TAXINGEST_BACKEND_API_KEY: Subscription key for the service
        TAXINGEST_BACKEND_API_VERSION: REST API version string
        TAXINGEST_BACKEND_POLL_MAX_ATTEMPTS: Maximum result polls before timing out
        TAXINGEST_BACKEND_POLL_INTERVAL: Seconds between result polls
        TAXINGEST_BACKEND_TIMEOUT: Per-request timeout in seconds
    """

    model_config = SettingsConfigDict(
        env_prefix="TAXINGEST_BACKEND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: Optional[str] = Field(
        default=None,
        description="Base URL of the document-intelligence service",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Subscription key for the document-intelligence service",
    )
    api_version: str = Field(
        default="2023-07-31",
        description="REST API version sent with analyze requests",
    )
    poll_max_attempts: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Maximum number of result polls before timing out",
    )
    poll_interval: float = Field(
        default=2.0,
        ge=0,
        description="Delay between result polls in seconds",
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout in seconds",
    )

    @field_validator("endpoint")
    @classmethod
    def strip_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Drop trailing slashes so URLs can be joined safely."""
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @property
    def is_configured(self) -> bool:
        """Whether both endpoint and key are present."""
        return bool(self.endpoint and self.api_key)


class IngestSettings(BaseSettings):
    """Root configuration for the import pipeline.

    Environment Variables:
        TAXINGEST_MAX_FILE_SIZE: Upload size ceiling in bytes
        TAXINGEST_PREVIEW_ROWS: Rows kept for upload previews
        TAXINGEST_MIN_BACKEND_FIELDS: Backend field count below which
            pattern extraction runs over the OCR text
        TAXINGEST_OCR_EXCERPT_CHARS: Length of the OCR excerpt kept on
            text-only results
        TAXINGEST_DEFAULT_BACKEND_CONFIDENCE: Confidence used when the backend
            reports none
        TAXINGEST_FALLBACK_CONFIDENCE: Confidence of pattern-only extraction
        TAXINGEST_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)

    Example:
        settings = IngestSettings(
            preview_rows=10,
            backend=BackendSettings(endpoint="https://example.test", api_key="k"),
        )
    """

    model_config = SettingsConfigDict(
        env_prefix="TAXINGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_file_size: int = Field(
        default=DEFAULT_MAX_FILE_SIZE,
        gt=0,
        description="Maximum accepted file size in bytes",
    )
    preview_rows: int = Field(
        default=5,
        ge=0,
        description="Number of leading rows retained for previews",
    )
    min_backend_fields: int = Field(
        default=3,
        ge=0,
        description="Populated backend fields needed to skip pattern extraction",
    )
    ocr_excerpt_chars: int = Field(
        default=1000,
        gt=0,
        description="Characters of OCR text kept on text-only results",
    )
    default_backend_confidence: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Confidence assumed when the backend reports none",
    )
    fallback_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Confidence of pattern-only extraction",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    backend: BackendSettings = Field(default_factory=BackendSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper().strip()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {valid_levels}")
        return v_upper


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog with a level filter and console output."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "DEFAULT_MAX_FILE_SIZE",
    "BackendSettings",
    "IngestSettings",
    "configure_logging",
]
