"""Shared configuration management for the extraction and mapping core.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug

    The extraction routing and mapping mode switches are also read from their
    unprefixed names (EXTRACTION_SERVICE, EXTRACTION_CONFIDENCE_THRESHOLD,
    SIMPLE_MAPPING_MODE) used by existing deployments.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="ledgerflow",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction routing
    extraction_service: Literal["openai", "mindee", "auto"] = Field(
        default="auto",
        validation_alias=AliasChoices("APP_EXTRACTION_SERVICE", "EXTRACTION_SERVICE"),
        description=(
            "Primary extraction provider: openai, mindee, or auto (route by file type "
            "with a single confidence-based fallback)"
        ),
    )
    extraction_confidence_threshold: float = Field(
        default=0.7,
        ge=0,
        le=1,
        validation_alias=AliasChoices(
            "APP_EXTRACTION_CONFIDENCE_THRESHOLD", "EXTRACTION_CONFIDENCE_THRESHOLD"
        ),
        description="Key-field confidence below which auto mode falls back",
    )
    simple_mapping_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("APP_SIMPLE_MAPPING_MODE", "SIMPLE_MAPPING_MODE"),
        description="Use schema-aware extraction and copy accounting fields through directly",
    )

    # Provider credentials and endpoints
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("APP_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o",
        description="OpenAI model used by the vision, files and accounting adapters",
    )
    mindee_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("APP_MINDEE_API_KEY", "MINDEE_API_KEY"),
        description="Mindee API key",
    )
    mindee_model_id: str = Field(
        default="0148557e-18b3-4d9b-9515-962074ebc365",
        description="Mindee custom invoice model identifier",
    )
    mindee_base_url: str = Field(
        default="https://api-v2.mindee.net/v2",
        description="Mindee V2 API base URL",
    )

    # Outbound request limits
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single outbound provider call",
    )
    file_upload_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for file-upload-heavy providers (OpenAI Files, Mindee)",
    )
    mindee_max_polls: int = Field(
        default=30,
        ge=1,
        description="Maximum number of Mindee job status polls",
    )
    mindee_poll_interval_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay between Mindee job status polls",
    )

    # Accounting mapping
    auto_approve_confidence_threshold: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Overall mapping confidence required to skip manual review",
    )
    fuzzy_match_threshold: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Minimum supplier-name similarity for a company mapping match",
    )
    default_currency: str = Field(default="USD", description="Fallback document currency")
    default_tax_code: str = Field(default="T1", description="Fallback tax code")
    audit_logging_enabled: bool = Field(
        default=True,
        description="Persist field-level audit entries for processed documents",
    )

    # Audit storage (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Enable audit trail persistence in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="mapping-audit",
        description="Bucket holding audit trail objects",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
