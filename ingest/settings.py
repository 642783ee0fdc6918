"""
Ingest settings using pydantic-settings for type-safe configuration.

All environment variables are centralized here with proper typing, validation,
and per-environment defaults. Settings are resolved once at startup, frozen,
and passed down to every stage.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

EnvironmentType = Literal["local", "production"]
ProcessMode = Literal["parallel", "sequential"]
ReferenceDataMode = Literal["auto", "preload", "on_demand"]

# Reference-data memory ceilings (MB) per deployment environment
DEFAULT_REFERENCE_MAX_MEMORY_MB: dict[str, float] = {
    "production": 512,
    "local": 1024,
}


def _detect_environment() -> EnvironmentType:
    """Production when running inside an AWS Lambda runtime, local otherwise."""
    if os.getenv("AWS_LAMBDA_FUNCTION_NAME") or os.getenv("LAMBDA_RUNTIME_DIR"):
        return "production"
    return "local"


class Settings(BaseSettings):
    """
    Ingest settings loaded from environment variables.

    Every setting has a sensible default for local development.
    Production values should be set via environment variables or .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    # === Strapi Configuration ===
    strapi_base_url: str = Field(
        default="",
        validation_alias=AliasChoices("strapi_base_url", "STRAPI_BASE_URL", "STRAPI_URL"),
        description="Strapi API base URL (e.g. https://cms.example.org/api)",
    )
    strapi_token: str = Field(
        default="",
        description="Strapi API token sent as a Bearer credential",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout for outbound Strapi calls",
    )

    # === Environment ===
    environment: EnvironmentType = Field(
        default_factory=_detect_environment,
        description="Deployment environment: 'local' or 'production' (auto-detected when unset)",
    )

    # === Processing ===
    process_mode: ProcessMode = Field(
        default="parallel",
        description="Row dispatch mode: 'parallel' or 'sequential'",
    )
    batch_size: int = Field(
        default=100,
        description="Number of rows dispatched together",
    )
    chunk_size: int = Field(
        default=150,
        description="Maximum concurrent dependent-record writes per row",
    )
    skip_lookup: bool = Field(
        default=False,
        validation_alias=AliasChoices("skip_lookup", "OMIT_GET", "OMMIT_GET"),
        description="Skip GET lookups before creating entities (participants are always looked up)",
    )

    # === Reference data (CCTs) ===
    reference_data_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("reference_data_path", "CCTS_LOCAL_PATH", "CCTS_CSV_FILE"),
        description="Local path of the reference-code extract",
    )
    reference_max_memory_mb: float | None = Field(
        default=None,
        validation_alias=AliasChoices("reference_max_memory_mb", "CCTS_MAX_MEMORY_MB"),
        description="Memory ceiling for preloading the reference table (defaults per environment)",
    )
    reference_max_records: int = Field(
        default=100_000,
        gt=0,
        description="Record-count ceiling for preloading the reference table",
    )
    reference_data_mode: ReferenceDataMode = Field(
        default="auto",
        validation_alias=AliasChoices("reference_data_mode", "CCTS_MODE"),
        description="Force 'preload' or 'on_demand', or let the memory heuristic decide ('auto')",
    )

    # === Error report ===
    error_report_path: str = Field(
        default="migration-errors.csv",
        validation_alias=AliasChoices("error_report_path", "OUTPUT_PATH"),
        description="Where the CSV error report is written",
    )

    @field_validator("process_mode", "reference_data_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: str) -> str:
        """Accept mixed case and dashes ('On-Demand', 'SEQUENTIAL')."""
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("skip_lookup", mode="before")
    @classmethod
    def parse_skip_lookup(cls, v: str | bool) -> bool:
        """Parse OMIT_GET which can be 'true', '1', 'yes', etc."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes")
        return bool(v)

    @field_validator("batch_size", "chunk_size", mode="after")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Batch and chunk sizes must be at least 1."""
        if v < 1:
            raise ValueError("must be greater than 0")
        if v > 1000:
            logger.warning(f"Size {v} is above 1000; large batches may cause memory issues")
        return v

    @field_validator("reference_max_memory_mb", mode="after")
    @classmethod
    def validate_memory_ceiling(cls, v: float | None) -> float | None:
        """Reject negative ceilings; None means 'use the environment default'."""
        if v is not None and v < 0:
            raise ValueError("reference_max_memory_mb must not be negative")
        return v

    def effective_reference_max_memory_mb(self) -> float:
        """Memory ceiling for reference preloading, falling back to the environment default."""
        if self.reference_max_memory_mb is not None:
            return self.reference_max_memory_mb
        return DEFAULT_REFERENCE_MAX_MEMORY_MB[self.environment]

    def validation_errors(self) -> list[str]:
        """Check settings that are only required for a real run (not for tests)."""
        errors: list[str] = []
        if not self.strapi_base_url:
            errors.append("STRAPI_BASE_URL is required")
        elif not self.strapi_base_url.startswith(("http://", "https://")):
            errors.append("STRAPI_BASE_URL must be a valid URL")
        if not self.strapi_token:
            errors.append("STRAPI_TOKEN is required")
        return errors


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.
    """
    return Settings()
