"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from the environment, ``.env`` files, TOML files and programmatic
overrides into the correct types with proper defaults.
"""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from alma_batch.constants import (
    NETWORK_TIMEOUT,
    PAGE_SIZE,
    RATE_LIMIT_BURST,
    RATE_LIMIT_JITTER,
    REQUESTS_PER_SECOND,
)


class AlmaSettings(BaseSettings):
    """Pydantic settings schema for an Alma batch run.

    Values are normally merged by `resolve_config`; constructing the settings
    directly also reads ``ALMA_*`` environment variables for unset fields.
    """

    model_config = SettingsConfigDict(
        env_prefix="ALMA_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Connection ---

    region: str | None = Field(
        default=None,
        description="Alma hosting region, e.g. 'na' or 'eu'",
    )

    api_key: str | None = Field(
        default=None,
        description="Alma API key with read/write access to users",
    )

    base_url: str | None = Field(
        default=None,
        description="Explicit API base URL; derived from region when unset",
    )

    timeout_seconds: float = Field(
        default=NETWORK_TIMEOUT,
        description="Per-request network timeout in seconds",
        gt=0,
    )

    # --- Rate limiting ---

    requests_per_second: float = Field(
        default=REQUESTS_PER_SECOND,
        description="Sustained request rate allowed by the API",
        gt=0,
    )

    burst: int = Field(
        default=RATE_LIMIT_BURST,
        description="Requests that may be sent back to back",
        ge=1,
    )

    jitter_ms: float = Field(
        default=RATE_LIMIT_JITTER * 1000,
        description="Upper bound of the random delay added to each request",
        ge=0,
    )

    # --- Batching ---

    page_size: int = Field(
        default=PAGE_SIZE,
        description="Users per listing page (Alma allows at most 100)",
        ge=1,
        le=100,
    )

    max_concurrency: int | None = Field(
        default=None,
        description="Pages processed at once; unbounded when unset",
        ge=1,
    )

    # --- Transformation rules ---

    categories_to_remove_file: Path | None = Field(
        default=None,
        description="File listing statistic category types to remove, one per line",
    )

    external_user_groups_file: Path | None = Field(
        default=None,
        description="File listing external user groups, one per line",
    )

    normalize_titles: bool = Field(
        default=True,
        description="Remove titles without a description and upper-case the rest",
    )

    prune_role_parameters: bool = Field(
        default=True,
        description="Drop default circulation desk and empty role parameters",
    )

    # --- Validation Rules ---

    @field_validator("region", "api_key", "base_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat blank strings from the environment as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("max_concurrency", mode="before")
    @classmethod
    def parse_max_concurrency(cls, v: Any) -> Any:
        """Accept 0 and blank values as 'unbounded'."""
        if v in (None, "", 0, "0"):
            return None
        return v

    @model_validator(mode="after")
    def validate_connection(self) -> "AlmaSettings":
        """Ensure the API can be reached: a key and either a region or a base URL."""
        if not self.api_key:
            raise ValueError(
                "api_key is required. Set ALMA_APIKEY environment variable, "
                "provide it in a config file, or pass it programmatically."
            )
        if not self.region and not self.base_url:
            raise ValueError(
                "region is required when base_url is not set. "
                "Set ALMA_REGION environment variable."
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary of field values."""
        return self.model_dump()
