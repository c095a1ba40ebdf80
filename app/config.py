"""Application configuration management via pydantic-settings.

Centralize all configuration parameters for the website egress monitor. Load
settings from environment variables and/or a `.env` file. Provide type
validation, default values, and derived values (probe interval in seconds,
the expected egress set) consumed by the probe loop.
"""

import re
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AnyHttpUrl, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

METRIC_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

EC2_AVAILABILITY_ZONE_URL = (
    "http://169.254.169.254/latest/meta-data/placement/availability-zone"
)


class Settings(BaseSettings):
    """Application-wide configuration settings.

    Attributes:
        PROJECT_NAME: Display name for the application.
        VERSION: Semantic version string.
        ENVIRONMENT: Deployment environment identifier.
        LOG_LEVEL: Minimum logging verbosity level.
        TARGET_URL: The website probed on every tick. Required.
        POLL_INTERVAL_MS: Pause between the end of one probe and the next.
        EXPECTED_EGRESS_IPS: Egress tokens the target is allowed to report.
        SCRAPE_HOST: Bind address for the metrics server.
        SCRAPE_PORT: Port for the metrics server.
        METRICS_NAMESPACE: Prometheus namespace prefix.
        METRICS_SUBSYSTEM: Prometheus subsystem prefix.
        COMPONENT_NAME: Name identifying this monitor instance in metric names.
        IDENTITY_METADATA_URL: Cloud metadata endpoint returning the placement zone.
        IDENTITY_METADATA_TIMEOUT: Timeout in seconds for the metadata request.
        IDENTITY_FALLBACK_HOST: Public address used to discover the local outbound IP.
        IDENTITY_FALLBACK_PORT: Port paired with IDENTITY_FALLBACK_HOST.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # ==========================================================================
    # PROJECT METADATA
    # ==========================================================================
    PROJECT_NAME: str = "Webmon"
    VERSION: str = "0.1.0"

    # ==========================================================================
    # ENVIRONMENT & LOGGING
    # ==========================================================================
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: Literal["debug", "info", "warning", "error", "critical"] = "info"
    LOGGING_NOISY_MODULES: list[str] = [
        "uvicorn.access",
        "uvicorn.error",
        "httpx",
        "httpcore",
        "asyncio",
    ]

    # ==========================================================================
    # PROBE TARGET
    # ==========================================================================
    TARGET_URL: AnyHttpUrl
    POLL_INTERVAL_MS: int = Field(default=1000, gt=0)
    # Comma-separated in the environment, e.g. "10.0.0.5,10.0.0.6"
    EXPECTED_EGRESS_IPS: Annotated[list[str], NoDecode] = []

    # ==========================================================================
    # SCRAPE ENDPOINT & METRIC NAMING
    # ==========================================================================
    SCRAPE_HOST: str = "0.0.0.0"
    SCRAPE_PORT: int = Field(default=9100, ge=1, le=65535)
    METRICS_NAMESPACE: str = "monitoring"
    METRICS_SUBSYSTEM: str = "website"
    COMPONENT_NAME: str = "webmon"

    # ==========================================================================
    # IDENTITY RESOLUTION
    # ==========================================================================
    IDENTITY_METADATA_URL: str = EC2_AVAILABILITY_ZONE_URL
    IDENTITY_METADATA_TIMEOUT: float = Field(default=1.0, gt=0, le=1.0)
    IDENTITY_FALLBACK_HOST: str = "8.8.8.8"
    IDENTITY_FALLBACK_PORT: int = Field(default=80, ge=1, le=65535)

    @field_validator("EXPECTED_EGRESS_IPS", mode="before")
    @classmethod
    def split_egress_list(cls, v: object) -> object:
        """Split a comma-separated egress list, dropping blank entries.

        Args:
            v: Raw value from the environment or constructor.

        Returns:
            A list of stripped, non-empty egress tokens, or the value unchanged
            when it is already a sequence.
        """
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("METRICS_NAMESPACE", "METRICS_SUBSYSTEM", "COMPONENT_NAME")
    @classmethod
    def validate_metric_name_part(cls, v: str) -> str:
        """Validate that a metric name fragment is a legal Prometheus identifier.

        Raises:
            ValueError: If the fragment contains characters Prometheus rejects.
        """
        if not METRIC_NAME_PATTERN.match(v):
            raise ValueError(
                f"'{v}' is not a valid metric name part; "
                "use letters, digits and underscores only."
            )
        return v

    @computed_field
    @property
    def POLL_INTERVAL_SECONDS(self) -> float:
        """Return the probe interval converted to seconds."""
        return self.POLL_INTERVAL_MS / 1000

    @computed_field
    @property
    def EXPECTED_EGRESS_SET(self) -> frozenset[str]:
        """Return the expected egress tokens as an immutable set."""
        return frozenset(self.EXPECTED_EGRESS_IPS)


# ==============================================================================
# DEPENDENCY INJECTION
# ==============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton instance of the application settings.

    Returns:
        The singleton Settings instance.

    Raises:
        pydantic.ValidationError: If TARGET_URL is missing or a value is invalid.
    """
    return Settings()
