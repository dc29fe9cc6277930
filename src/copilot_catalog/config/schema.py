"""
Pydantic models for copilot-catalog configuration.

Defines all configuration schemas using Pydantic v2 for validation,
defaults, and serialization.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class CatalogConfig(BaseModel):
    """Content repository and cache policy configuration."""

    repo: str = Field(
        default="github/awesome-copilot",
        description="Repository to index, in 'owner/name' form",
    )
    branch: str = "main"
    ttl_hours: float = Field(
        default=24,
        gt=0,
        description="Hours a cached catalog is served before it is considered stale",
    )
    max_items: int = Field(
        default=10,
        ge=1,
        description=(
            "Maximum number of items kept per index build. The tree listing is "
            "truncated in listing order; completeness is not guaranteed."
        ),
    )
    expand_max_items: int = Field(
        default=5,
        ge=1,
        description="Maximum number of new items added by one keyword expansion",
    )
    cache_dir: Path = Field(
        default=Path("~/.copilot-catalog"),
        description="Directory holding the persisted catalog snapshot",
    )

    model_config = {"extra": "forbid"}

    @field_validator("repo")
    @classmethod
    def validate_repo(cls, v: str) -> str:
        parts = v.strip("/").split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"repo must have the form 'owner/name', got '{v}'")
        return "/".join(parts)

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_hours * 3600


class RemoteConfig(BaseModel):
    """Remote API client configuration."""

    api_base: str = "https://api.github.com"
    raw_base: str = "https://raw.githubusercontent.com"
    user_agent: str = "copilot-catalog"
    token: str | None = None
    token_env: str | None = Field(
        default="GITHUB_TOKEN",
        description="Environment variable read for a token when 'token' is not set",
    )
    timeout: float = Field(default=30.0, gt=0)
    request_delay_ms: int = Field(
        default=200,
        ge=0,
        description="Pause after each API call to smooth bursts",
    )
    content_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Pause after each raw content fetch",
    )

    model_config = {"extra": "forbid"}


class RateLimitConfig(BaseModel):
    """Quota guard configuration.

    The RateGate checks the remaining quota before every remote call.
    At or below `low_water_mark` calls are spread out; at zero they wait
    for the quota reset plus `safety_margin`.
    """

    low_water_mark: int = Field(default=5, ge=0)
    low_water_delay: float = Field(
        default=1.0,
        ge=0,
        description="Seconds to pause per call while quota is at or below the low-water mark",
    )
    safety_margin: float = Field(
        default=1.0,
        ge=0,
        description="Seconds added to the reset time before calling again",
    )
    fail_open_delay: float = Field(
        default=0.5,
        ge=0,
        description="Seconds to pause when the quota query itself fails",
    )
    query_consumes_quota: bool = Field(
        default=False,
        description=(
            "If True, the quota endpoint is assumed to count against the quota "
            "and the last known budget is reused instead of re-querying."
        ),
    )
    poll_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between background quota status polls",
    )
    warn_threshold: int = Field(
        default=20,
        ge=0,
        description="Remaining calls below which the status indicator reports 'ok' instead of 'ready'",
    )

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    """Logging system configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Complete application configuration.

    This is the root of the configuration tree. It combines all sections
    and is the entry point for validation.
    """

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}
