"""Application configuration management via pydantic-settings.

Centralize all configuration parameters for the Conduit service. Load settings
from environment variables and/or a `.env` file. Nested sections (providers,
registry, token tracking) are addressed with a double underscore, for example
``GITHUB_PROVIDER__ENABLED=true`` or ``TOKEN_TRACKING__BASELINE_STRATEGY=no_cache``.
"""

import os
import re
from functools import lru_cache
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_PATTERN = re.compile(r"^[\w-]+/[\w.-]+$")

ResourceCategoryName = Literal["agent", "skill", "example", "pattern", "workflow"]


# ==============================================================================
# PROVIDER SECTIONS
# ==============================================================================


class RepoSpec(BaseModel):
    """A GitHub repository to index, with its resolved branch.

    The branch may be supplied either as a plain string or as an object with a
    ``name`` key; both collapse to a string here.
    """

    owner: str
    repo: str
    branch: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            if not _REPO_PATTERN.match(data):
                raise ValueError(
                    f"Invalid repository '{data}'. Expected the form 'owner/repo'."
                )
            owner, repo = data.split("/", 1)
            return {"owner": owner, "repo": repo}
        if isinstance(data, dict):
            data = dict(data)
            if "owner" not in data and "repo" in data and "/" in str(data["repo"]):
                owner, repo = str(data["repo"]).split("/", 1)
                data["owner"], data["repo"] = owner, repo
            branch = data.get("branch")
            if isinstance(branch, dict):
                data["branch"] = branch.get("name")
        return data

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class LocalProviderSettings(BaseModel):
    enabled: bool = True
    resources_path: Optional[str] = None
    cache_ttl: float = 4 * 3600
    index_cache_ttl: float = 24 * 3600
    cache_size: int = Field(default=200, gt=0)

    def resolved_path(self) -> str:
        """Resolve the resource root: explicit path > RESOURCES_PATH > ./resources."""
        if self.resources_path:
            return self.resources_path
        return os.environ.get("RESOURCES_PATH") or os.path.join(os.getcwd(), "resources")


class GitHubProviderSettings(BaseModel):
    enabled: bool = False
    repos: list[RepoSpec] = Field(default_factory=list)
    branch: str = "main"
    # Token resolution priority: FILE (Docker Secret) > inline value > anonymous
    auth_token_file: Optional[str] = None
    auth_token: Optional[SecretStr] = None
    cache_ttl: float = 24 * 3600
    resource_cache_ttl: float = 7 * 24 * 3600
    tree_cache_ttl: float = 3600
    timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)

    def resolved_token(self) -> Optional[str]:
        """Return the API token, preferring the mounted secret file.

        Raises:
            ValueError: If ``auth_token_file`` is set but the file is missing.
        """
        if self.auth_token_file:
            try:
                with open(self.auth_token_file, "r") as f:
                    return f.read().strip() or None
            except FileNotFoundError:
                raise ValueError(
                    f"CRITICAL: GitHub token file defined at '{self.auth_token_file}' but not found."
                )
        if self.auth_token:
            return self.auth_token.get_secret_value() or None
        return None


class AitmplProviderSettings(BaseModel):
    enabled: bool = False
    api_url: str = "https://raw.githubusercontent.com/davila7/claude-code-templates/main/docs"
    cache_ttl: float = 24 * 3600
    resource_cache_ttl: float = 7 * 24 * 3600
    categories: list[ResourceCategoryName] = Field(default_factory=list)
    requests_per_minute: int = Field(default=60, gt=0)
    requests_per_hour: int = Field(default=1000, gt=0)
    timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    cache_size: int = Field(default=500, gt=0)

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RegistrySettings(BaseModel):
    enable_health_checks: bool = True
    health_check_interval: float = Field(default=60.0, gt=0)
    max_consecutive_failures: int = Field(default=3, ge=1)
    auto_disable_unhealthy: bool = True
    provider_timeout: float = Field(default=30.0, gt=0)


# ==============================================================================
# TOKEN ACCOUNTING SECTION
# ==============================================================================


class CostRates(BaseModel):
    """USD prices per million tokens, one rate per token type."""

    input: float = Field(default=3.00, ge=0)
    output: float = Field(default=15.00, ge=0)
    cache_read: float = Field(default=0.30, ge=0)
    cache_creation: float = Field(default=3.75, ge=0)


class TokenTrackingSettings(BaseModel):
    enabled: bool = True
    baseline_strategy: Literal["no_jit", "no_cache", "custom"] = "no_jit"
    deduplication: bool = True
    cost_rates: CostRates = Field(default_factory=CostRates)
    assumed_tokens_per_resource: int = Field(default=500, ge=0)
    cache_multiplier: float = Field(default=10.0, ge=0)
    max_records: int = Field(default=10_000, gt=0)
    retention_days: float = Field(default=7, gt=0)
    auto_cleanup: bool = False
    cleanup_interval: float = Field(default=3600.0, gt=0)


# ==============================================================================
# ROOT SETTINGS
# ==============================================================================


class Settings(BaseSettings):
    """Application-wide configuration settings.

    Attributes:
        PROJECT_NAME: Display name for the application.
        VERSION: Semantic version string.
        ENVIRONMENT: Deployment environment identifier.
        LOG_LEVEL: Minimum logging verbosity level.
        LOG_FORMAT: Force a renderer; ``auto`` picks JSON outside development.
        LOGGING_NOISY_MODULES: Third-party loggers pinned to WARNING.
        API_PREFIX: Base path prefix for the read API.
        LOCAL_PROVIDER: Filesystem provider section.
        GITHUB_PROVIDER: GitHub repository provider section.
        AITMPL_PROVIDER: Community catalog provider section.
        REGISTRY: Health checking and failover section.
        TOKEN_TRACKING: Usage accounting section.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # PROJECT METADATA
    # ==========================================================================
    PROJECT_NAME: str = "Conduit"
    VERSION: str = "0.1.0"

    # ==========================================================================
    # ENVIRONMENT & LOGGING
    # ==========================================================================
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: Literal["debug", "info", "warning", "error", "critical"] = "info"
    LOG_FORMAT: Literal["auto", "json", "console"] = "auto"
    LOGGING_NOISY_MODULES: list[str] = [
        "uvicorn.access",
        "uvicorn.error",
        "httpx",
        "httpcore",
        "asyncio",
    ]

    # ==========================================================================
    # HTTP SURFACE
    # ==========================================================================
    API_PREFIX: str = "/api"

    # ==========================================================================
    # COMPONENTS
    # ==========================================================================
    LOCAL_PROVIDER: LocalProviderSettings = Field(default_factory=LocalProviderSettings)
    GITHUB_PROVIDER: GitHubProviderSettings = Field(default_factory=GitHubProviderSettings)
    AITMPL_PROVIDER: AitmplProviderSettings = Field(default_factory=AitmplProviderSettings)
    REGISTRY: RegistrySettings = Field(default_factory=RegistrySettings)
    TOKEN_TRACKING: TokenTrackingSettings = Field(default_factory=TokenTrackingSettings)

    @field_validator("API_PREFIX")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Ensure the prefix starts with a slash and has no trailing slash."""
        v = "/" + v.strip("/")
        return "" if v == "/" else v


# ==============================================================================
# DEPENDENCY INJECTION
# ==============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton instance of the application settings.

    Use as a FastAPI dependency to inject configuration into route handlers.

    Returns:
        The singleton Settings instance.

    Example:
        >>> def handler(settings: Settings = Depends(get_settings)):
        ...     pass
    """
    return Settings()
