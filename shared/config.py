"""
Shared configuration management for the Access response cache.
"""

from typing import Any, Mapping, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import CacheConfigurationError


ONE_WEEK_MINUTES = 7 * 24 * 60

# Keys accepted by from_mapping, including the names used by the original
# config files ("global", "cache-all", "default-life").
_MAPPING_ALIASES = {
    "enabled": "enabled",
    "global": "cache_all",
    "cache-all": "cache_all",
    "cache_all": "cache_all",
    "life": "life",
    "default-life": "life",
}


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class ResponseCacheConfig(BaseConfig):
    """Process-wide response cache settings.

    Loaded once at startup and handed to the middleware; instances are frozen
    so request handling can only read them.
    """

    model_config = SettingsConfigDict(
        env_prefix="RESPONSE_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Master kill switch
    enabled: bool = Field(default=False)
    # Default policy for routes without a cache directive. Aliases bypass
    # env_prefix, so the prefixed environment names are listed explicitly.
    cache_all: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "cache_all",
            "global",
            "response_cache_cache_all",
            "response_cache_global",
        ),
    )
    # Default TTL in minutes
    life: int = Field(default=ONE_WEEK_MINUTES)

    key_prefix: str = Field(default="access.response-cache.")

    # Backend
    store_backend: str = Field(default="redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    store_failure_threshold: int = Field(default=5)
    store_recovery_timeout: float = Field(default=30.0)

    @field_validator("life")
    @classmethod
    def _check_life(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("life must be a positive number of minutes")
        return value

    @field_validator("store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("redis", "memory"):
            raise ValueError("store_backend must be 'redis' or 'memory'")
        return value

    @classmethod
    def build(cls, **values: Any) -> "ResponseCacheConfig":
        """Construct a config, reporting invalid values as CacheConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as exc:
            raise CacheConfigurationError(
                "Invalid response cache configuration",
                details={"errors": [err["msg"] for err in exc.errors()]},
            ) from exc

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], **overrides: Any) -> "ResponseCacheConfig":
        """Build a config from a config-file style mapping."""
        kwargs = {}
        for key, value in values.items():
            kwargs[_MAPPING_ALIASES.get(key, key.replace("-", "_"))] = value
        kwargs.update(overrides)
        return cls.build(**kwargs)

    @classmethod
    def opt_in(cls, life: Optional[int] = None, **overrides: Any) -> "ResponseCacheConfig":
        """Enabled, but only routes carrying a cache directive are cached."""
        values = {"enabled": True, "cache_all": False}
        if life is not None:
            values["life"] = life
        values.update(overrides)
        return cls.build(**values)

    @classmethod
    def cache_everything(cls, life: Optional[int] = None, **overrides: Any) -> "ResponseCacheConfig":
        """Enabled, every GET route is cached unless it opts out."""
        values = {"enabled": True, "cache_all": True}
        if life is not None:
            values["life"] = life
        values.update(overrides)
        return cls.build(**values)


def get_config(**overrides: Any) -> ResponseCacheConfig:
    """Load the response cache configuration from the environment."""
    return ResponseCacheConfig.build(**overrides)
