"""Server configuration for feed_context.

Settings are read from FEED_CONTEXT_* environment variables (or a local .env
file) by pydantic-settings. The database location defaults to
~/.feed_context/feed_context.db.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feed_context.errors import InvalidInputError

ENV_PREFIX = "FEED_CONTEXT_"


class ServerConfig(BaseSettings):
    """Runtime settings for the server and the feed manager.

    Every field can be overridden with FEED_CONTEXT_<FIELD>; the two fields
    whose unit is part of their name keep the shorter variable names
    FEED_CONTEXT_REFRESH_INTERVAL and FEED_CONTEXT_REFRESH_TIMEOUT.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    name: str = "feed_context"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None
    db_path: Path = Path.home() / ".feed_context" / "feed_context.db"

    # Feed manager
    refresh_interval_minutes: float = Field(
        default=30, gt=0, validation_alias=f"{ENV_PREFIX}REFRESH_INTERVAL"
    )
    retention_days: int = Field(default=30, ge=1)
    max_articles_per_feed: int = Field(default=100, ge=1)
    refresh_timeout_seconds: float = Field(
        default=15.0, gt=0, validation_alias=f"{ENV_PREFIX}REFRESH_TIMEOUT"
    )
    max_concurrent_refreshes: int = Field(default=8, ge=1)
    auto_refresh: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value


def _env_name(loc: tuple) -> str:
    name = str(loc[0]).upper() if loc else "CONFIG"
    return name if name.startswith(ENV_PREFIX) else ENV_PREFIX + name


def load_config() -> ServerConfig:
    """Build a ServerConfig from the environment.

    Returns:
        ServerConfig with environment overrides applied

    Raises:
        InvalidInputError: If a variable cannot be parsed or is out of range
    """
    try:
        return ServerConfig()
    except ValidationError as e:
        problems = "; ".join(
            f"{_env_name(error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise InvalidInputError(f"Invalid configuration: {problems}") from e


@lru_cache
def get_config() -> ServerConfig:
    """Get or create the process-wide configuration."""
    return load_config()
