"""
Shared configuration management for the Smart Cache CLI.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMARTCACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(default="warning")

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_timeout_seconds: float = Field(default=5.0, gt=0)

    # Application namespace all keys are scoped to
    application: str = Field(default="smartcache", min_length=1)

    # Rule list persistence format
    rule_encoding: Literal["stream", "json"] = Field(default="stream")

    @field_validator("log_level", "rule_encoding", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.lower() if isinstance(value, str) else value


def config_key(application: str) -> str:
    """Key holding the rule configuration for the application."""
    return f"{application}:config"


def query_key(application: str, query_id: str) -> str:
    return f"{application}:query:{query_id}"


def get_config(**overrides) -> BaseConfig:
    """Get configuration, letting explicit overrides win over the environment."""
    return BaseConfig(**{k: v for k, v in overrides.items() if v is not None})
