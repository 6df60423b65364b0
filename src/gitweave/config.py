"""Configuration for git workflow execution."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitweaveSettings(BaseSettings):
    """Settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="GITWEAVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Git invocation
    git_binary: str = Field(default="git", description="Git executable to invoke")
    force_c_locale: bool = Field(
        default=True,
        description="Run git with LC_ALL=C so textual output parsing is locale independent",
    )
    cancel_poll_interval: float = Field(
        default=0.1, gt=0, description="Seconds between cancellation checks while git runs"
    )
    terminate_grace_period: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait after SIGTERM before killing a cancelled git process",
    )

    # Workflow defaults
    default_remote: str = Field(default="origin", description="Remote used by pull")
    default_target_branch: str = Field(default="main", description="Merge target branch")

    # History
    history_default_limit: int = Field(default=20, description="Commits returned by default")
    history_max_limit: int = Field(default=100, description="Upper bound for history requests")

    @field_validator("history_default_limit", "history_max_limit")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history limits must be at least 1")
        return value


@lru_cache
def get_settings() -> GitweaveSettings:
    """Return memoized settings."""
    return GitweaveSettings()
