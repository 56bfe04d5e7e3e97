"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TASKGRAPH_",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(
        default=Path(".taskgraph"),
        description="Directory holding the tasks document and its backups",
    )
    tasks_file: str = Field(
        default="tasks.json",
        description="File name of the tasks document inside data_dir",
    )
    default_tag: str = Field(
        default="master",
        min_length=1,
        description="Tag used when a caller does not name one",
    )
    backup_retention: int = Field(
        default=10,
        ge=0,
        description="Number of backups kept (0 disables backups)",
    )
    lock_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for the per-tag lock",
    )
    io_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for transient file I/O failures",
    )
    io_retry_base_delay: float = Field(
        default=0.05,
        ge=0,
        description="Initial backoff delay in seconds for file I/O retries",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: Path | None = Field(
        default=None,
        description="Optional rotating log file",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Task rules
    strict_status_transitions: bool = Field(
        default=False,
        description="Reject status changes outside the transition table",
    )
    max_dependencies_warning: int = Field(
        default=10,
        ge=1,
        description="Dependency count above which validation warns",
    )

    # Graph heuristics
    critical_effort_threshold: int = Field(
        default=4,
        ge=1,
        description="Effort at or above which a task with dependents is critical",
    )
    critical_dependents_threshold: int = Field(
        default=3,
        ge=1,
        description="Direct dependents at or above which a task is high impact",
    )
    critical_total_impact_threshold: int = Field(
        default=5,
        ge=1,
        description="Transitive dependents at or above which a task is high impact",
    )
    bottleneck_threshold: int = Field(
        default=3,
        ge=1,
        description="Direct dependents at or above which a task is a bottleneck",
    )

    @property
    def tasks_path(self) -> Path:
        """Full path of the tasks document."""
        return self.data_dir / self.tasks_file

    @property
    def backup_dir(self) -> Path:
        """Directory for rotated backups."""
        return self.data_dir / "backups"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.default_tag
        'master'
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
