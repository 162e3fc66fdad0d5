"""Configuration management for the Copilot monitor."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated
from pathlib import Path
import os

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(value, env_name: str) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    raise TypeError(f"{env_name} must be a list or a comma-separated string")


class MonitorSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    github_token: SecretStr | None = Field(default=None, validation_alias="GITHUB_TOKEN")
    github_api_url: str = Field(
        default="https://api.github.com", validation_alias="COPILOT_MONITOR_API_URL"
    )
    username: str | None = Field(default=None, validation_alias="COPILOT_MONITOR_USERNAME")
    slow_interval_seconds: int = Field(default=60, validation_alias="COPILOT_MONITOR_INTERVAL")
    fast_interval_seconds: int = Field(default=15, validation_alias="COPILOT_MONITOR_FAST_INTERVAL")
    tick_interval_seconds: float = Field(default=1.0, validation_alias="COPILOT_MONITOR_TICK_INTERVAL")
    lookback_days: int = Field(default=2, validation_alias="COPILOT_MONITOR_DAYS")
    auto_fix: bool = Field(default=False, validation_alias="COPILOT_MONITOR_AUTO_FIX")
    auto_approve: bool = Field(default=False, validation_alias="COPILOT_MONITOR_AUTO_APPROVE")
    resume_on_failure: bool = Field(
        default=False, validation_alias="COPILOT_MONITOR_RESUME_ON_FAILURE"
    )
    max_sessions: int = Field(default=50, validation_alias="COPILOT_MONITOR_MAX_SESSIONS")
    ignore_jobs: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("danger",), validation_alias="COPILOT_MONITOR_IGNORE_JOBS"
    )
    organizations: Annotated[tuple[str, ...], NoDecode] = Field(default=(), validation_alias="COPILOT_MONITOR_ORGS")
    repositories: Annotated[tuple[str, ...], NoDecode] = Field(default=(), validation_alias="COPILOT_MONITOR_REPOS")
    target_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("targets"),), validation_alias="COPILOT_MONITOR_TARGET_PATHS"
    )
    journal_path: Path = Field(
        default=Path("./storage/journal"), validation_alias="COPILOT_MONITOR_JOURNAL_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="COPILOT_MONITOR_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "COPILOT_MONITOR_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("github_api_url")
    @classmethod
    def _strip_api_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("slow_interval_seconds", "fast_interval_seconds", "lookback_days", "max_sessions")
    @classmethod
    def _validate_positive(cls, value: int, info) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @field_validator("tick_interval_seconds")
    @classmethod
    def _validate_tick(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("COPILOT_MONITOR_TICK_INTERVAL must be > 0")
        return value

    @field_validator("ignore_jobs", mode="before")
    @classmethod
    def _parse_ignore_jobs(cls, value):
        return _split_csv(value, "COPILOT_MONITOR_IGNORE_JOBS")

    @field_validator("organizations", mode="before")
    @classmethod
    def _parse_organizations(cls, value):
        return _split_csv(value, "COPILOT_MONITOR_ORGS")

    @field_validator("repositories", mode="before")
    @classmethod
    def _parse_repositories(cls, value):
        repositories = _split_csv(value, "COPILOT_MONITOR_REPOS")
        for repository in repositories:
            owner, _, name = repository.partition("/")
            if not owner or not name:
                raise ValueError(f"COPILOT_MONITOR_REPOS entry '{repository}' must look like owner/name")
        return repositories

    @field_validator("target_paths", mode="before")
    @classmethod
    def _parse_target_paths(cls, value):
        if value is None or value == "":
            return (Path("targets"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("targets"),)
        raise TypeError(
            "COPILOT_MONITOR_TARGET_PATHS must be a list of paths or a path-separated string"
        )

    def token_value(self) -> str | None:
        return self.github_token.get_secret_value() if self.github_token else None


@lru_cache(maxsize=1)
def get_settings() -> MonitorSettings:
    """Return cached settings instance."""

    settings = MonitorSettings()
    settings.journal_path = settings.journal_path.expanduser().resolve()
    settings.target_paths = tuple(path.expanduser().resolve() for path in settings.target_paths)
    return settings


__all__ = ["MonitorSettings", "get_settings"]
