"""Watch-target models declaring what the monitor should follow."""

from __future__ import annotations

from typing import Any, Iterable

from pydantic import BaseModel, Field, field_validator


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class WatchTarget(BaseModel):
    """One YAML target file: organizations and repositories to poll."""

    id: str = Field(..., description="Unique identifier for the target.")
    description: str = Field(default="", description="Free-form note shown in diagnostics.")
    organizations: list[str] = Field(
        default_factory=list,
        description="Organizations whose open pull requests are searched.",
    )
    repositories: list[str] = Field(
        default_factory=list,
        description="Individual repositories in owner/name form.",
    )
    ignore_jobs: list[str] = Field(
        default_factory=list,
        description="Job-name fragments excluded from failed-check evaluation.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Watch target id must not be empty")
        return normalized

    @field_validator("organizations", "repositories", "ignore_jobs", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(entry).strip() for entry in value if str(entry).strip()]
        raise TypeError("organizations, repositories and ignore_jobs must be sequences of strings")

    @field_validator("repositories")
    @classmethod
    def _validate_repositories(cls, value: list[str]) -> list[str]:
        for repository in value:
            owner, _, name = repository.partition("/")
            if not owner or not name:
                raise ValueError(f"Repository '{repository}' must look like owner/name")
        return value


class WatchTargets(BaseModel):
    """Union of every loaded target, duplicates dropped in load order."""

    organizations: list[str] = Field(default_factory=list)
    repositories: list[str] = Field(default_factory=list)
    ignore_jobs: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)

    @classmethod
    def combine(cls, targets: Iterable[WatchTarget]) -> "WatchTargets":
        targets = list(targets)
        return cls(
            organizations=_dedupe(org for target in targets for org in target.organizations),
            repositories=_dedupe(repo for target in targets for repo in target.repositories),
            ignore_jobs=_dedupe(job for target in targets for job in target.ignore_jobs),
            sources=[target.id for target in targets],
        )

    def is_empty(self) -> bool:
        return not (self.organizations or self.repositories)


__all__ = ["WatchTarget", "WatchTargets"]
