"""Data carried between the data source, the scheduler and the sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..activity import MachineState, StatusDescriptor


class ActivityKind(str, Enum):
    WORK_STARTED = "work_started"
    WORK_FINISHED = "work_finished"
    WORK_FAILED = "work_failed"


class Classification(str, Enum):
    ACTIVE = "active"
    STABLE = "stable"


@dataclass(slots=True)
class WorkItem:
    """A pull request as last observed from the data source."""

    number: int
    title: str
    url: str
    repository: str
    state: str = "open"
    author: str | None = None
    head_sha: str | None = None
    head_branch: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    draft: bool = False

    @property
    def key(self) -> str:
        return self.url

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[-1]


@dataclass(slots=True)
class WorkflowRun:
    id: int
    name: str
    status: str
    conclusion: str | None = None
    head_sha: str | None = None
    head_branch: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    html_url: str | None = None


@dataclass(slots=True)
class FailedJob:
    id: int
    name: str
    run_id: int
    conclusion: str | None = None
    html_url: str | None = None


@dataclass(slots=True)
class ActivityRecord:
    """One Copilot work event from an item's timeline."""

    kind: ActivityKind
    created_at: datetime
    message: str | None = None
    actor: str | None = None


@dataclass(frozen=True, slots=True)
class CIStatus:
    status: str
    color: str
    icon: str
    tooltip: str
    count: int = 0

    @classmethod
    def unknown(cls, tooltip: str = "CI status unavailable") -> "CIStatus":
        return cls(status="unknown", color="gray", icon="❔", tooltip=tooltip, count=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "color": self.color,
            "icon": self.icon,
            "tooltip": self.tooltip,
            "count": self.count,
        }


@dataclass(slots=True)
class ItemView:
    """Per-item update pushed to sinks."""

    key: str
    number: int
    title: str
    url: str
    repository: str
    external_state: str
    machine_state: MachineState
    status: StatusDescriptor
    ci: CIStatus
    classification: Classification
    session_count: int = 0
    max_sessions: int = 0
    updated_at: datetime | None = None
    age: str | None = None
    note: str | None = None
    paused: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "number": self.number,
            "title": self.title,
            "url": self.url,
            "repository": self.repository,
            "external_state": self.external_state,
            "machine_state": self.machine_state.value,
            "status": {
                "label": self.status.label,
                "message": self.status.message,
                "icon": self.status.icon,
                "color": self.status.color,
            },
            "ci": self.ci.to_dict(),
            "classification": self.classification.value,
            "session_count": self.session_count,
            "max_sessions": self.max_sessions,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "age": self.age,
            "note": self.note,
            "paused": self.paused,
        }


@dataclass(slots=True)
class StatusUpdate:
    total_items: int
    working_count: int
    total_session_time: str
    next_refresh: str
    refresh_interval: int
    generated_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "total_items": self.total_items,
            "working_count": self.working_count,
            "total_session_time": self.total_session_time,
            "next_refresh": self.next_refresh,
            "refresh_interval": self.refresh_interval,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }


@dataclass(slots=True)
class Snapshot:
    """Result of one sync pass."""

    items: list[ItemView]
    status: StatusUpdate
    active: list[str] = field(default_factory=list)
    stable: list[str] = field(default_factory=list)
    skipped: bool = False


__all__ = [
    "ActivityKind",
    "ActivityRecord",
    "CIStatus",
    "Classification",
    "FailedJob",
    "ItemView",
    "Snapshot",
    "StatusUpdate",
    "WorkItem",
    "WorkflowRun",
]
