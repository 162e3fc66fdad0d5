"""Pure helpers that turn raw workflow and timeline data into scheduler signals."""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Iterable, Sequence

from ..activity import WORKING_STATES, ActivityEvent, MachineState
from .models import ActivityKind, CIStatus, Classification, WorkflowRun

FAILED_CONCLUSIONS = frozenset({"action_required", "failure"})
PENDING_STATUSES = frozenset({"action_required", "waiting", "queued", "pending"})
SUCCESS_CONCLUSIONS = frozenset({"success", "neutral", "skipped"})
RUNNING_STATUSES = frozenset({"in_progress", "queued", "waiting", "pending"})
ACTIVE_RUN_STATUSES = frozenset({"in_progress", "queued"})
ACTIVE_STATES = WORKING_STATES | {MachineState.CI_RUNNING}

EVENT_FOR_KIND = {
    ActivityKind.WORK_STARTED: ActivityEvent.COPILOT_WORK_STARTED,
    ActivityKind.WORK_FINISHED: ActivityEvent.COPILOT_WORK_FINISHED,
    ActivityKind.WORK_FAILED: ActivityEvent.COPILOT_WORK_FAILED,
}

NUDGE_TEXT = "@copilot please resume working on this task"

_RESUME_WAIT = re.compile(r"in (\d+) minute", re.IGNORECASE)


def _lower(value: str | None) -> str:
    return (value or "").lower()


def is_running(run: WorkflowRun) -> bool:
    return _lower(run.status) in RUNNING_STATUSES


def is_failed(run: WorkflowRun) -> bool:
    return _lower(run.conclusion) in FAILED_CONCLUSIONS or _lower(run.status) == "action_required"


def is_pending(run: WorkflowRun) -> bool:
    """Runs an auto-approve rerun should pick up."""

    return _lower(run.conclusion) in FAILED_CONCLUSIONS or _lower(run.status) in PENDING_STATUSES


def is_ignored(name: str, ignore_jobs: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(pattern.lower() in lowered for pattern in ignore_jobs if pattern)


def classify(state: MachineState, runs: Sequence[WorkflowRun]) -> Classification:
    if state in ACTIVE_STATES:
        return Classification.ACTIVE
    if any(_lower(run.status) in ACTIVE_RUN_STATUSES for run in runs):
        return Classification.ACTIVE
    return Classification.STABLE


def ci_status(runs: Sequence[WorkflowRun] | None, state: MachineState | None = None) -> CIStatus:
    runs = list(runs or [])
    if state is MachineState.CI_RUNNING:
        return CIStatus("running", "yellow", "⭕", "CI workflows are running", len(runs))
    if not runs:
        return CIStatus.unknown("No CI workflows found")

    running = [run for run in runs if is_running(run)]
    if running:
        return CIStatus("running", "yellow", "⭕", f"{len(running)} CI workflow(s) running", len(running))

    failed = [run for run in runs if is_failed(run)]
    if failed:
        return CIStatus("failure", "red", "🔴", f"{len(failed)} CI workflow(s) failed", len(failed))

    if all(_lower(run.conclusion) in SUCCESS_CONCLUSIONS for run in runs):
        return CIStatus("success", "green", "🟢", f"{len(runs)} CI workflow(s) passed", len(runs))

    return CIStatus("pending", "blue", "🔵", "CI status pending", len(runs))


def failed_checks(
    runs: Sequence[WorkflowRun],
    *,
    since: datetime | None = None,
    ignore_jobs: Iterable[str] = (),
) -> list[WorkflowRun]:
    """Failed runs updated after ``since`` whose names are not ignored."""

    ignore = tuple(ignore_jobs)
    selected: list[WorkflowRun] = []
    for run in runs:
        if not is_failed(run) or is_ignored(run.name, ignore):
            continue
        stamp = run.updated_at or run.created_at
        if since is not None and stamp is not None and stamp <= since:
            continue
        selected.append(run)
    return selected


def resume_wait_minutes(message: str | None) -> int | None:
    match = _RESUME_WAIT.search(message or "")
    return int(match.group(1)) if match else None


def humanize_age(timestamp: datetime, now: datetime) -> str:
    seconds = max((now - timestamp).total_seconds(), 0)
    minutes = int(seconds // 60)
    hours = minutes // 60
    days = hours // 24
    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    if days < 28:
        return f"{days // 7}w ago"
    return f"{days // 30}mo ago"


def humanize_remaining(seconds: float) -> str:
    if seconds <= 0:
        return "0m"
    if seconds < 3600:
        return f"{math.ceil(seconds / 60)}m"
    minutes = int(seconds // 60)
    hours, remaining_minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {remaining_minutes}m" if remaining_minutes else f"{hours}h"
    days, remaining_hours = divmod(hours, 24)
    return f"{days}d {remaining_hours}h" if remaining_hours else f"{days}d"


__all__ = [
    "ACTIVE_STATES",
    "EVENT_FOR_KIND",
    "FAILED_CONCLUSIONS",
    "NUDGE_TEXT",
    "PENDING_STATUSES",
    "RUNNING_STATUSES",
    "SUCCESS_CONCLUSIONS",
    "ci_status",
    "classify",
    "failed_checks",
    "humanize_age",
    "humanize_remaining",
    "is_failed",
    "is_ignored",
    "is_pending",
    "is_running",
    "resume_wait_minutes",
]
