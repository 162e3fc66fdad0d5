"""Types shared by the per-item activity state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MachineState(str, Enum):
    IDLE = "idle"
    COPILOT_WORKING = "copilot_working"
    WAITING_FOR_FEEDBACK = "waiting_for_feedback"
    AUTO_FIX_REQUESTED = "auto_fix_requested"
    AUTO_FIX_IN_PROGRESS = "auto_fix_in_progress"
    READY_FOR_RERUN = "ready_for_rerun"
    CI_RUNNING = "ci_running"
    ERROR = "error"
    MAX_SESSIONS_REACHED = "max_sessions_reached"


class ActivityEvent(str, Enum):
    COPILOT_WORK_STARTED = "copilot_work_started"
    COPILOT_WORK_FINISHED = "copilot_work_finished"
    COPILOT_WORK_FAILED = "copilot_work_failed"
    FAILED_CHECKS_DETECTED = "failed_checks_detected"
    NO_FAILED_CHECKS = "no_failed_checks"
    WORKFLOW_RERUN_TRIGGERED = "workflow_rerun_triggered"
    CI_STARTED = "ci_started"
    CI_COMPLETED = "ci_completed"
    RESET = "reset"


WORKING_STATES = frozenset({MachineState.COPILOT_WORKING, MachineState.AUTO_FIX_IN_PROGRESS})
CI_STATES = frozenset({MachineState.READY_FOR_RERUN, MachineState.CI_RUNNING})


class EffectKind(str, Enum):
    REQUEST_AUTO_FIX = "request_auto_fix"
    RERUN_WORKFLOWS = "rerun_workflows"


@dataclass(slots=True)
class ActivityContext:
    """Mutable facts a machine consults when choosing its next state."""

    has_failed_checks: bool = False
    auto_fix_enabled: bool = False
    auto_approve_enabled: bool = False
    username: str | None = None
    pending_workflow_runs: list[int] = field(default_factory=list)
    running_workflow_runs: list[int] = field(default_factory=list)
    session_count: int = 0
    max_sessions: int = 50
    total_session_time_ms: int = 0
    current_session_start_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_failed_checks": self.has_failed_checks,
            "auto_fix_enabled": self.auto_fix_enabled,
            "auto_approve_enabled": self.auto_approve_enabled,
            "username": self.username,
            "pending_workflow_runs": list(self.pending_workflow_runs),
            "running_workflow_runs": list(self.running_workflow_runs),
            "session_count": self.session_count,
            "max_sessions": self.max_sessions,
            "total_session_time_ms": self.total_session_time_ms,
            "current_session_start_time": (
                self.current_session_start_time.isoformat()
                if self.current_session_start_time
                else None
            ),
        }


@dataclass(frozen=True, slots=True)
class StatusDescriptor:
    label: str
    message: str
    icon: str
    color: str


@dataclass(frozen=True, slots=True)
class MachineEffect:
    """Side effect requested by a transition, carried out by the caller."""

    kind: EffectKind
    context: ActivityContext


@dataclass(slots=True)
class TransitionResult:
    """Outcome of one ``transition`` call; falsy when the event was rejected."""

    ok: bool
    event: ActivityEvent
    from_state: MachineState
    to_state: MachineState
    effects: tuple[MachineEffect, ...] = ()
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


__all__ = [
    "ActivityContext",
    "ActivityEvent",
    "CI_STATES",
    "EffectKind",
    "MachineEffect",
    "MachineState",
    "StatusDescriptor",
    "TransitionResult",
    "WORKING_STATES",
]
