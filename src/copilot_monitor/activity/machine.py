"""Finite state machine for one pull request's Copilot lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Callable

from .models import (
    CI_STATES,
    ActivityContext,
    ActivityEvent,
    EffectKind,
    MachineEffect,
    MachineState,
    StatusDescriptor,
    TransitionResult,
)

logger = logging.getLogger(__name__)

State = MachineState
Event = ActivityEvent


def _route_failed_checks(context: ActivityContext) -> MachineState:
    if context.auto_fix_enabled and context.username:
        return State.AUTO_FIX_REQUESTED
    if context.auto_approve_enabled:
        return State.READY_FOR_RERUN
    return State.IDLE


def _route_no_failed_checks(context: ActivityContext) -> MachineState:
    return State.READY_FOR_RERUN if context.auto_approve_enabled else State.IDLE


@dataclass(frozen=True, slots=True)
class _Rule:
    target: MachineState | Callable[[ActivityContext], MachineState]
    starts_session: bool = False
    closes_session: bool = False
    effect: EffectKind | None = None

    def resolve(self, context: ActivityContext) -> MachineState:
        if isinstance(self.target, MachineState):
            return self.target
        return self.target(context)


TRANSITIONS: dict[tuple[MachineState, ActivityEvent], _Rule] = {
    (State.IDLE, Event.COPILOT_WORK_STARTED): _Rule(State.COPILOT_WORKING, starts_session=True),
    (State.COPILOT_WORKING, Event.COPILOT_WORK_FINISHED): _Rule(
        State.WAITING_FOR_FEEDBACK, closes_session=True
    ),
    (State.COPILOT_WORKING, Event.COPILOT_WORK_FAILED): _Rule(State.ERROR, closes_session=True),
    (State.WAITING_FOR_FEEDBACK, Event.FAILED_CHECKS_DETECTED): _Rule(_route_failed_checks),
    (State.WAITING_FOR_FEEDBACK, Event.NO_FAILED_CHECKS): _Rule(_route_no_failed_checks),
    (State.AUTO_FIX_REQUESTED, Event.COPILOT_WORK_STARTED): _Rule(
        State.AUTO_FIX_IN_PROGRESS, starts_session=True
    ),
    (State.AUTO_FIX_IN_PROGRESS, Event.COPILOT_WORK_FINISHED): _Rule(
        State.READY_FOR_RERUN, closes_session=True
    ),
    (State.READY_FOR_RERUN, Event.WORKFLOW_RERUN_TRIGGERED): _Rule(
        State.CI_RUNNING, effect=EffectKind.RERUN_WORKFLOWS
    ),
    (State.READY_FOR_RERUN, Event.CI_STARTED): _Rule(State.CI_RUNNING),
    (State.CI_RUNNING, Event.CI_COMPLETED): _Rule(State.IDLE),
}

_DESCRIPTORS: dict[MachineState, StatusDescriptor] = {
    State.IDLE: StatusDescriptor("No Copilot Activity", "No Copilot activity detected", "⚪", "gray"),
    State.COPILOT_WORKING: StatusDescriptor("Copilot Working", "Copilot is working", "🔄", "blue"),
    State.WAITING_FOR_FEEDBACK: StatusDescriptor(
        "Waiting for Feedback", "Waiting for feedback", "⏳", "cyan"
    ),
    State.AUTO_FIX_REQUESTED: StatusDescriptor(
        "Waiting for Feedback", "Waiting for Copilot to fix issues", "🔧", "orange"
    ),
    State.AUTO_FIX_IN_PROGRESS: StatusDescriptor(
        "Copilot Working", "Copilot is fixing issues", "🔧", "blue"
    ),
    State.READY_FOR_RERUN: StatusDescriptor("Ready for Rerun", "Ready to rerun workflows", "✅", "green"),
    State.CI_RUNNING: StatusDescriptor("CI is running", "CI workflows are running", "🔄", "blue"),
    State.ERROR: StatusDescriptor("Error", "Copilot encountered an error", "❌", "red"),
    State.MAX_SESSIONS_REACHED: StatusDescriptor(
        "Max Copilot sessions reached", "Maximum number of Copilot sessions reached", "🚫", "orange"
    ),
}

_CONTEXT_FIELDS = frozenset(item.name for item in fields(ActivityContext))


def _copy_context(context: ActivityContext) -> ActivityContext:
    return replace(
        context,
        pending_workflow_runs=list(context.pending_workflow_runs),
        running_workflow_runs=list(context.running_workflow_runs),
    )


class ActivityStateMachine:
    """Tracks one item's work, feedback, auto-fix and CI verification cycle.

    Transitions never call out; side effects are returned as
    :class:`MachineEffect` values for the caller to carry out.
    """

    def __init__(
        self,
        context: ActivityContext | None = None,
        *,
        initial_state: MachineState = MachineState.IDLE,
        name: str | None = None,
    ) -> None:
        self._context = _copy_context(context) if context is not None else ActivityContext()
        self._state = initial_state
        self._name = name

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def context(self) -> ActivityContext:
        """Return a copy of the current context."""

        return _copy_context(self._context)

    def update_context(self, **changes: Any) -> None:
        unknown = set(changes) - _CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown context fields: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            if key in {"pending_workflow_runs", "running_workflow_runs"}:
                value = list(value)
            setattr(self._context, key, value)

    def transition(self, event: ActivityEvent, now: datetime | None = None) -> TransitionResult:
        now = now or datetime.now(timezone.utc)
        previous = self._state

        if event is ActivityEvent.RESET:
            self.reset()
            return TransitionResult(ok=True, event=event, from_state=previous, to_state=self._state)

        rule = TRANSITIONS.get((previous, event))
        if rule is None:
            return self._reject(event, f"no transition from {previous.value} on {event.value}")
        if rule.starts_session and self._context.session_count >= self._context.max_sessions:
            return self._reject(
                event,
                f"session cap reached ({self._context.session_count}/{self._context.max_sessions})",
            )

        target = rule.resolve(self._context)

        if rule.starts_session:
            self._context.current_session_start_time = now
        if rule.closes_session:
            started = self._context.current_session_start_time
            if started is not None:
                elapsed = int((now - started).total_seconds() * 1000)
                self._context.total_session_time_ms += max(elapsed, 0)
            self._context.current_session_start_time = None
            self._context.session_count += 1
            if self._context.session_count >= self._context.max_sessions:
                target = State.MAX_SESSIONS_REACHED

        effects: list[MachineEffect] = []
        if target is State.AUTO_FIX_REQUESTED:
            effects.append(MachineEffect(EffectKind.REQUEST_AUTO_FIX, _copy_context(self._context)))
        if rule.effect is not None:
            effects.append(MachineEffect(rule.effect, _copy_context(self._context)))

        self._state = target
        logger.info(
            "Activity transition",
            extra={
                "item": self._name,
                "event": event.value,
                "from_state": previous.value,
                "to_state": target.value,
                "session_count": self._context.session_count,
            },
        )
        return TransitionResult(
            ok=True,
            event=event,
            from_state=previous,
            to_state=target,
            effects=tuple(effects),
        )

    def _reject(self, event: ActivityEvent, reason: str) -> TransitionResult:
        logger.warning(
            "Invalid activity transition",
            extra={"item": self._name, "event": event.value, "state": self._state.value, "reason": reason},
        )
        return TransitionResult(
            ok=False,
            event=event,
            from_state=self._state,
            to_state=self._state,
            reason=reason,
        )

    def reset(self) -> None:
        """Return to IDLE with a fresh context, keeping only configuration."""

        self._state = State.IDLE
        self._context = ActivityContext(
            auto_fix_enabled=self._context.auto_fix_enabled,
            auto_approve_enabled=self._context.auto_approve_enabled,
            username=self._context.username,
            max_sessions=self._context.max_sessions,
        )

    def should_monitor_ci(self) -> bool:
        return self._state in CI_STATES

    def should_request_auto_fix(self) -> bool:
        context = self._context
        return bool(context.has_failed_checks and context.auto_fix_enabled and context.username)

    def should_trigger_auto_approve(self) -> bool:
        return self._state is State.READY_FOR_RERUN and self._context.auto_approve_enabled

    def status_descriptor(self) -> StatusDescriptor:
        descriptor = _DESCRIPTORS[self._state]
        if self._state is State.MAX_SESSIONS_REACHED:
            return replace(
                descriptor,
                message=(
                    f"{descriptor.message} "
                    f"({self._context.session_count}/{self._context.max_sessions})"
                ),
            )
        return descriptor


__all__ = ["ActivityStateMachine", "TRANSITIONS"]
