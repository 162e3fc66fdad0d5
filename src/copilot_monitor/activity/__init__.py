"""Per-item activity lifecycle."""

from .machine import TRANSITIONS, ActivityStateMachine
from .models import (
    CI_STATES,
    WORKING_STATES,
    ActivityContext,
    ActivityEvent,
    EffectKind,
    MachineEffect,
    MachineState,
    StatusDescriptor,
    TransitionResult,
)

__all__ = [
    "ActivityContext",
    "ActivityEvent",
    "ActivityStateMachine",
    "CI_STATES",
    "EffectKind",
    "MachineEffect",
    "MachineState",
    "StatusDescriptor",
    "TRANSITIONS",
    "TransitionResult",
    "WORKING_STATES",
]
