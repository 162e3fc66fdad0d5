"""Monitoring models, session accounting and signal helpers.

The scheduler, the service and the automation runner live in their own
modules (``monitor.scheduler``, ``monitor.service``, ``monitor.automation``)
because they depend on the data source package, which in turn imports the
models exported here.
"""

from .ledger import ClassificationPartition, SessionLedger, format_duration
from .models import (
    ActivityKind,
    ActivityRecord,
    CIStatus,
    Classification,
    FailedJob,
    ItemView,
    Snapshot,
    StatusUpdate,
    WorkflowRun,
    WorkItem,
)
from .pause import PauseRegistry

__all__ = [
    "ActivityKind",
    "ActivityRecord",
    "CIStatus",
    "Classification",
    "ClassificationPartition",
    "FailedJob",
    "ItemView",
    "PauseRegistry",
    "SessionLedger",
    "Snapshot",
    "StatusUpdate",
    "WorkflowRun",
    "WorkItem",
    "format_duration",
]
