"""Data source contract and error taxonomy."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Protocol, Sequence

from ..monitor.models import ActivityRecord, FailedJob, WorkflowRun, WorkItem


class DataSourceError(RuntimeError):
    """Base class for data source failures."""


class DataSourceAuthError(DataSourceError):
    """Raised when the data source rejects the configured credentials."""


class DataSourceTransientError(DataSourceError):
    """Raised for failures that are expected to clear on a later attempt."""


class ItemLookupError(DataSourceError):
    """Raised when detail for a single work item cannot be retrieved."""

    def __init__(self, item_key: str, message: str) -> None:
        super().__init__(f"{item_key}: {message}")
        self.item_key = item_key


class DataSource(Protocol):
    """Everything the scheduler needs from the hosting service."""

    def iter_work_items(
        self,
        *,
        organizations: Sequence[str],
        repositories: Sequence[str],
        since: datetime,
    ) -> AsyncIterator[WorkItem]:
        ...

    async def fetch_work_item(self, item: WorkItem) -> WorkItem:
        ...

    async def fetch_activity(self, item: WorkItem) -> list[ActivityRecord]:
        ...

    async def fetch_workflow_runs(self, item: WorkItem) -> list[WorkflowRun]:
        ...

    async def fetch_failed_jobs(self, item: WorkItem, run_id: int) -> list[FailedJob]:
        ...

    async def fetch_job_log(self, item: WorkItem, job_id: int) -> str:
        ...

    async def fetch_comment_bodies(
        self,
        item: WorkItem,
        *,
        since: datetime | None = None,
        author: str | None = None,
    ) -> list[str]:
        ...

    async def post_comment(self, item: WorkItem, body: str) -> None:
        ...

    async def rerun_workflow(self, item: WorkItem, run_id: int) -> None:
        ...


async def collect_work_items(
    source: DataSource,
    *,
    organizations: Sequence[str],
    repositories: Sequence[str],
    since: datetime,
) -> list[WorkItem]:
    """Batch form of :meth:`DataSource.iter_work_items`."""

    return [
        item
        async for item in source.iter_work_items(
            organizations=organizations, repositories=repositories, since=since
        )
    ]


__all__ = [
    "DataSource",
    "DataSourceAuthError",
    "DataSourceError",
    "DataSourceTransientError",
    "ItemLookupError",
    "collect_work_items",
]
