"""In-memory data source used by tests and offline replays."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Iterable, Sequence

from ..monitor.models import ActivityRecord, FailedJob, WorkflowRun, WorkItem
from .base import DataSourceAuthError, ItemLookupError


class StaticDataSource:
    """Test double serving preloaded items, timelines and workflow runs.

    Tests mutate the public dictionaries between sync passes to simulate
    activity. ``failing_items`` makes per-item detail calls raise
    :class:`ItemLookupError`; ``auth_failure`` makes enumeration fail.
    """

    def __init__(self, items: Iterable[WorkItem] | None = None) -> None:
        self.items: list[WorkItem] = list(items or [])
        self.activity: dict[str, list[ActivityRecord]] = {}
        self.runs: dict[str, list[WorkflowRun]] = {}
        self.jobs: dict[int, list[FailedJob]] = {}
        self.logs: dict[int, str] = {}
        self.comments: dict[str, list[str]] = {}
        self.failing_items: set[str] = set()
        self.auth_failure = False
        self.reruns: list[tuple[str, int]] = []
        self.calls: list[tuple[str, str]] = []

    def iter_work_items(
        self,
        *,
        organizations: Sequence[str],
        repositories: Sequence[str],
        since: datetime,
    ) -> AsyncIterator[WorkItem]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[WorkItem]:
        if self.auth_failure:
            raise DataSourceAuthError("Bad credentials")
        for item in list(self.items):
            self.calls.append(("iter", item.key))
            yield item

    def _check(self, item: WorkItem, call: str) -> None:
        self.calls.append((call, item.key))
        if item.key in self.failing_items:
            raise ItemLookupError(item.key, f"{call} failed")

    async def fetch_work_item(self, item: WorkItem) -> WorkItem:
        self._check(item, "item")
        for candidate in self.items:
            if candidate.key == item.key:
                return candidate
        raise ItemLookupError(item.key, "not found")

    async def fetch_activity(self, item: WorkItem) -> list[ActivityRecord]:
        self._check(item, "activity")
        return list(self.activity.get(item.key, []))

    async def fetch_workflow_runs(self, item: WorkItem) -> list[WorkflowRun]:
        self._check(item, "runs")
        return list(self.runs.get(item.key, []))

    async def fetch_failed_jobs(self, item: WorkItem, run_id: int) -> list[FailedJob]:
        self._check(item, "jobs")
        return list(self.jobs.get(run_id, []))

    async def fetch_job_log(self, item: WorkItem, job_id: int) -> str:
        self._check(item, "log")
        return self.logs.get(job_id, "")

    async def fetch_comment_bodies(
        self,
        item: WorkItem,
        *,
        since: datetime | None = None,
        author: str | None = None,
    ) -> list[str]:
        self._check(item, "comments")
        return list(self.comments.get(item.key, []))

    async def post_comment(self, item: WorkItem, body: str) -> None:
        self._check(item, "comment")
        self.comments.setdefault(item.key, []).append(body)

    async def rerun_workflow(self, item: WorkItem, run_id: int) -> None:
        self._check(item, "rerun")
        self.reruns.append((item.key, run_id))


__all__ = ["StaticDataSource"]
