"""Carry out the side effects requested by activity transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from ..activity import EffectKind, MachineEffect
from ..diagnostics import DiagnosticExtractor, DiagnosticResult
from ..sources.base import DataSource, ItemLookupError
from .models import ActivityRecord, WorkflowRun, WorkItem
from .pause import PauseRegistry
from .signals import NUDGE_TEXT, humanize_remaining, is_ignored, resume_wait_minutes

logger = logging.getLogger(__name__)

FIX_MESSAGES = {
    "tests": "Please fix the failing tests",
    "build": "Please fix the build errors",
    "lint": "Please fix the linting/formatting issues",
    "general": "Please fix the failing checks",
}


def classify_checks(check_names: Iterable[str]) -> str:
    joined = " ".join(name.lower() for name in check_names)
    if "test" in joined or "spec" in joined:
        return "tests"
    if "build" in joined or "compile" in joined:
        return "build"
    if "lint" in joined or "format" in joined:
        return "lint"
    return "general"


def build_fix_comment(check_names: Sequence[str], reports: Sequence[DiagnosticResult] = ()) -> str:
    names = sorted(set(check_names))
    instruction = FIX_MESSAGES[classify_checks(names)]
    body = f"@copilot {instruction}: {', '.join(names)}" if names else f"@copilot {instruction}"
    sections = [report.report() for report in reports if report.records]
    if sections:
        body += "\n\n" + "\n\n".join(sections)
    return body


class AutomationRunner:
    """Posts auto-fix comments, reruns workflows and sends resume nudges."""

    def __init__(
        self,
        source: DataSource,
        *,
        pause: PauseRegistry | None = None,
        ignore_jobs: Iterable[str] = ("danger",),
        username: str | None = None,
        resume_on_failure: bool = False,
        extractor: DiagnosticExtractor | None = None,
        max_runs: int = 2,
        max_jobs_per_run: int = 3,
    ) -> None:
        self._source = source
        self._pause = pause or PauseRegistry()
        self._ignore_jobs = tuple(ignore_jobs)
        self._username = username
        self._resume_on_failure = resume_on_failure
        self._extractor = extractor or DiagnosticExtractor()
        self._max_runs = max_runs
        self._max_jobs_per_run = max_jobs_per_run

    @property
    def pause(self) -> PauseRegistry:
        return self._pause

    @property
    def username(self) -> str | None:
        return self._username

    @username.setter
    def username(self, value: str | None) -> None:
        self._username = value

    async def apply(
        self,
        item: WorkItem,
        effect: MachineEffect,
        failed_runs: Sequence[WorkflowRun] = (),
    ) -> list[int]:
        """Run one effect; returns the workflow runs that were restarted."""

        if self._pause.is_paused(item.key):
            logger.info(
                "Automation paused, dropping effect",
                extra={"item": item.key, "effect": effect.kind.value},
            )
            return []
        if effect.kind is EffectKind.REQUEST_AUTO_FIX:
            await self.request_auto_fix(item, failed_runs)
            return []
        return await self.rerun_workflows(item, effect.context.pending_workflow_runs)

    async def request_auto_fix(self, item: WorkItem, failed_runs: Sequence[WorkflowRun]) -> str:
        reports = await self.collect_failure_reports(item, failed_runs)
        body = build_fix_comment([run.name for run in failed_runs], reports)
        await self._source.post_comment(item, body)
        logger.info(
            "Auto-fix requested",
            extra={"item": item.key, "checks": sorted({run.name for run in failed_runs})},
        )
        return body

    async def collect_failure_reports(
        self, item: WorkItem, failed_runs: Sequence[WorkflowRun]
    ) -> list[DiagnosticResult]:
        reports: list[DiagnosticResult] = []
        for run in list(failed_runs)[: self._max_runs]:
            try:
                jobs = await self._source.fetch_failed_jobs(item, run.id)
                jobs = [job for job in jobs if not is_ignored(job.name, self._ignore_jobs)]
                for job in jobs[: self._max_jobs_per_run]:
                    log_text = await self._source.fetch_job_log(item, job.id)
                    reports.append(self._extractor.extract(log_text, job.name))
            except ItemLookupError as exc:
                logger.warning(
                    "Could not collect failure logs",
                    extra={"item": item.key, "run_id": run.id, "error": str(exc)},
                )
        return reports

    async def rerun_workflows(self, item: WorkItem, run_ids: Iterable[int]) -> list[int]:
        triggered: list[int] = []
        for run_id in run_ids:
            try:
                await self._source.rerun_workflow(item, run_id)
            except ItemLookupError as exc:
                logger.warning(
                    "Workflow rerun failed",
                    extra={"item": item.key, "run_id": run_id, "error": str(exc)},
                )
                continue
            triggered.append(run_id)
        if triggered:
            logger.info("Workflow reruns triggered", extra={"item": item.key, "run_ids": triggered})
        return triggered

    async def resume_after_failure(
        self,
        item: WorkItem,
        failure: ActivityRecord,
        now: datetime,
        *,
        already_nudged: bool = False,
    ) -> str | None:
        """Nudge Copilot once the wait named in a failure message has passed.

        Returns a short note for the item view, or None when nothing applies.
        """

        wait_minutes = resume_wait_minutes(failure.message)
        if not self._resume_on_failure or wait_minutes is None:
            return None
        if self._pause.is_paused(item.key):
            logger.info("Automation paused, skipping resume nudge", extra={"item": item.key})
            return None

        resume_at = failure.created_at + timedelta(minutes=wait_minutes)
        if now < resume_at:
            return f"resume in {humanize_remaining((resume_at - now).total_seconds())}"
        if already_nudged:
            return "resume requested"

        bodies = await self._source.fetch_comment_bodies(
            item, since=failure.created_at, author=self._username
        )
        if NUDGE_TEXT in bodies:
            return "resume requested"
        await self._source.post_comment(item, NUDGE_TEXT)
        logger.info("Resume nudge sent", extra={"item": item.key})
        return "nudge sent"


__all__ = ["AutomationRunner", "FIX_MESSAGES", "build_fix_comment", "classify_checks"]
