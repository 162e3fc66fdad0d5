"""Dual-cadence scheduler driving one activity machine per tracked item."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from ..activity import (
    WORKING_STATES,
    ActivityContext,
    ActivityEvent,
    ActivityStateMachine,
    EffectKind,
    MachineState,
    TransitionResult,
)
from ..config import MonitorSettings
from ..sources.base import DataSource, ItemLookupError
from ..storage import JournalUnavailableError
from .automation import AutomationRunner
from .ledger import ClassificationPartition, SessionLedger
from .models import (
    ActivityKind,
    ActivityRecord,
    CIStatus,
    Classification,
    ItemView,
    Snapshot,
    StatusUpdate,
    WorkflowRun,
    WorkItem,
)
from .signals import (
    EVENT_FOR_KIND,
    ci_status,
    classify,
    failed_checks,
    humanize_age,
    is_ignored,
    is_pending,
    is_running,
)

if TYPE_CHECKING:
    from ..sinks import MonitorSink
    from ..storage import ActivityJournal
    from ..targets import WatchTargets

logger = logging.getLogger(__name__)

# states that cannot accept a new start; observing one means an event was missed
# or checks were never evaluated
_REALIGN_STATES = frozenset(
    {
        MachineState.COPILOT_WORKING,
        MachineState.WAITING_FOR_FEEDBACK,
        MachineState.AUTO_FIX_IN_PROGRESS,
        MachineState.READY_FOR_RERUN,
        MachineState.CI_RUNNING,
        MachineState.ERROR,
    }
)


@dataclass(slots=True)
class TrackedItem:
    """Scheduler-side bookkeeping for one work item."""

    item: WorkItem
    machine: ActivityStateMachine
    applied: int = 0
    runs: list[WorkflowRun] | None = None
    ci: CIStatus = field(default_factory=CIStatus.unknown)
    last_finished_at: datetime | None = None
    last_failure: ActivityRecord | None = None
    nudged_for: datetime | None = None
    note: str | None = None


class MonitorScheduler:
    """Polls the data source, feeds activity machines and publishes to a sink.

    All mutation of the ledger, the partition and the machine table happens
    between awaits on one event loop; the cadences are serialized by running
    on that loop. Each cadence carries its own in-progress flag so a slow pass
    is never overlapped by the next firing of the same cadence.
    """

    def __init__(
        self,
        source: DataSource,
        sink: "MonitorSink",
        *,
        settings: MonitorSettings,
        targets: "WatchTargets | None" = None,
        automation: AutomationRunner | None = None,
        ledger: SessionLedger | None = None,
        partition: ClassificationPartition | None = None,
        journal: "ActivityJournal | None" = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._sink = sink
        self._settings = settings
        self._organizations: tuple[str, ...] = tuple(settings.organizations)
        self._repositories: tuple[str, ...] = tuple(settings.repositories)
        self._ignore_jobs: tuple[str, ...] = tuple(settings.ignore_jobs)
        if targets is not None:
            self._organizations = _merge(self._organizations, targets.organizations)
            self._repositories = _merge(self._repositories, targets.repositories)
            self._ignore_jobs = _merge(self._ignore_jobs, targets.ignore_jobs)
        self._username = settings.username or getattr(source, "username", None)
        self._automation = automation or AutomationRunner(
            source,
            ignore_jobs=self._ignore_jobs,
            username=self._username,
            resume_on_failure=settings.resume_on_failure,
        )
        self._ledger = ledger if ledger is not None else SessionLedger()
        self._partition = partition if partition is not None else ClassificationPartition()
        self._journal = journal
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tracked: dict[str, TrackedItem] = {}
        self._order: list[str] = []
        self._full_sync_running = False
        self._active_refresh_running = False
        self._last_interval = settings.slow_interval_seconds
        self._last_status: StatusUpdate | None = None
        self._published_at: datetime | None = None

    @property
    def ledger(self) -> SessionLedger:
        return self._ledger

    @property
    def partition(self) -> ClassificationPartition:
        return self._partition

    @property
    def automation(self) -> AutomationRunner:
        return self._automation

    @property
    def ignore_jobs(self) -> tuple[str, ...]:
        return self._ignore_jobs

    @property
    def last_status(self) -> StatusUpdate | None:
        return self._last_status

    def tracked_keys(self) -> list[str]:
        return list(self._order)

    def machine_for(self, key: str) -> ActivityStateMachine | None:
        tracked = self._tracked.get(key)
        return tracked.machine if tracked else None

    def views(self, now: datetime | None = None) -> list[ItemView]:
        now = now or self._clock()
        return [self._view(self._tracked[key], now) for key in self._order]

    def view_for(self, key: str, now: datetime | None = None) -> ItemView | None:
        tracked = self._tracked.get(key)
        if tracked is None:
            return None
        return self._view(tracked, now or self._clock())

    @property
    def username(self) -> str | None:
        return self._username

    async def resolve_username(self) -> str | None:
        """Fall back to the data source's authenticated login when none is configured."""

        if self._username:
            return self._username
        lookup = getattr(self._source, "authenticated_login", None)
        if lookup is None:
            return None
        self._username = await lookup()
        self._automation.username = self._username
        for tracked in self._tracked.values():
            tracked.machine.update_context(username=self._username)
        logger.info("Resolved monitor username", extra={"username": self._username})
        return self._username

    # cadences ---------------------------------------------------------------

    async def run_full_sync(self, now: datetime | None = None) -> Snapshot:
        """Enumerate every item in the lookback window and process each one.

        Authentication and enumeration failures propagate and abort the pass;
        per-item lookup failures only downgrade that item's CI status.
        """

        now = now or self._clock()
        if self._full_sync_running:
            logger.info("Full sync already in progress, skipping")
            return self._skipped(now)

        self._full_sync_running = True
        try:
            since = now - timedelta(days=self._settings.lookback_days)
            seen: list[str] = []
            views: list[ItemView] = []
            async for item in self._source.iter_work_items(
                organizations=self._organizations,
                repositories=self._repositories,
                since=since,
            ):
                if item.key in seen:
                    continue
                seen.append(item.key)
                view = await self._process(item, now)
                if view is not None:
                    views.append(view)

            for key in [key for key in self._tracked if key not in seen]:
                self._drop(key, now)
            self._order = seen

            self._sink.replace_items(views)
            status = self._publish_status(now, self._settings.slow_interval_seconds)
            logger.info(
                "Full sync complete",
                extra={
                    "items": len(views),
                    "active": len(self._partition.active),
                    "stable": len(self._partition.stable),
                },
            )
            return self._snapshot(views, status)
        finally:
            self._full_sync_running = False

    async def run_active_refresh(self, now: datetime | None = None) -> Snapshot:
        """Re-process only the items currently classified as active."""

        now = now or self._clock()
        if self._active_refresh_running:
            logger.info("Active refresh already in progress, skipping")
            return self._skipped(now)

        self._active_refresh_running = True
        try:
            views: list[ItemView] = []
            for key in [key for key in self._order if key in self._partition.active]:
                tracked = self._tracked.get(key)
                if tracked is None:
                    continue
                try:
                    item = await self._source.fetch_work_item(tracked.item)
                except ItemLookupError as exc:
                    logger.warning(
                        "Work item refresh failed", extra={"item": key, "error": str(exc)}
                    )
                    item = tracked.item
                view = await self._process(item, now, create=False)
                if view is not None:
                    views.append(view)
            status = self._publish_status(now, self._settings.fast_interval_seconds)
            return self._snapshot(views, status)
        finally:
            self._active_refresh_running = False

    def tick(self, now: datetime | None = None) -> StatusUpdate | None:
        """Push a display-only status update while any session is live."""

        now = now or self._clock()
        if not self._ledger.live_sessions:
            return None
        return self._publish_status(now, self._last_interval)

    def reset_item(self, key: str, now: datetime | None = None) -> ItemView | None:
        """Operator reset: the machine returns to IDLE and its counters clear."""

        now = now or self._clock()
        tracked = self._tracked.get(key)
        if tracked is None:
            return None
        previous = tracked.machine.state
        result = tracked.machine.transition(ActivityEvent.RESET, now=now)
        if previous in WORKING_STATES:
            self._ledger.finish(key, now)
        tracked.last_failure = None
        tracked.nudged_for = None
        tracked.note = None
        self._journal_transition(key, result, now, tracked.machine.context)
        self._partition.assign(key, classify(tracked.machine.state, tracked.runs or []))
        view = self._view(tracked, now)
        self._sink.update_item(view)
        self._sink.log(f"{tracked.item.repository}#{tracked.item.number}: reset by operator")
        return view

    # per-item processing ----------------------------------------------------

    async def _process(self, item: WorkItem, now: datetime, *, create: bool = True) -> ItemView | None:
        key = item.key
        tracked = self._tracked.get(key)
        discovering = tracked is None
        if tracked is None:
            if not create:
                return None
            tracked = TrackedItem(item=item, machine=self._new_machine(key))
            self._tracked[key] = tracked
        else:
            tracked.item = item

        history = await self._lookup(item, self._source.fetch_activity)
        runs = await self._lookup(item, self._source.fetch_workflow_runs)

        # the item may have been dropped or reset while the lookups were pending
        if self._tracked.get(key) is not tracked:
            return None

        if history is not None:
            self._apply_history(tracked, history, discovering=discovering)

        tracked.runs = runs
        if runs is None:
            tracked.ci = CIStatus.unknown()
        else:
            await self._evaluate_checks(tracked, runs, now)
            tracked.ci = ci_status(runs, tracked.machine.state)

        tracked.note = await self._resume_note(tracked, now)

        self._partition.assign(key, classify(tracked.machine.state, tracked.runs or []))
        view = self._view(tracked, now)
        self._sink.update_item(view)
        return view

    async def _lookup(self, item: WorkItem, call):
        try:
            return await call(item)
        except ItemLookupError as exc:
            logger.warning("Item lookup failed", extra={"item": item.key, "error": str(exc)})
            self._sink.log(f"{item.repository}#{item.number}: {exc}", "warning")
            return None

    def _apply_history(
        self, tracked: TrackedItem, history: Sequence[ActivityRecord], *, discovering: bool
    ) -> None:
        if len(history) < tracked.applied:
            # timeline shrank; only records beyond what was seen are new
            tracked.applied = len(history)
        for record in history[tracked.applied:]:
            tracked.applied += 1
            event = EVENT_FOR_KIND[record.kind]
            at = record.created_at
            if event is ActivityEvent.COPILOT_WORK_STARTED:
                tracked.last_failure = None
                tracked.nudged_for = None
                if tracked.machine.state in _REALIGN_STATES:
                    self._realign(tracked, at, discovering=discovering)
            else:
                tracked.last_finished_at = at
                if record.kind is ActivityKind.WORK_FAILED:
                    tracked.last_failure = record
            self._transition(tracked, event, at, discovering=discovering)

    def _realign(self, tracked: TrackedItem, at: datetime, *, discovering: bool) -> None:
        key = tracked.item.key
        machine = tracked.machine
        previous = machine.state
        context = machine.context
        if previous in WORKING_STATES:
            self._close_session(key, at, discovering=discovering)
        machine.reset()
        machine.update_context(
            session_count=context.session_count,
            total_session_time_ms=context.total_session_time_ms,
        )
        logger.info(
            "Activity machine realigned",
            extra={"item": key, "from_state": previous.value, "session_count": context.session_count},
        )

    def _transition(
        self,
        tracked: TrackedItem,
        event: ActivityEvent,
        at: datetime,
        *,
        discovering: bool = False,
    ) -> TransitionResult:
        key = tracked.item.key
        result = tracked.machine.transition(event, now=at)
        if not result:
            return result
        entering = result.to_state in WORKING_STATES and result.from_state not in WORKING_STATES
        leaving = result.from_state in WORKING_STATES and result.to_state not in WORKING_STATES
        if entering:
            self._ledger.start(key, at)
        elif leaving:
            self._close_session(key, at, discovering=discovering)
        self._journal_transition(key, result, at, tracked.machine.context)
        return result

    def _close_session(self, key: str, at: datetime, *, discovering: bool) -> None:
        published = self._published_at
        if not discovering and published is not None and at < published:
            # time already displayed as live stays in the total
            at = published
        self._ledger.finish(key, at, historical=discovering)

    async def _evaluate_checks(
        self, tracked: TrackedItem, runs: list[WorkflowRun], now: datetime
    ) -> None:
        machine = tracked.machine
        state = machine.state

        if state is MachineState.WAITING_FOR_FEEDBACK:
            failed = failed_checks(runs, since=tracked.last_finished_at, ignore_jobs=self._ignore_jobs)
            if not failed and any(is_running(run) for run in runs):
                return
            machine.update_context(
                has_failed_checks=bool(failed),
                pending_workflow_runs=[run.id for run in failed],
            )
            event = (
                ActivityEvent.FAILED_CHECKS_DETECTED if failed else ActivityEvent.NO_FAILED_CHECKS
            )
            result = self._transition(tracked, event, now)
            await self._run_effects(tracked, result, failed)
            state = machine.state

        if state is MachineState.READY_FOR_RERUN:
            running = [run.id for run in runs if is_running(run)]
            if running:
                machine.update_context(running_workflow_runs=running)
                self._transition(tracked, ActivityEvent.CI_STARTED, now)
                return
            if machine.should_trigger_auto_approve():
                pending = [
                    run for run in runs if is_pending(run) and not is_ignored(run.name, self._ignore_jobs)
                ]
                if not pending:
                    return
                machine.update_context(pending_workflow_runs=[run.id for run in pending])
                result = self._transition(tracked, ActivityEvent.WORKFLOW_RERUN_TRIGGERED, now)
                await self._run_effects(tracked, result, pending)
            return

        if state is MachineState.CI_RUNNING:
            running = [run.id for run in runs if is_running(run)]
            machine.update_context(running_workflow_runs=running)
            if not running:
                self._transition(tracked, ActivityEvent.CI_COMPLETED, now)

    async def _run_effects(
        self, tracked: TrackedItem, result: TransitionResult, runs: Sequence[WorkflowRun]
    ) -> None:
        for effect in result.effects:
            try:
                triggered = await self._automation.apply(tracked.item, effect, runs)
            except ItemLookupError as exc:
                logger.warning(
                    "Automation effect failed",
                    extra={"item": tracked.item.key, "effect": effect.kind.value, "error": str(exc)},
                )
                self._sink.log(f"{tracked.item.repository}#{tracked.item.number}: {exc}", "error")
                continue
            if effect.kind is EffectKind.RERUN_WORKFLOWS and triggered:
                tracked.machine.update_context(running_workflow_runs=triggered)
            action = "auto-fix requested" if effect.kind is EffectKind.REQUEST_AUTO_FIX else "workflows rerun"
            if not self._automation.pause.is_paused(tracked.item.key):
                self._sink.log(f"{tracked.item.repository}#{tracked.item.number}: {action}", "success")

    async def _resume_note(self, tracked: TrackedItem, now: datetime) -> str | None:
        failure = tracked.last_failure
        if tracked.machine.state is not MachineState.ERROR or failure is None:
            return None
        try:
            note = await self._automation.resume_after_failure(
                tracked.item,
                failure,
                now,
                already_nudged=tracked.nudged_for == failure.created_at,
            )
        except ItemLookupError as exc:
            logger.warning("Resume nudge failed", extra={"item": tracked.item.key, "error": str(exc)})
            return tracked.note
        if note == "nudge sent":
            tracked.nudged_for = failure.created_at
            self._sink.log(f"{tracked.item.repository}#{tracked.item.number}: resume nudge sent")
        return note

    # helpers ----------------------------------------------------------------

    def _new_machine(self, key: str) -> ActivityStateMachine:
        context = ActivityContext(
            auto_fix_enabled=self._settings.auto_fix,
            auto_approve_enabled=self._settings.auto_approve,
            username=self._username,
            max_sessions=self._settings.max_sessions,
        )
        return ActivityStateMachine(context, name=key)

    def _drop(self, key: str, now: datetime) -> None:
        if self._ledger.is_live(key):
            self._ledger.finish(key, now)
        self._partition.discard(key)
        self._tracked.pop(key, None)
        logger.info("Work item no longer tracked", extra={"item": key})

    def _view(self, tracked: TrackedItem, now: datetime) -> ItemView:
        item = tracked.item
        machine = tracked.machine
        context = machine.context
        classification = self._partition.classification_of(item.key) or Classification.STABLE
        return ItemView(
            key=item.key,
            number=item.number,
            title=item.title,
            url=item.url,
            repository=item.repository,
            external_state=item.state,
            machine_state=machine.state,
            status=machine.status_descriptor(),
            ci=tracked.ci,
            classification=classification,
            session_count=context.session_count,
            max_sessions=context.max_sessions,
            updated_at=item.updated_at,
            age=humanize_age(item.updated_at, now) if item.updated_at else None,
            note=tracked.note,
            paused=self._automation.pause.is_paused(item.key),
        )

    def _status(self, now: datetime, interval: int) -> StatusUpdate:
        working = sum(
            1 for tracked in self._tracked.values() if tracked.machine.state in WORKING_STATES
        )
        return StatusUpdate(
            total_items=len(self._tracked),
            working_count=working,
            total_session_time=self._ledger.formatted_total(now),
            next_refresh=f"{self._settings.slow_interval_seconds}s",
            refresh_interval=interval,
            generated_at=now,
        )

    def _publish_status(self, now: datetime, interval: int) -> StatusUpdate:
        self._last_interval = interval
        status = self._status(now, interval)
        self._last_status = status
        self._published_at = now
        self._sink.update_status(status)
        return status

    def _snapshot(self, views: list[ItemView], status: StatusUpdate) -> Snapshot:
        return Snapshot(
            items=views,
            status=status,
            active=[key for key in self._order if key in self._partition.active],
            stable=[key for key in self._order if key in self._partition.stable],
        )

    def _skipped(self, now: datetime) -> Snapshot:
        snapshot = self._snapshot([], self._status(now, self._last_interval))
        snapshot.skipped = True
        return snapshot

    def _journal_transition(
        self, key: str, result: TransitionResult, at: datetime, context: ActivityContext
    ) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record_transition(key, result, occurred_at=at, context=context)
        except JournalUnavailableError as exc:
            logger.warning("Journal unavailable, transition not recorded", extra={"item": key, "error": str(exc)})


def _merge(first: Iterable[str], second: Iterable[str]) -> tuple[str, ...]:
    merged: list[str] = []
    for value in [*first, *second]:
        if value and value not in merged:
            merged.append(value)
    return tuple(merged)


__all__ = ["MonitorScheduler", "TrackedItem"]
