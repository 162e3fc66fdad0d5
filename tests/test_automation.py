from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from copilot_monitor.activity import ActivityContext, EffectKind, MachineEffect
from copilot_monitor.monitor import ActivityKind, ActivityRecord, FailedJob, PauseRegistry, WorkflowRun, WorkItem
from copilot_monitor.monitor.automation import AutomationRunner, build_fix_comment, classify_checks
from copilot_monitor.monitor.signals import NUDGE_TEXT
from copilot_monitor.sources import StaticDataSource

T0 = datetime(2025, 2, 1, 10, 0, tzinfo=timezone.utc)

ITEM = WorkItem(
    number=7,
    title="Fix flaky login",
    url="https://github.com/acme/app/pull/7",
    repository="acme/app",
)


def _source() -> StaticDataSource:
    return StaticDataSource([ITEM])


def test_classify_checks_picks_first_matching_category() -> None:
    assert classify_checks(["unit-tests", "build"]) == "tests"
    assert classify_checks(["Build (ubuntu)"]) == "build"
    assert classify_checks(["eslint"]) == "lint"
    assert classify_checks(["deploy"]) == "general"


def test_build_fix_comment_mentions_checks_and_reports() -> None:
    source = _source()
    source.jobs[100] = [FailedJob(id=1, name="tsc", run_id=100)]
    source.logs[1] = "src/a.ts(2,3): error TS2304: Cannot find name 'foo'."
    runner = AutomationRunner(source)

    reports = asyncio.run(
        runner.collect_failure_reports(ITEM, [WorkflowRun(id=100, name="build", status="completed", conclusion="failure")])
    )
    body = build_fix_comment(["build", "build"], reports)

    assert body.startswith("@copilot Please fix the build errors: build")
    assert "### tsc" in body
    assert "TS2304" in body


def test_request_auto_fix_posts_comment() -> None:
    source = _source()
    runner = AutomationRunner(source)
    effect = MachineEffect(EffectKind.REQUEST_AUTO_FIX, ActivityContext())
    failed = [WorkflowRun(id=5, name="unit tests", status="completed", conclusion="failure")]

    triggered = asyncio.run(runner.apply(ITEM, effect, failed))

    assert triggered == []
    assert source.comments[ITEM.key] == ["@copilot Please fix the failing tests: unit tests"]


def test_ignored_jobs_are_not_fetched() -> None:
    source = _source()
    source.jobs[9] = [FailedJob(id=1, name="Danger", run_id=9), FailedJob(id=2, name="jest", run_id=9)]
    source.logs[2] = "FAILED tests/test_a.py::test_one - assert False"
    runner = AutomationRunner(source, ignore_jobs=["danger"])

    reports = asyncio.run(
        runner.collect_failure_reports(ITEM, [WorkflowRun(id=9, name="ci", status="completed", conclusion="failure")])
    )

    assert [report.job_label for report in reports] == ["jest"]
    assert ("log", ITEM.key) in source.calls


def test_rerun_effect_restarts_pending_runs() -> None:
    source = _source()
    runner = AutomationRunner(source)
    effect = MachineEffect(EffectKind.RERUN_WORKFLOWS, ActivityContext(pending_workflow_runs=[3, 4]))

    triggered = asyncio.run(runner.apply(ITEM, effect))

    assert triggered == [3, 4]
    assert source.reruns == [(ITEM.key, 3), (ITEM.key, 4)]


def test_failed_rerun_is_skipped() -> None:
    source = _source()
    source.failing_items.add(ITEM.key)
    runner = AutomationRunner(source)

    assert asyncio.run(runner.rerun_workflows(ITEM, [1])) == []


def test_paused_item_drops_effect() -> None:
    source = _source()
    pause = PauseRegistry()
    pause.pause(ITEM.key)
    runner = AutomationRunner(source, pause=pause)
    effect = MachineEffect(EffectKind.RERUN_WORKFLOWS, ActivityContext(pending_workflow_runs=[3]))

    assert asyncio.run(runner.apply(ITEM, effect)) == []
    assert source.reruns == []

    pause.resume(ITEM.key)
    pause.pause()
    assert pause.is_paused("anything")
    assert pause.snapshot() == {"global": True, "items": []}


def test_resume_after_failure_waits_then_nudges_once() -> None:
    source = _source()
    runner = AutomationRunner(source, resume_on_failure=True, username="octocat")
    failure = ActivityRecord(ActivityKind.WORK_FAILED, T0, message="Rate limited. Try again in 5 minutes.")

    early = asyncio.run(runner.resume_after_failure(ITEM, failure, T0 + timedelta(minutes=2)))
    sent = asyncio.run(runner.resume_after_failure(ITEM, failure, T0 + timedelta(minutes=6)))
    again = asyncio.run(runner.resume_after_failure(ITEM, failure, T0 + timedelta(minutes=7)))

    assert early == "resume in 3m"
    assert sent == "nudge sent"
    assert again == "resume requested"
    assert source.comments[ITEM.key] == [NUDGE_TEXT]


def test_resume_disabled_or_unparseable() -> None:
    source = _source()
    failure = ActivityRecord(ActivityKind.WORK_FAILED, T0, message="in 1 minute")

    disabled = AutomationRunner(source)
    assert asyncio.run(disabled.resume_after_failure(ITEM, failure, T0 + timedelta(hours=1))) is None

    enabled = AutomationRunner(source, resume_on_failure=True)
    vague = ActivityRecord(ActivityKind.WORK_FAILED, T0, message="unexpected failure")
    assert asyncio.run(enabled.resume_after_failure(ITEM, vague, T0 + timedelta(hours=1))) is None
    assert ITEM.key not in source.comments
