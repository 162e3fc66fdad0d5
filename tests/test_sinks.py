from __future__ import annotations

import logging
from datetime import datetime, timezone

from copilot_monitor.activity import MachineState, StatusDescriptor
from copilot_monitor.monitor import CIStatus, Classification, ItemView, StatusUpdate
from copilot_monitor.sinks import FanoutSink, JournalSink, LoggingSink, MemorySink


def _view(key: str = "https://github.com/acme/app/pull/1") -> ItemView:
    return ItemView(
        key=key,
        number=1,
        title="Title",
        url=key,
        repository="acme/app",
        external_state="open",
        machine_state=MachineState.COPILOT_WORKING,
        status=StatusDescriptor("Copilot Working", "Copilot is working", "🔄", "blue"),
        ci=CIStatus.unknown(),
        classification=Classification.ACTIVE,
        updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


def _status() -> StatusUpdate:
    return StatusUpdate(
        total_items=1,
        working_count=1,
        total_session_time="00:01:00",
        next_refresh="60s",
        refresh_interval=15,
    )


class RecordingJournal:
    def __init__(self) -> None:
        self.views: list[ItemView] = []

    def record_item_update(self, view: ItemView) -> None:
        self.views.append(view)


def test_memory_sink_keeps_latest_state() -> None:
    sink = MemorySink(log_limit=2)
    sink.update_item(_view("a"))
    sink.replace_items([_view("b")])
    sink.update_status(_status())
    for message in ["one", "", "two", "three"]:
        sink.log(message)

    assert [view.key for view in sink.items()] == ["b"]
    assert sink.get("a") is None
    assert sink.status.total_session_time == "00:01:00"
    assert [entry["message"] for entry in sink.recent_logs()] == ["two", "three"]
    assert sink.history == [("item", "a"), ("snapshot", "1"), ("status", "00:01:00")]


def test_fanout_forwards_in_order() -> None:
    first, second = MemorySink(), MemorySink()
    fanout = FanoutSink([first, second])

    fanout.update_item(_view())
    fanout.log("hello", "warning")

    assert first.items() == second.items()
    assert second.recent_logs()[0]["level"] == "warning"


def test_journal_sink_records_item_updates_only() -> None:
    journal = RecordingJournal()
    sink = JournalSink(journal)  # type: ignore[arg-type]

    sink.replace_items([_view()])
    sink.update_status(_status())
    sink.update_item(_view())

    assert len(journal.views) == 1


def test_logging_sink_writes_records(caplog) -> None:
    caplog.set_level(logging.INFO, logger="copilot_monitor.sink")
    sink = LoggingSink()

    sink.update_item(_view())
    sink.log("acme/app#1: workflows rerun", "success")
    sink.log("acme/app#1: lookup failed", "warning")

    messages = [record.getMessage() for record in caplog.records]
    assert messages[0] == "🔄 acme/app #1: Copilot is working"
    assert "acme/app#1: workflows rerun" in messages
    assert caplog.records[-1].levelno == logging.WARNING


def test_view_payload_is_serialisable() -> None:
    payload = _view().to_payload()

    assert payload["machine_state"] == "copilot_working"
    assert payload["classification"] == "active"
    assert payload["updated_at"] == "2025-01-01T00:00:00+00:00"
    assert payload["ci"]["status"] == "unknown"
