from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from copilot_monitor.activity import ActivityContext, ActivityEvent, MachineState, StatusDescriptor, TransitionResult
from copilot_monitor.monitor import CIStatus, Classification, ItemView
from copilot_monitor.storage import ActivityJournal, JournalUnavailableError

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []
        self.wheres: list[Any] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        self.wheres.append(where)
        filtered = self.records
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def _journal(tmp_path: Path, client: StubClient | None = None) -> ActivityJournal:
    client = client or StubClient()
    return ActivityJournal(tmp_path, client_factory=lambda: client, clock=lambda: T0)


def _result(event: ActivityEvent, from_state: MachineState, to_state: MachineState) -> TransitionResult:
    return TransitionResult(ok=True, event=event, from_state=from_state, to_state=to_state)


def _view(key: str, state: MachineState) -> ItemView:
    return ItemView(
        key=key,
        number=1,
        title="Title",
        url=key,
        repository="acme/app",
        external_state="open",
        machine_state=state,
        status=StatusDescriptor("Label", "Message", "⚪", "gray"),
        ci=CIStatus.unknown(),
        classification=Classification.STABLE,
    )


def test_record_event_assigns_sequence_and_drops_none(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    first = journal.record_event(item_key="a", event_type="note", body={"x": 1}, metadata={"skip": None})
    second = journal.record_event(item_key="a", event_type="note", body="plain")

    assert first.metadata["sequence"] == 1
    assert "skip" not in first.metadata
    assert second.metadata["sequence"] == 2
    assert [event.document for event in journal.fetch_item_events("a")] == ['{"x": 1}', "plain"]


def test_transitions_round_trip_and_filter_by_item(tmp_path: Path) -> None:
    client = StubClient()
    journal = _journal(tmp_path, client)
    context = ActivityContext(session_count=1, total_session_time_ms=60_000)

    journal.record_transition(
        "a",
        _result(ActivityEvent.COPILOT_WORK_STARTED, MachineState.IDLE, MachineState.COPILOT_WORKING),
        occurred_at=T0,
        context=context,
    )
    journal.record_transition(
        "b",
        _result(ActivityEvent.COPILOT_WORK_STARTED, MachineState.IDLE, MachineState.COPILOT_WORKING),
        occurred_at=T0 + timedelta(minutes=1),
        context=context,
    )
    journal.record_transition(
        "a",
        _result(ActivityEvent.COPILOT_WORK_FINISHED, MachineState.COPILOT_WORKING, MachineState.WAITING_FOR_FEEDBACK),
        occurred_at=T0 + timedelta(minutes=2),
        context=context,
    )

    transitions = journal.list_transitions("a")

    assert [record.to_state for record in transitions] == ["copilot_working", "waiting_for_feedback"]
    assert transitions[1].occurred_at == T0 + timedelta(minutes=2)
    assert transitions[0].total_session_time_ms == 60_000
    assert len(journal.list_transitions()) == 3
    assert client.collections["copilot_monitor"].wheres[0] == {
        "$and": [{"event_type": "transition"}, {"item_key": "a"}]
    }


def test_latest_item_views_keeps_last_update(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    journal.record_item_update(_view("a", MachineState.COPILOT_WORKING))
    journal.record_item_update(_view("b", MachineState.IDLE))
    journal.record_item_update(_view("a", MachineState.WAITING_FOR_FEEDBACK))

    views = journal.latest_item_views()

    assert [(view["key"], view["machine_state"]) for view in views] == [
        ("a", "waiting_for_feedback"),
        ("b", "idle"),
    ]


def test_search_events_query_and_limit(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    for index in range(3):
        journal.record_event(item_key="a", event_type="note", body=f"entry {index}")
    journal.record_event(item_key="a", event_type="note", body="other")

    assert [event.document for event in journal.search_events("entry", limit=2)] == ["entry 1", "entry 2"]
    assert len(journal.search_events(filters={"event_type": "note"})) == 4


def test_unavailable_client_raises(tmp_path: Path) -> None:
    def broken_factory():
        raise JournalUnavailableError("chromadb missing")

    journal = ActivityJournal(tmp_path, client_factory=broken_factory)

    with pytest.raises(JournalUnavailableError):
        journal.ping()
