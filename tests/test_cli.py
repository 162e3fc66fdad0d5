from __future__ import annotations

import argparse
import importlib.util
import io
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from copilot_monitor.storage import JournalUnavailableError, TransitionRecord

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "monitor_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _transition(item_key: str, event: str, to_state: str) -> TransitionRecord:
    return TransitionRecord(
        item_key=item_key,
        event=event,
        from_state="idle",
        to_state=to_state,
        occurred_at=T0,
        session_count=1,
        total_session_time_ms=1_000,
    )


class StubJournal:
    def latest_item_views(self):
        return [
            {
                "repository": "acme/app",
                "number": 1,
                "machine_state": "copilot_working",
                "ci": {"status": "running"},
                "session_count": 2,
                "max_sessions": 50,
            },
            {
                "repository": "acme/app",
                "number": 2,
                "machine_state": "max_sessions_reached",
                "ci": {"status": "failure"},
                "session_count": 50,
                "max_sessions": 50,
            },
        ]

    def list_transitions(self, item_key=None):
        records = [
            _transition("pr-1", "copilot_work_started", "copilot_working"),
            _transition("pr-2", "copilot_work_finished", "max_sessions_reached"),
            _transition("pr-2", "failed_checks_detected", "auto_fix_requested"),
            _transition("pr-2", "copilot_work_failed", "error"),
        ]
        if item_key:
            records = [record for record in records if record.item_key == item_key]
        return records


class UnavailableJournal:
    def latest_item_views(self):
        raise JournalUnavailableError("chromadb package is not installed")

    def list_transitions(self, item_key=None):
        raise JournalUnavailableError("chromadb package is not installed")


def test_items_text_output(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_items")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_items(argparse.Namespace(json=False, state=None))

    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "acme/app#1 [copilot_working] ci=running sessions=2/50",
        "acme/app#2 [max_sessions_reached] ci=failure sessions=50/50",
    ]


def test_items_state_filter_json(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_items_json")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_items(argparse.Namespace(json=True, state="max_sessions_reached"))

    payload = json.loads(capsys.readouterr().out)
    assert [item["number"] for item in payload] == [2]


def test_transitions_limit(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_transitions")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_transitions(argparse.Namespace(item_key="pr-2", limit=2))

    payload = json.loads(capsys.readouterr().out)
    assert [record["event"] for record in payload] == ["failed_checks_detected", "copilot_work_failed"]


def test_metrics_counts(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_metrics")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_metrics(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["items_total"] == 2
    assert payload["state_counts"] == {"copilot_working": 1, "max_sessions_reached": 1}
    assert payload["ci_status_counts"] == {"running": 1, "failure": 1}
    assert payload["transitions_total"] == 4
    assert payload["sessions_completed"] == 2
    assert payload["auto_fix_requests"] == 1
    assert payload["max_sessions_reached"] == ["pr-2"]


def test_journal_unavailable_exits(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_unavailable")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: UnavailableJournal())

    with pytest.raises(SystemExit) as excinfo:
        diag.cmd_metrics(argparse.Namespace())

    assert excinfo.value.code == 1
    assert "Journal unavailable" in capsys.readouterr().out


def test_extract_from_file(tmp_path: Path, capsys):
    diag = _load_diag("monitor_diag_extract")
    log = tmp_path / "build.log"
    log.write_text("src/a.ts(1,2): error TS1005: ';' expected.\n", encoding="utf-8")

    diag.main(["extract", str(log)])

    output = capsys.readouterr().out
    assert output.splitlines()[0] == "build: 1 error, 0 warnings (compiler 1)"
    assert "### build" in output


def test_extract_from_stdin_json(monkeypatch, capsys):
    diag = _load_diag("monitor_diag_extract_stdin")
    monkeypatch.setattr("sys.stdin", io.StringIO("npm ERR! code ELIFECYCLE\n"))

    diag.main(["extract", "-", "--json", "--job-label", "install"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["job_label"] == "install"
    assert payload["by_tool"]["package-manager"] == 1


def test_extract_missing_file(tmp_path: Path, capsys):
    diag = _load_diag("monitor_diag_extract_missing")

    with pytest.raises(SystemExit):
        diag.main(["extract", str(tmp_path / "missing.log")])

    assert "Log file not found" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    diag = _load_diag("monitor_diag_help")

    diag.main([])

    assert "Copilot monitor diagnostics" in capsys.readouterr().out
