"""Copilot monitor diagnostics CLI."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from copilot_monitor.config import MonitorSettings
from copilot_monitor.diagnostics import extract
from copilot_monitor.storage import ActivityJournal, JournalUnavailableError


def load_journal(settings: MonitorSettings) -> ActivityJournal:
    try:
        return ActivityJournal(settings.journal_path)
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)


def cmd_items(args: argparse.Namespace) -> None:
    settings = MonitorSettings()
    journal = load_journal(settings)
    try:
        items = journal.latest_item_views()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)
    if args.state:
        items = [item for item in items if item.get("machine_state") == args.state]
    if args.json:
        print(json.dumps(items, indent=2))
    else:
        for item in items:
            ci = (item.get("ci") or {}).get("status", "unknown")
            print(
                f"{item['repository']}#{item['number']} [{item['machine_state']}] "
                f"ci={ci} sessions={item.get('session_count', 0)}/{item.get('max_sessions', 0)}"
            )


def cmd_transitions(args: argparse.Namespace) -> None:
    settings = MonitorSettings()
    journal = load_journal(settings)
    try:
        records = journal.list_transitions(item_key=args.item_key)
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)
    if args.limit is not None and args.limit > 0:
        records = records[-args.limit :]
    print(json.dumps([record.to_dict() for record in records], indent=2))


def cmd_extract(args: argparse.Namespace) -> None:
    if args.path == "-":
        text = sys.stdin.read()
    else:
        path = Path(args.path)
        if not path.exists():
            print(f"Log file not found: {path}")
            raise SystemExit(1)
        text = path.read_text(encoding="utf-8", errors="replace")

    label = args.job_label or ("stdin" if args.path == "-" else Path(args.path).stem)
    result = extract(text, label)
    if args.json:
        print(json.dumps(result.to_dict(args.limit), indent=2))
    else:
        print(result.summary())
        if result.records:
            print()
            print(result.report(args.limit))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = MonitorSettings()
    journal = load_journal(settings)
    try:
        items = journal.latest_item_views()
        transitions = journal.list_transitions()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)

    state_counts: dict[str, int] = {}
    ci_counts: dict[str, int] = {}
    for item in items:
        state = item.get("machine_state", "unknown")
        state_counts[state] = state_counts.get(state, 0) + 1
        ci = (item.get("ci") or {}).get("status", "unknown")
        ci_counts[ci] = ci_counts.get(ci, 0) + 1

    event_counts: dict[str, int] = {}
    for record in transitions:
        event_counts[record.event] = event_counts.get(record.event, 0) + 1

    sessions_completed = event_counts.get("copilot_work_finished", 0) + event_counts.get(
        "copilot_work_failed", 0
    )
    capped_items = sorted(
        {record.item_key for record in transitions if record.to_state == "max_sessions_reached"}
    )

    metrics = {
        "items_total": len(items),
        "state_counts": state_counts,
        "ci_status_counts": ci_counts,
        "transitions_total": len(transitions),
        "event_counts": event_counts,
        "sessions_completed": sessions_completed,
        "auto_fix_requests": sum(1 for record in transitions if record.to_state == "auto_fix_requested"),
        "max_sessions_reached": capped_items,
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Copilot monitor diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_items = sub.add_parser("items", help="List the latest journaled view of each item")
    p_items.add_argument("--json", action="store_true", help="Output JSON")
    p_items.add_argument("--state", help="Only show items in this machine state")
    p_items.set_defaults(func=cmd_items)

    p_transitions = sub.add_parser("transitions", help="List journaled state transitions")
    p_transitions.add_argument("--item-key", help="Pull request URL to filter on")
    p_transitions.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N transitions",
    )
    p_transitions.set_defaults(func=cmd_transitions)

    p_extract = sub.add_parser("extract", help="Extract diagnostics from a CI log file")
    p_extract.add_argument("path", help="Log file path, or - for stdin")
    p_extract.add_argument("--job-label", help="Label used in the summary (defaults to the file name)")
    p_extract.add_argument("--limit", type=int, default=5, help="Most critical issues to show")
    p_extract.add_argument("--json", action="store_true", help="Output JSON")
    p_extract.set_defaults(func=cmd_extract)

    p_metrics = sub.add_parser("metrics", help="Show item, state and session counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
