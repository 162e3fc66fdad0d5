from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from copilot_monitor.monitor import (
    Classification,
    ClassificationPartition,
    SessionLedger,
    format_duration,
)

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("milliseconds", "expected"),
    [
        (0, "00:00:00"),
        (999, "00:00:00"),
        (3_665_000, "01:01:05"),
        (59_000, "00:00:59"),
        (100 * 3_600_000, "100:00:00"),
        (-5_000, "00:00:00"),
    ],
)
def test_format_duration(milliseconds: int, expected: str) -> None:
    assert format_duration(milliseconds) == expected


def test_total_includes_historical_completed_and_live() -> None:
    ledger = SessionLedger(historical_ms=1_000)
    ledger.start("a", T0)
    ledger.finish("a", T0 + timedelta(seconds=30))
    ledger.start("b", T0 + timedelta(seconds=40))

    now = T0 + timedelta(seconds=100)

    assert ledger.completed_ms == 30_000
    assert ledger.live_ms(now) == 60_000
    assert ledger.total_ms(now) == 91_000
    assert ledger.formatted_total(now) == "00:01:31"


def test_live_session_is_not_folded_until_finished() -> None:
    ledger = SessionLedger()
    ledger.start("a", T0)

    first = ledger.total_ms(T0 + timedelta(seconds=5))
    second = ledger.total_ms(T0 + timedelta(seconds=9))

    assert ledger.completed_ms == 0
    assert second > first


def test_start_keeps_original_timestamp() -> None:
    ledger = SessionLedger()
    ledger.start("a", T0)
    ledger.start("a", T0 + timedelta(minutes=5))

    assert ledger.live_sessions["a"] == T0


def test_finish_without_start_is_noop() -> None:
    ledger = SessionLedger()

    assert ledger.finish("missing", T0) == 0
    assert ledger.total_ms(T0) == 0


def test_historical_finish_goes_to_historical_bucket() -> None:
    ledger = SessionLedger()
    ledger.start("a", T0)

    elapsed = ledger.finish("a", T0 + timedelta(minutes=2), historical=True)

    assert elapsed == 120_000
    assert ledger.historical_ms == 120_000
    assert ledger.completed_ms == 0
    assert not ledger.is_live("a")


def test_partition_is_mutually_exclusive() -> None:
    partition = ClassificationPartition()
    partition.assign("a", Classification.ACTIVE)
    partition.assign("b", Classification.STABLE)
    partition.assign("a", Classification.STABLE)

    assert partition.active == set()
    assert partition.stable == {"a", "b"}
    assert len(partition) == 2

    partition.discard("a")
    assert partition.classification_of("a") is None
    assert partition.classification_of("b") is Classification.STABLE
