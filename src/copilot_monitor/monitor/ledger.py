"""Session-time accounting and the active/stable partition."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .models import Classification


def format_duration(milliseconds: int) -> str:
    """Render a duration as zero-padded ``HH:MM:SS`` with unbounded hours."""

    total_seconds = max(int(milliseconds), 0) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def elapsed_ms(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() * 1000), 0)


@dataclass(slots=True)
class SessionLedger:
    """Aggregate Copilot session time across every tracked item.

    ``historical_ms`` holds sessions that had already finished when an item
    was first discovered, ``completed_ms`` sessions that finished while this
    process was watching. Live sessions are never folded into either
    accumulator until they finish.
    """

    historical_ms: int = 0
    completed_ms: int = 0
    live_sessions: dict[str, datetime] = field(default_factory=dict)

    def start(self, key: str, at: datetime) -> None:
        self.live_sessions.setdefault(key, at)

    def finish(self, key: str, at: datetime, *, historical: bool = False) -> int:
        started = self.live_sessions.pop(key, None)
        if started is None:
            return 0
        elapsed = elapsed_ms(started, at)
        if historical:
            self.historical_ms += elapsed
        else:
            self.completed_ms += elapsed
        return elapsed

    def is_live(self, key: str) -> bool:
        return key in self.live_sessions

    def live_ms(self, now: datetime) -> int:
        return sum(elapsed_ms(started, now) for started in self.live_sessions.values())

    def total_ms(self, now: datetime) -> int:
        return self.historical_ms + self.completed_ms + self.live_ms(now)

    def formatted_total(self, now: datetime) -> str:
        return format_duration(self.total_ms(now))


@dataclass(slots=True)
class ClassificationPartition:
    """Mutually exclusive active/stable sets keyed by item identity."""

    active: set[str] = field(default_factory=set)
    stable: set[str] = field(default_factory=set)

    def assign(self, key: str, classification: Classification) -> None:
        if classification is Classification.ACTIVE:
            self.stable.discard(key)
            self.active.add(key)
        else:
            self.active.discard(key)
            self.stable.add(key)

    def discard(self, key: str) -> None:
        self.active.discard(key)
        self.stable.discard(key)

    def classification_of(self, key: str) -> Classification | None:
        if key in self.active:
            return Classification.ACTIVE
        if key in self.stable:
            return Classification.STABLE
        return None

    def __len__(self) -> int:
        return len(self.active) + len(self.stable)


__all__ = ["ClassificationPartition", "SessionLedger", "elapsed_ms", "format_duration"]
