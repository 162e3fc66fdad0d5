"""Records persisted in the activity journal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class JournalEvent:
    """One stored journal entry."""

    id: str
    item_key: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


@dataclass(slots=True)
class TransitionRecord:
    item_key: str
    event: str
    from_state: str
    to_state: str
    occurred_at: datetime
    session_count: int
    total_session_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_key": self.item_key,
            "event": self.event,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "occurred_at": self.occurred_at.isoformat(),
            "session_count": self.session_count,
            "total_session_time_ms": self.total_session_time_ms,
        }


__all__ = ["JournalEvent", "TransitionRecord"]
