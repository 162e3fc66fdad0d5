"""Destinations for snapshots, per-item updates, status and operator logs."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from .monitor.models import ItemView, StatusUpdate

if TYPE_CHECKING:
    from .storage import ActivityJournal

logger = logging.getLogger(__name__)


class MonitorSink(Protocol):
    """Receives everything the scheduler publishes."""

    def replace_items(self, items: list[ItemView]) -> None:
        ...

    def update_item(self, item: ItemView) -> None:
        ...

    def update_status(self, status: StatusUpdate) -> None:
        ...

    def log(self, message: str, level: str = "info") -> None:
        ...


class LoggingSink:
    """Writes every publication to the standard logger."""

    def __init__(self, name: str = "copilot_monitor.sink") -> None:
        self._logger = logging.getLogger(name)

    def replace_items(self, items: list[ItemView]) -> None:
        self._logger.info("Snapshot published", extra={"items": len(items)})

    def update_item(self, item: ItemView) -> None:
        self._logger.info(
            "%s %s #%s: %s",
            item.status.icon,
            item.repository,
            item.number,
            item.status.message,
            extra={"item": item.key, "state": item.machine_state.value, "ci": item.ci.status},
        )

    def update_status(self, status: StatusUpdate) -> None:
        self._logger.debug("Status update", extra=status.to_payload())

    def log(self, message: str, level: str = "info") -> None:
        getattr(self._logger, level, self._logger.info)(message)


class MemorySink:
    """Keeps the latest view of everything in memory for readers on other threads."""

    def __init__(self, *, log_limit: int = 200, history_limit: int = 500) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, ItemView] = {}
        self._status: StatusUpdate | None = None
        self._logs: deque[dict[str, str]] = deque(maxlen=log_limit)
        self._history: deque[tuple[str, str]] = deque(maxlen=history_limit)

    def replace_items(self, items: list[ItemView]) -> None:
        with self._lock:
            self._items = {item.key: item for item in items}
            self._history.append(("snapshot", str(len(items))))

    def update_item(self, item: ItemView) -> None:
        with self._lock:
            self._items[item.key] = item
            self._history.append(("item", item.key))

    def update_status(self, status: StatusUpdate) -> None:
        with self._lock:
            self._status = status
            self._history.append(("status", status.total_session_time))

    def log(self, message: str, level: str = "info") -> None:
        if not message:
            return
        with self._lock:
            self._logs.append(
                {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "level": level,
                    "message": message,
                }
            )

    @property
    def history(self) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._history)

    @property
    def status(self) -> StatusUpdate | None:
        with self._lock:
            return self._status

    def items(self) -> list[ItemView]:
        with self._lock:
            return list(self._items.values())

    def get(self, key: str) -> ItemView | None:
        with self._lock:
            return self._items.get(key)

    def recent_logs(self, limit: int = 20) -> list[dict[str, str]]:
        with self._lock:
            return list(self._logs)[-limit:]


class JournalSink:
    """Persists per-item updates into the activity journal."""

    def __init__(self, journal: "ActivityJournal") -> None:
        self._journal = journal

    def replace_items(self, items: list[ItemView]) -> None:
        return None

    def update_item(self, item: ItemView) -> None:
        self._journal.record_item_update(item)

    def update_status(self, status: StatusUpdate) -> None:
        return None

    def log(self, message: str, level: str = "info") -> None:
        return None


class FanoutSink:
    """Forwards each publication to several sinks in order."""

    def __init__(self, sinks: Iterable[Any]) -> None:
        self._sinks = list(sinks)

    def replace_items(self, items: list[ItemView]) -> None:
        for sink in self._sinks:
            sink.replace_items(items)

    def update_item(self, item: ItemView) -> None:
        for sink in self._sinks:
            sink.update_item(item)

    def update_status(self, status: StatusUpdate) -> None:
        for sink in self._sinks:
            sink.update_status(status)

    def log(self, message: str, level: str = "info") -> None:
        for sink in self._sinks:
            sink.log(message, level)


__all__ = ["FanoutSink", "JournalSink", "LoggingSink", "MemorySink", "MonitorSink"]
