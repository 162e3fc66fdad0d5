"""Global and per-item pause switches for automated actions."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class PauseRegistry:
    """Thread-safe pause flags consulted before any comment or rerun is sent."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._global = False
        self._items: set[str] = set()

    def pause(self, item_key: str | None = None) -> None:
        with self._lock:
            if item_key is None:
                self._global = True
            else:
                self._items.add(item_key)
        logger.info("Automation paused", extra={"item": item_key or "*"})

    def resume(self, item_key: str | None = None) -> None:
        with self._lock:
            if item_key is None:
                self._global = False
            else:
                self._items.discard(item_key)
        logger.info("Automation resumed", extra={"item": item_key or "*"})

    def is_globally_paused(self) -> bool:
        with self._lock:
            return self._global

    def is_paused(self, item_key: str) -> bool:
        with self._lock:
            return self._global or item_key in self._items

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {"global": self._global, "items": sorted(self._items)}


__all__ = ["PauseRegistry"]
