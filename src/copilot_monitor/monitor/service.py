"""Timers driving the scheduler, and the bridge to a background event loop."""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from ..config import MonitorSettings
from ..sources.base import DataSourceAuthError, DataSourceError
from .scheduler import MonitorScheduler

logger = logging.getLogger(__name__)


class MonitorService:
    """Runs the slow, fast and tick cadences of one scheduler on one loop.

    Each cadence awaits its own call, so a slow data source delays only that
    cadence. :meth:`stop` ends future firings without awaiting calls already
    in flight.
    """

    def __init__(
        self,
        scheduler: MonitorScheduler,
        *,
        slow_interval: float,
        fast_interval: float,
        tick_interval: float,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._slow_interval = slow_interval
        self._fast_interval = fast_interval
        self._tick_interval = tick_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._startup_error: BaseException | None = None

    @classmethod
    def from_settings(
        cls,
        scheduler: MonitorScheduler,
        settings: MonitorSettings,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> "MonitorService":
        return cls(
            scheduler,
            slow_interval=settings.slow_interval_seconds,
            fast_interval=settings.fast_interval_seconds,
            tick_interval=settings.tick_interval_seconds,
            clock=clock,
        )

    @property
    def scheduler(self) -> MonitorScheduler:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._loop is not None and self._stop_event is not None and not self._stop_event.is_set()

    async def run(self) -> None:
        """Perform the initial full sync, then fire the cadences until stopped.

        An authentication failure during the initial sync is re-raised; any
        other initial failure is logged and left to the slow cadence to retry.
        """

        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        try:
            await self._scheduler.resolve_username()
            await self._scheduler.run_full_sync(self._clock())
        except DataSourceAuthError as exc:
            logger.critical("Authentication failed during initial sync", extra={"error": str(exc)})
            self._startup_error = exc
            self._ready.set()
            raise
        except DataSourceError as exc:
            logger.error("Initial full sync failed", extra={"error": str(exc)})
        self._ready.set()

        await asyncio.gather(
            self._every("full_sync", self._slow_interval, self._scheduler.run_full_sync),
            self._every("active_refresh", self._fast_interval, self._scheduler.run_active_refresh),
            self._every("tick", self._tick_interval, self._scheduler.tick),
        )
        logger.info("Monitor service stopped")

    async def _every(
        self,
        cadence: str,
        interval: float,
        call: Callable[[datetime], Any],
    ) -> None:
        stop_event = self._stop_event
        if stop_event is None:
            raise RuntimeError("Monitor service is not running")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                result = call(self._clock())
                if inspect.isawaitable(result):
                    await result
            except DataSourceError as exc:
                logger.error("Cadence failed", extra={"cadence": cadence, "error": str(exc)})
            except Exception:
                logger.exception("Unexpected cadence failure", extra={"cadence": cadence})

    def stop(self) -> None:
        """Stop future cadence firings; calls already in flight are not awaited."""

        loop, stop_event = self._loop, self._stop_event
        if loop is None or stop_event is None:
            return
        if loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            stop_event.set()
        else:
            loop.call_soon_threadsafe(stop_event.set)

    def start_in_background(self, *, startup_timeout: float | None = None) -> threading.Thread:
        """Run the service on its own loop in a daemon thread.

        Blocks until the initial sync has finished and re-raises a startup
        authentication failure in the calling thread.
        """

        if self._thread is not None and self._thread.is_alive():
            return self._thread

        def _target() -> None:
            try:
                asyncio.run(self.run())
            except DataSourceAuthError:
                # already logged and handed to the starting thread
                return
            finally:
                self._ready.set()

        self._thread = threading.Thread(target=_target, name="copilot-monitor", daemon=True)
        self._thread.start()
        if not self._ready.wait(startup_timeout):
            logger.warning("Initial sync still running", extra={"timeout": startup_timeout})
        if self._startup_error is not None:
            raise self._startup_error
        return self._thread

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Schedule ``coro`` on the service loop from any thread."""

        if self._loop is None or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Monitor service loop is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> concurrent.futures.Future:
        """Run a plain or async callable on the service loop."""

        async def _invoke() -> Any:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                return await result
            return result

        return self.submit(_invoke())

    async def call_async(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Awaitable form of :meth:`call` for callers on another event loop."""

        return await asyncio.wrap_future(self.call(fn, *args, **kwargs))


__all__ = ["MonitorService"]
