"""FastMCP server bootstrap for the Copilot monitor."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import MonitorSettings, get_settings
from .monitor.scheduler import MonitorScheduler
from .monitor.service import MonitorService
from .sinks import FanoutSink, JournalSink, LoggingSink, MemorySink, MonitorSink
from .sources import DataSource, DataSourceAuthError, GitHubDataSource
from .storage import ActivityJournal, JournalUnavailableError
from .targets import TargetLoadError, TargetLoader, WatchTargets
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the monitor server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[MonitorSettings] = None,
    *,
    data_source: DataSource | None = None,
    sink: MonitorSink | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server, the scheduler and its service.

    The monitor itself is not started here; :func:`main` starts it on a
    background thread before serving.
    """

    settings = settings or get_settings()

    target_loader = TargetLoader(settings.target_paths)
    targets_metadata: dict[str, Any] = {
        "paths": [str(path) for path in target_loader.search_paths],
        "ids": [],
        "error": None,
    }
    try:
        targets = WatchTargets.combine(target_loader.load_all().values())
        targets_metadata["ids"] = targets.sources
    except TargetLoadError as exc:
        targets_metadata["error"] = str(exc)
        targets = WatchTargets()

    journal: ActivityJournal | None = None
    journal_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.journal_path),
        "collection": "copilot_monitor",
        "error": None,
    }
    try:
        journal = ActivityJournal(settings.journal_path)
        journal.ping()
        journal_metadata["available"] = True
    except JournalUnavailableError as exc:
        journal_metadata["error"] = str(exc)
        journal = None

    if data_source is None:
        token = settings.token_value()
        if not token:
            raise RuntimeError("GITHUB_TOKEN is not set; the monitor needs a GitHub token")
        data_source = GitHubDataSource(
            token,
            base_url=settings.github_api_url,
            username=settings.username,
        )

    memory = MemorySink()
    sinks: list[Any] = [memory, LoggingSink()]
    if journal is not None:
        sinks.append(JournalSink(journal))
    if sink is not None:
        sinks.append(sink)

    scheduler = MonitorScheduler(
        data_source,
        FanoutSink(sinks),
        settings=settings,
        targets=targets,
        journal=journal,
    )
    service = MonitorService.from_settings(scheduler, settings)
    pause = scheduler.automation.pause

    server = FastMCP(
        name="Copilot Monitor",
        version=__version__,
        instructions=(
            "Tracks pull requests worked on by GitHub Copilot. Use the provided tools "
            "to list tracked items, inspect activity state, extract CI diagnostics, "
            "and pause or reset automation."
        ),
    )

    handles = register_tools(
        server,
        scheduler=scheduler,
        memory=memory,
        pause=pause,
        journal=journal,
        service=service,
    )

    @server.resource(
        "resource://copilot-monitor/status",
        name="copilot_monitor_status",
        title="Copilot Monitor Status",
        description="Provides the latest aggregate status for the Copilot monitor.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing the monitor's runtime state."""

        status = memory.status
        items = memory.items()
        classification_counts: dict[str, int] = {}
        state_counts: dict[str, int] = {}
        for view in items:
            classification = view.classification.value
            classification_counts[classification] = classification_counts.get(classification, 0) + 1
            state = view.machine_state.value
            state_counts[state] = state_counts.get(state, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "monitor": {
                "running": service.running,
                "status": status.to_payload() if status else None,
                "items": len(items),
                "classification_counts": classification_counts,
                "state_counts": state_counts,
                "slow_interval_seconds": settings.slow_interval_seconds,
                "fast_interval_seconds": settings.fast_interval_seconds,
            },
            "automation": {
                "auto_fix": settings.auto_fix,
                "auto_approve": settings.auto_approve,
                "resume_on_failure": settings.resume_on_failure,
                "max_sessions": settings.max_sessions,
                "ignore_jobs": list(scheduler.ignore_jobs),
                "pause": pause.snapshot(),
            },
            "targets": targets_metadata,
            "storage": {"journal": journal_metadata},
            "recent_logs": memory.recent_logs(10),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "scheduler", scheduler)
    setattr(server, "monitor_service", service)
    setattr(server, "memory_sink", memory)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "targets_metadata", targets_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the Copilot monitor MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    if not settings.token_value():
        logger.critical("GITHUB_TOKEN is not set; refusing to start")
        raise SystemExit(1)

    server = create_server(settings)
    service: MonitorService = getattr(server, "monitor_service")
    logger.info(
        "Launching Copilot monitor",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
            "targets": getattr(server, "targets_metadata", {}).get("ids"),
        },
    )
    try:
        service.start_in_background()
    except DataSourceAuthError as exc:
        logger.critical("GitHub authentication failed", extra={"error": str(exc)})
        raise SystemExit(1) from exc

    try:
        server.run()
    finally:
        service.stop()


if __name__ == "__main__":
    main()
