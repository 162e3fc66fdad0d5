"""Tool registration for the Copilot monitor MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from fastmcp import Context, FastMCP

from ..diagnostics import DiagnosticExtractor
from ..monitor.models import Classification
from ..monitor.pause import PauseRegistry
from ..monitor.scheduler import MonitorScheduler
from ..sinks import MemorySink
from ..storage import ActivityJournal

if TYPE_CHECKING:
    from ..monitor.service import MonitorService


@dataclass(slots=True)
class ToolHandles:
    list_work_items: Any
    work_item_status: Any
    extract_diagnostics: Any
    reset_work_item: Any
    pause_automation: Any
    resume_automation: Any
    item_history: Any


def register_tools(
    server: FastMCP,
    *,
    scheduler: MonitorScheduler,
    memory: MemorySink,
    pause: PauseRegistry,
    journal: ActivityJournal | None = None,
    service: "MonitorService | None" = None,
    extractor: DiagnosticExtractor | None = None,
) -> ToolHandles:
    """Register the monitor's MCP tools on the server.

    Anything that reads or mutates activity machines runs on the monitor's
    own loop via ``service``; without a service the scheduler is called
    directly, which is what tests do.
    """

    extractor = extractor or DiagnosticExtractor()

    async def _on_monitor(fn: Callable[..., Any], *args: Any) -> Any:
        if service is None:
            return fn(*args)
        return await service.call_async(fn, *args)

    def _list_work_items(
        classification: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List tracked pull requests with their activity and CI status."""

        wanted: Classification | None = None
        if classification:
            try:
                wanted = Classification(classification.lower())
            except ValueError as exc:
                raise ValueError("classification must be 'active' or 'stable'") from exc

        items = [
            view.to_payload()
            for view in memory.items()
            if wanted is None or view.classification is wanted
        ]
        _emit_log(context, "debug", "Listing work items", extra={"count": len(items)})
        return items

    def _describe(item_key: str) -> dict[str, Any] | None:
        machine = scheduler.machine_for(item_key)
        view = scheduler.view_for(item_key)
        if machine is None or view is None:
            return None
        return {
            "item": view.to_payload(),
            "context": machine.context.to_dict(),
            "should_monitor_ci": machine.should_monitor_ci(),
            "should_request_auto_fix": machine.should_request_auto_fix(),
            "should_trigger_auto_approve": machine.should_trigger_auto_approve(),
        }

    async def _work_item_status(item_key: str, context: Context | None = None) -> dict[str, Any]:
        """Fetch machine state, context and CI status for one pull request."""

        status = await _on_monitor(_describe, item_key)
        if status is None:
            raise ValueError(f"Unknown work item '{item_key}'")
        _emit_log(
            context,
            "debug",
            "Work item status",
            extra={"item": item_key, "state": status["item"]["machine_state"]},
        )
        return status

    def _extract_diagnostics(
        log_text: str,
        job_label: str = "job",
        limit: int = 5,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Extract structured diagnostics from raw CI log text."""

        result = extractor.extract(log_text, job_label)
        payload = result.to_dict(limit)
        payload["report"] = result.report(limit)
        _emit_log(
            context,
            "info",
            "Extracted diagnostics",
            extra={"job": job_label, "records": len(result.records)},
        )
        return payload

    async def _reset_work_item(item_key: str, context: Context | None = None) -> dict[str, Any]:
        """Return a pull request's machine to idle, clearing its session counters."""

        view = await _on_monitor(scheduler.reset_item, item_key)
        if view is None:
            raise ValueError(f"Unknown work item '{item_key}'")
        _emit_log(context, "info", "Work item reset", extra={"item": item_key})
        return view.to_payload()

    def _pause_automation(item_key: str | None = None, context: Context | None = None) -> dict[str, Any]:
        """Pause auto-fix comments, reruns and resume nudges globally or for one item."""

        pause.pause(item_key)
        _emit_log(context, "info", "Automation paused", extra={"item": item_key or "*"})
        return pause.snapshot()

    def _resume_automation(item_key: str | None = None, context: Context | None = None) -> dict[str, Any]:
        """Resume automation globally or for one item."""

        pause.resume(item_key)
        _emit_log(context, "info", "Automation resumed", extra={"item": item_key or "*"})
        return pause.snapshot()

    def _item_history(
        item_key: str,
        limit: int = 20,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the journaled transitions recorded for one pull request."""

        if journal is None:
            raise RuntimeError("Activity journal is unavailable; enable persistence before using this tool")
        transitions = journal.list_transitions(item_key)
        if limit > 0:
            transitions = transitions[-limit:]
        _emit_log(
            context,
            "debug",
            "Item history",
            extra={"item": item_key, "transitions": len(transitions)},
        )
        return {
            "item_key": item_key,
            "transition_count": len(transitions),
            "transitions": [record.to_dict() for record in transitions],
        }

    tool_list = server.tool(
        name="list_work_items",
        description="List tracked Copilot pull requests, optionally filtered to 'active' or 'stable'.",
    )(_list_work_items)

    tool_status = server.tool(
        name="work_item_status",
        description="Show the activity state, session counters and CI status for one pull request URL.",
    )(_work_item_status)

    tool_extract = server.tool(
        name="extract_diagnostics",
        description=(
            "Parse raw build, lint or test output into prioritized diagnostics with a "
            "short summary and a markdown report."
        ),
    )(_extract_diagnostics)

    tool_reset = server.tool(
        name="reset_work_item",
        description="Reset a pull request's activity machine to idle and clear its session counters.",
    )(_reset_work_item)

    tool_pause = server.tool(
        name="pause_automation",
        description="Pause automated comments and workflow reruns, globally or for one pull request URL.",
    )(_pause_automation)

    tool_resume = server.tool(
        name="resume_automation",
        description="Resume automated comments and workflow reruns, globally or for one pull request URL.",
    )(_resume_automation)

    tool_history = server.tool(
        name="item_history",
        description="List journaled state transitions for one pull request URL.",
    )(_item_history)

    return ToolHandles(
        list_work_items=tool_list,
        work_item_status=tool_status,
        extract_diagnostics=tool_extract,
        reset_work_item=tool_reset,
        pause_automation=tool_pause,
        resume_automation=tool_resume,
        item_history=tool_history,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when there is one, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
