"""Turn raw build, test and lint output into prioritized diagnostic records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Sequence

from .models import DiagnosticRecord, DiagnosticTool, Severity

Recognizer = Callable[[Sequence[str]], Iterator[DiagnosticRecord]]

_TIMESTAMP_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z ?")
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_ANNOTATION_TAG = re.compile(r"^(?P<indent>\s*)##\[\w+\]\s*")

_COMPILER_LINE = re.compile(
    r"^\s*(?P<file>[^\s()][^()]*?)\((?P<line>\d+),(?P<column>\d+)\):\s+"
    r"(?P<severity>error|warning|info)\s+(?P<code>[A-Za-z]+\d+):\s*(?P<message>.+?)\s*$"
)

_LINT_HEADER = re.compile(r"^(?P<file>(?:[A-Za-z]:)?[\w./\\@~+-]*[\w@~+-]\.[A-Za-z0-9]+)\s*$")
_LINT_ROW = re.compile(
    r"^\s+(?P<line>\d+):(?P<column>\d+)\s+(?P<severity>error|warning|warn|info)\s+"
    r"(?P<message>.+?)(?:\s{2,}(?P<rule>\S+))?\s*$"
)

_JEST_MARKER = re.compile(r"^\s*●\s+(?P<description>.+?)\s*$")
_PYTEST_FAILED = re.compile(r"^FAILED\s+(?P<node>\S+?)(?:\s+-\s+(?P<detail>.+?))?\s*$")

_PACKAGE_MANAGER_LINE = re.compile(
    r"^\s*(?P<marker>npm ERR!|npm error|pnpm ERR!|ERR_PNPM_[A-Z_]+|yarn error|"
    r"error (?=Command failed|An unexpected error))(?P<rest>.*)$"
)

_BUNDLER_MARKER = re.compile(
    r"^\s*ERROR in (?P<path>\.{0,2}/?[\w@.\-/]+\.\w+)"
    r"(?:\s+(?P<line>\d+):(?P<column>\d+)(?:-\d+)?)?"
)

_ANNOTATION_LINE = re.compile(r"^\s*##\[(?P<level>error|warning)\]\s*(?P<message>.*?)\s*$")
_WORKFLOW_COMMAND = re.compile(
    r"^\s*::(?P<level>error|warning)(?:\s+(?P<props>[^:]*))?::(?P<message>.*?)\s*$"
)

_SEVERITY_TOKENS = {
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "info": Severity.INFO,
}


def clean_log_lines(raw_text: str) -> list[str]:
    """Split a job log into lines without runner timestamps or colour codes."""

    lines: list[str] = []
    for line in raw_text.splitlines():
        line = _ANSI_ESCAPE.sub("", line)
        line = _TIMESTAMP_PREFIX.sub("", line)
        lines.append(line.rstrip())
    return lines


def strip_annotation_tag(line: str) -> str:
    """Drop a leading runner tag such as ``##[error]`` from a log line."""

    return _ANNOTATION_TAG.sub(r"\g<indent>", line, count=1)


def _next_detail(lines: Sequence[str], start: int, stop: re.Pattern[str] | None = None) -> str | None:
    for candidate in lines[start:]:
        stripped = candidate.strip()
        if not stripped:
            continue
        if stop is not None and stop.match(candidate):
            return None
        return stripped
    return None


def recognize_compiler(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    for index, line in enumerate(lines):
        match = _COMPILER_LINE.match(line)
        if not match:
            continue
        yield DiagnosticRecord(
            tool=DiagnosticTool.COMPILER,
            severity=_SEVERITY_TOKENS[match.group("severity")],
            message=match.group("message"),
            file=match.group("file").strip(),
            line=int(match.group("line")),
            column=int(match.group("column")),
            code=match.group("code"),
            log_line=index,
        )


def recognize_linter(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    """Header/row blocks in the stylish linter format.

    A header applies to the rows below it until a blank line or the next
    header.
    """

    current_file: str | None = None
    for index, line in enumerate(lines):
        if not line.strip():
            current_file = None
            continue
        header = _LINT_HEADER.match(line)
        if header:
            current_file = header.group("file")
            continue
        row = _LINT_ROW.match(line)
        if not row:
            continue
        yield DiagnosticRecord(
            tool=DiagnosticTool.LINTER,
            severity=_SEVERITY_TOKENS[row.group("severity")],
            message=row.group("message"),
            file=current_file,
            line=int(row.group("line")),
            column=int(row.group("column")),
            rule=row.group("rule"),
            log_line=index,
        )


def recognize_test_runner(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    for index, line in enumerate(lines):
        marker = _JEST_MARKER.match(line)
        if marker:
            description = marker.group("description")
            if description.startswith("Console"):
                continue
            detail = _next_detail(lines, index + 1, stop=_JEST_MARKER)
            yield DiagnosticRecord(
                tool=DiagnosticTool.TEST_RUNNER,
                severity=Severity.ERROR,
                message=f"{description}: {detail}" if detail else description,
                log_line=index,
            )
            continue

        failed = _PYTEST_FAILED.match(line)
        if failed:
            node = failed.group("node")
            detail = failed.group("detail")
            yield DiagnosticRecord(
                tool=DiagnosticTool.TEST_RUNNER,
                severity=Severity.ERROR,
                message=f"{node}: {detail}" if detail else node,
                file=node.split("::", 1)[0] if "::" in node else None,
                log_line=index,
            )


def recognize_package_manager(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    for index, line in enumerate(lines):
        match = _PACKAGE_MANAGER_LINE.match(line)
        if not match or not match.group("rest").strip(" :"):
            continue
        yield DiagnosticRecord(
            tool=DiagnosticTool.PACKAGE_MANAGER,
            severity=Severity.ERROR,
            message=line.strip(),
            log_line=index,
        )


def recognize_bundler(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    for index, line in enumerate(lines):
        match = _BUNDLER_MARKER.match(line)
        if not match:
            continue
        path = match.group("path")
        if path.startswith("./"):
            path = path[2:]
        # bundler columns are zero-based
        column = match.group("column")
        yield DiagnosticRecord(
            tool=DiagnosticTool.BUNDLER,
            severity=Severity.ERROR,
            message=_next_detail(lines, index + 1, stop=_BUNDLER_MARKER) or "Module build failed",
            file=path,
            line=int(match.group("line")) if match.group("line") else None,
            column=int(column) + 1 if column is not None else None,
            log_line=index,
        )


def _parse_command_props(raw: str | None) -> dict[str, str]:
    props: dict[str, str] = {}
    for part in (raw or "").split(","):
        key, sep, value = part.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


def recognize_ci_annotation(lines: Sequence[str]) -> Iterator[DiagnosticRecord]:
    for index, line in enumerate(lines):
        annotation = _ANNOTATION_LINE.match(line)
        if annotation:
            if annotation.group("message"):
                yield DiagnosticRecord(
                    tool=DiagnosticTool.CI_ANNOTATION,
                    severity=_SEVERITY_TOKENS[annotation.group("level")],
                    message=annotation.group("message"),
                    log_line=index,
                )
            continue

        command = _WORKFLOW_COMMAND.match(line)
        if command and command.group("message"):
            props = _parse_command_props(command.group("props"))
            line_no = props.get("line", "")
            col_no = props.get("col", "")
            yield DiagnosticRecord(
                tool=DiagnosticTool.CI_ANNOTATION,
                severity=_SEVERITY_TOKENS[command.group("level")],
                message=command.group("message"),
                file=props.get("file") or None,
                line=int(line_no) if line_no.isdigit() else None,
                column=int(col_no) if col_no.isdigit() else None,
                log_line=index,
            )


DEFAULT_RECOGNIZERS: tuple[Recognizer, ...] = (
    recognize_compiler,
    recognize_linter,
    recognize_test_runner,
    recognize_package_manager,
    recognize_bundler,
    recognize_ci_annotation,
)

# only report lines that no other recognizer claimed
FALLBACK_RECOGNIZERS: frozenset[Recognizer] = frozenset({recognize_ci_annotation})


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


@dataclass(slots=True)
class DiagnosticResult:
    """Records found in one job log, in the order they appear."""

    job_label: str
    records: list[DiagnosticRecord] = field(default_factory=list)

    @property
    def by_tool(self) -> dict[DiagnosticTool, list[DiagnosticRecord]]:
        grouped: dict[DiagnosticTool, list[DiagnosticRecord]] = {}
        for record in self.records:
            grouped.setdefault(record.tool, []).append(record)
        return grouped

    @property
    def by_file(self) -> dict[str, list[DiagnosticRecord]]:
        grouped: dict[str, list[DiagnosticRecord]] = {}
        for record in self.records:
            if record.file:
                grouped.setdefault(record.file, []).append(record)
        return grouped

    @property
    def error_count(self) -> int:
        return sum(1 for record in self.records if record.severity is Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for record in self.records if record.severity is Severity.WARNING)

    def prioritized(self) -> list[DiagnosticRecord]:
        return sorted(self.records, key=lambda record: (record.severity.rank, record.tool.rank))

    def summary(self) -> str:
        label = self.job_label or "log"
        if not self.records:
            return f"{label}: no diagnostics found"

        counts = [_plural(self.error_count, "error"), _plural(self.warning_count, "warning")]
        info_count = len(self.records) - self.error_count - self.warning_count
        if info_count:
            counts.append(f"{info_count} info")
        tools = ", ".join(f"{tool.value} {len(items)}" for tool, items in self.by_tool.items())
        return f"{label}: {', '.join(counts)} ({tools})"

    def report(self, limit: int = 5) -> str:
        """Markdown block used in auto-fix comments."""

        lines = [f"### {self.job_label or 'log'}"]
        if not self.records:
            lines.append(self.summary())
            return "\n".join(lines)

        for tool, items in self.by_tool.items():
            errors = sum(1 for item in items if item.severity is Severity.ERROR)
            warnings = sum(1 for item in items if item.severity is Severity.WARNING)
            lines.append(
                f"**{tool.value}**: {_plural(errors, 'error')}, {_plural(warnings, 'warning')}"
            )

        lines.append("")
        lines.append("**Most Critical Issues:**")
        for record in self.prioritized()[:limit]:
            lines.append(f"- {format_record(record)}")
        return "\n".join(lines)

    def to_dict(self, limit: int | None = None) -> dict[str, object]:
        prioritized = self.prioritized()
        if limit is not None:
            prioritized = prioritized[:limit]
        return {
            "job_label": self.job_label,
            "summary": self.summary(),
            "errors": self.error_count,
            "warnings": self.warning_count,
            "by_tool": {tool.value: len(items) for tool, items in self.by_tool.items()},
            "files": sorted(self.by_file),
            "records": [record.to_dict() for record in prioritized],
        }


def format_record(record: DiagnosticRecord) -> str:
    parts: list[str] = []
    location = record.location()
    if location:
        parts.append(f"`{location}`")
    tag = record.code or record.rule
    if tag:
        parts.append(f"[{tag}]")
    parts.append(record.message)
    return " ".join(parts)


class DiagnosticExtractor:
    """Applies independent recognizers to a whole log and merges their output.

    Tool recognizers see lines with runner tags removed. Fallback
    recognizers see the tagged lines and only keep records for lines the
    tool recognizers left unclaimed.
    """

    def __init__(self, recognizers: Iterable[Recognizer] | None = None) -> None:
        self._recognizers = tuple(recognizers or DEFAULT_RECOGNIZERS)

    def extract(self, raw_text: str, job_label: str = "") -> DiagnosticResult:
        lines = clean_log_lines(raw_text or "")
        bare = [strip_annotation_tag(line) for line in lines]
        records: list[DiagnosticRecord] = []
        fallbacks: list[Recognizer] = []
        for recognizer in self._recognizers:
            if recognizer in FALLBACK_RECOGNIZERS:
                fallbacks.append(recognizer)
                continue
            records.extend(recognizer(bare))
        claimed = {record.log_line for record in records}
        for recognizer in fallbacks:
            records.extend(record for record in recognizer(lines) if record.log_line not in claimed)
        records.sort(key=lambda record: record.log_line)
        return DiagnosticResult(job_label=job_label, records=records)


_default_extractor = DiagnosticExtractor()


def extract(raw_text: str, job_label: str = "") -> DiagnosticResult:
    """Extract diagnostics from ``raw_text`` using the default recognizers."""

    return _default_extractor.extract(raw_text, job_label)


__all__ = [
    "DEFAULT_RECOGNIZERS",
    "DiagnosticExtractor",
    "DiagnosticResult",
    "FALLBACK_RECOGNIZERS",
    "clean_log_lines",
    "extract",
    "format_record",
    "recognize_bundler",
    "recognize_ci_annotation",
    "recognize_compiler",
    "recognize_linter",
    "recognize_package_manager",
    "recognize_test_runner",
    "strip_annotation_tag",
]
