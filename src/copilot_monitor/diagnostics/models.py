"""Structured diagnostic records extracted from CI logs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


class DiagnosticTool(str, Enum):
    """Family of tool a record was recognized from, most actionable first."""

    COMPILER = "compiler"
    LINTER = "linter"
    TEST_RUNNER = "test-runner"
    BUNDLER = "bundler"
    PACKAGE_MANAGER = "package-manager"
    CI_ANNOTATION = "ci-annotation"

    @property
    def rank(self) -> int:
        return _TOOL_RANK[self]


_SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
_TOOL_RANK = {tool: index for index, tool in enumerate(DiagnosticTool)}


@dataclass(slots=True)
class DiagnosticRecord:
    """One error or warning found in a log, tied to the line it came from."""

    tool: DiagnosticTool
    severity: Severity
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    code: str | None = None
    rule: str | None = None
    log_line: int = 0

    def location(self) -> str | None:
        if not self.file:
            return None
        if self.line is None:
            return self.file
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool.value,
            "severity": self.severity.value,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "code": self.code,
            "rule": self.rule,
        }


__all__ = ["DiagnosticRecord", "DiagnosticTool", "Severity"]
