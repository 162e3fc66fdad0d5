"""Diagnostic extraction exports."""

from .extractor import DiagnosticExtractor, DiagnosticResult, clean_log_lines, extract, format_record
from .models import DiagnosticRecord, DiagnosticTool, Severity

__all__ = [
    "DiagnosticExtractor",
    "DiagnosticRecord",
    "DiagnosticResult",
    "DiagnosticTool",
    "Severity",
    "clean_log_lines",
    "extract",
    "format_record",
]
