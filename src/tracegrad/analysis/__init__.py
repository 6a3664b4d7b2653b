"""
Procedure analysis utilities.

Key responsibilities:
- Summarise the forward and gradient chains of a built procedure.
- List the cross-step dependencies discovered while tracing.
"""

from .report import DependencyReport, ProcedureReport, analyze_procedure, format_report

__all__ = [
    "DependencyReport",
    "ProcedureReport",
    "analyze_procedure",
    "format_report",
]
