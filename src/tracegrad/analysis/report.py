from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:  # pragma: no cover
    from tracegrad.runtime.procedure import Procedure


@dataclass(frozen=True)
class DependencyReport:
    source: str
    target: str
    shape: tuple


@dataclass(frozen=True)
class ProcedureReport:
    expression_chain: List[str]
    gradient_chain: List[str]
    dependencies: List[DependencyReport]
    parameters: List[str]
    execution_mode: str
    node_count: int


def _dependencies(procedure: "Procedure") -> List[DependencyReport]:
    return [
        DependencyReport(source=node.name, target=node.to_node.name, shape=tuple(node.shape))
        for node in procedure.dependent_nodes
        if node.to_node is not None
    ]


def analyze_procedure(procedure: "Procedure") -> ProcedureReport:
    return ProcedureReport(
        expression_chain=procedure.expression_chain(),
        gradient_chain=procedure.gradient_chain(),
        dependencies=_dependencies(procedure),
        parameters=[procedure.get_node(matrix).name for matrix in procedure.parameters],
        execution_mode=procedure.executor.mode,
        node_count=len(procedure.register),
    )


def format_report(report: ProcedureReport) -> str:
    """Render a report as the plain text block printed by debugging tools."""
    lines = [f"mode: {report.execution_mode} ({report.node_count} nodes)", "forward:"]
    lines.extend(f"  {line}" for line in report.expression_chain)
    lines.append("backward:")
    lines.extend(f"  {line}" for line in report.gradient_chain)
    if report.dependencies:
        lines.append("dependencies:")
        lines.extend(
            f"  {dep.source} -> {dep.target} {dep.shape}" for dep in report.dependencies
        )
    if report.parameters:
        lines.append("parameters: " + ", ".join(report.parameters))
    return "\n".join(lines)
