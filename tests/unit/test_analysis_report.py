from __future__ import annotations

from tracegrad import ProcedureFactory
from tracegrad.analysis import ProcedureReport, analyze_procedure, format_report
from tracegrad.examples import DenseDefinition, RecurrentDefinition


def test_analyze_procedure_returns_report() -> None:
    procedure = ProcedureFactory().get_procedure(DenseDefinition(3, 2))
    report = analyze_procedure(procedure)

    assert isinstance(report, ProcedureReport)
    assert report.expression_chain == procedure.expression_chain()
    assert report.gradient_chain == procedure.gradient_chain()
    assert report.parameters == ["weight", "bias"]
    assert report.execution_mode == "per_step"
    assert report.dependencies == []
    assert report.node_count == len(procedure.register)


def test_report_lists_recurrent_dependencies() -> None:
    procedure = ProcedureFactory().get_procedure(RecurrentDefinition(2, 3))
    report = analyze_procedure(procedure)

    assert report.execution_mode == "per_sample"
    assert len(report.dependencies) == 1
    dependency = report.dependencies[0]
    assert dependency.source == procedure.output_nodes[0].name
    assert dependency.shape == (3, 1)

    text = format_report(report)
    assert text.splitlines()[0].startswith("mode: per_sample")
    assert "dependencies:" in text
    assert f"{dependency.source} -> {dependency.target} (3, 1)" in text
    assert "parameters: input_weight, recurrent_weight, bias" in text


def test_format_report_omits_empty_sections() -> None:
    text = format_report(analyze_procedure(ProcedureFactory().get_procedure(DenseDefinition(2, 2))))
    assert "forward:" in text and "backward:" in text
    assert "dependencies:" not in text
