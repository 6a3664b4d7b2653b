from __future__ import annotations

import numpy as np

from benchmarks.utils import (
    BenchmarkResult,
    export_json,
    format_summary_table,
    load_json,
    run_single_trial,
    summarize,
)
from tracegrad import Matrix, ProcedureFactory, Sequence
from tracegrad.examples import RecurrentDefinition


def _result(mode: str, trial: int, wall: float, cpu=None) -> BenchmarkResult:
    return BenchmarkResult(
        "demo",
        mode,
        trial,
        wall_time_s=wall,
        forward_time_ms=wall * 400.0,
        backward_time_ms=wall * 600.0,
        peak_node_bytes=1000 + trial,
        output_sum=1.0,
        peak_cpu_bytes=cpu,
    )


def test_summarize_and_format_table() -> None:
    results = [
        _result("per_step", 0, 0.5),
        _result("per_step", 1, 0.7, cpu=2_000_000),
        _result("per_sample", 0, 0.8),
    ]

    summary = summarize(results)
    table = format_summary_table(summary)

    assert [row["mode"] for row in summary] == ["per_sample", "per_step"]
    per_step = summary[1]
    assert per_step["trials"] == 2
    assert abs(per_step["wall_time_mean_s"] - 0.6) < 1e-12
    assert per_step["peak_cpu_mean_mb"] == 2.0
    assert summary[0]["peak_cpu_mean_mb"] is None
    assert "mode" in table and "N/A" in table


def test_format_empty_summary() -> None:
    assert format_summary_table([]) == "No results recorded."


def test_export_and_reload(tmp_path) -> None:
    results = [_result("per_step", 0, 0.5)]
    path = tmp_path / "nested" / "results.json"
    export_json(results, path)
    assert load_json(path) == results


def test_run_single_trial_on_recurrent_procedure() -> None:
    rng = np.random.default_rng(0)
    procedure = ProcedureFactory().get_procedure(RecurrentDefinition(2, 3))
    inputs = Sequence.from_matrices(Matrix(rng.normal(size=(2, 1))) for _ in range(6))
    gradients = Sequence.from_matrices(Matrix.ones(3) for _ in range(6))

    result = run_single_trial(
        "recurrent", "truncated", 0, procedure=procedure, inputs=inputs,
        output_gradients=gradients, steps=2,
    )

    assert result.mode == "truncated"
    assert result.wall_time_s >= 0.0
    assert result.peak_node_bytes > 0
    assert procedure.stats.backward_steps == 2
