from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from statistics import mean
from time import perf_counter
from typing import Dict, List, Optional, Sequence

import numpy as np

from tracegrad import Procedure
from tracegrad import Sequence as SampleSequence

try:  # optional CPU memory tracking
    import psutil  # type: ignore

    _PSUTIL_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    psutil = None  # type: ignore
    _PSUTIL_AVAILABLE = False


@dataclass
class BenchmarkResult:
    """
    Structured summary for a single benchmark trial.
    """

    benchmark: str
    mode: str
    trial: int
    wall_time_s: float
    forward_time_ms: float
    backward_time_ms: float
    peak_node_bytes: int
    output_sum: float
    peak_cpu_bytes: Optional[int] = None
    extra_metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def run_single_trial(
    benchmark_name: str,
    mode: str,
    trial: int,
    *,
    procedure: Procedure,
    inputs: SampleSequence,
    output_gradients: SampleSequence,
    steps: int = -1,
    extra_metrics: Optional[Dict[str, float]] = None,
) -> BenchmarkResult:
    """
    Execute one forward/backward pass of a procedure and record time/memory stats.

    Args:
        benchmark_name: Label for the benchmark family (e.g. "recurrent").
        mode: Execution mode label ("per_sample", "per_step", ...).
        trial: Integer trial index.
        procedure: Procedure to run; it is reset before the pass.
        inputs: Input samples for the forward pass.
        output_gradients: Output gradients fed to the backward pass.
        steps: Truncation passed to `calculate_gradient` (-1 for all samples).
        extra_metrics: Optional dictionary of custom metrics to attach.
    """
    procedure.reset()
    procedure.profiler.reset()

    proc = psutil.Process() if _PSUTIL_AVAILABLE else None
    rss_before = proc.memory_info().rss if proc else None

    start = perf_counter()
    outputs = procedure.calculate_expression(inputs)
    procedure.calculate_gradient(output_gradients, steps=steps)
    wall = perf_counter() - start

    peak_cpu = None
    if proc and rss_before is not None:
        rss_after = proc.memory_info().rss
        peak_cpu = max(rss_before, rss_after)

    stats = procedure.stats
    return BenchmarkResult(
        benchmark=benchmark_name,
        mode=mode,
        trial=trial,
        wall_time_s=wall,
        forward_time_ms=stats.events.get("forward", 0.0),
        backward_time_ms=stats.events.get("backward", 0.0),
        peak_node_bytes=int(stats.peak_memory_bytes),
        output_sum=float(sum(np.sum(matrix.data) for matrix in outputs.matrices())),
        peak_cpu_bytes=int(peak_cpu) if peak_cpu is not None else None,
        extra_metrics=extra_metrics or {},
    )


def summarize(results: Sequence[BenchmarkResult]) -> List[dict]:
    """
    Aggregate benchmark results by mode and return summaries suitable for printing.
    """
    summaries: List[dict] = []
    by_mode: dict[str, List[BenchmarkResult]] = {}
    for res in results:
        by_mode.setdefault(res.mode, []).append(res)

    for mode, group in sorted(by_mode.items(), key=lambda kv: kv[0]):
        summaries.append(
            {
                "mode": mode,
                "trials": len(group),
                "wall_time_mean_s": mean(r.wall_time_s for r in group),
                "forward_mean_ms": mean(r.forward_time_ms for r in group),
                "backward_mean_ms": mean(r.backward_time_ms for r in group),
                "node_mem_mean_mb": mean(r.peak_node_bytes for r in group) / 1e6,
                "peak_cpu_mean_mb": (
                    mean(r.peak_cpu_bytes for r in group if r.peak_cpu_bytes is not None) / 1e6
                )
                if any(r.peak_cpu_bytes is not None for r in group)
                else None,
                "output_sum_mean": mean(r.output_sum for r in group),
            }
        )
    return summaries


def export_json(results: Sequence[BenchmarkResult], destination: Path) -> None:
    """
    Write raw benchmark results to JSON for later analysis.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    payload = [res.to_dict() for res in results]
    destination.write_text(json.dumps(payload, indent=2))


def load_json(source: Path) -> List[BenchmarkResult]:
    with source.open() as fh:
        raw = json.load(fh)
    results: List[BenchmarkResult] = []
    for entry in raw:
        entry.setdefault("peak_cpu_bytes", None)
        entry.setdefault("extra_metrics", {})
        results.append(BenchmarkResult(**entry))
    return results


def _format_value(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value:.4f}"


def format_summary_table(summary: Sequence[dict]) -> str:
    """
    Format aggregated summaries into a readable table.
    """
    if not summary:
        return "No results recorded."

    headers = [
        "mode",
        "trials",
        "wall_time_mean_s",
        "forward_mean_ms",
        "backward_mean_ms",
        "node_mem_mean_mb",
        "peak_cpu_mean_mb",
        "output_sum_mean",
    ]

    col_widths: dict[str, int] = {}
    for header in headers:
        max_len = len(header)
        for row in summary:
            value = row[header]
            cell = (
                _format_value(value)
                if isinstance(value, (float, type(None)))
                else str(value)
            )
            max_len = max(max_len, len(cell))
        col_widths[header] = max_len

    def format_cell(h: str, value: object) -> str:
        if isinstance(value, (float, type(None))):
            return _format_value(value).ljust(col_widths[h])
        return str(value).ljust(col_widths[h])

    lines = [
        " | ".join(h.ljust(col_widths[h]) for h in headers),
        "-+-".join("-" * col_widths[h] for h in headers),
    ]
    for row in summary:
        lines.append(" | ".join(format_cell(h, row[h]) for h in headers))
    return "\n".join(lines)
