#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import os
import platform
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence


REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@dataclass
class CommandResult:
    name: str
    command: Sequence[str]
    success: bool
    returncode: int
    stdout: str
    stderr: str


@dataclass
class SmokeResult:
    name: str
    success: bool
    details: str


def log(msg: str) -> None:
    print(msg, flush=True)


def _pythonpath(env: Dict[str, str]) -> str:
    entries = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
    for path in (str(REPO_ROOT), str(REPO_ROOT / "src")):
        if path not in entries:
            entries.insert(0, path)
    return os.pathsep.join(entries)


def run_command(
    name: str,
    command: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> CommandResult:
    log(f"\n[run] {name}: {' '.join(command)}")
    merged_env = {**os.environ, **(env or {})}
    merged_env["PYTHONPATH"] = _pythonpath(merged_env)

    completed = subprocess.run(  # noqa: S603
        command,
        cwd=str(cwd or REPO_ROOT),
        env=merged_env,
        capture_output=True,
        text=True,
    )
    if completed.stdout:
        log(completed.stdout.strip())
    if completed.stderr:
        log(completed.stderr.strip())
    return CommandResult(
        name=name,
        command=command,
        success=completed.returncode == 0,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def gather_environment_info() -> Dict[str, object]:
    import numpy

    info: Dict[str, object] = {
        "python": sys.version,
        "platform": platform.platform(),
        "numpy_version": numpy.__version__,
    }
    try:
        import torch

        info["torch_version"] = torch.__version__
    except ModuleNotFoundError:
        info["torch_version"] = None

    try:
        import jax

        info["jax_version"] = jax.__version__
    except ModuleNotFoundError:
        info["jax_version"] = None

    try:
        import psutil

        info["psutil_version"] = psutil.__version__
    except ModuleNotFoundError:
        info["psutil_version"] = None

    return info


def _dense_parity(reference_gradients, activation) -> bool:
    import numpy as np

    from tracegrad import Matrix, ProcedureFactory, Sequence
    from tracegrad.examples import DenseDefinition

    definition = DenseDefinition(4, 3)
    procedure = ProcedureFactory().get_procedure(definition)
    sample = Matrix(np.linspace(-1.0, 1.0, 4))
    procedure.calculate_expression(Sequence({0: sample}))
    procedure.calculate_gradient(Sequence({0: Matrix.ones(3)}))

    expected = reference_gradients(
        lambda x, w, b: activation(w @ x + b), [sample, definition.weight, definition.bias]
    )
    return bool(
        np.allclose(procedure.get_gradient(definition.weight).data, expected[1].data, atol=1e-5)
        and np.allclose(procedure.get_gradient(definition.bias).data, expected[2].data, atol=1e-5)
    )


def torch_smoke_tests() -> List[SmokeResult]:
    try:
        import torch

        from tracegrad.integration.torch import reference_gradients
    except ModuleNotFoundError:
        return [SmokeResult("torch_gradient_parity", True, "PyTorch not installed (skipped)")]

    parity = _dense_parity(reference_gradients, torch.tanh)
    return [
        SmokeResult(
            name="torch_gradient_parity",
            success=parity,
            details="Procedure gradients match autograd" if parity else "Gradient mismatch",
        )
    ]


def jax_smoke_tests() -> List[SmokeResult]:
    try:
        import jax.numpy as jnp

        from tracegrad.integration.jax import reference_gradients
    except ModuleNotFoundError:
        return [SmokeResult("jax_gradient_parity", True, "JAX not installed (skipped)")]

    parity = _dense_parity(reference_gradients, jnp.tanh)
    return [
        SmokeResult(
            name="jax_gradient_parity",
            success=parity,
            details="Procedure gradients match jax.grad" if parity else "Gradient mismatch",
        )
    ]


def run_pytests(skip_unit: bool, skip_integration: bool, pytest_args: Sequence[str]) -> List[CommandResult]:
    results: List[CommandResult] = []
    if not skip_unit:
        results.append(run_command("pytest-unit", [sys.executable, "-m", "pytest", "tests/unit", *pytest_args]))
    if not skip_integration:
        results.append(
            run_command("pytest-integration", [sys.executable, "-m", "pytest", "tests/integration", *pytest_args])
        )
    return results


def run_benchmarks(
    workloads: Sequence[str],
    trials: int,
    results_dir: Path,
    timestamp: str,
    profile: str,
) -> Dict[str, Optional[Path]]:
    paths: Dict[str, Optional[Path]] = {}
    results_dir.mkdir(parents=True, exist_ok=True)
    for workload in workloads:
        export_path = results_dir / f"{workload}_{timestamp}.json"
        cmd = [
            sys.executable, "-m", "benchmarks.execution_modes",
            "--workload", workload,
            "--trials", str(trials),
            "--profile", profile,
            "--export", str(export_path),
        ]
        log(f"\n[benchmark] {workload}")
        result = run_command(f"benchmark-{workload}", cmd)
        paths[workload] = export_path if result.success and export_path.exists() else None
    return paths


def evaluate_modes(summary: Sequence[dict], baseline: str, candidate: str) -> Dict[str, Optional[float]]:
    base = next((row for row in summary if row["mode"] == baseline), None)
    other = next((row for row in summary if row["mode"] == candidate), None)
    if not base or not other or not base["wall_time_mean_s"]:
        return {"time_ratio": None, "memory_ratio": None}
    memory_ratio = None
    if base["node_mem_mean_mb"]:
        memory_ratio = other["node_mem_mean_mb"] / base["node_mem_mean_mb"]
    return {
        "time_ratio": other["wall_time_mean_s"] / base["wall_time_mean_s"],
        "memory_ratio": memory_ratio,
    }


def format_smoke_results(results: Iterable[SmokeResult]) -> str:
    lines = ["\nSmoke Test Summary:"]
    for res in results:
        status = "PASS" if res.success else "FAIL"
        lines.append(f"- {status:<4} {res.name}: {res.details}")
    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the tracegrad verification suite.")
    parser.add_argument("--skip-lint", action="store_true", help="Skip lint checks.")
    parser.add_argument("--skip-unit", action="store_true", help="Skip unit tests.")
    parser.add_argument("--skip-integration", action="store_true", help="Skip integration tests.")
    parser.add_argument("--skip-benchmarks", action="store_true", help="Skip benchmark comparisons.")
    parser.add_argument("--pytest-args", nargs=argparse.REMAINDER, default=[], help="Extra arguments passed to pytest.")
    parser.add_argument("--trials", type=int, default=3, help="Number of trials for each benchmark mode.")
    parser.add_argument("--results-dir", type=Path, default=Path("results"), help="Directory to store benchmark outputs.")
    parser.add_argument(
        "--targets",
        nargs="+",
        choices=["dense", "recurrent"],
        default=["dense", "recurrent"],
        help="Benchmark workloads to execute.",
    )
    parser.add_argument(
        "--benchmark-profile",
        choices=["small", "medium", "large"],
        default="small",
        help="Workload profile passed to each benchmark.",
    )
    args = parser.parse_args()

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    script_summary: Dict[str, object] = {"timestamp": timestamp}
    overall_success = True

    log("=== Environment ===")
    env_info = gather_environment_info()
    log(json.dumps(env_info, indent=2))
    script_summary["environment"] = env_info

    functional_results: List[CommandResult] = []
    if not args.skip_lint:
        ruff_exe = shutil.which("ruff")
        if ruff_exe:
            functional_results.append(run_command("lint", [ruff_exe, "check", ".", "--exclude", ".venv"]))
        else:
            log("[warn] 'ruff' not found on PATH; skipping lint step.")
    functional_results.extend(run_pytests(args.skip_unit, args.skip_integration, args.pytest_args))
    script_summary["functional_tests"] = [
        {"name": res.name, "success": res.success, "returncode": res.returncode, "command": res.command}
        for res in functional_results
    ]
    if any(not res.success for res in functional_results):
        overall_success = False

    smoke_results = [*torch_smoke_tests(), *jax_smoke_tests()]
    log(format_smoke_results(smoke_results))
    script_summary["smoke_tests"] = [
        {"name": res.name, "success": res.success, "details": res.details} for res in smoke_results
    ]
    if any(not res.success for res in smoke_results):
        overall_success = False

    comparisons = {"dense": ("per_step", "per_sample"), "recurrent": ("full", "truncated")}
    benchmark_reports: Dict[str, dict] = {}
    if not args.skip_benchmarks:
        from benchmarks.utils import format_summary_table, load_json, summarize

        paths = run_benchmarks(args.targets, args.trials, args.results_dir, timestamp, args.benchmark_profile)
        for name, path in paths.items():
            if path is None:
                log(f"[warn] Benchmark {name} failed or produced no output.")
                overall_success = False
                continue
            summary = summarize(load_json(path))
            log(f"\nBenchmark Summary ({name}):\n{format_summary_table(summary)}")
            benchmark_reports[name] = {
                "results_path": str(path),
                "summary": summary,
                "comparison": evaluate_modes(summary, *comparisons[name]),
            }
    else:
        log("\n[info] Benchmarks skipped by user request.")
    script_summary["benchmarks"] = benchmark_reports
    script_summary["benchmark_profile"] = args.benchmark_profile

    script_summary["overall_success"] = overall_success
    args.results_dir.mkdir(parents=True, exist_ok=True)
    summary_path = args.results_dir / f"verification_summary_{timestamp}.json"
    with summary_path.open("w") as fh:
        json.dump(script_summary, fh, indent=2)
    log(f"\nSummary written to {summary_path}")

    if not overall_success:
        log("\n[FAIL] Some checks did not pass. See summary for details.")
        sys.exit(1)

    log("\n[OK] All checks passed successfully.")


if __name__ == "__main__":
    main()
