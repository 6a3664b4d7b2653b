"""
Benchmark forward/backward time and node memory of traced procedures across execution modes.
"""

from __future__ import annotations

import argparse
from pathlib import Path

import numpy as np

from benchmarks.utils import (
    BenchmarkResult,
    export_json,
    format_summary_table,
    run_single_trial,
    summarize,
)
from tracegrad import Matrix, Procedure, ProcedureFactory, Sequence
from tracegrad.examples import DenseDefinition, RecurrentDefinition


PROFILES = {
    "small": {"samples": 32, "input_size": 16, "hidden_size": 16, "truncate": 8},
    "medium": {"samples": 128, "input_size": 64, "hidden_size": 64, "truncate": 16},
    "large": {"samples": 512, "input_size": 128, "hidden_size": 128, "truncate": 32},
}

MODES = {
    "dense": ["per_step", "per_sample"],
    "recurrent": ["full", "truncated"],
}


def _build_procedure(args: argparse.Namespace, mode: str, rng: np.random.Generator) -> Procedure:
    factory = ProcedureFactory()
    if args.workload == "dense":
        definition = DenseDefinition(args.input_size, args.hidden_size, rng=rng)
        return factory.get_procedure(definition, per_sample=mode == "per_sample")
    if args.workload == "recurrent":
        return factory.get_procedure(RecurrentDefinition(args.input_size, args.hidden_size, rng=rng))
    raise ValueError(f"Unknown workload: {args.workload}")


def _prepare_samples(
    rng: np.random.Generator, samples: int, input_size: int, output_size: int
) -> tuple[Sequence, Sequence]:
    inputs = Sequence.from_matrices(
        Matrix(rng.normal(size=(input_size, 1))) for _ in range(samples)
    )
    output_gradients = Sequence.from_matrices(
        Matrix(rng.normal(size=(output_size, 1))) for _ in range(samples)
    )
    return inputs, output_gradients


def run_benchmark(args: argparse.Namespace) -> list[BenchmarkResult]:
    inputs, output_gradients = _prepare_samples(
        np.random.default_rng(0), args.samples, args.input_size, args.hidden_size
    )
    results: list[BenchmarkResult] = []

    for mode in args.modes:
        if mode not in MODES[args.workload]:
            raise ValueError(f"Mode {mode!r} is not available for workload {args.workload!r}.")
        for trial in range(args.trials):
            procedure = _build_procedure(args, mode, np.random.default_rng(args.seed + trial))
            steps = args.truncate if mode == "truncated" else -1
            result = run_single_trial(
                args.workload,
                mode,
                trial,
                procedure=procedure,
                inputs=inputs,
                output_gradients=output_gradients,
                steps=steps,
                extra_metrics={"expressions": float(len(procedure.expressions))},
            )
            results.append(result)

    return results


def _apply_profile(args: argparse.Namespace) -> argparse.Namespace:
    profile_cfg = PROFILES.get(args.profile)
    if not profile_cfg:
        return args
    for key, value in profile_cfg.items():
        if getattr(args, key) is None:
            setattr(args, key, value)
    return args


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--workload", choices=MODES.keys(), default="dense")
    parser.add_argument("--modes", nargs="+", default=None)
    parser.add_argument("--trials", type=int, default=3)
    parser.add_argument("--seed", type=int, default=123)
    parser.add_argument("--profile", choices=PROFILES.keys(), default="medium")
    parser.add_argument("--samples", type=int, default=None)
    parser.add_argument("--input-size", type=int, default=None)
    parser.add_argument("--hidden-size", type=int, default=None)
    parser.add_argument("--truncate", type=int, default=None)
    parser.add_argument("--export", type=Path, help="Optional JSON output path.")
    args = _apply_profile(parser.parse_args())
    if args.modes is None:
        args.modes = MODES[args.workload]
    return args


def main() -> None:
    args = parse_args()
    results = run_benchmark(args)
    summary = summarize(results)
    print(format_summary_table(summary))

    if args.export:
        export_json(results, args.export)
        print(f"\nSaved raw results to {args.export}")


if __name__ == "__main__":
    main()
