"""Orchestrator — computes optimizations/comparisons, persists them, and provides the CLI."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, TypeVar

from citysim.agents.interpreter import interpret_results
from citysim.agents.reporter import (
    export_pdf,
    optimization_markdown,
    comparison_markdown,
    write_comparison_report,
    write_optimization_report,
)
from citysim.core.comparator import ComparisonConfig, compare_all_simulations, compare_simulations
from citysim.core.evaluation import build_run
from citysim.core.history_store import HistoryStore, StorageError
from citysim.core.optimizer import OptimizationConfig, optimize_parameters, run_comprehensive_optimization
from citysim.core.simulation_spec import (
    RESULT_METRICS,
    TARGET_METRICS,
    ComparisonMetric,
    OptimizationResult,
    ParameterRange,
    SimulationParameters,
    SimulationRun,
)

DATA_DIR = os.environ.get("CITYSIM_DATA_DIR", "citysim_data")

T = TypeVar("T")


def _log(msg: str) -> None:
    print(f"[citysim] {msg}", flush=True)


def _save_safely(save: Callable[[T], T], record: T) -> T:
    """Persist a computed record; on storage failure keep the in-memory one."""
    try:
        return save(record)
    except StorageError as e:
        _log(f"Could not save result, returning unsaved copy: {e}")
        return record


def run_optimization(
    baseline: SimulationRun,
    target_metric: str,
    store: HistoryStore | None = None,
    config: OptimizationConfig | None = None,
    parameter_ranges: dict[str, ParameterRange] | None = None,
) -> OptimizationResult:
    _log(f"Optimizing {baseline.name!r} for {target_metric}...")
    result = optimize_parameters(baseline, target_metric, config, parameter_ranges)
    _log(
        f"Best {target_metric} improvement: {result.improvement_percentage:.2f}% "
        f"in {result.metadata.execution_time_ms:.1f} ms"
    )
    if store is not None:
        result = _save_safely(store.save_optimization, result)
    return result


def run_comprehensive(
    baseline: SimulationRun,
    store: HistoryStore | None = None,
    config: OptimizationConfig | None = None,
    parameter_ranges: dict[str, ParameterRange] | None = None,
) -> list[OptimizationResult]:
    _log(f"Optimizing {baseline.name!r} for all {len(TARGET_METRICS)} target metrics...")
    results = run_comprehensive_optimization(baseline, config, parameter_ranges)
    if store is not None:
        results = [_save_safely(store.save_optimization, r) for r in results]
    return results


def run_comparison(
    baseline: SimulationRun,
    compared: list[SimulationRun],
    store: HistoryStore | None = None,
    config: ComparisonConfig | None = None,
) -> ComparisonMetric:
    _log(f"Comparing {baseline.name!r} against {len(compared)} simulation(s)...")
    comparison = compare_simulations(baseline, compared, config)
    if store is not None:
        comparison = _save_safely(store.save_comparison, comparison)
    return comparison


def run_compare_all(
    runs: list[SimulationRun],
    store: HistoryStore | None = None,
) -> ComparisonMetric | None:
    comparison = compare_all_simulations(runs)
    if comparison is None:
        _log("Need at least 2 simulations to compare")
        return None
    _log(f"Compared {len(runs)} simulations against the most recent one")
    if store is not None:
        comparison = _save_safely(store.save_comparison, comparison)
    return comparison


def _require_run(store: HistoryStore, run_id: str) -> SimulationRun:
    run = store.get_run(run_id)
    if run is None:
        raise ValueError(f"Simulation run not found: {run_id}")
    return run


def _print_lines(lines: list[str]) -> None:
    for line in lines:
        print(line)


def _cmd_simulate(args: argparse.Namespace, store: HistoryStore) -> None:
    params = SimulationParameters(
        roads=args.roads,
        population=args.population,
        housing=args.housing,
        public_transport=args.public_transport,
    )
    run = store.save_run(build_run(args.name, params, project_id=args.project))
    _log(f"Saved simulation {run.id}")
    _print_lines([f"{m}: {getattr(run.results, m):.2f}" for m in RESULT_METRICS])


def _cmd_optimize(args: argparse.Namespace, store: HistoryStore) -> None:
    baseline = _require_run(store, args.run)
    config = OptimizationConfig(
        iterations=args.iterations,
        population_size=args.population_size,
        mutation_rate=args.mutation_rate,
        elitism_rate=args.elitism_rate,
        seed=args.seed,
    )
    if args.comprehensive:
        results = run_comprehensive(baseline, store, config)
    else:
        results = [run_optimization(baseline, args.target, store, config)]
    for result in results:
        print(f"{result.id or '(unsaved)'}  {result.name}: {result.improvement_percentage:+.2f}%")


def _cmd_compare(args: argparse.Namespace, store: HistoryStore) -> None:
    baseline = _require_run(store, args.baseline)
    compared = [_require_run(store, run_id) for run_id in args.runs]
    config = ComparisonConfig(
        name=args.name,
        metrics=args.metrics,
        generate_recommendations=not args.no_recommendations,
    )
    comparison = run_comparison(baseline, compared, store, config)
    _print_lines(comparison.summary.key_findings + comparison.summary.recommendations)


def _cmd_compare_all(args: argparse.Namespace, store: HistoryStore) -> None:
    comparison = run_compare_all(store.list_runs(args.project), store)
    if comparison is None:
        raise ValueError("Need at least 2 simulations to compare")
    _print_lines(comparison.summary.key_findings + comparison.summary.recommendations)


def _cmd_interpret(args: argparse.Namespace, store: HistoryStore) -> None:
    run = _require_run(store, args.run)
    _log(f"Interpreting {run.name!r}...")
    interpretation = interpret_results(run, args.project_type, args.location)
    print(interpretation.summary)
    for heading, items in (
        ("Insights", interpretation.insights),
        ("Improvements", interpretation.improvements),
        ("Comparisons", interpretation.comparisons),
    ):
        print(f"\n{heading}:")
        _print_lines([f"- {item}" for item in items])


def _cmd_report(args: argparse.Namespace, store: HistoryStore) -> None:
    output_dir = Path(args.output_dir)
    if args.optimization:
        result = store.get_optimization(args.optimization)
        if result is None:
            raise ValueError(f"Optimization result not found: {args.optimization}")
        path = write_optimization_report(result, output_dir)
        markdown = optimization_markdown(result)
    else:
        comparison = store.get_comparison(args.comparison)
        if comparison is None:
            raise ValueError(f"Comparison not found: {args.comparison}")
        path = write_comparison_report(comparison, output_dir)
        markdown = comparison_markdown(comparison)
    _log(f"Report written to {path}")
    if args.pdf:
        pdf_path = export_pdf(markdown, path.with_suffix(".pdf"))
        _log(f"PDF written to {pdf_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CitySim — optimize and compare smart city simulation runs",
    )
    parser.add_argument(
        "--data-dir",
        default=DATA_DIR,
        help=f"Directory holding saved runs and results (default: {DATA_DIR}/)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run the city formula and save the run")
    sim.add_argument("--name", required=True)
    sim.add_argument("--project", default="")
    for knob in ("roads", "population", "housing", "public-transport"):
        sim.add_argument(f"--{knob}", type=float, default=50.0)

    opt = sub.add_parser("optimize", help="Search for better parameters for a saved run")
    opt.add_argument("--run", required=True, help="Baseline simulation run ID")
    opt.add_argument("--target", choices=TARGET_METRICS, default="balanced")
    opt.add_argument("--comprehensive", action="store_true", help="Optimize for every target metric")
    opt.add_argument("--iterations", type=int, default=50)
    opt.add_argument("--population-size", type=int, default=20)
    opt.add_argument("--mutation-rate", type=float, default=0.1)
    opt.add_argument("--elitism-rate", type=float, default=0.2)
    opt.add_argument("--seed", type=int, default=None)

    cmp_ = sub.add_parser("compare", help="Compare saved runs against a baseline")
    cmp_.add_argument("--baseline", required=True)
    cmp_.add_argument("--runs", nargs="+", required=True)
    cmp_.add_argument("--metrics", nargs="+", choices=RESULT_METRICS, default=None)
    cmp_.add_argument("--name", default="Simulation Comparison")
    cmp_.add_argument("--no-recommendations", action="store_true")

    all_ = sub.add_parser("compare-all", help="Compare every run against the most recent one")
    all_.add_argument("--project", default=None)

    interp = sub.add_parser("interpret", help="Ask the model to explain a saved run's results")
    interp.add_argument("--run", required=True, help="Simulation run ID")
    interp.add_argument("--project-type", default="urban development")
    interp.add_argument("--location", default="")

    rep = sub.add_parser("report", help="Export a saved result as markdown (and PDF)")
    target = rep.add_mutually_exclusive_group(required=True)
    target.add_argument("--optimization")
    target.add_argument("--comparison")
    rep.add_argument("--output-dir", default="reports")
    rep.add_argument("--pdf", action="store_true")

    return parser


_COMMANDS = {
    "simulate": _cmd_simulate,
    "optimize": _cmd_optimize,
    "compare": _cmd_compare,
    "compare-all": _cmd_compare_all,
    "interpret": _cmd_interpret,
    "report": _cmd_report,
}


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    store = HistoryStore(args.data_dir)

    try:
        _COMMANDS[args.command](args, store)
    except Exception as e:
        print(f"\n[citysim] ERROR: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
