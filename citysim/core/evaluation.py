"""Evaluation — the fixed city formula and the fitness score built on it."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import NamedTuple

from citysim.core.simulation_spec import (
    TARGET_METRICS,
    SimulationParameters,
    SimulationResults,
    SimulationRun,
)


class Evaluation(NamedTuple):
    results: SimulationResults
    fitness_score: float


def _clamp(value: float) -> float:
    return min(100.0, max(0.0, value))


def simulate_results(parameters: SimulationParameters) -> SimulationResults:
    """Compute the four city metrics from the four knobs.

    Raw congestion is floored at zero before it feeds the other formulas;
    every metric is clamped to [0, 100] only at the end.
    """
    p = parameters
    congestion = max(0.0, 100 - p.roads * 0.8 - p.public_transport * 0.5 + p.population * 0.7)
    satisfaction = p.housing * 0.4 + p.roads * 0.2 + p.public_transport * 0.4 - congestion * 0.5
    emissions = p.population * 0.6 - p.public_transport * 0.4 + congestion * 0.3
    transit_usage = p.public_transport * 0.7 + congestion * 0.3

    return SimulationResults(
        congestion=_clamp(congestion),
        satisfaction=_clamp(satisfaction),
        emissions=_clamp(emissions),
        transit_usage=_clamp(transit_usage),
    )


def fitness_score(results: SimulationResults, target_metric: str) -> float:
    """Score results for a target metric; higher is always better."""
    if target_metric == "congestion":
        return 100 - results.congestion
    if target_metric == "satisfaction":
        return results.satisfaction
    if target_metric == "emissions":
        return 100 - results.emissions
    if target_metric == "transit_usage":
        return results.transit_usage
    if target_metric == "balanced":
        return (
            (100 - results.congestion)
            + results.satisfaction
            + (100 - results.emissions)
            + results.transit_usage
        ) / 4
    raise ValueError(
        f"Unknown target metric {target_metric!r}; expected one of {', '.join(TARGET_METRICS)}"
    )


def evaluate(parameters: SimulationParameters, target_metric: str) -> Evaluation:
    results = simulate_results(parameters)
    return Evaluation(results, fitness_score(results, target_metric))


def percentage_difference(baseline: float, value: float) -> float:
    """Relative change from baseline in percent.

    A zero baseline yields 0 when the value is also zero and 100 otherwise.
    """
    if baseline == 0:
        return 0.0 if value == 0 else 100.0
    return (value - baseline) / abs(baseline) * 100


def build_run(
    name: str,
    parameters: SimulationParameters,
    run_id: str = "",
    project_id: str = "",
    description: str = "",
    created_at: datetime | None = None,
) -> SimulationRun:
    """Run the formula for a parameter set and wrap it as a SimulationRun."""
    return SimulationRun(
        id=run_id,
        name=name,
        project_id=project_id,
        description=description,
        parameters=parameters,
        results=simulate_results(parameters),
        metadata={"engine": "formula"},
        created_at=created_at or datetime.now(timezone.utc),
    )
