"""Comparator — diffs simulation runs against a baseline and explains the differences."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel

from citysim.core.evaluation import percentage_difference
from citysim.core.simulation_spec import (
    LOWER_IS_BETTER,
    PARAMETER_NAMES,
    RESULT_METRICS,
    ComparisonMetric,
    ComparisonSummary,
    MetricComparison,
    SimulationRun,
)

FINDING_THRESHOLD = 5.0  # percent change in a metric worth reporting
PARAMETER_IMPACT_THRESHOLD = 15.0
RECOMMENDATION_THRESHOLD = 10.0

NO_DIFFERENCES = "No significant differences found between the simulations."
MULTIPLE_DIFFERENCES = "Multiple significant differences found between simulations."
PARAMETER_HEADER = "Key parameter changes with significant impact:"
FALLBACK_RECOMMENDATIONS = [
    "No clear parameter adjustments identified for significant improvements.",
    "Consider running more simulations with wider parameter variations.",
]
VALIDATION_RECOMMENDATION = "Run additional simulations to validate these findings."
BALANCED_APPROACH = (
    "Note: Some parameters have conflicting effects on different metrics. "
    "Consider a balanced approach."
)


class ComparisonConfig(BaseModel):
    name: str = "Simulation Comparison"
    description: str = ""
    metrics: list[str] | None = None
    generate_recommendations: bool = True


def absolute_difference(baseline: float, value: float) -> float:
    return value - baseline


def _parameter_changes(baseline: SimulationRun, run: SimulationRun) -> dict[str, float]:
    return {
        name: percentage_difference(getattr(baseline.parameters, name), getattr(run.parameters, name))
        for name in PARAMETER_NAMES
    }


def generate_key_findings(
    metrics: dict[str, MetricComparison],
    baseline: SimulationRun,
    compared: list[SimulationRun],
) -> list[str]:
    findings: list[str] = []

    for metric_name, data in metrics.items():
        percentages = data.percentage_differences
        max_increase = max(percentages)
        max_decrease = min(percentages)
        increase_run = compared[percentages.index(max_increase)].name
        decrease_run = compared[percentages.index(max_decrease)].name

        if metric_name in LOWER_IS_BETTER:
            if max_decrease < -FINDING_THRESHOLD:
                findings.append(
                    f"Simulation {decrease_run} shows a significant "
                    f"{abs(max_decrease):.1f}% reduction in {metric_name}."
                )
            if max_increase > FINDING_THRESHOLD:
                findings.append(
                    f"Warning: Simulation {increase_run} increases {metric_name} by {max_increase:.1f}%."
                )
        else:
            if max_increase > FINDING_THRESHOLD:
                findings.append(
                    f"Simulation {increase_run} improves {metric_name} by {max_increase:.1f}%."
                )
            if max_decrease < -FINDING_THRESHOLD:
                findings.append(
                    f"Warning: Simulation {decrease_run} decreases {metric_name} "
                    f"by {abs(max_decrease):.1f}%."
                )

    if not findings:
        findings.append(NO_DIFFERENCES)
    elif len(findings) > 4:
        findings.insert(0, MULTIPLE_DIFFERENCES)

    changes_by_run = [(run.name, _parameter_changes(baseline, run)) for run in compared]
    impacts = []
    for param in PARAMETER_NAMES:
        changes = [diffs[param] for _, diffs in changes_by_run]
        largest = max(abs(c) for c in changes)
        if largest > PARAMETER_IMPACT_THRESHOLD:
            idx = next(i for i, c in enumerate(changes) if abs(c) == largest)
            direction = "increase" if changes[idx] > 0 else "decrease"
            impacts.append(f"- {changes_by_run[idx][0]}'s {largest:.1f}% {direction} in {param}")

    if impacts:
        findings.append(PARAMETER_HEADER)
        findings.extend(impacts)

    return findings


def generate_recommendations(
    metrics: dict[str, MetricComparison],
    baseline: SimulationRun,
    compared: list[SimulationRun],
) -> list[str]:
    # parameter -> (direction, metrics it helped)
    effective: dict[str, tuple[str, list[str]]] = {}

    for metric_name, data in metrics.items():
        percentages = data.percentage_differences
        target = min(percentages) if metric_name in LOWER_IS_BETTER else max(percentages)
        best_run = compared[percentages.index(target)]

        for param, change in _parameter_changes(baseline, best_run).items():
            if abs(change) < RECOMMENDATION_THRESHOLD:
                continue
            direction = "increase" if change > 0 else "decrease"
            if param not in effective:
                effective[param] = (direction, [metric_name])
            elif effective[param][0] == direction:
                effective[param][1].append(metric_name)

    recommendations = []
    for param, (direction, helped) in effective.items():
        if len(helped) > 1:
            verb = "increasing" if direction == "increase" else "decreasing"
            recommendations.append(f"Consider {verb} {param} to improve {' and '.join(helped)}.")

    if not recommendations:
        recommendations.extend(FALLBACK_RECOMMENDATIONS)
    elif len(recommendations) == 1:
        recommendations.append(VALIDATION_RECOMMENDATION)

    conflicting = any(
        param != other
        and direction != other_direction
        and set(helped) & set(other_helped)
        for param, (direction, helped) in effective.items()
        for other, (other_direction, other_helped) in effective.items()
    )
    if conflicting:
        recommendations.append(BALANCED_APPROACH)

    return recommendations


def compare_simulations(
    baseline: SimulationRun,
    compared: list[SimulationRun],
    config: ComparisonConfig | None = None,
) -> ComparisonMetric:
    """Diff each requested metric against the baseline and summarize the outcome."""
    config = config or ComparisonConfig()
    if not compared:
        raise ValueError("At least one simulation is required for comparison")

    metric_names = list(RESULT_METRICS) if config.metrics is None else config.metrics
    unknown = [m for m in metric_names if m not in RESULT_METRICS]
    if unknown:
        raise ValueError(f"Unknown metrics: {', '.join(unknown)}")

    metrics: dict[str, MetricComparison] = {}
    for metric_name in metric_names:
        baseline_value = getattr(baseline.results, metric_name)
        values = [getattr(run.results, metric_name) for run in compared]
        metrics[metric_name] = MetricComparison(
            baseline_value=baseline_value,
            compared_values=values,
            percentage_differences=[percentage_difference(baseline_value, v) for v in values],
            absolute_differences=[absolute_difference(baseline_value, v) for v in values],
        )

    findings = generate_key_findings(metrics, baseline, compared)
    recommendations = (
        generate_recommendations(metrics, baseline, compared)
        if config.generate_recommendations
        else []
    )

    return ComparisonMetric(
        project_id=baseline.project_id,
        name=config.name,
        description=config.description
        or f"Comparison between {baseline.name} and {len(compared)} other simulation(s)",
        baseline_run_id=baseline.id,
        compared_run_ids=[run.id for run in compared],
        metrics=metrics,
        summary=ComparisonSummary(key_findings=findings, recommendations=recommendations),
    )


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _created_key(run: SimulationRun) -> datetime:
    if run.created_at is None:
        return _EPOCH
    if run.created_at.tzinfo is None:
        return run.created_at.replace(tzinfo=timezone.utc)
    return run.created_at


def compare_all_simulations(runs: list[SimulationRun]) -> ComparisonMetric | None:
    """Compare every run against the most recent one.

    Returns None when fewer than two runs are supplied.
    """
    if len(runs) < 2:
        return None

    ordered = sorted(runs, key=_created_key, reverse=True)
    return compare_simulations(
        ordered[0],
        ordered[1:],
        ComparisonConfig(
            name="Comprehensive Simulation Comparison",
            description="Comparing all simulations for this project",
            generate_recommendations=True,
        ),
    )
