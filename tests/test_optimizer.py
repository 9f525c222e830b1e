"""Tests for optimizer — genetic operators and the search loop."""

import numpy as np
import pytest
from pydantic import ValidationError

from citysim.core.evaluation import build_run, evaluate
from citysim.core.optimizer import (
    DEFAULT_PARAMETER_RANGES,
    OptimizationConfig,
    confidence_score,
    crossover_parameters,
    improvement_percentage,
    mutate_parameters,
    on_grid,
    optimize_parameters,
    random_parameters,
    resolve_ranges,
    run_comprehensive_optimization,
    snap_to_grid,
)
from citysim.core.simulation_spec import (
    PARAMETER_NAMES,
    TARGET_METRICS,
    ParameterRange,
    SimulationParameters,
)


def _baseline(roads=50, population=50, housing=50, public_transport=50):
    params = SimulationParameters(
        roads=roads, population=population, housing=housing, public_transport=public_transport
    )
    return build_run("Baseline", params, run_id="base-1", project_id="proj")


def _on_grid(params, ranges):
    for name in PARAMETER_NAMES:
        r = ranges[name]
        value = getattr(params, name)
        assert r.min <= value <= r.max, name
        assert (value - r.min) % r.step == pytest.approx(0), name


class TestOperators:
    def test_random_parameters_on_grid(self):
        rng = np.random.default_rng(0)
        for _ in range(50):
            _on_grid(random_parameters(DEFAULT_PARAMETER_RANGES, rng), DEFAULT_PARAMETER_RANGES)

    def test_crossover_takes_values_from_parents(self):
        rng = np.random.default_rng(1)
        a = SimulationParameters(roads=10, population=10, housing=10, public_transport=10)
        b = SimulationParameters(roads=90, population=90, housing=90, public_transport=90)
        for _ in range(20):
            child = crossover_parameters(a, b, rng)
            for name in PARAMETER_NAMES:
                assert getattr(child, name) in (10, 90)

    def test_zero_mutation_rate_keeps_parameters(self):
        rng = np.random.default_rng(2)
        params = _baseline().parameters
        assert mutate_parameters(params, 0.0, DEFAULT_PARAMETER_RANGES, rng) == params

    def test_full_mutation_stays_on_grid(self):
        rng = np.random.default_rng(3)
        params = SimulationParameters(roads=7, population=7, housing=7, public_transport=7)
        mutated = mutate_parameters(params, 1.0, DEFAULT_PARAMETER_RANGES, rng)
        _on_grid(mutated, DEFAULT_PARAMETER_RANGES)


class TestGrid:
    def test_on_grid(self):
        assert on_grid(_baseline().parameters, DEFAULT_PARAMETER_RANGES)
        assert not on_grid(_baseline(roads=52).parameters, DEFAULT_PARAMETER_RANGES)
        assert not on_grid(_baseline(population=0).parameters, DEFAULT_PARAMETER_RANGES)

    def test_snap_to_grid_clamps_and_rounds(self):
        params = SimulationParameters(roads=52, population=0, housing=130, public_transport=58)
        snapped = snap_to_grid(params, DEFAULT_PARAMETER_RANGES)
        assert (snapped.roads, snapped.population, snapped.housing, snapped.public_transport) == (50, 10, 100, 60)


class TestScoring:
    def test_improvement_percentage(self):
        assert improvement_percentage(60, 50) == pytest.approx(20)

    def test_improvement_zero_baseline_sentinel(self):
        assert improvement_percentage(0, 0) == 0
        assert improvement_percentage(12.5, 0) == 100

    def test_confidence_share_near_best(self):
        assert confidence_score([10, 10, 0, 0], 10) == 0.5

    def test_confidence_empty(self):
        assert confidence_score([], 10) == 0.0


class TestConfig:
    def test_defaults(self):
        config = OptimizationConfig()
        assert (config.iterations, config.population_size) == (50, 20)
        assert (config.mutation_rate, config.elitism_rate) == (0.1, 0.2)

    def test_rejects_empty_population(self):
        with pytest.raises(ValidationError):
            OptimizationConfig(population_size=0)

    def test_rejects_rate_above_one(self):
        with pytest.raises(ValidationError):
            OptimizationConfig(mutation_rate=1.5)

    def test_resolve_ranges_rejects_unknown_parameter(self):
        with pytest.raises(ValueError, match="Unknown parameter"):
            resolve_ranges({"parks": ParameterRange(min=0, max=10, step=1)})


class TestOptimizeParameters:
    def test_balanced_end_to_end(self):
        result = optimize_parameters(
            _baseline(), "balanced", OptimizationConfig(iterations=10, population_size=10, seed=7)
        )
        assert result.target_metric == "balanced"
        assert result.improvement_percentage >= 0
        _on_grid(result.optimal_parameters, DEFAULT_PARAMETER_RANGES)
        assert result.simulation_run_id == "base-1"
        assert result.project_id == "proj"

    @pytest.mark.parametrize("target", TARGET_METRICS)
    def test_never_worse_than_baseline(self, target):
        baseline = _baseline()
        result = optimize_parameters(baseline, target, OptimizationConfig(iterations=15, seed=11))
        best = evaluate(result.optimal_parameters, target).fitness_score
        assert best >= evaluate(baseline.parameters, target).fitness_score
        assert result.predicted_results == evaluate(result.optimal_parameters, target).results

    def test_overridden_ranges_respected(self):
        ranges = {"roads": ParameterRange(min=20, max=60, step=10)}
        result = optimize_parameters(
            _baseline(roads=40), "congestion",
            OptimizationConfig(iterations=20, seed=5), parameter_ranges=ranges,
        )
        _on_grid(result.optimal_parameters, resolve_ranges(ranges))

    def test_same_seed_same_answer(self):
        config = OptimizationConfig(iterations=10, seed=42)
        first = optimize_parameters(_baseline(), "emissions", config)
        second = optimize_parameters(_baseline(), "emissions", config)
        assert first.optimal_parameters == second.optimal_parameters
        assert first.improvement_percentage == second.improvement_percentage

    def test_zero_iterations_returns_baseline(self):
        baseline = _baseline()
        result = optimize_parameters(baseline, "satisfaction", OptimizationConfig(iterations=0, seed=1))
        assert result.optimal_parameters == baseline.parameters
        assert result.improvement_percentage == 0

    def test_metadata_records_run(self):
        config = OptimizationConfig(iterations=5, population_size=8, mutation_rate=0.3, elitism_rate=0.25, seed=3)
        result = optimize_parameters(_baseline(), "transit_usage", config)
        meta = result.metadata
        assert meta.algorithm == "genetic"
        assert (meta.iterations, meta.population_size) == (5, 8)
        assert (meta.mutation_rate, meta.elitism_rate, meta.seed) == (0.3, 0.25, 3)
        assert meta.execution_time_ms >= 0
        assert 0 <= result.confidence_score <= 1
        assert result.name == "Transit usage Optimization"

    def test_off_grid_optimal_baseline_reported_on_grid(self):
        baseline = _baseline(roads=100, population=0, housing=100, public_transport=100)
        result = optimize_parameters(baseline, "congestion", OptimizationConfig(iterations=20, seed=1))
        _on_grid(result.optimal_parameters, DEFAULT_PARAMETER_RANGES)
        assert evaluate(result.optimal_parameters, "congestion").fitness_score == 100
        assert result.improvement_percentage == 0

    def test_off_grid_baseline_with_zero_iterations_is_snapped(self):
        baseline = _baseline(roads=100, population=0, housing=100, public_transport=100)
        result = optimize_parameters(baseline, "congestion", OptimizationConfig(iterations=0, seed=1))
        assert result.optimal_parameters.population == 10

    def test_single_individual_population(self):
        result = optimize_parameters(
            _baseline(), "balanced", OptimizationConfig(iterations=5, population_size=1, seed=9)
        )
        assert result.improvement_percentage >= 0

    def test_unknown_target_fails_fast(self):
        with pytest.raises(ValueError, match="Unknown target metric"):
            optimize_parameters(_baseline(), "happiness")


def test_comprehensive_covers_every_target():
    results = run_comprehensive_optimization(_baseline(), OptimizationConfig(iterations=3, seed=0))
    assert [r.target_metric for r in results] == list(TARGET_METRICS)
