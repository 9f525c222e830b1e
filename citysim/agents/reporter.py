"""Reporter — markdown and PDF exports of optimization and comparison results."""

from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF

from citysim.core.simulation_spec import (
    PARAMETER_NAMES,
    RESULT_METRICS,
    ComparisonMetric,
    OptimizationResult,
)

_PAGE_MARGIN = 54
_FONT_SIZE = 10
_LINE_HEIGHT = 14


def optimization_markdown(result: OptimizationResult) -> str:
    meta = result.metadata
    lines = [
        f"# {result.name}",
        f"**Target metric:** {result.target_metric}",
        f"**Improvement:** {result.improvement_percentage:.2f}%",
        f"**Confidence:** {result.confidence_score:.2f}",
        f"**Algorithm:** {meta.algorithm} ({meta.iterations} iterations, population {meta.population_size}, "
        f"mutation {meta.mutation_rate:g}, elitism {meta.elitism_rate:g}, {meta.execution_time_ms:.1f} ms)",
        "",
        "## Optimal Parameters",
        "",
        "| Parameter | Value |",
        "|-----------|-------|",
    ]
    for name in PARAMETER_NAMES:
        lines.append(f"| {name} | {getattr(result.optimal_parameters, name):g} |")

    lines.extend(["", "## Predicted Results", "", "| Metric | Value |", "|--------|-------|"])
    for name in RESULT_METRICS:
        lines.append(f"| {name} | {getattr(result.predicted_results, name):.2f} |")

    return "\n".join(lines) + "\n"


def comparison_markdown(comparison: ComparisonMetric) -> str:
    lines = [
        f"# {comparison.name}",
        comparison.description,
        f"**Baseline:** {comparison.baseline_run_id or '(unsaved)'}",
        f"**Compared:** {', '.join(i or '(unsaved)' for i in comparison.compared_run_ids)}",
        "",
        "## Metrics",
        "",
        "| Metric | Baseline | Compared | Change | Change % |",
        "|--------|----------|----------|--------|----------|",
    ]
    for name, data in comparison.metrics.items():
        for value, diff, pct in zip(data.compared_values, data.absolute_differences, data.percentage_differences):
            lines.append(f"| {name} | {data.baseline_value:.2f} | {value:.2f} | {diff:+.2f} | {pct:+.1f}% |")

    lines.extend(["", "## Key Findings", ""])
    lines.extend(f"- {f}" if not f.startswith("- ") else f"  {f}" for f in comparison.summary.key_findings)

    if comparison.summary.recommendations:
        lines.extend(["", "## Recommendations", ""])
        lines.extend(f"- {r}" for r in comparison.summary.recommendations)

    return "\n".join(lines) + "\n"


def write_optimization_report(result: OptimizationResult, output_dir: Path) -> Path:
    """Write optimization_report.md to the output directory."""
    path = Path(output_dir) / "optimization_report.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(optimization_markdown(result))
    return path


def write_comparison_report(comparison: ComparisonMetric, output_dir: Path) -> Path:
    """Write comparison_report.md to the output directory."""
    path = Path(output_dir) / "comparison_report.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(comparison_markdown(comparison))
    return path


def export_pdf(markdown_text: str, path: Path) -> Path:
    """Render a markdown report as plain text lines into a PDF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    doc = fitz.open()
    page = None
    y = 0.0
    for line in markdown_text.splitlines():
        if page is None or y > page.rect.height - _PAGE_MARGIN:
            page = doc.new_page()
            y = _PAGE_MARGIN
        text = line.lstrip("#").strip().replace("**", "")
        size = _FONT_SIZE + 4 if line.startswith("#") else _FONT_SIZE
        page.insert_text((_PAGE_MARGIN, y), text, fontsize=size)
        y += _LINE_HEIGHT + (size - _FONT_SIZE)

    if page is None:
        doc.new_page()
    doc.save(str(path))
    doc.close()
    return path
