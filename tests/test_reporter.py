"""Tests for reporter — markdown and PDF exports."""

import fitz

from citysim.agents.reporter import (
    comparison_markdown,
    export_pdf,
    optimization_markdown,
    write_comparison_report,
    write_optimization_report,
)
from citysim.core.comparator import compare_simulations
from citysim.core.evaluation import build_run
from citysim.core.optimizer import OptimizationConfig, optimize_parameters
from citysim.core.simulation_spec import SimulationParameters


def _run(name, roads=50):
    params = SimulationParameters(roads=roads, population=50, housing=50, public_transport=50)
    return build_run(name, params, run_id=f"id-{name}")


def _optimization():
    return optimize_parameters(_run("Base"), "balanced", OptimizationConfig(iterations=3, seed=2))


def _comparison():
    return compare_simulations(_run("Base"), [_run("Roads", roads=80)])


class TestMarkdown:
    def test_optimization_sections(self):
        md = optimization_markdown(_optimization())
        assert md.startswith("# Balanced Optimization")
        assert "## Optimal Parameters" in md
        assert "| public_transport |" in md
        assert "## Predicted Results" in md

    def test_comparison_sections(self):
        md = comparison_markdown(_comparison())
        assert "| congestion | 70.00 |" in md
        assert "## Key Findings" in md
        assert "Roads's 60.0% increase in roads" in md
        assert "## Recommendations" in md


class TestWriteReports:
    def test_writes_optimization_file(self, tmp_path):
        path = write_optimization_report(_optimization(), tmp_path / "out")
        assert path.name == "optimization_report.md"
        assert "Balanced Optimization" in path.read_text()

    def test_writes_comparison_file(self, tmp_path):
        path = write_comparison_report(_comparison(), tmp_path)
        assert "Key Findings" in path.read_text()


class TestExportPdf:
    def test_pdf_contains_report_text(self, tmp_path):
        path = export_pdf(comparison_markdown(_comparison()), tmp_path / "report.pdf")
        doc = fitz.open(str(path))
        text = "".join(page.get_text() for page in doc)
        doc.close()
        assert "Key Findings" in text

    def test_long_report_spans_pages(self, tmp_path):
        markdown = "\n".join(f"line {i}" for i in range(200))
        doc = fitz.open(str(export_pdf(markdown, tmp_path / "long.pdf")))
        assert doc.page_count > 1
        doc.close()

    def test_empty_report_still_valid(self, tmp_path):
        doc = fitz.open(str(export_pdf("", tmp_path / "empty.pdf")))
        assert doc.page_count == 1
        doc.close()
