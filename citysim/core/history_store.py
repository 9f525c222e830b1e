"""History Store — JSON files for runs, optimization results and comparisons."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from citysim.core.simulation_spec import ComparisonMetric, OptimizationResult, SimulationRun

RecordT = TypeVar("RecordT", SimulationRun, OptimizationResult, ComparisonMetric)

_COLLECTIONS = {
    SimulationRun: "simulation_history",
    OptimizationResult: "optimization_results",
    ComparisonMetric: "comparison_metrics",
}

_RECORD_ID = re.compile(r"[A-Za-z0-9_-]+")


class StorageError(Exception):
    """Raised when a record cannot be written to or read from the store."""


class HistoryStore:
    """One directory per collection, one JSON file per record."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _collection_dir(self, model: type[BaseModel]) -> Path:
        return self.root / _COLLECTIONS[model]

    def _record_path(self, model: type[BaseModel], record_id: str) -> Path:
        if not _RECORD_ID.fullmatch(record_id):
            raise ValueError(f"Invalid record id: {record_id!r}")
        return self._collection_dir(model) / f"{record_id}.json"

    def _save(self, record: RecordT) -> RecordT:
        updates = {}
        if not record.id:
            updates["id"] = uuid.uuid4().hex
        if record.created_at is None:
            updates["created_at"] = datetime.now(timezone.utc)
        saved = record.model_copy(update=updates)

        path = self._record_path(type(record), saved.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(saved.model_dump_json(indent=2))
        except OSError as e:
            raise StorageError(f"Failed to save {_COLLECTIONS[type(record)]} record {saved.id}: {e}") from e
        return saved

    def _get(self, model: type[RecordT], record_id: str) -> RecordT | None:
        path = self._record_path(model, record_id)
        if not path.exists():
            return None
        return self._read(model, path)

    def _read(self, model: type[RecordT], path: Path) -> RecordT:
        try:
            return model.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _list(self, model: type[RecordT], project_id: str | None) -> list[RecordT]:
        directory = self._collection_dir(model)
        if not directory.exists():
            return []
        records = [self._read(model, path) for path in sorted(directory.glob("*.json"))]
        if project_id is not None:
            records = [r for r in records if r.project_id == project_id]
        records.sort(key=lambda r: r.created_at.timestamp() if r.created_at else 0.0, reverse=True)
        return records

    def save_run(self, run: SimulationRun) -> SimulationRun:
        return self._save(run)

    def get_run(self, run_id: str) -> SimulationRun | None:
        return self._get(SimulationRun, run_id)

    def list_runs(self, project_id: str | None = None) -> list[SimulationRun]:
        return self._list(SimulationRun, project_id)

    def save_optimization(self, result: OptimizationResult) -> OptimizationResult:
        return self._save(result)

    def get_optimization(self, result_id: str) -> OptimizationResult | None:
        return self._get(OptimizationResult, result_id)

    def list_optimizations(self, project_id: str | None = None) -> list[OptimizationResult]:
        return self._list(OptimizationResult, project_id)

    def save_comparison(self, comparison: ComparisonMetric) -> ComparisonMetric:
        return self._save(comparison)

    def get_comparison(self, comparison_id: str) -> ComparisonMetric | None:
        return self._get(ComparisonMetric, comparison_id)

    def list_comparisons(self, project_id: str | None = None) -> list[ComparisonMetric]:
        return self._list(ComparisonMetric, project_id)
