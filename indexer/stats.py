"""
Run statistics for the page indexer.

Collects configuration, inputs, outputs, per-file results and errors of one
ingestion run and saves them as JSON under a stats directory: the latest run
per stage in ``<stage>.json`` and every run in ``history/<stage>_<run_id>.json``.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


def ensure_stats_dir(stats_dir: Path) -> Path:
    """Ensure the stats directory exists and return its path."""
    stats_path = Path(stats_dir)
    stats_path.mkdir(parents=True, exist_ok=True)
    return stats_path


def get_run_id() -> str:
    """Generate a unique run ID based on timestamp."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


class PipelineStats:
    """
    Stats collector for one pipeline stage.

    Usage:
        stats = PipelineStats("ingest", stats_dir)
        stats.set_inputs(corpus_root="data", total_items=500)
        stats.set_nested("performance", "docs_per_second", 1200.5)
        stats.finalize("completed").save()
    """

    def __init__(
        self,
        stage_name: str,
        stats_dir: Path,
        run_id: Optional[str] = None
    ):
        self.stage_name = stage_name
        self.stats_dir = ensure_stats_dir(stats_dir)
        self.run_id = run_id or get_run_id()
        self.start_time = datetime.now()
        self.data: Dict[str, Any] = {
            "stage": stage_name,
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": None,
            "duration_seconds": None,
            "status": "running",
            "config": {},
            "inputs": {},
            "outputs": {},
            "files": [],
            "performance": {},
            "errors": []
        }

    def set_nested(self, category: str, key: str, value: Any) -> "PipelineStats":
        """Set a nested stat value under a category."""
        if category not in self.data:
            self.data[category] = {}
        self.data[category][key] = value
        return self

    def set_config(self, **kwargs) -> "PipelineStats":
        self.data["config"].update(kwargs)
        return self

    def set_inputs(self, **kwargs) -> "PipelineStats":
        self.data["inputs"].update(kwargs)
        return self

    def set_outputs(self, **kwargs) -> "PipelineStats":
        self.data["outputs"].update(kwargs)
        return self

    def add_file(self, file_stats: Dict[str, Any]) -> "PipelineStats":
        self.data["files"].append(file_stats)
        return self

    def add_error(self, error: str, context: Optional[str] = None) -> "PipelineStats":
        self.data["errors"].append({
            "timestamp": datetime.now().isoformat(),
            "error": error,
            "context": context
        })
        return self

    def finalize(self, status: str = "completed") -> "PipelineStats":
        """Finalize the stats with end time and duration."""
        end_time = datetime.now()
        self.data["end_time"] = end_time.isoformat()
        self.data["duration_seconds"] = round(
            (end_time - self.start_time).total_seconds(), 2
        )
        self.data["status"] = status
        return self

    def get_stats_path(self) -> Path:
        return self.stats_dir / f"{self.stage_name}.json"

    def get_history_path(self) -> Path:
        history_dir = self.stats_dir / "history"
        history_dir.mkdir(parents=True, exist_ok=True)
        return history_dir / f"{self.stage_name}_{self.run_id}.json"

    def save(self) -> Path:
        """Save the stats (latest + history) and return the latest path."""
        stats_path = self.get_stats_path()
        with open(stats_path, 'w', encoding='utf-8') as f:
            json.dump(self.data, f, indent=2, ensure_ascii=False)

        history_path = self.get_history_path()
        with open(history_path, 'w', encoding='utf-8') as f:
            json.dump(self.data, f, indent=2, ensure_ascii=False)

        return stats_path

