"""Metrics storage for sparklab.

Persists run metrics to local JSON files, one directory per run::

    sparklab-output/
      runs/
        run-20260204-210211-abc123/
          metrics.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from sparklab._constants import DEFAULT_OUTPUT_DIR

from .collector import RunMetrics

logger = logging.getLogger(__name__)

_DEFAULT_RUNS_DIR = str(Path(DEFAULT_OUTPUT_DIR) / "runs")


class MetricsStorage:
    """Stores run metrics as ``<runs_dir>/run-<id>/metrics.json``."""

    def __init__(self, metrics_dir: Path | str = _DEFAULT_RUNS_DIR):
        self.metrics_dir = Path(metrics_dir)
        self.metrics_dir.mkdir(parents=True, exist_ok=True)

    def run_dir(self, run_id: str) -> Path:
        """Return the per-run directory for *run_id*, creating it if needed."""
        d = self.metrics_dir / f"run-{run_id}"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_run(self, metrics: RunMetrics) -> Path:
        """Write *metrics* and return the file path."""
        filepath = self.run_dir(metrics.run_id) / "metrics.json"
        with open(filepath, "w") as f:
            json.dump(metrics.to_dict(), f, indent=2, default=str)

        logger.info("Saved metrics to %s", filepath)
        return filepath

    def load_run(self, run_id: str) -> dict[str, Any] | None:
        """Load the raw metrics dict for *run_id*, or None if absent."""
        path = self.metrics_dir / f"run-{run_id}" / "metrics.json"
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def list_runs(self) -> list[dict[str, Any]]:
        """Summaries of saved runs, most recent first."""
        runs = []
        for path in self.metrics_dir.glob("run-*/metrics.json"):
            try:
                with open(path) as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Skipping unreadable metrics file %s: %s", path, e)
                continue
            runs.append(
                {
                    "run_id": data.get("run_id", ""),
                    "config_name": data.get("config_name", ""),
                    "command": data.get("command", ""),
                    "start_time": data.get("start_time", ""),
                    "success": data.get("success", False),
                    "total_elapsed_seconds": data.get("total_elapsed_seconds", 0.0),
                    "path": str(path),
                }
            )
        runs.sort(key=lambda r: r["start_time"], reverse=True)
        return runs
