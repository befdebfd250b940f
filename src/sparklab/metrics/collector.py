"""Metrics collection for sparklab runs."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


def _iso(d: dict[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        if isinstance(d.get(key), datetime):
            d[key] = d[key].isoformat()
    return d


@dataclass
class JobMetrics:
    """Metrics for a single bounded Spark job (batch, train, graph)."""

    job_name: str
    job_type: str  # batch, train, graph, datagen
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0
    success: bool = False
    error_message: str | None = None

    input_rows: int = 0
    output_rows: int = 0
    throughput_rows_per_second: float = 0.0

    # Named output locations and job-specific figures (AUC, component count, ...)
    outputs: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def finish(self, success: bool = True, error_message: str | None = None) -> JobMetrics:
        """Stamp end time and derive elapsed time and throughput."""
        self.end_time = datetime.now()
        if self.start_time:
            self.elapsed_seconds = (self.end_time - self.start_time).total_seconds()
        if self.elapsed_seconds > 0:
            self.throughput_rows_per_second = round(self.input_rows / self.elapsed_seconds, 2)
        self.success = success
        self.error_message = error_message
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return _iso(asdict(self), "start_time", "end_time")


@dataclass
class StreamingJobMetrics:
    """Metrics for a structured streaming run.

    ``batches`` counts every micro-batch the sink saw, ``empty_batches``
    those with no rows. ``rows_processed`` is summed from the sink, so a
    restart that resumes from a checkpoint only counts new rows.
    """

    job_name: str
    trigger: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0
    success: bool = False
    error_message: str | None = None

    batches: int = 0
    empty_batches: int = 0
    rows_processed: int = 0
    progress_events: int = 0
    max_batch_duration_ms: int = 0
    checkpoint_location: str = ""
    outputs: dict[str, str] = field(default_factory=dict)

    def record_batch(self, rows: int) -> None:
        self.batches += 1
        if rows == 0:
            self.empty_batches += 1
        self.rows_processed += rows

    def finish(self, success: bool = True, error_message: str | None = None) -> StreamingJobMetrics:
        self.end_time = datetime.now()
        if self.start_time:
            self.elapsed_seconds = (self.end_time - self.start_time).total_seconds()
        self.success = success
        self.error_message = error_message
        return self

    def to_dict(self) -> dict[str, Any]:
        return _iso(asdict(self), "start_time", "end_time")


@dataclass
class RunMetrics:
    """All job metrics produced by one CLI invocation."""

    run_id: str
    config_name: str
    command: str
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    success: bool = False
    jobs: list[JobMetrics] = field(default_factory=list)
    streaming: list[StreamingJobMetrics] = field(default_factory=list)

    @property
    def total_elapsed_seconds(self) -> float:
        return sum(j.elapsed_seconds for j in self.jobs) + sum(
            s.elapsed_seconds for s in self.streaming
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "config_name": self.config_name,
            "command": self.command,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "success": self.success,
            "total_elapsed_seconds": self.total_elapsed_seconds,
            "jobs": [j.to_dict() for j in self.jobs],
            "streaming": [s.to_dict() for s in self.streaming],
        }


def _new_run_id() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:6]


class MetricsCollector:
    """Accumulates job metrics for the current run."""

    def __init__(self):
        self.current_run: RunMetrics | None = None

    def start_run(self, config_name: str, command: str, run_id: str | None = None) -> RunMetrics:
        self.current_run = RunMetrics(
            run_id=run_id or _new_run_id(),
            config_name=config_name,
            command=command,
        )
        logger.debug("Started metrics run %s", self.current_run.run_id)
        return self.current_run

    def record_job(self, metrics: JobMetrics) -> None:
        if self.current_run is None:
            logger.warning("No active run, dropping job metrics for %s", metrics.job_name)
            return
        self.current_run.jobs.append(metrics)

    def record_streaming(self, metrics: StreamingJobMetrics) -> None:
        if self.current_run is None:
            logger.warning("No active run, dropping streaming metrics for %s", metrics.job_name)
            return
        self.current_run.streaming.append(metrics)

    def end_run(self, success: bool = True) -> RunMetrics | None:
        """Close the current run and return it."""
        run = self.current_run
        if run is None:
            return None
        run.end_time = datetime.now()
        run.success = (
            success
            and all(j.success for j in run.jobs)
            and all(s.success for s in run.streaming)
        )
        self.current_run = None
        return run

    def get_summary(self) -> dict[str, Any]:
        if self.current_run is None:
            return {}
        run = self.current_run
        return {
            "run_id": run.run_id,
            "jobs": len(run.jobs),
            "streaming_jobs": len(run.streaming),
            "input_rows": sum(j.input_rows for j in run.jobs),
            "streamed_rows": sum(s.rows_processed for s in run.streaming),
            "elapsed_seconds": round(run.total_elapsed_seconds, 2),
        }
