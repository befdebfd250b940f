"""Job state, results and the error taxonomy shared by every Spark job."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobState(str, Enum):
    """Lifecycle of a sparklab job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class JobResult:
    """Final result of a job, as shown by the CLI."""

    job_name: str
    success: bool
    message: str
    elapsed_seconds: float
    metrics: dict[str, Any] = field(default_factory=dict)


class PipelineError(Exception):
    """Base exception for Spark job failures."""

    pass


class InputNotFoundError(PipelineError):
    """Raised when a job's input path is missing or empty."""

    def __init__(self, path: str):
        super().__init__(f"No input data at {path} (run 'sparklab generate' first)")
        self.path = path


class SchemaMismatchError(PipelineError):
    """Raised when input data lacks columns a job depends on."""

    def __init__(self, missing: list[str], source: str = "input"):
        super().__init__(f"{source} is missing expected columns: {', '.join(missing)}")
        self.missing = missing


class StreamingQueryError(PipelineError):
    """Raised when a streaming query terminates with an exception."""

    def __init__(self, query_name: str, cause: BaseException):
        super().__init__(f"Streaming query '{query_name}' failed: {cause}")
        self.query_name = query_name
        self.cause = cause


@contextmanager
def spark_errors(action: str) -> Iterator[None]:
    """Re-raise Spark's own exceptions (analysis, IO, runtime) as PipelineError.

    Usage::

        with spark_errors("Writing batch output 'enriched'"):
            df.write.mode("error").parquet(path)
    """
    from pyspark.errors import PySparkException

    try:
        yield
    except PySparkException as e:
        raise PipelineError(f"{action} failed: {e}") from e
