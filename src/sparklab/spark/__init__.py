"""Spark module for sparklab.

Session construction, the batch and streaming jobs over the shared
landing zone, MLlib training, graph analytics and spark-submit.
"""

from .batch import BatchJob
from .compare import ComparisonResult, compare_paradigms
from .graph import GraphAnalyzer, run_graph_job
from .job import (
    InputNotFoundError,
    JobResult,
    JobState,
    PipelineError,
    SchemaMismatchError,
    StreamingQueryError,
)
from .mllib import ChurnModelTrainer, TrainingResult
from .monitor import QueryProgress, StreamingQueryMonitor
from .session import SparkSessionError, build_spark_session, spark_session
from .streaming import StreamingJob
from .submit import SubmitError, build_submit_command, run_submit

__all__ = [
    "BatchJob",
    "ChurnModelTrainer",
    "ComparisonResult",
    "GraphAnalyzer",
    "InputNotFoundError",
    "JobResult",
    "JobState",
    "PipelineError",
    "QueryProgress",
    "SchemaMismatchError",
    "SparkSessionError",
    "StreamingJob",
    "StreamingQueryError",
    "StreamingQueryMonitor",
    "SubmitError",
    "TrainingResult",
    "build_spark_session",
    "build_submit_command",
    "compare_paradigms",
    "run_graph_job",
    "run_submit",
    "spark_session",
]
