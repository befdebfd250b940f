"""Metrics module for sparklab."""

from .collector import JobMetrics, MetricsCollector, RunMetrics, StreamingJobMetrics
from .storage import MetricsStorage

__all__ = [
    "JobMetrics",
    "MetricsCollector",
    "MetricsStorage",
    "RunMetrics",
    "StreamingJobMetrics",
]
