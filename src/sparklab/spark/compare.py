"""Batch vs. streaming: run both paradigms on one input and diff the windows.

The batch side groups the bounded landing zone into event-time windows in
one pass. The streaming side discovers the same files one trigger at a
time, keeps window state under a watermark, and only emits a window once
the watermark has passed its end. Given the same rows both must agree on
every window the stream has finalized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sparklab.config.schema import TriggerType

from .common import (
    WINDOW_COLUMNS,
    WINDOW_SCHEMA,
    apply_enrichment,
    check_event_columns,
    read_events,
    windowed_event_counts,
)
from .job import PipelineError
from .streaming import StreamingJob

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession

    from sparklab.config import SparkLabConfig
    from sparklab.metrics import StreamingJobMetrics

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["window_start", "window_end", "interaction_type"]
REVENUE_TOLERANCE = 1e-6


@dataclass
class ComparisonResult:
    """Window-level diff between the batch and streaming outputs."""

    batch_rows: int
    stream_rows: int
    missing_in_stream: int
    missing_in_batch: int
    mismatched: int
    batch_enriched_rows: int = 0
    stream_enriched_rows: int = 0
    cutoff: datetime | None = None
    samples: list[dict[str, Any]] = field(default_factory=list)
    streaming: StreamingJobMetrics | None = None

    @property
    def matches(self) -> bool:
        return (
            self.missing_in_stream == 0
            and self.missing_in_batch == 0
            and self.mismatched == 0
            and self.batch_enriched_rows == self.stream_enriched_rows
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_rows": self.batch_rows,
            "stream_rows": self.stream_rows,
            "missing_in_stream": self.missing_in_stream,
            "missing_in_batch": self.missing_in_batch,
            "mismatched": self.mismatched,
            "batch_enriched_rows": self.batch_enriched_rows,
            "stream_enriched_rows": self.stream_enriched_rows,
            "cutoff": self.cutoff.isoformat() if self.cutoff else None,
            "matches": self.matches,
        }


def diff_windows(
    batch: DataFrame,
    stream: DataFrame,
    cutoff: datetime | None,
    tolerance: float = REVENUE_TOLERANCE,
    sample_size: int = 5,
) -> ComparisonResult:
    """Full outer join two window tables on their keys and classify each row.

    Both sides are limited to windows ending at or before *cutoff*; with
    no cutoff (the stream finalized nothing) every batch window counts as
    missing from the stream.
    """
    from pyspark.sql.functions import abs as abs_
    from pyspark.sql.functions import coalesce, col, lit

    batch = batch.select(*WINDOW_COLUMNS)
    stream = stream.select(*WINDOW_COLUMNS)
    if cutoff is not None:
        batch = batch.filter(col("window_end") <= lit(cutoff))
        stream = stream.filter(col("window_end") <= lit(cutoff))
    else:
        stream = stream.limit(0)

    b = batch.select(
        *KEY_COLUMNS,
        col("event_count").alias("b_count"),
        coalesce(col("revenue"), lit(0.0)).alias("b_revenue"),
        lit(True).alias("in_batch"),
    )
    s = stream.select(
        *KEY_COLUMNS,
        col("event_count").alias("s_count"),
        coalesce(col("revenue"), lit(0.0)).alias("s_revenue"),
        lit(True).alias("in_stream"),
    )
    joined = b.join(s, on=KEY_COLUMNS, how="full_outer").cache()
    try:
        missing_in_stream = joined.filter(col("in_stream").isNull()).count()
        missing_in_batch = joined.filter(col("in_batch").isNull()).count()
        both = joined.filter(col("in_batch").isNotNull() & col("in_stream").isNotNull())
        bad = both.filter(
            (col("b_count") != col("s_count"))
            | (abs_(col("b_revenue") - col("s_revenue")) > tolerance)
        )
        mismatched = bad.count()
        samples = [r.asDict() for r in bad.orderBy(*KEY_COLUMNS).limit(sample_size).collect()]
        batch_rows = joined.filter(col("in_batch").isNotNull()).count()
        stream_rows = joined.filter(col("in_stream").isNotNull()).count()
    finally:
        joined.unpersist()

    return ComparisonResult(
        batch_rows=batch_rows,
        stream_rows=stream_rows,
        missing_in_stream=missing_in_stream,
        missing_in_batch=missing_in_batch,
        mismatched=mismatched,
        cutoff=cutoff,
        samples=samples,
    )


def compare_paradigms(
    spark: SparkSession,
    config: SparkLabConfig,
    timeout_seconds: float | None = None,
) -> ComparisonResult:
    """Run batch windows and a fresh ``available_now`` stream, then diff them."""
    from pyspark.sql.functions import max as max_

    settings = config.streaming

    # Batch side: computed in memory, nothing written.
    source = (spark, config.get_events_path(), config.data.input_format, config.data.csv_header)
    check_event_columns(*source)
    enriched = apply_enrichment(read_events(*source)).cache()
    try:
        batch_enriched_rows = enriched.count()
        batch_windows = windowed_event_counts(
            enriched, settings.window_duration, settings.slide_duration
        ).cache()
        batch_windows.count()
    finally:
        enriched.unpersist()
    logger.info("Batch side: %s enriched rows", batch_enriched_rows)

    # Streaming side: empty checkpoint, available_now whatever streaming.trigger says.
    # Under Trigger.Once the watermark never passes a window, so nothing is emitted.
    job = StreamingJob(spark, config, trigger=TriggerType.AVAILABLE_NOW)
    job.reset_checkpoint()
    try:
        stream_metrics = job.run_available(timeout_seconds)
        if not stream_metrics.success:
            raise PipelineError(
                f"Streaming side of the comparison failed: {stream_metrics.error_message}"
            )
        logger.info(
            "Streaming side: %s rows in %s batches",
            stream_metrics.rows_processed,
            stream_metrics.batches,
        )

        windows_path = config.get_stream_output_path() / "windowed_counts"
        # An explicit schema lets an empty sink (no finalized windows) read back.
        stream_windows = spark.read.schema(WINDOW_SCHEMA).parquet(str(windows_path))
        cutoff = stream_windows.agg(max_("window_end").alias("cutoff")).first()["cutoff"]
        logger.info("Stream finalized windows up to %s", cutoff)

        result = diff_windows(batch_windows, stream_windows, cutoff)
    finally:
        batch_windows.unpersist()

    result.batch_enriched_rows = batch_enriched_rows
    result.stream_enriched_rows = stream_metrics.rows_processed
    result.streaming = stream_metrics

    if result.matches:
        logger.info("Paradigms agree on %s windows", result.batch_rows)
    else:
        logger.warning(
            "Paradigms disagree: %s missing in stream, %s missing in batch, %s mismatched",
            result.missing_in_stream,
            result.missing_in_batch,
            result.mismatched,
        )
    return result
