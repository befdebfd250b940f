"""Streaming job -- the landing zone as an unbounded file source.

Where the batch job reads every file once, this job lets Structured
Streaming discover files incrementally (``maxFilesPerTrigger`` per
micro-batch) and runs two queries over the same enriched stream:

- ``enriched``: ``foreachBatch`` writes each micro-batch under
  ``enriched/batch_id=<n>``. Overwriting that one directory makes a
  replayed batch idempotent after a restart.
- ``windowed_counts``: event-time windows with a watermark, emitted in
  append mode to a Parquet file sink once the watermark closes them.

Both queries keep offsets and commits in their own checkpoint directory;
restarting with the same checkpoint resumes where the last committed
batch ended instead of re-reading processed files.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from datetime import datetime
from typing import TYPE_CHECKING

from sparklab.config.schema import TriggerType
from sparklab.metrics import StreamingJobMetrics

from .common import (
    apply_enrichment,
    check_event_columns,
    read_events_stream,
    windowed_event_counts,
)
from .job import JobState, StreamingQueryError
from .monitor import QueryProgress, StreamingQueryMonitor, summarize

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession
    from pyspark.sql.streaming import DataStreamWriter, StreamingQuery

    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)

ENRICHED_QUERY = "sparklab_enriched"
WINDOW_QUERY = "sparklab_windowed_counts"
IDLE_POLL_SECONDS = 1.0


class StreamingJob:
    """Builds, starts and supervises the streaming queries for a config."""

    def __init__(
        self,
        spark: SparkSession,
        config: SparkLabConfig,
        trigger: TriggerType | None = None,
    ):
        self.spark = spark
        self.config = config
        self.settings = config.streaming
        self.trigger = trigger or self.settings.trigger
        self.output_path = config.get_stream_output_path()
        self.checkpoint_path = config.get_checkpoint_path()
        self.state = JobState.PENDING
        self.queries: list[StreamingQuery] = []
        self.metrics = StreamingJobMetrics(
            job_name="stream",
            trigger=self.trigger.value,
            checkpoint_location=str(self.checkpoint_path),
        )
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Query construction
    # ------------------------------------------------------------------

    def source(self) -> DataFrame:
        path = self.config.get_events_path()
        fmt = self.config.data.input_format
        check_event_columns(self.spark, path, fmt, self.config.data.csv_header)
        return read_events_stream(
            self.spark,
            path,
            fmt,
            self.config.data.csv_header,
            self.settings.max_files_per_trigger,
        )

    def write_batch(self, batch_df: DataFrame, batch_id: int) -> None:
        """foreachBatch sink for enriched rows."""
        batch_start = time.time()
        count = batch_df.count()
        if count == 0:
            logger.debug("Batch %s: empty, skipping", batch_id)
            with self._lock:
                self.metrics.record_batch(0)
            return

        target = self.output_path / "enriched" / f"batch_id={batch_id}"
        batch_df.write.mode("overwrite").parquet(str(target))

        with self._lock:
            self.metrics.record_batch(count)
        logger.info(
            "Batch %s: committed %s rows in %.1fs", batch_id, count, time.time() - batch_start
        )

    def _with_trigger(self, writer: DataStreamWriter) -> DataStreamWriter:
        if self.trigger == TriggerType.PROCESSING_TIME:
            return writer.trigger(processingTime=self.settings.trigger_interval)
        if self.trigger == TriggerType.ONCE:
            return writer.trigger(once=True)
        return writer.trigger(availableNow=True)

    def build_query(self) -> list[DataStreamWriter]:
        """Wire source -> enrichment -> both sinks, without starting anything."""
        enriched = apply_enrichment(self.source())

        enriched_writer = (
            enriched.writeStream.queryName(ENRICHED_QUERY)
            .foreachBatch(self.write_batch)
            .option("checkpointLocation", str(self.checkpoint_path / "enriched"))
        )

        windows = windowed_event_counts(
            enriched.withWatermark("event_timestamp", self.settings.watermark_delay),
            self.settings.window_duration,
            self.settings.slide_duration,
        )
        windows_writer = (
            windows.writeStream.queryName(WINDOW_QUERY)
            .outputMode("append")
            .format("parquet")
            .option("path", str(self.output_path / "windowed_counts"))
            .option("checkpointLocation", str(self.checkpoint_path / "windowed_counts"))
        )

        return [self._with_trigger(enriched_writer), self._with_trigger(windows_writer)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> list[StreamingQuery]:
        """Start both queries and return them."""
        if self.queries and any(q.isActive for q in self.queries):
            raise RuntimeError("Streaming job already running")

        self.metrics.start_time = datetime.now()
        writers = self.build_query()
        self.queries = [w.start() for w in writers]
        self.state = JobState.RUNNING
        logger.info(
            "Started %s streaming queries (trigger=%s, checkpoint=%s)",
            len(self.queries),
            self.trigger.value,
            self.checkpoint_path,
        )
        return self.queries

    def await_termination(self, timeout_seconds: float | None = None) -> bool:
        """Block until every query terminates or *timeout_seconds* passes.

        Returns:
            True if all queries terminated, False on timeout

        Raises:
            StreamingQueryError: If any query terminated with an exception
        """
        from pyspark.errors import StreamingQueryException

        deadline = time.time() + timeout_seconds if timeout_seconds is not None else None
        for query in self.queries:
            try:
                if deadline is None:
                    query.awaitTermination()
                else:
                    remaining = max(deadline - time.time(), 0.0)
                    if not query.awaitTermination(remaining):
                        return False
            except StreamingQueryException as e:
                self.state = JobState.FAILED
                self.stop()
                raise StreamingQueryError(query.name or str(query.id), e)  # noqa: B904
        return True

    def stop(self) -> None:
        """Stop every active query."""
        for query in self.queries:
            if query.isActive:
                query.stop()
        if self.state == JobState.RUNNING:
            self.state = JobState.STOPPED

    def monitor(self) -> StreamingQueryMonitor:
        return StreamingQueryMonitor(self.queries)

    def _log_progress(self, snapshot: list[QueryProgress]) -> None:
        for p in snapshot:
            if p.batch_id is not None:
                logger.debug(
                    "%s: batch %s, %s rows (%s)", p.name, p.batch_id, p.input_rows, p.message
                )

    def _raise_failures(self) -> None:
        """Raise StreamingQueryError for the first query that stopped with an exception."""
        for query in self.queries:
            error = query.exception()
            if error is not None:
                self.state = JobState.FAILED
                raise StreamingQueryError(query.name or str(query.id), error)

    def wait_until_idle(self, timeout_seconds: float | None = None) -> bool:
        """Block until every query has drained the landing zone.

        Returns:
            True once idle, False on timeout

        Raises:
            StreamingQueryError: If a query stopped with an exception
        """
        idle = self.monitor().wait_for_idle(
            timeout_seconds if timeout_seconds is not None else float("inf"),
            poll_interval=IDLE_POLL_SECONDS,
            progress_callback=self._log_progress,
        )
        self._raise_failures()
        return idle

    def _finish(self, success: bool, error: str | None = None) -> StreamingJobMetrics:
        summaries = [summarize(q) for q in self.queries]
        self.metrics.progress_events = sum(s["progress_events"] for s in summaries)
        self.metrics.max_batch_duration_ms = max(
            (s["max_trigger_ms"] for s in summaries), default=0
        )
        self.metrics.outputs = {
            "enriched": str(self.output_path / "enriched"),
            "windowed_counts": str(self.output_path / "windowed_counts"),
        }
        return self.metrics.finish(success=success, error_message=error)

    def run(
        self, timeout_seconds: float | None = None, until_idle: bool = False
    ) -> StreamingJobMetrics:
        """Start, wait for termination (or timeout), stop, and report.

        With a ``processing_time`` trigger the queries never finish on
        their own; the timeout (or Ctrl-C) ends the run, or with
        *until_idle* the first moment every query has nothing left to read.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.settings.timeout_seconds
        self.start()
        try:
            if until_idle:
                finished = self.wait_until_idle(timeout)
            else:
                finished = self.await_termination(timeout)
            if not finished:
                logger.info("Timeout reached after %ss, stopping queries", timeout)
        except StreamingQueryError as e:
            return self._finish(success=False, error=str(e))
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping queries")
        finally:
            self.stop()

        self.state = JobState.COMPLETED
        return self._finish(success=True)

    def run_available(self, timeout_seconds: float | None = None) -> StreamingJobMetrics:
        """Process everything currently in the landing zone, then stop.

        Always runs with ``available_now`` so ``maxFilesPerTrigger`` still splits
        the input into micro-batches (``once`` would read it in one).
        """
        if self.trigger != TriggerType.AVAILABLE_NOW:
            self.trigger = TriggerType.AVAILABLE_NOW
            self.metrics.trigger = self.trigger.value
        return self.run(timeout_seconds)

    def reset_checkpoint(self) -> None:
        """Delete checkpoints and stream output so the next run starts from scratch."""
        if self.queries and any(q.isActive for q in self.queries):
            raise RuntimeError("Cannot reset a running streaming job")
        for path in (self.checkpoint_path, self.output_path):
            if path.exists():
                shutil.rmtree(path)
                logger.info("Removed %s", path)
