"""Batch job -- one pass over the bounded landing zone.

Reads every file present when the job starts, enriches the rows, and
writes the enriched table, daily KPIs, event-time window counts and a
set of Spark SQL reports. Re-running with ``write_mode: overwrite``
replaces the previous output wholesale; that is the batch paradigm's
answer to recovery (recompute from the immutable input).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sparklab.metrics import JobMetrics

from .common import (
    apply_enrichment,
    check_event_columns,
    daily_kpis,
    read_events,
    windowed_event_counts,
)
from .job import spark_errors

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession

    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)

EVENTS_VIEW = "events"

# Reports run against the enriched temp view. Keep them plain SQL so they
# read the same as the queries users would type into spark-sql.
SQL_REPORTS: dict[str, str] = {
    "top_customers": f"""
        SELECT customer_id,
               COUNT(*) AS events,
               ROUND(SUM(transaction_amount), 2) AS revenue
        FROM {EVENTS_VIEW}
        GROUP BY customer_id
        ORDER BY revenue DESC, customer_id
        LIMIT 20
    """,
    "channel_mix": f"""
        SELECT channel,
               COUNT(*) AS events,
               ROUND(SUM(transaction_amount), 2) AS revenue,
               ROUND(100.0 * COUNT(*) / SUM(COUNT(*)) OVER (), 2) AS pct_events
        FROM {EVENTS_VIEW}
        GROUP BY channel
        ORDER BY events DESC
    """,
    "conversion_funnel": f"""
        SELECT interaction_type,
               COUNT(DISTINCT customer_id) AS customers,
               COUNT(*) AS events
        FROM {EVENTS_VIEW}
        GROUP BY interaction_type
        ORDER BY events DESC
    """,
}


@dataclass
class VerifyReport:
    """Summary of the landing zone as seen by the batch reader."""

    rows: int
    columns: list[str]
    interaction_counts: dict[str, int]
    channel_counts: dict[str, int]
    null_customer_rows: int


class BatchJob:
    """Runs the bounded pipeline for a config."""

    def __init__(self, spark: SparkSession, config: SparkLabConfig):
        self.spark = spark
        self.config = config
        self.output_path = config.get_batch_output_path()

    def read(self) -> DataFrame:
        """Read the landing zone with EVENT_SCHEMA after checking the files carry its columns."""
        source = (
            self.spark,
            self.config.get_events_path(),
            self.config.data.input_format,
            self.config.data.csv_header,
        )
        check_event_columns(*source)
        return read_events(*source)

    def verify(self) -> VerifyReport:
        """Check the landing zone schema and summarise its contents.

        Raises:
            InputNotFoundError: If the landing zone is empty
            SchemaMismatchError: If expected columns are missing
        """
        from pyspark.sql.functions import col

        df = self.read()

        def counts(column: str) -> dict[str, int]:
            return {r[column]: r["count"] for r in df.groupBy(column).count().collect()}

        return VerifyReport(
            rows=df.count(),
            columns=df.columns,
            interaction_counts=counts("interaction_type"),
            channel_counts=counts("channel"),
            null_customer_rows=df.filter(col("customer_id").isNull()).count(),
        )

    def _write(self, df: DataFrame, name: str, partition_by: list[str] | None = None) -> str:
        path = str(self.output_path / name)
        writer = df.write.mode(self.config.batch.write_mode.value).format(
            self.config.batch.output_format.value
        )
        if self.config.batch.output_format.value == "csv":
            writer = writer.option("header", "true")
        if partition_by:
            writer = writer.partitionBy(*partition_by)
        with spark_errors(f"Writing batch output '{name}'"):
            writer.save(path)
        return path

    def run_sql_reports(self, enriched: DataFrame) -> dict[str, DataFrame]:
        """Register the enriched view and evaluate every SQL report."""
        enriched.createOrReplaceTempView(EVENTS_VIEW)
        return {name: self.spark.sql(query) for name, query in SQL_REPORTS.items()}

    def run(self) -> JobMetrics:
        """Execute the batch pipeline end to end.

        Returns:
            JobMetrics with input/output rows and output locations
        """
        metrics = JobMetrics(job_name="batch", job_type="batch", start_time=datetime.now())

        raw = self.read()
        metrics.input_rows = raw.count()
        logger.info(
            "Batch input: %s rows from %s", metrics.input_rows, self.config.get_events_path()
        )

        enriched = apply_enrichment(raw).cache()
        try:
            metrics.output_rows = enriched.count()
            filtered_pct = (
                (1 - metrics.output_rows / metrics.input_rows) * 100 if metrics.input_rows else 0
            )
            logger.info(
                "Batch enriched: %s rows (filtered %.1f%%)", metrics.output_rows, filtered_pct
            )

            partitions = [c for c in self.config.batch.partition_by if c in enriched.columns]
            metrics.outputs["enriched"] = self._write(enriched, "enriched", partitions)

            kpis = daily_kpis(enriched)
            metrics.outputs["daily_kpis"] = self._write(kpis.coalesce(1), "daily_kpis")
            metrics.extra["kpi_days"] = kpis.count()

            windows = windowed_event_counts(
                enriched,
                self.config.streaming.window_duration,
                self.config.streaming.slide_duration,
            )
            metrics.outputs["windowed_counts"] = self._write(windows, "windowed_counts")
            metrics.extra["windows"] = windows.count()

            if self.config.batch.sql_reports:
                for name, report in self.run_sql_reports(enriched).items():
                    metrics.outputs[f"report:{name}"] = self._write(
                        report.coalesce(1), f"reports/{name}"
                    )
        finally:
            enriched.unpersist()

        metrics.finish(success=True)
        logger.info("Batch completed in %.1fs", metrics.elapsed_seconds)
        return metrics


def read_output(spark: SparkSession, config: SparkLabConfig, name: str) -> DataFrame:
    """Load one of the batch job's outputs back (e.g. ``"windowed_counts"``)."""
    path = Path(config.get_batch_output_path()) / name
    reader = spark.read.format(config.batch.output_format.value)
    if config.batch.output_format.value == "csv":
        reader = reader.option("header", "true").option("inferSchema", "true")
    return reader.load(str(path))


def summarize(report: VerifyReport) -> dict[str, Any]:
    return {
        "rows": report.rows,
        "columns": len(report.columns),
        "null_customer_rows": report.null_customer_rows,
        "interaction_types": len(report.interaction_counts),
        "channels": len(report.channel_counts),
    }
