"""Shared readers and transformation logic for batch and streaming jobs.

Both paradigms call the same functions here. The batch job applies them
to a bounded DataFrame once; the streaming job applies them to an
unbounded DataFrame that Spark evaluates incrementally per micro-batch.
Anything row-wise (no joins, no shuffles) is valid in both contexts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pyspark.sql.types import (
    BooleanType,
    DoubleType,
    IntegerType,
    LongType,
    StringType,
    StructField,
    StructType,
    TimestampType,
)

from sparklab.config.schema import FileFormatType

from .job import InputNotFoundError, SchemaMismatchError, spark_errors

if TYPE_CHECKING:
    from pyspark.sql import Column, DataFrame, SparkSession

logger = logging.getLogger(__name__)

# File stream sources cannot infer schemas, so both paradigms read with this one.
# Every field is nullable, matching what Spark reports for file sources.
EVENT_SCHEMA = StructType(
    [
        StructField("event_id", StringType(), True),
        StructField("event_timestamp", TimestampType(), True),
        StructField("customer_id", LongType(), True),
        StructField("interaction_type", StringType(), True),
        StructField("channel", StringType(), True),
        StructField("product_category", StringType(), True),
        StructField("transaction_amount", DoubleType(), True),
        StructField("page_views", IntegerType(), True),
        StructField("time_on_site_seconds", IntegerType(), True),
        StructField("satisfaction_score", IntegerType(), True),
        StructField("loyalty_member", BooleanType(), True),
        StructField("email_raw", StringType(), True),
        StructField("data_quality_flag", StringType(), True),
        StructField("churned", IntegerType(), True),
    ]
)

REFERRAL_SCHEMA = StructType(
    [
        StructField("src", LongType(), True),
        StructField("dst", LongType(), True),
    ]
)

WINDOW_SCHEMA = StructType(
    [
        StructField("window_start", TimestampType(), True),
        StructField("window_end", TimestampType(), True),
        StructField("interaction_type", StringType(), True),
        StructField("event_count", LongType(), True),
        StructField("revenue", DoubleType(), True),
    ]
)

WINDOW_COLUMNS = WINDOW_SCHEMA.fieldNames()


# ============================================================
# Readers
# ============================================================


def _data_files(path: Path) -> list[Path]:
    """Visible data files under *path*; Spark skips names starting with '.' or '_'."""
    if not path.exists():
        return []
    return [p for p in path.rglob("*") if p.is_file() and not p.name.startswith((".", "_"))]


def ensure_input(path: str | Path) -> Path:
    """Return *path* if it holds data files, else raise InputNotFoundError."""
    path = Path(path)
    if not _data_files(path):
        raise InputNotFoundError(str(path))
    return path


def read_events(
    spark: SparkSession,
    path: str | Path,
    fmt: FileFormatType = FileFormatType.CSV,
    header: bool = True,
) -> DataFrame:
    """Read the whole landing zone as a bounded DataFrame."""
    path = ensure_input(path)
    reader = spark.read.schema(EVENT_SCHEMA).format(fmt.value)
    if fmt == FileFormatType.CSV:
        reader = reader.option("header", str(header).lower())
    with spark_errors(f"Reading {path}"):
        return reader.load(str(path))


def read_events_stream(
    spark: SparkSession,
    path: str | Path,
    fmt: FileFormatType = FileFormatType.CSV,
    header: bool = True,
    max_files_per_trigger: int = 1,
) -> DataFrame:
    """Read the landing zone as an unbounded DataFrame (file stream source)."""
    path = ensure_input(path)
    reader = (
        spark.readStream.schema(EVENT_SCHEMA)
        .option("maxFilesPerTrigger", str(max_files_per_trigger))
        .format(fmt.value)
    )
    if fmt == FileFormatType.CSV:
        reader = reader.option("header", str(header).lower())
    return reader.load(str(path))


def read_referrals(
    spark: SparkSession,
    path: str | Path,
    fmt: FileFormatType = FileFormatType.CSV,
    header: bool = True,
) -> DataFrame:
    """Read the referral edge list."""
    path = ensure_input(path)
    reader = spark.read.schema(REFERRAL_SCHEMA).format(fmt.value)
    if fmt == FileFormatType.CSV:
        reader = reader.option("header", str(header).lower())
    return reader.load(str(path))


def require_columns(df: DataFrame, expected: list[str], source: str = "input") -> None:
    """Raise SchemaMismatchError listing every expected column *df* lacks."""
    missing = [c for c in expected if c not in df.columns]
    if missing:
        raise SchemaMismatchError(missing, source)


def read_events_raw(
    spark: SparkSession,
    path: str | Path,
    fmt: FileFormatType = FileFormatType.CSV,
    header: bool = True,
) -> DataFrame:
    """The landing zone read without EVENT_SCHEMA, so columns are what the files carry.

    CSV takes names from the header (no inference pass), Parquet from the
    footers, JSON from a schema inference scan.
    """
    path = ensure_input(path)
    reader = spark.read.format(fmt.value)
    if fmt == FileFormatType.CSV:
        reader = reader.option("header", str(header).lower())
    with spark_errors(f"Reading {path}"):
        return reader.load(str(path))


def check_event_columns(
    spark: SparkSession,
    path: str | Path,
    fmt: FileFormatType = FileFormatType.CSV,
    header: bool = True,
) -> None:
    """Raise SchemaMismatchError if the landing zone files lack event columns.

    Headerless CSV has positional names (``_c0``...), so only the column
    count can be checked; the trailing expected names are reported missing.
    """
    expected = EVENT_SCHEMA.fieldNames()
    df = read_events_raw(spark, path, fmt, header)
    found = df.columns
    if not found:
        # JSON files with no records infer an empty schema; nothing to check
        return
    if fmt == FileFormatType.CSV and not header:
        if len(found) < len(expected):
            raise SchemaMismatchError(expected[len(found) :], "landing zone")
        return
    require_columns(df, expected, source="landing zone")


# ============================================================
# Shared transformation logic (used by both batch and streaming)
# ============================================================


def apply_enrichment(df_events: DataFrame) -> DataFrame:
    """Clean, standardize and enrich raw events.

    Pure column-level transforms: no joins, no shuffles. Each row is
    processed independently, so the result is identical whether the
    input is bounded or a micro-batch of a stream.
    """
    from pyspark.sql.functions import (
        coalesce,
        col,
        expr,
        lit,
        lower,
        regexp_replace,
        to_date,
        trim,
        when,
    )

    return (
        df_events
        # Drop rows that cannot be attributed or placed in time
        .filter(coalesce(col("data_quality_flag"), lit("clean")) != "duplicate_suspected")
        .filter(col("event_timestamp").isNotNull() & col("customer_id").isNotNull())
        .withColumn(
            "email_clean", regexp_replace(lower(trim(col("email_raw"))), "\\.duplicate", "")
        )
        # === DERIVED TIME DIMENSIONS ===
        .withColumn("event_date", to_date(col("event_timestamp")))
        .withColumn("event_hour", expr("hour(event_timestamp)"))
        .withColumn("is_weekend", expr("dayofweek(event_timestamp) in (1, 7)"))
        # === CUSTOMER VALUE ===
        .withColumn(
            "customer_value_tier",
            when(col("transaction_amount") > 500, "high_value")
            .when(col("transaction_amount") > 100, "medium_value")
            .when(col("transaction_amount") > 0, "low_value")
            .otherwise("browser_only"),
        )
        # === BEHAVIOUR ===
        .withColumn(
            "engagement_score",
            expr("""
                case when page_views is null or page_views = 0 then 0
                     when page_views <= 2 then 1
                     when page_views <= 5 then 2
                     when page_views <= 10 then 3
                     else 4 end
            """),
        )
        .withColumn(
            "churn_risk_indicator",
            when(col("satisfaction_score").isNull(), "unknown_risk")
            .when(col("satisfaction_score") <= 2, "high_risk")
            .when(col("satisfaction_score") <= 3, "medium_risk")
            .otherwise("low_risk"),
        )
        # === DATA LINEAGE ===
        .withColumn(
            "data_quality_score",
            when(col("data_quality_flag") == "clean", 1.0)
            .when(col("data_quality_flag") == "format_inconsistent", 0.8)
            .when(col("data_quality_flag") == "incomplete_data", 0.6)
            .otherwise(0.5),
        )
    )


def get_daily_kpi_aggregations() -> list[Column]:
    """Aggregation expressions for daily KPIs over enriched events."""
    from pyspark.sql.functions import avg, col, count, countDistinct, when
    from pyspark.sql.functions import max as max_
    from pyspark.sql.functions import round as round_
    from pyspark.sql.functions import sum as sum_

    def revenue_for(channel: str) -> Column:
        return round_(
            sum_(when(col("channel") == channel, col("transaction_amount")).otherwise(0)), 2
        ).alias(f"{channel}_revenue")

    return [
        # Customer metrics
        countDistinct("customer_id").alias("daily_active_customers"),
        count("*").alias("total_events"),
        # Revenue metrics
        round_(sum_("transaction_amount"), 2).alias("total_daily_revenue"),
        round_(max_("transaction_amount"), 2).alias("largest_transaction"),
        sum_(when(col("transaction_amount") > 0, 1).otherwise(0)).alias("total_transactions"),
        revenue_for("web"),
        revenue_for("mobile_app"),
        revenue_for("store"),
        revenue_for("call_center"),
        # Engagement
        round_(avg("engagement_score"), 2).alias("avg_engagement_score"),
        round_(avg("page_views"), 1).alias("avg_page_views"),
        round_(avg("satisfaction_score"), 2).alias("avg_satisfaction_score"),
        # Risk
        sum_(when(col("churn_risk_indicator") == "high_risk", 1).otherwise(0)).alias(
            "high_churn_risk_count"
        ),
        sum_(when(col("churn_risk_indicator") == "medium_risk", 1).otherwise(0)).alias(
            "medium_churn_risk_count"
        ),
    ]


def daily_kpis(df_enriched: DataFrame) -> DataFrame:
    return (
        df_enriched.groupBy("event_date").agg(*get_daily_kpi_aggregations()).orderBy("event_date")
    )


def windowed_event_counts(
    df_enriched: DataFrame,
    window_duration: str,
    slide_duration: str | None = None,
) -> DataFrame:
    """Event-time window counts and revenue per interaction type.

    Tumbling windows when ``slide_duration`` is None, sliding otherwise.
    Streaming callers must set a watermark on ``event_timestamp`` first so
    Spark can finalize and emit windows in append mode.
    """
    from pyspark.sql.functions import col, count, lit, window
    from pyspark.sql.functions import sum as sum_

    w = (
        window(col("event_timestamp"), window_duration, slide_duration)
        if slide_duration
        else window(col("event_timestamp"), window_duration)
    )
    return (
        df_enriched.groupBy(w.alias("window"), col("interaction_type"))
        .agg(
            count(lit(1)).alias("event_count"),
            sum_(col("transaction_amount")).alias("revenue"),
        )
        .select(
            col("window.start").alias("window_start"),
            col("window.end").alias("window_end"),
            "interaction_type",
            "event_count",
            "revenue",
        )
    )
