"""Pydantic models for sparklab configuration.

One YAML file drives every command: where the landing zone lives, how
the Spark session is built, and how the batch, streaming, MLlib and
graph jobs behave.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sparklab._constants import DEFAULT_DATA_ROOT, DEFAULT_OUTPUT_DIR

# =============================================================================
# Enums
# =============================================================================


class FileFormatType(str, Enum):
    """File formats for the landing zone."""

    CSV = "csv"
    JSON = "json"
    PARQUET = "parquet"


class SparkLogLevel(str, Enum):
    """Log levels accepted by ``SparkContext.setLogLevel``."""

    ALL = "ALL"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"
    OFF = "OFF"


class WriteMode(str, Enum):
    """DataFrameWriter save modes."""

    OVERWRITE = "overwrite"
    APPEND = "append"
    ERROR = "error"
    IGNORE = "ignore"


class TriggerType(str, Enum):
    """Structured Streaming trigger modes.

    - processing_time: run a micro-batch every ``trigger_interval``, forever.
    - available_now: drain everything currently in the source in one or
      more micro-batches, then stop.
    - once: a single micro-batch with everything available, then stop.
    """

    PROCESSING_TIME = "processing_time"
    AVAILABLE_NOW = "available_now"
    ONCE = "once"


class DeployMode(str, Enum):
    """spark-submit deploy modes."""

    CLIENT = "client"
    CLUSTER = "cluster"


# =============================================================================
# Sections
# =============================================================================


class SparkConfig(BaseModel):
    """SparkSession builder settings."""

    app_name: str = "sparklab"
    master: str = "local[*]"
    shuffle_partitions: int = Field(default=8, ge=1)
    driver_memory: str = "2g"
    log_level: SparkLogLevel = SparkLogLevel.WARN
    conf: dict[str, str] = Field(
        default_factory=dict,
        description="Extra spark.* settings applied verbatim to the builder",
    )

    @field_validator("driver_memory")
    @classmethod
    def validate_driver_memory(cls, v: str) -> str:
        """Reject memory strings Spark would not understand."""
        parse_spark_memory(v)
        return v

    @field_validator("conf")
    @classmethod
    def validate_conf_keys(cls, v: dict[str, str]) -> dict[str, str]:
        bad = [k for k in v if not k.startswith("spark.")]
        if bad:
            raise ValueError(f"conf keys must start with 'spark.': {', '.join(bad)}")
        return {k: str(val) for k, val in v.items()}


class DataConfig(BaseModel):
    """Landing zone layout shared by every job."""

    root: str = DEFAULT_DATA_ROOT
    events_dir: str = "landing/events"
    referrals_dir: str = "landing/referrals"
    input_format: FileFormatType = FileFormatType.CSV
    csv_header: bool = True


class DatagenConfig(BaseModel):
    """Synthetic customer-interaction generator settings."""

    rows: int = Field(default=20_000, gt=0)
    files: int = Field(default=4, gt=0)
    customers: int = Field(default=2_000, gt=0)
    referral_edges: int = Field(default=3_000, ge=0)
    seed: int = 42
    timestamp_start: str = "2024-01-01"
    timestamp_end: str = "2024-01-08"
    dirty_ratio: float = 0.05

    @field_validator("dirty_ratio")
    @classmethod
    def validate_dirty_ratio(cls, v: float) -> float:
        """Ensure dirty data ratio is between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("dirty_ratio must be between 0 and 1")
        return v

    @field_validator("timestamp_start", "timestamp_end")
    @classmethod
    def validate_iso_date(cls, v: str) -> str:
        try:
            date.fromisoformat(v)
        except ValueError:
            raise ValueError(f"Invalid ISO date: {v}")  # noqa: B904
        return v

    @model_validator(mode="after")
    def validate_range(self) -> DatagenConfig:
        if date.fromisoformat(self.timestamp_start) >= date.fromisoformat(self.timestamp_end):
            raise ValueError("timestamp_start must be before timestamp_end")
        return self


class BatchConfig(BaseModel):
    """Bounded (batch) job settings."""

    output_dir: str = "batch"
    output_format: FileFormatType = FileFormatType.PARQUET
    partition_by: list[str] = Field(default_factory=lambda: ["event_date"])
    write_mode: WriteMode = WriteMode.OVERWRITE
    sql_reports: bool = True


class StreamingConfig(BaseModel):
    """Unbounded (structured streaming) job settings."""

    output_dir: str = "stream"
    checkpoint_dir: str = "checkpoints/stream"
    trigger: TriggerType = TriggerType.AVAILABLE_NOW
    trigger_interval: str = "10 seconds"
    max_files_per_trigger: int = Field(default=1, ge=1)
    watermark_delay: str = "1 hour"
    window_duration: str = "1 hour"
    slide_duration: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("trigger_interval", "watermark_delay", "window_duration", "slide_duration")
    @classmethod
    def validate_interval(cls, v: str | None) -> str | None:
        if v is not None:
            parse_interval_seconds(v)
        return v

    @model_validator(mode="after")
    def validate_slide(self) -> StreamingConfig:
        if self.slide_duration is not None:
            if parse_interval_seconds(self.slide_duration) > parse_interval_seconds(
                self.window_duration
            ):
                raise ValueError("slide_duration must not exceed window_duration")
        return self


class MLConfig(BaseModel):
    """MLlib logistic regression settings."""

    label_col: str = "churned"
    numeric_features: list[str] = Field(
        default_factory=lambda: [
            "transaction_amount",
            "page_views",
            "time_on_site_seconds",
            "satisfaction_score",
            "engagement_score",
        ]
    )
    categorical_features: list[str] = Field(
        default_factory=lambda: ["channel", "interaction_type", "customer_value_tier"]
    )
    max_iter: int = Field(default=50, ge=1)
    reg_param: float = Field(default=0.01, ge=0)
    elastic_net_param: float = Field(default=0.0, ge=0, le=1)
    train_fraction: float = Field(default=0.8, gt=0, lt=1)
    seed: int = 42
    model_dir: str = "models/churn-lr"

    @model_validator(mode="after")
    def validate_features(self) -> MLConfig:
        if not self.numeric_features and not self.categorical_features:
            raise ValueError("at least one feature column is required")
        if self.label_col in self.numeric_features + self.categorical_features:
            raise ValueError(f"label column '{self.label_col}' cannot also be a feature")
        return self


class GraphConfig(BaseModel):
    """Graph analytics settings."""

    max_iterations: int = Field(default=20, ge=1)
    damping: float = Field(default=0.85, gt=0, lt=1)
    tolerance: float = Field(default=1e-4, gt=0)
    component_iterations: int = Field(default=50, ge=1)
    output_dir: str = "graph"


class SubmitConfig(BaseModel):
    """spark-submit settings for running jobs on a cluster master."""

    spark_submit: str = "spark-submit"
    deploy_mode: DeployMode = DeployMode.CLIENT
    executor_memory: str = "2g"
    executor_cores: int = Field(default=1, ge=1)
    num_executors: int | None = Field(default=None, ge=1)
    packages: list[str] = Field(default_factory=list)
    py_files: list[str] = Field(default_factory=list)

    @field_validator("executor_memory")
    @classmethod
    def validate_executor_memory(cls, v: str) -> str:
        parse_spark_memory(v)
        return v


# =============================================================================
# Root
# =============================================================================


class SparkLabConfig(BaseModel):
    """Root configuration for sparklab.

    All values shown are defaults unless marked REQUIRED.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="", description="Name for this lab (REQUIRED)")
    description: str = ""
    version: int = 1
    output_dir: str = DEFAULT_OUTPUT_DIR

    spark: SparkConfig = Field(default_factory=SparkConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    datagen: DatagenConfig = Field(default_factory=DatagenConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    ml: MLConfig = Field(default_factory=MLConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    submit: SubmitConfig = Field(default_factory=SubmitConfig)

    @model_validator(mode="after")
    def validate_required_fields(self) -> SparkLabConfig:
        """Validate required fields are present."""
        if not self.name:
            raise ValueError("'name' is required")
        return self

    # Paths are resolved against data.root so a single setting moves everything.

    def _data_path(self, *parts: str) -> Path:
        return Path(self.data.root).joinpath(*parts)

    def get_events_path(self) -> Path:
        return self._data_path(self.data.events_dir)

    def get_referrals_path(self) -> Path:
        return self._data_path(self.data.referrals_dir)

    def get_batch_output_path(self) -> Path:
        return self._data_path(self.batch.output_dir)

    def get_stream_output_path(self) -> Path:
        return self._data_path(self.streaming.output_dir)

    def get_checkpoint_path(self) -> Path:
        return self._data_path(self.streaming.checkpoint_dir)

    def get_model_path(self) -> Path:
        return self._data_path(self.ml.model_dir)

    def get_graph_output_path(self) -> Path:
        return self._data_path(self.graph.output_dir)


# =============================================================================
# Parsing helpers
# =============================================================================


def parse_size_to_bytes(size_str: str) -> int:
    """Parse a human-readable size string to bytes.

    Supports: b, kb, mb, gb, tb (case-insensitive)

    Examples:
        >>> parse_size_to_bytes("100gb")
        107374182400
        >>> parse_size_to_bytes("512mb")
        536870912
    """
    size_str = size_str.lower().strip()

    units = [
        ("tb", 1024**4),
        ("gb", 1024**3),
        ("mb", 1024**2),
        ("kb", 1024),
        ("b", 1),
    ]

    for unit, multiplier in units:
        if size_str.endswith(unit):
            try:
                value = float(size_str[: -len(unit)])
                return int(value * multiplier)
            except ValueError:
                raise ValueError(f"Invalid size format: {size_str}")  # noqa: B904

    # No unit, assume bytes
    try:
        return int(size_str)
    except ValueError:
        raise ValueError(f"Invalid size format: {size_str}")  # noqa: B904


def parse_spark_memory(memory_str: str) -> int:
    """Parse Spark memory string to bytes.

    Supports: k, m, g, t (case-insensitive)

    Examples:
        >>> parse_spark_memory("2g")
        2147483648
        >>> parse_spark_memory("512m")
        536870912
    """
    memory_str = memory_str.lower().strip()

    units = {
        "k": 1024,
        "m": 1024**2,
        "g": 1024**3,
        "t": 1024**4,
    }

    for unit, multiplier in units.items():
        if memory_str.endswith(unit):
            try:
                value = float(memory_str[:-1])
                return int(value * multiplier)
            except ValueError:
                raise ValueError(f"Invalid memory format: {memory_str}")  # noqa: B904

    # No unit, assume bytes
    try:
        return int(memory_str)
    except ValueError:
        raise ValueError(f"Invalid memory format: {memory_str}")  # noqa: B904


_INTERVAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-z]+?)s?\s*$")

_INTERVAL_UNITS = {
    "millisecond": 0.001,
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
}


def parse_interval_seconds(interval: str) -> float:
    """Parse a Spark interval string such as ``"10 seconds"`` to seconds.

    Examples:
        >>> parse_interval_seconds("10 seconds")
        10.0
        >>> parse_interval_seconds("1 hour")
        3600.0
    """
    match = _INTERVAL_RE.match(interval.lower())
    if not match or match.group(2) not in _INTERVAL_UNITS:
        raise ValueError(f"Invalid interval format: {interval!r} (expected e.g. '10 seconds')")
    return float(match.group(1)) * _INTERVAL_UNITS[match.group(2)]
