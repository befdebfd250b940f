"""Configuration loader for sparklab."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .schema import SparkLabConfig


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileNotFoundError(ConfigError):
    """Raised when configuration file is not found."""

    pass


class ConfigParseError(ConfigError):
    """Raised when configuration file cannot be parsed."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return as dictionary.

    Args:
        path: Path to YAML file

    Returns:
        Dictionary containing parsed YAML

    Raises:
        ConfigFileNotFoundError: If file doesn't exist
        ConfigParseError: If YAML parsing fails or the document is not a mapping
    """
    if not path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Failed to parse YAML: {e}")  # noqa: B904

    if not content:
        return {}
    if not isinstance(content, dict):
        raise ConfigParseError(
            f"Expected a YAML mapping at top level, got {type(content).__name__}"
        )
    return content


def validate_config_dict(data: dict[str, Any]) -> SparkLabConfig:
    """Validate a raw dict, flattening pydantic errors into one message."""
    try:
        return SparkLabConfig.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        error_messages = []
        for err in errors:
            loc = ".".join(str(x) for x in err["loc"])
            msg = err["msg"]
            error_messages.append(f"  - {loc}: {msg}" if loc else f"  - {msg}")

        raise ConfigValidationError(  # noqa: B904
            "Configuration validation failed:\n" + "\n".join(error_messages),
            errors=[dict(e) for e in errors],  # type: ignore[call-overload]
        )


def load_config(path: str | Path) -> SparkLabConfig:
    """Load and validate sparklab configuration from file.

    Args:
        path: Path to configuration YAML file

    Returns:
        Validated SparkLabConfig object

    Raises:
        ConfigFileNotFoundError: If file doesn't exist
        ConfigParseError: If YAML parsing fails
        ConfigValidationError: If validation fails
    """
    return validate_config_dict(load_yaml(Path(path)))


def save_config(config: SparkLabConfig, path: str | Path) -> None:
    """Save configuration to YAML file.

    Args:
        config: SparkLabConfig object
        path: Path to save YAML file
    """
    path = Path(path)
    data = config.model_dump(mode="json", exclude_defaults=False)

    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, indent=2)


def generate_default_config(
    name: str,
    master: str = "",
    data_root: str = "",
    rows: int | None = None,
) -> SparkLabConfig:
    """Generate a default configuration with common values pre-filled.

    This is used by `sparklab init --no-comments` and by tests.

    Args:
        name: Lab name (required)
        master: Spark master URL (defaults to local[*])
        data_root: Landing zone / output root directory
        rows: Number of synthetic rows to generate

    Returns:
        SparkLabConfig with defaults
    """
    config_dict: dict[str, Any] = {
        "name": name,
        "description": f"sparklab: {name}",
        "version": 1,
    }

    if master:
        config_dict["spark"] = {"master": master}
    if data_root:
        config_dict["data"] = {"root": data_root}
    if rows is not None:
        config_dict["datagen"] = {"rows": rows}

    return validate_config_dict(config_dict)


def generate_example_config_yaml(name: str = "my-lab") -> str:
    """Generate example configuration YAML with comments.

    Only ``name`` is uncommented; every other option is shown commented-out
    with its default so users can discover and enable it.

    Returns:
        String containing commented YAML configuration
    """
    return f"""# sparklab Configuration
# ======================
# One file drives every command:
#   init -> validate -> generate -> batch | stream | compare | train | graph
#
# LEGEND:
#   Uncommented fields  = REQUIRED or explicitly set values
#   # field: value      = Available option with its DEFAULT value.
#                         When commented out, this default is still ACTIVE.

# REQUIRED: Name for this lab (also keys the provenance journal)
name: {name}

# description: ""
# output_dir: ./sparklab-output       # journal/ and runs/ live here

## Spark session
# spark:
#   app_name: sparklab
#   master: local[*]                  # or spark://host:7077, yarn, k8s://...
#   shuffle_partitions: 8
#   driver_memory: 2g
#   log_level: WARN
#   conf: {{}}                          # extra spark.* settings

## Landing zone
# data:
#   root: ./sparklab-data
#   events_dir: landing/events
#   referrals_dir: landing/referrals
#   input_format: csv                 # csv | json | parquet
#   csv_header: true

## Synthetic data
# datagen:
#   rows: 20000
#   files: 4                          # the stream consumes one file per trigger
#   customers: 2000
#   referral_edges: 3000
#   seed: 42
#   timestamp_start: "2024-01-01"
#   timestamp_end: "2024-01-08"
#   dirty_ratio: 0.05

## Batch job (bounded input)
# batch:
#   output_dir: batch
#   output_format: parquet
#   partition_by: [event_date]
#   write_mode: overwrite
#   sql_reports: true

## Streaming job (unbounded input)
# streaming:
#   output_dir: stream
#   checkpoint_dir: checkpoints/stream
#   trigger: available_now            # processing_time | available_now | once
#   trigger_interval: 10 seconds
#   max_files_per_trigger: 1
#   watermark_delay: 1 hour
#   window_duration: 1 hour
#   # slide_duration: 30 minutes
#   # timeout_seconds: 600

## MLlib logistic regression
# ml:
#   label_col: churned
#   max_iter: 50
#   reg_param: 0.01
#   elastic_net_param: 0.0
#   train_fraction: 0.8
#   model_dir: models/churn-lr

## Graph analytics
# graph:
#   max_iterations: 20
#   damping: 0.85
#   tolerance: 0.0001
#   component_iterations: 50

## spark-submit
# submit:
#   spark_submit: spark-submit
#   deploy_mode: client
#   executor_memory: 2g
#   executor_cores: 1
#   # num_executors: 2
#   packages: []
#   py_files: []
"""
