"""sparklab configuration module."""

from .loader import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
    generate_default_config,
    generate_example_config_yaml,
    load_config,
    save_config,
)
from .schema import (
    DeployMode,
    FileFormatType,
    SparkLabConfig,
    SparkLogLevel,
    TriggerType,
    WriteMode,
    parse_interval_seconds,
    parse_size_to_bytes,
    parse_spark_memory,
)

__all__ = [
    # Config classes
    "SparkLabConfig",
    # Enums
    "DeployMode",
    "FileFormatType",
    "SparkLogLevel",
    "TriggerType",
    "WriteMode",
    # Loader functions
    "load_config",
    "save_config",
    "generate_default_config",
    "generate_example_config_yaml",
    # Helpers
    "parse_interval_seconds",
    "parse_size_to_bytes",
    "parse_spark_memory",
    # Exceptions
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
]
