"""SparkSession construction from a sparklab config."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pyspark.sql import SparkSession

    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)


class SparkSessionError(Exception):
    """Raised when a SparkSession cannot be started."""

    pass


def session_conf(config: SparkLabConfig) -> dict[str, str]:
    """Return every ``spark.*`` setting the builder will apply.

    User-supplied ``spark.conf`` entries win over the derived ones.
    """
    conf = {
        "spark.sql.shuffle.partitions": str(config.spark.shuffle_partitions),
        "spark.driver.memory": config.spark.driver_memory,
        "spark.sql.session.timeZone": "UTC",
        "spark.ui.showConsoleProgress": "false",
    }
    conf.update(config.spark.conf)
    return conf


def build_spark_session(config: SparkLabConfig, app_suffix: str = "") -> SparkSession:
    """Create (or reuse) the SparkSession described by *config*.

    Args:
        config: Loaded sparklab configuration
        app_suffix: Appended to the app name, e.g. ``"batch"``

    Raises:
        SparkSessionError: If the JVM cannot be started or the master is unreachable
    """
    from pyspark.sql import SparkSession

    app_name = f"{config.spark.app_name}-{app_suffix}" if app_suffix else config.spark.app_name
    builder = SparkSession.builder.appName(app_name).master(config.spark.master)
    for key, value in session_conf(config).items():
        builder = builder.config(key, value)

    try:
        spark = builder.getOrCreate()
    except Exception as e:
        raise SparkSessionError(  # noqa: B904
            f"Could not start Spark (master={config.spark.master}): {e}"
        )

    spark.sparkContext.setLogLevel(config.spark.log_level.value)
    logger.info(
        "Spark %s session '%s' on %s",
        spark.version,
        app_name,
        spark.sparkContext.master,
    )
    return spark


@contextmanager
def spark_session(config: SparkLabConfig, app_suffix: str = "") -> Iterator[SparkSession]:
    """Context manager that stops the session on exit."""
    spark = build_spark_session(config, app_suffix)
    try:
        yield spark
    finally:
        spark.stop()
