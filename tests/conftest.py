"""Shared fixtures for the sparklab test suite."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sparklab.config import SparkLabConfig


def make_config(data_root: Path | str | None = None, **overrides) -> SparkLabConfig:
    """Create a SparkLabConfig with small, fast defaults for testing.

    This is the canonical config factory for tests. Prefer this over
    hand-building dicts so that new required fields are handled in one place.
    Section overrides are merged into the defaults below, not replaced.
    """
    base: dict = {
        "name": "test-fixture",
        "spark": {"master": "local[2]", "shuffle_partitions": 2, "log_level": "ERROR"},
        "datagen": {
            "rows": 600,
            "files": 3,
            "customers": 50,
            "referral_edges": 80,
            "timestamp_start": "2024-01-01",
            "timestamp_end": "2024-01-04",
        },
    }
    if data_root is not None:
        base["data"] = {"root": str(data_root)}
        base["output_dir"] = str(Path(data_root) / "output")
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = {**base[key], **value}
        else:
            base[key] = value
    return SparkLabConfig(**base)


def java_available() -> bool:
    return bool(os.environ.get("JAVA_HOME") or shutil.which("java"))


@pytest.fixture
def default_config(tmp_path) -> SparkLabConfig:
    """A default config rooted in a temp directory."""
    return make_config(tmp_path)


@pytest.fixture(scope="session")
def spark():
    """Session-wide local SparkSession; Spark tests skip without Java."""
    if not java_available():
        pytest.skip("No Java runtime available for Spark")

    from pyspark.sql import SparkSession

    session = (
        SparkSession.builder.master("local[2]")
        .appName("sparklab-tests")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.sql.session.timeZone", "UTC")
        .config("spark.ui.enabled", "false")
        .config("spark.ui.showConsoleProgress", "false")
        .getOrCreate()
    )
    session.sparkContext.setLogLevel("ERROR")
    yield session
    session.stop()


@pytest.fixture
def generated_config(tmp_path):
    """Config whose landing zone already holds generated data."""
    from sparklab.datagen import DataGenerator

    cfg = make_config(tmp_path)
    DataGenerator(cfg).generate()
    return cfg


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests that exercise spark-submit calls."""
    with patch("subprocess.run") as m:
        m.return_value = MagicMock(
            returncode=0,
            stdout="",
            stderr="",
        )
        yield m
