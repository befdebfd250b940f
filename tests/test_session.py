"""Tests for SparkSession construction."""

from unittest.mock import MagicMock, patch

import pytest

from sparklab.spark.session import SparkSessionError, build_spark_session, session_conf

from tests.conftest import make_config


class TestSessionConf:
    def test_derived_settings(self):
        conf = session_conf(make_config())
        assert conf["spark.sql.shuffle.partitions"] == "2"
        assert conf["spark.driver.memory"] == "2g"
        assert conf["spark.sql.session.timeZone"] == "UTC"

    def test_user_conf_wins(self):
        cfg = make_config(spark={"conf": {"spark.sql.shuffle.partitions": "64"}})
        assert session_conf(cfg)["spark.sql.shuffle.partitions"] == "64"


class TestBuildSparkSession:
    def _builder(self):
        builder = MagicMock()
        builder.appName.return_value = builder
        builder.master.return_value = builder
        builder.config.return_value = builder
        return builder

    def test_builder_receives_config(self):
        builder = self._builder()
        with patch("pyspark.sql.SparkSession") as session_cls:
            session_cls.builder = builder
            spark = build_spark_session(make_config(), "batch")

        builder.appName.assert_called_once_with("sparklab-batch")
        builder.master.assert_called_once_with("local[2]")
        applied = {c.args[0]: c.args[1] for c in builder.config.call_args_list}
        assert applied == session_conf(make_config())
        spark.sparkContext.setLogLevel.assert_called_once_with("ERROR")

    def test_startup_failure_wrapped(self):
        builder = self._builder()
        builder.getOrCreate.side_effect = RuntimeError("Java gateway process exited")
        with patch("pyspark.sql.SparkSession") as session_cls:
            session_cls.builder = builder
            with pytest.raises(SparkSessionError, match="Java gateway"):
                build_spark_session(make_config())
