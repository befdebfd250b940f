"""Tests for the spark-submit driver script."""

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from sparklab.config import save_config
from sparklab.spark import entry
from sparklab.spark.entry import app, run_job
from sparklab.spark.job import InputNotFoundError, JobResult

from tests.conftest import make_config

runner = CliRunner()


class TestRunJob:
    def test_unknown_job(self):
        with pytest.raises(ValueError, match="Unknown job"):
            run_job(None, make_config(), "deploy")

    @pytest.mark.spark
    def test_graph_result(self, spark, generated_config):
        result = run_job(spark, generated_config, "graph")
        assert result.job_name == "graph"
        assert result.success is True
        assert result.metrics["outputs"]["vertices"].endswith("vertices")
        json.dumps(result.metrics, default=str)


class TestEntryMain:
    def test_requires_config(self):
        result = runner.invoke(app, ["batch"])
        assert result.exit_code != 0

    def test_pipeline_error_exits_1(self, tmp_path, monkeypatch):
        path = tmp_path / "lab.yaml"
        save_config(make_config(tmp_path), path)
        session = MagicMock()

        def fail(*_args, **_kwargs):
            raise InputNotFoundError(str(tmp_path))

        monkeypatch.setattr(entry, "run_job", fail)
        with patch("pyspark.sql.SparkSession") as session_cls:
            session_cls.builder.appName.return_value.getOrCreate.return_value = session
            result = runner.invoke(app, ["batch", "--config", str(path)])
        assert result.exit_code == 1
        session.stop.assert_called_once()

    def test_prints_metrics_json(self, tmp_path, monkeypatch):
        path = tmp_path / "lab.yaml"
        save_config(make_config(tmp_path), path)
        monkeypatch.setattr(
            entry,
            "run_job",
            lambda *_a, **_k: JobResult("graph", True, "graph analysed", 1.0, {"output_rows": 7}),
        )
        with patch("pyspark.sql.SparkSession"):
            result = runner.invoke(app, ["graph", "--config", str(path)])
        assert result.exit_code == 0
        assert json.loads(result.stdout.strip().splitlines()[-1]) == {"output_rows": 7}
