"""CLI surface tests using typer.testing.CliRunner.

These tests exercise the CLI entry points through Typer's test harness.
Commands that need a SparkSession run here against a mocked session and
mocked jobs; the jobs themselves are covered in the Spark-marked tests.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import yaml
from typer.testing import CliRunner

import sparklab.cli as cli_module
from sparklab import __version__
from sparklab.cli import app
from sparklab.config import save_config

from tests.conftest import make_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Run every command from a temp dir with a fresh journal."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "_journal", None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "sparklab.yaml"
    save_config(make_config(tmp_path / "data"), path)
    return path


def _journal_events(tmp_path) -> list[dict]:
    files = list((tmp_path / "data" / "output" / "journal").glob("session-*.jsonl"))
    assert len(files) == 1
    return [json.loads(line) for line in files[0].read_text().splitlines() if line.strip()]


# =============================================================================
# version command
# =============================================================================


class TestVersionCommand:
    def test_version_output(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "Usage" in result.output


# =============================================================================
# init command
# =============================================================================


class TestInitCommand:
    def test_init_creates_file(self, tmp_path):
        output = tmp_path / "lab.yaml"
        result = runner.invoke(app, ["init", "--output", str(output)])
        assert result.exit_code == 0
        assert output.exists()
        assert "name: my-lab" in output.read_text()

    def test_init_default_output(self, tmp_path):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert (tmp_path / "sparklab.yaml").exists()

    def test_init_custom_name(self, tmp_path):
        output = tmp_path / "lab.yaml"
        result = runner.invoke(app, ["init", "-o", str(output), "--name", "nightly"])
        assert result.exit_code == 0
        assert "name: nightly" in output.read_text()

    def test_init_overrides_are_live(self, tmp_path):
        output = tmp_path / "lab.yaml"
        result = runner.invoke(
            app,
            ["init", "-o", str(output), "--master", "local[4]", "--data-root", "/tmp/lab"],
        )
        assert result.exit_code == 0
        data = yaml.safe_load(output.read_text())
        assert data["spark"] == {"master": "local[4]"}
        assert data["data"] == {"root": "/tmp/lab"}

    def test_init_no_comments(self, tmp_path):
        output = tmp_path / "lab.yaml"
        result = runner.invoke(app, ["init", "-o", str(output), "--no-comments"])
        assert result.exit_code == 0
        content = output.read_text()
        assert not content.startswith("#")
        data = yaml.safe_load(content)
        assert data["name"] == "my-lab"
        assert data["streaming"]["trigger"] == "available_now"

    def test_init_refuses_overwrite(self, tmp_path):
        output = tmp_path / "lab.yaml"
        output.write_text("name: keep\n")
        result = runner.invoke(app, ["init", "-o", str(output)])
        assert result.exit_code == 1
        assert output.read_text() == "name: keep\n"

    def test_init_force_overwrites(self, tmp_path):
        output = tmp_path / "lab.yaml"
        output.write_text("name: old\n")
        result = runner.invoke(app, ["init", "-o", str(output), "--name", "new", "--force"])
        assert result.exit_code == 0
        assert "name: new" in output.read_text()


# =============================================================================
# config resolution
# =============================================================================


class TestConfigResolution:
    def test_missing_default_config(self):
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 1
        assert "sparklab init" in result.output

    def test_nonexistent_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config_lists_errors(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("name: bad\nstreaming:\n  max_files_per_trigger: 0\n")
        result = runner.invoke(app, ["validate", "-f", str(path)])
        assert result.exit_code == 1
        assert "max_files_per_trigger" in result.output

    def test_default_config_discovered(self, config_file, monkeypatch):
        monkeypatch.setenv("JAVA_HOME", "/opt/java")
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 0
        assert "test-fixture" in result.output


# =============================================================================
# validate command
# =============================================================================


class TestValidateCommand:
    def test_validate_ok_with_java_home(self, config_file, monkeypatch, tmp_path):
        monkeypatch.setenv("JAVA_HOME", "/opt/java")
        result = runner.invoke(app, ["validate", str(config_file)])
        assert result.exit_code == 0
        assert "Landing zone empty" in result.output
        events = _journal_events(tmp_path)
        assert events[-1]["event_type"] == "command.end"
        assert events[-1]["success"] is True

    def test_validate_fails_without_java_locally(self, config_file, monkeypatch):
        monkeypatch.delenv("JAVA_HOME", raising=False)
        monkeypatch.setattr(cli_module.shutil, "which", lambda _name: None)
        result = runner.invoke(app, ["validate", str(config_file)])
        assert result.exit_code == 1
        assert "No Java runtime" in result.output


# =============================================================================
# generate command
# =============================================================================


class TestGenerateCommand:
    def test_generate_writes_landing_zone(self, config_file, tmp_path):
        result = runner.invoke(app, ["generate", str(config_file), "--rows", "120"])
        assert result.exit_code == 0, result.output
        events_dir = tmp_path / "data" / "landing" / "events"
        assert len(list(events_dir.glob("events-*.csv"))) == 3

        kinds = [e["event_type"] for e in _journal_events(tmp_path)]
        assert "generate.start" in kinds
        assert "generate.complete" in kinds

    def test_generate_refuses_existing_data(self, config_file, tmp_path):
        assert runner.invoke(app, ["generate", str(config_file)]).exit_code == 0
        result = runner.invoke(app, ["generate", str(config_file)])
        assert result.exit_code == 1
        assert "--overwrite" in result.output

        events = _journal_events(tmp_path)
        assert events[-1]["event_type"] == "command.end"
        assert events[-1]["success"] is False

    def test_generate_overwrite(self, config_file):
        assert runner.invoke(app, ["generate", str(config_file)]).exit_code == 0
        result = runner.invoke(app, ["generate", str(config_file), "--overwrite"])
        assert result.exit_code == 0


# =============================================================================
# submit command
# =============================================================================


class TestSubmitCommand:
    def test_dry_run_records_command(self, config_file, tmp_path, mock_subprocess):
        result = runner.invoke(app, ["submit", "batch", str(config_file), "--dry-run"])
        assert result.exit_code == 0, result.output
        mock_subprocess.assert_not_called()

        submitted = [e for e in _journal_events(tmp_path) if e["event_type"] == "submit.invoked"]
        assert len(submitted) == 1
        cmd = submitted[0]["details"]["command"]
        assert cmd[0] == "spark-submit"
        assert "batch" in cmd
        assert cmd[cmd.index("--config") + 1] == str(config_file.resolve())

    def test_unknown_job(self, config_file, mock_subprocess):
        result = runner.invoke(app, ["submit", "nonsense", str(config_file)])
        assert result.exit_code == 1
        mock_subprocess.assert_not_called()

    def test_submit_runs_spark_submit(self, config_file, mock_subprocess):
        mock_subprocess.return_value.stdout = '{"job_name": "graph", "success": true}\n'
        result = runner.invoke(app, ["submit", "graph", str(config_file)])
        assert result.exit_code == 0, result.output
        mock_subprocess.assert_called_once()
        assert "graph finished" in result.output

    def test_submit_failure_exits_1(self, config_file, mock_subprocess):
        mock_subprocess.return_value.returncode = 1
        mock_subprocess.return_value.stderr = "Exception in thread main\n"
        result = runner.invoke(app, ["submit", "train", str(config_file)])
        assert result.exit_code == 1


# =============================================================================
# Spark commands (mocked session)
# =============================================================================


class TestSparkCommandFailures:
    @pytest.fixture
    def session(self, monkeypatch):
        session = MagicMock()
        monkeypatch.setattr(cli_module, "_start_spark", lambda *_args: session)
        return session

    def test_raw_spark_error_exits_1(self, config_file, tmp_path, session, monkeypatch):
        from pyspark.errors import PySparkException

        from sparklab.spark.batch import BatchJob

        def already_exists(_job):
            raise PySparkException(message="[PATH_ALREADY_EXISTS] Path already exists.")

        monkeypatch.setattr(BatchJob, "run", already_exists)
        result = runner.invoke(app, ["batch", str(config_file)])

        assert result.exit_code == 1
        assert "Spark job failed" in result.output
        session.stop.assert_called_once()
        ends = [e for e in _journal_events(tmp_path) if e["event_type"] == "command.end"]
        assert ends[-1]["success"] is False

    def test_pipeline_error_exits_1(self, config_file, tmp_path, session, monkeypatch):
        from sparklab.spark.batch import BatchJob
        from sparklab.spark.job import SchemaMismatchError

        def missing(_job):
            raise SchemaMismatchError(["channel"], "landing zone")

        monkeypatch.setattr(BatchJob, "verify", missing)
        result = runner.invoke(app, ["batch", str(config_file), "--verify"])

        assert result.exit_code == 1
        assert "missing expected columns: channel" in result.output

    def test_stream_until_idle(self, config_file, tmp_path, session, monkeypatch):
        from sparklab.metrics import StreamingJobMetrics
        from sparklab.spark.streaming import StreamingJob

        calls = []

        def fake_run(job, timeout_seconds=None, until_idle=False):
            calls.append((job.trigger, until_idle))
            return StreamingJobMetrics(job_name="stream", trigger=job.trigger.value).finish()

        monkeypatch.setattr(StreamingJob, "run", fake_run)
        result = runner.invoke(
            app, ["stream", str(config_file), "--trigger", "processing_time", "--until-idle"]
        )

        assert result.exit_code == 0, result.output
        assert "stops when idle" in result.output
        assert calls == [(cli_module.TriggerType.PROCESSING_TIME, True)]


# =============================================================================
# journal / results viewers
# =============================================================================


class TestJournalCommand:
    def test_empty_journal(self, tmp_path):
        result = runner.invoke(app, ["journal", "--dir", str(tmp_path / "none")])
        assert result.exit_code == 0
        assert "No journal sessions" in result.output

    def test_lists_sessions(self, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("JAVA_HOME", "/opt/java")
        runner.invoke(app, ["validate", str(config_file)])
        journal_dir = tmp_path / "data" / "output" / "journal"
        result = runner.invoke(app, ["journal", "--dir", str(journal_dir)])
        assert result.exit_code == 0
        assert "test-fixture" in result.output

    def test_unknown_session(self, tmp_path):
        result = runner.invoke(app, ["journal", "--dir", str(tmp_path), "-s", "missing"])
        assert result.exit_code == 0
        assert "No events found" in result.output

    def test_purge(self, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("JAVA_HOME", "/opt/java")
        runner.invoke(app, ["validate", str(config_file)])
        journal_dir = tmp_path / "data" / "output" / "journal"
        result = runner.invoke(app, ["journal", "--dir", str(journal_dir), "--purge"])
        assert result.exit_code == 0
        assert "Removed 1 session" in result.output
        assert list(journal_dir.glob("session-*.jsonl")) == []


class TestResultsCommand:
    def test_no_runs(self, tmp_path):
        result = runner.invoke(app, ["results", "--metrics", str(tmp_path / "runs")])
        assert result.exit_code == 0
        assert "No runs found" in result.output

    def test_unknown_run(self, tmp_path):
        result = runner.invoke(app, ["results", "-m", str(tmp_path), "--run", "missing"])
        assert result.exit_code == 1

    def test_json_listing(self, tmp_path):
        from sparklab.metrics import MetricsCollector, MetricsStorage

        collector = MetricsCollector()
        collector.start_run("demo", "batch", run_id="r1")
        MetricsStorage(tmp_path / "runs").save_run(collector.end_run())

        result = runner.invoke(app, ["results", "-m", str(tmp_path / "runs"), "--format", "json"])
        assert result.exit_code == 0
        assert '"run_id": "r1"' in result.output
