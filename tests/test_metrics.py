"""Tests for metrics collection and storage."""

import json
from datetime import datetime, timedelta

import pytest

from sparklab.metrics import (
    JobMetrics,
    MetricsCollector,
    MetricsStorage,
    RunMetrics,
    StreamingJobMetrics,
)


class TestJobMetrics:
    def test_finish_derives_elapsed_and_throughput(self):
        m = JobMetrics(
            job_name="batch",
            job_type="batch",
            start_time=datetime.now() - timedelta(seconds=2),
            input_rows=1000,
        )
        m.finish(success=True)
        assert m.success is True
        assert m.end_time is not None
        assert m.elapsed_seconds >= 2
        assert 0 < m.throughput_rows_per_second <= 500

    def test_finish_records_error(self):
        m = JobMetrics(job_name="train", job_type="train", start_time=datetime.now())
        m.finish(success=False, error_message="one class")
        assert m.success is False
        assert m.error_message == "one class"
        assert m.throughput_rows_per_second == 0.0

    def test_to_dict_is_json_safe(self):
        m = JobMetrics(job_name="graph", job_type="graph", start_time=datetime.now())
        m.outputs["vertices"] = "/tmp/graph/vertices"
        m.extra["components"] = 3
        d = m.finish().to_dict()
        json.dumps(d)
        assert isinstance(d["start_time"], str)
        assert d["outputs"]["vertices"] == "/tmp/graph/vertices"
        assert d["extra"]["components"] == 3


class TestStreamingJobMetrics:
    def test_record_batch(self):
        m = StreamingJobMetrics(job_name="stream", trigger="available_now")
        m.record_batch(100)
        m.record_batch(0)
        m.record_batch(50)
        assert m.batches == 3
        assert m.empty_batches == 1
        assert m.rows_processed == 150

    def test_to_dict(self):
        m = StreamingJobMetrics(
            job_name="stream", trigger="once", start_time=datetime.now(), checkpoint_location="/cp"
        )
        d = m.finish().to_dict()
        assert d["trigger"] == "once"
        assert d["checkpoint_location"] == "/cp"
        assert isinstance(d["end_time"], str)


class TestMetricsCollector:
    def test_run_lifecycle(self):
        collector = MetricsCollector()
        run = collector.start_run("demo", "batch")
        assert run.run_id
        collector.record_job(JobMetrics(job_name="batch", job_type="batch", input_rows=10).finish())
        summary = collector.get_summary()
        assert summary["jobs"] == 1
        assert summary["input_rows"] == 10

        finished = collector.end_run()
        assert finished is run
        assert finished.success is True
        assert finished.end_time is not None
        assert collector.current_run is None

    def test_failed_job_fails_run(self):
        collector = MetricsCollector()
        collector.start_run("demo", "stream")
        collector.record_streaming(
            StreamingJobMetrics(job_name="stream", trigger="once").finish(success=False)
        )
        assert collector.end_run(success=True).success is False

    def test_record_without_run_is_dropped(self):
        collector = MetricsCollector()
        collector.record_job(JobMetrics(job_name="x", job_type="batch"))
        assert collector.get_summary() == {}
        assert collector.end_run() is None

    def test_explicit_run_id(self):
        run = MetricsCollector().start_run("demo", "graph", run_id="fixed")
        assert run.run_id == "fixed"


class TestMetricsStorage:
    def _run(self, run_id: str, start: datetime) -> RunMetrics:
        run = RunMetrics(run_id=run_id, config_name="demo", command="batch", start_time=start)
        run.jobs.append(JobMetrics(job_name="batch", job_type="batch", elapsed_seconds=1.5))
        run.success = True
        return run

    def test_save_and_load(self, tmp_path):
        storage = MetricsStorage(tmp_path)
        path = storage.save_run(self._run("r1", datetime.now()))
        assert path == tmp_path / "run-r1" / "metrics.json"

        data = storage.load_run("r1")
        assert data["run_id"] == "r1"
        assert data["total_elapsed_seconds"] == pytest.approx(1.5)
        assert data["jobs"][0]["job_name"] == "batch"

    def test_load_missing(self, tmp_path):
        assert MetricsStorage(tmp_path).load_run("nope") is None

    def test_list_runs_most_recent_first(self, tmp_path):
        storage = MetricsStorage(tmp_path)
        now = datetime.now()
        storage.save_run(self._run("old", now - timedelta(hours=1)))
        storage.save_run(self._run("new", now))
        assert [r["run_id"] for r in storage.list_runs()] == ["new", "old"]

    def test_list_runs_skips_corrupt(self, tmp_path):
        storage = MetricsStorage(tmp_path)
        storage.save_run(self._run("good", datetime.now()))
        bad = tmp_path / "run-bad"
        bad.mkdir()
        (bad / "metrics.json").write_text("{not json")
        assert [r["run_id"] for r in storage.list_runs()] == ["good"]
