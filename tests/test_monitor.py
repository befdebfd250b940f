"""Tests for streaming query monitoring (no Spark required)."""

from unittest.mock import MagicMock

import pytest

from sparklab.spark.job import JobState, StreamingQueryError
from sparklab.spark.monitor import StreamingQueryMonitor, progress_of, summarize
from sparklab.spark.streaming import StreamingJob

from tests.conftest import make_config


def _query(
    name="sparklab_enriched",
    active=True,
    last=None,
    status=None,
    recent=None,
    error=None,
):
    q = MagicMock()
    q.name = name
    q.id = "7f0c"
    q.isActive = active
    q.lastProgress = last
    q.status = status if status is not None else {"message": "Waiting for data to arrive"}
    q.recentProgress = recent or []
    q.exception.return_value = error
    return q


class TestProgressOf:
    def test_before_first_batch(self):
        p = progress_of(_query())
        assert p.batch_id is None
        assert p.input_rows == 0
        assert p.message == "Waiting for data to arrive"

    def test_from_last_progress(self):
        p = progress_of(
            _query(
                last={"batchId": 4, "numInputRows": 150, "processedRowsPerSecond": 75.5},
                status={"isDataAvailable": True, "isTriggerActive": False, "message": ""},
            )
        )
        assert p.batch_id == 4
        assert p.input_rows == 150
        assert p.processed_rows_per_second == 75.5
        assert p.data_available is True
        assert p.query_id == "7f0c"


class TestSummarize:
    def test_empty(self):
        s = summarize(_query())
        assert s["progress_events"] == 0
        assert s["max_trigger_ms"] == 0
        assert s["last_batch_id"] is None
        assert s["watermark"] is None

    def test_totals(self):
        recent = [
            {"batchId": 0, "numInputRows": 200, "durationMs": {"triggerExecution": 900}},
            {"batchId": 1, "numInputRows": 0, "durationMs": {"triggerExecution": 40}},
            {
                "batchId": 2,
                "numInputRows": 180,
                "durationMs": {"triggerExecution": 1200},
                "eventTime": {"watermark": "2024-01-03T12:00:00.000Z"},
            },
        ]
        s = summarize(_query(recent=recent))
        assert s["progress_events"] == 3
        assert s["input_rows"] == 380
        assert s["max_trigger_ms"] == 1200
        assert s["last_batch_id"] == 2
        assert s["watermark"] == "2024-01-03T12:00:00.000Z"


class TestStreamingQueryMonitor:
    def test_idle_when_all_stopped(self):
        monitor = StreamingQueryMonitor([_query(active=False), _query(active=False)])
        assert monitor.is_idle()

    def test_busy_before_first_batch(self):
        assert not StreamingQueryMonitor([_query()]).is_idle()

    def test_busy_while_data_available(self):
        q = _query(
            last={"batchId": 1},
            status={"isDataAvailable": True, "isTriggerActive": False, "message": ""},
        )
        assert not StreamingQueryMonitor([q]).is_idle()

    def test_idle_after_drain(self):
        q = _query(
            last={"batchId": 3},
            status={"isDataAvailable": False, "isTriggerActive": False, "message": ""},
        )
        assert StreamingQueryMonitor([q, _query(active=False)]).is_idle()

    def test_wait_for_idle_reports_progress(self):
        q = _query(
            last={"batchId": 0},
            status={"isDataAvailable": False, "isTriggerActive": False, "message": ""},
        )
        seen = []
        monitor = StreamingQueryMonitor([q])
        assert monitor.wait_for_idle(
            timeout_seconds=1, poll_interval=0, progress_callback=seen.append
        )
        assert len(seen) == 1
        assert seen[0][0].batch_id == 0

    def test_wait_for_idle_timeout(self):
        monitor = StreamingQueryMonitor([_query()])
        assert monitor.wait_for_idle(timeout_seconds=0, poll_interval=0.01) is False

    def test_summaries(self):
        monitor = StreamingQueryMonitor([_query(name="a"), _query(name="b")])
        assert [s["name"] for s in monitor.summaries()] == ["a", "b"]


class TestStreamingJobUntilIdle:
    def _job(self, tmp_path, queries):
        job = StreamingJob(MagicMock(), make_config(tmp_path))
        job.queries = queries
        return job

    def test_idle_after_drain(self, tmp_path):
        drained = {"isDataAvailable": False, "isTriggerActive": False, "message": ""}
        queries = [
            _query(last={"batchId": 2}, status=drained),
            _query(last={"batchId": 5}, status=drained),
        ]
        job = self._job(tmp_path, queries)
        assert job.wait_until_idle(timeout_seconds=1) is True

    def test_failed_query_raises(self, tmp_path):
        failed = _query(name="sparklab_windowed_counts", active=False, error=RuntimeError("disk"))
        job = self._job(tmp_path, [_query(active=False), failed])
        with pytest.raises(StreamingQueryError, match="sparklab_windowed_counts"):
            job.wait_until_idle(timeout_seconds=1)
        assert job.state == JobState.FAILED
