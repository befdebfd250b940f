"""Tests for the batch-vs-stream comparison."""

from datetime import datetime

import pytest

from sparklab.spark.common import WINDOW_SCHEMA
from sparklab.spark.compare import ComparisonResult, compare_paradigms, diff_windows

pytestmark = pytest.mark.spark


def _windows(spark, rows):
    return spark.createDataFrame(
        [
            (datetime(2024, 1, 1, h), datetime(2024, 1, 1, h + 1), kind, count, revenue)
            for h, kind, count, revenue in rows
        ],
        WINDOW_SCHEMA,
    )


class TestComparisonResult:
    def test_matches(self):
        result = ComparisonResult(
            batch_rows=4,
            stream_rows=4,
            missing_in_stream=0,
            missing_in_batch=0,
            mismatched=0,
            batch_enriched_rows=100,
            stream_enriched_rows=100,
        )
        assert result.matches
        assert result.to_dict()["matches"] is True
        assert result.to_dict()["cutoff"] is None

    def test_enriched_row_difference_breaks_match(self):
        result = ComparisonResult(4, 4, 0, 0, 0, batch_enriched_rows=100, stream_enriched_rows=99)
        assert not result.matches


class TestDiffWindows:
    def test_identical(self, spark):
        rows = [(0, "purchase", 3, 120.5), (0, "browse", 7, 0.0), (1, "purchase", 1, 40.0)]
        result = diff_windows(_windows(spark, rows), _windows(spark, rows), datetime(2024, 1, 1, 2))
        assert result.batch_rows == 3
        assert result.stream_rows == 3
        assert result.mismatched == 0
        assert result.missing_in_stream == 0
        assert result.missing_in_batch == 0

    def test_cutoff_excludes_open_windows(self, spark):
        batch = _windows(spark, [(0, "purchase", 3, 120.5), (5, "purchase", 2, 10.0)])
        stream = _windows(spark, [(0, "purchase", 3, 120.5)])
        result = diff_windows(batch, stream, datetime(2024, 1, 1, 1))
        assert result.batch_rows == 1
        assert result.missing_in_stream == 0

    def test_detects_differences(self, spark):
        batch = _windows(
            spark,
            [(0, "purchase", 3, 120.5), (0, "browse", 7, 0.0), (1, "support", 2, 0.0)],
        )
        stream = _windows(
            spark,
            [(0, "purchase", 3, 120.6), (0, "browse", 7, 0.0), (1, "login", 4, 0.0)],
        )
        result = diff_windows(batch, stream, datetime(2024, 1, 1, 3))
        assert result.mismatched == 1
        assert result.missing_in_stream == 1
        assert result.missing_in_batch == 1
        assert result.samples[0]["interaction_type"] == "purchase"

    def test_revenue_within_tolerance(self, spark):
        batch = _windows(spark, [(0, "purchase", 3, 120.5)])
        stream = _windows(spark, [(0, "purchase", 3, 120.5 + 1e-9)])
        assert diff_windows(batch, stream, datetime(2024, 1, 1, 1)).mismatched == 0

    def test_no_cutoff_counts_everything_missing(self, spark):
        batch = _windows(spark, [(0, "purchase", 3, 120.5), (1, "browse", 1, 0.0)])
        empty = spark.createDataFrame([], WINDOW_SCHEMA)
        result = diff_windows(batch, empty, None)
        assert result.missing_in_stream == 2
        assert result.stream_rows == 0


@pytest.mark.slow
class TestCompareParadigms:
    def test_generated_data_agrees(self, spark, generated_config):
        result = compare_paradigms(spark, generated_config, timeout_seconds=300)

        assert result.matches, result.to_dict()
        assert result.cutoff is not None
        assert result.batch_rows > 0
        assert result.batch_rows == result.stream_rows
        assert result.stream_enriched_rows == result.batch_enriched_rows
        assert result.streaming is not None and result.streaming.success

    def test_sliding_windows_agree(self, spark, tmp_path):
        from sparklab.datagen import DataGenerator

        from tests.conftest import make_config

        cfg = make_config(
            tmp_path, streaming={"window_duration": "2 hours", "slide_duration": "1 hour"}
        )
        DataGenerator(cfg).generate()
        assert compare_paradigms(spark, cfg, timeout_seconds=300).matches

    def test_once_trigger_config_still_agrees(self, spark, tmp_path):
        from sparklab.datagen import DataGenerator

        from tests.conftest import make_config

        cfg = make_config(tmp_path, streaming={"trigger": "once"})
        DataGenerator(cfg).generate()
        result = compare_paradigms(spark, cfg, timeout_seconds=300)

        assert result.matches, result.to_dict()
        assert result.cutoff is not None
        assert result.streaming.trigger == "available_now"
        assert result.streaming.batches - result.streaming.empty_batches == 3

    def test_failed_stream_raises(self, spark, generated_config, monkeypatch):
        from sparklab.spark import compare as compare_module
        from sparklab.spark.job import PipelineError

        def failed_run(job, timeout_seconds=None):
            return job.metrics.finish(
                success=False, error_message="Streaming query 'sparklab_enriched' failed: boom"
            )

        monkeypatch.setattr(compare_module.StreamingJob, "run_available", failed_run)
        with pytest.raises(PipelineError, match="Streaming side of the comparison failed.*boom"):
            compare_paradigms(spark, generated_config, timeout_seconds=300)
