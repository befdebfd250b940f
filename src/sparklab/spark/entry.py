"""
Driver script run by spark-submit.

    spark-submit [options] sparklab/spark/entry.py <job> --config lab.yaml

Loads the config, takes the SparkSession spark-submit already prepared
(master, memory and --conf settings come from the command line), and
dispatches to one job. Exits non-zero on failure so spark-submit and
``sparklab submit`` report it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from sparklab.config import load_config
from sparklab.spark.batch import BatchJob
from sparklab.spark.compare import compare_paradigms
from sparklab.spark.graph import run_graph_job
from sparklab.spark.job import JobResult, PipelineError
from sparklab.spark.mllib import ChurnModelTrainer
from sparklab.spark.streaming import StreamingJob

logger = logging.getLogger("sparklab.entry")

app = typer.Typer(add_completion=False)


def run_job(spark, config, job: str, timeout: float | None = None) -> JobResult:
    """Run *job* on *spark* and fold its metrics into a JobResult."""
    if job == "batch":
        metrics = BatchJob(spark, config).run()
        return JobResult(
            "batch", metrics.success, "batch complete", metrics.elapsed_seconds, metrics.to_dict()
        )
    if job == "stream":
        stream_metrics = StreamingJob(spark, config).run(timeout)
        return JobResult(
            "stream",
            stream_metrics.success,
            stream_metrics.error_message or f"{stream_metrics.rows_processed} rows streamed",
            stream_metrics.elapsed_seconds,
            stream_metrics.to_dict(),
        )
    if job == "compare":
        result = compare_paradigms(spark, config, timeout)
        message = "paradigms agree" if result.matches else "paradigms disagree"
        elapsed = result.streaming.elapsed_seconds if result.streaming else 0.0
        return JobResult("compare", result.matches, message, elapsed, result.to_dict())
    if job == "train":
        metrics = ChurnModelTrainer(spark, config).run()
        return JobResult(
            "train", metrics.success, "model trained", metrics.elapsed_seconds, metrics.to_dict()
        )
    if job == "graph":
        metrics = run_graph_job(spark, config)
        return JobResult(
            "graph", metrics.success, "graph analysed", metrics.elapsed_seconds, metrics.to_dict()
        )
    raise ValueError(f"Unknown job '{job}'")


@app.command()
def main(
    job: Annotated[str, typer.Argument(help="batch, stream, compare, train or graph")],
    config_file: Annotated[Path, typer.Option("--config", help="Path to sparklab YAML")],
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Streaming timeout in seconds")
    ] = None,
) -> None:
    from pyspark.sql import SparkSession

    logging.basicConfig(level=logging.INFO, format="[sparklab] %(message)s")
    config = load_config(config_file)
    spark = SparkSession.builder.appName(f"{config.spark.app_name}-{job}").getOrCreate()
    spark.sparkContext.setLogLevel(config.spark.log_level.value)

    try:
        result = run_job(spark, config, job, timeout)
    except PipelineError as e:
        logger.error("%s failed: %s", job, e)
        raise typer.Exit(1)  # noqa: B904
    finally:
        spark.stop()

    logger.info("%s: %s (%.1fs)", result.job_name, result.message, result.elapsed_seconds)
    print(json.dumps(result.metrics, default=str))
    if not result.success:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
