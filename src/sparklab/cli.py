"""sparklab CLI."""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sparklab import __version__
from sparklab._constants import DEFAULT_CONFIG, DEFAULT_OUTPUT_DIR
from sparklab.config import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    SparkLabConfig,
    TriggerType,
    generate_default_config,
    generate_example_config_yaml,
    load_config,
    save_config,
)
from sparklab.journal import CommandName, EventType, Journal
from sparklab.metrics import JobMetrics, MetricsCollector, MetricsStorage, StreamingJobMetrics

logger = logging.getLogger(__name__)

# Global journal instance (lazy-initialized)
_journal: Journal | None = None

app = typer.Typer(
    name="sparklab",
    help="Batch and stream processing with Apache Spark, side by side",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    epilog=(
        "[dim]Workflow: init -> validate -> generate -> "
        "batch | stream | compare | train | graph | submit[/dim]"
    ),
)

console = Console()

ConfigArg = Annotated[
    Path | None,
    typer.Argument(
        help=f"Path to configuration YAML file (default: ./{DEFAULT_CONFIG})",
    ),
]
FileOption = Annotated[
    Path | None,
    typer.Option(
        "--file",
        "-f",
        help="Path to configuration YAML file (alternative to positional argument)",
    ),
]


# =============================================================================
# Helper Functions
# =============================================================================


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging before any command runs."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def resolve_config_path(
    config_file: Path | None,
    file_option: Path | None = None,
) -> Path:
    """Resolve config file path, using ./sparklab.yaml as default.

    Supports both positional argument and --file/-f option.
    If both are provided, --file takes precedence.
    """
    path = file_option or config_file
    if path is not None:
        return path

    default = Path(DEFAULT_CONFIG)
    if default.exists():
        return default

    console.print(f"[red]ERROR[/red] No config file specified and ./{DEFAULT_CONFIG} not found")
    console.print("[blue]INFO[/blue] Create one with: sparklab init")
    raise typer.Exit(1)


def load_config_or_exit(config_file: Path) -> SparkLabConfig:
    """Load config, printing any error and exiting 1."""
    try:
        return load_config(config_file)
    except ConfigFileNotFoundError as e:
        print_error(f"File not found: {e}")
        raise typer.Exit(1)  # noqa: B904
    except ConfigValidationError as e:
        print_error("Config validation failed:")
        for err in e.errors:
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  [red]*[/red] {loc}: {err['msg']}")
        raise typer.Exit(1)  # noqa: B904
    except ConfigError as e:
        print_error(f"Config error: {e}")
        raise typer.Exit(1)  # noqa: B904


def get_journal(output_dir: str = DEFAULT_OUTPUT_DIR) -> Journal:
    """Get or create the global journal instance."""
    global _journal
    if _journal is None:
        _journal = Journal(Path(output_dir) / "journal")
    return _journal


def journal_open(config_path: Path | None, cfg: SparkLabConfig) -> Journal:
    """Open journal session for a command that loads config."""
    j = get_journal(cfg.output_dir)
    _journal_safe(j.open_session, config_path=config_path, config_name=cfg.name)
    return j


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]OK[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]ERROR[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]WARN[/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]...[/blue] {message}")


_journal_warned = False


def _journal_safe(fn, *args, **kwargs) -> None:
    """Call a journal function, logging failures instead of silently dropping them."""
    global _journal_warned
    try:
        fn(*args, **kwargs)
    except Exception:
        if not _journal_warned:
            logger.debug("Journal write failed (further warnings suppressed)", exc_info=True)
            _journal_warned = True


def _fail(j: Journal, message: str, hint: str = "") -> None:
    """Print *message*, close the journal command as failed, and exit 1."""
    print_error(message)
    if hint:
        print_info(hint)
    _journal_safe(j.end_command, success=False, message=message)
    raise typer.Exit(1)


def _save_metrics(
    cfg: SparkLabConfig,
    j: Journal,
    command: str,
    jobs: list[JobMetrics] | None = None,
    streaming: list[StreamingJobMetrics] | None = None,
) -> str:
    """Persist one run's metrics under ``<output_dir>/runs`` and return its ID."""
    collector = MetricsCollector()
    collector.start_run(cfg.name, command)
    for m in jobs or []:
        collector.record_job(m)
    for s in streaming or []:
        collector.record_streaming(s)
    run = collector.end_run(success=True)
    assert run is not None

    storage = MetricsStorage(Path(cfg.output_dir) / "runs")
    path = storage.save_run(run)
    _journal_safe(
        j.record,
        EventType.METRICS_SAVED,
        message=f"Metrics saved for run {run.run_id}",
        details={"run_id": run.run_id, "path": str(path)},
    )
    return run.run_id


def _start_spark(cfg: SparkLabConfig, j: Journal, suffix: str):
    """Build the SparkSession or exit 1 with a hint."""
    from sparklab.spark.session import SparkSessionError, build_spark_session

    with console.status(f"Starting Spark ({cfg.spark.master})..."):
        try:
            return build_spark_session(cfg, suffix)
        except SparkSessionError as e:
            _fail(j, str(e), "Is a Java runtime installed and on PATH? Run: sparklab validate")


def _outputs_table(title: str, rows: dict[str, Any]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"sparklab version {__version__}")


@app.command()
def init(
    output: Annotated[
        Path,
        typer.Option(
            "--output",
            "-o",
            help="Output file path for configuration",
        ),
    ] = Path(DEFAULT_CONFIG),
    name: Annotated[
        str,
        typer.Option(
            "--name",
            "-n",
            help="Lab name",
        ),
    ] = "my-lab",
    master: Annotated[
        str,
        typer.Option(
            "--master",
            help="Spark master URL (default: local[*])",
        ),
    ] = "",
    data_root: Annotated[
        str,
        typer.Option(
            "--data-root",
            help="Directory for the landing zone and job outputs",
        ),
    ] = "",
    no_comments: Annotated[
        bool,
        typer.Option(
            "--no-comments",
            help="Write every setting explicitly instead of the commented template",
        ),
    ] = False,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            help="Overwrite existing file",
        ),
    ] = False,
) -> None:
    """Generate a starter configuration file.

    The default template shows every option commented-out with its
    default value; only ``name`` is set. Pass --master or --data-root to
    fill those in.
    """
    if output.exists() and not force:
        print_error(f"File already exists: {output}")
        print_info("Use --force to overwrite")
        raise typer.Exit(1)

    if no_comments:
        save_config(generate_default_config(name, master=master, data_root=data_root), output)
    else:
        content = generate_example_config_yaml(name)
        overrides = []
        if master:
            overrides.append(f"spark:\n  master: {master}")
        if data_root:
            overrides.append(f"data:\n  root: {data_root}")
        if overrides:
            content = content.replace(
                f"name: {name}\n", f"name: {name}\n\n" + "\n".join(overrides) + "\n", 1
            )
        output.write_text(content)

    print_success(f"Created configuration file: {output}")
    print_info("Then run: sparklab validate")


@app.command()
def validate(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
) -> None:
    """Validate configuration and check the local Spark runtime.

    Checks:
    - YAML syntax and schema
    - A Java runtime is available (JAVA_HOME or java on PATH)
    - pyspark is importable
    - The data root is writable
    - Whether the landing zone already holds generated data
    """
    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    print_success(f"Configuration valid: {cfg.name}")

    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.VALIDATE)
    _journal_safe(
        j.record,
        EventType.CONFIG_LOADED,
        message=f"Loaded {config_file}",
        details={"master": cfg.spark.master, "data_root": cfg.data.root},
    )

    problems = 0

    java_home = os.environ.get("JAVA_HOME")
    java = shutil.which("java")
    if java_home or java:
        print_success(f"Java runtime: {java_home or java}")
    elif cfg.spark.master.startswith("local"):
        print_error("No Java runtime found (set JAVA_HOME or put java on PATH)")
        problems += 1
    else:
        print_warning("No local Java runtime; jobs must run through 'sparklab submit'")

    try:
        import pyspark

        print_success(f"pyspark {pyspark.__version__}")
    except ImportError:
        print_error("pyspark is not installed")
        problems += 1

    root = Path(cfg.data.root)
    try:
        root.mkdir(parents=True, exist_ok=True)
        marker = root / ".sparklab-write-test"
        marker.write_text("ok")
        marker.unlink()
        print_success(f"Data root writable: {root}")
    except OSError as e:
        print_error(f"Data root not writable: {root} ({e})")
        problems += 1

    events = cfg.get_events_path()
    n_files = len([p for p in events.glob("*") if p.is_file()]) if events.exists() else 0
    if n_files:
        print_success(f"Landing zone: {n_files} event file(s) in {events}")
    else:
        print_info(f"Landing zone empty; run: sparklab generate {config_file}")

    if problems:
        _fail(j, f"{problems} problem(s) found")
    _journal_safe(j.end_command, success=True)


@app.command()
def generate(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
    rows: Annotated[
        int | None,
        typer.Option("--rows", "-r", help="Override datagen.rows"),
    ] = None,
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite", help="Replace existing landing-zone files"),
    ] = False,
) -> None:
    """Generate synthetic customer events and referral edges.

    Event files are written in event-time order so the streaming job
    sees time advance file by file.
    """
    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

    from sparklab.datagen import DataGenerator

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    if rows is not None:
        cfg.datagen.rows = rows

    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.GENERATE, {"rows": cfg.datagen.rows})
    _journal_safe(
        j.record,
        EventType.GENERATE_START,
        message=f"Generating {cfg.datagen.rows} rows",
        details=cfg.datagen.model_dump(),
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total} files"),
        TimeElapsedColumn(),
        console=console,
    ) as progress_bar:
        task = progress_bar.add_task("Generating data", total=cfg.datagen.files)

        def on_progress(done: int, total: int) -> None:
            progress_bar.update(task, completed=done, total=total)

        try:
            result = DataGenerator(cfg).generate(overwrite=overwrite, progress_callback=on_progress)
        except FileExistsError as e:
            progress_bar.stop()
            _fail(j, str(e), "Use --overwrite to replace existing data")

    _journal_safe(
        j.record,
        EventType.GENERATE_COMPLETE,
        message="Data generation complete",
        success=True,
        details={
            "rows": result.rows,
            "files": len(result.event_files),
            "edges": result.edges,
            "elapsed_seconds": result.elapsed_seconds,
        },
    )
    _journal_safe(j.end_command, success=True)

    console.print(
        Panel(
            f"[green]Data generation complete![/green]\n\n"
            f"Events: {result.rows:,} rows in {len(result.event_files)} files\n"
            f"Referral edges: {result.edges:,}\n"
            f"Elapsed: {result.elapsed_seconds:.1f}s\n\n"
            f"Landing zone: {cfg.get_events_path()}",
            title="Generation Complete",
            expand=False,
        )
    )


@app.command()
def batch(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
    verify_only: Annotated[
        bool,
        typer.Option("--verify", help="Only check the landing zone schema and contents"),
    ] = False,
) -> None:
    """Run the batch job over the whole landing zone.

    Writes enriched rows, daily KPIs, event-time window counts and the
    Spark SQL reports.
    """
    from sparklab.spark.batch import BatchJob, summarize
    from sparklab.spark.job import PipelineError

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.BATCH, {"verify_only": verify_only})

    spark = _start_spark(cfg, j, "batch")
    try:
        job = BatchJob(spark, cfg)
        if verify_only:
            report = job.verify()
            console.print(_outputs_table("Landing zone", summarize(report)))
            _journal_safe(j.end_command, success=True, message="Verified landing zone")
            return

        _journal_safe(j.record, EventType.BATCH_START, message="Batch job started")
        with console.status("Running batch job..."):
            metrics = job.run()
    except PipelineError as e:
        _fail(j, str(e))
    except Exception as e:
        logger.debug("Unhandled Spark failure", exc_info=True)
        _fail(j, f"Spark job failed ({type(e).__name__}): {e}")
    finally:
        spark.stop()

    run_id = _save_metrics(cfg, j, "batch", jobs=[metrics])
    _journal_safe(
        j.record,
        EventType.BATCH_COMPLETE,
        message=f"Batch wrote {metrics.output_rows} enriched rows",
        success=True,
        details=metrics.to_dict(),
    )
    _journal_safe(j.end_command, success=True)

    rows: dict[str, Any] = {
        "Input rows": f"{metrics.input_rows:,}",
        "Enriched rows": f"{metrics.output_rows:,}",
        "Elapsed": f"{metrics.elapsed_seconds:.1f}s",
        "Throughput": f"{metrics.throughput_rows_per_second:,.0f} rows/s",
    }
    rows.update(metrics.outputs)
    console.print(_outputs_table(f"Batch run {run_id}", rows))


@app.command()
def stream(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
    trigger: Annotated[
        TriggerType | None,
        typer.Option("--trigger", help="Override streaming.trigger"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Stop after this many seconds"),
    ] = None,
    reset: Annotated[
        bool,
        typer.Option("--reset", help="Delete checkpoints and stream output first"),
    ] = False,
    until_idle: Annotated[
        bool,
        typer.Option(
            "--until-idle",
            help="Stop once every query has drained the landing zone (processing_time)",
        ),
    ] = False,
) -> None:
    """Run the structured streaming job over the landing zone.

    With the default ``available_now`` trigger the job drains every file
    not yet committed to the checkpoint and exits. Re-running without
    --reset processes only files that arrived since.
    """
    from sparklab.spark.job import PipelineError
    from sparklab.spark.streaming import StreamingJob

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(
        j.begin_command,
        CommandName.STREAM,
        {
            "trigger": (trigger or cfg.streaming.trigger).value,
            "reset": reset,
            "until_idle": until_idle,
        },
    )

    spark = _start_spark(cfg, j, "stream")
    try:
        job = StreamingJob(spark, cfg, trigger=trigger)
        if reset:
            job.reset_checkpoint()
            print_info("Checkpoints reset")
        _journal_safe(
            j.record,
            EventType.STREAMING_START,
            message=f"Streaming started ({job.trigger.value})",
            details={"checkpoint": str(job.checkpoint_path)},
        )
        if job.trigger == TriggerType.PROCESSING_TIME:
            stop_hint = "stops when idle" if until_idle else "press Ctrl-C to stop"
            print_info(f"Micro-batch every {cfg.streaming.trigger_interval}; {stop_hint}")
        with console.status("Streaming..."):
            metrics = job.run(timeout, until_idle=until_idle)
    except PipelineError as e:
        _fail(j, str(e))
    except Exception as e:
        logger.debug("Unhandled Spark failure", exc_info=True)
        _fail(j, f"Spark job failed ({type(e).__name__}): {e}")
    finally:
        spark.stop()

    run_id = _save_metrics(cfg, j, "stream", streaming=[metrics])
    _journal_safe(
        j.record,
        EventType.STREAMING_STOP,
        message=f"Streaming stopped after {metrics.batches} batches",
        success=metrics.success,
        details=metrics.to_dict(),
    )
    if not metrics.success:
        _fail(j, metrics.error_message or "Streaming query failed")
    _journal_safe(j.end_command, success=True)

    console.print(
        _outputs_table(
            f"Streaming run {run_id}",
            {
                "Trigger": metrics.trigger,
                "Micro-batches": metrics.batches,
                "Empty batches": metrics.empty_batches,
                "Rows processed": f"{metrics.rows_processed:,}",
                "Progress events": metrics.progress_events,
                "Slowest trigger": f"{metrics.max_batch_duration_ms} ms",
                "Elapsed": f"{metrics.elapsed_seconds:.1f}s",
                "Checkpoint": metrics.checkpoint_location,
                **metrics.outputs,
            },
        )
    )


@app.command()
def compare(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Streaming timeout in seconds"),
    ] = None,
) -> None:
    """Run both paradigms on the same input and compare their windows.

    Exits 1 when any finalized window differs.
    """
    from sparklab.spark.compare import compare_paradigms
    from sparklab.spark.job import PipelineError

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.COMPARE)

    spark = _start_spark(cfg, j, "compare")
    try:
        with console.status("Running batch and streaming side by side..."):
            result = compare_paradigms(spark, cfg, timeout)
    except PipelineError as e:
        _fail(j, str(e))
    except Exception as e:
        logger.debug("Unhandled Spark failure", exc_info=True)
        _fail(j, f"Spark job failed ({type(e).__name__}): {e}")
    finally:
        spark.stop()

    if result.streaming is not None:
        _save_metrics(cfg, j, "compare", streaming=[result.streaming])
    _journal_safe(
        j.record,
        EventType.COMPARE_COMPLETE,
        message="Paradigms agree" if result.matches else "Paradigms disagree",
        success=result.matches,
        details=result.to_dict(),
    )

    table = Table(title="Batch vs. streaming", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Batch", justify="right")
    table.add_column("Streaming", justify="right")
    table.add_row(
        "Enriched rows", f"{result.batch_enriched_rows:,}", f"{result.stream_enriched_rows:,}"
    )
    table.add_row("Finalized windows", str(result.batch_rows), str(result.stream_rows))
    table.add_row("Missing windows", str(result.missing_in_batch), str(result.missing_in_stream))
    console.print(table)
    console.print(f"  Windows compared up to: {result.cutoff or '-'}")
    console.print(f"  Mismatched windows: {result.mismatched}")

    for sample in result.samples:
        console.print(f"  [red]*[/red] {sample}")

    if not result.matches:
        _fail(j, "Batch and streaming results differ")
    print_success("Batch and streaming results agree")
    _journal_safe(j.end_command, success=True)


@app.command()
def train(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
) -> None:
    """Train the MLlib churn model on enriched events and save it."""
    from sparklab.spark.job import PipelineError
    from sparklab.spark.mllib import ChurnModelTrainer

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.TRAIN)

    spark = _start_spark(cfg, j, "train")
    try:
        with console.status("Training logistic regression..."):
            metrics = ChurnModelTrainer(spark, cfg).run()
    except PipelineError as e:
        _fail(j, str(e))
    except Exception as e:
        logger.debug("Unhandled Spark failure", exc_info=True)
        _fail(j, f"Spark job failed ({type(e).__name__}): {e}")
    finally:
        spark.stop()

    run_id = _save_metrics(cfg, j, "train", jobs=[metrics])
    _journal_safe(
        j.record,
        EventType.TRAIN_COMPLETE,
        message="Model trained",
        success=True,
        details=metrics.to_dict(),
    )
    _journal_safe(j.end_command, success=True)

    rows = dict(metrics.extra)
    rows["Model"] = metrics.outputs.get("model", "")
    rows["Elapsed"] = f"{metrics.elapsed_seconds:.1f}s"
    console.print(_outputs_table(f"Training run {run_id}", rows))


@app.command()
def graph(
    config_file: ConfigArg = None,
    file_option: FileOption = None,
) -> None:
    """Analyse the referral graph: degrees, PageRank, components, triangles."""
    from sparklab.spark.graph import run_graph_job
    from sparklab.spark.job import PipelineError

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.GRAPH)

    spark = _start_spark(cfg, j, "graph")
    try:
        with console.status("Running graph algorithms..."):
            metrics = run_graph_job(spark, cfg)
    except PipelineError as e:
        _fail(j, str(e))
    except Exception as e:
        logger.debug("Unhandled Spark failure", exc_info=True)
        _fail(j, f"Spark job failed ({type(e).__name__}): {e}")
    finally:
        spark.stop()

    run_id = _save_metrics(cfg, j, "graph", jobs=[metrics])
    _journal_safe(
        j.record,
        EventType.GRAPH_COMPLETE,
        message=f"{metrics.extra.get('components', 0)} components",
        success=True,
        details=metrics.to_dict(),
    )
    _journal_safe(j.end_command, success=True)

    console.print(
        _outputs_table(
            f"Graph run {run_id}",
            {
                "Vertices": metrics.extra.get("vertices", 0),
                "Edges": metrics.input_rows,
                "Components": metrics.extra.get("components", 0),
                "Output": metrics.outputs.get("vertices", ""),
                "Elapsed": f"{metrics.elapsed_seconds:.1f}s",
            },
        )
    )
    top = Table(title="Top PageRank", show_header=True, header_style="bold")
    top.add_column("Customer", style="cyan")
    top.add_column("Rank", justify="right")
    for entry in metrics.extra.get("top_pagerank", []):
        top.add_row(str(entry["id"]), f"{entry['rank']:.6f}")
    console.print(top)


@app.command()
def submit(
    job: Annotated[
        str,
        typer.Argument(help="Job to run: batch, stream, compare, train or graph"),
    ],
    config_file: ConfigArg = None,
    file_option: FileOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the spark-submit command without running it"),
    ] = False,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Kill spark-submit after this many seconds"),
    ] = None,
) -> None:
    """Run a job through spark-submit against ``spark.master``."""
    from sparklab.spark.submit import SubmitError, build_submit_command, format_command, run_submit

    config_file = resolve_config_path(config_file, file_option)
    cfg = load_config_or_exit(config_file)
    j = journal_open(config_file, cfg)
    _journal_safe(j.begin_command, CommandName.SUBMIT, {"job": job, "dry_run": dry_run})

    try:
        cmd = build_submit_command(cfg, job, config_file.resolve())
    except ValueError as e:
        _fail(j, str(e))

    console.print(f"[dim]{format_command(cmd)}[/dim]")
    _journal_safe(
        j.record,
        EventType.SUBMIT,
        message=f"spark-submit {job}",
        details={"command": cmd, "dry_run": dry_run},
    )
    if dry_run:
        _journal_safe(j.end_command, success=True, message="Dry run")
        return

    try:
        with console.status(f"spark-submit {job} on {cfg.spark.master}..."):
            result = run_submit(cmd, timeout=timeout)
    except SubmitError as e:
        _fail(j, str(e))

    if result.stdout:
        console.print(result.stdout.rstrip())
    print_success(f"{job} finished")
    _journal_safe(j.end_command, success=True)


@app.command()
def journal(
    session_id: Annotated[
        str | None,
        typer.Option(
            "--session",
            "-s",
            help="Show events for a specific session",
        ),
    ] = None,
    last: Annotated[
        int,
        typer.Option(
            "--last",
            "-n",
            help="Show last N sessions",
        ),
    ] = 10,
    journal_dir: Annotated[
        Path,
        typer.Option(
            "--dir",
            help="Journal directory",
        ),
    ] = Path(DEFAULT_OUTPUT_DIR) / "journal",
    purge: Annotated[
        bool,
        typer.Option("--purge", help="Delete every session file, open or archived"),
    ] = False,
) -> None:
    """View command and execution provenance journal.

    Examples:

        sparklab journal

        sparklab journal --session 20260129-120000-a1b2c3
    """
    j = Journal(journal_dir)

    if purge:
        removed = j.purge()
        print_success(f"Removed {removed} session file(s) from {journal_dir}")
        return

    if session_id:
        events = j.load_session_events(session_id)
        if not events:
            print_warning(f"No events found for session {session_id}")
            return

        console.print(Panel(f"Session: [bold]{session_id}[/bold]", expand=False))
        table = Table()
        table.add_column("Time", style="dim", width=19)
        table.add_column("Event", style="cyan")
        table.add_column("Command", style="bold")
        table.add_column("Message")
        table.add_column("Status", justify="center")

        for event in events:
            ts = event.get("timestamp", "")[:19]
            etype = event.get("event_type", "")
            cmd = event.get("command", "") or ""
            msg = event.get("message", "")
            success = event.get("success")
            status = ""
            if success is True:
                status = "[green]OK[/green]"
            elif success is False:
                status = "[red]FAIL[/red]"
            table.add_row(ts, etype, cmd, msg, status)

        console.print(table)
    else:
        sessions = j.list_sessions() if journal_dir.exists() else []
        if not sessions:
            print_warning(f"No journal sessions found in {journal_dir}")
            return

        console.print(Panel("sparklab Journal Sessions", expand=False))
        table = Table()
        table.add_column("Session ID", style="cyan")
        table.add_column("Config")
        table.add_column("Started", style="dim")
        table.add_column("Events", justify="right")
        table.add_column("Commands")
        table.add_column("Status")

        for s in sessions[:last]:
            status = "[green]closed[/green]" if s["closed"] else "[yellow]active[/yellow]"
            cmds = ", ".join(s.get("commands", []))
            table.add_row(
                s["session_id"],
                s.get("config_name", ""),
                s.get("started", "")[:19],
                str(s.get("event_count", 0)),
                cmds,
                status,
            )

        console.print(table)


@app.command()
def results(
    metrics_dir: Annotated[
        Path,
        typer.Option(
            "--metrics",
            "-m",
            help="Directory containing run subdirectories",
        ),
    ] = Path(DEFAULT_OUTPUT_DIR) / "runs",
    run_id: Annotated[
        str | None,
        typer.Option(
            "--run",
            "-r",
            help="Show one run in full",
        ),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            help="Output format: table, json",
        ),
    ] = "table",
) -> None:
    """List saved runs, or show one run's metrics."""
    storage = MetricsStorage(metrics_dir)

    if run_id:
        data = storage.load_run(run_id)
        if data is None:
            print_error(f"No run found with ID {run_id}")
            raise typer.Exit(1)
        if output_format == "json":
            console.print_json(json.dumps(data, default=str))
            return

        console.print(
            Panel(
                f"[bold]Run:[/bold] {data['run_id']} ({data['command']})\n"
                f"Config: {data['config_name']} | "
                f"Total: {data['total_elapsed_seconds']:.1f}s",
                expand=False,
            )
        )
        table = Table(show_header=True, header_style="bold")
        table.add_column("Job", style="cyan")
        table.add_column("Time(s)", justify="right")
        table.add_column("In Rows", justify="right")
        table.add_column("Out Rows", justify="right")
        table.add_column("Rows/s", justify="right")
        table.add_column("Status")
        for job in data.get("jobs", []):
            table.add_row(
                job["job_name"],
                f"{job['elapsed_seconds']:.1f}",
                f"{job['input_rows']:,}" if job["input_rows"] > 0 else "-",
                f"{job['output_rows']:,}" if job["output_rows"] > 0 else "-",
                f"{job['throughput_rows_per_second']:.0f}"
                if job["throughput_rows_per_second"] > 0
                else "-",
                "[green]OK[/green]" if job["success"] else "[red]FAIL[/red]",
            )
        for s in data.get("streaming", []):
            table.add_row(
                f"{s['job_name']} ({s['trigger']})",
                f"{s['elapsed_seconds']:.1f}",
                f"{s['rows_processed']:,}",
                "-",
                "-",
                "[green]OK[/green]" if s["success"] else "[red]FAIL[/red]",
            )
        console.print(table)
        return

    runs = storage.list_runs()
    if output_format == "json":
        console.print_json(json.dumps(runs, default=str))
        return
    if not runs:
        print_warning(f"No runs found in {metrics_dir}")
        return

    table = Table(title="sparklab runs", show_header=True, header_style="bold")
    table.add_column("Run ID", style="cyan")
    table.add_column("Command")
    table.add_column("Config")
    table.add_column("Started", style="dim")
    table.add_column("Time(s)", justify="right")
    table.add_column("Status")
    for r in runs:
        table.add_row(
            r["run_id"],
            r["command"],
            r["config_name"],
            r["start_time"][:19],
            f"{r['total_elapsed_seconds']:.1f}",
            "[green]OK[/green]" if r["success"] else "[red]FAIL[/red]",
        )
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
