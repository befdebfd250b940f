"""spark-submit wrapper for running sparklab jobs against a cluster master."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .session import session_conf

if TYPE_CHECKING:
    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)

ENTRY_SCRIPT = Path(__file__).with_name("entry.py")

SUBMIT_JOBS = ("batch", "stream", "compare", "train", "graph")

# Lines of stderr kept in SubmitError messages
STDERR_TAIL_LINES = 20


class SubmitError(Exception):
    """Raised when spark-submit cannot be run or exits non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class SubmitResult:
    command: list[str]
    returncode: int
    stdout: str = ""
    dry_run: bool = False


def build_submit_command(
    config: SparkLabConfig,
    job: str,
    config_path: str | Path,
    extra_args: list[str] | None = None,
) -> list[str]:
    """Build the spark-submit argv for *job*.

    Memory and executor sizing map to their dedicated flags; every other
    session setting is passed as ``--conf key=value``.

    Raises:
        ValueError: If *job* is not one of :data:`SUBMIT_JOBS`
    """
    if job not in SUBMIT_JOBS:
        raise ValueError(f"Unknown job '{job}', expected one of: {', '.join(SUBMIT_JOBS)}")

    submit = config.submit
    cmd = [
        submit.spark_submit,
        "--master",
        config.spark.master,
        "--deploy-mode",
        submit.deploy_mode.value,
        "--name",
        f"{config.spark.app_name}-{job}",
        "--driver-memory",
        config.spark.driver_memory,
        "--executor-memory",
        submit.executor_memory,
        "--executor-cores",
        str(submit.executor_cores),
    ]
    if submit.num_executors is not None:
        cmd.extend(["--num-executors", str(submit.num_executors)])

    for key, value in session_conf(config).items():
        if key == "spark.driver.memory":
            continue
        cmd.extend(["--conf", f"{key}={value}"])

    if submit.packages:
        cmd.extend(["--packages", ",".join(submit.packages)])
    if submit.py_files:
        cmd.extend(["--py-files", ",".join(submit.py_files)])

    cmd.extend([str(ENTRY_SCRIPT), job, "--config", str(config_path)])
    if extra_args:
        cmd.extend(extra_args)
    return cmd


def format_command(cmd: list[str]) -> str:
    return shlex.join(cmd)


def run_submit(
    cmd: list[str],
    dry_run: bool = False,
    timeout: float | None = None,
) -> SubmitResult:
    """Run a spark-submit command.

    Args:
        cmd: argv from :func:`build_submit_command`
        dry_run: Log the command and return without running it
        timeout: Seconds before the process is killed

    Raises:
        SubmitError: If spark-submit is missing, times out, or exits non-zero
    """
    logger.info("spark-submit: %s", format_command(cmd))
    if dry_run:
        return SubmitResult(command=cmd, returncode=0, dry_run=True)

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise SubmitError(f"{cmd[0]} not found on PATH")  # noqa: B904
    except subprocess.TimeoutExpired:
        raise SubmitError(f"spark-submit timed out after {timeout}s")  # noqa: B904

    if result.returncode != 0:
        tail = "\n".join(result.stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
        raise SubmitError(
            f"spark-submit exited with code {result.returncode}:\n{tail}",
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return SubmitResult(command=cmd, returncode=result.returncode, stdout=result.stdout)
