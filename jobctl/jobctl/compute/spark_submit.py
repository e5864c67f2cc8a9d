"""``spark-submit`` compute engine.

Builds the ``spark-submit`` command line from a job's :class:`ComputeSpec`,
runs it as a subprocess and streams its combined stdout/stderr into the
job log line by line.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from jobctl.models.job_definition import ComputeSpec

logger = logging.getLogger(__name__)

# Exit status a shell reports when the executable cannot be found.
COMMAND_NOT_FOUND_EXIT_CODE = 127

_READ_CHUNK = 64 * 1024
# A line longer than this is logged in pieces.
_MAX_LINE = 1024 * 1024


def normalize_exit_code(returncode: int) -> int:
    """Map a subprocess return code to a process exit status.

    A negative return code ``-N`` means the child was killed by signal ``N``,
    which a shell reports as ``128 + N`` (``SIGTERM`` -> 143).
    """
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class SparkSubmitEngine:
    """Run the compute step through ``spark-submit``.

    Parameters
    ----------
    spark_submit_path:
        Executable to invoke.  Resolved under ``spark_home/bin`` when a
        bare name is given together with *spark_home*.
    spark_home:
        Optional Spark installation directory, exported as ``SPARK_HOME``.
    command_prefix:
        Replaces the ``spark-submit`` executable entirely.  Used to run a
        wrapper script (or, in tests, a stand-in process).
    """

    def __init__(
        self,
        spark_submit_path: str = "spark-submit",
        spark_home: Path | None = None,
        command_prefix: Sequence[str] | None = None,
    ) -> None:
        self._spark_home = spark_home
        if command_prefix is not None:
            self._executable = list(command_prefix)
        elif spark_home is not None and os.sep not in spark_submit_path:
            self._executable = [str(spark_home / "bin" / spark_submit_path)]
        else:
            self._executable = [spark_submit_path]

    def build_command(
        self,
        job_id: str,
        run_date: date,
        source_locator: str,
        target_locator: str,
        config: ComputeSpec,
    ) -> list[str]:
        """Return the full argument vector for one run."""
        cmd = [*self._executable, "--master", config.master, "--deploy-mode", config.deploy_mode]
        if config.driver_memory:
            cmd += ["--driver-memory", config.driver_memory]
        if config.executor_memory:
            cmd += ["--executor-memory", config.executor_memory]
        if config.executor_cores is not None:
            cmd += ["--executor-cores", str(config.executor_cores)]
        if config.num_executors is not None:
            cmd += ["--num-executors", str(config.num_executors)]
        for key in sorted(config.conf):
            cmd += ["--conf", f"{key}={config.conf[key]}"]
        if config.packages:
            cmd += ["--packages", ",".join(config.packages)]
        if config.main_class:
            cmd += ["--class", config.main_class]

        cmd.append(config.application)
        cmd += ["--job-id", job_id, "--process-date", run_date.isoformat()]
        if source_locator:
            cmd += [config.source_flag, source_locator]
        if target_locator:
            cmd += [config.target_flag, target_locator]
        if config.config_file:
            cmd += ["--config-file", config.config_file]
        cmd += ["--log-level", config.log_level]
        cmd += config.args
        return cmd

    async def execute(
        self,
        job_id: str,
        run_date: date,
        source_locator: str,
        target_locator: str,
        config: ComputeSpec,
    ) -> int:
        cmd = self.build_command(job_id, run_date, source_locator, target_locator, config)
        env = dict(os.environ)
        if self._spark_home is not None:
            env["SPARK_HOME"] = str(self._spark_home)

        logger.info("Executing compute step: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except FileNotFoundError:
            logger.error("Compute executable not found: %s", cmd[0])
            return COMMAND_NOT_FOUND_EXIT_CODE

        try:
            assert process.stdout is not None
            await _log_output(process.stdout)
            returncode = await process.wait()
        finally:
            # Ensure subprocess cleanup if we are cancelled mid-stream.
            if process.returncode is None:
                process.terminate()
                await process.wait()

        exit_code = normalize_exit_code(returncode)
        if exit_code != 0:
            logger.error("Compute step exited with code %d", exit_code)
        else:
            logger.info("Compute step completed successfully")
        return exit_code


def _log_line(raw: bytes) -> None:
    line = raw.decode("utf-8", errors="replace").rstrip()
    if line:
        logger.info("[spark] %s", line)


async def _log_output(stream: asyncio.StreamReader) -> None:
    """Log *stream* line by line until EOF.

    Reads fixed-size chunks and splits lines itself, so an arbitrarily long
    line never hits the ``StreamReader`` line limit.
    """
    pending = b""
    while chunk := await stream.read(_READ_CHUNK):
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for raw in lines:
            _log_line(raw)
        while len(pending) > _MAX_LINE:
            _log_line(pending[:_MAX_LINE])
            pending = pending[_MAX_LINE:]
    if pending:
        _log_line(pending)
