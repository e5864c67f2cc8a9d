"""jobctl CLI application -- Typer-based scheduler and operator interface.

``jobctl run`` is what the external scheduler invokes once per job per
trigger; its process exit status is the controller's exit code.  The other
commands inspect the ledger and the job definitions.  Human-readable output
goes to *stderr* via Rich; ``--json`` emits machine-readable output on
*stdout*.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console

from cli.display import (
    display_gate_decision,
    display_job_list,
    display_outcome,
    display_run_table,
)

if TYPE_CHECKING:
    from jobctl.config import Settings
    from jobctl.controller import RunOutcome
    from jobctl.models.job_definition import JobDefinition

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="jobctl",
    help="jobctl - job control and dependency orchestration for ETL jobs",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_jobs_dir: Path | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    jobs_dir: Path | None = typer.Option(
        None,
        "--jobs-dir",
        help="Directory of job definition YAML files (default: JOBCTL_JOBS_DIR).",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _jobs_dir  # noqa: PLW0603
    _json_output = json_mode
    _jobs_dir = jobs_dir


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_date(value: str, label: str) -> date:
    """Parse a YYYY-MM-DD string into a :class:`date`, raising on failure."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        console.print(f"[red]Invalid {label} date '{value}': {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _settings() -> Settings:
    from jobctl.config import load_settings

    settings = load_settings()
    if _jobs_dir is not None:
        settings = settings.model_copy(update={"jobs_dir": _jobs_dir})
    return settings


def _load_job(settings: Settings, job_id: str) -> JobDefinition:
    from jobctl.loader import JobDefinitionError, get_job

    try:
        return get_job(settings.jobs_dir, job_id)
    except JobDefinitionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc


def _resolve_run_date(job: JobDefinition, run_date: str | None) -> date:
    override = _parse_date(run_date, "run") if run_date else None
    return job.resolve_run_date(date.today(), override)


def _write_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


async def _open_engine(settings: Settings) -> Any:
    """Create the store engine; SQLite tables are created on first use.

    Raises
    ------
    StorageError
        If the engine cannot be created or the local tables cannot be made.
    """
    from sqlalchemy.exc import SQLAlchemyError

    from jobctl.failures import StorageError
    from jobctl.state import create_local_tables, get_engine

    try:
        engine = get_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    except (SQLAlchemyError, OSError, ValueError) as exc:
        raise StorageError(f"Cannot open job-control store: {exc}") from exc
    if settings.database_url.startswith("sqlite"):
        try:
            await create_local_tables(engine)
        except (SQLAlchemyError, OSError) as exc:
            await engine.dispose()
            raise StorageError(f"Cannot open job-control store: {exc}") from exc
    return engine


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


async def _execute(settings: Settings, job: JobDefinition, run_date: date, dry_run: bool) -> RunOutcome:
    from jobctl.checks import SourceVolumeProbe
    from jobctl.compute import NoopComputeEngine, SparkSubmitEngine
    from jobctl.controller import LifecycleController, abort_run
    from jobctl.failures import StorageError
    from jobctl.ledger import InMemoryRunLedger, SqlRunLedger
    from jobctl.log_config import job_context
    from jobctl.notify import HttpAlertNotifier, NullNotifier
    from jobctl.postprocess import PostProcessGate

    if dry_run:
        controller = LifecycleController(
            ledger=InMemoryRunLedger(),
            compute=NoopComputeEngine(),
            notifier=NullNotifier(),
            connect_timeout=settings.connect_timeout_seconds,
        )
        dry_job = job.model_copy(update={"dependencies": frozenset()})
        return await controller.run(dry_job, run_date)

    notifier: HttpAlertNotifier | NullNotifier
    if settings.is_alerting_configured():
        notifier = HttpAlertNotifier(
            settings.alert_url,  # type: ignore[arg-type]
            timeout=settings.alert_timeout_seconds,
            max_attempts=settings.alert_max_attempts,
        )
    else:
        notifier = NullNotifier()

    try:
        engine = await _open_engine(settings)
    except StorageError as exc:
        try:
            with job_context(job.job_id, run_date):
                return await abort_run(job, run_date, exc, notifier)
        finally:
            if isinstance(notifier, HttpAlertNotifier):
                await notifier.close()

    try:
        controller = LifecycleController(
            ledger=SqlRunLedger(engine),
            compute=SparkSubmitEngine(settings.spark_submit_path, settings.spark_home),
            notifier=notifier,
            engine=engine,
            source_probe=SourceVolumeProbe(engine),
            post_processor=PostProcessGate(engine),
            connect_timeout=settings.connect_timeout_seconds,
        )
        return await controller.run(job, run_date)
    finally:
        if isinstance(notifier, HttpAlertNotifier):
            await notifier.close()
        await engine.dispose()


@app.command()
def run(
    job_id: str = typer.Argument(..., help="Job id to run."),
    run_date: str | None = typer.Option(
        None,
        "--run-date",
        help="Run date (YYYY-MM-DD); defaults to the job's run-date policy.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Use an in-memory ledger, skip dependencies and the compute step.",
    ),
) -> None:
    """Run one job for one run date; exits with the run's exit code."""
    from jobctl.log_config import configure_logging

    settings = _settings()
    job = _load_job(settings, job_id)
    resolved = _resolve_run_date(job, run_date)

    files = configure_logging(
        level=logging.DEBUG if settings.debug else logging.INFO,
        structured=settings.structured_logging,
        log_dir=settings.log_dir,
        job_name=job.job_name,
    )
    if files is not None:
        console.print(f"[dim]Logging to {files.log_file}[/dim]")

    outcome = asyncio.run(_execute(settings, job, resolved, dry_run))

    if _json_output:
        _write_json(outcome.model_dump(mode="json"))
    else:
        display_outcome(console, outcome)

    raise typer.Exit(code=outcome.exit_code)


# ---------------------------------------------------------------------------
# check-deps
# ---------------------------------------------------------------------------


@app.command("check-deps")
def check_deps(
    job_id: str = typer.Argument(..., help="Job id whose dependencies to check."),
    run_date: str | None = typer.Option(None, "--run-date", help="Run date (YYYY-MM-DD)."),
) -> None:
    """Evaluate the dependency gate only; exit 0 when satisfied, 1 otherwise."""
    from jobctl.failures import StorageError
    from jobctl.gate import DependencyGate
    from jobctl.ledger import SqlRunLedger

    settings = _settings()
    job = _load_job(settings, job_id)
    resolved = _resolve_run_date(job, run_date)

    async def _check() -> Any:
        engine = await _open_engine(settings)
        try:
            return await DependencyGate(SqlRunLedger(engine)).check(job.dependencies, resolved)
        finally:
            await engine.dispose()

    try:
        decision = asyncio.run(_check())
    except StorageError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    if _json_output:
        _write_json(
            {
                "job_id": job.job_id,
                "run_date": resolved.isoformat(),
                "satisfied": decision.satisfied,
                "unmet": [{"job_id": d.job_id, "status": d.status.value} for d in decision.unmet],
            }
        )
    else:
        display_gate_decision(console, job.job_id, decision)

    raise typer.Exit(code=0 if decision.satisfied else 1)


# ---------------------------------------------------------------------------
# status / runs
# ---------------------------------------------------------------------------


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id to look up."),
    run_date: str | None = typer.Option(None, "--run-date", help="Run date (YYYY-MM-DD)."),
) -> None:
    """Show the ledger record for one job and run date."""
    from jobctl.failures import StorageError
    from jobctl.ledger import SqlRunLedger

    settings = _settings()
    job = _load_job(settings, job_id)
    resolved = _resolve_run_date(job, run_date)

    async def _get() -> Any:
        engine = await _open_engine(settings)
        try:
            return await SqlRunLedger(engine).get(job.job_id, resolved)
        finally:
            await engine.dispose()

    try:
        record = asyncio.run(_get())
    except StorageError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    if _json_output:
        if record is None:
            _write_json({"job_id": job.job_id, "run_date": resolved.isoformat(), "status": "NOT_FOUND"})
        else:
            _write_json(record.model_dump(mode="json"))
        return

    if record is None:
        console.print(f"[dim]No run recorded for {job.job_id} on {resolved.isoformat()} (NOT_FOUND).[/dim]")
        return
    display_run_table(console, [record], title=f"{job.job_id} on {resolved.isoformat()}")


@app.command()
def runs(
    run_date: str | None = typer.Option(None, "--run-date", help="Run date (YYYY-MM-DD); defaults to today."),
) -> None:
    """List every ledger record for a run date."""
    from jobctl.failures import StorageError
    from jobctl.ledger import SqlRunLedger

    settings = _settings()
    resolved = _parse_date(run_date, "run") if run_date else date.today()

    async def _list() -> Any:
        engine = await _open_engine(settings)
        try:
            return await SqlRunLedger(engine).list_for_date(resolved)
        finally:
            await engine.dispose()

    try:
        records = asyncio.run(_list())
    except StorageError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    if _json_output:
        _write_json([r.model_dump(mode="json") for r in records])
    else:
        display_run_table(console, records, title=f"Runs for {resolved.isoformat()}")


# ---------------------------------------------------------------------------
# jobs
# ---------------------------------------------------------------------------


@app.command()
def jobs() -> None:
    """List job definitions in dependency order."""
    from jobctl.loader import JobDefinitionError, dependency_order, load_job_definitions

    settings = _settings()
    try:
        definitions = load_job_definitions(settings.jobs_dir)
    except JobDefinitionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc

    ordered = [definitions[job_id] for job_id in dependency_order(definitions)]
    if _json_output:
        _write_json(
            [
                {
                    "job_id": job.job_id,
                    "job_name": job.job_name,
                    "frequency": job.frequency.value,
                    "run_date_policy": job.run_date_policy.value if job.run_date_policy else None,
                    "dependencies": sorted(job.dependencies),
                }
                for job in ordered
            ]
        )
    else:
        display_job_list(console, ordered)


# ---------------------------------------------------------------------------
# init-db / sweep-logs
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the ledger, metric and alert tables if they do not exist."""
    from sqlalchemy.exc import SQLAlchemyError

    from jobctl.state import create_local_tables, get_engine

    settings = _settings()

    async def _init() -> None:
        engine = get_engine(settings.database_url)
        try:
            await create_local_tables(engine)
        finally:
            await engine.dispose()

    try:
        asyncio.run(_init())
    except (SQLAlchemyError, OSError) as exc:
        console.print(f"[red]Failed to initialise the database: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    console.print("[green]Tables created/verified.[/green]")


@app.command("sweep-logs")
def sweep_logs_command(
    days: int | None = typer.Option(
        None,
        "--days",
        min=1,
        help="Retention in days (default: JOBCTL_LOG_RETENTION_DAYS).",
    ),
    job_name: str | None = typer.Option(None, "--job-name", help="Only sweep <job_name>_*.log files."),
) -> None:
    """Delete log files older than the retention window."""
    from jobctl.retention import sweep_logs

    settings = _settings()
    retention = days if days is not None else settings.log_retention_days
    deleted = sweep_logs(settings.log_dir, job_name=job_name, retention_days=retention)

    if _json_output:
        _write_json({"deleted": [str(p) for p in deleted]})
    else:
        console.print(f"Deleted {len(deleted)} log file(s) older than {retention} days from {settings.log_dir}.")
