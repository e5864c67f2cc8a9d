"""Rich output formatting for the jobctl CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from jobctl.controller import RunOutcome
    from jobctl.gate import GateDecision
    from jobctl.models.job_definition import JobDefinition
    from jobctl.models.run import RunRecord


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "COMPLETED": "green",
    "FAILED": "red",
    "RUNNING": "yellow",
    "PENDING": "dim",
    "NOT_FOUND": "dim red",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _fmt_time(value: object) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------


def display_outcome(console: Console, outcome: RunOutcome) -> None:
    """Render the result of a ``jobctl run`` invocation as a panel."""
    lines = [
        f"[bold]Job:[/bold]       {outcome.job_id}",
        f"[bold]Run date:[/bold]  {outcome.run_date.isoformat()}",
        f"[bold]Status:[/bold]    {_coloured_status(outcome.status.value)}",
        f"[bold]Exit code:[/bold] {outcome.exit_code}",
    ]
    if outcome.records_processed is not None:
        lines.append(f"[bold]Records:[/bold]   {outcome.records_processed}")
    if outcome.alerts_inserted:
        lines.append(f"[bold]Alerts:[/bold]    {outcome.alerts_inserted} new")
    for name, value in sorted(outcome.metrics.items()):
        lines.append(f"[bold]{name}:[/bold] {value if value is not None else '-'}")
    if outcome.failure is not None:
        lines.append(f"[bold]Failure:[/bold]   [red]{outcome.failure.message}[/red]")

    console.print(
        Panel(
            "\n".join(lines),
            title="Run Outcome",
            border_style="green" if outcome.succeeded else "red",
        )
    )


# ---------------------------------------------------------------------------
# Ledger views
# ---------------------------------------------------------------------------


def display_run_table(console: Console, records: list[RunRecord], title: str = "Runs") -> None:
    """Render ledger rows as a table."""
    if not records:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(title=title, show_lines=False, pad_edge=True, expand=False)
    table.add_column("Job", style="bold")
    table.add_column("Run Date")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Ended")
    table.add_column("Records", justify="right")
    table.add_column("Error")

    for record in records:
        table.add_row(
            record.job_id,
            record.run_date.isoformat(),
            _coloured_status(record.status.value),
            _fmt_time(record.start_time),
            _fmt_time(record.end_time),
            "-" if record.records_processed is None else str(record.records_processed),
            record.error_message or "",
        )

    console.print(table)


def display_gate_decision(console: Console, job_id: str, decision: GateDecision) -> None:
    """Render a dependency gate decision."""
    if decision.satisfied:
        console.print(
            f"[green]Dependencies satisfied for {job_id} on {decision.run_date.isoformat()}.[/green]"
        )
        return

    table = Table(
        title=f"Unmet dependencies for {job_id} on {decision.run_date.isoformat()}",
        show_lines=False,
        pad_edge=True,
        expand=False,
    )
    table.add_column("Dependency", style="bold")
    table.add_column("Status")
    for dep in decision.unmet:
        table.add_row(dep.job_id, _coloured_status(dep.status.value))
    console.print(table)


# ---------------------------------------------------------------------------
# Job definitions
# ---------------------------------------------------------------------------


def display_job_list(console: Console, jobs: list[JobDefinition]) -> None:
    """Render job definitions, in dependency order, as a table."""
    if not jobs:
        console.print("[yellow]No job definitions found.[/yellow]")
        return

    table = Table(title="Jobs", show_lines=False, pad_edge=True, expand=False)
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("Job ID", style="bold")
    table.add_column("Name")
    table.add_column("Frequency")
    table.add_column("Run Date")
    table.add_column("Depends On")

    for idx, job in enumerate(jobs, start=1):
        table.add_row(
            str(idx),
            job.job_id,
            job.job_name,
            job.frequency.value,
            job.run_date_policy.value if job.run_date_policy else "-",
            ", ".join(sorted(job.dependencies)) or "-",
        )

    console.print(table)
