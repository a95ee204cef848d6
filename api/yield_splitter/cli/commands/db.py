"""
Database CLI Commands

Commands for the DuckDB persistence layer:
- init: Initialize database schema
- validate: Validate schema against Pydantic models
- runs: List persisted scenario runs
- cycles: Show upkeep cycles of a run
- events: Show ledger events of a run
- checkpoints: List checkpoints of a run
"""

from __future__ import annotations

import json
from typing import Annotated, Optional

import duckdb
import typer
from rich.console import Console
from rich.table import Table

from yield_splitter.cli.output import format_amount, output_json
from yield_splitter.persistence.checkpoint import CheckpointManager
from yield_splitter.persistence.connection import DatabaseManager
from yield_splitter.persistence.queries import get_events, get_upkeep_cycles, list_runs

db_app = typer.Typer(help="Database management commands")
console = Console()

DbPath = Annotated[str, typer.Option("--db-path", "-d", help="Path to database file")]
AsJson = Annotated[bool, typer.Option("--json", help="Output JSON to stdout")]


def _open(db_path: str) -> DatabaseManager:
    manager = DatabaseManager(db_path)
    if not manager.is_initialized():
        manager.close()
        console.print(f"[red]✗ Database {db_path} is not initialized[/red]")
        console.print("[yellow]Run 'yield-split db init' first[/yellow]")
        raise typer.Exit(code=1)
    return manager


@db_app.command("init")
def db_init(
    db_path: DbPath = "ledger.db",
    force: Annotated[
        bool, typer.Option("--force", help="Drop and recreate managed tables")
    ] = False,
) -> None:
    """Initialize database schema from Pydantic models."""
    try:
        console.print(f"[yellow]Initializing database at {db_path}...[/yellow]")
        with DatabaseManager(db_path) as manager:
            manager.initialize_schema(force_recreate=force)
        console.print(f"[green]✓ Database initialized at {db_path}[/green]")
    except duckdb.Error as e:
        console.print(f"[red]✗ Error initializing database: {e}[/red]")
        raise typer.Exit(code=1)


@db_app.command("validate")
def db_validate(db_path: DbPath = "ledger.db") -> None:
    """Validate database schema against Pydantic models."""
    with _open(db_path) as manager:
        if manager.validate_schema():
            console.print("[green]✓ Schema validation passed[/green]")
            return
    console.print("[red]✗ Schema validation failed[/red]")
    console.print("[yellow]Run 'yield-split db init --force' to recreate the schema[/yellow]")
    raise typer.Exit(code=1)


@db_app.command("runs")
def db_runs(db_path: DbPath = "ledger.db", as_json: AsJson = False) -> None:
    """List persisted scenario runs."""
    with _open(db_path) as manager:
        df = list_runs(manager.conn)

    if as_json:
        output_json(df.to_dicts())
        return
    if df.is_empty():
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(title="Scenario Runs")
    table.add_column("Run ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Cycles", justify="right")
    table.add_column("Started")
    for row in df.iter_rows(named=True):
        status_style = {"completed": "green", "failed": "red"}.get(row["status"], "yellow")
        table.add_row(
            row["run_id"],
            row["name"],
            f"[{status_style}]{row['status']}[/{status_style}]",
            str(row["num_steps"]),
            str(row["num_cycles"]),
            str(row["started_at"]),
        )
    console.print(table)


@db_app.command("cycles")
def db_cycles(
    run_id: Annotated[str, typer.Argument(help="Run identifier")],
    db_path: DbPath = "ledger.db",
    as_json: AsJson = False,
) -> None:
    """Show upkeep cycles of a run."""
    with _open(db_path) as manager:
        df = get_upkeep_cycles(manager.conn, run_id)

    if as_json:
        output_json(df.to_dicts())
        return
    if df.is_empty():
        console.print(f"[yellow]No upkeep cycles for {run_id}[/yellow]")
        return

    table = Table(title=f"Upkeep Cycles ({run_id})")
    table.add_column("Cycle", justify="right", style="cyan")
    table.add_column("Time", justify="right")
    table.add_column("Eligible", justify="right")
    table.add_column("Yield", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Proceeds", justify="right")
    table.add_column("Pushed", justify="right")
    table.add_column("Refused", justify="right")
    for row in df.iter_rows(named=True):
        table.add_row(
            str(row["cycle"]),
            str(row["timestamp"]),
            str(row["eligible_count"]),
            format_amount(int(row["total_yield"])),
            format_amount(int(row["fee"])),
            format_amount(int(row["proceeds"])),
            str(row["pushed_count"]),
            str(row["failed_count"]),
        )
    console.print(table)


@db_app.command("events")
def db_events(
    run_id: Annotated[str, typer.Argument(help="Run identifier")],
    db_path: DbPath = "ledger.db",
    event_type: Annotated[
        Optional[str], typer.Option("--type", "-t", help="Only events of this type")
    ] = None,
    deposit_id: Annotated[
        Optional[int], typer.Option("--deposit", help="Only events of this deposit")
    ] = None,
    as_json: AsJson = False,
) -> None:
    """Show ledger events of a run."""
    with _open(db_path) as manager:
        df = get_events(manager.conn, run_id, event_type=event_type, deposit_id=deposit_id)

    if as_json:
        rows = df.to_dicts()
        for row in rows:
            row["event_data"] = json.loads(row.pop("event_data_json"))
        output_json(rows)
        return

    table = Table(title=f"Ledger Events ({run_id})")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Type")
    table.add_column("Time", justify="right")
    table.add_column("Deposit", justify="right")
    table.add_column("Data")
    for row in df.iter_rows(named=True):
        table.add_row(
            str(row["sequence"]),
            row["event_type"],
            str(row["timestamp"]),
            "" if row["deposit_id"] is None else str(row["deposit_id"]),
            row["event_data_json"],
        )
    console.print(table)


@db_app.command("checkpoints")
def db_checkpoints(
    run_id: Annotated[str, typer.Argument(help="Run identifier")],
    db_path: DbPath = "ledger.db",
    as_json: AsJson = False,
) -> None:
    """List checkpoints of a run."""
    with _open(db_path) as manager:
        checkpoints = CheckpointManager(manager).list_checkpoints(run_id)

    if as_json:
        output_json(checkpoints)
        return

    table = Table(title=f"Checkpoints ({run_id})")
    table.add_column("Checkpoint", style="cyan")
    table.add_column("Type")
    table.add_column("Ledger time", justify="right")
    table.add_column("Deposits", justify="right")
    table.add_column("Description")
    for cp in checkpoints:
        table.add_row(
            cp["checkpoint_id"],
            cp["checkpoint_type"],
            str(cp["ledger_time"]),
            str(cp["num_deposits"]),
            cp["description"] or "",
        )
    console.print(table)
