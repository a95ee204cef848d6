"""Run command - Execute a ledger scenario from a YAML file."""

from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from typing_extensions import Annotated

from yield_splitter.cli.execution.display import render_summary
from yield_splitter.cli.execution.persistence import RunPersistence
from yield_splitter.cli.execution.runner import ScenarioRunner
from yield_splitter.cli.execution.strategies import ConsoleOutput, SilentOutput
from yield_splitter.cli.output import (
    configure_logging,
    console,
    log_error,
    log_info,
    log_success,
    output_json,
)
from yield_splitter.config.loader import load_scenario
from yield_splitter.persistence.connection import DatabaseManager


def run_scenario(
    scenario_path: Annotated[
        Path,
        typer.Argument(
            help="Scenario file (YAML)",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Persist the run to this DuckDB database"),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the run summary as JSON on stdout"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress logs (stdout only)"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show every step and library debug logs"),
    ] = False,
) -> None:
    """Run a scenario against in-memory collaborators.

    Exits 1 when the scenario is invalid or a failed step stopped the run.
    """
    if quiet and verbose:
        log_error("--quiet and --verbose are mutually exclusive")
        raise typer.Exit(1)
    configure_logging(verbose=verbose, quiet=quiet)

    log_info(f"Loading scenario from {scenario_path}", quiet)
    try:
        scenario = load_scenario(scenario_path)
    except (ValueError, ValidationError, yaml.YAMLError) as e:
        log_error(str(e))
        raise typer.Exit(1)

    output = SilentOutput() if as_json else ConsoleOutput(quiet=quiet, verbose=verbose)

    if db is None:
        summary = ScenarioRunner(scenario, output=output).run()
    else:
        with DatabaseManager(db) as manager:
            manager.setup()
            persistence = RunPersistence(manager)
            summary = ScenarioRunner(scenario, output=output, persistence=persistence).run()
        log_success(f"Persisted run {summary.run_id} to {db}", quiet)

    if as_json:
        output_json(summary.to_dict())
    elif not quiet:
        render_summary(summary, console)

    if summary.failed and not scenario.continue_on_error:
        raise typer.Exit(1)
