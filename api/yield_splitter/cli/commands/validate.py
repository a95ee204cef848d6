"""Validate command - check a scenario file without running it."""

from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from typing_extensions import Annotated

from yield_splitter.cli.output import log_error, log_success, output_json
from yield_splitter.config.loader import load_scenario


def validate_scenario(
    scenario_path: Annotated[
        Path,
        typer.Argument(help="Scenario file (YAML)", dir_okay=False),
    ],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Output validation result as JSON"),
    ] = False,
) -> None:
    """Validate a scenario file against the scenario schema."""
    try:
        scenario = load_scenario(scenario_path)
    except (FileNotFoundError, ValueError, ValidationError, yaml.YAMLError) as e:
        if as_json:
            output_json({"valid": False, "error": str(e)})
        else:
            log_error(str(e))
        raise typer.Exit(1)

    actions: dict[str, int] = {}
    for step in scenario.steps:
        actions[step.action] = actions.get(step.action, 0) + 1

    if as_json:
        output_json(
            {"valid": True, "name": scenario.name, "steps": len(scenario.steps), "actions": actions}
        )
    else:
        log_success(f"Scenario '{scenario.name}' is valid ({len(scenario.steps)} steps)")
