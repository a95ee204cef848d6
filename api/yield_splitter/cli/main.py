"""Yield Splitter CLI - Main entry point."""

import typer
from typing_extensions import Annotated

from yield_splitter import __version__

app = typer.Typer(
    name="yield-split",
    help="Yield Splitter - deposit ledger that converts yield into a settlement asset",
    add_completion=True,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from yield_splitter.cli.output import console
        console.print(f"[bold]Yield Splitter[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Yield Splitter CLI."""
    pass


# Import commands after app is defined to avoid circular imports
from yield_splitter.cli.commands.db import db_app  # noqa: E402
from yield_splitter.cli.commands.run import run_scenario  # noqa: E402
from yield_splitter.cli.commands.validate import validate_scenario  # noqa: E402

app.command(name="run", help="Run a scenario file against in-memory collaborators")(run_scenario)
app.command(name="validate", help="Validate a scenario file")(validate_scenario)
app.add_typer(db_app, name="db")


if __name__ == "__main__":
    app()
