"""Output formatting utilities for CLI.

Follows the golden rule:
- stdout = machine-readable data (JSON)
- stderr = human-readable logs (progress, errors, info, verbose output)
"""

import json
import logging
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler

# stderr console for human logs (preserves colors when redirected)
console = Console(stderr=True)


def output_json(data: Any, indent: Optional[int] = 2):
    """Output JSON to stdout (machine-readable).

    Args:
        data: Data to serialize as JSON
        indent: Indentation level (None for compact)
    """
    print(json.dumps(data, indent=indent, default=str), flush=True)


def log_info(message: str, quiet: bool = False):
    if not quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def log_success(message: str, quiet: bool = False):
    if not quiet:
        console.print(f"[green]✓[/green] {message}")


def log_error(message: str):
    """Log error message to stderr (always shown)."""
    console.print(f"[red]✗[/red] {message}", style="bold red")


def log_warning(message: str, quiet: bool = False):
    if not quiet:
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route library logging to the stderr console.

    --verbose shows DEBUG records, --quiet only errors, default is WARNING.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    root = logging.getLogger("yield_splitter")
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(RichHandler(console=console, show_path=False, show_time=False))


def format_amount(amount: int, decimals: int = 18, places: int = 6) -> str:
    """Render a fixed-point amount for humans.

    Examples:
        >>> format_amount(1_500_000_000_000_000_000)
        '1.500000'
    """
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    frac_str = str(frac).rjust(decimals, "0")[:places]
    return f"{sign}{whole}.{frac_str}"
