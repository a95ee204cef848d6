"""Rich rendering of a finished scenario run."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from yield_splitter.cli.output import format_amount

if TYPE_CHECKING:
    from .runner import RunSummary


def render_summary(summary: RunSummary, console: Console) -> None:
    """Print deposit and balance tables for a run."""
    deposits = Table(title=f"Deposits after '{summary.name}'")
    deposits.add_column("ID", justify="right", style="cyan")
    deposits.add_column("Depositor")
    deposits.add_column("Recipient")
    deposits.add_column("Principal", justify="right")
    deposits.add_column("Claimable", justify="right")
    deposits.add_column("Last settled", justify="right")
    for d in summary.deposits:
        deposits.add_row(
            str(d["id"]),
            d["depositor"],
            d["recipient"],
            format_amount(d["principal"]),
            format_amount(d["claimable_settlement"]),
            str(d["last_settled"]),
        )
    console.print(deposits)

    balances = Table(title="Balances")
    balances.add_column("Account", style="cyan")
    balances.add_column("Principal asset", justify="right")
    balances.add_column("Settlement asset", justify="right")
    principal = summary.balances.get("principal", {})
    settlement = summary.balances.get("settlement", {})
    for account in sorted(set(principal) | set(settlement)):
        balances.add_row(
            account,
            format_amount(principal.get(account, 0)),
            format_amount(settlement.get(account, 0)),
        )
    console.print(balances)

    console.print(
        f"Total principal {format_amount(summary.total_principal)}, "
        f"claimable {format_amount(summary.total_claimable)}, "
        f"carried dust {summary.dust}"
    )
