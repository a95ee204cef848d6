"""
Output strategies for scenario runs.

Each strategy implements the OutputStrategy protocol; the runner calls the
same hooks whatever the output mode.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from yield_splitter.cli.output import format_amount, log_error, log_info, log_success, log_warning
from yield_splitter.config.schemas import ScenarioConfig
from yield_splitter.core.scheduler import UpkeepReport

if TYPE_CHECKING:
    from .runner import RunSummary, StepResult


class OutputStrategy(Protocol):
    """Hooks called by ScenarioRunner."""

    def on_run_start(self, scenario: ScenarioConfig) -> None: ...

    def on_step_complete(self, result: StepResult) -> None: ...

    def on_upkeep(self, report: UpkeepReport) -> None: ...

    def on_run_complete(self, summary: RunSummary) -> None: ...


class SilentOutput:
    """No output at all (JSON mode prints the summary itself)."""

    def on_run_start(self, scenario: ScenarioConfig) -> None:
        pass

    def on_step_complete(self, result: StepResult) -> None:
        pass

    def on_upkeep(self, report: UpkeepReport) -> None:
        pass

    def on_run_complete(self, summary: RunSummary) -> None:
        pass


class ConsoleOutput:
    """Human-readable progress on stderr.

    Failed steps are always shown; successful steps and cycle details only
    with verbose.
    """

    def __init__(self, quiet: bool = False, verbose: bool = False):
        self.quiet = quiet
        self.verbose = verbose

    def on_run_start(self, scenario: ScenarioConfig) -> None:
        log_info(f"Running scenario '{scenario.name}' ({len(scenario.steps)} steps)", self.quiet)

    def on_step_complete(self, result: StepResult) -> None:
        label = f"[{result.position}] {result.action} @ t={result.timestamp}"
        if not result.ok:
            log_error(f"{label}: {result.error_type}: {result.error}")
        elif self.verbose:
            log_success(f"{label} -> {result.result}", self.quiet)

    def on_upkeep(self, report: UpkeepReport) -> None:
        if self.quiet:
            return
        if not report.converted:
            log_info(f"Cycle {report.cycle}: {len(report.eligible_ids)} eligible, no yield")
            return
        log_success(
            f"Cycle {report.cycle}: yield {format_amount(report.total_yield)}, "
            f"fee {format_amount(report.fee)}, proceeds {format_amount(report.proceeds)}"
        )
        if self.verbose:
            for deposit_id, credit in sorted(report.credits.items()):
                pushed = " (pushed)" if deposit_id in report.pushed else ""
                log_info(f"  deposit {deposit_id}: credit {format_amount(credit)}{pushed}")
        for deposit_id, amount in sorted(report.failed_payouts.items()):
            log_warning(
                f"  deposit {deposit_id}: push of {format_amount(amount)} refused, kept claimable"
            )
        if report.fee_owed:
            log_warning(f"  treasury fee of {format_amount(report.fee_owed)} still owed")

    def on_run_complete(self, summary: RunSummary) -> None:
        failed = len(summary.failed)
        message = f"Completed {len(summary.steps)} steps, {len(summary.reports)} cycles"
        if failed:
            log_warning(f"{message}, {failed} failed", self.quiet)
        else:
            log_success(message, self.quiet)
