"""
Scenario runner with pluggable output and persistence.

Builds a YieldSplitter over in-memory collaborators from a ScenarioConfig,
applies the scenario's steps in order, and reports each outcome to an
output strategy and, optionally, to a RunPersistence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from yield_splitter.adapters import (
    ConstantPriceExchange,
    InMemoryAsset,
    ManualClock,
    ManualIndexOracle,
    PassthroughStakingAdapter,
)
from yield_splitter.admin import StaticAccessController
from yield_splitter.config.schemas import ScenarioConfig
from yield_splitter.core.scheduler import UpkeepReport
from yield_splitter.errors import LedgerError
from yield_splitter.service import YieldSplitter

from .persistence import RunPersistence
from .strategies import OutputStrategy, SilentOutput

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of one scenario step.

    Attributes:
        position: 1-based position in the step list
        action: Step action name
        ok: Whether the step succeeded
        timestamp: Clock value when the step ran
        result: JSON-friendly return value on success
        error: Error message on failure
        error_type: Exception class name on failure
    """

    position: int
    action: str
    ok: bool
    timestamp: int
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "action": self.action,
            "ok": self.ok,
            "timestamp": self.timestamp,
            "result": self.result,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class RunSummary:
    name: str
    steps: list[StepResult] = field(default_factory=list)
    reports: list[UpkeepReport] = field(default_factory=list)
    deposits: list[dict[str, Any]] = field(default_factory=list)
    balances: dict[str, dict[str, int]] = field(default_factory=dict)
    total_principal: int = 0
    total_claimable: int = 0
    dust: int = 0
    run_id: str | None = None

    @property
    def failed(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "run_id": self.run_id,
            "steps_run": len(self.steps),
            "steps_failed": len(self.failed),
            "cycles": len(self.reports),
            "total_principal": self.total_principal,
            "total_claimable": self.total_claimable,
            "dust": self.dust,
            "deposits": self.deposits,
            "balances": self.balances,
            "steps": [s.to_dict() for s in self.steps],
            "reports": [r.to_dict() for r in self.reports],
        }


class ScenarioRunner:
    """Runs one scenario against a freshly built YieldSplitter.

    Usage:
        runner = ScenarioRunner(scenario, output=ConsoleOutput(quiet, verbose))
        summary = runner.run()
    """

    def __init__(
        self,
        scenario: ScenarioConfig,
        output: OutputStrategy | None = None,
        persistence: RunPersistence | None = None,
    ) -> None:
        self.scenario = scenario
        self.output = output if output is not None else SilentOutput()
        self.persistence = persistence
        self._reports: list[UpkeepReport] = []

        # Settings are mutated by admin steps; keep the scenario untouched
        settings = scenario.settings.model_copy(deep=True)
        self.clock = ManualClock(scenario.start_time)
        self.oracle = ManualIndexOracle(scenario.index)
        self.principal = InMemoryAsset("principal", scenario.assets.principal)
        self.settlement = InMemoryAsset("settlement", scenario.assets.settlement)
        self.exchange = ConstantPriceExchange(
            self.principal,
            self.settlement,
            account=settings.exchange_spender,
            price=scenario.exchange.price,
            fee_bps=scenario.exchange.fee_bps,
            impact_bps=scenario.exchange.impact_bps,
            clock=self.clock,
        )
        self.exchange.fail = scenario.exchange.fail
        self.splitter = YieldSplitter(
            self.principal,
            self.settlement,
            self.oracle,
            self.exchange,
            staking=PassthroughStakingAdapter(),
            settings=settings,
            access=StaticAccessController(scenario.admins),
            clock=self.clock,
        )

        self._handlers: dict[str, Callable[[Any], Any]] = {
            "open": self._open,
            "top_up": self._top_up,
            "withdraw": self._withdraw,
            "extract": self._extract,
            "close": self._close,
            "claim": self._claim,
            "set_index": self._set_index,
            "advance_time": self._advance_time,
            "upkeep": self._upkeep,
            "admin": self._admin,
        }

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self) -> RunSummary:
        summary = RunSummary(name=self.scenario.name)
        self.output.on_run_start(self.scenario)
        if self.persistence is not None:
            summary.run_id = self.persistence.start(self.scenario)

        try:
            for position, step in enumerate(self.scenario.steps, start=1):
                result = self.apply(position, step)
                summary.steps.append(result)
                self.output.on_step_complete(result)
                if not result.ok and not self.scenario.continue_on_error:
                    logger.info("Stopping at step %d (%s)", position, step.action)
                    break
        except Exception as e:
            self._fill_summary(summary)
            if self.persistence is not None:
                self.persistence.finish(self.splitter, summary, error=f"{type(e).__name__}: {e}")
            raise

        self._fill_summary(summary)
        if self.persistence is not None:
            self.persistence.finish(self.splitter, summary)
        self.output.on_run_complete(summary)
        return summary

    def apply(self, position: int, step: Any) -> StepResult:
        now = self.clock()
        try:
            value = self._handlers[step.action](step)
        except LedgerError as e:
            logger.debug("Step %d failed: %s", position, e)
            return StepResult(
                position, step.action, False, now, error=str(e), error_type=type(e).__name__
            )
        return StepResult(position, step.action, True, now, result=value)

    def _fill_summary(self, summary: RunSummary) -> None:
        ledger = self.splitter.ledger
        summary.reports = list(self._reports)
        summary.deposits = [r.to_dict() for r in ledger.snapshot()]
        summary.total_principal = ledger.total_principal()
        summary.total_claimable = ledger.total_claimable()
        summary.dust = self.splitter.scheduler.dust
        summary.balances = {
            "principal": {k: v for k, v in sorted(self.principal.balances.items()) if v},
            "settlement": {k: v for k, v in sorted(self.settlement.balances.items()) if v},
        }

    # =========================================================================
    # Step handlers
    # =========================================================================

    def _open(self, step: Any) -> int:
        # A depositor approves exactly what it deposits
        self.principal.approve(step.depositor, self.splitter.account, step.amount)
        return self.splitter.open(
            step.depositor,
            step.recipient,
            step.amount,
            settlement_interval=step.settlement_interval,
            minimum_payout_threshold=step.minimum_payout_threshold,
        )

    def _top_up(self, step: Any) -> dict[str, Any]:
        self.principal.approve(step.caller, self.splitter.account, max(step.amount, 0))
        return self.splitter.top_up(step.deposit_id, step.caller, step.amount).to_dict()

    def _withdraw(self, step: Any) -> dict[str, Any]:
        return self.splitter.partial_withdraw(step.deposit_id, step.caller, step.amount).to_dict()

    def _extract(self, step: Any) -> int:
        return self.splitter.extract_yield(step.deposit_id, step.caller)

    def _close(self, step: Any) -> dict[str, int]:
        closed = self.splitter.close(step.deposit_id, step.caller)
        return {
            "principal": closed.principal,
            "residual_yield": closed.residual_yield,
            "total_value": closed.total_value,
            "unclaimed_settlement": closed.unclaimed_settlement,
        }

    def _claim(self, step: Any) -> int:
        return self.splitter.claim_settlement(step.deposit_id, step.caller)

    def _set_index(self, step: Any) -> int:
        old = self.oracle.current_index()
        self.principal.rebase(old, step.index)
        self.oracle.set_index(step.index)
        return step.index

    def _advance_time(self, step: Any) -> int:
        return self.clock.advance(step.seconds)

    def _upkeep(self, step: Any) -> dict[str, Any]:
        report = self.splitter.run_upkeep()
        self._reports.append(report)
        self.output.on_upkeep(report)
        if self.persistence is not None:
            self.persistence.record_cycle(self.splitter, report)
        return report.to_dict()

    def _admin(self, step: Any) -> dict[str, Any]:
        self.splitter.admin.apply(step.caller, step.setting, step.value)
        return {"setting": step.setting, "value": step.value}
