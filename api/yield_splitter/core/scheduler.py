"""Batch settlement ("upkeep") of accrued yield.

One call to run_cycle() settles every eligible deposit at once:

    IDLE -> AGGREGATING -> CONVERTING -> DISTRIBUTING -> IDLE

AGGREGATING re-baselines each eligible record and caches its yield by id.
CONVERTING takes the protocol fee off the total, optionally unwraps or
unstakes the remainder, and swaps it in a single exchange call bounded by
a slippage-adjusted minimum output. DISTRIBUTING pro-rates the proceeds by
each record's pre-fee yield share, and pushes the claimable balance to the
recipient once it reaches the record's payout threshold.

The whole cycle runs under the ledger's exclusive cycle lock. If any step
up to and including the swap fails, every record touched by aggregation is
restored and ExternalConversionFailed is raised; the cycle has no partial
effect on the ledger.

Once the swap has succeeded the cycle commits. The treasury fee is paid
after the swap; if that transfer fails the fee stays in the ledger account
as fee_owed and is retried together with the next cycle's fee.

Floor rounding in pro-ration leaves a remainder ("dust"). It is carried
into the next cycle's proceeds rather than stranded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from yield_splitter.config.schemas import BPS_DENOM, LedgerSettings
from yield_splitter.core.ledger import DepositLedger
from yield_splitter.core.records import DepositRecord
from yield_splitter.errors import (
    ExternalConversionFailed,
    InvariantViolation,
    OperationDisabled,
)
from yield_splitter.events import (
    EVENT_PAYOUT_PUSHED,
    EVENT_UPKEEP_ABORTED,
    EVENT_UPKEEP_COMPLETED,
)
from yield_splitter.interfaces import ExchangeAdapter, LedgerAsset, StakingAdapter

logger = logging.getLogger(__name__)


class CyclePhase(str, Enum):
    """Upkeep cycle state."""

    IDLE = "idle"
    AGGREGATING = "aggregating"
    CONVERTING = "converting"
    DISTRIBUTING = "distributing"


@dataclass(frozen=True)
class UpkeepReport:
    """Outcome of one completed upkeep cycle.

    All amounts are integers. Yields and fees are in principal-asset units;
    min_out, proceeds, credits and payouts are in settlement-asset units.
    fee_paid includes any fee owed from earlier cycles; fee_owed is what
    is still unpaid after this cycle.
    """

    cycle: int
    timestamp: int
    eligible_ids: tuple[int, ...] = ()
    yields: dict[int, int] = field(default_factory=dict)
    total_yield: int = 0
    fee: int = 0
    fee_paid: int = 0
    fee_owed: int = 0
    amount_in: int = 0
    min_out: int = 0
    proceeds: int = 0
    credits: dict[int, int] = field(default_factory=dict)
    pushed: dict[int, int] = field(default_factory=dict)
    failed_payouts: dict[int, int] = field(default_factory=dict)
    dust_carried: int = 0

    @property
    def converted(self) -> bool:
        """Whether the exchange was called this cycle."""
        return self.amount_in > 0

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "timestamp": self.timestamp,
            "eligible_ids": list(self.eligible_ids),
            "yields": {str(k): v for k, v in self.yields.items()},
            "total_yield": self.total_yield,
            "fee": self.fee,
            "fee_paid": self.fee_paid,
            "fee_owed": self.fee_owed,
            "amount_in": self.amount_in,
            "min_out": self.min_out,
            "proceeds": self.proceeds,
            "credits": {str(k): v for k, v in self.credits.items()},
            "pushed": {str(k): v for k, v in self.pushed.items()},
            "failed_payouts": {str(k): v for k, v in self.failed_payouts.items()},
            "dust_carried": self.dust_carried,
        }


def pro_rate(proceeds: int, yields: dict[int, int], total_yield: int) -> dict[int, int]:
    """Split proceeds by yield share, flooring each credit.

    The credits never sum to more than proceeds.
    """
    if total_yield <= 0:
        return {deposit_id: 0 for deposit_id in yields}
    return {
        deposit_id: proceeds * amount // total_yield
        for deposit_id, amount in yields.items()
    }


class UpkeepScheduler:
    """Runs upkeep cycles against one ledger.

    Args:
        ledger: Ledger whose active set is settled
        principal_asset: Asset deposits are held in (fee is paid in it)
        settlement_asset: Asset yield is converted into
        exchange: Performs the one swap per cycle
        staking: Needed when settings.conversion_form is "unwrap" or "unstake"
    """

    def __init__(
        self,
        ledger: DepositLedger,
        principal_asset: LedgerAsset,
        settlement_asset: LedgerAsset,
        exchange: ExchangeAdapter,
        staking: StakingAdapter | None = None,
    ) -> None:
        self.ledger = ledger
        self.principal_asset = principal_asset
        self.settlement_asset = settlement_asset
        self.exchange = exchange
        self.staking = staking
        self.phase = CyclePhase.IDLE
        self.cycles_run = 0
        self.dust = 0
        self.fee_owed = 0
        self.last_report: UpkeepReport | None = None

    @property
    def settings(self) -> LedgerSettings:
        return self.ledger.settings

    def to_state(self) -> dict[str, Any]:
        """Scheduler balances that live in the ledger account between cycles."""
        return {"cycles_run": self.cycles_run, "dust": self.dust, "fee_owed": self.fee_owed}

    def restore_state(self, state: dict[str, Any]) -> None:
        if self.phase is not CyclePhase.IDLE:
            raise InvariantViolation("Cannot restore scheduler mid-cycle", operation="restore")
        self.cycles_run = state.get("cycles_run", 0)
        self.dust = state.get("dust", 0)
        self.fee_owed = state.get("fee_owed", 0)

    def pending_yield(self, now: int | None = None) -> dict[int, int]:
        """Yield each currently eligible deposit would contribute (read-only)."""
        if now is None:
            now = self.ledger.clock()
        return {
            deposit_id: self.ledger.outstanding_yield(deposit_id)
            for deposit_id in self.ledger.eligible_ids(now)
        }

    def run_cycle(self, now: int | None = None) -> UpkeepReport:
        """Run one full upkeep cycle and return its report.

        Raises:
            OperationDisabled: upkeep kill-switch is on
            ExternalConversionFailed: conversion failed; no record changed
            InvariantViolation: index went backwards
        """
        if self.settings.upkeep_disabled:
            raise OperationDisabled("Upkeep is disabled", operation="upkeep")

        with self.ledger.exclusive_cycle():
            self.cycles_run += 1
            cycle = self.cycles_run
            if now is None:
                now = self.ledger.clock()
            try:
                report = self._run(cycle, now)
            finally:
                self.phase = CyclePhase.IDLE

        self.last_report = report
        logger.info(
            "Upkeep cycle %d settled %d deposits: yield=%d fee=%d proceeds=%d",
            cycle,
            len(report.eligible_ids),
            report.total_yield,
            report.fee,
            report.proceeds,
        )
        self.ledger.events.emit(
            EVENT_UPKEEP_COMPLETED,
            now,
            cycle=cycle,
            eligible=len(report.eligible_ids),
            total_yield=report.total_yield,
            fee=report.fee,
            proceeds=report.proceeds,
            dust_carried=report.dust_carried,
            fee_owed=report.fee_owed,
        )
        return report

    # =========================================================================
    # Cycle steps
    # =========================================================================

    def _run(self, cycle: int, now: int) -> UpkeepReport:
        self.phase = CyclePhase.AGGREGATING
        index = self.ledger.accountant.index()
        eligible = self.ledger.settlement_candidates(now)
        saved: dict[int, DepositRecord] = {i: self.ledger.get(i) for i in eligible}

        yields: dict[int, int] = {}
        for deposit_id in eligible:
            yields[deposit_id] = self.ledger.settle_record(deposit_id, now, index)
            logger.debug("cycle %d: deposit %d yield %d", cycle, deposit_id, yields[deposit_id])
        total_yield = sum(yields.values())

        if total_yield == 0:
            fee_paid = self._pay_fee(cycle, 0)
            return UpkeepReport(
                cycle=cycle,
                timestamp=now,
                eligible_ids=tuple(eligible),
                yields=yields,
                fee_paid=fee_paid,
                fee_owed=self.fee_owed,
                credits={i: 0 for i in eligible},
                dust_carried=self.dust,
            )

        self.phase = CyclePhase.CONVERTING
        fee = total_yield * self.settings.fee_share_bps // BPS_DENOM
        amount_in = total_yield - fee
        try:
            min_out, proceeds = self._convert(cycle, amount_in, now)
        except (ExternalConversionFailed, InvariantViolation) as exc:
            self._abort(cycle, now, saved, exc)
            raise
        except Exception as exc:
            self._abort(cycle, now, saved, exc)
            raise ExternalConversionFailed(
                f"Conversion failed: {exc}", cycle=cycle, step="convert"
            ) from exc
        fee_paid = self._pay_fee(cycle, fee)

        self.phase = CyclePhase.DISTRIBUTING
        distributable = proceeds + self.dust
        credits = pro_rate(distributable, yields, total_yield)
        self.dust = distributable - sum(credits.values())
        if self.dust < 0:
            raise InvariantViolation(f"Credits exceed proceeds in cycle {cycle}", operation="upkeep")

        pushed, failed = self._distribute(cycle, now, credits)
        return UpkeepReport(
            cycle=cycle,
            timestamp=now,
            eligible_ids=tuple(eligible),
            yields=yields,
            total_yield=total_yield,
            fee=fee,
            fee_paid=fee_paid,
            fee_owed=self.fee_owed,
            amount_in=amount_in,
            min_out=min_out,
            proceeds=proceeds,
            credits=credits,
            pushed=pushed,
            failed_payouts=failed,
            dust_carried=self.dust,
        )

    def _convert(self, cycle: int, amount_in: int, now: int) -> tuple[int, int]:
        """Swap amount_in of yield into the settlement asset.

        Returns (min_out, proceeds). A zero amount_in (100% fee) skips the
        exchange entirely.
        """
        if amount_in == 0:
            return 0, 0

        swap_amount = self._prepare(cycle, amount_in)
        quoted = self.exchange.quote(swap_amount)
        min_out = quoted * (BPS_DENOM - self.settings.max_slippage_bps) // BPS_DENOM

        account = self.settings.ledger_account
        self.principal_asset.approve(account, self.settings.exchange_spender, swap_amount)
        before = self.settlement_asset.balance_of(account)
        returned = self.exchange.swap(
            swap_amount,
            min_out,
            list(self.settings.swap_path),
            account,
            now + self.settings.swap_deadline_seconds,
        )
        delivered = self.settlement_asset.balance_of(account) - before
        proceeds = min(returned, delivered)
        if proceeds < min_out:
            raise ExternalConversionFailed(
                f"Swap delivered {proceeds}, below minimum {min_out} (quote {quoted})",
                cycle=cycle,
                step="swap",
            )
        logger.debug(
            "cycle %d: swapped %d for %d (quote %d, min %d)",
            cycle, swap_amount, proceeds, quoted, min_out,
        )
        return min_out, proceeds

    def _prepare(self, cycle: int, amount: int) -> int:
        form = self.settings.conversion_form
        if form == "rebasing":
            return amount
        if self.staking is None:
            raise ExternalConversionFailed(
                f"conversion_form={form!r} requires a staking adapter",
                cycle=cycle,
                step=form,
            )
        if form == "unwrap":
            return self.staking.unwrap(amount)
        return self.staking.unstake(amount)

    def _pay_fee(self, cycle: int, fee: int) -> int:
        """Pay this cycle's fee plus any fee still owed; returns the amount paid.

        The cycle has committed by now, so a failed transfer is recorded in
        fee_owed instead of raised.
        """
        owed = self.fee_owed + fee
        if owed == 0:
            return 0
        treasury = self.settings.treasury
        try:
            self.principal_asset.transfer(self.settings.ledger_account, treasury, owed)
        except Exception as exc:
            self.fee_owed = owed
            logger.warning(
                "cycle %d: fee transfer of %d to %s failed, carried as owed: %s",
                cycle, owed, treasury, exc,
            )
            return 0
        self.fee_owed = 0
        return owed

    def _distribute(
        self, cycle: int, now: int, credits: dict[int, int]
    ) -> tuple[dict[int, int], dict[int, int]]:
        pushed: dict[int, int] = {}
        failed: dict[int, int] = {}
        for deposit_id, credit in credits.items():
            payout = self.ledger.credit_settlement(deposit_id, credit)
            if payout == 0:
                continue
            recipient = self.ledger.get(deposit_id).recipient
            try:
                self.settlement_asset.transfer(self.settings.ledger_account, recipient, payout)
            except Exception as exc:
                self.ledger.return_unpaid(deposit_id, payout)
                failed[deposit_id] = payout
                logger.warning(
                    "cycle %d: payout of %d to %s for deposit %d failed: %s",
                    cycle, payout, recipient, deposit_id, exc,
                )
                continue
            pushed[deposit_id] = payout
            self.ledger.events.emit(
                EVENT_PAYOUT_PUSHED, now, deposit_id, recipient=recipient, amount=payout, cycle=cycle
            )
        return pushed, failed

    def _abort(
        self, cycle: int, now: int, saved: dict[int, DepositRecord], exc: Exception
    ) -> None:
        for record in saved.values():
            self.ledger.restore(record)
        logger.error("Upkeep cycle %d aborted, %d deposits restored: %s", cycle, len(saved), exc)
        self.ledger.events.emit(
            EVENT_UPKEEP_ABORTED,
            now,
            cycle=cycle,
            phase=self.phase.value,
            restored=len(saved),
            reason=str(exc),
        )
