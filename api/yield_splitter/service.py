"""Service layer binding the ledger to its asset collaborators.

YieldSplitter is the entry point a host application uses. It owns the
accountant, ledger, scheduler and admin surface for one principal asset and
one settlement asset, enforces the kill-switches, and moves assets in and
out of the ledger account around each lifecycle call:

    open / top_up        pull principal from the depositor, then record it
    partial_withdraw     pay principal back to the depositor
    extract_yield        pay the yield to the recipient
    close                unclaimed settlement asset to the recipient, then
                         principal plus residual yield to the depositor
    claim_settlement     pay accumulated settlement asset to the recipient

Transfers run inside the ledger's lock through the ledger's collect/settle
callbacks, so a TransferFailed leaves the ledger unchanged.
"""

from __future__ import annotations

from typing import Callable

from yield_splitter.admin import LedgerAdmin, StaticAccessController
from yield_splitter.config.schemas import LedgerSettings
from yield_splitter.core.accountant import YieldAccountant
from yield_splitter.core.ledger import ClosedDeposit, DepositLedger, system_clock
from yield_splitter.core.records import DepositRecord
from yield_splitter.core.scheduler import UpkeepReport, UpkeepScheduler
from yield_splitter.errors import OperationDisabled
from yield_splitter.events import EventBus
from yield_splitter.interfaces import (
    AccessController,
    ExchangeAdapter,
    LedgerAsset,
    RebaseIndexOracle,
    StakingAdapter,
)


class YieldSplitter:
    """One yield-splitting ledger instance."""

    def __init__(
        self,
        principal_asset: LedgerAsset,
        settlement_asset: LedgerAsset,
        oracle: RebaseIndexOracle,
        exchange: ExchangeAdapter,
        staking: StakingAdapter | None = None,
        settings: LedgerSettings | None = None,
        access: AccessController | None = None,
        clock: Callable[[], int] | None = None,
        events: EventBus | None = None,
        ledger: DepositLedger | None = None,
        scheduler_state: dict[str, int] | None = None,
    ) -> None:
        self.principal_asset = principal_asset
        self.settlement_asset = settlement_asset
        if ledger is not None:
            settings = ledger.settings
        self.settings = settings if settings is not None else LedgerSettings()
        self.clock = clock if clock is not None else system_clock
        self.events = events if events is not None else EventBus()

        if ledger is None:
            ledger = DepositLedger(
                YieldAccountant(oracle), settings=self.settings, events=self.events, clock=self.clock
            )
        self.ledger = ledger
        self.accountant = ledger.accountant
        self.events = ledger.events
        self.clock = ledger.clock
        self.scheduler = UpkeepScheduler(
            ledger, principal_asset, settlement_asset, exchange, staking=staking
        )
        if scheduler_state is not None:
            self.scheduler.restore_state(scheduler_state)
        self.admin = LedgerAdmin(
            self.settings,
            access if access is not None else StaticAccessController([]),
            self.events,
            self.clock,
            guard=ledger.settings_guard,
        )

    @property
    def account(self) -> str:
        return self.settings.ledger_account

    def _require_enabled(self, group: str, operation: str) -> None:
        if getattr(self.settings, f"{group}_disabled"):
            raise OperationDisabled(f"{group.capitalize()} are disabled", operation=operation)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(
        self,
        depositor: str,
        recipient: str,
        amount: int,
        settlement_interval: int | None = None,
        minimum_payout_threshold: int | None = None,
    ) -> int:
        self._require_enabled("deposits", "open")
        return self.ledger.open(
            depositor,
            recipient,
            amount,
            settlement_interval=settlement_interval,
            minimum_payout_threshold=minimum_payout_threshold,
            collect=lambda value: self.principal_asset.transfer_from(
                self.account, depositor, self.account, value
            ),
        )

    def top_up(self, deposit_id: int, caller: str, amount: int) -> DepositRecord:
        self._require_enabled("deposits", "top_up")
        return self.ledger.top_up(
            deposit_id,
            caller,
            amount,
            collect=lambda value: self.principal_asset.transfer_from(
                self.account, caller, self.account, value
            ),
        )

    def partial_withdraw(self, deposit_id: int, caller: str, amount: int) -> DepositRecord:
        self._require_enabled("withdrawals", "partial_withdraw")
        return self.ledger.partial_withdraw(
            deposit_id,
            caller,
            amount,
            settle=lambda value: self.principal_asset.transfer(self.account, caller, value),
        )

    def extract_yield(self, deposit_id: int, caller: str) -> int:
        """Extract accrued yield and pay it to the deposit's recipient."""
        self._require_enabled("withdrawals", "extract_yield")
        return self.ledger.extract_yield(
            deposit_id,
            caller,
            settle=lambda value: self.principal_asset.transfer(
                self.account, self.ledger.get(deposit_id).recipient, value
            ),
        )

    def close(self, deposit_id: int, caller: str) -> ClosedDeposit:
        self._require_enabled("withdrawals", "close")
        return self.ledger.close(deposit_id, caller, settle=self._pay_closed)

    def claim_settlement(self, deposit_id: int, caller: str) -> int:
        self._require_enabled("withdrawals", "claim_settlement")
        return self.ledger.claim_settlement(
            deposit_id,
            caller,
            settle=lambda value: self.settlement_asset.transfer(self.account, caller, value),
        )

    def update_preferences(
        self,
        deposit_id: int,
        caller: str,
        settlement_interval: int | None = None,
        minimum_payout_threshold: int | None = None,
    ) -> DepositRecord:
        return self.ledger.update_preferences(
            deposit_id,
            caller,
            settlement_interval=settlement_interval,
            minimum_payout_threshold=minimum_payout_threshold,
        )

    def change_recipient(self, deposit_id: int, caller: str, new_recipient: str) -> DepositRecord:
        return self.ledger.change_recipient(deposit_id, caller, new_recipient)

    def run_upkeep(self, now: int | None = None) -> UpkeepReport:
        return self.scheduler.run_cycle(now)

    def _pay_closed(self, closed: ClosedDeposit) -> None:
        record = closed.record
        if closed.unclaimed_settlement:
            self.settlement_asset.transfer(
                self.account, record.recipient, closed.unclaimed_settlement
            )
            # already paid: a restored record must not owe it again
            record.claimable_settlement = 0
        self.principal_asset.transfer(self.account, record.depositor, closed.total_value)
