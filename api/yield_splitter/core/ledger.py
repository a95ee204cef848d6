"""Deposit registry and lifecycle operations.

The ledger owns every DepositRecord plus three id-keyed indices: the active
set, the per-depositor lists and the per-recipient lists. Every operation
validates first and mutates second, so a failing call leaves the ledger
exactly as it was.

Concurrency model:
    All reads and writes take one re-entrant lock. An upkeep cycle holds
    that lock for its whole duration via exclusive_cycle(). While a cycle is
    running, lifecycle calls made from the cycle's own thread (for example
    from inside an exchange callback) raise ReentrantCall instead of
    silently re-entering; calls from other threads wait for the cycle to
    finish.

The ledger does not move assets. Lifecycle calls accept an optional
callback that runs under the lock: `collect` before a deposit is written,
`settle` after a payout amount is fixed. A raising `settle` puts the record
back, so a failed payout leaves no trace and emits no event.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterator

from yield_splitter.config.schemas import LedgerSettings
from yield_splitter.core.accountant import YieldAccountant
from yield_splitter.core.records import DepositRecord, IdIndex, KeyedIdIndex
from yield_splitter.errors import (
    InvalidAmount,
    InvalidParameter,
    InvariantViolation,
    NotFound,
    ReentrantCall,
    Unauthorized,
)
from yield_splitter.events import (
    EVENT_DEPOSIT_CLOSED,
    EVENT_DEPOSIT_OPENED,
    EVENT_DEPOSIT_TOPPED_UP,
    EVENT_DEPOSIT_WITHDRAWN,
    EVENT_PREFERENCES_UPDATED,
    EVENT_RECIPIENT_CHANGED,
    EVENT_SETTLEMENT_CLAIMED,
    EVENT_YIELD_EXTRACTED,
    EventBus,
)

logger = logging.getLogger(__name__)


def system_clock() -> int:
    """Wall-clock seconds."""
    return int(time.time())


@dataclass(frozen=True)
class ClosedDeposit:
    """Payout owed after closing a deposit.

    Attributes:
        record: Final state of the record at close time
        principal: Principal returned to the depositor
        residual_yield: Unextracted yield, paid with the principal
        total_value: principal + residual_yield, one payment to the depositor
        unclaimed_settlement: Settlement asset still owed to the recipient
    """

    record: DepositRecord
    principal: int
    residual_yield: int
    total_value: int
    unclaimed_settlement: int


class DepositLedger:
    """Registry of deposits and their yield entitlement."""

    def __init__(
        self,
        accountant: YieldAccountant,
        settings: LedgerSettings | None = None,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.accountant = accountant
        self.settings = settings if settings is not None else LedgerSettings()
        self.events = events if events is not None else EventBus()
        self.clock = clock if clock is not None else system_clock

        self._records: dict[int, DepositRecord] = {}
        self._active = IdIndex()
        self._by_depositor = KeyedIdIndex()
        self._by_recipient = KeyedIdIndex()
        self._next_id = 1

        self._lock = threading.RLock()
        self._cycle_thread: int | None = None

    # =========================================================================
    # Locking
    # =========================================================================

    @contextmanager
    def _mutating(self, operation: str, deposit_id: int | None = None) -> Iterator[None]:
        if self._cycle_thread == threading.get_ident():
            raise ReentrantCall(
                "Lifecycle mutation not allowed while an upkeep cycle is in progress",
                operation=operation,
                deposit_id=deposit_id,
            )
        with self._lock:
            yield

    @contextmanager
    def exclusive_cycle(self) -> Iterator[None]:
        """Exclusive access for one upkeep cycle."""
        with self._lock:
            if self._cycle_thread is not None:
                raise ReentrantCall("Upkeep cycle already in progress", operation="upkeep")
            self._cycle_thread = threading.get_ident()
            try:
                yield
            finally:
                self._cycle_thread = None

    def settings_guard(self, operation: str) -> ContextManager[None]:
        """Exclusive access for a settings change; waits for a running cycle."""
        return self._mutating(operation)

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_thread is not None

    def _require_cycle(self, operation: str) -> None:
        if self._cycle_thread != threading.get_ident():
            raise InvariantViolation(
                "Settlement write outside an exclusive upkeep cycle", operation=operation
            )

    # =========================================================================
    # Validation helpers
    # =========================================================================

    def _get(self, deposit_id: int, operation: str) -> DepositRecord:
        record = self._records.get(deposit_id)
        if record is None:
            raise NotFound("Unknown deposit", operation=operation, deposit_id=deposit_id)
        return record

    @staticmethod
    def _require_depositor(record: DepositRecord, caller: str, operation: str) -> None:
        if caller != record.depositor:
            raise Unauthorized(
                f"{caller!r} is not the depositor", operation=operation, deposit_id=record.id
            )

    @staticmethod
    def _require_positive(amount: int, operation: str, deposit_id: int | None = None) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(
                f"Amount must be a positive integer, got {amount!r}",
                operation=operation,
                deposit_id=deposit_id,
            )

    @staticmethod
    def _require_identity(identity: str, role: str, operation: str) -> None:
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidParameter(f"Invalid {role} identity {identity!r}", operation=operation)

    def _check_interval(self, interval: int, operation: str, deposit_id: int | None = None) -> None:
        lo = self.settings.min_settlement_interval
        hi = self.settings.max_settlement_interval
        if not lo <= interval <= hi:
            raise InvalidParameter(
                f"Settlement interval {interval} outside [{lo}, {hi}]",
                operation=operation,
                deposit_id=deposit_id,
            )

    def _check_threshold(self, threshold: int, operation: str, deposit_id: int | None = None) -> None:
        floor = self.settings.minimum_payout_threshold
        if threshold < floor:
            raise InvalidParameter(
                f"Payout threshold {threshold} below global floor {floor}",
                operation=operation,
                deposit_id=deposit_id,
            )

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
        collect: Callable[[int], None] | None = None,
    ) -> int:
        """Create a deposit and return its id.

        collect, if given, is called with the amount after validation and
        before anything is written; if it raises, no record is created.
        """
        with self._mutating("open"):
            self._require_identity(depositor, "depositor", "open")
            self._require_identity(recipient, "recipient", "open")
            self._require_positive(amount, "open")

            interval = (
                self.settings.default_settlement_interval
                if settlement_interval is None
                else settlement_interval
            )
            threshold = (
                self.settings.minimum_payout_threshold
                if minimum_payout_threshold is None
                else minimum_payout_threshold
            )
            self._check_interval(interval, "open")
            self._check_threshold(threshold, "open")

            agnostic = self.accountant.to_agnostic(amount)
            if agnostic == 0:
                raise InvalidAmount(
                    f"Amount {amount} is below one agnostic unit at the current index",
                    operation="open",
                )
            if collect is not None:
                collect(amount)

            now = self.clock()
            deposit_id = self._next_id
            self._next_id += 1
            self._insert(
                DepositRecord(
                    id=deposit_id,
                    depositor=depositor,
                    recipient=recipient,
                    principal=amount,
                    agnostic_balance=agnostic,
                    last_settled=now,
                    settlement_interval=interval,
                    minimum_payout_threshold=threshold,
                    opened_at=now,
                )
            )

        logger.info("Opened deposit %d for %s -> %s (%d)", deposit_id, depositor, recipient, amount)
        self.events.emit(
            EVENT_DEPOSIT_OPENED,
            now,
            deposit_id,
            depositor=depositor,
            recipient=recipient,
            amount=amount,
            agnostic_balance=agnostic,
        )
        return deposit_id

    def top_up(
        self,
        deposit_id: int,
        caller: str,
        amount: int,
        collect: Callable[[int], None] | None = None,
    ) -> DepositRecord:
        """Add principal without touching previously accrued yield."""
        with self._mutating("top_up", deposit_id):
            record = self._get(deposit_id, "top_up")
            self._require_depositor(record, caller, "top_up")
            self._require_positive(amount, "top_up", deposit_id)

            added = self.accountant.to_agnostic(amount)
            if added == 0:
                raise InvalidAmount(
                    f"Amount {amount} is below one agnostic unit at the current index",
                    operation="top_up",
                    deposit_id=deposit_id,
                )
            if collect is not None:
                collect(amount)
            record.principal += amount
            record.agnostic_balance += added
            result = record.copy()

        logger.info("Topped up deposit %d by %d", deposit_id, amount)
        self.events.emit(
            EVENT_DEPOSIT_TOPPED_UP,
            self.clock(),
            deposit_id,
            amount=amount,
            principal=result.principal,
            agnostic_balance=result.agnostic_balance,
        )
        return result

    def partial_withdraw(
        self,
        deposit_id: int,
        caller: str,
        amount: int,
        settle: Callable[[int], None] | None = None,
    ) -> DepositRecord:
        """Withdraw part of the principal.

        The amount must be strictly below the principal. Withdrawing all of
        it goes through close(), which also tears down the index entries.
        settle, if given, pays the amount out; if it raises, the record is
        put back and the error propagates.
        """
        with self._mutating("partial_withdraw", deposit_id):
            record = self._get(deposit_id, "partial_withdraw")
            self._require_depositor(record, caller, "partial_withdraw")
            self._require_positive(amount, "partial_withdraw", deposit_id)
            if amount >= record.principal:
                raise InvalidAmount(
                    f"Withdrawal {amount} must be below principal {record.principal}; "
                    "use close() to withdraw everything",
                    operation="partial_withdraw",
                    deposit_id=deposit_id,
                )

            before = record.copy()
            removed = min(self.accountant.to_agnostic_up(amount), record.agnostic_balance)
            record.principal -= amount
            record.agnostic_balance -= removed
            self._settle_or_restore(before, settle, amount)
            result = record.copy()

        logger.info("Partial withdrawal of %d from deposit %d", amount, deposit_id)
        self.events.emit(
            EVENT_DEPOSIT_WITHDRAWN,
            self.clock(),
            deposit_id,
            amount=amount,
            principal=result.principal,
            agnostic_balance=result.agnostic_balance,
        )
        return result

    def extract_yield(
        self,
        deposit_id: int,
        caller: str,
        settle: Callable[[int], None] | None = None,
    ) -> int:
        """Cash out accrued yield and re-baseline the record.

        Either the depositor or the recipient may call this. Returns the
        yield in flat units; settle, if given, pays it out.
        """
        with self._mutating("extract_yield", deposit_id):
            record = self._get(deposit_id, "extract_yield")
            if caller not in (record.depositor, record.recipient):
                raise Unauthorized(
                    f"{caller!r} is neither depositor nor recipient",
                    operation="extract_yield",
                    deposit_id=deposit_id,
                )
            before = record.copy()
            index = self.accountant.index()
            yield_amount = self._rebaseline(record, index)
            now = self.clock()
            record.last_settled = now
            self._settle_or_restore(before, settle, yield_amount)

        logger.info("Extracted %d yield from deposit %d", yield_amount, deposit_id)
        self.events.emit(
            EVENT_YIELD_EXTRACTED,
            now,
            deposit_id,
            caller=caller,
            amount=yield_amount,
            index=index,
        )
        return yield_amount

    def close(
        self,
        deposit_id: int,
        caller: str,
        settle: Callable[[ClosedDeposit], None] | None = None,
    ) -> ClosedDeposit:
        """Remove the deposit from every index and report everything owed on it.

        settle, if given, pays out the ClosedDeposit. If it raises, the record
        is re-inserted under the same id as captured in closed.record; settle
        may clear fields there for payouts that went through before it failed.
        """
        with self._mutating("close", deposit_id):
            record = self._get(deposit_id, "close")
            self._require_depositor(record, caller, "close")

            residual = self.accountant.outstanding_yield(record.principal, record.agnostic_balance)
            closed = ClosedDeposit(
                record=record.copy(),
                principal=record.principal,
                residual_yield=residual,
                total_value=record.principal + residual,
                unclaimed_settlement=record.claimable_settlement,
            )
            self._remove(record)
            if settle is not None:
                try:
                    settle(closed)
                except Exception:
                    self._insert(closed.record.copy())
                    raise

        logger.info(
            "Closed deposit %d: principal=%d yield=%d unclaimed=%d",
            deposit_id,
            closed.principal,
            closed.residual_yield,
            closed.unclaimed_settlement,
        )
        self.events.emit(
            EVENT_DEPOSIT_CLOSED,
            self.clock(),
            deposit_id,
            principal=closed.principal,
            residual_yield=closed.residual_yield,
            total_value=closed.total_value,
            unclaimed_settlement=closed.unclaimed_settlement,
        )
        return closed

    def claim_settlement(
        self,
        deposit_id: int,
        caller: str,
        settle: Callable[[int], None] | None = None,
    ) -> int:
        """Hand the accumulated settlement-asset balance to the recipient."""
        with self._mutating("claim_settlement", deposit_id):
            record = self._get(deposit_id, "claim_settlement")
            if caller != record.recipient:
                raise Unauthorized(
                    f"{caller!r} is not the recipient",
                    operation="claim_settlement",
                    deposit_id=deposit_id,
                )
            amount = record.claimable_settlement
            if amount == 0:
                raise InvalidAmount(
                    "Nothing to claim", operation="claim_settlement", deposit_id=deposit_id
                )
            before = record.copy()
            record.claimable_settlement = 0
            self._settle_or_restore(before, settle, amount)

        self.events.emit(
            EVENT_SETTLEMENT_CLAIMED, self.clock(), deposit_id, recipient=caller, amount=amount
        )
        return amount

    def update_preferences(
        self,
        deposit_id: int,
        caller: str,
        settlement_interval: int | None = None,
        minimum_payout_threshold: int | None = None,
    ) -> DepositRecord:
        with self._mutating("update_preferences", deposit_id):
            record = self._get(deposit_id, "update_preferences")
            self._require_depositor(record, caller, "update_preferences")
            if settlement_interval is not None:
                self._check_interval(settlement_interval, "update_preferences", deposit_id)
            if minimum_payout_threshold is not None:
                self._check_threshold(minimum_payout_threshold, "update_preferences", deposit_id)

            if settlement_interval is not None:
                record.settlement_interval = settlement_interval
            if minimum_payout_threshold is not None:
                record.minimum_payout_threshold = minimum_payout_threshold
            result = record.copy()

        self.events.emit(
            EVENT_PREFERENCES_UPDATED,
            self.clock(),
            deposit_id,
            settlement_interval=result.settlement_interval,
            minimum_payout_threshold=result.minimum_payout_threshold,
        )
        return result

    def change_recipient(self, deposit_id: int, caller: str, new_recipient: str) -> DepositRecord:
        """Point future yield at a new recipient, moving the recipient index entry."""
        with self._mutating("change_recipient", deposit_id):
            record = self._get(deposit_id, "change_recipient")
            self._require_depositor(record, caller, "change_recipient")
            self._require_identity(new_recipient, "recipient", "change_recipient")
            old_recipient = record.recipient
            if new_recipient != old_recipient:
                self._by_recipient.remove(old_recipient, deposit_id)
                self._by_recipient.add(new_recipient, deposit_id)
                record.recipient = new_recipient
            result = record.copy()

        self.events.emit(
            EVENT_RECIPIENT_CHANGED,
            self.clock(),
            deposit_id,
            old_recipient=old_recipient,
            new_recipient=new_recipient,
        )
        return result

    def restore(self, record: DepositRecord) -> None:
        """Put a record back exactly as captured.

        Used to undo a lifecycle call whose payout failed, and by the
        upkeep scheduler to roll back an aborted cycle. A closed record is
        re-inserted into every index under its original id.
        """
        with self._lock:
            current = self._records.get(record.id)
            if current is None:
                self._insert(record.copy())
                return
            if current.recipient != record.recipient:
                self._by_recipient.remove(current.recipient, record.id)
                self._by_recipient.add(record.recipient, record.id)
            self._records[record.id] = record.copy()

    # =========================================================================
    # Settlement writes (upkeep cycle only)
    # =========================================================================

    def settlement_candidates(self, now: int) -> list[int]:
        """Ids eligible for settlement at now, in active-set order."""
        self._require_cycle("settlement_candidates")
        return [i for i in self._active if self._records[i].is_eligible(now)]

    def settle_record(self, deposit_id: int, now: int, index: int) -> int:
        """Re-baseline an eligible record for the running cycle and return its yield."""
        self._require_cycle("settle_record")
        record = self._get(deposit_id, "settle_record")
        yield_amount = self._rebaseline(record, index)
        record.last_settled = now
        return yield_amount

    def credit_settlement(self, deposit_id: int, amount: int) -> int:
        """Credit cycle proceeds to a record.

        Returns the amount to push to the recipient now (zero while the
        claimable balance is below the record's threshold).
        """
        self._require_cycle("credit_settlement")
        record = self._get(deposit_id, "credit_settlement")
        record.claimable_settlement += amount
        threshold = max(record.minimum_payout_threshold, self.settings.minimum_payout_threshold)
        if record.claimable_settlement > 0 and record.claimable_settlement >= threshold:
            payout = record.claimable_settlement
            record.claimable_settlement = 0
            return payout
        return 0

    def return_unpaid(self, deposit_id: int, amount: int) -> None:
        """Re-credit a push payout the asset collaborator refused."""
        self._require_cycle("return_unpaid")
        self._get(deposit_id, "return_unpaid").claimable_settlement += amount

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, deposit_id: int) -> DepositRecord:
        """Copy of the record (mutating it does not affect the ledger)."""
        with self._lock:
            return self._get(deposit_id, "get").copy()

    def exists(self, deposit_id: int) -> bool:
        with self._lock:
            return deposit_id in self._records

    def deposits_of(self, depositor: str) -> list[int]:
        with self._lock:
            return self._by_depositor.get(depositor)

    def deposits_for(self, recipient: str) -> list[int]:
        with self._lock:
            return self._by_recipient.get(recipient)

    def active_ids(self) -> list[int]:
        with self._lock:
            return self._active.to_list()

    def eligible_ids(self, now: int | None = None) -> list[int]:
        if now is None:
            now = self.clock()
        with self._lock:
            return [i for i in self._active if self._records[i].is_eligible(now)]

    def outstanding_yield(self, deposit_id: int) -> int:
        with self._lock:
            record = self._get(deposit_id, "outstanding_yield")
            return self.accountant.outstanding_yield(record.principal, record.agnostic_balance)

    def total_principal(self) -> int:
        with self._lock:
            return sum(r.principal for r in self._records.values())

    def total_claimable(self) -> int:
        with self._lock:
            return sum(r.claimable_settlement for r in self._records.values())

    def snapshot(self) -> list[DepositRecord]:
        with self._lock:
            return [self._records[i].copy() for i in self._active]

    def __len__(self) -> int:
        return len(self._records)

    @property
    def next_id(self) -> int:
        return self._next_id

    # =========================================================================
    # State (de)serialisation
    # =========================================================================

    def to_state(self) -> dict[str, Any]:
        """Serializable state: records in active-set order plus the id counter."""
        with self._lock:
            return {
                "next_id": self._next_id,
                "records": [self._records[i].to_dict() for i in self._active],
                "high_water_index": self.accountant.high_water_index,
            }

    @classmethod
    def from_state(
        cls,
        state: dict[str, Any],
        accountant: YieldAccountant,
        settings: LedgerSettings | None = None,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> DepositLedger:
        ledger = cls(accountant, settings=settings, events=events, clock=clock)
        accountant.observe(state.get("high_water_index", 0))
        for data in state["records"]:
            record = DepositRecord.from_dict(data)
            if record.id >= state["next_id"]:
                raise InvariantViolation(
                    f"Record id {record.id} not below next_id {state['next_id']}",
                    operation="from_state",
                )
            ledger._insert(record)
        ledger._next_id = state["next_id"]
        return ledger

    # =========================================================================
    # Internals
    # =========================================================================

    def _settle_or_restore(
        self, before: DepositRecord, settle: Callable[[int], None] | None, amount: int
    ) -> None:
        if settle is None or amount == 0:
            return
        try:
            settle(amount)
        except Exception:
            self._records[before.id] = before
            raise

    def _rebaseline(self, record: DepositRecord, index: int) -> int:
        yield_amount = self.accountant.outstanding_yield(
            record.principal, record.agnostic_balance, index
        )
        # zero yield means the balance is at (or a rounding hair under) principal
        if yield_amount > 0:
            record.agnostic_balance = self.accountant.to_agnostic(record.principal, index)
        return yield_amount

    def _insert(self, record: DepositRecord) -> None:
        if record.id in self._records:
            raise InvariantViolation(
                "Deposit id already live", operation="insert", deposit_id=record.id
            )
        self._records[record.id] = record
        self._active.add(record.id)
        self._by_depositor.add(record.depositor, record.id)
        self._by_recipient.add(record.recipient, record.id)

    def _remove(self, record: DepositRecord) -> None:
        del self._records[record.id]
        self._active.remove(record.id)
        self._by_depositor.remove(record.depositor, record.id)
        self._by_recipient.remove(record.recipient, record.id)
