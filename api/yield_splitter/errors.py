"""Error taxonomy for the yield-splitting ledger.

Every error raised by the ledger, the upkeep scheduler and the service
layer derives from LedgerError. Errors carry the operation that failed and,
where one is involved, the deposit id, so callers always know what to retry
or report.

Lifecycle errors leave ledger state unchanged. ExternalConversionFailed
aborts an upkeep cycle after restoring every record the cycle touched.
InvariantViolation is fatal: it means the index oracle or the accounting
itself is corrupt and the ledger should stop accepting work.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors.

    Attributes:
        operation: Name of the operation that failed (e.g. "top_up")
        deposit_id: Id of the deposit involved, if any
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        deposit_id: int | None = None,
    ) -> None:
        self.operation = operation
        self.deposit_id = deposit_id
        context = []
        if operation is not None:
            context.append(f"operation={operation}")
        if deposit_id is not None:
            context.append(f"deposit_id={deposit_id}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class InvalidAmount(LedgerError):
    """Amount is zero, negative, or exceeds the available balance."""


class Unauthorized(LedgerError):
    """Caller lacks the required relationship to the record or role."""


class NotFound(LedgerError):
    """Deposit id is unknown or already closed."""


class OperationDisabled(LedgerError):
    """A kill-switch is active for this operation group."""


class ExternalConversionFailed(LedgerError):
    """Exchange reverted, or returned less than the minimum output."""

    def __init__(
        self,
        message: str,
        *,
        cycle: int | None = None,
        step: str | None = None,
        operation: str | None = "upkeep",
    ) -> None:
        self.cycle = cycle
        self.step = step
        if cycle is not None:
            message = f"{message} [cycle={cycle}, step={step}]"
        super().__init__(message, operation=operation)


class InvariantViolation(LedgerError):
    """Accounting state is inconsistent. Not user-recoverable."""


class TransferFailed(LedgerError):
    """Asset collaborator refused or failed a transfer."""


class ReentrantCall(LedgerError):
    """Lifecycle mutation attempted from inside an upkeep cycle."""


class InvalidParameter(LedgerError):
    """Identity, interval or threshold outside its allowed range."""
