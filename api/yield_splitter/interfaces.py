"""Collaborator protocol definitions.

The ledger never moves value, discovers prices, or decides who may change
configuration by itself. It talks to external collaborators through these
structural protocols, so any object with matching methods can be plugged
in (an on-chain client, a test double, the in-memory adapters in
yield_splitter.adapters).

Example:
    >>> from yield_splitter.adapters import ManualIndexOracle
    >>> isinstance(ManualIndexOracle(), RebaseIndexOracle)
    True
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LedgerAsset(Protocol):
    """Fungible asset with standard transfer/approve semantics.

    Implementations raise TransferFailed when a transfer cannot be made.
    """

    def transfer_from(self, spender: str, sender: str, to: str, amount: int) -> None:
        """Move amount from sender to to, spending spender's allowance."""
        ...

    def transfer(self, sender: str, to: str, amount: int) -> None:
        """Move amount held by sender to to."""
        ...

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Allow spender to move up to amount on behalf of owner."""
        ...

    def balance_of(self, account: str) -> int:
        """Current balance of account."""
        ...


@runtime_checkable
class RebaseIndexOracle(Protocol):
    """Source of the monotonically non-decreasing rebase index.

    The index is fixed-point with UNIT (10**18) representing 1.0.
    """

    def current_index(self) -> int:
        ...


@runtime_checkable
class StakingAdapter(Protocol):
    """Converts between the rebasing form and a form the exchange accepts."""

    def unwrap(self, amount: int) -> int:
        """Unwrap amount and return the underlying amount received."""
        ...

    def unstake(self, amount: int) -> int:
        """Unstake amount and return the flat amount received."""
        ...


@runtime_checkable
class ExchangeAdapter(Protocol):
    """Executes the single bulk conversion of an upkeep cycle."""

    def quote(self, amount_in: int) -> int:
        """Expected output for amount_in at current prices."""
        ...

    def swap(
        self,
        amount_in: int,
        min_out: int,
        path: list[str],
        recipient: str,
        deadline: int,
    ) -> int:
        """Swap amount_in and deliver the output to recipient.

        Must raise if the output would be below min_out or the deadline
        has passed. Returns the amount delivered.
        """
        ...


@runtime_checkable
class AccessController(Protocol):
    """Decides whether an identity may perform an administrative action."""

    def is_authorized(self, caller: str, action: str) -> bool:
        ...
