"""In-memory collaborators.

Deterministic implementations of the collaborator protocols, used by
scenario runs and tests. They hold balances in plain dicts and fail the
same way a real collaborator would: TransferFailed for refused transfers,
SwapReverted for a swap that cannot meet its minimum or deadline.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable

from yield_splitter.config.schemas import BPS_DENOM
from yield_splitter.core.accountant import UNIT
from yield_splitter.errors import TransferFailed


class SwapReverted(RuntimeError):
    """The exchange refused to execute a swap."""


class ManualClock:
    """Settable clock in whole seconds."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot go backwards")
        self.now += seconds
        return self.now


class ManualIndexOracle:
    """Index oracle whose value is set by hand."""

    def __init__(self, index: int = UNIT) -> None:
        self.index = index

    def current_index(self) -> int:
        return self.index

    def set_index(self, index: int) -> None:
        self.index = index

    def accrue_bps(self, bps: int) -> int:
        """Grow the index by bps basis points and return the new value."""
        self.index = self.index * (BPS_DENOM + bps) // BPS_DENOM
        return self.index


class InMemoryAsset:
    """Fungible asset with balances and allowances.

    Accounts listed in `blocked` cannot receive transfers, which is how
    tests simulate a recipient that rejects a payout.
    """

    def __init__(self, symbol: str, balances: dict[str, int] | None = None) -> None:
        self.symbol = symbol
        self.balances: dict[str, int] = defaultdict(int, balances or {})
        self.allowances: dict[tuple[str, str], int] = defaultdict(int)
        self.blocked: set[str] = set()

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def total_supply(self) -> int:
        return sum(self.balances.values())

    def mint(self, account: str, amount: int) -> None:
        self.balances[account] += amount

    def rebase(self, old_index: int, new_index: int) -> None:
        """Scale every balance by new_index / old_index, rounding up."""
        for account, balance in list(self.balances.items()):
            self.balances[account] = -(-balance * new_index // old_index)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailed(f"{self.symbol}: negative approval", operation="approve")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        self._move(sender, to, amount)

    def transfer_from(self, spender: str, sender: str, to: str, amount: int) -> None:
        allowance = self.allowances[(sender, spender)]
        if allowance < amount:
            raise TransferFailed(
                f"{self.symbol}: allowance {allowance} of {spender} over {sender} "
                f"below {amount}",
                operation="transfer_from",
            )
        self._move(sender, to, amount)
        self.allowances[(sender, spender)] = allowance - amount

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailed(f"{self.symbol}: negative amount {amount}", operation="transfer")
        if to in self.blocked:
            raise TransferFailed(f"{self.symbol}: {to} cannot receive", operation="transfer")
        balance = self.balances.get(sender, 0)
        if balance < amount:
            raise TransferFailed(
                f"{self.symbol}: {sender} balance {balance} below {amount}",
                operation="transfer",
            )
        self.balances[sender] = balance - amount
        self.balances[to] += amount


class PassthroughStakingAdapter:
    """Staking adapter that converts at a fixed rate and records calls."""

    def __init__(self, rate: int = UNIT) -> None:
        self.rate = rate
        self.unwrapped: list[int] = []
        self.unstaked: list[int] = []

    def unwrap(self, amount: int) -> int:
        self.unwrapped.append(amount)
        return amount * self.rate // UNIT

    def unstake(self, amount: int) -> int:
        self.unstaked.append(amount)
        return amount * self.rate // UNIT


class ConstantPriceExchange:
    """Exchange with a fixed price, a fee, and an execution shortfall.

    quote() = amount * price / UNIT less fee_bps; swap() delivers the quote
    less impact_bps. The exchange pulls the input through its allowance on
    the input asset and pays out of its own settlement-asset balance.

    Args:
        asset_in: Asset being sold (the yield asset)
        asset_out: Asset being bought (the settlement asset)
        account: Identity of the exchange (spender and liquidity holder)
        price: Output units per input unit, fixed-point UNIT
        fee_bps: Fee applied in quote and swap
        impact_bps: Extra shortfall of the actual swap versus the quote
        clock: Used to enforce the swap deadline, if given
        on_swap: Hook called at the start of every swap
    """

    def __init__(
        self,
        asset_in: InMemoryAsset,
        asset_out: InMemoryAsset,
        account: str = "exchange",
        price: int = UNIT,
        fee_bps: int = 0,
        impact_bps: int = 0,
        clock: Callable[[], int] | None = None,
        on_swap: Callable[[], None] | None = None,
    ) -> None:
        self.asset_in = asset_in
        self.asset_out = asset_out
        self.account = account
        self.price = price
        self.fee_bps = fee_bps
        self.impact_bps = impact_bps
        self.clock = clock
        self.on_swap = on_swap
        self.fail = False
        self.swaps: list[dict[str, int]] = []

    def quote(self, amount_in: int) -> int:
        gross = amount_in * self.price // UNIT
        return gross * (BPS_DENOM - self.fee_bps) // BPS_DENOM

    def swap(
        self,
        amount_in: int,
        min_out: int,
        path: list[str],
        recipient: str,
        deadline: int,
    ) -> int:
        if self.on_swap is not None:
            self.on_swap()
        if self.fail:
            raise SwapReverted("swap reverted")
        if self.clock is not None and self.clock() > deadline:
            raise SwapReverted(f"deadline {deadline} passed")
        if len(path) < 2:
            raise SwapReverted(f"invalid path {path}")

        amount_out = self.quote(amount_in) * (BPS_DENOM - self.impact_bps) // BPS_DENOM
        if amount_out < min_out:
            raise SwapReverted(f"price-slippage-exceeded: {amount_out} < {min_out}")

        self.asset_in.transfer_from(self.account, recipient, self.account, amount_in)
        self.asset_out.transfer(self.account, recipient, amount_out)
        self.swaps.append({"amount_in": amount_in, "min_out": min_out, "amount_out": amount_out})
        return amount_out
