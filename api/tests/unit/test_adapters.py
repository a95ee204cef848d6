"""In-memory collaborator tests."""

import pytest

from yield_splitter.adapters import (
    ConstantPriceExchange,
    InMemoryAsset,
    ManualClock,
    ManualIndexOracle,
    PassthroughStakingAdapter,
    SwapReverted,
)
from yield_splitter.core.accountant import UNIT
from yield_splitter.errors import TransferFailed
from yield_splitter.interfaces import (
    ExchangeAdapter,
    LedgerAsset,
    RebaseIndexOracle,
    StakingAdapter,
)


def test_adapters_satisfy_protocols(principal, settlement):
    assert isinstance(principal, LedgerAsset)
    assert isinstance(ManualIndexOracle(), RebaseIndexOracle)
    assert isinstance(PassthroughStakingAdapter(), StakingAdapter)
    assert isinstance(ConstantPriceExchange(principal, settlement), ExchangeAdapter)


class TestInMemoryAsset:
    def test_transfer_from_spends_allowance(self):
        asset = InMemoryAsset("p", {"alice": 100})
        asset.approve("alice", "ledger", 60)
        asset.transfer_from("ledger", "alice", "ledger", 40)
        assert asset.balance_of("ledger") == 40
        assert asset.allowances[("alice", "ledger")] == 20

    def test_transfer_from_over_allowance(self):
        asset = InMemoryAsset("p", {"alice": 100})
        asset.approve("alice", "ledger", 10)
        with pytest.raises(TransferFailed, match="allowance"):
            asset.transfer_from("ledger", "alice", "ledger", 11)
        assert asset.balance_of("alice") == 100

    def test_insufficient_balance(self):
        asset = InMemoryAsset("p", {"alice": 5})
        with pytest.raises(TransferFailed):
            asset.transfer("alice", "bob", 6)

    def test_blocked_recipient(self):
        asset = InMemoryAsset("p", {"alice": 5})
        asset.blocked.add("bob")
        with pytest.raises(TransferFailed, match="cannot receive"):
            asset.transfer("alice", "bob", 1)

    def test_rebase_rounds_up(self):
        asset = InMemoryAsset("p", {"alice": 3, "bob": 10})
        asset.rebase(2 * UNIT, 3 * UNIT)
        assert asset.balance_of("alice") == 5
        assert asset.balance_of("bob") == 15


class TestOracleAndClock:
    def test_accrue_bps(self):
        oracle = ManualIndexOracle(UNIT)
        assert oracle.accrue_bps(1000) == UNIT * 11 // 10

    def test_clock_cannot_go_backwards(self):
        clock = ManualClock(10)
        assert clock.advance(5) == 15
        with pytest.raises(ValueError):
            clock.advance(-1)


class TestExchange:
    def test_swap_moves_both_assets(self, principal, settlement, exchange):
        principal.approve("alice", "exchange", 100 * UNIT)
        out = exchange.swap(100 * UNIT, 0, ["principal", "settlement"], "alice", 10**12)
        assert out == 90 * UNIT
        assert settlement.balance_of("alice") == 90 * UNIT
        assert principal.balance_of("exchange") == 100 * UNIT

    def test_quote_includes_fee(self, principal, settlement):
        exchange = ConstantPriceExchange(principal, settlement, price=UNIT, fee_bps=30)
        assert exchange.quote(10_000) == 9_970

    def test_min_out_enforced(self, exchange):
        with pytest.raises(SwapReverted, match="slippage"):
            exchange.swap(100, 91, ["principal", "settlement"], "alice", 10**12)

    def test_deadline_enforced(self, exchange, clock):
        with pytest.raises(SwapReverted, match="deadline"):
            exchange.swap(100, 0, ["principal", "settlement"], "alice", clock() - 1)
