"""
Pytest configuration and shared fixtures.

Provides a ledger wired to in-memory collaborators:
- ManualClock / ManualIndexOracle for deterministic time and yield
- InMemoryAsset for the principal and settlement assets
- ConstantPriceExchange pricing the principal asset at 0.9 settlement units
"""

from pathlib import Path
from typing import Callable, Generator

import pytest

from yield_splitter.adapters import (
    ConstantPriceExchange,
    InMemoryAsset,
    ManualClock,
    ManualIndexOracle,
    PassthroughStakingAdapter,
)
from yield_splitter.admin import StaticAccessController
from yield_splitter.config.schemas import LedgerSettings
from yield_splitter.core.accountant import UNIT, YieldAccountant
from yield_splitter.core.ledger import DepositLedger
from yield_splitter.events import EventBus
from yield_splitter.persistence.connection import DatabaseManager
from yield_splitter.service import YieldSplitter

DAY = 86_400
START = 1_700_000_000


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def oracle() -> ManualIndexOracle:
    return ManualIndexOracle(UNIT)


@pytest.fixture
def accountant(oracle) -> YieldAccountant:
    return YieldAccountant(oracle)


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(fee_share_bps=1000, max_slippage_bps=100, default_settlement_interval=DAY)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def ledger(accountant, settings, events, clock) -> DepositLedger:
    """Bare ledger, no asset movements."""
    return DepositLedger(accountant, settings=settings, events=events, clock=clock)


@pytest.fixture
def principal() -> InMemoryAsset:
    return InMemoryAsset("principal", {"alice": 10_000 * UNIT, "bob": 10_000 * UNIT})


@pytest.fixture
def settlement() -> InMemoryAsset:
    return InMemoryAsset("settlement", {"exchange": 1_000_000 * UNIT})


@pytest.fixture
def exchange(principal, settlement, clock) -> ConstantPriceExchange:
    return ConstantPriceExchange(principal, settlement, price=UNIT * 9 // 10, clock=clock)


@pytest.fixture
def staking() -> PassthroughStakingAdapter:
    return PassthroughStakingAdapter()


@pytest.fixture
def splitter(principal, settlement, oracle, exchange, staking, settings, events, clock) -> YieldSplitter:
    return YieldSplitter(
        principal,
        settlement,
        oracle,
        exchange,
        staking=staking,
        settings=settings,
        access=StaticAccessController(["admin"]),
        clock=clock,
        events=events,
    )


@pytest.fixture
def deposit(splitter, principal) -> Callable[..., int]:
    """Approve and open a deposit through the service."""

    def _deposit(depositor: str, recipient: str, amount: int, **kwargs) -> int:
        principal.approve(depositor, splitter.account, amount)
        return splitter.open(depositor, recipient, amount, **kwargs)

    return _deposit


@pytest.fixture
def accrue(oracle, principal) -> Callable[[int], None]:
    """Move the index, rebasing principal-asset balances with it."""

    def _accrue(new_index: int) -> None:
        principal.rebase(oracle.current_index(), new_index)
        oracle.set_index(new_index)

    return _accrue


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "ledger.db"


@pytest.fixture
def db(db_path) -> Generator[DatabaseManager, None, None]:
    with DatabaseManager(db_path) as manager:
        manager.setup()
        yield manager
