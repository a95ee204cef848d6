"""
Upkeep cycle exclusivity.

The exchange's on_swap hook runs inside the cycle, which is where a
malicious or buggy collaborator would try to re-enter the ledger.
"""

import threading

import pytest

from yield_splitter.core.accountant import UNIT
from yield_splitter.errors import ExternalConversionFailed, ReentrantCall

DAY = 86_400
START = 1_700_000_000


@pytest.fixture
def accrued(deposit, accrue, clock):
    deposit_id = deposit("alice", "carol", 1000 * UNIT)
    accrue(UNIT * 11 // 10)
    clock.advance(DAY)
    return deposit_id


def test_lifecycle_call_from_exchange_is_rejected(splitter, principal, exchange, accrued):
    principal.approve("bob", splitter.account, 100 * UNIT)
    exchange.on_swap = lambda: splitter.open("bob", "dave", 100 * UNIT)

    with pytest.raises(ExternalConversionFailed) as excinfo:
        splitter.run_upkeep()

    assert isinstance(excinfo.value.__cause__, ReentrantCall)
    assert splitter.ledger.active_ids() == [accrued]
    assert splitter.ledger.outstanding_yield(accrued) == 100 * UNIT
    assert not splitter.ledger.cycle_in_progress


def test_nested_cycle_is_rejected(splitter, exchange, accrued):
    exchange.on_swap = splitter.run_upkeep

    with pytest.raises(ExternalConversionFailed) as excinfo:
        splitter.run_upkeep()

    assert isinstance(excinfo.value.__cause__, ReentrantCall)


def test_other_thread_waits_for_cycle(splitter, exchange, accrued):
    seen = {}
    reader = threading.Thread(
        target=lambda: seen.update(record=splitter.ledger.get(accrued))
    )

    def start_reader():
        reader.start()
        reader.join(timeout=0.2)
        seen["blocked"] = reader.is_alive()

    exchange.on_swap = start_reader
    splitter.run_upkeep()
    reader.join(timeout=5)

    assert seen["blocked"]
    # the reader only got in after the cycle committed
    assert seen["record"].last_settled == START + DAY
    assert seen["record"].claimable_settlement == 0


def test_concurrent_opens_get_unique_ids(splitter, principal):
    depositors = [f"d{i}" for i in range(8)]
    for name in depositors:
        principal.mint(name, 10 * UNIT)
        principal.approve(name, splitter.account, 10 * UNIT)

    def open_many(name):
        for _ in range(10):
            splitter.open(name, "carol", UNIT)

    threads = [threading.Thread(target=open_many, args=(n,)) for n in depositors]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(splitter.ledger.active_ids()) == list(range(1, 81))
    assert splitter.ledger.total_principal() == 80 * UNIT
    assert principal.balance_of("ledger") == 80 * UNIT
    for name in depositors:
        assert len(splitter.ledger.deposits_of(name)) == 10


def test_settings_change_waits_for_cycle(splitter, exchange, accrued):
    seen = {}
    writer = threading.Thread(target=lambda: splitter.admin.set_fee_share("admin", 0))

    def start_writer():
        writer.start()
        writer.join(timeout=0.2)
        seen["blocked"] = writer.is_alive()
        seen["fee_bps"] = splitter.settings.fee_share_bps

    exchange.on_swap = start_writer
    report = splitter.run_upkeep()
    writer.join(timeout=5)

    assert seen["blocked"]
    assert seen["fee_bps"] == 1000
    assert report.fee == 10 * UNIT
    assert splitter.settings.fee_share_bps == 0


def test_settings_change_from_exchange_is_rejected(splitter, exchange, accrued):
    exchange.on_swap = lambda: splitter.admin.set_max_slippage("admin", 10_000)

    with pytest.raises(ExternalConversionFailed) as excinfo:
        splitter.run_upkeep()

    assert isinstance(excinfo.value.__cause__, ReentrantCall)
    assert splitter.settings.max_slippage_bps == 100
