"""
Upkeep cycle tests.

The reference setup mirrors scenarios/basic_split.yaml: 1000 and 3000 units
deposited, index 1.0 -> 1.1, 10% fee, exchange price 0.9.
"""

import logging
from unittest.mock import patch

import pytest

from yield_splitter.core.accountant import UNIT
from yield_splitter.core.scheduler import CyclePhase, UpkeepScheduler, pro_rate
from yield_splitter.errors import ExternalConversionFailed, OperationDisabled, ReentrantCall
from yield_splitter.events import EVENT_PAYOUT_PUSHED, EVENT_UPKEEP_ABORTED, EVENT_UPKEEP_COMPLETED

DAY = 86_400
START = 1_700_000_000


@pytest.fixture
def two_deposits(deposit, accrue, clock):
    first = deposit("alice", "carol", 1000 * UNIT, minimum_payout_threshold=500 * UNIT)
    second = deposit("bob", "dave", 3000 * UNIT)
    accrue(UNIT * 11 // 10)
    clock.advance(DAY)
    return first, second


class TestProRate:
    def test_floors_each_credit(self):
        credits = pro_rate(243, {1: 100, 2: 100, 3: 101}, 301)
        assert credits == {1: 80, 2: 80, 3: 81}
        assert sum(credits.values()) <= 243

    def test_zero_total(self):
        assert pro_rate(100, {1: 0, 2: 0}, 0) == {1: 0, 2: 0}


class TestFullCycle:
    def test_reference_cycle(self, splitter, two_deposits, principal, settlement, events):
        first, second = two_deposits

        report = splitter.run_upkeep()

        assert report.cycle == 1
        assert report.timestamp == START + DAY
        assert set(report.eligible_ids) == {first, second}
        assert report.yields == {first: 100 * UNIT, second: 300 * UNIT}
        assert report.total_yield == 400 * UNIT
        assert report.fee == 40 * UNIT
        assert report.amount_in == 360 * UNIT
        assert report.min_out == 324 * UNIT * 9900 // 10_000
        assert report.proceeds == 324 * UNIT
        assert report.credits == {first: 81 * UNIT, second: 243 * UNIT}
        assert report.pushed == {second: 243 * UNIT}
        assert report.failed_payouts == {}
        assert report.dust_carried == 0

        assert splitter.ledger.get(first).claimable_settlement == 81 * UNIT
        assert splitter.ledger.get(second).claimable_settlement == 0
        assert settlement.balance_of("dave") == 243 * UNIT
        assert settlement.balance_of("ledger") == 81 * UNIT
        assert principal.balance_of("treasury") == 40 * UNIT
        assert principal.balance_of("ledger") == 4000 * UNIT

        (pushed,) = events.of_type(EVENT_PAYOUT_PUSHED)
        assert pushed.deposit_id == second
        assert len(events.of_type(EVENT_UPKEEP_COMPLETED)) == 1

    def test_records_rebaselined(self, splitter, two_deposits):
        first, second = two_deposits
        splitter.run_upkeep()
        for deposit_id in (first, second):
            assert splitter.ledger.outstanding_yield(deposit_id) == 0
            assert splitter.ledger.get(deposit_id).last_settled == START + DAY

    def test_claim_after_cycle(self, splitter, two_deposits, settlement):
        first, _ = two_deposits
        splitter.run_upkeep()
        assert splitter.claim_settlement(first, "carol") == 81 * UNIT
        assert settlement.balance_of("carol") == 81 * UNIT

    def test_scheduler_returns_to_idle(self, splitter, two_deposits):
        splitter.run_upkeep()
        assert splitter.scheduler.phase is CyclePhase.IDLE
        assert splitter.scheduler.cycles_run == 1
        assert not splitter.ledger.cycle_in_progress

    def test_pending_yield_is_read_only(self, splitter, two_deposits):
        first, second = two_deposits
        assert splitter.scheduler.pending_yield() == {first: 100 * UNIT, second: 300 * UNIT}
        assert splitter.ledger.outstanding_yield(first) == 100 * UNIT

    def test_report_to_dict_uses_string_keys(self, splitter, two_deposits):
        first, _ = two_deposits
        report = splitter.run_upkeep()
        data = report.to_dict()
        assert data["credits"][str(first)] == 81 * UNIT
        assert data["eligible_ids"] == list(report.eligible_ids)


class TestNothingToConvert:
    def test_no_eligible_deposits(self, splitter, deposit, accrue, exchange):
        deposit("alice", "carol", 1000 * UNIT)
        accrue(2 * UNIT)
        report = splitter.run_upkeep()
        assert report.eligible_ids == ()
        assert not report.converted
        assert exchange.swaps == []

    def test_zero_yield_skips_exchange(self, splitter, deposit, clock, exchange):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        clock.advance(DAY)
        report = splitter.run_upkeep()
        assert report.eligible_ids == (deposit_id,)
        assert report.total_yield == 0
        assert report.credits == {deposit_id: 0}
        assert exchange.swaps == []

    def test_full_fee_skips_exchange(self, splitter, two_deposits, settings, principal, exchange):
        settings.fee_share_bps = 10_000
        report = splitter.run_upkeep()
        assert report.fee == 400 * UNIT
        assert report.amount_in == 0
        assert report.proceeds == 0
        assert exchange.swaps == []
        assert principal.balance_of("treasury") == 400 * UNIT

    def test_upkeep_disabled(self, splitter, two_deposits, settings):
        settings.upkeep_disabled = True
        with pytest.raises(OperationDisabled):
            splitter.run_upkeep()
        assert splitter.scheduler.cycles_run == 0


class TestConversionFailure:
    def assert_restored(self, splitter, first, second):
        assert splitter.ledger.outstanding_yield(first) == 100 * UNIT
        assert splitter.ledger.outstanding_yield(second) == 300 * UNIT
        for deposit_id in (first, second):
            record = splitter.ledger.get(deposit_id)
            assert record.last_settled == START
            assert record.claimable_settlement == 0

    def test_reverted_swap_restores_records(self, splitter, two_deposits, exchange, events):
        exchange.fail = True
        with pytest.raises(ExternalConversionFailed) as excinfo:
            splitter.run_upkeep()
        assert excinfo.value.cycle == 1
        assert excinfo.value.step == "convert"
        self.assert_restored(splitter, *two_deposits)
        assert len(events.of_type(EVENT_UPKEEP_ABORTED)) == 1
        assert events.of_type(EVENT_UPKEEP_COMPLETED) == []

    def test_slippage_beyond_tolerance(self, splitter, two_deposits, exchange, principal):
        exchange.impact_bps = 200
        with pytest.raises(ExternalConversionFailed):
            splitter.run_upkeep()
        self.assert_restored(splitter, *two_deposits)
        assert principal.balance_of("ledger") == 4400 * UNIT

    def test_slippage_within_tolerance(self, splitter, two_deposits, exchange):
        exchange.impact_bps = 50
        report = splitter.run_upkeep()
        assert report.min_out <= report.proceeds < 324 * UNIT

    def test_retry_after_failure_settles_same_yield(self, splitter, two_deposits, exchange):
        exchange.fail = True
        with pytest.raises(ExternalConversionFailed):
            splitter.run_upkeep()
        exchange.fail = False
        report = splitter.run_upkeep()
        assert report.cycle == 2
        assert report.total_yield == 400 * UNIT

    def test_quote_failure_restores_records(self, splitter, two_deposits, exchange):
        with patch.object(exchange, "quote", side_effect=RuntimeError("price feed down")):
            with pytest.raises(ExternalConversionFailed, match="price feed down"):
                splitter.run_upkeep()
        self.assert_restored(splitter, *two_deposits)

    def test_missing_staking_adapter(self, splitter, two_deposits, principal, settlement, exchange, settings):
        scheduler = UpkeepScheduler(splitter.ledger, principal, settlement, exchange)
        settings.conversion_form = "unstake"
        with pytest.raises(ExternalConversionFailed) as excinfo:
            scheduler.run_cycle()
        assert excinfo.value.step == "unstake"
        self.assert_restored(splitter, *two_deposits)


class TestFeePayment:
    def test_refused_fee_commits_cycle_and_is_owed(
        self, splitter, two_deposits, principal, settlement, caplog
    ):
        first, second = two_deposits
        principal.blocked.add("treasury")

        with caplog.at_level(logging.WARNING, logger="yield_splitter.core.scheduler"):
            report = splitter.run_upkeep()

        assert report.fee == 40 * UNIT
        assert report.fee_paid == 0
        assert report.fee_owed == 40 * UNIT
        assert report.credits == {first: 81 * UNIT, second: 243 * UNIT}
        assert splitter.ledger.outstanding_yield(first) == 0
        assert splitter.ledger.outstanding_yield(second) == 0
        assert principal.balance_of("treasury") == 0
        assert "fee transfer" in caplog.text

        # the unpaid fee is still held next to the principal
        owed = splitter.ledger.total_principal() + splitter.scheduler.fee_owed
        assert principal.balance_of(splitter.account) == owed
        assert settlement.balance_of(splitter.account) == splitter.ledger.total_claimable()

    def test_owed_fee_paid_on_next_cycle(self, splitter, two_deposits, principal, clock):
        principal.blocked.add("treasury")
        splitter.run_upkeep()
        principal.blocked.clear()
        clock.advance(DAY)

        report = splitter.run_upkeep()

        assert report.total_yield == 0
        assert report.fee_paid == 40 * UNIT
        assert report.fee_owed == 0
        assert principal.balance_of("treasury") == 40 * UNIT
        assert principal.balance_of(splitter.account) == splitter.ledger.total_principal()

    def test_owed_fee_joins_next_fee(self, splitter, two_deposits, principal, accrue, clock):
        principal.blocked.add("treasury")
        splitter.run_upkeep()
        principal.blocked.clear()
        accrue(UNIT * 121 // 100)
        clock.advance(DAY)

        report = splitter.run_upkeep()

        assert report.fee > 0
        assert report.fee_paid == report.fee + 40 * UNIT
        assert report.fee_owed == 0
        assert principal.balance_of("treasury") == report.fee_paid


class TestConversionForms:
    @pytest.mark.parametrize("form,calls", [("unwrap", "unwrapped"), ("unstake", "unstaked")])
    def test_staking_adapter_called(self, splitter, two_deposits, settings, staking, form, calls):
        settings.conversion_form = form
        report = splitter.run_upkeep()
        assert getattr(staking, calls) == [360 * UNIT]
        assert report.proceeds == 324 * UNIT


class TestDistribution:
    def test_failed_push_stays_claimable(self, splitter, two_deposits, settlement, events, caplog):
        _, second = two_deposits
        settlement.blocked.add("dave")

        with caplog.at_level(logging.WARNING, logger="yield_splitter.core.scheduler"):
            report = splitter.run_upkeep()

        assert report.failed_payouts == {second: 243 * UNIT}
        assert report.pushed == {}
        assert splitter.ledger.get(second).claimable_settlement == 243 * UNIT
        assert events.of_type(EVENT_PAYOUT_PUSHED) == []
        assert "payout" in caplog.text

    def test_push_error_of_any_kind_stays_claimable(
        self, splitter, two_deposits, settlement, events
    ):
        first, second = two_deposits
        real_transfer = settlement.transfer

        def transfer(sender, to, amount):
            if to == "dave":
                raise ReentrantCall("recipient hook re-entered", operation="open")
            return real_transfer(sender, to, amount)

        with patch.object(settlement, "transfer", side_effect=transfer):
            report = splitter.run_upkeep()

        assert report.failed_payouts == {second: 243 * UNIT}
        assert report.credits == {first: 81 * UNIT, second: 243 * UNIT}
        assert splitter.ledger.get(second).claimable_settlement == 243 * UNIT
        assert settlement.balance_of(splitter.account) == (
            splitter.ledger.total_claimable() + splitter.scheduler.dust
        )
        assert len(events.of_type(EVENT_UPKEEP_COMPLETED)) == 1

    def test_global_floor_holds_back_push(self, splitter, two_deposits, settings):
        _, second = two_deposits
        settings.minimum_payout_threshold = 1000 * UNIT
        report = splitter.run_upkeep()
        assert report.pushed == {}
        assert splitter.ledger.get(second).claimable_settlement == 243 * UNIT

    def test_dust_carries_into_next_cycle(self, splitter, deposit, accrue, clock):
        ids = [
            deposit("alice", "carol", 100),
            deposit("alice", "carol", 100),
            deposit("alice", "carol", 101),
        ]
        accrue(2 * UNIT)
        clock.advance(DAY)
        first = splitter.run_upkeep()

        assert first.yields == dict(zip(ids, [100, 100, 101]))
        assert first.proceeds == 243
        assert first.credits == dict(zip(ids, [80, 80, 81]))
        assert first.dust_carried == 2

        accrue(3 * UNIT)
        clock.advance(DAY)
        second = splitter.run_upkeep()

        distributable = second.proceeds + first.dust_carried
        assert sum(second.credits.values()) + second.dust_carried == distributable
        assert second.dust_carried < len(ids)
