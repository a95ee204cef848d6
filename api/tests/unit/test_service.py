"""YieldSplitter tests: asset movement around lifecycle calls and kill-switches."""

import pytest

from yield_splitter.core.accountant import UNIT
from yield_splitter.errors import (
    InvalidAmount,
    OperationDisabled,
    TransferFailed,
    Unauthorized,
)

DAY = 86_400


class TestDepositFlows:
    def test_open_pulls_principal(self, deposit, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        assert principal.balance_of("alice") == 9000 * UNIT
        assert principal.balance_of("ledger") == 1000 * UNIT
        assert splitter.ledger.get(deposit_id).principal == 1000 * UNIT

    def test_open_without_allowance_creates_nothing(self, splitter, principal):
        with pytest.raises(TransferFailed):
            splitter.open("alice", "carol", 1000 * UNIT)
        assert len(splitter.ledger) == 0
        assert principal.balance_of("alice") == 10_000 * UNIT

    def test_top_up_pulls_principal(self, deposit, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        principal.approve("alice", splitter.account, 500 * UNIT)
        splitter.top_up(deposit_id, "alice", 500 * UNIT)
        assert principal.balance_of("ledger") == 1500 * UNIT

    def test_partial_withdraw_pays_depositor(self, deposit, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        splitter.partial_withdraw(deposit_id, "alice", 400 * UNIT)
        assert principal.balance_of("alice") == 9400 * UNIT
        assert principal.balance_of("ledger") == 600 * UNIT

    def test_extract_pays_recipient(self, deposit, accrue, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        accrue(UNIT * 11 // 10)
        assert splitter.extract_yield(deposit_id, "alice") == 100 * UNIT
        assert principal.balance_of("carol") == 100 * UNIT
        assert principal.balance_of("ledger") == 1000 * UNIT

    def test_extract_refused_by_recipient(self, deposit, accrue, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        accrue(UNIT * 11 // 10)
        principal.blocked.add("carol")
        with pytest.raises(TransferFailed):
            splitter.extract_yield(deposit_id, "carol")
        assert splitter.ledger.outstanding_yield(deposit_id) == 100 * UNIT


class TestClose:
    def test_close_pays_principal_and_yield(self, deposit, accrue, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        accrue(UNIT * 11 // 10)
        closed = splitter.close(deposit_id, "alice")
        assert closed.total_value == 1100 * UNIT
        assert principal.balance_of("alice") == 9000 * UNIT * 11 // 10 + 1100 * UNIT
        assert principal.balance_of("ledger") == 0

    def test_close_pays_unclaimed_settlement_to_recipient(
        self, deposit, accrue, clock, splitter, settlement
    ):
        deposit_id = deposit("alice", "carol", 1000 * UNIT, minimum_payout_threshold=500 * UNIT)
        accrue(UNIT * 11 // 10)
        clock.advance(DAY)
        splitter.run_upkeep()

        closed = splitter.close(deposit_id, "alice")

        assert closed.unclaimed_settlement == 81 * UNIT
        assert settlement.balance_of("carol") == 81 * UNIT
        assert settlement.balance_of("ledger") == 0

    def test_close_failure_after_settlement_paid(
        self, deposit, accrue, clock, splitter, settlement, principal
    ):
        deposit_id = deposit("alice", "carol", 1000 * UNIT, minimum_payout_threshold=500 * UNIT)
        accrue(UNIT * 11 // 10)
        clock.advance(DAY)
        splitter.run_upkeep()
        principal.blocked.add("alice")

        with pytest.raises(TransferFailed):
            splitter.close(deposit_id, "alice")

        record = splitter.ledger.get(deposit_id)
        assert settlement.balance_of("carol") == 81 * UNIT
        assert record.claimable_settlement == 0
        assert record.principal == 1000 * UNIT


class TestClaimAndPreferences:
    def test_claim_moves_settlement(self, deposit, accrue, clock, splitter, settlement):
        deposit_id = deposit("alice", "carol", 1000 * UNIT, minimum_payout_threshold=500 * UNIT)
        accrue(UNIT * 11 // 10)
        clock.advance(DAY)
        splitter.run_upkeep()
        assert splitter.claim_settlement(deposit_id, "carol") == 81 * UNIT
        with pytest.raises(InvalidAmount):
            splitter.claim_settlement(deposit_id, "carol")

    def test_redirected_yield_goes_to_new_recipient(self, deposit, accrue, principal, splitter):
        deposit_id = deposit("alice", "carol", 1000 * UNIT)
        splitter.change_recipient(deposit_id, "alice", "dave")
        accrue(UNIT * 11 // 10)
        splitter.extract_yield(deposit_id, "dave")
        assert principal.balance_of("dave") == 100 * UNIT
        assert principal.balance_of("carol") == 0

    def test_preferences_through_service(self, deposit, splitter):
        deposit_id = deposit("alice", "carol", 100)
        record = splitter.update_preferences(deposit_id, "alice", settlement_interval=3600)
        assert record.settlement_interval == 3600


class TestKillSwitches:
    def test_deposits_disabled(self, splitter, deposit, principal):
        deposit_id = deposit("alice", "carol", 100)
        splitter.admin.set_deposits_disabled("admin", True)
        principal.approve("alice", splitter.account, 100)
        with pytest.raises(OperationDisabled):
            splitter.open("alice", "carol", 100)
        with pytest.raises(OperationDisabled):
            splitter.top_up(deposit_id, "alice", 100)
        # withdrawals still work
        splitter.partial_withdraw(deposit_id, "alice", 50)

    @pytest.mark.parametrize(
        "call",
        [
            lambda s, i: s.partial_withdraw(i, "alice", 10),
            lambda s, i: s.extract_yield(i, "alice"),
            lambda s, i: s.close(i, "alice"),
            lambda s, i: s.claim_settlement(i, "carol"),
        ],
        ids=["withdraw", "extract", "close", "claim"],
    )
    def test_withdrawals_disabled(self, splitter, deposit, call):
        deposit_id = deposit("alice", "carol", 100)
        splitter.admin.set_withdrawals_disabled("admin", True)
        with pytest.raises(OperationDisabled):
            call(splitter, deposit_id)
        assert splitter.ledger.exists(deposit_id)

    def test_non_admin_cannot_flip_switch(self, splitter):
        with pytest.raises(Unauthorized):
            splitter.admin.set_upkeep_disabled("alice", True)
        assert not splitter.settings.upkeep_disabled
