"""
test_lifecycle.py - Tests for the LoanLifecycle facade

Tests:
- Each public operation's return value and committed state
- Error kinds per operation
- Read-only queries (details, repayment status, status, quotes)
- Positional call() interface
- Verbose failure reporting
"""

import pytest

from bitlend import (
    LoanLifecycle, LoanStore, BlockHeightClock, LoanStatus, ExecuteResult,
    compute_add_collateral,
    Unauthorized, LoanNotFound, LiquidationNotAllowed, InvalidParameter,
    InsufficientCollateral, InsufficientFunds, StaleLoanState,
)
from tests.fake_view import COLLATERAL, LOAN_AMOUNT, INTEREST_RATE, DURATION, START_HEIGHT


class TestCreateLoan:

    def test_returns_first_id(self, engine):
        assert engine.create_loan("alice", 150000, 100000, 500, 52560) == 1

    def test_records_start_height_from_clock(self, engine, clock):
        clock.advance_to(4242)
        loan_id = engine.create_loan("alice", 150000, 100000, 500, 52560)
        assert engine.get_loan_details(loan_id, "alice").start_height == 4242

    def test_failure_does_not_consume_id(self, engine, store):
        with pytest.raises(InsufficientCollateral):
            engine.create_loan("alice", 100000, 100000, 500, 52560)
        assert store.next_id() == 0
        assert engine.create_loan("alice", 150000, 100000, 500, 52560) == 1

    def test_ids_shared_across_borrowers(self, engine):
        assert engine.create_loan("alice", 150000, 100000, 500, 100) == 1
        assert engine.create_loan("bob", 150000, 100000, 500, 100) == 2
        assert engine.get_loan_details(2, "alice") is None
        assert engine.get_loan_details(2, "bob").borrower == "bob"


class TestCollateral:

    def test_add_returns_new_total(self, funded_engine):
        assert funded_engine.add_collateral("alice", 1, 50000) == 200000
        assert funded_engine.get_loan_details(1, "alice").collateral_amount == 200000

    def test_withdraw_returns_amount(self, funded_engine):
        funded_engine.add_collateral("alice", 1, 50000)
        assert funded_engine.withdraw_collateral("alice", 1, 50000) == 50000
        assert funded_engine.get_loan_details(1, "alice").collateral_amount == 150000

    def test_withdraw_more_than_posted(self, funded_engine):
        with pytest.raises(InsufficientFunds):
            funded_engine.withdraw_collateral("alice", 1, 200000)

    def test_add_on_missing_loan(self, engine):
        with pytest.raises(Unauthorized):
            engine.add_collateral("alice", 999, 50000)

    def test_other_caller_cannot_touch(self, funded_engine):
        with pytest.raises(Unauthorized):
            funded_engine.add_collateral("mallory", 1, 50000)
        with pytest.raises(Unauthorized):
            funded_engine.withdraw_collateral("mallory", 1, 1)
        assert funded_engine.get_loan_details(1, "alice").collateral_amount == COLLATERAL

    def test_zero_amount(self, funded_engine):
        with pytest.raises(InvalidParameter):
            funded_engine.add_collateral("alice", 1, 0)


class TestRepayLoan:

    def test_returns_total(self, funded_engine):
        assert funded_engine.repay_loan("alice", 1) == 600000

    def test_writes_repayment_record(self, funded_engine, clock):
        clock.advance(10)
        funded_engine.repay_loan("alice", 1)
        status = funded_engine.get_repayment_status(1, "alice")
        assert status.total_repaid == 600000
        assert status.repaid_at_height == START_HEIGHT + 10
        assert funded_engine.get_loan_details(1, "alice").is_active is False

    def test_missing_loan(self, engine):
        with pytest.raises(LoanNotFound):
            engine.repay_loan("alice", 999)

    def test_other_caller_sees_not_found(self, funded_engine):
        with pytest.raises(LoanNotFound):
            funded_engine.repay_loan("mallory", 1)


class TestLiquidateLoan:

    def test_not_allowed_before_due(self, funded_engine, clock):
        clock.advance(DURATION)
        with pytest.raises(LiquidationNotAllowed):
            funded_engine.liquidate_loan("alice", 1)
        assert funded_engine.get_loan_details(1, "alice").is_active

    def test_allowed_after_due(self, funded_engine, clock):
        clock.advance(DURATION + 1)
        assert funded_engine.liquidate_loan("alice", 1) is True
        assert funded_engine.get_loan_details(1, "alice").is_active is False
        assert funded_engine.get_repayment_status(1, "alice") is None


class TestQueries:

    def test_status_transitions(self, engine, clock):
        assert engine.get_loan_status(1, "alice") == LoanStatus.NONEXISTENT
        engine.create_loan("alice", 150000, 100000, 500, 10)
        engine.create_loan("alice", 150000, 100000, 500, 10)
        assert engine.get_loan_status(1, "alice") == LoanStatus.ACTIVE
        engine.repay_loan("alice", 1)
        clock.advance(11)
        engine.liquidate_loan("alice", 2)
        assert engine.get_loan_status(1, "alice") == LoanStatus.REPAID
        assert engine.get_loan_status(2, "alice") == LoanStatus.LIQUIDATED

    def test_total_repayment_quote(self, funded_engine):
        assert funded_engine.get_total_repayment(1, "alice") == 600000
        assert funded_engine.get_loan_details(1, "alice").is_active
        funded_engine.repay_loan("alice", 1)
        assert funded_engine.get_total_repayment(1, "alice") is None
        assert funded_engine.get_total_repayment(7, "alice") is None

    def test_is_liquidatable(self, funded_engine, clock):
        assert not funded_engine.is_liquidatable(1, "alice")
        clock.advance(DURATION + 1)
        assert funded_engine.is_liquidatable(1, "alice")
        assert not funded_engine.is_liquidatable(1, "bob")

    def test_queries_open_to_anyone(self, funded_engine):
        """Details are keyed by borrower, not by who asks."""
        record = funded_engine.get_loan_details(1, "alice")
        assert record.loan_amount == LOAN_AMOUNT
        assert record.interest_rate == INTEREST_RATE

    def test_list_loans(self, engine):
        engine.create_loan("alice", 150000, 100000, 500, 10)
        engine.create_loan("bob", 150000, 100000, 500, 10)
        engine.create_loan("alice", 150000, 100000, 500, 10)
        assert [r.loan_id for r in engine.list_loans("alice")] == [1, 3]


class TestCall:

    def test_full_flow_by_name(self, engine, clock):
        assert engine.call("alice", "create-loan", 150000, 100000, 500, 52560) == 1
        assert engine.call("alice", "add-collateral", 1, 50000) == 200000
        assert engine.call("alice", "withdraw-collateral", 1, 50000) == 50000
        assert engine.call("alice", "repay-loan", 1) == 600000

    def test_liquidate_by_name(self, funded_engine, clock):
        clock.advance(DURATION + 1)
        assert funded_engine.call("alice", "liquidate-loan", 1) is True

    def test_wrong_arity(self, engine):
        with pytest.raises(ValueError, match="takes 1 arguments"):
            engine.call("alice", "repay-loan", 1, 2)

    def test_unknown_operation(self, engine):
        with pytest.raises(ValueError, match="Unknown operation"):
            engine.call("alice", "transfer", 1)


class TestStaleCommit:

    class _InterferingStore(LoanStore):
        """Store that lets another writer commit between build and execute."""

        def execute(self, pending):
            if pending.loan_changes and pending.loan_changes[0].old_record is not None:
                other = compute_add_collateral(self, "alice", 1, 1, height=0)
                assert super().execute(other) == ExecuteResult.APPLIED
            return super().execute(pending)

    def test_rejected_commit_raises(self):
        store = self._InterferingStore("test", verbose=False)
        engine = LoanLifecycle(store, BlockHeightClock(0))
        engine.create_loan("alice", 150000, 100000, 500, 10)
        with pytest.raises(StaleLoanState):
            engine.add_collateral("alice", 1, 50000)
        assert store.get(1, "alice").collateral_amount == 150001


class TestVerbose:

    def test_failure_is_reported_and_raised(self, capsys):
        engine = LoanLifecycle(LoanStore("loud", verbose=False), BlockHeightClock(0), verbose=True)
        with pytest.raises(InsufficientCollateral):
            engine.create_loan("alice", 1, 100000, 500, 10)
        out = capsys.readouterr().out
        assert "create-loan by alice failed: insufficient collateral" in out

    def test_defaults_to_store_verbosity(self):
        engine = LoanLifecycle(LoanStore("quiet", verbose=False), BlockHeightClock(0))
        assert engine.verbose is False


class TestCallerIdentity:

    def test_empty_caller_is_a_loan_error(self, engine, store):
        with pytest.raises(Unauthorized):
            engine.create_loan("", 150000, 100000, 500, 10)
        assert store.next_id() == 0

    def test_empty_caller_is_reported(self, capsys):
        engine = LoanLifecycle(LoanStore("loud", verbose=False), BlockHeightClock(0), verbose=True)
        with pytest.raises(Unauthorized):
            engine.create_loan("", 150000, 100000, 500, 10)
        with pytest.raises(Unauthorized):
            engine.add_collateral("", 1, 10)
        out = capsys.readouterr().out
        assert "create-loan by  failed: unauthorized" in out
        assert "add-collateral by  failed: unauthorized" in out
