"""
lifecycle.py - Loan Lifecycle Facade

Public operation surface of the engine. Each operation:
1. Reads the current height from the ClockSource
2. Builds a PendingLoanTransaction with the matching compute_* function
3. Commits it through LoanStore.execute()
4. Returns the operation's result value

Failures raise a LoanError subclass; nothing is written when they do.
Read-only queries are open to any caller.
"""

from __future__ import annotations
from typing import Any, Callable, List, Optional

from .core import (
    ClockSource, LoanRecord, RepaymentRecord, PendingLoanTransaction,
    ExecuteResult, LoanStatus, Operation,
    LoanError, StaleLoanState,
)
from .store import LoanStore
from .loan import (
    compute_create_loan, compute_add_collateral, compute_withdraw_collateral,
    compute_repayment, compute_liquidation,
)
from .validation import calculate_total_repayment, is_past_due


class LoanLifecycle:
    """
    Orchestrates the create / adjust / repay / liquidate operations over one store.

    The caller identity is passed explicitly to every operation and is
    trusted as already authenticated.

    Example:
        store = LoanStore("main")
        clock = BlockHeightClock(1000)
        engine = LoanLifecycle(store, clock)

        loan_id = engine.create_loan("alice", 150000, 100000, 500, 52560)
        engine.add_collateral("alice", loan_id, 50000)   # 200000
        engine.repay_loan("alice", loan_id)              # 600000
    """

    def __init__(
        self,
        store: LoanStore,
        clock: ClockSource,
        verbose: Optional[bool] = None,
    ):
        """
        Initialize the lifecycle.

        Args:
            store: Store to read and commit to
            clock: Source of the current block height
            verbose: Print failed operations (defaults to store.verbose)
        """
        self.store = store
        self.clock = clock
        self.verbose = store.verbose if verbose is None else verbose

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _run(
        self,
        operation: Operation,
        caller: str,
        build: Callable[[int], PendingLoanTransaction],
    ) -> PendingLoanTransaction:
        """Build against the current height, commit, and return the committed transaction."""
        try:
            pending = build(self.clock.current())
            if self.store.execute(pending) == ExecuteResult.REJECTED:
                raise StaleLoanState(f"{operation.value} by {caller} rejected by store {self.store.name}")
        except LoanError as e:
            if self.verbose:
                print(f"✗ {operation.value} by {caller} failed: {e.kind}: {e}")
            raise
        return pending

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def create_loan(
        self,
        caller: str,
        collateral: int,
        loan_amount: int,
        interest_rate: int,
        duration: int,
    ) -> int:
        """
        Open a loan for the caller.

        Returns:
            The new loan id (1 for the first loan in the store).

        Raises:
            InvalidParameter, LoanAlreadyExists, InsufficientCollateral
        """
        pending = self._run(
            Operation.CREATE_LOAN, caller,
            lambda height: compute_create_loan(
                self.store, caller, collateral, loan_amount, interest_rate, duration, height
            ),
        )
        return pending.allocated_id

    def add_collateral(self, caller: str, loan_id: int, amount: int) -> int:
        """
        Post additional collateral.

        Returns:
            The new collateral total.

        Raises:
            Unauthorized, InvalidParameter
        """
        pending = self._run(
            Operation.ADD_COLLATERAL, caller,
            lambda height: compute_add_collateral(self.store, caller, loan_id, amount, height),
        )
        return pending.loan_changes[0].new_record.collateral_amount

    def withdraw_collateral(self, caller: str, loan_id: int, amount: int) -> int:
        """
        Withdraw collateral while keeping the 150% minimum.

        Returns:
            The amount withdrawn.

        Raises:
            Unauthorized, InvalidParameter, InsufficientFunds, InsufficientCollateral
        """
        self._run(
            Operation.WITHDRAW_COLLATERAL, caller,
            lambda height: compute_withdraw_collateral(self.store, caller, loan_id, amount, height),
        )
        return amount

    def repay_loan(self, caller: str, loan_id: int) -> int:
        """
        Repay and close a loan.

        Returns:
            Total repayment (principal + loan_amount * interest_rate // 100).

        Raises:
            LoanNotFound, Unauthorized, LoanRepaymentFailed
        """
        pending = self._run(
            Operation.REPAY_LOAN, caller,
            lambda height: compute_repayment(self.store, caller, loan_id, height),
        )
        return pending.repayment_changes[0].new_record.total_repaid

    def liquidate_loan(self, caller: str, loan_id: int) -> bool:
        """
        Close a past-due loan.

        Returns:
            True

        Raises:
            LoanNotFound, Unauthorized, LiquidationNotAllowed
        """
        self._run(
            Operation.LIQUIDATE_LOAN, caller,
            lambda height: compute_liquidation(self.store, caller, loan_id, height),
        )
        return True

    def call(self, caller: str, operation: Any, *args: int) -> Any:
        """
        Invoke an operation by name with positional arguments.

        Argument order follows the operation signatures:
            create-loan: collateral, loan_amount, interest_rate, duration
            add-collateral / withdraw-collateral: loan_id, amount
            repay-loan / liquidate-loan: loan_id

        Example:
            engine.call("alice", "create-loan", 150000, 100000, 500, 52560)  # 1

        Raises:
            ValueError: Unknown operation or wrong number of arguments
        """
        try:
            op = Operation(operation)
        except ValueError:
            raise ValueError(f"Unknown operation '{operation}'") from None

        handlers = {
            Operation.CREATE_LOAN: (self.create_loan, 4),
            Operation.ADD_COLLATERAL: (self.add_collateral, 2),
            Operation.WITHDRAW_COLLATERAL: (self.withdraw_collateral, 2),
            Operation.REPAY_LOAN: (self.repay_loan, 1),
            Operation.LIQUIDATE_LOAN: (self.liquidate_loan, 1),
        }
        handler, arity = handlers[op]
        if len(args) != arity:
            raise ValueError(f"{op.value} takes {arity} arguments, got {len(args)}")
        return handler(caller, *args)

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def get_loan_details(self, loan_id: int, borrower: str) -> Optional[LoanRecord]:
        """Return the loan record at (loan_id, borrower), or None."""
        return self.store.get(loan_id, borrower)

    def get_repayment_status(self, loan_id: int, borrower: str) -> Optional[RepaymentRecord]:
        """Return the repayment record at (loan_id, borrower), or None."""
        return self.store.get_repayment(loan_id, borrower)

    def get_loan_status(self, loan_id: int, borrower: str) -> LoanStatus:
        """Return where (loan_id, borrower) sits in the loan state machine."""
        record = self.store.get(loan_id, borrower)
        if record is None:
            return LoanStatus.NONEXISTENT
        if record.is_active:
            return LoanStatus.ACTIVE
        if self.store.get_repayment(loan_id, borrower) is not None:
            return LoanStatus.REPAID
        return LoanStatus.LIQUIDATED

    def get_total_repayment(self, loan_id: int, borrower: str) -> Optional[int]:
        """
        Quote the amount repay_loan() would return, without closing the loan.

        Returns None if the loan is missing, closed, or the total overflows.
        """
        record = self.store.get(loan_id, borrower)
        if record is None or not record.is_active:
            return None
        return calculate_total_repayment(record.loan_amount, record.interest_rate)

    def is_liquidatable(self, loan_id: int, borrower: str) -> bool:
        """True if the loan is active and past due at the current height."""
        record = self.store.get(loan_id, borrower)
        if record is None or not record.is_active:
            return False
        return is_past_due(record.start_height, record.duration, self.clock.current())

    def list_loans(self, borrower: str) -> List[LoanRecord]:
        """All loans of a borrower, active or closed, ordered by id."""
        return self.store.list_loans(borrower)
