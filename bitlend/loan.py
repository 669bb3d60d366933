"""
loan.py - Loan Transitions

Pure transition builders for the loan state machine:

    Nonexistent --create--> Active --repay-----> Closed (RepaymentRecord present)
                                   --liquidate-> Closed (no RepaymentRecord)

Every compute_* function:
    - Reads only through a LoanView
    - Takes the caller and block height as explicit parameters
    - Returns a PendingLoanTransaction with complete before/after records
    - Raises a LoanError subclass if any precondition fails

Nothing is written until the returned transaction is passed to
LoanStore.execute(). A raised error therefore never leaves partial state.

Capability model: a caller can only touch records stored under its own
identity, and each handler compares record.borrower to the caller explicitly.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Type

from .core import (
    LoanView, LoanRecord, RepaymentRecord,
    LoanStateChange, RepaymentChange, PendingLoanTransaction,
    Operation,
    build_transaction, checked_add, checked_sub,
    LoanError, Unauthorized, LoanNotFound, LoanAlreadyExists,
    LoanRepaymentFailed, LiquidationNotAllowed, InvalidParameter,
    InsufficientCollateral, InsufficientFunds,
)
from .validation import (
    validate_creation_parameters, minimum_collateral,
    calculate_total_repayment, is_past_due, is_valid_amount,
)


def _require_caller(caller: Any) -> None:
    """
    Raises:
        Unauthorized: If caller is not a non-empty identity string
    """
    if not isinstance(caller, str) or not caller.strip():
        raise Unauthorized(f"invalid caller identity {caller!r}")


def _load_owned_active_loan(
    view: LoanView,
    caller: str,
    loan_id: int,
    missing_error: Type[LoanError],
) -> LoanRecord:
    """
    Read the caller's loan and check that it may still be mutated.

    Raises:
        missing_error: If no record exists at (loan_id, caller)
        Unauthorized: If the caller identity is empty, or the record belongs
            to someone else or is closed
    """
    _require_caller(caller)
    record = view.get(loan_id, caller)
    if record is None:
        raise missing_error(f"no loan {loan_id} for {caller}")
    if record.borrower != caller:
        raise Unauthorized(f"loan {loan_id} is owned by {record.borrower}, not {caller}")
    if not record.is_active:
        raise Unauthorized(f"loan {loan_id} is closed")
    return record


# ============================================================================
# CREATE
# ============================================================================

def compute_create_loan(
    view: LoanView,
    caller: str,
    collateral: int,
    loan_amount: int,
    interest_rate: int,
    duration: int,
    height: int,
) -> PendingLoanTransaction:
    """
    Open a new loan for the caller.

    The transaction claims the next loan id (next_id() + 1); the store
    advances its counter only when the transaction commits.

    Args:
        view: Read-only store access
        caller: Borrower opening the loan
        collateral: Collateral posted (> 0)
        loan_amount: Principal (> 0)
        interest_rate: 0..10000
        duration: 1..52560 blocks
        height: Current block height, recorded as start_height

    Returns:
        PendingLoanTransaction creating the record; allocated_id is the new id.

    Raises:
        Unauthorized: caller is not a non-empty identity
        InvalidParameter: Parameters out of bounds, or the id counter is exhausted
        LoanAlreadyExists: A record already sits at (new_id, caller)
        InsufficientCollateral: collateral < minimum_collateral(loan_amount)

    Example:
        pending = compute_create_loan(store, "alice", 150000, 100000, 500, 52560, height=1000)
        store.execute(pending)   # loan 1 for alice
    """
    _require_caller(caller)
    if not validate_creation_parameters(collateral, loan_amount, interest_rate, duration):
        raise InvalidParameter(
            f"invalid loan parameters: collateral={collateral!r}, loan_amount={loan_amount!r}, "
            f"interest_rate={interest_rate!r}, duration={duration!r}"
        )

    new_id = checked_add(view.next_id(), 1)
    if new_id is None:
        raise InvalidParameter("loan id counter exhausted")

    if view.get(new_id, caller) is not None:
        raise LoanAlreadyExists(f"loan {new_id} already exists for {caller}")

    required = minimum_collateral(loan_amount)
    if collateral < required:
        raise InsufficientCollateral(
            f"collateral {collateral} below minimum {required} for loan of {loan_amount}"
        )

    record = LoanRecord(
        loan_id=new_id,
        borrower=caller,
        collateral_amount=collateral,
        loan_amount=loan_amount,
        interest_rate=interest_rate,
        start_height=height,
        duration=duration,
        is_active=True,
    )
    change = LoanStateChange(key=record.key, old_record=None, new_record=record)
    return build_transaction(Operation.CREATE_LOAN, caller, height, [change], allocated_id=new_id)


# ============================================================================
# COLLATERAL
# ============================================================================

def compute_add_collateral(
    view: LoanView,
    caller: str,
    loan_id: int,
    amount: int,
    height: int,
) -> PendingLoanTransaction:
    """
    Post additional collateral on an active loan.

    Returns:
        PendingLoanTransaction raising collateral_amount by amount.

    Raises:
        Unauthorized: Loan missing, not the caller's, or closed
        InvalidParameter: amount is zero or the new total exceeds MAX_UINT
    """
    record = _load_owned_active_loan(view, caller, loan_id, Unauthorized)

    if not is_valid_amount(amount):
        raise InvalidParameter(f"amount must be positive, got {amount!r}")

    new_total = checked_add(record.collateral_amount, amount)
    if new_total is None:
        raise InvalidParameter(f"collateral overflow adding {amount} to loan {loan_id}")

    new_record = replace(record, collateral_amount=new_total)
    change = LoanStateChange(key=record.key, old_record=record, new_record=new_record)
    return build_transaction(Operation.ADD_COLLATERAL, caller, height, [change])


def compute_withdraw_collateral(
    view: LoanView,
    caller: str,
    loan_id: int,
    amount: int,
    height: int,
) -> PendingLoanTransaction:
    """
    Release collateral from an active loan, keeping the 150% minimum.

    Returns:
        PendingLoanTransaction lowering collateral_amount by amount.

    Raises:
        Unauthorized: Loan missing, not the caller's, or closed
        InvalidParameter: amount is zero
        InsufficientFunds: amount exceeds the posted collateral
        InsufficientCollateral: what remains is below minimum_collateral(loan_amount)
    """
    record = _load_owned_active_loan(view, caller, loan_id, Unauthorized)

    if not is_valid_amount(amount):
        raise InvalidParameter(f"amount must be positive, got {amount!r}")

    new_total = checked_sub(record.collateral_amount, amount)
    if new_total is None:
        raise InsufficientFunds(
            f"cannot withdraw {amount}, only {record.collateral_amount} posted on loan {loan_id}"
        )

    required = minimum_collateral(record.loan_amount)
    if new_total < required:
        raise InsufficientCollateral(
            f"withdrawing {amount} leaves {new_total}, below minimum {required}"
        )

    new_record = replace(record, collateral_amount=new_total)
    change = LoanStateChange(key=record.key, old_record=record, new_record=new_record)
    return build_transaction(Operation.WITHDRAW_COLLATERAL, caller, height, [change])


# ============================================================================
# CLOSE
# ============================================================================

def compute_repayment(
    view: LoanView,
    caller: str,
    loan_id: int,
    height: int,
) -> PendingLoanTransaction:
    """
    Repay a loan in full and close it.

    total = loan_amount + loan_amount * interest_rate // 100

    Returns:
        PendingLoanTransaction closing the loan and writing a RepaymentRecord
        with total_repaid = total.

    Raises:
        LoanNotFound: No record at (loan_id, caller)
        Unauthorized: Loan not the caller's, or already closed
        LoanRepaymentFailed: total exceeds MAX_UINT
    """
    record = _load_owned_active_loan(view, caller, loan_id, LoanNotFound)

    total = calculate_total_repayment(record.loan_amount, record.interest_rate)
    if total is None:
        raise LoanRepaymentFailed(f"repayment total overflows for loan {loan_id}")

    closed = replace(record, is_active=False)
    repayment = RepaymentRecord(
        loan_id=record.loan_id,
        borrower=record.borrower,
        total_repaid=total,
        repaid_at_height=height,
    )
    changes = [LoanStateChange(key=record.key, old_record=record, new_record=closed)]
    repayments = [RepaymentChange(
        key=record.key,
        old_record=view.get_repayment(loan_id, caller),
        new_record=repayment,
    )]
    return build_transaction(Operation.REPAY_LOAN, caller, height, changes, repayments)


def compute_liquidation(
    view: LoanView,
    caller: str,
    loan_id: int,
    height: int,
) -> PendingLoanTransaction:
    """
    Close a past-due loan without repayment.

    Allowed only once height - start_height > duration (strictly).

    Returns:
        PendingLoanTransaction marking the loan inactive.

    Raises:
        LoanNotFound: No record at (loan_id, caller)
        Unauthorized: Loan not the caller's, or already closed
        LiquidationNotAllowed: The loan is not yet past due
    """
    record = _load_owned_active_loan(view, caller, loan_id, LoanNotFound)

    if not is_past_due(record.start_height, record.duration, height):
        raise LiquidationNotAllowed(
            f"loan {loan_id} started at {record.start_height} with duration {record.duration}, "
            f"height is {height}"
        )

    closed = replace(record, is_active=False)
    change = LoanStateChange(key=record.key, old_record=record, new_record=closed)
    return build_transaction(Operation.LIQUIDATE_LOAN, caller, height, [change])


# ============================================================================
# TRANSACTION INTERFACE
# ============================================================================

def transact(
    view: LoanView,
    caller: str,
    operation: Any,
    height: int,
    **kwargs
) -> PendingLoanTransaction:
    """
    Build the transaction for any public operation.

    Unified entry point routing to the compute_* function for the operation.

    Args:
        view: Read-only store access
        caller: Identity performing the operation
        operation: Operation member or its name ("create-loan", "add-collateral",
                   "withdraw-collateral", "repay-loan", "liquidate-loan")
        height: Current block height
        **kwargs: Operation parameters:
            - create-loan: collateral, loan_amount, interest_rate, duration
            - add-collateral / withdraw-collateral: loan_id, amount
            - repay-loan / liquidate-loan: loan_id

    Raises:
        ValueError: Unknown operation or missing parameter

    Example:
        pending = transact(store, "alice", "add-collateral", 1200, loan_id=1, amount=50000)
    """
    try:
        op = Operation(operation)
    except ValueError:
        raise ValueError(f"Unknown operation '{operation}'") from None

    def require(name: str):
        if name not in kwargs:
            raise ValueError(f"Missing '{name}' parameter for {op.value}")
        return kwargs[name]

    if op == Operation.CREATE_LOAN:
        return compute_create_loan(
            view, caller,
            require('collateral'), require('loan_amount'),
            require('interest_rate'), require('duration'),
            height,
        )
    elif op == Operation.ADD_COLLATERAL:
        return compute_add_collateral(view, caller, require('loan_id'), require('amount'), height)
    elif op == Operation.WITHDRAW_COLLATERAL:
        return compute_withdraw_collateral(view, caller, require('loan_id'), require('amount'), height)
    elif op == Operation.REPAY_LOAN:
        return compute_repayment(view, caller, require('loan_id'), height)
    else:
        return compute_liquidation(view, caller, require('loan_id'), height)
