"""
bitlend - Collateralized Loan Lifecycle Engine

Opens loans against posted collateral, adjusts collateral, repays loans with
interest and liquidates them once past due, enforcing the 150% minimum
collateralization ratio and overflow-checked unsigned arithmetic.

Usage:
    from bitlend import LoanStore, LoanLifecycle, BlockHeightClock

    store = LoanStore("main")
    clock = BlockHeightClock(1000)
    engine = LoanLifecycle(store, clock)

    loan_id = engine.create_loan("alice", 150000, 100000, 500, 52560)
    engine.add_collateral("alice", loan_id, 50000)     # 200000
    engine.repay_loan("alice", loan_id)                # 600000

    engine.get_loan_details(loan_id, "alice")
"""

# Core types
from .core import (
    LoanView,
    ClockSource,
    LoanRecord,
    RepaymentRecord,
    LoanStateChange,
    RepaymentChange,
    PendingLoanTransaction,
    LoanTransaction,
    build_transaction,
    ExecuteResult,
    Operation,
    LoanStatus,
    LoanError,
    InsufficientFunds,
    Unauthorized,
    LoanNotFound,
    LoanAlreadyExists,
    LoanRepaymentFailed,
    LiquidationNotAllowed,
    InvalidParameter,
    InsufficientCollateral,
    StaleLoanState,
    is_uint,
    checked_add,
    checked_sub,
    checked_mul,
    MAX_UINT,
    COLLATERAL_RATIO,
    RATIO_DENOMINATOR,
    MAX_INTEREST_RATE,
    MAX_LOAN_DURATION,
    INTEREST_DIVISOR,
)

# Parameter validation
from .validation import (
    validate_creation_parameters,
    minimum_collateral,
    calculate_total_repayment,
    is_past_due,
    is_valid_amount,
)

# Clock
from .clock import BlockHeightClock

# Store
from .store import LoanStore

# Transitions
from .loan import (
    compute_create_loan,
    compute_add_collateral,
    compute_withdraw_collateral,
    compute_repayment,
    compute_liquidation,
    transact,
)

# Lifecycle
from .lifecycle import LoanLifecycle

__all__ = [
    # Core
    'LoanView', 'ClockSource', 'LoanRecord', 'RepaymentRecord',
    'LoanStateChange', 'RepaymentChange', 'PendingLoanTransaction', 'LoanTransaction',
    'build_transaction', 'ExecuteResult', 'Operation', 'LoanStatus',
    'LoanError', 'InsufficientFunds', 'Unauthorized', 'LoanNotFound',
    'LoanAlreadyExists', 'LoanRepaymentFailed', 'LiquidationNotAllowed',
    'InvalidParameter', 'InsufficientCollateral', 'StaleLoanState',
    'is_uint', 'checked_add', 'checked_sub', 'checked_mul',
    'MAX_UINT', 'COLLATERAL_RATIO', 'RATIO_DENOMINATOR',
    'MAX_INTEREST_RATE', 'MAX_LOAN_DURATION', 'INTEREST_DIVISOR',
    # Validation
    'validate_creation_parameters', 'minimum_collateral',
    'calculate_total_repayment', 'is_past_due', 'is_valid_amount',
    # Clock
    'BlockHeightClock',
    # Store
    'LoanStore',
    # Transitions
    'compute_create_loan', 'compute_add_collateral', 'compute_withdraw_collateral',
    'compute_repayment', 'compute_liquidation', 'transact',
    # Lifecycle
    'LoanLifecycle',
]

__version__ = '1.0.0'
