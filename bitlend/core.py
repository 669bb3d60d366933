"""
Core types and pure functions for the bitlend loan engine.

This module provides the foundational data structures and protocols for the engine:
1. Protocols: LoanView for read-only store access, ClockSource for block height
2. Immutable data structures: LoanRecord, RepaymentRecord, state changes,
   PendingLoanTransaction, LoanTransaction
3. Exceptions: LoanError and one subclass per precondition failure
4. Checked unsigned arithmetic that fails instead of wrapping
5. Protocol constants (collateral ratio, rate and duration bounds)

All functions in this module are pure. No function can mutate store state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Largest value an unsigned 128-bit integer can hold.
MAX_UINT = 2 ** 128 - 1

# Minimum collateralization: collateral >= loan_amount * 150 / 100.
COLLATERAL_RATIO = 150
RATIO_DENOMINATOR = 100

# Interest rate upper bound (10000 = 100% if read as basis points).
MAX_INTEREST_RATE = 10000

# Maximum loan duration in blocks (~one year at 10 minute blocks).
MAX_LOAN_DURATION = 52560

# Repayment divides by 100, not 10000. Kept for compatibility with deployed loans.
INTEREST_DIVISOR = 100


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Unsigned 128-bit loan identifier.
LoanId = int

# Opaque, externally authenticated identity of a caller.
Principal = str

# Composite store key: (loan_id, borrower).
LoanKey = Tuple[int, str]


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def is_uint(value: Any) -> bool:
    """Return True if value is an int in [0, MAX_UINT]. bool is rejected."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_UINT


def checked_add(a: int, b: int) -> Optional[int]:
    """Return a + b, or None if the sum exceeds MAX_UINT."""
    total = a + b
    if total > MAX_UINT:
        return None
    return total


def checked_sub(a: int, b: int) -> Optional[int]:
    """Return a - b, or None if the result would be negative."""
    if b > a:
        return None
    return a - b


def checked_mul(a: int, b: int) -> Optional[int]:
    """Return a * b, or None if the product exceeds MAX_UINT."""
    product = a * b
    if product > MAX_UINT:
        return None
    return product


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LoanView(Protocol):
    """
    Read-only interface to loan store state.

    Transition builders in loan.py take a LoanView, declaring that they only
    read. LoanStore implements this protocol but also provides mutation
    methods; for testing, FakeLoanView provides a purely read-only one.
    """

    def get(self, loan_id: int, borrower: str) -> Optional['LoanRecord']:
        """Return the loan record stored at (loan_id, borrower), or None."""
        ...

    def get_repayment(self, loan_id: int, borrower: str) -> Optional['RepaymentRecord']:
        """Return the repayment record stored at (loan_id, borrower), or None."""
        ...

    def next_id(self) -> int:
        """Return the current value of the loan id counter (last id issued)."""
        ...


@runtime_checkable
class ClockSource(Protocol):
    """Monotonically non-decreasing block height, read-only for the engine."""

    def current(self) -> int:
        """Return the current height."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a commit attempt.

    APPLIED: Transaction was validated and all of its writes were committed.
    REJECTED: Transaction was built against state that no longer holds
              (stale record or id counter); nothing was written.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class Operation(str, Enum):
    """Public operations of the loan engine, named as they are called."""
    CREATE_LOAN = "create-loan"
    ADD_COLLATERAL = "add-collateral"
    WITHDRAW_COLLATERAL = "withdraw-collateral"
    REPAY_LOAN = "repay-loan"
    LIQUIDATE_LOAN = "liquidate-loan"


class LoanStatus(str, Enum):
    """Position of a key in the loan state machine."""
    NONEXISTENT = "nonexistent"
    ACTIVE = "active"
    REPAID = "repaid"           # Closed, RepaymentRecord present
    LIQUIDATED = "liquidated"   # Closed, no RepaymentRecord


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LoanError(Exception):
    """Base exception for all loan engine errors."""
    kind = "loan error"


class InsufficientFunds(LoanError):
    """Raised when a withdrawal exceeds the posted collateral."""
    kind = "insufficient funds"


class Unauthorized(LoanError):
    """Raised when an operation targets a loan the caller does not own or that is closed."""
    kind = "unauthorized"


class LoanNotFound(LoanError):
    """Raised when no loan record exists at the requested key."""
    kind = "loan not found"


class LoanAlreadyExists(LoanError):
    """Raised when a newly issued loan id collides with an existing record."""
    kind = "loan already exists"


class LoanRepaymentFailed(LoanError):
    """Raised when the repayment total would exceed MAX_UINT."""
    kind = "loan repayment failed"


class LiquidationNotAllowed(LoanError):
    """Raised when a loan is liquidated before its duration has elapsed."""
    kind = "liquidation not allowed"


class InvalidParameter(LoanError):
    """Raised when loan or collateral parameters are out of bounds or would overflow."""
    kind = "invalid parameter"


class InsufficientCollateral(LoanError):
    """Raised when collateral would fall below the minimum collateralization ratio."""
    kind = "insufficient collateral"


class StaleLoanState(LoanError):
    """Raised when a commit is rejected because the store changed since the read."""
    kind = "stale loan state"


# ============================================================================
# RECORDS
# ============================================================================

def _require_principal(value: Any, what: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} cannot be empty")


def _require_uint(value: Any, what: str) -> None:
    if not is_uint(value):
        raise ValueError(f"{what} must be an unsigned 128-bit integer, got {value!r}")


@dataclass(frozen=True, slots=True)
class LoanRecord:
    """
    Persisted state of one borrower's one loan.

    Attributes:
        loan_id: Identifier issued by the store's counter.
        borrower: Identity that owns the loan. Only it may mutate the record.
        collateral_amount: Collateral currently posted.
        loan_amount: Principal, fixed at creation.
        interest_rate: Rate fixed at creation (0..10000).
        start_height: Block height at creation.
        duration: Loan term in blocks (1..52560).
        is_active: True until the loan is repaid or liquidated, then False forever.

    Records are never mutated in place. Transitions build a new record with
    dataclasses.replace() and the store overwrites the old one.
    """
    loan_id: int
    borrower: str
    collateral_amount: int
    loan_amount: int
    interest_rate: int
    start_height: int
    duration: int
    is_active: bool = True

    def __post_init__(self):
        _require_principal(self.borrower, "LoanRecord borrower")
        for name in ('loan_id', 'collateral_amount', 'loan_amount',
                     'interest_rate', 'start_height', 'duration'):
            _require_uint(getattr(self, name), f"LoanRecord {name}")
        if not isinstance(self.is_active, bool):
            raise ValueError(f"LoanRecord is_active must be bool, got {self.is_active!r}")

    @property
    def key(self) -> LoanKey:
        return (self.loan_id, self.borrower)

    def __repr__(self) -> str:
        status = "active" if self.is_active else "closed"
        return (
            f"Loan(#{self.loan_id} {self.borrower}: {self.loan_amount} @ {self.interest_rate}, "
            f"collateral={self.collateral_amount}, {status})"
        )


@dataclass(frozen=True, slots=True)
class RepaymentRecord:
    """
    Derived record written once by the repay transition.

    Attributes:
        loan_id: Loan the repayment belongs to.
        borrower: Owner of the loan.
        total_repaid: Principal plus interest paid to close the loan.
        repaid_at_height: Block height at which the loan was repaid.
    """
    loan_id: int
    borrower: str
    total_repaid: int
    repaid_at_height: int = 0

    def __post_init__(self):
        _require_principal(self.borrower, "RepaymentRecord borrower")
        _require_uint(self.loan_id, "RepaymentRecord loan_id")
        _require_uint(self.total_repaid, "RepaymentRecord total_repaid")
        _require_uint(self.repaid_at_height, "RepaymentRecord repaid_at_height")

    @property
    def key(self) -> LoanKey:
        return (self.loan_id, self.borrower)


# ============================================================================
# STATE CHANGES
# ============================================================================

def _record_fields(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    return {f.name: getattr(record, f.name) for f in fields(record)}


@dataclass(frozen=True, slots=True)
class LoanStateChange:
    """
    Before/after snapshot of one loan record.

    old_record is None when the transition creates the loan. The store
    checks old_record against its current contents before committing.
    """
    key: LoanKey
    old_record: Optional[LoanRecord]
    new_record: LoanRecord

    def __post_init__(self):
        if self.new_record.key != self.key:
            raise ValueError(f"LoanStateChange key {self.key} does not match record {self.new_record.key}")
        if self.old_record is not None and self.old_record.key != self.key:
            raise ValueError(f"LoanStateChange key {self.key} does not match old record {self.old_record.key}")

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new record.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = _record_fields(self.old_record)
        new = _record_fields(self.new_record)
        return {
            name: (old.get(name), value)
            for name, value in new.items()
            if old.get(name) != value
        }


@dataclass(frozen=True, slots=True)
class RepaymentChange:
    """Before/after snapshot of one repayment record."""
    key: LoanKey
    old_record: Optional[RepaymentRecord]
    new_record: RepaymentRecord

    def __post_init__(self):
        if self.new_record.key != self.key:
            raise ValueError(f"RepaymentChange key {self.key} does not match record {self.new_record.key}")


# ============================================================================
# TRANSACTIONS
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Records are serialized field by field in declaration order, so two
    equal records always produce the same string.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, (LoanRecord, RepaymentRecord)):
        parts = ",".join(f"{k}={_canonicalize(v)}" for k, v in _record_fields(value).items())
        return f"{type(value).__name__}{{{parts}}}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    operation: Operation,
    caller: str,
    height: int,
    loan_changes: Tuple[LoanStateChange, ...],
    repayment_changes: Tuple[RepaymentChange, ...],
    allocated_id: Optional[int],
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same operation, caller, height and state changes always give the same id.
    """
    content_parts = [
        f"op:{operation.value}",
        f"caller:{caller}",
        f"height:{height}",
        f"alloc:{_canonicalize(allocated_id)}",
    ]
    for sc in sorted(loan_changes, key=lambda s: s.key):
        content_parts.append(
            f"loan:{sc.key[0]}|{sc.key[1]}|{_canonicalize(sc.old_record)}|{_canonicalize(sc.new_record)}"
        )
    for rc in sorted(repayment_changes, key=lambda r: r.key):
        content_parts.append(
            f"repayment:{rc.key[0]}|{rc.key[1]}|{_canonicalize(rc.old_record)}|{_canonicalize(rc.new_record)}"
        )
    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingLoanTransaction:
    """
    A transaction description before execution - represents INTENT.

    Built by the compute_* functions in loan.py and submitted to
    LoanStore.execute(), which commits all of it or none of it.

    Attributes:
        operation: Public operation that produced this transaction
        caller: Identity the operation was performed for
        height: Block height the transaction was built at
        loan_changes: Loan record writes (with old and new snapshots)
        repayment_changes: Repayment record writes
        allocated_id: Loan id the transaction claims from the counter, if any.
                      Must equal store.next_id() + 1 at commit.
        intent_id: Content hash of the above (auto-computed)
    """
    operation: Operation
    caller: str
    height: int
    loan_changes: Tuple[LoanStateChange, ...]
    repayment_changes: Tuple[RepaymentChange, ...] = ()
    allocated_id: Optional[int] = None
    intent_id: str = field(default="")

    def __post_init__(self):
        _require_principal(self.caller, "PendingLoanTransaction caller")
        _require_uint(self.height, "PendingLoanTransaction height")
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.operation, self.caller, self.height,
                self.loan_changes, self.repayment_changes, self.allocated_id,
            ))

    def is_empty(self) -> bool:
        """Return True if this transaction writes nothing and allocates no id."""
        return not self.loan_changes and not self.repayment_changes and self.allocated_id is None

    def __repr__(self) -> str:
        return (
            f"PendingLoanTransaction({self.operation.value} by {self.caller}, "
            f"{len(self.loan_changes)} loan, {len(self.repayment_changes)} repayment)"
        )


def build_transaction(
    operation: Operation,
    caller: str,
    height: int,
    loan_changes: List[LoanStateChange],
    repayment_changes: Optional[List[RepaymentChange]] = None,
    allocated_id: Optional[int] = None,
) -> PendingLoanTransaction:
    """
    Build a PendingLoanTransaction from state changes.

    This is the standard way to create transactions.

    Example:
        old = view.get(loan_id, caller)
        new = replace(old, collateral_amount=old.collateral_amount + amount)
        change = LoanStateChange(key=old.key, old_record=old, new_record=new)
        return build_transaction(Operation.ADD_COLLATERAL, caller, height, [change])
    """
    return PendingLoanTransaction(
        operation=operation,
        caller=caller,
        height=height,
        loan_changes=tuple(loan_changes),
        repayment_changes=tuple(repayment_changes or ()),
        allocated_id=allocated_id,
    )


@dataclass(frozen=True, slots=True)
class LoanTransaction:
    """
    An executed, immutable record of store changes - represents FACT.

    Created by LoanStore.execute() when a PendingLoanTransaction commits.

    Attributes:
        operation, caller, height, loan_changes, repayment_changes,
        allocated_id, intent_id: Copied from the PendingLoanTransaction
        exec_id: Unique execution identifier (store + sequence)
        store_name: Name of the store that executed this
        sequence_number: Monotonic sequence within the store
    """
    operation: Operation
    caller: str
    height: int
    loan_changes: Tuple[LoanStateChange, ...]
    repayment_changes: Tuple[RepaymentChange, ...]
    allocated_id: Optional[int]
    intent_id: str
    exec_id: str
    store_name: str
    sequence_number: int

    def to_pending(self) -> PendingLoanTransaction:
        """Rebuild the PendingLoanTransaction this record was executed from."""
        return PendingLoanTransaction(
            operation=self.operation,
            caller=self.caller,
            height=self.height,
            loan_changes=self.loan_changes,
            repayment_changes=self.repayment_changes,
            allocated_id=self.allocated_id,
        )

    def __repr__(self) -> str:
        w = 80
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   operation : ' + self.operation.value)}│",
            f"│{pad('   caller    : ' + self.caller)}│",
            f"│{pad('   height    : ' + str(self.height))}│",
            f"│{pad('   intent_id : ' + self.intent_id)}│",
        ]
        if self.allocated_id is not None:
            lines.append(f"│{pad('   loan_id   : ' + str(self.allocated_id))}│")
        for sc in self.loan_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' [loan ' + str(sc.key[0]) + ' / ' + sc.key[1] + ']')}│")
            for name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"│{pad(f'      {name}: {old_val!r} → {new_val!r}')}│")
        for rc in self.repayment_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' [repayment ' + str(rc.key[0]) + '] total_repaid=' + str(rc.new_record.total_repaid))}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
