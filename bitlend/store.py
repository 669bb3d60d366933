"""
store.py - Keyed Loan Store

The LoanStore is the only module that mutates loan state, ensuring controlled
and auditable changes.

Key responsibilities:
    - Implements LoanView protocol for safe read-only access by pure functions
    - Holds loan and repayment records keyed by (loan_id, borrower)
    - Owns the loan id counter; only advance_id() moves it
    - Executes pending transactions atomically (all writes commit or none do)
    - Always logs - every committed transaction is kept for clone() and replay()
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple

from .core import (
    # Types
    LoanRecord, RepaymentRecord, LoanKey,
    PendingLoanTransaction, LoanTransaction,
    ExecuteResult,
    # Arithmetic
    checked_add,
    # Exceptions
    LoanError, InvalidParameter,
)


class LoanStore:
    """
    Durable mapping from (loan_id, borrower) to loan and repayment records.

    Implements the LoanView protocol, so it can be passed to the compute_*
    functions in loan.py, which use only the read-only methods.

    get/put have overwrite semantics: there is no merge. Callers read a
    record, build a replacement and write the whole thing back.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own LoanStore instance.

    Example:
        store = LoanStore("main")
        pending = compute_create_loan(store, "alice", 150000, 100000, 500, 52560, height=0)
        store.execute(pending)
        store.get(1, "alice")
    """

    def __init__(self, name: str = "loans", verbose: bool = True):
        """
        Create a store.

        Args:
            name: Store identifier, used in execution ids
            verbose: Print committed and rejected transactions (default: True)
        """
        self.name = name
        self.verbose = verbose
        self._loans: Dict[LoanKey, LoanRecord] = {}
        self._repayments: Dict[LoanKey, RepaymentRecord] = {}
        # Last loan id issued; 0 means none yet
        self._next_loan_id: int = 0
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        self.transaction_log: List[LoanTransaction] = []

    # ========================================================================
    # LoanView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def get(self, loan_id: int, borrower: str) -> Optional[LoanRecord]:
        """Return the loan record at (loan_id, borrower), or None."""
        return self._loans.get((loan_id, borrower))

    def get_repayment(self, loan_id: int, borrower: str) -> Optional[RepaymentRecord]:
        """Return the repayment record at (loan_id, borrower), or None."""
        return self._repayments.get((loan_id, borrower))

    def next_id(self) -> int:
        """Return the current counter value: the last loan id issued."""
        return self._next_loan_id

    def list_loans(self, borrower: str) -> List[LoanRecord]:
        """List all loan records owned by a borrower, ordered by loan id."""
        return [
            record for (loan_id, owner), record in sorted(self._loans.items())
            if owner == borrower
        ]

    def loan_count(self) -> int:
        """Number of loan records held, active or closed."""
        return len(self._loans)

    # ========================================================================
    # WRITES (Mutating)
    # ========================================================================

    def put(self, loan_id: int, borrower: str, record: LoanRecord) -> None:
        """
        Store a loan record, replacing whatever was at the key.

        Raises:
            ValueError: If the record's own key differs from (loan_id, borrower)
        """
        if record.key != (loan_id, borrower):
            raise ValueError(f"Record key {record.key} does not match ({loan_id}, {borrower})")
        self._loans[(loan_id, borrower)] = record

    def put_repayment(self, loan_id: int, borrower: str, record: RepaymentRecord) -> None:
        """
        Store a repayment record, replacing whatever was at the key.

        Raises:
            ValueError: If the record's own key differs from (loan_id, borrower)
        """
        if record.key != (loan_id, borrower):
            raise ValueError(f"Record key {record.key} does not match ({loan_id}, {borrower})")
        self._repayments[(loan_id, borrower)] = record

    def advance_id(self) -> int:
        """
        Increment the loan id counter and return the new value.

        The first call returns 1.

        Raises:
            InvalidParameter: If the counter would exceed MAX_UINT
        """
        new_id = checked_add(self._next_loan_id, 1)
        if new_id is None:
            raise InvalidParameter("loan id counter exhausted")
        self._next_loan_id = new_id
        return new_id

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{store_name}:{sequence:012d}
        """
        return f"exec:{self.name}:{sequence:012d}"

    def execute(self, pending: PendingLoanTransaction) -> ExecuteResult:
        """
        Execute a PendingLoanTransaction atomically.

        All writes succeed together or nothing is written. Validation runs
        in full before the first write.

        Checks:
        - Every old_record matches what the store currently holds
          (the transaction was not built against stale state)
        - allocated_id, if set, is exactly next_id() + 1

        Args:
            pending: PendingLoanTransaction to execute

        Returns:
            ExecuteResult.APPLIED if committed
            ExecuteResult.REJECTED if validation failed (nothing written)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {pending.operation.value} by {pending.caller}: {reason}")
            return ExecuteResult.REJECTED

        # Validation passed - from here on every step is a plain write.
        if pending.allocated_id is not None:
            self.advance_id()

        for sc in pending.loan_changes:
            self.put(sc.key[0], sc.key[1], sc.new_record)
        for rc in pending.repayment_changes:
            self.put_repayment(rc.key[0], rc.key[1], rc.new_record)

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = LoanTransaction(
            operation=pending.operation,
            caller=pending.caller,
            height=pending.height,
            loan_changes=pending.loan_changes,
            repayment_changes=pending.repayment_changes,
            allocated_id=pending.allocated_id,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            store_name=self.name,
            sequence_number=sequence,
        )

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingLoanTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against current store contents.

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.allocated_id is not None:
            expected = checked_add(self._next_loan_id, 1)
            if expected is None:
                return False, "loan id counter exhausted"
            if pending.allocated_id != expected:
                return False, f"stale loan id: {pending.allocated_id} != {expected}"

        seen = set()
        for sc in pending.loan_changes:
            if sc.key in seen:
                return False, f"duplicate write to loan {sc.key}"
            seen.add(sc.key)
            current = self._loans.get(sc.key)
            if current != sc.old_record:
                return False, f"stale loan state at {sc.key}: expected {sc.old_record!r}, found {current!r}"

        seen = set()
        for rc in pending.repayment_changes:
            if rc.key in seen:
                return False, f"duplicate write to repayment {rc.key}"
            seen.add(rc.key)
            current = self._repayments.get(rc.key)
            if current != rc.old_record:
                return False, f"stale repayment state at {rc.key}"

        return True, ""

    def _print_tx_result(self, tx: LoanTransaction, result: str, icon: str) -> None:
        """
        Print transaction details and result.

        Uses LoanTransaction.__repr__ and appends a result line.
        """
        lines = repr(tx).split('\n')
        w = 80
        bar = "─" * w
        text = ' ' + icon + ' ' + result
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{text + ' ' * (w - len(text))}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    # ========================================================================
    # STORE OPERATIONS
    # ========================================================================

    def clone(self) -> LoanStore:
        """
        Create an independent copy of this store.

        Records are frozen, so sharing them between copies is safe; the
        dictionaries and the log are copied.

        Returns:
            A new LoanStore with identical state
        """
        cloned = LoanStore.__new__(LoanStore)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned._loans = dict(self._loans)
        cloned._repayments = dict(self._repayments)
        cloned._next_loan_id = self._next_loan_id
        cloned._next_sequence = self._next_sequence
        cloned.transaction_log = list(self.transaction_log)
        return cloned

    def replay(self) -> LoanStore:
        """
        Create a new store by replaying the transaction log.

        Every logged transaction is rebuilt as a PendingLoanTransaction and
        executed against a fresh store, in order, starting from the first.
        Each transaction carries the records it was built against, so the
        log cannot be replayed from a later index.

        Returns:
            New LoanStore with replayed state

        Raises:
            LoanError: If any transaction is rejected during replay
        """
        new_store = LoanStore(name=f"{self.name}_replayed", verbose=self.verbose)
        for tx in self.transaction_log:
            result = new_store.execute(tx.to_pending())
            if result == ExecuteResult.REJECTED:
                raise LoanError(f"Replay failed at tx {tx.exec_id}")
        return new_store

    def snapshot(self) -> Tuple[Dict[LoanKey, LoanRecord], Dict[LoanKey, RepaymentRecord], int]:
        """Return copies of (loans, repayments, next_id) for comparison."""
        return dict(self._loans), dict(self._repayments), self._next_loan_id
