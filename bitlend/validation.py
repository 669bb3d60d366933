"""
validation.py - Pure Parameter Checks

Side-effect-free functions consulted before any state mutation. Every
function here is total: it returns a bool or a value and never raises,
whatever it is given.

Key Formulas:
    minimum_collateral = loan_amount * 150 // 100        (truncating)
    total_repayment    = loan_amount + loan_amount * interest_rate // 100
    past_due           = current_height - start_height > duration
"""

from __future__ import annotations
from typing import Any, Optional

from .core import (
    MAX_INTEREST_RATE, MAX_LOAN_DURATION,
    COLLATERAL_RATIO, RATIO_DENOMINATOR, INTEREST_DIVISOR,
    is_uint, checked_add, checked_mul,
)


def is_valid_amount(value: Any) -> bool:
    """Return True if value is a strictly positive, representable unsigned amount."""
    return is_uint(value) and value > 0


def validate_creation_parameters(
    collateral: Any,
    loan_amount: Any,
    interest_rate: Any,
    duration: Any,
) -> bool:
    """
    Check loan creation parameters against the fixed bounds.

    True iff:
        0 < collateral <= MAX_UINT
        0 < loan_amount <= MAX_UINT
        0 <= interest_rate <= 10000
        0 < duration <= 52560

    The collateralization ratio is not checked here; see minimum_collateral().

    Example:
        validate_creation_parameters(150000, 100000, 500, 52560)  # True
        validate_creation_parameters(150000, 100000, 500, 0)      # False
    """
    if not is_valid_amount(collateral) or not is_valid_amount(loan_amount):
        return False
    # No lower bound on the rate: 0 opens a zero-interest loan.
    if not is_uint(interest_rate) or interest_rate > MAX_INTEREST_RATE:
        return False
    if not is_uint(duration) or not 0 < duration <= MAX_LOAN_DURATION:
        return False
    return True


def minimum_collateral(loan_amount: int) -> int:
    """
    Minimum collateral required for a loan of loan_amount.

    Truncating integer division: minimum_collateral(3) == 4, not 5.
    Computed on unbounded ints, so it never fails; a result above MAX_UINT
    simply cannot be met by any representable collateral.
    """
    return loan_amount * COLLATERAL_RATIO // RATIO_DENOMINATOR


def calculate_total_repayment(loan_amount: int, interest_rate: int) -> Optional[int]:
    """
    Amount due to close a loan: principal plus interest.

    total = loan_amount + loan_amount * interest_rate // 100

    The rate is divided by 100, so interest_rate=500 adds 500% of the
    principal, not 5%.

    Returns:
        The total, or None if the product or the sum exceeds MAX_UINT.
    """
    product = checked_mul(loan_amount, interest_rate)
    if product is None:
        return None
    return checked_add(loan_amount, product // INTEREST_DIVISOR)


def is_past_due(start_height: int, duration: int, current_height: int) -> bool:
    """
    True once strictly more than duration blocks have elapsed since start_height.

    A height below start_height counts as no time elapsed.
    """
    if current_height < start_height:
        return False
    return current_height - start_height > duration
