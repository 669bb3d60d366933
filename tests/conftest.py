"""
conftest.py - Shared pytest fixtures for bitlend tests

Provides common fixtures used across unit, conformance and functional tests:
- Empty store, clock and lifecycle
- A lifecycle holding one standard loan
"""

import pytest

from bitlend import LoanStore, LoanLifecycle, BlockHeightClock

from tests.fake_view import (
    START_HEIGHT, COLLATERAL, LOAN_AMOUNT, INTEREST_RATE, DURATION,
)


@pytest.fixture
def store():
    """Empty, quiet loan store."""
    return LoanStore("test", verbose=False)


@pytest.fixture
def clock():
    """Clock starting at START_HEIGHT."""
    return BlockHeightClock(START_HEIGHT)


@pytest.fixture
def engine(store, clock):
    """Lifecycle over the store and clock fixtures."""
    return LoanLifecycle(store, clock)


@pytest.fixture
def funded_engine(engine):
    """Lifecycle with alice's standard loan (id 1) already open."""
    loan_id = engine.create_loan("alice", COLLATERAL, LOAN_AMOUNT, INTEREST_RATE, DURATION)
    assert loan_id == 1
    return engine
