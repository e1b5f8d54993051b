"""
conftest.py - Shared pytest fixtures for collateralized loan tests

Provides common fixtures used across unit and functional tests:
- A ledger with an 18-decimal ETH unit and funded owner/borrower/lender wallets
- A deployed LoanRegistry
- Loans at each lifecycle stage (requested, funded)
- Snapshot and clock helpers for "nothing changed" and due-date assertions
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Tuple

from collateralized_loan import (
    Ledger, LoanRegistry, native_token,
)


START = datetime(2025, 1, 1, 9, 0, 0)
ONE_WEEK = 60 * 60 * 24 * 7
INITIAL_BALANCE = Decimal("1000")
WALLETS = ("owner", "borrower", "lender", "stranger")


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Ledger at START with ETH registered and every wallet holding INITIAL_BALANCE."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(native_token("ETH", "Ether"))
    for wallet in WALLETS:
        ledger.register_wallet(wallet)
        ledger.set_balance(wallet, "ETH", INITIAL_BALANCE)
    return ledger


@pytest.fixture
def registry(ledger):
    """A freshly deployed registry denominated in ETH."""
    return LoanRegistry(ledger, "ETH", name="CollateralizedLoan")


@pytest.fixture
def requested_loan(registry):
    """Loan 0: borrower deposited 1 ETH at 10% for one week, not funded."""
    return registry.request_loan("borrower", 10, ONE_WEEK, Decimal("1"))


@pytest.fixture
def funded_loan(registry, requested_loan):
    """Loan 0 funded by lender with 2 ETH."""
    registry.fund_loan("lender", requested_loan, Decimal("2"))
    return requested_loan


@pytest.fixture
def snapshot(ledger, registry):
    """
    Callable capturing balances, loan records and event count.

    Two snapshots compare equal when an operation left no trace.
    """
    def take() -> Tuple[Dict[str, Decimal], dict, int]:
        balances = {w: ledger.get_balance(w, "ETH") for w in sorted(ledger.list_wallets())}
        return balances, registry.loans, len(registry.events)
    return take


@pytest.fixture
def at_due_date(ledger, registry):
    """Callable moving the clock to a loan's due date plus an offset in seconds."""
    def move(loan_id: int, offset_seconds: int = 0) -> None:
        due = registry.get_loan(loan_id).due_date
        ledger.advance_time(due + timedelta(seconds=offset_seconds))
    return move
