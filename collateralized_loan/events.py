"""
events.py - Loan lifecycle notifications

One immutable record per successful registry operation, appended to the
registry's event log. fund_loan, repay_loan and claim_collateral also return
their record; request_loan returns the new loan id, and its LoanRequested
record is read from the log. Callers and tests assert on notifications
directly instead of subscribing to a broadcast.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Union


@dataclass(frozen=True, slots=True)
class LoanRequested:
    """Collateral deposited and a loan opened."""
    loan_id: int
    borrower: str
    collateral_amount: Decimal
    loan_amount: Decimal
    interest_rate: int
    due_date: datetime

    name = "LoanRequested"


@dataclass(frozen=True, slots=True)
class LoanFunded:
    """A lender supplied the loan amount to the borrower."""
    loan_id: int
    lender: str

    name = "LoanFunded"


@dataclass(frozen=True, slots=True)
class LoanRepaid:
    """Principal plus interest paid to the lender, collateral released."""
    loan_id: int
    borrower: str

    name = "LoanRepaid"


@dataclass(frozen=True, slots=True)
class CollateralClaimed:
    """The lender took the collateral of a defaulted loan."""
    loan_id: int
    lender: str

    name = "CollateralClaimed"


LoanEvent = Union[LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed]


def event_args(event: LoanEvent) -> Dict[str, Any]:
    """Return the event's fields in declaration order, e.g. for display or comparison."""
    return asdict(event)


def format_event(event: LoanEvent) -> str:
    """One-line rendering used in verbose output: ``LoanFunded(loan_id=0, lender='bob')``."""
    args = ", ".join(f"{k}={v!r}" for k, v in event_args(event).items())
    return f"{event.name}({args})"
