"""
loan.py - Collateralized Loan records and state transitions

This module provides the loan record and its lifecycle processing using
a pure function architecture with explicit inputs.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS:
   - Loan: Immutable record. Terms are fixed at request; every transition
     returns a NEW Loan (dataclasses.replace) instead of mutating.

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state
   - Example: calculate_repayment_amount(Decimal("2"), 10, 18) -> Decimal("2.2")

3. TRANSITION BUILDERS (compute_*):
   - Take (view, loan, caller, value, ...) and validate one transition
   - Read the clock and unit precision through the LedgerView only
   - Return (PendingTransaction, next Loan); nothing is applied until the
     caller executes the transaction on a ledger and keeps the new record

State machine:
    REQUESTED --fund--> FUNDED --repay--> REPAID (terminal)
    FUNDED --claim (now >= due_date)--> DEFAULTED (terminal)

Key Formulas:
    loan_amount = COLLATERAL_MULTIPLIER * collateral_amount
    interest = floor(loan_amount * interest_rate / 100)   (at the unit's smallest denomination)
    repayment = loan_amount + interest
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Optional, Tuple, Union

from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    build_transaction, to_decimal, SYSTEM_WALLET,
    InsufficientFunds, InvalidCollateral, IncorrectLoanAmount, AlreadyFunded, LoanNotFunded,
    IncorrectRepaymentAmount, RepaidAlready, NotYetDue, Unauthorized,
    CollateralAlreadyClaimed,
)


# Loan amount offered per unit of collateral
COLLATERAL_MULTIPLIER = 2

# interest_rate is a whole-number percentage
INTEREST_RATE_DENOMINATOR = 100

# Duration accepted by compute_request(): seconds or a timedelta
Duration = Union[int, timedelta]


class LoanStatus(str, Enum):
    """Lifecycle position of a loan, derived from its flags."""
    REQUESTED = "requested"     # Collateral deposited, waiting for a lender
    FUNDED = "funded"           # Lender paid out, repayment outstanding
    REPAID = "repaid"           # Repaid, collateral returned (terminal)
    DEFAULTED = "defaulted"     # Collateral claimed by lender (terminal)


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable loan record.

    Terms (collateral_amount, loan_amount, interest_rate, due_date, currency)
    are fixed at request. The flags only ever move False -> True:
    is_funded once, then exactly one of is_repaid / is_claimed.
    """
    loan_id: int
    borrower: str
    collateral_amount: Decimal
    loan_amount: Decimal
    interest_rate: int
    due_date: datetime
    currency: str
    requested_at: datetime
    lender: Optional[str] = None
    is_funded: bool = False
    is_repaid: bool = False
    is_claimed: bool = False

    @property
    def status(self) -> LoanStatus:
        if self.is_claimed:
            return LoanStatus.DEFAULTED
        if self.is_repaid:
            return LoanStatus.REPAID
        if self.is_funded:
            return LoanStatus.FUNDED
        return LoanStatus.REQUESTED

    @property
    def is_terminal(self) -> bool:
        return self.is_repaid or self.is_claimed


# ============================================================================
# PURE CALCULATION FUNCTIONS - No LedgerView, All Inputs Explicit
# ============================================================================

def calculate_loan_amount(collateral_amount: Decimal) -> Decimal:
    """Loan amount a deposit of collateral_amount asks for."""
    return to_decimal(collateral_amount) * COLLATERAL_MULTIPLIER


def calculate_interest(
    loan_amount: Decimal,
    interest_rate: int,
    decimal_places: Optional[int] = None,
) -> Decimal:
    """
    Flat interest on a loan, truncated to the currency's smallest denomination.

    Truncation is integer division in base units (wei for an 18-decimal
    token), so two loans with the same amount and rate always owe the same.

    Args:
        loan_amount: Principal
        interest_rate: Whole-number percentage (10 means 10%)
        decimal_places: Precision of the currency (None = no truncation)

    Example:
        calculate_interest(Decimal("2"), 10, 18)       # Decimal("0.2")
        calculate_interest(Decimal("0.000000000000000015"), 10, 18)
        # 15 wei * 10 // 100 = 1 wei
    """
    interest = to_decimal(loan_amount) * interest_rate / INTEREST_RATE_DENOMINATOR
    if decimal_places is None:
        return interest
    return interest.quantize(Decimal(10) ** -decimal_places, rounding=ROUND_DOWN)


def calculate_repayment_amount(
    loan_amount: Decimal,
    interest_rate: int,
    decimal_places: Optional[int] = None,
) -> Decimal:
    """Exact value a repayment must carry: principal plus truncated interest."""
    return to_decimal(loan_amount) + calculate_interest(loan_amount, interest_rate, decimal_places)


def is_overdue(loan: Loan, now: datetime) -> bool:
    """True once a funded, unrepaid loan has reached its due date."""
    return loan.is_funded and not loan.is_repaid and now >= loan.due_date


def is_claimable(loan: Loan, now: datetime) -> bool:
    """True when the lender may take the collateral right now."""
    return is_overdue(loan, now) and not loan.is_claimed


def _duration_to_timedelta(duration: Duration) -> timedelta:
    if isinstance(duration, timedelta):
        delta = duration
    elif isinstance(duration, int) and not isinstance(duration, bool):
        delta = timedelta(seconds=duration)
    else:
        raise ValueError(f"duration must be seconds (int) or timedelta, got {duration!r}")
    if delta < timedelta(0):
        raise ValueError(f"duration must be non-negative, got {duration!r}")
    return delta


def _check_wallet(role: str, wallet: str) -> None:
    if not isinstance(wallet, str) or not wallet.strip():
        raise ValueError(f"{role} must be a non-empty wallet id, got {wallet!r}")


def _check_funds(view: LedgerView, payer: str, currency: str, value: Decimal) -> None:
    """The payer must hold value before the call, even when nothing ends up moving."""
    if payer == SYSTEM_WALLET:
        return
    available = view.get_balance(payer, currency)
    if available < value:
        raise InsufficientFunds(
            f"{payer} {currency}: balance {available} cannot cover {value}"
        )


def _origin(source_id: str, currency: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.CONTRACT,
        source_id=source_id,
        unit_symbol=currency,
        event_type=event_type,
    )


# ============================================================================
# TRANSITION BUILDERS
# ============================================================================

def compute_request(
    view: LedgerView,
    loan_id: int,
    borrower: str,
    interest_rate: int,
    duration: Duration,
    deposited_value: Decimal,
    currency: str,
    escrow_wallet: str,
    source_id: str = "collateralized_loan",
) -> Tuple[PendingTransaction, Loan]:
    """
    Open a loan against a collateral deposit.

    Args:
        view: Read-only ledger access (clock and unit precision)
        loan_id: Identifier the registry allocated for this loan
        borrower: Wallet depositing the collateral
        interest_rate: Whole-number percentage, fixed for the life of the loan
        duration: Seconds (or timedelta) from now until the due date
        deposited_value: Collateral sent with the request
        currency: Unit the loan is denominated in
        escrow_wallet: Custody wallet that holds collateral until release or claim
        source_id: Origin id stamped on the ledger transaction

    Returns:
        (PendingTransaction moving the collateral borrower -> escrow, new Loan)

    Raises:
        InvalidCollateral: If deposited_value is not positive
        ValueError: If the rate, duration or deposit precision is malformed
    """
    deposited_value = to_decimal(deposited_value)
    if deposited_value <= 0:
        raise InvalidCollateral("Collateral amount must be greater than 0")
    if not isinstance(interest_rate, int) or isinstance(interest_rate, bool):
        raise ValueError(f"interest_rate must be an integer percentage, got {interest_rate!r}")
    if interest_rate < 0:
        raise ValueError(f"interest_rate must be non-negative, got {interest_rate}")
    _check_wallet("borrower", borrower)
    delta = _duration_to_timedelta(duration)

    unit = view.get_unit(currency)
    if unit.truncate(deposited_value) != deposited_value:
        raise ValueError(
            f"deposited_value {deposited_value} is finer than {currency} precision "
            f"({unit.decimal_places} decimal places)"
        )

    now = view.current_time
    loan = Loan(
        loan_id=loan_id,
        borrower=borrower,
        collateral_amount=deposited_value,
        loan_amount=calculate_loan_amount(deposited_value),
        interest_rate=interest_rate,
        due_date=now + delta,
        currency=currency,
        requested_at=now,
    )

    moves = [
        Move(
            quantity=deposited_value,
            unit_symbol=currency,
            source=borrower,
            dest=escrow_wallet,
            contract_id=f'loan_{loan_id}_collateral_deposit',
        )
    ]
    pending = build_transaction(view, moves, _origin(source_id, currency, "LoanRequested"))
    return pending, loan


def compute_funding(
    view: LedgerView,
    loan: Loan,
    lender: str,
    supplied_value: Decimal,
    source_id: str = "collateralized_loan",
) -> Tuple[PendingTransaction, Loan]:
    """
    Fund a requested loan. The supplied value goes straight to the borrower.

    There is no change-making: the supplied value must equal the loan amount.

    Raises:
        AlreadyFunded: If the loan already has a lender
        IncorrectLoanAmount: If supplied_value != loan.loan_amount
        InsufficientFunds: If the lender does not hold supplied_value
    """
    if loan.is_funded:
        raise AlreadyFunded("Loan already funded")
    supplied_value = to_decimal(supplied_value)
    if supplied_value != loan.loan_amount:
        raise IncorrectLoanAmount("Incorrect loan amount")
    _check_wallet("lender", lender)

    moves = []
    # A borrower funding their own loan pays themselves; nothing moves.
    if lender == loan.borrower:
        _check_funds(view, lender, loan.currency, supplied_value)
    else:
        moves.append(Move(
            quantity=supplied_value,
            unit_symbol=loan.currency,
            source=lender,
            dest=loan.borrower,
            contract_id=f'loan_{loan.loan_id}_funding',
        ))

    pending = build_transaction(view, moves, _origin(source_id, loan.currency, "LoanFunded"))
    return pending, replace(loan, lender=lender, is_funded=True)


def compute_repayment(
    view: LedgerView,
    loan: Loan,
    payer: str,
    supplied_value: Decimal,
    escrow_wallet: str,
    source_id: str = "collateralized_loan",
) -> Tuple[PendingTransaction, Loan]:
    """
    Repay a funded loan in full and release the collateral to the borrower.

    Repayment is accepted after the due date too, as long as the lender has
    not claimed the collateral yet.

    Returns:
        PendingTransaction containing:
        - Repayment payer -> lender
        - Collateral escrow -> borrower
        and the loan marked repaid.

    Raises:
        LoanNotFunded: If nobody funded the loan
        RepaidAlready: If the loan is already repaid
        CollateralAlreadyClaimed: If the lender already took the collateral
        IncorrectRepaymentAmount: If supplied_value != principal + interest
        InsufficientFunds: If the payer does not hold supplied_value up front
    """
    if not loan.is_funded:
        raise LoanNotFunded("Loan is not funded")
    if loan.is_repaid:
        raise RepaidAlready("Loan already repaid")
    if loan.is_claimed:
        raise CollateralAlreadyClaimed("Collateral already claimed")

    unit = view.get_unit(loan.currency)
    required = calculate_repayment_amount(loan.loan_amount, loan.interest_rate, unit.decimal_places)
    supplied_value = to_decimal(supplied_value)
    if supplied_value != required:
        raise IncorrectRepaymentAmount("Incorrect repayment amount")
    _check_wallet("payer", payer)
    # Netting would let the released collateral fund the repayment.
    _check_funds(view, payer, loan.currency, supplied_value)

    moves = []
    if payer != loan.lender:
        moves.append(Move(
            quantity=supplied_value,
            unit_symbol=loan.currency,
            source=payer,
            dest=loan.lender,
            contract_id=f'loan_{loan.loan_id}_repayment',
        ))
    moves.append(Move(
        quantity=loan.collateral_amount,
        unit_symbol=loan.currency,
        source=escrow_wallet,
        dest=loan.borrower,
        contract_id=f'loan_{loan.loan_id}_collateral_release',
    ))

    pending = build_transaction(view, moves, _origin(source_id, loan.currency, "LoanRepaid"))
    return pending, replace(loan, is_repaid=True)


def compute_collateral_claim(
    view: LedgerView,
    loan: Loan,
    caller: str,
    escrow_wallet: str,
    source_id: str = "collateralized_loan",
) -> Tuple[PendingTransaction, Loan]:
    """
    Hand the collateral of a defaulted loan to its lender.

    The due date is checked first, so an early claim is NotYetDue whatever
    the funding state. A successful claim sets is_claimed, which blocks a
    second payout and any later repayment.

    Raises:
        NotYetDue: If view.current_time < loan.due_date
        LoanNotFunded: If nobody funded the loan
        RepaidAlready: If the loan was repaid
        CollateralAlreadyClaimed: If the collateral was already paid out
        Unauthorized: If caller is not the lender
    """
    if view.current_time < loan.due_date:
        raise NotYetDue("Loan is not due yet")
    if not loan.is_funded:
        raise LoanNotFunded("Loan is not funded")
    if loan.is_repaid:
        raise RepaidAlready("Loan already repaid")
    if loan.is_claimed:
        raise CollateralAlreadyClaimed("Collateral already claimed")
    if caller != loan.lender:
        raise Unauthorized("Only the lender can claim collateral")

    moves = [
        Move(
            quantity=loan.collateral_amount,
            unit_symbol=loan.currency,
            source=escrow_wallet,
            dest=loan.lender,
            contract_id=f'loan_{loan.loan_id}_collateral_claim',
        )
    ]
    pending = build_transaction(view, moves, _origin(source_id, loan.currency, "CollateralClaimed"))
    return pending, replace(loan, is_claimed=True)
