"""
collateralized_loan - Collateralized Loan Registry on a double-entry ledger

Borrowers lock collateral and ask for twice its value; lenders fund the loan;
the borrower repays principal plus flat interest to get the collateral back,
or the lender takes the collateral once the loan is past due.

Usage:
    from collateralized_loan import (
        Ledger, LoanRegistry, Move, build_transaction, native_token, SYSTEM_WALLET,
    )

    ledger = Ledger("main", datetime(2025, 1, 1))
    ledger.register_unit(native_token("ETH", "Ether"))
    ledger.register_wallet("borrower")
    ledger.register_wallet("lender")

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.execute(build_transaction(ledger, [
        Move(Decimal("10"), "ETH", SYSTEM_WALLET, "borrower", "genesis_borrower"),
        Move(Decimal("10"), "ETH", SYSTEM_WALLET, "lender", "genesis_lender"),
    ]))

    registry = LoanRegistry(ledger, "ETH")
    loan_id = registry.request_loan("borrower", 10, 604800, Decimal("1"))
    registry.fund_loan("lender", loan_id, Decimal("2"))
    registry.repay_loan("borrower", loan_id, registry.required_repayment(loan_id))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    ExecuteResult,
    to_decimal,
    native_token,
    SYSTEM_WALLET,
    UNIT_TYPE_CRYPTO,
    # Errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    LoanError,
    LoanNotFound,
    InvalidCollateral,
    IncorrectLoanAmount,
    AlreadyFunded,
    LoanNotFunded,
    IncorrectRepaymentAmount,
    RepaidAlready,
    NotYetDue,
    Unauthorized,
    CollateralAlreadyClaimed,
)

# Ledger
from .ledger import Ledger

# Loans
from .loan import (
    Loan,
    LoanStatus,
    COLLATERAL_MULTIPLIER,
    INTEREST_RATE_DENOMINATOR,
    calculate_loan_amount,
    calculate_interest,
    calculate_repayment_amount,
    is_overdue,
    is_claimable,
    compute_request,
    compute_funding,
    compute_repayment,
    compute_collateral_claim,
)

# Notifications
from .events import (
    LoanEvent,
    LoanRequested,
    LoanFunded,
    LoanRepaid,
    CollateralClaimed,
    event_args,
    format_event,
)

# Registry
from .registry import LoanRegistry

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'ExecuteResult', 'to_decimal', 'native_token',
    'SYSTEM_WALLET', 'UNIT_TYPE_CRYPTO',
    # Errors
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'LoanError', 'LoanNotFound', 'InvalidCollateral', 'IncorrectLoanAmount', 'AlreadyFunded',
    'LoanNotFunded', 'IncorrectRepaymentAmount', 'RepaidAlready', 'NotYetDue',
    'Unauthorized', 'CollateralAlreadyClaimed',
    # Ledger
    'Ledger',
    # Loans
    'Loan', 'LoanStatus', 'COLLATERAL_MULTIPLIER', 'INTEREST_RATE_DENOMINATOR',
    'calculate_loan_amount', 'calculate_interest', 'calculate_repayment_amount',
    'is_overdue', 'is_claimable',
    'compute_request', 'compute_funding', 'compute_repayment', 'compute_collateral_claim',
    # Notifications
    'LoanEvent', 'LoanRequested', 'LoanFunded', 'LoanRepaid', 'CollateralClaimed',
    'event_args', 'format_event',
    # Registry
    'LoanRegistry',
]

__version__ = '1.0.0'
