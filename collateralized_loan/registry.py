"""
registry.py - Loan Registry

Holds every loan record and enforces the loan state machine on top of a Ledger.

Execution order of every operation:
1. Validate all preconditions (pure compute_* builder, nothing applied yet)
2. Execute the value transfers on the ledger in one atomic transaction
3. Only if the ledger applied them: store the new Loan record, log the event

A rejected transfer raises the ledger's error and leaves balances, loan
records and the event log exactly as they were. The registry never moves
time; it reads the ledger clock.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import threading
from typing import Dict, List, Optional

from .core import (
    ExecuteResult, LedgerError, LoanNotFound, PendingTransaction,
)
from .events import (
    LoanEvent, LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed,
    format_event,
)
from .ledger import Ledger
from .loan import (
    Duration, Loan, LoanStatus,
    calculate_repayment_amount, is_claimable,
    compute_request, compute_funding, compute_repayment, compute_collateral_claim,
)


class LoanRegistry:
    """
    Mapping from loan id to Loan record, with the four lifecycle operations.

    Loan ids are sequential from 0 and never reused. Records are never
    deleted; a repaid or defaulted loan stays as an audit entry.

    Every operation runs under one registry-wide lock, so no operation ever
    observes another one half-applied.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
        ledger.register_unit(native_token("ETH", "Ether"))
        registry = LoanRegistry(ledger, "ETH")

        loan_id = registry.request_loan("borrower", 10, 604800, Decimal("1"))
        registry.fund_loan("lender", loan_id, Decimal("2"))
        registry.repay_loan("borrower", loan_id, Decimal("2.2"))
    """

    def __init__(
        self,
        ledger: Ledger,
        currency: str,
        name: str = "collateralized_loan",
        verbose: Optional[bool] = None,
    ):
        """
        Deploy a registry on a ledger.

        Args:
            ledger: Settlement substrate (transfers, balances, clock)
            currency: Registered unit every loan of this registry uses
            name: Registry identifier; also names the escrow wallet
            verbose: Print notifications and rejections (default: ledger.verbose)
        """
        ledger.get_unit(currency)  # raises UnitNotRegistered
        self.ledger = ledger
        self.currency = currency
        self.name = name
        self.verbose = ledger.verbose if verbose is None else verbose
        self.escrow_wallet = ledger.register_wallet(f"{name}:escrow")

        self._loans: Dict[int, Loan] = {}
        self._next_loan_id: int = 0
        self._events: List[LoanEvent] = []
        self._lock = threading.RLock()

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def request_loan(
        self,
        borrower: str,
        interest_rate: int,
        duration: Duration,
        deposited_value: Decimal,
    ) -> int:
        """
        Deposit collateral and open a loan for twice its value.

        Args:
            borrower: Wallet sending the collateral
            interest_rate: Whole-number percentage (10 means 10%)
            duration: Seconds (or timedelta) until the loan is due
            deposited_value: Collateral amount, must be positive

        Returns:
            The new loan id

        Raises:
            InvalidCollateral: If deposited_value is not positive
            InsufficientFunds: If the borrower cannot cover the deposit
        """
        with self._lock:
            loan_id = self._next_loan_id
            try:
                pending, loan = compute_request(
                    self.ledger, loan_id, borrower, interest_rate, duration,
                    deposited_value, self.currency, self.escrow_wallet, self.name,
                )
                self._settle(pending)
            except LedgerError as e:
                self._log_rejection("request", loan_id, e)
                raise

            self._loans[loan_id] = loan
            self._next_loan_id += 1
            self._emit(LoanRequested(
                loan_id=loan.loan_id,
                borrower=loan.borrower,
                collateral_amount=loan.collateral_amount,
                loan_amount=loan.loan_amount,
                interest_rate=loan.interest_rate,
                due_date=loan.due_date,
            ))
            return loan_id

    def fund_loan(self, lender: str, loan_id: int, supplied_value: Decimal) -> LoanFunded:
        """
        Supply exactly the loan amount; it is paid to the borrower.

        Raises:
            LoanNotFound: If loan_id was never issued
            AlreadyFunded: If the loan already has a lender
            IncorrectLoanAmount: If supplied_value != loan_amount
            InsufficientFunds: If the lender cannot cover supplied_value
        """
        with self._lock:
            try:
                pending, loan = compute_funding(
                    self.ledger, self._require(loan_id), lender, supplied_value, self.name,
                )
                self._settle(pending)
            except LedgerError as e:
                self._log_rejection("fund", loan_id, e)
                raise

            self._loans[loan_id] = loan
            return self._emit(LoanFunded(loan_id=loan_id, lender=loan.lender))

    def repay_loan(self, payer: str, loan_id: int, supplied_value: Decimal) -> LoanRepaid:
        """
        Pay principal plus interest to the lender and release the collateral.

        Raises:
            LoanNotFound: If loan_id was never issued
            LoanNotFunded: If the loan has no lender
            RepaidAlready: If the loan is already repaid
            CollateralAlreadyClaimed: If the lender already took the collateral
            IncorrectRepaymentAmount: If supplied_value != required_repayment(loan_id)
            InsufficientFunds: If the payer cannot cover supplied_value
        """
        with self._lock:
            try:
                pending, loan = compute_repayment(
                    self.ledger, self._require(loan_id), payer, supplied_value,
                    self.escrow_wallet, self.name,
                )
                self._settle(pending)
            except LedgerError as e:
                self._log_rejection("repay", loan_id, e)
                raise

            self._loans[loan_id] = loan
            return self._emit(LoanRepaid(loan_id=loan_id, borrower=loan.borrower))

    def claim_collateral(self, caller: str, loan_id: int) -> CollateralClaimed:
        """
        Let the lender take the collateral of a loan not repaid by its due date.

        Raises:
            LoanNotFound: If loan_id was never issued
            NotYetDue: If the ledger clock is before the due date
            LoanNotFunded: If the loan has no lender
            RepaidAlready: If the loan was repaid
            CollateralAlreadyClaimed: On a second claim
            Unauthorized: If caller is not the lender
        """
        with self._lock:
            try:
                pending, loan = compute_collateral_claim(
                    self.ledger, self._require(loan_id), caller, self.escrow_wallet, self.name,
                )
                self._settle(pending)
            except LedgerError as e:
                self._log_rejection("claim", loan_id, e)
                raise

            self._loans[loan_id] = loan
            return self._emit(CollateralClaimed(loan_id=loan_id, lender=loan.lender))

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_loan(self, loan_id: int) -> Loan:
        """Return the current record of a loan. Raises LoanNotFound."""
        with self._lock:
            return self._require(loan_id)

    @property
    def loans(self) -> Dict[int, Loan]:
        """Snapshot of every loan record keyed by id."""
        with self._lock:
            return dict(self._loans)

    @property
    def loan_count(self) -> int:
        """Number of loans ever requested (also the next loan id)."""
        return self._next_loan_id

    @property
    def events(self) -> List[LoanEvent]:
        """Every notification emitted so far, oldest first."""
        with self._lock:
            return list(self._events)

    def events_for(self, loan_id: int) -> List[LoanEvent]:
        """Notifications of one loan, oldest first."""
        return [e for e in self.events if e.loan_id == loan_id]

    def required_repayment(self, loan_id: int) -> Decimal:
        """Exact value repay_loan() expects for this loan."""
        loan = self.get_loan(loan_id)
        unit = self.ledger.get_unit(loan.currency)
        return calculate_repayment_amount(loan.loan_amount, loan.interest_rate, unit.decimal_places)

    def loan_status(self, loan_id: int) -> LoanStatus:
        return self.get_loan(loan_id).status

    def is_claimable(self, loan_id: int, now: Optional[datetime] = None) -> bool:
        """Whether claim_collateral() would pass the state checks at `now` (default: ledger time)."""
        return is_claimable(self.get_loan(loan_id), now or self.ledger.current_time)

    def loans_by_borrower(self, wallet: str) -> List[Loan]:
        return [loan for loan in self.loans.values() if loan.borrower == wallet]

    def loans_by_lender(self, wallet: str) -> List[Loan]:
        return [loan for loan in self.loans.values() if loan.lender == wallet]

    def escrow_balance(self) -> Decimal:
        """Collateral currently held in custody."""
        return self.ledger.get_balance(self.escrow_wallet, self.currency)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require(self, loan_id: int) -> Loan:
        loan = self._loans.get(loan_id)
        if loan is None:
            raise LoanNotFound(f"Loan {loan_id} does not exist")
        return loan

    def _settle(self, pending: PendingTransaction) -> None:
        """Execute the transfers of one operation or raise why the ledger refused them."""
        result = self.ledger.execute(pending)
        if result == ExecuteResult.APPLIED:
            return
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(f"Transaction {pending.intent_id} was already applied")
        raise self.ledger.last_rejection or LedgerError("Transaction rejected by ledger")

    def _emit(self, event: LoanEvent) -> LoanEvent:
        self._events.append(event)
        if self.verbose:
            print(f"📣 {self.name}: {format_event(event)}")
        return event

    def _log_rejection(self, operation: str, loan_id: int, error: LedgerError) -> None:
        if self.verbose:
            print(f"✗ {self.name}: {operation} loan {loan_id} reverted: "
                  f"{type(error).__name__}: {error}")
