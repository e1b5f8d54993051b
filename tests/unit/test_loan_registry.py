"""
test_loan_registry.py - Unit tests for LoanRegistry

Tests:
- Deployment: currency validation, escrow wallet
- request_loan / fund_loan / repay_loan / claim_collateral on a real Ledger
- Rejections: typed errors, no state change, no event
- Queries: get_loan, required_repayment, status, per-wallet listings
- Verbose notification output
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from collateralized_loan import (
    LoanRegistry, LoanStatus,
    LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed,
    LoanError, LoanNotFound, InvalidCollateral, IncorrectLoanAmount, AlreadyFunded,
    LoanNotFunded, IncorrectRepaymentAmount, RepaidAlready, NotYetDue,
    Unauthorized, CollateralAlreadyClaimed, InsufficientFunds,
    UnitNotRegistered, WalletNotRegistered,
)


ESCROW = "CollateralizedLoan:escrow"
WEEK = 604800


class TestDeployment:

    def test_escrow_wallet_registered(self, ledger, registry):
        assert registry.escrow_wallet == ESCROW
        assert ledger.is_registered(ESCROW)
        assert registry.escrow_balance() == Decimal("0")

    def test_unknown_currency(self, ledger):
        with pytest.raises(UnitNotRegistered):
            LoanRegistry(ledger, "BTC")

    def test_two_registries_on_one_ledger(self, ledger, registry):
        other = LoanRegistry(ledger, "ETH", name="Other")
        other.request_loan("borrower", 5, WEEK, Decimal("1"))
        assert other.escrow_balance() == Decimal("1")
        assert registry.escrow_balance() == Decimal("0")

    def test_duplicate_name_rejected(self, ledger, registry):
        with pytest.raises(ValueError):
            LoanRegistry(ledger, "ETH", name="CollateralizedLoan")

    def test_verbose_defaults_to_ledger(self, ledger):
        assert LoanRegistry(ledger, "ETH", name="quiet").verbose is False
        assert LoanRegistry(ledger, "ETH", name="loud", verbose=True).verbose is True


class TestRequestLoan:

    def test_ids_are_sequential(self, registry):
        ids = [registry.request_loan("borrower", 10, WEEK, Decimal("1")) for _ in range(3)]
        assert ids == [0, 1, 2]
        assert registry.loan_count == 3

    def test_record(self, registry, ledger):
        loan_id = registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        loan = registry.get_loan(loan_id)
        assert loan.borrower == "borrower"
        assert loan.collateral_amount == Decimal("1")
        assert loan.loan_amount == Decimal("2")
        assert loan.interest_rate == 10
        assert loan.due_date == ledger.current_time + timedelta(seconds=WEEK)
        assert loan.lender is None
        assert loan.currency == "ETH"
        assert registry.loan_status(loan_id) == LoanStatus.REQUESTED

    def test_collateral_moves_to_escrow(self, registry, ledger):
        registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        assert ledger.get_balance("borrower", "ETH") == Decimal("999")
        assert registry.escrow_balance() == Decimal("1")

    def test_event(self, registry, ledger):
        loan_id = registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        assert registry.events == [LoanRequested(
            loan_id=loan_id,
            borrower="borrower",
            collateral_amount=Decimal("1"),
            loan_amount=Decimal("2"),
            interest_rate=10,
            due_date=ledger.current_time + timedelta(seconds=WEEK),
        )]

    def test_identical_requests_both_apply(self, registry):
        registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        assert registry.escrow_balance() == Decimal("2")

    def test_zero_collateral(self, registry, snapshot):
        before = snapshot()
        with pytest.raises(InvalidCollateral, match="Collateral amount must be greater than 0"):
            registry.request_loan("borrower", 10, WEEK, Decimal("0"))
        assert snapshot() == before
        assert registry.loan_count == 0

    def test_insufficient_funds_consumes_no_id(self, registry, ledger, snapshot):
        ledger.set_balance("borrower", "ETH", Decimal("0.5"))
        before = snapshot()
        with pytest.raises(InsufficientFunds):
            registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        assert snapshot() == before
        assert registry.request_loan("borrower", 10, WEEK, Decimal("0.5")) == 0

    def test_unregistered_borrower(self, registry):
        with pytest.raises(WalletNotRegistered):
            registry.request_loan("ghost", 10, WEEK, Decimal("1"))
        assert registry.loan_count == 0

    def test_malformed_duration(self, registry):
        with pytest.raises(ValueError):
            registry.request_loan("borrower", 10, -1, Decimal("1"))

    @pytest.mark.parametrize("borrower", [None, 42, ""])
    def test_malformed_borrower(self, registry, snapshot, borrower):
        before = snapshot()
        with pytest.raises(ValueError, match="borrower"):
            registry.request_loan(borrower, 10, WEEK, Decimal("1"))
        assert snapshot() == before

    def test_returns_id_and_logs_event(self, registry, requested_loan):
        loan_id = registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        assert type(loan_id) is int
        assert registry.events[-1].loan_id == loan_id
        assert isinstance(registry.events[-1], LoanRequested)


class TestFundLoan:

    def test_funding_pays_borrower(self, registry, ledger, requested_loan):
        event = registry.fund_loan("lender", requested_loan, Decimal("2"))
        assert event == LoanFunded(loan_id=requested_loan, lender="lender")
        assert registry.events[-1] == event
        assert ledger.get_balance("lender", "ETH") == Decimal("998")
        assert ledger.get_balance("borrower", "ETH") == Decimal("1001")
        loan = registry.get_loan(requested_loan)
        assert loan.is_funded
        assert loan.lender == "lender"

    def test_wrong_amount(self, registry, requested_loan, snapshot):
        before = snapshot()
        with pytest.raises(IncorrectLoanAmount, match="Incorrect loan amount"):
            registry.fund_loan("lender", requested_loan, Decimal("1"))
        assert snapshot() == before

    def test_unknown_loan(self, registry):
        with pytest.raises(LoanNotFound, match="Loan 7 does not exist"):
            registry.fund_loan("lender", 7, Decimal("2"))

    def test_second_funding(self, registry, funded_loan, snapshot):
        before = snapshot()
        with pytest.raises(AlreadyFunded):
            registry.fund_loan("stranger", funded_loan, Decimal("2"))
        assert snapshot() == before
        assert registry.get_loan(funded_loan).lender == "lender"

    def test_lender_cannot_cover(self, registry, ledger, requested_loan, snapshot):
        ledger.set_balance("lender", "ETH", Decimal("1.5"))
        before = snapshot()
        with pytest.raises(InsufficientFunds):
            registry.fund_loan("lender", requested_loan, Decimal("2"))
        assert snapshot() == before
        assert not registry.get_loan(requested_loan).is_funded

    def test_borrower_funds_own_loan(self, registry, ledger, requested_loan):
        registry.fund_loan("borrower", requested_loan, Decimal("2"))
        assert ledger.get_balance("borrower", "ETH") == Decimal("999")
        assert registry.get_loan(requested_loan).lender == "borrower"

    def test_empty_borrower_cannot_fund_own_loan(self, registry, ledger, snapshot):
        ledger.set_balance("stranger", "ETH", Decimal("1"))
        loan_id = registry.request_loan("stranger", 10, WEEK, Decimal("1"))
        before = snapshot()
        with pytest.raises(InsufficientFunds):
            registry.fund_loan("stranger", loan_id, Decimal("2"))
        assert snapshot() == before
        assert not registry.get_loan(loan_id).is_funded


class TestRepayLoan:

    def test_repayment(self, registry, ledger, funded_loan):
        event = registry.repay_loan("borrower", funded_loan, Decimal("2.2"))
        assert event == LoanRepaid(loan_id=funded_loan, borrower="borrower")
        assert ledger.get_balance("borrower", "ETH") == Decimal("999.8")
        assert ledger.get_balance("lender", "ETH") == Decimal("1000.2")
        assert registry.escrow_balance() == Decimal("0")
        assert registry.loan_status(funded_loan) == LoanStatus.REPAID

    def test_required_repayment(self, registry, requested_loan):
        assert registry.required_repayment(requested_loan) == Decimal("2.2")

    @pytest.mark.parametrize("value", [Decimal("2"), Decimal("2.21")])
    def test_wrong_amount(self, registry, funded_loan, snapshot, value):
        before = snapshot()
        with pytest.raises(IncorrectRepaymentAmount, match="Incorrect repayment amount"):
            registry.repay_loan("borrower", funded_loan, value)
        assert snapshot() == before

    def test_unfunded(self, registry, requested_loan):
        with pytest.raises(LoanNotFunded):
            registry.repay_loan("borrower", requested_loan, Decimal("2.2"))

    def test_twice(self, registry, funded_loan):
        registry.repay_loan("borrower", funded_loan, Decimal("2.2"))
        with pytest.raises(RepaidAlready):
            registry.repay_loan("borrower", funded_loan, Decimal("2.2"))

    def test_payer_cannot_cover(self, registry, ledger, funded_loan, snapshot):
        """2 ETH plus the 1 ETH released collateral would cover 2.2, but only up-front funds count."""
        ledger.set_balance("borrower", "ETH", Decimal("2"))
        before = snapshot()
        with pytest.raises(InsufficientFunds):
            registry.repay_loan("borrower", funded_loan, Decimal("2.2"))
        assert snapshot() == before
        assert registry.escrow_balance() == Decimal("1")

    def test_empty_lender_cannot_repay(self, registry, ledger, funded_loan, snapshot):
        ledger.set_balance("lender", "ETH", Decimal("0"))
        before = snapshot()
        with pytest.raises(InsufficientFunds):
            registry.repay_loan("lender", funded_loan, Decimal("2.2"))
        assert snapshot() == before
        assert not registry.get_loan(funded_loan).is_repaid

    def test_lender_repays_with_funds(self, registry, ledger, funded_loan):
        registry.repay_loan("lender", funded_loan, Decimal("2.2"))
        assert ledger.get_balance("lender", "ETH") == Decimal("998")
        assert ledger.get_balance("borrower", "ETH") == Decimal("1002")

    def test_anyone_may_repay(self, registry, ledger, funded_loan):
        registry.repay_loan("stranger", funded_loan, Decimal("2.2"))
        assert ledger.get_balance("stranger", "ETH") == Decimal("997.8")
        assert ledger.get_balance("borrower", "ETH") == Decimal("1002")

    def test_repay_after_due_date(self, registry, funded_loan, at_due_date):
        at_due_date(funded_loan, 3600)
        registry.repay_loan("borrower", funded_loan, Decimal("2.2"))
        assert registry.loan_status(funded_loan) == LoanStatus.REPAID

    def test_repay_after_claim(self, registry, funded_loan, at_due_date):
        at_due_date(funded_loan, 1)
        registry.claim_collateral("lender", funded_loan)
        with pytest.raises(CollateralAlreadyClaimed):
            registry.repay_loan("borrower", funded_loan, Decimal("2.2"))


class TestClaimCollateral:

    def test_claim(self, registry, ledger, funded_loan, at_due_date):
        at_due_date(funded_loan, 1)
        event = registry.claim_collateral("lender", funded_loan)
        assert event == CollateralClaimed(loan_id=funded_loan, lender="lender")
        assert ledger.get_balance("lender", "ETH") == Decimal("999")
        assert registry.escrow_balance() == Decimal("0")
        assert registry.loan_status(funded_loan) == LoanStatus.DEFAULTED

    def test_claim_exactly_at_due_date(self, registry, funded_loan, at_due_date):
        at_due_date(funded_loan)
        registry.claim_collateral("lender", funded_loan)
        assert registry.get_loan(funded_loan).is_claimed

    def test_early_claim(self, registry, funded_loan, at_due_date, snapshot):
        at_due_date(funded_loan, -1)
        before = snapshot()
        with pytest.raises(NotYetDue, match="Loan is not due yet"):
            registry.claim_collateral("lender", funded_loan)
        assert snapshot() == before

    def test_second_claim(self, registry, ledger, funded_loan, at_due_date):
        at_due_date(funded_loan, 1)
        registry.claim_collateral("lender", funded_loan)
        with pytest.raises(CollateralAlreadyClaimed):
            registry.claim_collateral("lender", funded_loan)
        assert ledger.get_balance("lender", "ETH") == Decimal("999")

    def test_not_lender(self, registry, funded_loan, at_due_date):
        at_due_date(funded_loan, 1)
        with pytest.raises(Unauthorized):
            registry.claim_collateral("borrower", funded_loan)

    def test_unfunded_past_due(self, registry, requested_loan, at_due_date):
        at_due_date(requested_loan, 1)
        with pytest.raises(LoanNotFunded):
            registry.claim_collateral("lender", requested_loan)

    def test_repaid(self, registry, funded_loan, at_due_date):
        registry.repay_loan("borrower", funded_loan, Decimal("2.2"))
        at_due_date(funded_loan, 1)
        with pytest.raises(RepaidAlready):
            registry.claim_collateral("lender", funded_loan)

    def test_unknown_loan(self, registry):
        with pytest.raises(LoanNotFound):
            registry.claim_collateral("lender", 0)

    def test_claimable_query(self, registry, ledger, funded_loan):
        due = registry.get_loan(funded_loan).due_date
        assert not registry.is_claimable(funded_loan)
        assert registry.is_claimable(funded_loan, now=due)


class TestQueries:

    def test_get_unknown_loan(self, registry):
        with pytest.raises(LoanNotFound):
            registry.get_loan(0)

    def test_all_loan_errors_share_a_base(self, registry):
        with pytest.raises(LoanError):
            registry.get_loan(42)

    def test_loans_snapshot_is_a_copy(self, registry, requested_loan):
        loans = registry.loans
        loans.clear()
        assert registry.loan_count == 1
        assert requested_loan in registry.loans

    def test_by_wallet(self, registry, requested_loan):
        second = registry.request_loan("stranger", 5, WEEK, Decimal("3"))
        registry.fund_loan("lender", second, Decimal("6"))
        assert [loan.loan_id for loan in registry.loans_by_borrower("borrower")] == [requested_loan]
        assert [loan.loan_id for loan in registry.loans_by_lender("lender")] == [second]
        assert registry.loans_by_lender("owner") == []

    def test_events_for(self, registry, funded_loan):
        registry.request_loan("stranger", 5, WEEK, Decimal("3"))
        names = [e.name for e in registry.events_for(funded_loan)]
        assert names == ["LoanRequested", "LoanFunded"]


class TestVerboseOutput:

    def test_notifications_printed(self, ledger, capsys):
        registry = LoanRegistry(ledger, "ETH", name="Loud", verbose=True)
        loan_id = registry.request_loan("borrower", 10, WEEK, Decimal("1"))
        with pytest.raises(IncorrectLoanAmount):
            registry.fund_loan("lender", loan_id, Decimal("1"))
        out = capsys.readouterr().out
        assert "LoanRequested(loan_id=0" in out
        assert "fund loan 0 reverted: IncorrectLoanAmount" in out
