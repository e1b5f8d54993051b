#!/usr/bin/env python3
"""
demo.py - Walkthrough: deploy a loan registry and run both loan outcomes

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-2: Deployment   - Ledger, native token, funded wallets, the registry
  3-5: Happy path   - Request, fund, repay; collateral comes back
  6-8: Default path - Request, fund, let the due date pass, lender claims
  9:   Rejections   - Wrong amounts and early claims revert with no effect
  10:  Conservation - Total ETH supply never changed

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from collateralized_loan import (
    Ledger, LoanRegistry, Move, LoanError,
    build_transaction, native_token,
    SYSTEM_WALLET, ExecuteResult,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding (ETH)
    initial_balance: Decimal = Decimal("10000")

    # Loan terms
    collateral: Decimal = Decimal("1")
    interest_rate: int = 10           # percent
    duration: int = 60 * 60 * 24 * 7  # one week, in seconds


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def header(step: int, title: str):
    print()
    print("=" * 78)
    print(f"  STEP {step}: {title}")
    print("=" * 78)


def show_balances(ledger: Ledger, registry: LoanRegistry, wallets):
    for wallet in wallets:
        print(f"    {wallet:<24} {ledger.get_balance(wallet, 'ETH'):>14} ETH")
    print(f"    {registry.escrow_wallet:<24} {registry.escrow_balance():>14} ETH (escrow)")


def deploy():
    """Create the ledger, fund owner/borrower/lender, deploy the registry."""
    ledger = Ledger("demo", CONFIG.start_time, verbose=False)
    ledger.register_unit(native_token("ETH", "Ether"))

    wallets = ["owner", "borrower", "lender"]
    for wallet in wallets:
        ledger.register_wallet(wallet)

    funding = build_transaction(ledger, [
        Move(CONFIG.initial_balance, "ETH", SYSTEM_WALLET, wallet, f"genesis_{wallet}")
        for wallet in wallets
    ])
    if ledger.execute(funding) != ExecuteResult.APPLIED:
        raise RuntimeError(f"Genesis funding rejected: {ledger.last_rejection}")

    registry = LoanRegistry(ledger, "ETH", name="CollateralizedLoan", verbose=True)
    return ledger, registry, wallets


def main():
    header(1, "Deploy")
    ledger, registry, wallets = deploy()
    print(f"  CollateralizedLoan deployed to: {registry.escrow_wallet}")
    wait_for_enter()

    header(2, "Starting balances")
    show_balances(ledger, registry, wallets)
    wait_for_enter()

    header(3, "Borrower deposits collateral and requests a loan")
    happy = registry.request_loan("borrower", CONFIG.interest_rate, CONFIG.duration, CONFIG.collateral)
    loan = registry.get_loan(happy)
    print(f"  loan {happy}: asks {loan.loan_amount} ETH, due {loan.due_date}")
    wait_for_enter()

    header(4, "Lender funds the loan")
    registry.fund_loan("lender", happy, loan.loan_amount)
    show_balances(ledger, registry, wallets)
    wait_for_enter()

    header(5, "Borrower repays principal + interest")
    repayment = registry.required_repayment(happy)
    print(f"  required repayment: {repayment.normalize()} ETH")
    registry.repay_loan("borrower", happy, repayment)
    show_balances(ledger, registry, wallets)
    wait_for_enter()

    header(6, "A second loan, funded but never repaid")
    defaulted = registry.request_loan("borrower", CONFIG.interest_rate, CONFIG.duration, CONFIG.collateral)
    registry.fund_loan("lender", defaulted, registry.get_loan(defaulted).loan_amount)
    wait_for_enter()

    header(7, "Lender tries to claim one second before the due date")
    due = registry.get_loan(defaulted).due_date
    ledger.advance_time(due - timedelta(seconds=1))
    try:
        registry.claim_collateral("lender", defaulted)
    except LoanError as e:
        print(f"  reverted: {e}")
    wait_for_enter()

    header(8, "Due date passes, lender claims the collateral")
    ledger.advance_time(due + timedelta(seconds=1))
    registry.claim_collateral("lender", defaulted)
    show_balances(ledger, registry, wallets)
    wait_for_enter()

    header(9, "Rejected operations change nothing")
    third = registry.request_loan("borrower", CONFIG.interest_rate, CONFIG.duration, CONFIG.collateral)
    before = {w: ledger.get_balance(w, "ETH") for w in wallets}
    for label, attempt in [
        ("fund with 1 ETH", lambda: registry.fund_loan("lender", third, Decimal("1"))),
        ("zero collateral", lambda: registry.request_loan("borrower", 10, CONFIG.duration, 0)),
        ("claim unfunded loan early", lambda: registry.claim_collateral("lender", third)),
    ]:
        try:
            attempt()
        except LoanError as e:
            print(f"  {label:<28} -> {type(e).__name__}: {e}")
    after = {w: ledger.get_balance(w, "ETH") for w in wallets}
    print(f"  balances unchanged: {before == after}")
    wait_for_enter()

    header(10, "Conservation")
    supply = CONFIG.initial_balance * len(wallets)
    # The system wallet issued the genesis funds, so it holds -supply.
    check = ledger.verify_double_entry({"ETH": Decimal("0")})
    print(f"  ETH issued: {supply}, net supply across all wallets: {check['supplies']['ETH']}")
    print(f"  conservation holds: {check['valid']}")
    for loan in registry.loans.values():
        print(f"  loan {loan.loan_id}: {loan.status.value}")


if __name__ == "__main__":
    main()
