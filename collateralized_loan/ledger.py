"""
ledger.py - In-memory double-entry ledger the loan registry settles on

Holds wallet balances and the logical clock that due dates are checked
against. It is the only place balances change:

    - execute() applies a PendingTransaction all-or-nothing
    - the same intent is never applied twice
    - every applied transaction lands in transaction_log
    - a rejected transaction leaves its reason in last_rejection
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
from decimal import Decimal

from .core import (
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    SYSTEM_WALLET,
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    to_decimal,
)


class Ledger:
    """
    Wallet balances, a monotonic clock and an audit log.

    Implements LedgerView, so it can be handed straight to the loan
    transition functions.

    Every transaction is checked for registration, balance floors and
    ceilings, and timestamp before anything is applied. execute() does not
    raise on a rejected transaction; the registry turns last_rejection into
    an exception for its caller.

    Not thread-safe. LoanRegistry serializes its own access.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(native_token("ETH", "Ether"))
        ledger.register_wallet("borrower")
        ledger.register_wallet("lender")

        tx = build_transaction(ledger, [
            Move(Decimal("2"), "ETH", "lender", "borrower", "loan_0_fund")
        ])
        result = ledger.execute(tx)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Args:
            name: Ledger identifier, part of every exec_id
            initial_time: Starting time (default: 1970-01-01)
            verbose: Print registrations and transaction results (default: True)
            test_mode: Allow set_balance() (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[LedgerError] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of a unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances over every wallet, the system wallet included.

        Wallets are summed in sorted order so the result does not depend on
        set iteration order.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-18")
    ) -> Dict[str, Any]:
        """
        Check that no unit's total supply drifted.

        Wallets funded from SYSTEM_WALLET leave the supply at zero, and loan
        operations only move value between wallets and escrow, so the
        expected supply of the loan currency stays where issuance put it.

        Returns:
            'valid': True when every expected supply matches within tolerance
            'supplies': current total supply per unit
            'discrepancies': one dict per mismatch (unit, expected, actual, difference)

        Example:
            result = ledger.verify_double_entry({'ETH': Decimal("0")})
            assert result['valid'], result['discrepancies']
        """
        supplies = {unit_symbol: self.total_supply(unit_symbol) for unit_symbol in self.units}
        discrepancies = []

        for unit_symbol, expected in (expected_supplies or {}).items():
            if unit_symbol not in supplies:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': Decimal("0"),
                    'difference': abs(expected),
                    'error': 'unit not registered',
                })
                continue
            difference = abs(supplies[unit_symbol] - expected)
            if difference > tolerance:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': supplies[unit_symbol],
                    'difference': difference,
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # CLOCK
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the clock forward. Loans become claimable once it reaches their due date.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Open a wallet with no balances.

        Raises:
            ValueError: If the id is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Raises:
            ValueError: If the symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance without a counter-entry. Test mode only.

        Outside tests, fund wallets with a transfer from SYSTEM_WALLET.

        Raises:
            LedgerError: If the ledger was not created with test_mode=True
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Fund wallets from SYSTEM_WALLET with build_transaction() and execute(). "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        self.balances[wallet_id][unit_symbol] = to_decimal(quantity)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction atomically.

        Returns:
            ExecuteResult.APPLIED if every move was applied (or there were none)
            ExecuteResult.ALREADY_APPLIED if the intent_id was settled before
            ExecuteResult.REJECTED if validation failed (see last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        error = self._validate_pending(pending)
        if error is not None:
            self.last_rejection = error
            if self.verbose:
                print(f"✗ REJECTED: {error}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed transaction with a result row above the bottom border."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w
        text = ' ' + icon + ' ' + result
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{text[:w].ljust(w)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Optional[LedgerError]:
        """
        First reason the transaction cannot be applied, or None.

        Balances are checked on the net change per wallet, so a wallet may
        send value it receives in the same transaction.
        """
        if pending.timestamp > self._current_time:
            return LedgerError(
                f"future timestamp: {pending.timestamp} > {self._current_time}"
            )

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return UnitNotRegistered(f"unit not registered: {move.unit_symbol}")
            for wallet in (move.source, move.dest):
                if not self.is_registered(wallet):
                    return WalletNotRegistered(f"wallet not registered: {wallet}")

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        for (wallet, unit_sym), delta in sorted(net.items()):
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                return InsufficientFunds(
                    f"{wallet} {unit_sym}: balance {current} cannot cover {-delta} "
                    f"(min {unit.min_balance})"
                )
            if proposed > unit.max_balance:
                return BalanceConstraintViolation(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

        return None

    def _execute_moves(self, moves: Tuple[Move, ...]) -> None:
        for move in moves:
            unit = self.units[move.unit_symbol]
            self.balances[move.source][move.unit_symbol] = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
