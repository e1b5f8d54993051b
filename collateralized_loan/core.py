"""
Core types and pure functions for the collateralized loan system.

Everything the loan registry settles through is defined here:
1. LedgerView: the read-only face of the ledger (clock, balances, units)
2. Transfer records: Move, PendingTransaction, Transaction
3. Unit: a currency definition with its precision and balance floor
4. Exceptions: LedgerError for settlement failures, LoanError for rejected transitions

Nothing in this module mutates a ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are 18-decimal token quantities multiplied by integer percentages.
# The global context is fixed once, at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# Use decimal.localcontext() for anything that needs different settings.
#
#   - prec=50: room for 18 fractional digits on top of very large principals
#   - rounding=ROUND_HALF_EVEN: applies only where no explicit mode is given
#
_LOAN_DECIMAL_CONTEXT = getcontext()
_LOAN_DECIMAL_CONTEXT.prec = 50
_LOAN_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Issuance wallet. It may go negative, so funding wallets from it keeps supply at zero.
SYSTEM_WALLET = "system"

UNIT_TYPE_CRYPTO = "CRYPTO"

# Anything smaller than this is not a transfer.
QUANTITY_EPSILON = Decimal("1e-24")

# Wei per ether.
NATIVE_TOKEN_DECIMAL_PLACES = 18

# Balances of on-chain tokens never gain value from rounding.
DECIMAL_ROUNDING = {
    UNIT_TYPE_CRYPTO: ROUND_DOWN,
}


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Loan transition functions take a LedgerView so they can read the clock
    and balances without being able to change them. Ledger implements it;
    tests pass a FakeView to pin the clock at an arbitrary instant.
    """

    @property
    def current_time(self) -> datetime:
        """Logical time, used as block time for due dates."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Balance of unit_symbol held by wallet_id, Decimal("0") if never held."""
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of Ledger.execute.

    APPLIED: every move was applied.
    ALREADY_APPLIED: the same intent was settled before; nothing changed.
    REJECTED: validation failed; nothing changed and last_rejection says why.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Who asked for a transaction."""
    CONTRACT = "contract"   # Loan registry operation
    SYSTEM = "system"       # Issuance and setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for settlement failures and loan rejections."""
    pass


class InsufficientFunds(LedgerError):
    """A wallet cannot cover the value it is asked to send."""
    pass


class BalanceConstraintViolation(LedgerError):
    """A transfer would push a wallet above the unit's maximum balance."""
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class LoanError(LedgerError):
    """Base exception for loan state machine rejections."""
    pass


class LoanNotFound(LoanError):
    """Raised when a loan id was never issued by the registry."""
    pass


class InvalidCollateral(LoanError):
    """Raised when a loan is requested without a positive collateral deposit."""
    pass


class IncorrectLoanAmount(LoanError):
    """Raised when funding value differs from the loan amount."""
    pass


class AlreadyFunded(LoanError):
    """Raised when funding a loan that already has a lender."""
    pass


class LoanNotFunded(LoanError):
    """Raised when repaying or claiming a loan that was never funded."""
    pass


class IncorrectRepaymentAmount(LoanError):
    """Raised when repayment value differs from principal plus interest."""
    pass


class RepaidAlready(LoanError):
    """Raised when a loan has already been repaid."""
    pass


class NotYetDue(LoanError):
    """Raised when collateral is claimed before the due date."""
    pass


class Unauthorized(LoanError):
    """Raised when someone other than the lender claims collateral."""
    pass


class CollateralAlreadyClaimed(LoanError):
    """Raised when collateral of a defaulted loan has already been paid out."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Audit tag attached to every transaction.

    Attributes:
        origin_type: CONTRACT for registry operations, SYSTEM for issuance
        source_id: Registry name (or "system")
        unit_symbol: Loan currency
        event_type: Notification the transaction settles, e.g. "LoanFunded"
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# TRANSFER RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    One transfer of value between two distinct wallets.

    Attributes:
        quantity: Finite, non-zero Decimal amount.
        unit_symbol: Currency moved, e.g. "ETH".
        source: Debited wallet.
        dest: Credited wallet.
        contract_id: Operation tag, e.g. "CollateralizedLoan:loan_3:fund".
        metadata: Free-form extra information.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        for name in ("source", "dest", "unit_symbol", "contract_id"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical text for a Decimal: 2, 2.0 and 2.00 all become "2"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _compute_intent_id(
    moves: Tuple[Move, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Content hash of a transaction's moves and origin.

    Timestamps are left out, so settling the same transfers twice is caught
    as ALREADY_APPLIED. Every loan move carries its loan id in contract_id,
    which keeps two identical-looking loans from sharing an intent.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    return hashlib.sha256("|".join(content_parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    Transfers a loan transition wants settled, not yet executed.

    Attributes:
        moves: Transfers to apply together
        origin: Audit tag
        timestamp: Ledger time when the transition was computed
        intent_id: Content hash, computed when left empty
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(self.moves, self.origin))

    def is_empty(self) -> bool:
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Wrap moves in a PendingTransaction stamped with the view's current time.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("2"), "ETH", "lender", "borrower", "loan_0_fund")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A settled PendingTransaction as recorded in the ledger's audit log.

    Attributes:
        moves, origin, timestamp, intent_id: copied from the PendingTransaction
        exec_id: "exec:{ledger}:{sequence}:{micros}"
        ledger_name: Ledger that applied it
        execution_time: Ledger time at execution
        sequence_number: Position in the audit log
        contract_ids: Operation tags of the moves (derived)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text.ljust(w)

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# UNITS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Unit:
    """
    A currency loans can be denominated in.

    Attributes:
        symbol: Ticker, e.g. "ETH".
        name: Display name.
        unit_type: Rounding class, see DECIMAL_ROUNDING.
        min_balance: Lowest balance a wallet may reach (0 forbids overdrafts).
        max_balance: Highest balance a wallet may reach.
        decimal_places: Smallest denomination exponent, None for unlimited precision.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None

    def _quantizer(self) -> Decimal:
        return Decimal(10) ** -self.decimal_places

    def round(self, value: Decimal) -> Decimal:
        """Quantize a balance with the unit type's rounding mode."""
        if self.decimal_places is None:
            return value
        value = to_decimal(value)
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(self._quantizer(), rounding=rounding_mode)

    def truncate(self, value: Decimal) -> Decimal:
        """Drop everything below the smallest denomination, whatever the unit type."""
        if self.decimal_places is None:
            return value
        return value.quantize(self._quantizer(), rounding=ROUND_DOWN)


def to_decimal(value: Any) -> Decimal:
    """Convert int/str/float amounts to Decimal via str to avoid binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"amount must be numeric, got {value!r}")
    return Decimal(str(value))


def native_token(symbol: str, name: str, decimal_places: int = NATIVE_TOKEN_DECIMAL_PLACES) -> Unit:
    """
    Create a chain-native token unit (e.g. Ether).

    Balances can never go negative, so a transfer from a wallet that cannot
    cover it is rejected. Amounts are truncated to the smallest denomination.

    Args:
        symbol: Token symbol (e.g., "ETH").
        name: Full name (e.g., "Ether").
        decimal_places: Smallest denomination exponent (default: 18, wei).
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CRYPTO,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )
