"""
Core types and pure functions for the NFT lending vault.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only access to vault state
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: Pure validation functions for moves
6. Unit factories and composite-key symbol helpers

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable, Sequence
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Currency amounts carry 18 decimal places and DPO supplies are currency
# amounts times the exchange rate, so intermediate products need headroom.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_VAULT_DECIMAL_CONTEXT = getcontext()
_VAULT_DECIMAL_CONTEXT.prec = 60
_VAULT_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance of NFTs, DPO units and test funding.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_CURRENCY = "CURRENCY"
UNIT_TYPE_NFT = "NFT"
UNIT_TYPE_DPO = "DPO"
UNIT_TYPE_VAULT_POSITION = "VAULT_POSITION"
UNIT_TYPE_COLLECTION = "COLLECTION"

# Symbol prefixes for composite-keyed rows.
NFT_PREFIX = "NFT"
DPO_PREFIX = "DPO"
POSITION_PREFIX = "POS"
COLLECTION_PREFIX = "COLL"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

DEFAULT_CURRENCY_DECIMALS = 18

DECIMAL_ROUNDING = {
    UNIT_TYPE_CURRENCY: ROUND_DOWN,
    UNIT_TYPE_DPO: ROUND_DOWN,
    UNIT_TYPE_NFT: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (a keyed row: deposit, loan, order book, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Transaction builders, transfer rules and valuation functions take a
    LedgerView so they can read balances and unit rows without being able
    to modify them. The Ledger class implements this protocol; tests use
    FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Return the balance of a specific unit in a wallet.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balances, transfer rules,
              stale state rows). Nothing was mutated.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"
    ADMIN = "admin"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all vault and ledger errors."""
    pass


# --- substrate errors -------------------------------------------------------

class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would cause a wallet balance to violate the unit's min/max constraints."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class TransactionRejected(LedgerError):
    """Raised by services when the ledger rejects a built transaction at commit."""
    pass


# --- authorization errors ---------------------------------------------------

class AuthorizationError(LedgerError):
    """Caller lacks the required relationship to the resource."""
    pass


class NotOwner(AuthorizationError):
    """Caller does not currently own the NFT."""
    pass


class NotYourNFT(AuthorizationError):
    """Caller is not the owner of the active deposit."""
    pass


class NotApproved(AuthorizationError):
    """The vault has not been approved to take custody of the NFT."""
    pass


class Unauthorized(AuthorizationError):
    """Caller lacks the role required for the operation."""
    pass


# --- policy violations ------------------------------------------------------

class PolicyViolation(LedgerError):
    """Business-rule rejection; the caller must adjust input and resubmit."""
    pass


class ExceedsMaxLTV(PolicyViolation):
    pass


class UnsupportedCollection(PolicyViolation):
    pass


class OutstandingDebt(PolicyViolation):
    pass


class BelowLiquidationThreshold(PolicyViolation):
    pass


class InvalidAmount(PolicyViolation):
    """Amount or price is zero, negative or not finite."""
    pass


# --- resource errors --------------------------------------------------------

class ResourceError(LedgerError):
    """Available funds or tokens do not cover the request."""
    pass


class InsufficientLiquidity(ResourceError):
    pass


class InsufficientBalance(ResourceError):
    pass


class InsufficientPayment(ResourceError):
    pass


# --- state errors -----------------------------------------------------------

class StateError(LedgerError):
    """Operation is not valid in the current lifecycle state."""
    pass


class NoActiveLoan(StateError):
    pass


class NoActiveDeposit(StateError):
    pass


class DepositAlreadyActive(StateError):
    pass


class OrderNotFound(StateError):
    pass


class DPOTokenNotConfigured(StateError):
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Wallet or service that initiated the transaction
        unit_symbol: Symbol of the row the transaction is about (if any)
        event_type: Event emitted by the transaction (e.g. "Borrowed")
        params: Event parameters, queryable through Ledger.events()
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None
    params: Tuple[Tuple[str, Any], ...] = ()

    @property
    def event_params(self) -> Dict[str, Any]:
        return dict(self.params)

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


def event_origin(
    source_id: str,
    event_type: str,
    unit_symbol: Optional[str] = None,
    origin_type: OriginType = OriginType.USER_ACTION,
    **params: Any,
) -> TransactionOrigin:
    """Build a TransactionOrigin that records an emitted event and its parameters."""
    return TransactionOrigin(
        origin_type=origin_type,
        source_id=source_id,
        unit_symbol=unit_symbol,
        event_type=event_type,
        params=tuple(sorted(params.items())),
    )


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    old_state doubles as the optimistic-concurrency precondition: the ledger
    rejects the transaction if the stored row no longer equals old_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old_value, new_value)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both become "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Deterministic serialization of nested state for content hashing."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Used for idempotency. Because every state change carries its old_state,
    two identical requests against different row versions hash differently,
    while a literal resubmission of the same built transaction does not.
    """
    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    if origin.params:
        content_parts.append(f"params:{_canonicalize(list(origin.params))}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by the pure compute_* functions and submitted to Ledger.execute().

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of row changes (with old_state and new_state)
        origin: Who/what created this transaction and which event it emits
        timestamp: When this pending transaction was created
        units_to_create: Units to register before executing moves
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the transaction.

    Example:
        def compute_flag(view, symbol):
            old_state = view.get_unit_state(symbol)
            new_state = {**old_state, "flagged": True}
            changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
            return build_transaction(view, [], changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def combine_transactions(
    view: LedgerView,
    pendings: Sequence[PendingTransaction],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Merge several pending transactions into one atomic transaction.

    Used when one operation spans two rows owned by different builders,
    e.g. a borrow that updates the vault position and mints DPO units.

    Raises:
        ValueError: if two of the pendings change the same unit row.
    """
    moves: List[Move] = []
    changes: List[UnitStateChange] = []
    units: List[Unit] = []
    touched: Set[str] = set()
    for pending in pendings:
        moves.extend(pending.moves)
        for sc in pending.state_changes:
            if sc.unit in touched:
                raise ValueError(f"Cannot combine two state changes for {sc.unit}")
            touched.add(sc.unit)
            changes.append(sc)
        units.extend(pending.units_to_create)
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=tuple(changes),
        origin=origin,
        timestamp=view.current_time,
        units_to_create=tuple(units),
    )


def stamp_transaction(pending: PendingTransaction, nonce: int) -> PendingTransaction:
    """
    Return pending with a request nonce added to its origin params.

    Two separate requests can build identical content (the same transfer twice
    in one instant); the nonce keeps their intent_ids apart while a literal
    resubmission of the stamped transaction stays idempotent.
    """
    origin = pending.origin
    stamped = replace(origin, params=tuple(sorted(origin.params + (('nonce', nonce),))))
    return replace(pending, origin=stamped, intent_id="")


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction for builders that have nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of row changes (with old_state and new_state)
        origin: Who/what created this transaction and which event it emits
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    @property
    def event_type(self) -> Optional[str]:
        return self.origin.event_type

    def describe(self) -> str:
        """Multi-line summary used by DEBUG logging."""
        lines = [
            f"Transaction {self.exec_id} ({self.origin})",
            f"  intent_id={self.intent_id} seq={self.sequence_number} at {self.execution_time}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} [{unit.unit_type}]")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} -> {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} -> {new_val!r}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type or keyed state row) in the ledger.

    Attributes:
        symbol: Identifier of the unit (e.g. "DPSV", "NFT:0xabc:1").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (CURRENCY, NFT, DPO, VAULT_POSITION).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict each time."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# COMPOSITE KEYS
# ============================================================================

def _key(prefix: str, collection: str, token_id: int) -> str:
    if not collection or not str(collection).strip():
        raise ValueError("collection cannot be empty")
    if int(token_id) < 0:
        raise ValueError(f"token_id cannot be negative, got {token_id}")
    return f"{prefix}:{collection}:{int(token_id)}"


def nft_symbol(collection: str, token_id: int) -> str:
    """Unit symbol of an NFT: NFT:{collection}:{token_id}."""
    return _key(NFT_PREFIX, collection, token_id)


def dpo_symbol(collection: str, token_id: int) -> str:
    """Unit symbol of the DPO units for one loan: DPO:{collection}:{token_id}."""
    return _key(DPO_PREFIX, collection, token_id)


def position_symbol(collection: str, token_id: int) -> str:
    """Unit symbol of the vault position row: POS:{collection}:{token_id}."""
    return _key(POSITION_PREFIX, collection, token_id)


def collection_symbol(collection: str) -> str:
    """Unit symbol of a collection's configuration row: COLL:{collection}."""
    if not collection or not str(collection).strip():
        raise ValueError("collection cannot be empty")
    return f"{COLLECTION_PREFIX}:{collection}"


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and floats to Decimal via str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def require_positive(value: Any, name: str) -> Decimal:
    """Convert to Decimal and reject zero, negative and non-finite values."""
    amount = to_decimal(value)
    if amount.is_nan() or amount.is_infinite() or amount <= 0:
        raise InvalidAmount(f"{name} must be positive, got {value}")
    return amount


# ============================================================================
# TRANSFER RULES
# ============================================================================

def nft_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    NFTs move whole: exactly one unit per move.

    Raises:
        TransferRuleViolation: If the move quantity is not exactly 1.
    """
    if move.quantity != Decimal("1"):
        raise TransferRuleViolation(
            f"NFT {move.unit_symbol} must move as a single unit, got {move.quantity}"
        )


def no_transfer_rule(view: LedgerView, move: Move) -> None:
    """State-only rows (vault positions) never carry balances."""
    raise TransferRuleViolation(f"{move.unit_symbol} is a state row and cannot be transferred")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def native_currency(
    symbol: str,
    name: str,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
) -> Unit:
    """
    Create the chain's native currency unit.

    Balances may not go negative: disbursements, payments and escrow moves
    that would overdraw a wallet are rejected by the ledger.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CURRENCY,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )


def create_nft_unit(collection: str, token_id: int) -> Unit:
    """
    Create the unit for a single NFT (collection, token_id).

    Any wallet holds either 0 or 1 of it. The row state carries the
    approved operator for approve-then-transfer custody handoffs.
    """
    return Unit(
        symbol=nft_symbol(collection, token_id),
        name=f"{collection} #{int(token_id)}",
        unit_type=UNIT_TYPE_NFT,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=nft_transfer_rule,
        _frozen_state=_freeze_state({
            'collection': collection,
            'token_id': int(token_id),
            'approved': None,
        }),
    )
