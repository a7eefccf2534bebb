"""
dpo.py - Debt Position Ownership (DPO) units, order book and interest pool

Each loan's debt is tokenized as its own unit, DPO:{collection}:{token_id}.
Holder balances live in the ledger; the unit row carries everything else:

    total_supply       units minted so far (never burned)
    orders             open sell orders, keyed by order id
    next_order_id      per-pair order sequence
    pending_interest   holder -> distributed but unclaimed currency
    total_distributed  currency ever paid into the pair's interest pool
    total_claimed      currency ever paid out of it

Sell orders escrow the seller's units in the escrow wallet until filled or
cancelled. A holder's position is therefore free balance + escrowed units,
and the sum of positions over holders equals total_supply.

Buy orders fill immediately against resting sells at or below the bid, best
price first then oldest first, at the resting order's price. Whatever cannot
fill is cancelled in the same transaction: the buyer's payment is escrowed,
sellers are paid from escrow and the rest returns to the buyer.

Interest distribution is a snapshot: a payment is split pro-rata over the
holder positions at that moment and added to their pending balances.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    QUANTITY_EPSILON, SYSTEM_WALLET, UNIT_TYPE_DPO,
    InsufficientBalance, InsufficientPayment, InvalidAmount, NoActiveLoan,
    OrderNotFound, Unauthorized,
    build_transaction, dpo_symbol, empty_pending_transaction, event_origin,
    require_positive, to_decimal, _freeze_state,
    OriginType,
)


SIDE_SELL = "SELL"
BPS = Decimal("10000")


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Order:
    """A resting sell order; remaining units sit in escrow."""
    order_id: str
    owner: str
    price: Decimal
    amount: Decimal
    remaining: Decimal
    created_at: Optional[datetime]
    side: str = SIDE_SELL

    @property
    def sequence(self) -> int:
        return int(self.order_id.rsplit(":", 1)[1])


@dataclass(frozen=True, slots=True)
class DPOState:
    collection: str
    token_id: int
    total_supply: Decimal = Decimal("0")
    orders: Mapping[str, Order] = field(default_factory=dict)
    next_order_id: int = 1
    pending_interest: Mapping[str, Decimal] = field(default_factory=dict)
    total_distributed: Decimal = Decimal("0")
    total_claimed: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class Fill:
    order_id: str
    seller: str
    quantity: Decimal
    price: Decimal
    cost: Decimal
    fee: Decimal


def make_order_id(collection: str, token_id: int, sequence: int) -> str:
    return f"{collection}:{int(token_id)}:{sequence}"


def parse_order_id(order_id: str) -> Tuple[str, int, int]:
    """
    Split an order id into (collection, token_id, sequence).

    Raises:
        OrderNotFound: If order_id is malformed
    """
    try:
        collection, token_id, sequence = str(order_id).rsplit(":", 2)
        return collection, int(token_id), int(sequence)
    except ValueError:
        raise OrderNotFound(f"Malformed order id {order_id!r}") from None


# ============================================================================
# ADAPTERS
# ============================================================================

def _order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        'order_id': order.order_id,
        'side': order.side,
        'owner': order.owner,
        'price': order.price,
        'amount': order.amount,
        'remaining': order.remaining,
        'created_at': order.created_at,
    }


def _order_from_dict(raw: Mapping[str, Any]) -> Order:
    return Order(
        order_id=raw['order_id'],
        owner=raw['owner'],
        price=to_decimal(raw['price']),
        amount=to_decimal(raw['amount']),
        remaining=to_decimal(raw['remaining']),
        created_at=raw.get('created_at'),
        side=raw.get('side', SIDE_SELL),
    )


def to_state_dict(state: DPOState) -> Dict[str, Any]:
    return {
        'collection': state.collection,
        'token_id': state.token_id,
        'total_supply': state.total_supply,
        'orders': {oid: _order_to_dict(o) for oid, o in state.orders.items()},
        'next_order_id': state.next_order_id,
        'pending_interest': dict(state.pending_interest),
        'total_distributed': state.total_distributed,
        'total_claimed': state.total_claimed,
    }


def load_dpo(view: LedgerView, collection: str, token_id: int) -> DPOState:
    """Load a pair's DPO row; a pair with nothing minted reads as empty."""
    symbol = dpo_symbol(collection, token_id)
    if not view.has_unit(symbol):
        return DPOState(collection=collection, token_id=int(token_id))
    raw = view.get_unit_state(symbol)
    return DPOState(
        collection=raw['collection'],
        token_id=int(raw['token_id']),
        total_supply=to_decimal(raw.get('total_supply', 0)),
        orders={oid: _order_from_dict(o) for oid, o in raw.get('orders', {}).items()},
        next_order_id=int(raw.get('next_order_id', 1)),
        pending_interest={h: to_decimal(v) for h, v in raw.get('pending_interest', {}).items()},
        total_distributed=to_decimal(raw.get('total_distributed', 0)),
        total_claimed=to_decimal(raw.get('total_claimed', 0)),
    )


def create_dpo_unit(state: DPOState, decimal_places: int = 18) -> Unit:
    return Unit(
        symbol=dpo_symbol(state.collection, state.token_id),
        name=f"DPO {state.collection} #{state.token_id}",
        unit_type=UNIT_TYPE_DPO,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
        _frozen_state=_freeze_state(to_state_dict(state)),
    )


def _row_change(
    view: LedgerView,
    new: DPOState,
    decimal_places: int = 18,
) -> Tuple[List[UnitStateChange], Tuple[Unit, ...]]:
    """(state_changes, units_to_create) that bring the pair's row to `new`."""
    symbol = dpo_symbol(new.collection, new.token_id)
    if view.has_unit(symbol):
        return [UnitStateChange(symbol, view.get_unit_state(symbol), to_state_dict(new))], ()
    return [], (create_dpo_unit(new, decimal_places),)


def _replace(state: DPOState, **changes) -> DPOState:
    values = {
        'collection': state.collection,
        'token_id': state.token_id,
        'total_supply': state.total_supply,
        'orders': dict(state.orders),
        'next_order_id': state.next_order_id,
        'pending_interest': dict(state.pending_interest),
        'total_distributed': state.total_distributed,
        'total_claimed': state.total_claimed,
    }
    values.update(changes)
    return DPOState(**values)


def _quantize(amount: Decimal, places: Optional[int], rounding) -> Decimal:
    if places is None:
        return amount
    return amount.quantize(Decimal(10) ** -places, rounding=rounding)


# ============================================================================
# READS
# ============================================================================

def free_balance(view: LedgerView, collection: str, token_id: int, holder: str) -> Decimal:
    symbol = dpo_symbol(collection, token_id)
    if not view.has_unit(symbol):
        return Decimal("0")
    return view.get_balance(holder, symbol)


def escrowed_balance(state: DPOState, holder: str) -> Decimal:
    return sum(
        (o.remaining for o in state.orders.values() if o.owner == holder),
        Decimal("0"),
    )


def holder_positions(view: LedgerView, collection: str, token_id: int, escrow: str) -> Dict[str, Decimal]:
    """
    Every holder's free + escrowed units, keyed by wallet.

    The escrow and system wallets are bookkeeping accounts, not holders.
    """
    symbol = dpo_symbol(collection, token_id)
    if not view.has_unit(symbol):
        return {}
    state = load_dpo(view, collection, token_id)
    positions: Dict[str, Decimal] = {}
    for wallet, quantity in view.get_positions(symbol).items():
        if wallet in (SYSTEM_WALLET, escrow) or quantity <= 0:
            continue
        positions[wallet] = quantity
    for order in state.orders.values():
        positions[order.owner] = positions.get(order.owner, Decimal("0")) + order.remaining
    return positions


def token_holdings(view: LedgerView, collection: str, token_id: int, holder: str, escrow: str) -> Decimal:
    return holder_positions(view, collection, token_id, escrow).get(holder, Decimal("0"))


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_distribution(
    amount: Decimal,
    positions: Mapping[str, Decimal],
    currency_places: Optional[int],
) -> Dict[str, Decimal]:
    """
    Split amount pro-rata over positions.

    Shares are rounded down to currency precision; the rounding remainder
    goes to the largest holder (ties broken by wallet id) so the shares sum
    to exactly amount.
    """
    total = sum(positions.values(), Decimal("0"))
    if total <= 0:
        return {}
    shares = {
        holder: _quantize(amount * qty / total, currency_places, ROUND_DOWN)
        for holder, qty in positions.items()
    }
    remainder = amount - sum(shares.values(), Decimal("0"))
    if remainder > 0:
        largest = sorted(positions.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        shares[largest] += remainder
    return {h: s for h, s in shares.items() if s > 0}


def calculate_fee(cost: Decimal, fee_bps: int, currency_places: Optional[int]) -> Decimal:
    if fee_bps <= 0:
        return Decimal("0")
    return _quantize(cost * Decimal(fee_bps) / BPS, currency_places, ROUND_DOWN)


def match_sell_orders(
    orders: Mapping[str, Order],
    buyer: str,
    amount: Decimal,
    bid: Decimal,
    fee_bps: int = 0,
    currency_places: Optional[int] = None,
) -> List[Fill]:
    """
    Walk resting sells at or below bid, cheapest then oldest, until amount
    is filled. The buyer's own orders are skipped.
    """
    book = sorted(
        (o for o in orders.values() if o.price <= bid and o.owner != buyer and o.remaining > 0),
        key=lambda o: (o.price, o.sequence),
    )
    fills: List[Fill] = []
    left = amount
    for order in book:
        if left <= 0:
            break
        quantity = min(left, order.remaining)
        cost = _quantize(quantity * order.price, currency_places, ROUND_DOWN)
        fee = calculate_fee(cost, fee_bps, currency_places)
        fills.append(Fill(order.order_id, order.owner, quantity, order.price, cost, fee))
        left -= quantity
    return fills


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_mint(
    view: LedgerView,
    collection: str,
    token_id: int,
    to: str,
    amount: Decimal,
    minter: str,
    decimal_places: int = 18,
) -> PendingTransaction:
    """
    Issue `amount` DPO units of the pair to `to`, creating the unit on first mint.

    Raises:
        InvalidAmount: If amount is not positive
    """
    amount = _quantize(require_positive(amount, "amount"), decimal_places, ROUND_DOWN)
    if amount <= 0:
        raise InvalidAmount("mint amount rounds to zero")
    state = load_dpo(view, collection, token_id)
    new_state = _replace(state, total_supply=state.total_supply + amount)
    changes, units = _row_change(view, new_state, decimal_places)
    symbol = dpo_symbol(collection, token_id)
    moves = [Move(amount, symbol, SYSTEM_WALLET, to, f"mint_{symbol}")]
    origin = event_origin(
        minter, "DPOMinted", symbol, OriginType.CONTRACT,
        collection=collection, token_id=int(token_id), to=to, amount=amount,
    )
    return build_transaction(view, moves, changes, origin=origin, units_to_create=units)


def compute_transfer(
    view: LedgerView,
    collection: str,
    token_id: int,
    sender: str,
    recipient: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Move free (unescrowed) units between holders. Pending interest stays put.

    Raises:
        InvalidAmount: If amount is not positive or sender == recipient
        InsufficientBalance: If sender's free balance is short
    """
    amount = require_positive(amount, "amount")
    if sender == recipient:
        raise InvalidAmount("cannot transfer to self")
    symbol = dpo_symbol(collection, token_id)
    available = free_balance(view, collection, token_id, sender)
    if available < amount:
        raise InsufficientBalance(f"{sender} holds {available} free {symbol}, needs {amount}")
    moves = [Move(amount, symbol, sender, recipient, f"transfer_{symbol}")]
    origin = event_origin(
        sender, "DPOTransferred", symbol,
        collection=collection, token_id=int(token_id), sender=sender,
        recipient=recipient, amount=amount,
    )
    return build_transaction(view, moves, origin=origin)


def compute_place_sell_order(
    view: LedgerView,
    collection: str,
    token_id: int,
    seller: str,
    amount: Decimal,
    price: Decimal,
    escrow: str,
) -> PendingTransaction:
    """
    Rest a sell order and escrow its units.

    Raises:
        InvalidAmount: If amount or price is not positive
        InsufficientBalance: If seller's free balance is short
    """
    amount = require_positive(amount, "amount")
    price = require_positive(price, "price")
    symbol = dpo_symbol(collection, token_id)
    available = free_balance(view, collection, token_id, seller)
    if available < amount:
        raise InsufficientBalance(f"{seller} holds {available} free {symbol}, needs {amount}")

    state = load_dpo(view, collection, token_id)
    order = Order(
        order_id=make_order_id(collection, token_id, state.next_order_id),
        owner=seller,
        price=price,
        amount=amount,
        remaining=amount,
        created_at=view.current_time,
    )
    orders = dict(state.orders)
    orders[order.order_id] = order
    new_state = _replace(state, orders=orders, next_order_id=state.next_order_id + 1)
    changes, _ = _row_change(view, new_state)
    moves = [Move(amount, symbol, seller, escrow, f"sell_{order.order_id}")]
    origin = event_origin(
        seller, "SellOrderPlaced", symbol,
        collection=collection, token_id=int(token_id), order_id=order.order_id,
        seller=seller, amount=amount, price=price,
    )
    return build_transaction(view, moves, changes, origin=origin)


def compute_place_buy_order(
    view: LedgerView,
    collection: str,
    token_id: int,
    buyer: str,
    amount: Decimal,
    price: Decimal,
    payment: Decimal,
    currency: str,
    escrow: str,
    fee_bps: int = 0,
    fee_wallet: Optional[str] = None,
) -> PendingTransaction:
    """
    Buy up to `amount` units at no more than `price` each.

    payment must equal amount * price at currency precision (rounded up).
    The whole payment is escrowed, each fill pays its seller at the resting
    price less the protocol fee, and the unspent balance is refunded. The
    origin params record the fills, the units filled, the amount spent and
    the refund.

    Raises:
        InvalidAmount: If amount, price or payment is not positive, or the
            payment exceeds amount * price
        InsufficientPayment: If payment is below amount * price
        InsufficientBalance: If the buyer cannot fund the payment
    """
    amount = require_positive(amount, "amount")
    price = require_positive(price, "price")
    payment = require_positive(payment, "payment")
    places = view.get_unit(currency).decimal_places
    required = _quantize(amount * price, places, ROUND_UP)
    if payment < required:
        raise InsufficientPayment(f"payment {payment} below required {required}")
    if payment > required:
        raise InvalidAmount(f"payment {payment} exceeds required {required}")
    held = view.get_balance(buyer, currency)
    if held < payment:
        raise InsufficientBalance(f"{buyer} holds {held} {currency}, needs {payment}")
    if fee_bps > 0 and not fee_wallet:
        raise ValueError("fee_wallet is required when fee_bps > 0")

    symbol = dpo_symbol(collection, token_id)
    state = load_dpo(view, collection, token_id)
    fills = match_sell_orders(state.orders, buyer, amount, price, fee_bps, places)

    moves: List[Move] = [Move(payment, currency, buyer, escrow, f"buy_escrow_{symbol}")]
    orders = dict(state.orders)
    spent = Decimal("0")
    filled = Decimal("0")
    for fill in fills:
        moves.append(Move(fill.quantity, symbol, escrow, buyer, f"fill_{fill.order_id}"))
        proceeds = fill.cost - fill.fee
        if proceeds > 0:
            moves.append(Move(proceeds, currency, escrow, fill.seller, f"fill_{fill.order_id}"))
        if fill.fee > 0:
            moves.append(Move(fill.fee, currency, escrow, fee_wallet, f"fee_{fill.order_id}"))
        spent += fill.cost
        filled += fill.quantity
        order = orders[fill.order_id]
        remaining = order.remaining - fill.quantity
        if remaining > QUANTITY_EPSILON:
            orders[fill.order_id] = Order(
                order.order_id, order.owner, order.price, order.amount,
                remaining, order.created_at, order.side,
            )
        else:
            del orders[fill.order_id]
    refund = payment - spent
    if refund > 0:
        moves.append(Move(refund, currency, escrow, buyer, f"buy_refund_{symbol}"))

    changes: List[UnitStateChange] = []
    if fills:
        changes, _ = _row_change(view, _replace(state, orders=orders))
    origin = event_origin(
        buyer, "BuyOrderPlaced", symbol,
        collection=collection, token_id=int(token_id), buyer=buyer,
        amount=amount, price=price, filled=filled, spent=spent, refunded=refund,
        fills=tuple((f.order_id, f.seller, f.quantity, f.price, f.fee) for f in fills),
    )
    return build_transaction(view, moves, changes, origin=origin)


def compute_cancel_order(
    view: LedgerView,
    order_id: str,
    caller: str,
    escrow: str,
) -> PendingTransaction:
    """
    Cancel a resting sell order and return its escrowed units.

    Raises:
        OrderNotFound: If no open order has this id
        Unauthorized: If caller did not place the order
    """
    collection, token_id, _ = parse_order_id(order_id)
    state = load_dpo(view, collection, token_id)
    order = state.orders.get(order_id)
    if order is None:
        raise OrderNotFound(f"No open order {order_id}")
    if order.owner != caller:
        raise Unauthorized(f"{caller} did not place order {order_id}")
    orders = dict(state.orders)
    del orders[order_id]
    changes, _ = _row_change(view, _replace(state, orders=orders))
    symbol = dpo_symbol(collection, token_id)
    moves = [Move(order.remaining, symbol, escrow, caller, f"cancel_{order_id}")]
    origin = event_origin(
        caller, "OrderCancelled", symbol,
        collection=collection, token_id=int(token_id), order_id=order_id,
        returned=order.remaining,
    )
    return build_transaction(view, moves, changes, origin=origin)


def compute_distribute_interest(
    view: LedgerView,
    collection: str,
    token_id: int,
    payer: str,
    amount: Decimal,
    currency: str,
    pool: str,
    escrow: str,
) -> PendingTransaction:
    """
    Pay `amount` into the pair's interest pool and credit holders pro-rata
    to their positions right now.

    Raises:
        InvalidAmount: If amount is not positive
        NoActiveLoan: If the pair has no DPO units outstanding
        InsufficientBalance: If the payer cannot fund amount
    """
    amount = require_positive(amount, "amount")
    symbol = dpo_symbol(collection, token_id)
    state = load_dpo(view, collection, token_id)
    if state.total_supply <= 0:
        raise NoActiveLoan(f"No DPO units outstanding for {symbol}")
    held = view.get_balance(payer, currency)
    if held < amount:
        raise InsufficientBalance(f"{payer} holds {held} {currency}, needs {amount}")

    places = view.get_unit(currency).decimal_places
    shares = calculate_distribution(amount, holder_positions(view, collection, token_id, escrow), places)
    pending = dict(state.pending_interest)
    for holder, share in shares.items():
        pending[holder] = pending.get(holder, Decimal("0")) + share
    new_state = _replace(
        state,
        pending_interest=pending,
        total_distributed=state.total_distributed + amount,
    )
    changes, _ = _row_change(view, new_state)
    moves = [Move(amount, currency, payer, pool, f"interest_{symbol}")]
    origin = event_origin(
        payer, "InterestDistributed", symbol,
        collection=collection, token_id=int(token_id), payer=payer, amount=amount,
        holders=len(shares),
    )
    return build_transaction(view, moves, changes, origin=origin)


def compute_claim_interest(
    view: LedgerView,
    collection: str,
    token_id: int,
    holder: str,
    currency: str,
    pool: str,
) -> PendingTransaction:
    """
    Pay out the holder's pending interest and zero it.

    Returns an empty transaction when nothing is pending.
    """
    symbol = dpo_symbol(collection, token_id)
    state = load_dpo(view, collection, token_id)
    owed = state.pending_interest.get(holder, Decimal("0"))
    if owed <= 0:
        return empty_pending_transaction(view)
    pending = dict(state.pending_interest)
    del pending[holder]
    new_state = _replace(state, pending_interest=pending, total_claimed=state.total_claimed + owed)
    changes, _ = _row_change(view, new_state)
    moves = [Move(owed, currency, pool, holder, f"claim_{symbol}")]
    origin = event_origin(
        holder, "InterestClaimed", symbol,
        collection=collection, token_id=int(token_id), holder=holder, amount=owed,
    )
    return build_transaction(view, moves, changes, origin=origin)
