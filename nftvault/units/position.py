"""
position.py - Vault position rows (Deposit + Loan) for NFT-collateralized lending

This module provides the vault position unit and its lifecycle processing
using the pure function architecture.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (explicit inputs):
   - PositionState: immutable snapshot of one (collection, token_id) row,
     covering custody (owner, is_active) and debt (principal, interest)

2. ADAPTER FUNCTIONS (load_position / to_state_dict):
   - Extract the row from LedgerView once as a typed dataclass
   - The ONLY place that touches LedgerView for position reads

3. TRANSACTION BUILDERS (compute_*):
   - Take (view, collection, token_id, ...) plus every oracle-derived input
     explicitly (collateral value, max LTV, threshold, rate)
   - Check every precondition before building anything
   - Return a PendingTransaction; nothing is mutated until Ledger.execute

Row symbol: POS:{collection}:{token_id}. The row carries no balances; the NFT
itself moves between the owner's wallet and the custodian wallet.

Interest is simple and lazy: pending interest is derived from elapsed time and
rolled into accrued_interest (with last_accrual reset) on every mutation.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_UP
from typing import Any, Dict, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    QUANTITY_EPSILON, UNIT_TYPE_VAULT_POSITION,
    DepositAlreadyActive, ExceedsMaxLTV, InsufficientBalance, InsufficientLiquidity,
    InsufficientPayment, NoActiveDeposit, NoActiveLoan, NotApproved, NotOwner, NotYourNFT,
    OutstandingDebt, BelowLiquidationThreshold, InvalidAmount,
    build_transaction, event_origin, nft_symbol, position_symbol,
    no_transfer_rule, require_positive, to_decimal, _freeze_state,
    OriginType,
)
from ..risk import (
    calculate_borrow_capacity, calculate_pending_interest, calculate_total_debt,
    is_liquidatable,
)
from .nft import nft_owner


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PositionState:
    """
    Immutable snapshot of a vault position row.

    owner is set only while is_active. interest_rate is the annual rate (in
    points) applied since last_accrual.
    """
    collection: str
    token_id: int
    owner: Optional[str] = None
    is_active: bool = False
    principal: Decimal = Decimal("0")
    accrued_interest: Decimal = Decimal("0")
    interest_rate: Decimal = Decimal("0")
    last_accrual: Optional[datetime] = None
    origination_date: Optional[datetime] = None
    total_borrowed: Decimal = Decimal("0")
    total_repaid: Decimal = Decimal("0")
    liquidated_by: Optional[str] = None

    @property
    def has_loan(self) -> bool:
        return self.principal + self.accrued_interest > QUANTITY_EPSILON


def create_position_unit(state: PositionState) -> Unit:
    """State-only unit for a position row; moves of it are always rejected."""
    return Unit(
        symbol=position_symbol(state.collection, state.token_id),
        name=f"Vault position {state.collection} #{state.token_id}",
        unit_type=UNIT_TYPE_VAULT_POSITION,
        transfer_rule=no_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(state)),
    )


def load_position(view: LedgerView, collection: str, token_id: int) -> PositionState:
    """
    Load a position row as a typed dataclass.

    A pair that was never deposited reads as an inactive, debt-free row.
    """
    symbol = position_symbol(collection, token_id)
    if not view.has_unit(symbol):
        return PositionState(collection=collection, token_id=int(token_id))
    raw = view.get_unit_state(symbol)
    return PositionState(
        collection=raw['collection'],
        token_id=int(raw['token_id']),
        owner=raw.get('owner'),
        is_active=bool(raw.get('is_active', False)),
        principal=to_decimal(raw.get('principal', 0)),
        accrued_interest=to_decimal(raw.get('accrued_interest', 0)),
        interest_rate=to_decimal(raw.get('interest_rate', 0)),
        last_accrual=raw.get('last_accrual'),
        origination_date=raw.get('origination_date'),
        total_borrowed=to_decimal(raw.get('total_borrowed', 0)),
        total_repaid=to_decimal(raw.get('total_repaid', 0)),
        liquidated_by=raw.get('liquidated_by'),
    )


def to_state_dict(state: PositionState) -> Dict[str, Any]:
    """Inverse of load_position(), used for UnitStateChange.new_state."""
    return {
        'collection': state.collection,
        'token_id': state.token_id,
        'owner': state.owner,
        'is_active': state.is_active,
        'principal': state.principal,
        'accrued_interest': state.accrued_interest,
        'interest_rate': state.interest_rate,
        'last_accrual': state.last_accrual,
        'origination_date': state.origination_date,
        'total_borrowed': state.total_borrowed,
        'total_repaid': state.total_repaid,
        'liquidated_by': state.liquidated_by,
    }


# ============================================================================
# DERIVED VALUES
# ============================================================================

def pending_interest(state: PositionState, now: datetime, days_per_year: int = 365) -> Decimal:
    return calculate_pending_interest(
        state.principal, state.interest_rate, state.last_accrual, now, days_per_year
    )


def total_debt(state: PositionState, now: datetime, days_per_year: int = 365) -> Decimal:
    """principal + accrued interest + interest pending since last_accrual."""
    return calculate_total_debt(
        state.principal, state.accrued_interest, pending_interest(state, now, days_per_year)
    )


def _currency_ceiling(view: LedgerView, currency: str, amount: Decimal) -> Decimal:
    """Round a debt up to the currency's precision so no dust is left owing."""
    places = view.get_unit(currency).decimal_places
    if places is None:
        return amount
    return amount.quantize(Decimal(10) ** -places, rounding=ROUND_UP)


def _change(view: LedgerView, old: PositionState, new: PositionState) -> Dict[str, Any]:
    symbol = position_symbol(old.collection, old.token_id)
    return {
        'units_to_create': () if view.has_unit(symbol) else (create_position_unit(new),),
        'state_changes': (
            [UnitStateChange(symbol, view.get_unit_state(symbol), to_state_dict(new))]
            if view.has_unit(symbol) else []
        ),
    }


def _require_owned_deposit(state: PositionState, caller: str) -> None:
    symbol = position_symbol(state.collection, state.token_id)
    if not state.is_active:
        raise NoActiveDeposit(f"No active deposit for {symbol}")
    if state.owner != caller:
        raise NotYourNFT(f"{caller} is not the depositor of {symbol}")


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_deposit(
    view: LedgerView,
    collection: str,
    token_id: int,
    owner: str,
    custodian: str,
) -> PendingTransaction:
    """
    Move an NFT into custody and activate its position row.

    The custodian must be the NFT's approved operator; the approval is
    consumed by the transfer.

    Raises:
        DepositAlreadyActive: If the pair already has an active deposit
        NotOwner: If `owner` does not hold the NFT
        NotApproved: If the custodian is not the approved operator
    """
    state = load_position(view, collection, token_id)
    nft = nft_symbol(collection, token_id)
    if state.is_active:
        raise DepositAlreadyActive(f"{nft} is already deposited")
    if nft_owner(view, collection, token_id) != owner:
        raise NotOwner(f"{owner} does not own {nft}")
    nft_state = view.get_unit_state(nft)
    if nft_state.get('approved') != custodian:
        raise NotApproved(f"{custodian} is not approved to transfer {nft}")

    new_state = PositionState(
        collection=collection,
        token_id=int(token_id),
        owner=owner,
        is_active=True,
        total_borrowed=state.total_borrowed,
        total_repaid=state.total_repaid,
    )
    change = _change(view, state, new_state)
    moves = [Move(Decimal("1"), nft, owner, custodian, f"deposit_{nft}")]
    state_changes = change['state_changes'] + [
        UnitStateChange(nft, nft_state, {**nft_state, 'approved': None})
    ]
    origin = event_origin(
        owner, "NFTDeposited", position_symbol(collection, token_id),
        collection=collection, token_id=int(token_id), owner=owner,
    )
    return build_transaction(
        view, moves, state_changes, origin=origin, units_to_create=change['units_to_create']
    )


def compute_withdraw(
    view: LedgerView,
    collection: str,
    token_id: int,
    caller: str,
    custodian: str,
    days_per_year: int = 365,
) -> PendingTransaction:
    """
    Return a custodied NFT to its depositor and deactivate the row.

    Raises:
        NoActiveDeposit: If the pair is not deposited
        NotYourNFT: If caller is not the depositor
        OutstandingDebt: If any principal or interest is still owed
    """
    state = load_position(view, collection, token_id)
    _require_owned_deposit(state, caller)
    debt = total_debt(state, view.current_time, days_per_year)
    if debt > QUANTITY_EPSILON:
        raise OutstandingDebt(
            f"{position_symbol(collection, token_id)} still owes {debt}"
        )

    nft = nft_symbol(collection, token_id)
    new_state = PositionState(
        collection=state.collection,
        token_id=state.token_id,
        total_borrowed=state.total_borrowed,
        total_repaid=state.total_repaid,
    )
    change = _change(view, state, new_state)
    moves = [Move(Decimal("1"), nft, custodian, caller, f"withdraw_{nft}")]
    origin = event_origin(
        caller, "NFTWithdrawn", position_symbol(collection, token_id),
        collection=collection, token_id=int(token_id), owner=caller,
    )
    return build_transaction(view, moves, change['state_changes'], origin=origin)


def compute_borrow(
    view: LedgerView,
    collection: str,
    token_id: int,
    caller: str,
    amount: Decimal,
    collateral_value: Decimal,
    max_ltv: Decimal,
    interest_rate: Decimal,
    currency: str,
    custodian: str,
    days_per_year: int = 365,
) -> PendingTransaction:
    """
    Draw `amount` of currency against a deposited NFT.

    The new total debt (existing principal, accrued and pending interest plus
    amount) may not exceed collateral_value * max_ltv / 100. Pending interest
    is rolled into accrued_interest and the row's rate is reset to
    interest_rate from now on.

    Raises:
        InvalidAmount: If amount is not positive at currency precision
        NoActiveDeposit / NotYourNFT: If caller has no active deposit here
        ExceedsMaxLTV: If the borrow would exceed capacity
        InsufficientLiquidity: If the custodian cannot disburse amount
    """
    amount = view.get_unit(currency).round(require_positive(amount, "amount"))
    if amount <= 0:
        raise InvalidAmount("amount rounds to zero at currency precision")

    state = load_position(view, collection, token_id)
    _require_owned_deposit(state, caller)

    now = view.current_time
    accrued = state.accrued_interest + pending_interest(state, now, days_per_year)
    debt = state.principal + accrued
    capacity = calculate_borrow_capacity(collateral_value, max_ltv)
    if debt + amount > capacity:
        raise ExceedsMaxLTV(
            f"borrowing {amount} would bring debt to {debt + amount}, "
            f"capacity is {capacity} ({max_ltv}% of {collateral_value})"
        )
    liquidity = view.get_balance(custodian, currency)
    if liquidity < amount:
        raise InsufficientLiquidity(f"vault holds {liquidity} {currency}, cannot lend {amount}")

    new_state = PositionState(
        collection=state.collection,
        token_id=state.token_id,
        owner=state.owner,
        is_active=True,
        principal=state.principal + amount,
        accrued_interest=accrued,
        interest_rate=to_decimal(interest_rate),
        last_accrual=now,
        origination_date=state.origination_date if state.has_loan else now,
        total_borrowed=state.total_borrowed + amount,
        total_repaid=state.total_repaid,
    )
    change = _change(view, state, new_state)
    nft = nft_symbol(collection, token_id)
    moves = [Move(amount, currency, custodian, caller, f"borrow_{nft}")]
    origin = event_origin(
        caller, "Borrowed", position_symbol(collection, token_id),
        collection=collection, token_id=int(token_id), borrower=caller, amount=amount,
    )
    return build_transaction(view, moves, change['state_changes'], origin=origin)


def compute_repay(
    view: LedgerView,
    collection: str,
    token_id: int,
    payer: str,
    payment: Decimal,
    currency: str,
    custodian: str,
    days_per_year: int = 365,
) -> PendingTransaction:
    """
    Settle a loan in full.

    payment is the most the payer is willing to send; it must cover
    principal plus all interest to date. Only the debt itself is debited, so
    any surplus stays with the payer. The "amount" origin param carries the
    debited figure.

    Raises:
        InvalidAmount: If payment is not positive
        NoActiveLoan: If nothing is owed
        InsufficientPayment: If payment is below the debt
        InsufficientBalance: If the payer cannot fund the debt
    """
    payment = require_positive(payment, "payment")
    state = load_position(view, collection, token_id)
    symbol = position_symbol(collection, token_id)
    if not state.has_loan:
        raise NoActiveLoan(f"No active loan for {symbol}")

    debt = _currency_ceiling(view, currency, total_debt(state, view.current_time, days_per_year))
    if payment < debt:
        raise InsufficientPayment(f"payment {payment} is below debt {debt} for {symbol}")
    held = view.get_balance(payer, currency)
    if held < debt:
        raise InsufficientBalance(f"{payer} holds {held} {currency}, needs {debt}")

    new_state = PositionState(
        collection=state.collection,
        token_id=state.token_id,
        owner=state.owner,
        is_active=state.is_active,
        interest_rate=state.interest_rate,
        total_borrowed=state.total_borrowed,
        total_repaid=state.total_repaid + debt,
    )
    change = _change(view, state, new_state)
    moves = [Move(debt, currency, payer, custodian, f"repay_{symbol}")]
    origin = event_origin(
        payer, "LoanRepaid", symbol,
        collection=collection, token_id=int(token_id), payer=payer, amount=debt,
        surplus_refunded=payment - debt,
    )
    return build_transaction(view, moves, change['state_changes'], origin=origin)


def compute_liquidate(
    view: LedgerView,
    collection: str,
    token_id: int,
    liquidator: str,
    custodian: str,
    collateral_value: Decimal,
    liquidation_threshold: Decimal,
    days_per_year: int = 365,
) -> PendingTransaction:
    """
    Seize the collateral of a loan at or above the liquidation threshold.

    The NFT moves from custody to the liquidator, the debt is written off
    and the row is deactivated. DPO units for the pair are left as they are.

    Raises:
        NoActiveLoan: If nothing is owed
        BelowLiquidationThreshold: If current LTV is below the threshold
    """
    state = load_position(view, collection, token_id)
    symbol = position_symbol(collection, token_id)
    if not state.is_active or not state.has_loan:
        raise NoActiveLoan(f"No active loan for {symbol}")

    debt = total_debt(state, view.current_time, days_per_year)
    if not is_liquidatable(debt, collateral_value, liquidation_threshold):
        raise BelowLiquidationThreshold(
            f"{symbol} debt {debt} against value {collateral_value} is below "
            f"the {liquidation_threshold}% threshold"
        )

    new_state = PositionState(
        collection=state.collection,
        token_id=state.token_id,
        interest_rate=state.interest_rate,
        total_borrowed=state.total_borrowed,
        total_repaid=state.total_repaid,
        liquidated_by=liquidator,
    )
    change = _change(view, state, new_state)
    nft = nft_symbol(collection, token_id)
    moves = [Move(Decimal("1"), nft, custodian, liquidator, f"liquidate_{nft}")]
    origin = event_origin(
        liquidator, "Liquidated", symbol, OriginType.ADMIN,
        collection=collection, token_id=int(token_id), borrower=state.owner,
        liquidator=liquidator, debt=debt,
    )
    return build_transaction(view, moves, change['state_changes'], origin=origin)
