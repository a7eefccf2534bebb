"""
dpo_token.py - Debt Position Token engine

DPOToken tracks fractional ownership of every loan's debt, runs the per-pair
sell-order book and the pro-rata interest pool. State lives in the shared
Ledger (see units/dpo.py for the row layout); this class only checks
permissions, takes the pair's lock and commits what the builders return.

Every write for a pair runs under ledger.lock(("dpo", collection, token_id)).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .access import AccessControl, Role
from .config import VaultConfig, validate_config
from .core import (
    PendingTransaction, OrderNotFound, SYSTEM_WALLET, native_currency,
)
from .ledger import Ledger
from .service import LedgerService
from .units import dpo


@dataclass(frozen=True, slots=True)
class BuyResult:
    """Outcome of a buy order; unfilled units were cancelled and refunded."""
    filled: Decimal
    spent: Decimal
    refunded: Decimal
    fills: Tuple[Tuple[str, str, Decimal, Decimal, Decimal], ...]


def _lock_key(collection: str, token_id: int) -> tuple:
    return ("dpo", collection, int(token_id))


class DPOToken(LedgerService):
    """
    Debt Position Token engine.

    Args:
        ledger: Shared backing store
        owner: Wallet allowed to authorize the minter
        config: Currency, decimals, fee and wallet names
        access: Role table (default: a fresh one owned by `owner`)
        clock: Optional wall clock
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        config: Optional[VaultConfig] = None,
        access: Optional[AccessControl] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(ledger, clock)
        self.config = config or VaultConfig()
        validate_config(self.config)
        self.access = access or AccessControl(owner)
        self.currency = self.config.currency_symbol
        self.escrow_wallet = self.config.wallets.order_escrow
        self.pool_wallet = self.config.wallets.interest_pool
        self.fee_wallet = self.config.wallets.fee

        if not ledger.has_unit(self.currency):
            ledger.register_unit(native_currency(
                self.currency, self.config.currency_name, self.config.currency_decimals
            ))
        for wallet in (owner, self.escrow_wallet, self.pool_wallet, self.fee_wallet):
            ledger.ensure_wallet(wallet)

    # ------------------------------------------------------------------
    # minter authorization
    # ------------------------------------------------------------------

    def authorize_minter(self, caller: str, minter: str) -> None:
        """
        Make `minter` the only wallet allowed to mint.

        Raises:
            Unauthorized: If caller is not the owner
        """
        with self._operation("authorize_minter", minter):
            self.access.require_owner(caller)
            self.access.replace_members(caller, Role.MINTER, {minter})
            self.log.info("Minter authorized: %s", minter)

    def is_minter(self, wallet: str) -> bool:
        return self.access.has_role(Role.MINTER, wallet)

    # ------------------------------------------------------------------
    # minting
    # ------------------------------------------------------------------

    def build_mint(
        self,
        minter: str,
        collection: str,
        token_id: int,
        to: str,
        amount: Decimal,
    ) -> PendingTransaction:
        """
        Mint transaction for the caller to execute, possibly combined with
        its own changes. The caller must hold the pair's lock.

        Raises:
            Unauthorized: If minter is not the authorized minter
        """
        self.access.require(Role.MINTER, minter)
        self.ledger.ensure_wallet(to)
        return dpo.compute_mint(
            self.ledger, collection, token_id, to, amount, minter, self.config.dpo_decimals
        )

    def mint(self, caller: str, collection: str, token_id: int, to: str, amount: Decimal) -> Decimal:
        """Mint units directly. Returns the amount minted."""
        key = (collection, token_id)
        with self._operation("mint", key), self.ledger.lock(_lock_key(collection, token_id)):
            pending = self.build_mint(caller, collection, token_id, to, amount)
            self._commit(pending)
            minted = pending.origin.event_params['amount']
            self.log.info("Minted %s DPO %s to %s", minted, key, to)
            return minted

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def token_holdings(self, collection: str, token_id: int, holder: str) -> Decimal:
        """Holder's units, free plus escrowed in open sell orders."""
        return dpo.token_holdings(self.ledger, collection, token_id, holder, self.escrow_wallet)

    def free_balance(self, collection: str, token_id: int, holder: str) -> Decimal:
        return dpo.free_balance(self.ledger, collection, token_id, holder)

    def nft_token_supply(self, collection: str, token_id: int) -> Decimal:
        return dpo.load_dpo(self.ledger, collection, token_id).total_supply

    def holders(self, collection: str, token_id: int) -> dict:
        return dpo.holder_positions(self.ledger, collection, token_id, self.escrow_wallet)

    def calculate_pending_interest(self, holder: str, collection: str, token_id: int) -> Decimal:
        state = dpo.load_dpo(self.ledger, collection, token_id)
        return state.pending_interest.get(holder, Decimal("0"))

    def get_order(self, order_id: str) -> dpo.Order:
        """
        Raises:
            OrderNotFound: If no open order has this id
        """
        collection, token_id, _ = dpo.parse_order_id(order_id)
        order = dpo.load_dpo(self.ledger, collection, token_id).orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"No open order {order_id}")
        return order

    def get_open_orders(self, collection: str, token_id: int) -> List[dpo.Order]:
        """Open sell orders, best price first."""
        orders = dpo.load_dpo(self.ledger, collection, token_id).orders.values()
        return sorted(orders, key=lambda o: (o.price, o.sequence))

    def interest_pool_balance(self) -> Decimal:
        return self.ledger.get_balance(self.pool_wallet, self.currency)

    # ------------------------------------------------------------------
    # transfers and the order book
    # ------------------------------------------------------------------

    def transfer(
        self,
        caller: str,
        collection: str,
        token_id: int,
        recipient: str,
        amount: Decimal,
    ) -> None:
        key = (collection, token_id)
        with self._operation("transfer", key), self.ledger.lock(_lock_key(collection, token_id)):
            if recipient in (SYSTEM_WALLET, self.escrow_wallet):
                raise ValueError(f"{recipient} is a reserved wallet")
            self.ledger.ensure_wallet(recipient)
            self._commit(dpo.compute_transfer(
                self.ledger, collection, token_id, caller, recipient, amount
            ))
            self.log.info("Transferred %s DPO %s from %s to %s", amount, key, caller, recipient)

    def place_sell_order(
        self,
        caller: str,
        collection: str,
        token_id: int,
        amount: Decimal,
        price_per_unit: Decimal,
    ) -> str:
        """Rest a sell order, escrowing its units. Returns the order id."""
        key = (collection, token_id)
        with self._operation("place_sell_order", key), self.ledger.lock(_lock_key(collection, token_id)):
            pending = dpo.compute_place_sell_order(
                self.ledger, collection, token_id, caller, amount, price_per_unit,
                self.escrow_wallet,
            )
            self._commit(pending)
            order_id = pending.origin.event_params['order_id']
            self.log.info(
                "Sell order %s: %s DPO %s at %s by %s",
                order_id, amount, key, price_per_unit, caller,
            )
            return order_id

    def place_buy_order(
        self,
        caller: str,
        collection: str,
        token_id: int,
        amount: Decimal,
        price_per_unit: Decimal,
        payment: Decimal,
    ) -> BuyResult:
        """
        Buy against resting sells at or below price_per_unit.

        Fills execute at the resting price; anything unfilled is cancelled
        and its share of the payment refunded in the same transaction.
        """
        key = (collection, token_id)
        with self._operation("place_buy_order", key), self.ledger.lock(_lock_key(collection, token_id)):
            self.ledger.ensure_wallet(caller)
            pending = dpo.compute_place_buy_order(
                self.ledger, collection, token_id, caller, amount, price_per_unit, payment,
                self.currency, self.escrow_wallet, self.config.protocol_fee_bps, self.fee_wallet,
            )
            self._commit(pending)
            params = pending.origin.event_params
            result = BuyResult(
                filled=params['filled'],
                spent=params['spent'],
                refunded=params['refunded'],
                fills=params['fills'],
            )
            self.log.info(
                "Buy order on %s by %s: filled %s of %s, spent %s, refunded %s",
                key, caller, result.filled, amount, result.spent, result.refunded,
            )
            return result

    def cancel_order(self, caller: str, order_id: str) -> None:
        collection, token_id, _ = dpo.parse_order_id(order_id)
        with self._operation("cancel_order", order_id), self.ledger.lock(_lock_key(collection, token_id)):
            self._commit(dpo.compute_cancel_order(self.ledger, order_id, caller, self.escrow_wallet))
            self.log.info("Order %s cancelled by %s", order_id, caller)

    # ------------------------------------------------------------------
    # interest
    # ------------------------------------------------------------------

    def distribute_interest(self, caller: str, collection: str, token_id: int, amount: Decimal) -> None:
        """Pay interest into the pair's pool, credited pro-rata to current holders."""
        key = (collection, token_id)
        with self._operation("distribute_interest", key), self.ledger.lock(_lock_key(collection, token_id)):
            self._commit(dpo.compute_distribute_interest(
                self.ledger, collection, token_id, caller, amount,
                self.currency, self.pool_wallet, self.escrow_wallet,
            ))
            self.log.info("Distributed %s interest on %s from %s", amount, key, caller)

    def claim_interest(self, caller: str, collection: str, token_id: int) -> Decimal:
        """Pay out the caller's pending interest. Returns the amount paid (0 if none)."""
        key = (collection, token_id)
        with self._operation("claim_interest", key), self.ledger.lock(_lock_key(collection, token_id)):
            pending = dpo.compute_claim_interest(
                self.ledger, collection, token_id, caller, self.currency, self.pool_wallet,
            )
            if self._commit(pending) is None:
                return Decimal("0")
            paid = pending.origin.event_params['amount']
            self.log.info("%s claimed %s interest on %s", caller, paid, key)
            return paid

    def __repr__(self):
        return f"DPOToken(ledger={self.ledger.name!r}, currency={self.currency!r})"
