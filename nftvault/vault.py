"""
vault.py - NFT collateral vault

NFTVault custodies deposited NFTs, prices borrowing capacity from the oracle
and the collection's risk tier, tracks each (collection, token_id) loan and
mints DPO units for every draw through the wired DPOToken.

All state lives in the shared Ledger:
    COLL:{collection}            collection configuration
    NFT:{collection}:{token_id}  the NFT (custody = vault wallet balance)
    POS:{collection}:{token_id}  deposit + loan row
    DPO:{collection}:{token_id}  debt position units (owned by DPOToken)

Reads-then-writes on a position run under
ledger.lock(("position", collection, token_id)); a borrow also takes the
pair's ("dpo", ...) lock because it mints in the same transaction.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from .access import AccessControl, Role
from .config import VaultConfig, validate_config
from .core import (
    Move, DPOTokenNotConfigured, InvalidAmount, InsufficientBalance,
    UnsupportedCollection, SYSTEM_WALLET, UNIT_TYPE_VAULT_POSITION,
    build_transaction, combine_transactions, event_origin, native_currency,
    require_positive,
)
from .ledger import Ledger
from .oracle import ValuationOracle
from .risk import (
    CollectionConfig, EffectiveParameters,
    calculate_current_ltv, calculate_max_borrow, calculate_max_ltv,
    calculate_utility_bonus, is_liquidatable, resolve_parameters,
)
from .service import LedgerService
from .units import collection as collection_rows
from .units import nft, position

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class UserPosition:
    """What the dashboard shows for one of a user's deposits."""
    max_borrow: Decimal
    total_debt: Decimal
    current_ltv: Decimal
    has_loan: bool
    liquidation_threshold: Decimal = ZERO
    max_ltv: Decimal = ZERO
    collateral_value: Decimal = ZERO


EMPTY_POSITION = UserPosition(ZERO, ZERO, ZERO, False)


@dataclass(frozen=True, slots=True)
class Deposit:
    collection: str
    token_id: int
    owner: Optional[str]
    is_active: bool


@dataclass(frozen=True, slots=True)
class LoanInfo:
    collection: str
    token_id: int
    borrower: Optional[str]
    principal: Decimal
    accrued_interest: Decimal
    total_debt: Decimal
    interest_rate: Decimal
    last_accrual: Optional[datetime]


@dataclass(frozen=True, slots=True)
class LoanAtRisk:
    collection: str
    token_id: int
    borrower: Optional[str]
    total_debt: Decimal
    collateral_value: Decimal
    current_ltv: Decimal
    liquidation_threshold: Decimal


def _lock_key(collection: str, token_id: int) -> tuple:
    return ("position", collection, int(token_id))


class NFTVault(LedgerService):
    """
    Vault ledger for NFT-collateralized loans.

    Args:
        ledger: Shared backing store
        oracle: Floor price and utility score source
        owner: Admin wallet; holds ADMIN on the role table
        config: Risk tiers, currency and wallet names
        access: Role table (default: a fresh one owned by `owner`)
        clock: Optional wall clock driving interest accrual

    Example:
        vault = NFTVault(ledger, oracle, owner="admin")
        vault.add_supported_collection("admin", "0xgame", risk_tier=2)
        vault.set_dpo_token("admin", dpo_token)
        vault.approve("alice", "0xgame", 1, vault.wallet)
        vault.deposit_nft("alice", "0xgame", 1)
        vault.borrow_against_nft("alice", "0xgame", 1, Decimal("5"))
    """

    def __init__(
        self,
        ledger: Ledger,
        oracle: ValuationOracle,
        owner: str,
        config: Optional[VaultConfig] = None,
        access: Optional[AccessControl] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(ledger, clock)
        self.oracle = oracle
        self.config = config or VaultConfig()
        validate_config(self.config)
        self.access = access or AccessControl(owner)
        self.owner = owner
        self.wallet = self.config.wallets.vault
        self.currency = self.config.currency_symbol
        self.dpo_token = None

        if not ledger.has_unit(self.currency):
            ledger.register_unit(native_currency(
                self.currency, self.config.currency_name, self.config.currency_decimals
            ))
        ledger.ensure_wallet(self.wallet)
        ledger.ensure_wallet(owner)

        for cfg in self.config.collections:
            if collection_rows.load_collection(ledger, cfg.collection) is None:
                self._commit(collection_rows.compute_set_collection(
                    ledger, cfg, self.config.risk_tiers, owner, "CollectionAdded"
                ))

    # ------------------------------------------------------------------
    # admin
    # ------------------------------------------------------------------

    def _require_admin(self, caller: str) -> None:
        self.access.require(Role.ADMIN, caller)

    def _write_collection(self, caller: str, cfg: CollectionConfig, event_type: str) -> CollectionConfig:
        with self.ledger.lock(("collection", cfg.collection)):
            self._commit(collection_rows.compute_set_collection(
                self.ledger, cfg, self.config.risk_tiers, caller, event_type
            ))
        return cfg

    def _existing_collection(self, collection: str) -> CollectionConfig:
        cfg = collection_rows.load_collection(self.ledger, collection)
        if cfg is None:
            raise UnsupportedCollection(f"Collection {collection} was never added")
        return cfg

    def add_supported_collection(
        self,
        caller: str,
        collection: str,
        max_ltv: Optional[Decimal] = None,
        liquidation_threshold: Optional[Decimal] = None,
        base_interest_rate: Optional[Decimal] = None,
        risk_tier: Optional[int] = None,
        game_category: int = 0,
    ) -> CollectionConfig:
        """
        Allow-list a collection, optionally overriding its tier's parameters.

        Raises:
            Unauthorized: If caller is not an admin
            ValueError: If the tier is unknown or the overrides are inconsistent
        """
        with self._operation("add_supported_collection", collection):
            self._require_admin(caller)
            cfg = CollectionConfig(
                collection=collection,
                supported=True,
                risk_tier=self.config.default_risk_tier if risk_tier is None else int(risk_tier),
                game_category=int(game_category),
                max_ltv_override=max_ltv,
                liquidation_threshold_override=liquidation_threshold,
                interest_rate_override=base_interest_rate,
            )
            self._write_collection(caller, cfg, "CollectionAdded")
            self.log.info("Collection %s added (tier %s)", collection, cfg.risk_tier)
            return cfg

    def remove_supported_collection(self, caller: str, collection: str) -> None:
        """Stop new deposits and borrows; existing positions can still unwind."""
        with self._operation("remove_supported_collection", collection):
            self._require_admin(caller)
            cfg = self._existing_collection(collection)
            self._write_collection(caller, replace(cfg, supported=False), "CollectionRemoved")
            self.log.info("Collection %s removed", collection)

    def set_collection_risk_tier(self, caller: str, collection: str, risk_tier: int) -> None:
        with self._operation("set_collection_risk_tier", collection):
            self._require_admin(caller)
            cfg = self._existing_collection(collection)
            self._write_collection(caller, replace(cfg, risk_tier=int(risk_tier)), "CollectionUpdated")
            self.log.info("Collection %s moved to tier %s", collection, risk_tier)

    def set_game_category(self, caller: str, collection: str, category: int) -> None:
        with self._operation("set_game_category", collection):
            self._require_admin(caller)
            cfg = self._existing_collection(collection)
            self._write_collection(caller, replace(cfg, game_category=int(category)), "CollectionUpdated")

    def set_dpo_token(self, caller: str, dpo_token) -> None:
        """Wire the DPO engine this vault mints through."""
        with self._operation("set_dpo_token", None):
            self._require_admin(caller)
            if dpo_token.ledger is not self.ledger or dpo_token.currency != self.currency:
                raise ValueError("DPO token must share this vault's ledger and currency")
            self.dpo_token = dpo_token
            self.log.info("DPO token set: %r", dpo_token)

    def grant_liquidator(self, caller: str, wallet: str) -> None:
        self.access.grant(caller, Role.LIQUIDATOR, wallet)

    def fund_liquidity(self, funder: str, amount: Decimal) -> None:
        """Move currency from funder into the vault's lending balance."""
        with self._operation("fund_liquidity", funder):
            amount = require_positive(amount, "amount")
            held = self.ledger.get_balance(funder, self.currency)
            if held < amount:
                raise InsufficientBalance(f"{funder} holds {held} {self.currency}, needs {amount}")
            moves = [Move(amount, self.currency, funder, self.wallet, "fund_liquidity")]
            origin = event_origin(funder, "LiquidityFunded", amount=amount)
            self._commit(build_transaction(self.ledger, moves, origin=origin))
            self.log.info("%s funded %s %s", funder, amount, self.currency)

    def available_liquidity(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.currency)

    # ------------------------------------------------------------------
    # NFT contract surface
    # ------------------------------------------------------------------

    def mint_nft(self, caller: str, collection: str, token_id: int, to: str) -> None:
        """Issue a game NFT (admin only)."""
        with self._operation("mint_nft", (collection, token_id)):
            self._require_admin(caller)
            self.ledger.ensure_wallet(to)
            with self.ledger.lock(("nft", collection, int(token_id))):
                self._commit(nft.compute_mint_nft(self.ledger, collection, token_id, to, caller))

    def approve(self, owner: str, collection: str, token_id: int, operator: Optional[str]) -> None:
        with self._operation("approve", (collection, token_id)):
            with self.ledger.lock(("nft", collection, int(token_id))):
                self._commit(nft.compute_approve(self.ledger, collection, token_id, owner, operator))

    def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        return nft.nft_owner(self.ledger, collection, token_id)

    # ------------------------------------------------------------------
    # pricing reads
    # ------------------------------------------------------------------

    def get_collection_parameters(self, collection: str) -> EffectiveParameters:
        """
        Raises:
            UnsupportedCollection: If the collection was never added
        """
        return resolve_parameters(self._existing_collection(collection), self.config.risk_tiers)

    def get_max_ltv(self, collection: str, token_id: int = 0) -> Decimal:
        """Tier (or override) LTV plus the oracle utility bonus, below the threshold."""
        cfg = self._existing_collection(collection)
        params = resolve_parameters(cfg, self.config.risk_tiers)
        score = self.oracle.get_utility_score(collection, cfg.game_category)
        bonus = calculate_utility_bonus(
            score, self.config.utility_bonus_tiers, self.config.max_utility_bonus
        )
        return calculate_max_ltv(params.base_ltv, params.liquidation_threshold, bonus)

    def collateral_value(self, collection: str) -> Decimal:
        """Oracle floor price; an unset price counts as zero."""
        price = self.oracle.get_floor_price(collection)
        return price if price > 0 else ZERO

    # ------------------------------------------------------------------
    # position reads
    # ------------------------------------------------------------------

    def deposits(self, collection: str, token_id: int) -> Deposit:
        state = position.load_position(self.ledger, collection, token_id)
        return Deposit(state.collection, state.token_id, state.owner, state.is_active)

    def get_user_deposits(self, user: str) -> List[Deposit]:
        result = []
        for symbol in self.ledger.list_units(UNIT_TYPE_VAULT_POSITION):
            raw = self.ledger.get_unit_state(symbol)
            if raw.get('is_active') and raw.get('owner') == user:
                result.append(Deposit(raw['collection'], int(raw['token_id']), user, True))
        return result

    def get_loan(self, collection: str, token_id: int) -> LoanInfo:
        self._tick()
        state = position.load_position(self.ledger, collection, token_id)
        now = self.ledger.current_time
        pending = position.pending_interest(state, now, self.config.days_per_year)
        return LoanInfo(
            collection=state.collection,
            token_id=state.token_id,
            borrower=state.owner,
            principal=state.principal,
            accrued_interest=state.accrued_interest + pending,
            total_debt=state.principal + state.accrued_interest + pending,
            interest_rate=state.interest_rate,
            last_accrual=state.last_accrual,
        )

    def get_user_position(self, user: str, collection: str, token_id: int) -> UserPosition:
        """
        Borrowing capacity and debt of user's deposit.

        Reads as all zeros unless user holds the active deposit. An unpriced
        collection gives max_borrow 0 and current_ltv 0.
        """
        self._tick()
        state = position.load_position(self.ledger, collection, token_id)
        if not state.is_active or state.owner != user:
            return EMPTY_POSITION
        cfg = self._existing_collection(collection)
        params = resolve_parameters(cfg, self.config.risk_tiers)
        value = self.collateral_value(collection)
        max_ltv = self.get_max_ltv(collection, token_id)
        debt = position.total_debt(state, self.ledger.current_time, self.config.days_per_year)
        return UserPosition(
            max_borrow=calculate_max_borrow(value, max_ltv, debt),
            total_debt=debt,
            current_ltv=calculate_current_ltv(debt, value),
            has_loan=state.has_loan,
            liquidation_threshold=params.liquidation_threshold,
            max_ltv=max_ltv,
            collateral_value=value,
        )

    def get_loans_at_risk(self) -> List[LoanAtRisk]:
        """Active loans at or above their liquidation threshold."""
        self._tick()
        now = self.ledger.current_time
        at_risk = []
        for symbol in self.ledger.list_units(UNIT_TYPE_VAULT_POSITION):
            raw = self.ledger.get_unit_state(symbol)
            state = position.load_position(self.ledger, raw['collection'], raw['token_id'])
            if not state.is_active or not state.has_loan:
                continue
            cfg = collection_rows.load_collection(self.ledger, state.collection)
            if cfg is None:
                continue
            params = resolve_parameters(cfg, self.config.risk_tiers)
            value = self.collateral_value(state.collection)
            debt = position.total_debt(state, now, self.config.days_per_year)
            if is_liquidatable(debt, value, params.liquidation_threshold):
                at_risk.append(LoanAtRisk(
                    collection=state.collection,
                    token_id=state.token_id,
                    borrower=state.owner,
                    total_debt=debt,
                    collateral_value=value,
                    current_ltv=calculate_current_ltv(debt, value),
                    liquidation_threshold=params.liquidation_threshold,
                ))
        return at_risk

    # ------------------------------------------------------------------
    # deposits
    # ------------------------------------------------------------------

    def _require_supported(self, collection: str) -> CollectionConfig:
        cfg = collection_rows.load_collection(self.ledger, collection)
        if cfg is None or not cfg.supported:
            raise UnsupportedCollection(f"Collection {collection} is not supported")
        return cfg

    def deposit_nft(self, caller: str, collection: str, token_id: int) -> None:
        """
        Take custody of an NFT the caller owns and has approved to the vault.

        Raises:
            UnsupportedCollection, DepositAlreadyActive, NotOwner, NotApproved
        """
        key = (collection, token_id)
        with self._operation("deposit_nft", key), self.ledger.lock(
            _lock_key(collection, token_id), ("nft", collection, int(token_id))
        ):
            self._require_supported(collection)
            self._commit(position.compute_deposit(
                self.ledger, collection, token_id, caller, self.wallet
            ))
            self.log.info("NFT %s deposited by %s", key, caller)

    def withdraw_nft(self, caller: str, collection: str, token_id: int) -> None:
        """
        Raises:
            NoActiveDeposit, NotYourNFT, OutstandingDebt
        """
        key = (collection, token_id)
        with self._operation("withdraw_nft", key), self.ledger.lock(
            _lock_key(collection, token_id), ("nft", collection, int(token_id))
        ):
            self._commit(position.compute_withdraw(
                self.ledger, collection, token_id, caller, self.wallet, self.config.days_per_year
            ))
            self.log.info("NFT %s withdrawn by %s", key, caller)

    # ------------------------------------------------------------------
    # loans
    # ------------------------------------------------------------------

    def borrow_against_nft(self, caller: str, collection: str, token_id: int, amount: Decimal) -> Decimal:
        """
        Draw currency against a deposit and mint DPO units to the borrower.

        Returns the number of DPO units minted (amount * exchange rate).

        Raises:
            DPOTokenNotConfigured, UnsupportedCollection, InvalidAmount,
            NoActiveDeposit, NotYourNFT, ExceedsMaxLTV, InsufficientLiquidity,
            Unauthorized (vault not the authorized minter)
        """
        key = (collection, token_id)
        with self._operation("borrow_against_nft", key), self.ledger.lock(
            _lock_key(collection, token_id), ("dpo", collection, int(token_id))
        ):
            if self.dpo_token is None:
                raise DPOTokenNotConfigured("set_dpo_token must be called before borrowing")
            amount = self.ledger.get_unit(self.currency).round(require_positive(amount, "amount"))
            if amount <= 0:
                raise InvalidAmount("amount rounds to zero at currency precision")
            cfg = self._require_supported(collection)
            params = resolve_parameters(cfg, self.config.risk_tiers)

            borrow = position.compute_borrow(
                self.ledger, collection, token_id, caller, amount,
                collateral_value=self.collateral_value(collection),
                max_ltv=self.get_max_ltv(collection, token_id),
                interest_rate=params.base_interest_rate,
                currency=self.currency,
                custodian=self.wallet,
                days_per_year=self.config.days_per_year,
            )
            dpo_amount = amount * self.config.dpo_exchange_rate
            mint = self.dpo_token.build_mint(self.wallet, collection, token_id, caller, dpo_amount)
            origin = event_origin(
                caller, "Borrowed", borrow.origin.unit_symbol,
                collection=collection, token_id=int(token_id), borrower=caller,
                amount=amount, dpo_minted=mint.origin.event_params['amount'],
            )
            self._commit(combine_transactions(self.ledger, [borrow, mint], origin))
            self.log.info("Borrowed %s %s against %s by %s", amount, self.currency, key, caller)
            return mint.origin.event_params['amount']

    def repay_loan(self, caller: str, collection: str, token_id: int, payment: Decimal) -> Decimal:
        """
        Repay principal and all interest. Returns the amount debited; any
        surplus over the debt is never taken.

        Raises:
            InvalidAmount, NoActiveLoan, InsufficientPayment
        """
        key = (collection, token_id)
        with self._operation("repay_loan", key), self.ledger.lock(_lock_key(collection, token_id)):
            pending = position.compute_repay(
                self.ledger, collection, token_id, caller, payment,
                self.currency, self.wallet, self.config.days_per_year,
            )
            self._commit(pending)
            paid = pending.origin.event_params['amount']
            self.log.info("Loan %s repaid by %s: %s %s", key, caller, paid, self.currency)
            return paid

    def liquidate(self, caller: str, collection: str, token_id: int) -> None:
        """
        Seize the NFT of a loan at or above its liquidation threshold.

        Raises:
            Unauthorized: If caller is neither admin nor liquidator
            NoActiveLoan, BelowLiquidationThreshold
        """
        key = (collection, token_id)
        with self._operation("liquidate", key), self.ledger.lock(
            _lock_key(collection, token_id), ("nft", collection, int(token_id))
        ):
            self.access.require_any(caller, Role.ADMIN, Role.LIQUIDATOR)
            if caller in (self.wallet, SYSTEM_WALLET):
                raise ValueError(f"{caller} cannot receive liquidated collateral")
            cfg = self._existing_collection(collection)
            params = resolve_parameters(cfg, self.config.risk_tiers)
            self.ledger.ensure_wallet(caller)
            self._commit(position.compute_liquidate(
                self.ledger, collection, token_id, caller, self.wallet,
                collateral_value=self.collateral_value(collection),
                liquidation_threshold=params.liquidation_threshold,
                days_per_year=self.config.days_per_year,
            ))
            self.log.info("Loan %s liquidated by %s", key, caller)

    def __repr__(self):
        return f"NFTVault(ledger={self.ledger.name!r}, wallet={self.wallet!r})"
