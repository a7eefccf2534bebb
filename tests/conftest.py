"""
conftest.py - Shared pytest fixtures for vault tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, funded)
- A wired vault + DPO token over one ledger, with a priced collection
- Helpers to deposit and borrow in one line
- Comparison utilities
"""

import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple

from nftvault import (
    Ledger, NFTVault, DPOToken, StaticValuationOracle, VaultConfig,
    native_currency,
)
from nftvault.units.position import load_position

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)
GAME = "0xgame"
ADMIN = "admin"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

@dataclass
class VaultSetup:
    """Everything a scenario needs, sharing one ledger."""
    ledger: Ledger
    oracle: StaticValuationOracle
    vault: NFTVault
    dpo: DPOToken

    @property
    def currency(self) -> str:
        return self.vault.currency

    def fund(self, wallet: str, amount) -> None:
        """Give wallet currency directly (test mode only)."""
        self.ledger.ensure_wallet(wallet)
        current = self.ledger.get_balance(wallet, self.currency)
        self.ledger.set_balance(wallet, self.currency, current + Decimal(str(amount)))

    def balance(self, wallet: str) -> Decimal:
        return self.ledger.get_balance(wallet, self.currency)

    def mint_and_deposit(self, owner: str, token_id: int, collection: str = GAME) -> None:
        self.vault.mint_nft(ADMIN, collection, token_id, owner)
        self.vault.approve(owner, collection, token_id, self.vault.wallet)
        self.vault.deposit_nft(owner, collection, token_id)

    def advance(self, **delta) -> datetime:
        new_time = self.ledger.current_time + timedelta(**delta)
        self.ledger.advance_time(new_time)
        return new_time


def make_vault(
    floor_price: Decimal = Decimal("10"),
    risk_tier: int = 2,
    utility_score: Optional[int] = 85,
    liquidity: Decimal = Decimal("1000"),
    config: Optional[VaultConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> VaultSetup:
    """
    Build a vault and DPO token over a fresh test-mode ledger.

    The defaults give Scenario A: tier 2 (65% base LTV) plus a 5 point
    utility bonus, so max LTV is 70% and a floor of 10 allows 7.0.
    """
    ledger = Ledger("test", T0, test_mode=True)
    oracle = StaticValuationOracle({GAME: floor_price})
    if utility_score is not None:
        oracle.update_utility_score(GAME, 0, utility_score)
    config = config or VaultConfig()
    vault = NFTVault(ledger, oracle, owner=ADMIN, config=config, clock=clock)
    dpo = DPOToken(ledger, owner=ADMIN, config=config, clock=clock)
    dpo.authorize_minter(ADMIN, vault.wallet)
    vault.set_dpo_token(ADMIN, dpo)
    vault.add_supported_collection(ADMIN, GAME, risk_tier=risk_tier)
    setup = VaultSetup(ledger, oracle, vault, dpo)
    if liquidity > 0:
        setup.fund(ADMIN, liquidity)
        vault.fund_liquidity(ADMIN, liquidity)
    return setup


def ledger_snapshot(ledger: Ledger) -> Tuple[dict, dict, int]:
    """(balances, unit states, log length) for before/after comparisons."""
    balances = {
        wallet: {u: q for u, q in ledger.balances[wallet].items() if q != 0}
        for wallet in sorted(ledger.registered_wallets)
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.list_units()}
    return balances, states, len(ledger.transaction_log)


def position_of(setup: VaultSetup, token_id: int, collection: str = GAME):
    return load_position(setup.ledger, collection, token_id)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, test_mode=True)


@pytest.fixture
def basic_ledger():
    """Ledger with DPSV and two wallets."""
    ledger = Ledger("test", T0, test_mode=True)
    ledger.register_unit(native_currency("DPSV", "Devpros"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 DPSV."""
    basic_ledger.set_balance("alice", "DPSV", Decimal("10000"))
    return basic_ledger


# =============================================================================
# VAULT FIXTURES
# =============================================================================

@pytest.fixture
def setup():
    """Scenario A vault: floor 10, max LTV 70%, 1000 DPSV of liquidity."""
    return make_vault()


@pytest.fixture
def deposited(setup):
    """Scenario A vault with alice's token 1 in custody."""
    setup.mint_and_deposit("alice", 1)
    return setup


@pytest.fixture
def borrowed(deposited):
    """alice has borrowed 5.0 against token 1 and holds 5000 DPO units."""
    deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
    return deposited


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def nft_view():
    """FakeView where alice holds NFT:0xgame:1 approved to the vault."""
    return FakeView(
        balances={
            "alice": {"NFT:0xgame:1": Decimal("1"), "DPSV": Decimal("100")},
            "vault": {"DPSV": Decimal("1000")},
        },
        states={
            "NFT:0xgame:1": {"collection": GAME, "token_id": 1, "approved": "vault"},
        },
        time=T0,
    )
