#!/usr/bin/env python3
"""
demo.py - Walkthrough: An NFT-Backed Loan From Deposit to Interest Claim

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-2: Setup        - One ledger shared by the vault and the DPO engine
  3-4: Borrowing    - Deposit custody, LTV capacity, DPO minting
  5-6: Secondary    - Selling DPO units, pro-rata interest
  7-8: Unwinding    - Repayment and withdrawal, or liquidation

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from nftvault import (
    Ledger, NFTVault, DPOToken, StaticValuationOracle, VaultConfig,
    ExceedsMaxLTV, configure_logging,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Parameters for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    collection: str = "0xgame"
    floor_price: Decimal = Decimal("10")
    utility_score: int = 85
    risk_tier: int = 2
    vault_liquidity: Decimal = Decimal("1000")
    borrow_amount: Decimal = Decimal("5")
    units_sold: Decimal = Decimal("1667")
    sell_price: Decimal = Decimal("0.001")
    interest_paid: Decimal = Decimal("0.1")
    crash_price: Decimal = Decimal("6")


CONFIG = DemoConfig()
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_position(vault: NFTVault, user: str, token_id: int):
    p = vault.get_user_position(user, CONFIG.collection, token_id)
    print(f"Collateral value:   {p.collateral_value}")
    print(f"Max LTV:            {p.max_ltv}%")
    print(f"Total debt:         {p.total_debt}")
    print(f"Current LTV:        {p.current_ltv}%")
    print(f"Remaining capacity: {p.max_borrow}")


# ============================================================================
# STEPS
# ============================================================================

def step_01_wiring():
    step_header(1, "One Ledger, Two Services",
        "The vault and the DPO engine share a single transactional store.")

    ledger = Ledger("demo", CONFIG.start_time, test_mode=True)
    oracle = StaticValuationOracle({CONFIG.collection: CONFIG.floor_price})
    oracle.update_utility_score(CONFIG.collection, 0, CONFIG.utility_score)
    config = VaultConfig()
    vault = NFTVault(ledger, oracle, owner="admin", config=config)
    dpo = DPOToken(ledger, owner="admin", config=config)
    dpo.authorize_minter("admin", vault.wallet)
    vault.set_dpo_token("admin", dpo)

    print(f">>> {vault!r}")
    print(f">>> {dpo!r}")
    print(f"Registered wallets: {sorted(ledger.registered_wallets)}")
    return ledger, oracle, vault, dpo


def step_02_collection(ledger, vault):
    step_header(2, "Allow-listing a Collection",
        "Risk tiers set base LTV, liquidation threshold and interest rate.")

    vault.add_supported_collection("admin", CONFIG.collection, risk_tier=CONFIG.risk_tier)
    params = vault.get_collection_parameters(CONFIG.collection)
    print(f"Tier {params.risk_tier}: base LTV {params.base_ltv}%, "
          f"threshold {params.liquidation_threshold}%, rate {params.base_interest_rate}%")

    ledger.set_balance("admin", vault.currency, CONFIG.vault_liquidity)
    vault.fund_liquidity("admin", CONFIG.vault_liquidity)
    print(f"Vault liquidity: {vault.available_liquidity()} {vault.currency}")


def step_03_deposit(vault):
    step_header(3, "Depositing an NFT",
        "Custody moves to the vault only after the owner approves it.")

    vault.mint_nft("admin", CONFIG.collection, 1, "alice")
    vault.approve("alice", CONFIG.collection, 1, vault.wallet)
    vault.deposit_nft("alice", CONFIG.collection, 1)
    print(f"Owner of token 1: {vault.owner_of(CONFIG.collection, 1)}")

    section_header("Borrowing Capacity")
    show_position(vault, "alice", 1)


def step_04_borrow(vault, dpo):
    step_header(4, "Borrowing and DPO Minting",
        "Every draw mints DPO units to the borrower in the same transaction.")

    section_header("Over the limit")
    try:
        vault.borrow_against_nft("alice", CONFIG.collection, 1, Decimal("7.5"))
    except ExceedsMaxLTV as e:
        print(f"Rejected: {e}")

    section_header("Within the limit")
    minted = vault.borrow_against_nft("alice", CONFIG.collection, 1, CONFIG.borrow_amount)
    print(f"Borrowed {CONFIG.borrow_amount}, minted {minted} DPO units")
    show_position(vault, "alice", 1)


def step_05_trade(ledger, dpo):
    step_header(5, "Selling Debt Exposure",
        "Sell orders escrow units; buyers fill at the resting price.")

    order_id = dpo.place_sell_order(
        "alice", CONFIG.collection, 1, CONFIG.units_sold, CONFIG.sell_price
    )
    cost = CONFIG.units_sold * CONFIG.sell_price
    ledger.set_balance("lender", dpo.currency, cost)
    result = dpo.place_buy_order(
        "lender", CONFIG.collection, 1, CONFIG.units_sold, CONFIG.sell_price, cost
    )
    print(f"Order {order_id}: filled {result.filled}, spent {result.spent}, refunded {result.refunded}")
    for holder, units in sorted(dpo.holders(CONFIG.collection, 1).items()):
        print(f"  {holder:10s} {units}")


def step_06_interest(ledger, dpo):
    step_header(6, "Pro-Rata Interest",
        "Interest is credited to holders in proportion to their units.")

    ledger.set_balance("payer", dpo.currency, CONFIG.interest_paid)
    dpo.distribute_interest("payer", CONFIG.collection, 1, CONFIG.interest_paid)
    for holder in sorted(dpo.holders(CONFIG.collection, 1)):
        pending = dpo.calculate_pending_interest(holder, CONFIG.collection, 1)
        print(f"  {holder:10s} pending {pending}")
    paid = dpo.claim_interest("lender", CONFIG.collection, 1)
    print(f"lender claimed {paid}")


def step_07_repay(ledger, vault):
    step_header(7, "Repayment After Thirty Days",
        "Debt is principal plus simple interest; surplus is never taken.")

    ledger.advance_time(ledger.current_time + timedelta(days=30))
    debt = vault.get_loan(CONFIG.collection, 1).total_debt
    print(f"Debt after 30 days: {debt}")
    ledger.set_balance("alice", vault.currency, ledger.get_balance("alice", vault.currency) + 1)
    paid = vault.repay_loan("alice", CONFIG.collection, 1, CONFIG.borrow_amount + 1)
    vault.withdraw_nft("alice", CONFIG.collection, 1)
    print(f"Paid {paid}; token 1 back with {vault.owner_of(CONFIG.collection, 1)}")


def step_08_liquidation(ledger, oracle, vault):
    step_header(8, "Liquidation",
        "A falling floor price pushes a loan over its threshold.")

    vault.mint_nft("admin", CONFIG.collection, 2, "bob")
    vault.approve("bob", CONFIG.collection, 2, vault.wallet)
    vault.deposit_nft("bob", CONFIG.collection, 2)
    vault.borrow_against_nft("bob", CONFIG.collection, 2, CONFIG.borrow_amount)
    oracle.update_floor_price(CONFIG.collection, CONFIG.crash_price, ledger.current_time)

    for loan in vault.get_loans_at_risk():
        print(f"At risk: token {loan.token_id}, LTV {loan.current_ltv:.2f}% "
              f">= {loan.liquidation_threshold}%")
    vault.grant_liquidator("admin", "keeper")
    vault.liquidate("keeper", CONFIG.collection, 2)
    print(f"Token 2 now held by {vault.owner_of(CONFIG.collection, 2)}")

    section_header("DPO Units Survive")
    for token_id in (1, 2):
        symbol = f"DPO:{CONFIG.collection}:{token_id}"
        print(f"{symbol}: supply {vault.dpo_token.nft_token_supply(CONFIG.collection, token_id)}, "
              f"held outside system {ledger.outstanding_supply(symbol)}")


def main():
    configure_logging("WARNING")
    ledger, oracle, vault, dpo = step_01_wiring()
    wait_for_enter()
    step_02_collection(ledger, vault)
    wait_for_enter()
    step_03_deposit(vault)
    wait_for_enter()
    step_04_borrow(vault, dpo)
    wait_for_enter()
    step_05_trade(ledger, dpo)
    wait_for_enter()
    step_06_interest(ledger, dpo)
    wait_for_enter()
    step_07_repay(ledger, vault)
    wait_for_enter()
    step_08_liquidation(ledger, oracle, vault)

    print("\n" + "=" * 70)
    print("       WALKTHROUGH COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()
