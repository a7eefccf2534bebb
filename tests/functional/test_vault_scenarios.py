"""
test_vault_scenarios.py - End-to-end acceptance scenarios

Each scenario drives NFTVault and DPOToken over one shared ledger:
A. borrowing capacity with a utility bonus
B. DPO minting on borrow
C. secondary-market trade of DPO units
D. interest distribution and claim
E. unpriced collateral
"""

import pytest
from decimal import Decimal

from nftvault import ExceedsMaxLTV, VaultConfig

from tests.conftest import GAME, make_vault


class TestScenarioA:
    """Floor 10, tier base LTV 65%, utility bonus to 70% -> max borrow 7.0."""

    def test_max_borrow_for_undrawn_position(self, deposited):
        position = deposited.vault.get_user_position("alice", GAME, 1)
        assert position.max_ltv == Decimal("70")
        assert position.max_borrow == Decimal("7")
        assert position.total_debt == Decimal("0")
        assert not position.has_loan

    def test_borrow_within_limit(self, deposited):
        deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        assert deposited.balance("alice") == Decimal("5")
        position = deposited.vault.get_user_position("alice", GAME, 1)
        assert position.total_debt == Decimal("5")
        assert position.current_ltv == Decimal("50")
        assert position.max_borrow == Decimal("2")
        assert position.has_loan

    def test_borrow_over_limit(self, deposited):
        with pytest.raises(ExceedsMaxLTV):
            deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("7.1"))
        assert deposited.balance("alice") == Decimal("0")
        assert not deposited.vault.get_user_position("alice", GAME, 1).has_loan


class TestScenarioB:
    """Borrow 5.0 at 1000 DPO per currency unit -> 5000 DPO units."""

    def test_borrow_mints_dpo(self, deposited):
        minted = deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        assert minted == Decimal("5000")
        assert deposited.dpo.nft_token_supply(GAME, 1) == Decimal("5000")
        assert deposited.dpo.token_holdings(GAME, 1, "alice") == Decimal("5000")

    def test_borrow_event_carries_mint(self, deposited):
        deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        (event,) = deposited.ledger.events("Borrowed")
        params = event.origin.event_params
        assert params["amount"] == Decimal("5")
        assert params["dpo_minted"] == Decimal("5000")
        assert params["borrower"] == "alice"


class TestScenarioC:
    """Borrower sells 1667 units at 0.001; lender buys them for 1.667."""

    def test_trade(self, borrowed):
        order_id = borrowed.dpo.place_sell_order("alice", GAME, 1, Decimal("1667"), Decimal("0.001"))
        borrowed.fund("lender", "1.667")

        result = borrowed.dpo.place_buy_order(
            "lender", GAME, 1, Decimal("1667"), Decimal("0.001"), Decimal("1.667")
        )

        assert result.filled == Decimal("1667")
        assert result.spent == Decimal("1.667")
        assert result.refunded == Decimal("0")
        assert borrowed.dpo.token_holdings(GAME, 1, "lender") == Decimal("1667")
        assert borrowed.dpo.token_holdings(GAME, 1, "alice") == Decimal("3333")
        assert borrowed.balance("alice") == Decimal("6.667")
        assert borrowed.balance("lender") == Decimal("0")
        assert borrowed.balance(borrowed.dpo.escrow_wallet) == Decimal("0")
        assert borrowed.dpo.get_open_orders(GAME, 1) == []
        assert order_id == "0xgame:1:1"

    def test_trade_with_fee(self):
        setup = make_vault(config=VaultConfig(protocol_fee_bps=100))
        setup.mint_and_deposit("alice", 1)
        setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        setup.dpo.place_sell_order("alice", GAME, 1, Decimal("1667"), Decimal("0.001"))
        setup.fund("lender", "1.667")

        setup.dpo.place_buy_order("lender", GAME, 1, Decimal("1667"), Decimal("0.001"), Decimal("1.667"))

        assert setup.balance("treasury") == Decimal("0.01667")
        assert setup.balance("alice") == Decimal("5") + Decimal("1.65033")


class TestScenarioD:
    """0.1 of interest with the borrower holding 100% of supply."""

    def test_distribute_and_claim(self, borrowed):
        borrowed.fund("payer", "0.1")
        borrowed.dpo.distribute_interest("payer", GAME, 1, Decimal("0.1"))
        assert borrowed.dpo.calculate_pending_interest("alice", GAME, 1) == Decimal("0.1")
        assert borrowed.dpo.interest_pool_balance() == Decimal("0.1")

        paid = borrowed.dpo.claim_interest("alice", GAME, 1)

        assert paid == Decimal("0.1")
        assert borrowed.dpo.calculate_pending_interest("alice", GAME, 1) == Decimal("0")
        assert borrowed.balance("alice") == Decimal("5.1")
        assert borrowed.dpo.interest_pool_balance() == Decimal("0")

    def test_claim_with_nothing_pending(self, borrowed):
        assert borrowed.dpo.claim_interest("alice", GAME, 1) == Decimal("0")
        assert borrowed.ledger.events("InterestClaimed") == []


class TestScenarioE:
    """An unpriced collection reads as zero capacity, not an error."""

    def test_zero_floor_price(self):
        setup = make_vault(floor_price=Decimal("0"))
        setup.mint_and_deposit("alice", 1)
        position = setup.vault.get_user_position("alice", GAME, 1)
        assert position.max_borrow == Decimal("0")
        assert position.current_ltv == Decimal("0")
        assert position.collateral_value == Decimal("0")

    def test_cannot_borrow_against_zero_floor(self):
        setup = make_vault(floor_price=Decimal("0"))
        setup.mint_and_deposit("alice", 1)
        with pytest.raises(ExceedsMaxLTV):
            setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("0.01"))
