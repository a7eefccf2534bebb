"""
test_loan_lifecycle.py - Deposit, borrow, accrue, repay, withdraw

Drives a loan through its whole life on one ledger and checks balances,
rows and events at each step.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from nftvault import (
    DepositAlreadyActive, NotApproved, NotOwner, NotYourNFT, NoActiveDeposit,
    NoActiveLoan, OutstandingDebt, InsufficientPayment, InsufficientLiquidity,
    InsufficientBalance, VaultConfig,
)

from tests.conftest import ADMIN, GAME, T0, make_vault, position_of


class TestDeposit:

    def test_deposit_takes_custody(self, setup):
        setup.vault.mint_nft(ADMIN, GAME, 1, "alice")
        setup.vault.approve("alice", GAME, 1, setup.vault.wallet)
        setup.vault.deposit_nft("alice", GAME, 1)

        assert setup.vault.owner_of(GAME, 1) == setup.vault.wallet
        deposit = setup.vault.deposits(GAME, 1)
        assert deposit.is_active
        assert deposit.owner == "alice"
        assert setup.ledger.get_unit_state("NFT:0xgame:1")["approved"] is None
        assert [d.token_id for d in setup.vault.get_user_deposits("alice")] == [1]

    def test_deposit_requires_approval(self, setup):
        setup.vault.mint_nft(ADMIN, GAME, 1, "alice")
        with pytest.raises(NotApproved):
            setup.vault.deposit_nft("alice", GAME, 1)
        assert setup.vault.owner_of(GAME, 1) == "alice"

    def test_deposit_someone_elses_nft(self, setup):
        setup.vault.mint_nft(ADMIN, GAME, 1, "alice")
        setup.vault.approve("alice", GAME, 1, setup.vault.wallet)
        with pytest.raises(NotOwner):
            setup.vault.deposit_nft("bob", GAME, 1)

    def test_double_deposit(self, deposited):
        with pytest.raises(DepositAlreadyActive):
            deposited.vault.deposit_nft("alice", GAME, 1)

    def test_user_position_for_non_owner_is_empty(self, deposited):
        position = deposited.vault.get_user_position("bob", GAME, 1)
        assert position.max_borrow == Decimal("0")
        assert not position.has_loan


class TestBorrow:

    def test_borrow_requires_deposit(self, setup):
        setup.vault.mint_nft(ADMIN, GAME, 1, "alice")
        with pytest.raises(NoActiveDeposit):
            setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("1"))

    def test_only_depositor_borrows(self, deposited):
        with pytest.raises(NotYourNFT):
            deposited.vault.borrow_against_nft("bob", GAME, 1, Decimal("1"))

    def test_multiple_draws_up_to_capacity(self, deposited):
        deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("3"))
        deposited.vault.borrow_against_nft("alice", GAME, 1, Decimal("4"))
        assert deposited.vault.get_loan(GAME, 1).principal == Decimal("7")
        assert deposited.dpo.nft_token_supply(GAME, 1) == Decimal("7000")
        assert deposited.vault.get_user_position("alice", GAME, 1).max_borrow == Decimal("0")

    def test_vault_liquidity_limits_borrowing(self):
        setup = make_vault(liquidity=Decimal("2"))
        setup.mint_and_deposit("alice", 1)
        with pytest.raises(InsufficientLiquidity):
            setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("3"))
        assert setup.dpo.nft_token_supply(GAME, 1) == Decimal("0")

    def test_interest_rate_comes_from_tier(self, borrowed):
        assert borrowed.vault.get_loan(GAME, 1).interest_rate == Decimal("7")


class TestAccrual:

    def test_simple_interest_over_a_year(self, borrowed):
        borrowed.advance(days=365)
        loan = borrowed.vault.get_loan(GAME, 1)
        assert loan.accrued_interest == Decimal("0.35")
        assert loan.total_debt == Decimal("5.35")

    def test_accrual_persists_on_next_borrow(self, borrowed):
        borrowed.advance(days=365)
        borrowed.vault.borrow_against_nft("alice", GAME, 1, Decimal("1"))
        state = position_of(borrowed, 1)
        assert state.accrued_interest == Decimal("0.35")
        assert state.principal == Decimal("6")
        assert state.last_accrual == T0 + timedelta(days=365)

    def test_accrued_interest_reduces_capacity(self, borrowed):
        borrowed.advance(days=365)
        position = borrowed.vault.get_user_position("alice", GAME, 1)
        assert position.max_borrow == Decimal("1.65")

    def test_clock_drives_ledger_time(self):
        now = [T0]
        setup = make_vault(clock=lambda: now[0])
        setup.mint_and_deposit("alice", 1)
        setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))

        now[0] = T0 + timedelta(days=365)
        position = setup.vault.get_user_position("alice", GAME, 1)

        assert setup.ledger.current_time == now[0]
        assert position.total_debt == Decimal("5.35")

    def test_loan_read_follows_clock(self):
        now = [T0]
        setup = make_vault(clock=lambda: now[0])
        setup.mint_and_deposit("alice", 1)
        setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))

        now[0] = T0 + timedelta(days=365)
        loan = setup.vault.get_loan(GAME, 1)

        assert loan.accrued_interest == Decimal("0.35")
        assert loan.total_debt == Decimal("5.35")


class TestRepay:

    def test_repay_principal_and_interest(self, borrowed):
        borrowed.advance(days=365)
        borrowed.fund("alice", "1")

        paid = borrowed.vault.repay_loan("alice", GAME, 1, Decimal("6"))

        assert paid == Decimal("5.35")
        assert borrowed.balance("alice") == Decimal("0.65")
        assert borrowed.vault.available_liquidity() == Decimal("1000.35")
        loan = borrowed.vault.get_loan(GAME, 1)
        assert loan.total_debt == Decimal("0")
        (event,) = borrowed.ledger.events("LoanRepaid")
        assert event.origin.event_params["surplus_refunded"] == Decimal("0.65")

    def test_underpayment_leaves_loan_untouched(self, borrowed):
        with pytest.raises(InsufficientPayment):
            borrowed.vault.repay_loan("alice", GAME, 1, Decimal("4.99"))
        assert borrowed.vault.get_loan(GAME, 1).principal == Decimal("5")

    def test_payer_cannot_cover(self, borrowed):
        borrowed.ledger.set_balance("alice", borrowed.currency, Decimal("1"))
        with pytest.raises(InsufficientBalance):
            borrowed.vault.repay_loan("alice", GAME, 1, Decimal("6"))
        assert borrowed.vault.get_loan(GAME, 1).principal == Decimal("5")
        assert borrowed.ledger.events("LoanRepaid") == []

    def test_third_party_repays(self, borrowed):
        borrowed.fund("bob", "5")
        borrowed.vault.repay_loan("bob", GAME, 1, Decimal("5"))
        assert borrowed.balance("bob") == Decimal("0")
        borrowed.vault.withdraw_nft("alice", GAME, 1)
        assert borrowed.vault.owner_of(GAME, 1) == "alice"

    def test_nothing_to_repay(self, deposited):
        with pytest.raises(NoActiveLoan):
            deposited.vault.repay_loan("alice", GAME, 1, Decimal("1"))

    def test_dpo_units_survive_repayment(self, borrowed):
        borrowed.vault.repay_loan("alice", GAME, 1, Decimal("5"))
        assert borrowed.dpo.nft_token_supply(GAME, 1) == Decimal("5000")
        assert borrowed.dpo.token_holdings(GAME, 1, "alice") == Decimal("5000")


class TestWithdraw:

    def test_withdraw_with_debt(self, borrowed):
        with pytest.raises(OutstandingDebt):
            borrowed.vault.withdraw_nft("alice", GAME, 1)
        assert borrowed.vault.owner_of(GAME, 1) == borrowed.vault.wallet

    def test_withdraw_by_stranger(self, deposited):
        with pytest.raises(NotYourNFT):
            deposited.vault.withdraw_nft("bob", GAME, 1)

    def test_withdraw_without_deposit(self, setup):
        with pytest.raises(NoActiveDeposit):
            setup.vault.withdraw_nft("alice", GAME, 1)

    def test_full_round_trip(self, deposited):
        vault = deposited.vault
        vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        deposited.advance(days=30)
        deposited.fund("alice", "1")
        vault.repay_loan("alice", GAME, 1, Decimal("6"))
        vault.withdraw_nft("alice", GAME, 1)

        assert vault.owner_of(GAME, 1) == "alice"
        assert not vault.deposits(GAME, 1).is_active
        assert vault.get_user_deposits("alice") == []
        state = position_of(deposited, 1)
        assert state.total_borrowed == Decimal("5")
        assert state.total_repaid > Decimal("5")
        events = [tx.event_type for tx in deposited.ledger.events(unit_symbol="POS:0xgame:1")]
        assert events == ["NFTDeposited", "Borrowed", "LoanRepaid", "NFTWithdrawn"]

    def test_redeposit_after_withdraw(self, deposited):
        deposited.vault.withdraw_nft("alice", GAME, 1)
        deposited.vault.approve("alice", GAME, 1, deposited.vault.wallet)
        deposited.vault.deposit_nft("alice", GAME, 1)
        assert deposited.vault.deposits(GAME, 1).is_active


class TestConfiguredDayCount:

    def test_days_per_year(self):
        setup = make_vault(config=VaultConfig(days_per_year=360))
        setup.mint_and_deposit("alice", 1)
        setup.vault.borrow_against_nft("alice", GAME, 1, Decimal("5"))
        setup.advance(days=360)
        assert setup.vault.get_loan(GAME, 1).total_debt == Decimal("5.35")
