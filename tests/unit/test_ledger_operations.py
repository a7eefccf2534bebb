"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Balance operations
- Time management
- Transaction execution, rejection and stale-row detection
- Event queries, locks and request ids
"""

import pytest
import threading
from datetime import datetime, timedelta
from decimal import Decimal

from nftvault import (
    Ledger, Move, ExecuteResult, UnitStateChange, build_transaction,
    native_currency, create_nft_unit, SYSTEM_WALLET,
    LedgerError, WalletNotRegistered, UnitNotRegistered,
)
from nftvault.core import event_origin


class TestLedgerCreation:

    def test_create_ledger_minimal(self):
        ledger = Ledger("test")
        assert ledger.name == "test"
        assert ledger.current_time == datetime(1970, 1, 1)

    def test_system_wallet_is_registered(self):
        ledger = Ledger("test")
        assert ledger.is_registered(SYSTEM_WALLET)


class TestRegistration:

    def test_register_wallet(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        assert "alice" in empty_ledger.list_wallets()

    def test_register_duplicate_wallet(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_wallet("alice")

    def test_register_blank_wallet(self, empty_ledger):
        with pytest.raises(ValueError):
            empty_ledger.register_wallet("  ")

    def test_ensure_wallet_is_idempotent(self, empty_ledger):
        empty_ledger.ensure_wallet("alice")
        empty_ledger.ensure_wallet("alice")
        assert "alice" in empty_ledger.list_wallets()

    def test_register_duplicate_unit(self, basic_ledger):
        with pytest.raises(ValueError):
            basic_ledger.register_unit(native_currency("DPSV", "Devpros"))

    def test_list_units_by_type(self, basic_ledger):
        basic_ledger.register_unit(create_nft_unit("0xgame", 1))
        assert basic_ledger.list_units("NFT") == ["NFT:0xgame:1"]
        assert basic_ledger.list_units("CURRENCY") == ["DPSV"]


class TestBalances:

    def test_unregistered_wallet_reads_zero(self, basic_ledger):
        assert basic_ledger.get_balance("nobody", "DPSV") == Decimal("0")

    def test_unregistered_unit_raises(self, basic_ledger):
        with pytest.raises(UnitNotRegistered):
            basic_ledger.get_balance("alice", "XYZ")
        with pytest.raises(UnitNotRegistered):
            basic_ledger.get_unit_state("XYZ")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod")
        ledger.register_unit(native_currency("DPSV", "Devpros"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "DPSV", Decimal("1"))

    def test_set_balance_unknown_wallet(self, basic_ledger):
        with pytest.raises(WalletNotRegistered):
            basic_ledger.set_balance("carol", "DPSV", Decimal("1"))

    def test_get_positions(self, funded_ledger):
        assert funded_ledger.get_positions("DPSV") == {"alice": Decimal("10000")}


class TestTime:

    def test_advance_time(self, basic_ledger):
        later = basic_ledger.current_time + timedelta(days=1)
        basic_ledger.advance_time(later)
        assert basic_ledger.current_time == later

    def test_time_cannot_move_backwards(self, basic_ledger):
        with pytest.raises(ValueError, match="backwards"):
            basic_ledger.advance_time(basic_ledger.current_time - timedelta(seconds=1))


class TestExecute:

    def test_apply_moves(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(Decimal("250"), "DPSV", "alice", "bob", "pay")
        ])
        assert funded_ledger.execute(tx) == ExecuteResult.APPLIED
        assert funded_ledger.get_balance("alice", "DPSV") == Decimal("9750")
        assert funded_ledger.get_balance("bob", "DPSV") == Decimal("250")
        assert len(funded_ledger.transaction_log) == 1

    def test_repeat_is_already_applied(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(Decimal("250"), "DPSV", "alice", "bob", "pay")
        ])
        funded_ledger.execute(tx)
        assert funded_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert funded_ledger.get_balance("bob", "DPSV") == Decimal("250")

    def test_overdraft_rejected(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(Decimal("10001"), "DPSV", "alice", "bob", "pay")
        ])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert funded_ledger.get_balance("alice", "DPSV") == Decimal("10000")
        assert funded_ledger.transaction_log == []

    def test_unregistered_wallet_rejected(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(Decimal("1"), "DPSV", "alice", "carol", "pay")
        ])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED

    def test_future_timestamp_rejected(self, funded_ledger):
        other = Ledger("other", funded_ledger.current_time + timedelta(days=1))
        tx = build_transaction(other, [Move(Decimal("1"), "DPSV", "alice", "bob", "pay")])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED

    def test_nft_max_balance_enforced(self, basic_ledger):
        basic_ledger.register_unit(create_nft_unit("0xgame", 1))
        mint = build_transaction(basic_ledger, [
            Move(Decimal("1"), "NFT:0xgame:1", SYSTEM_WALLET, "alice", "mint")
        ])
        assert basic_ledger.execute(mint) == ExecuteResult.APPLIED
        again = build_transaction(basic_ledger, [
            Move(Decimal("1"), "NFT:0xgame:1", SYSTEM_WALLET, "alice", "mint_again")
        ])
        assert basic_ledger.execute(again) == ExecuteResult.REJECTED

    def test_state_change_applied(self, basic_ledger):
        basic_ledger.register_unit(create_nft_unit("0xgame", 1))
        old = basic_ledger.get_unit_state("NFT:0xgame:1")
        tx = build_transaction(basic_ledger, [], [
            UnitStateChange("NFT:0xgame:1", old, {**old, "approved": "vault"})
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.get_unit_state("NFT:0xgame:1")["approved"] == "vault"

    def test_stale_state_rejected(self, basic_ledger):
        basic_ledger.register_unit(create_nft_unit("0xgame", 1))
        old = basic_ledger.get_unit_state("NFT:0xgame:1")
        first = build_transaction(basic_ledger, [], [
            UnitStateChange("NFT:0xgame:1", old, {**old, "approved": "vault"})
        ])
        second = build_transaction(basic_ledger, [], [
            UnitStateChange("NFT:0xgame:1", old, {**old, "approved": "mallory"})
        ])
        assert basic_ledger.execute(first) == ExecuteResult.APPLIED
        assert basic_ledger.execute(second) == ExecuteResult.REJECTED
        assert basic_ledger.get_unit_state("NFT:0xgame:1")["approved"] == "vault"

    def test_rejected_transaction_does_not_register_units(self, basic_ledger):
        unit = create_nft_unit("0xgame", 9)
        tx = build_transaction(
            basic_ledger,
            [Move(Decimal("1"), "NFT:0xgame:9", SYSTEM_WALLET, "nobody", "mint")],
            units_to_create=(unit,),
        )
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert not basic_ledger.has_unit("NFT:0xgame:9")

    def test_empty_transaction_is_a_no_op(self, basic_ledger):
        tx = build_transaction(basic_ledger, [])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.transaction_log == []


class TestEventsAndSupply:

    def test_events_filtered_by_type(self, funded_ledger):
        pay = build_transaction(
            funded_ledger, [Move(Decimal("1"), "DPSV", "alice", "bob", "pay")],
            origin=event_origin("alice", "Paid", "DPSV", amount=Decimal("1")),
        )
        funded_ledger.execute(pay)
        plain = build_transaction(funded_ledger, [Move(Decimal("2"), "DPSV", "alice", "bob", "x")])
        funded_ledger.execute(plain)
        events = funded_ledger.events("Paid")
        assert len(events) == 1
        assert events[0].origin.event_params["amount"] == Decimal("1")
        assert len(funded_ledger.events()) == 1

    def test_issuance_conserves_supply(self, basic_ledger):
        basic_ledger.register_unit(create_nft_unit("0xgame", 1))
        basic_ledger.execute(build_transaction(basic_ledger, [
            Move(Decimal("1"), "NFT:0xgame:1", SYSTEM_WALLET, "alice", "mint")
        ]))
        assert basic_ledger.total_supply("NFT:0xgame:1") == Decimal("0")
        assert basic_ledger.outstanding_supply("NFT:0xgame:1") == Decimal("1")

    def test_verify_double_entry(self, funded_ledger):
        result = funded_ledger.verify_double_entry({"DPSV": Decimal("10000")})
        assert result["valid"]
        assert not funded_ledger.verify_double_entry()["valid"]


class TestLocksAndRequestIds:

    def test_request_ids_increase(self, empty_ledger):
        first = empty_ledger.next_request_id()
        assert empty_ledger.next_request_id() == first + 1

    def test_lock_is_reentrant(self, empty_ledger):
        with empty_ledger.lock(("position", "0xgame", 1)):
            with empty_ledger.lock(("position", "0xgame", 1), ("dpo", "0xgame", 1)):
                pass

    def test_lock_excludes_other_threads(self, empty_ledger):
        key = ("position", "0xgame", 1)
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with empty_ledger.lock(key):
                entered.set()
                release.wait(5)
                order.append("holder")

        def waiter():
            entered.wait(5)
            with empty_ledger.lock(key):
                order.append("waiter")

        t1 = threading.Thread(target=holder)
        t2 = threading.Thread(target=waiter)
        t1.start()
        t2.start()
        entered.wait(5)
        release.set()
        t1.join(5)
        t2.join(5)
        assert order == ["holder", "waiter"]
