"""
Concurrency Conformance Tests

INVARIANT: Reads-then-writes on one position or one DPO pair are serialized.

    ∀ concurrent requests on position P:
        outcome ≡ some serial order of the same requests

Racing borrowers can never jointly exceed capacity, and racing buyers can
never fill more units than were offered.
"""

import threading
from decimal import Decimal

from nftvault import ExceedsMaxLTV, LedgerError

from tests.conftest import GAME


def _race(workers, target):
    """Run target(i) on `workers` threads released together; collect outcomes."""
    barrier = threading.Barrier(workers)
    outcomes = [None] * workers

    def run(i):
        barrier.wait()
        try:
            outcomes[i] = target(i)
        except LedgerError as e:
            outcomes[i] = e

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


class TestConcurrentBorrows:

    def test_racing_draws_respect_capacity(self, deposited):
        outcomes = _race(10, lambda i: deposited.vault.borrow_against_nft(
            "alice", GAME, 1, Decimal("1")
        ))

        accepted = [o for o in outcomes if not isinstance(o, Exception)]
        rejected = [o for o in outcomes if isinstance(o, Exception)]
        assert len(accepted) == 7
        assert all(isinstance(e, ExceedsMaxLTV) for e in rejected)
        assert deposited.vault.get_loan(GAME, 1).principal == Decimal("7")
        assert deposited.dpo.nft_token_supply(GAME, 1) == Decimal("7000")
        assert deposited.balance("alice") == Decimal("7")

    def test_independent_positions_do_not_block(self, setup):
        for token_id in range(1, 6):
            setup.mint_and_deposit(f"user_{token_id}", token_id)

        outcomes = _race(5, lambda i: setup.vault.borrow_against_nft(
            f"user_{i + 1}", GAME, i + 1, Decimal("7")
        ))

        assert outcomes == [Decimal("7000")] * 5
        assert setup.vault.available_liquidity() == Decimal("965")


class TestConcurrentTrading:

    def test_racing_buyers_share_one_order(self, borrowed):
        borrowed.dpo.place_sell_order("alice", GAME, 1, Decimal("1000"), Decimal("0.001"))
        buyers = [f"buyer_{i}" for i in range(5)]
        for buyer in buyers:
            borrowed.fund(buyer, "0.3")

        results = _race(5, lambda i: borrowed.dpo.place_buy_order(
            buyers[i], GAME, 1, Decimal("300"), Decimal("0.001"), Decimal("0.3")
        ))

        assert sum(r.filled for r in results) == Decimal("1000")
        assert sum(borrowed.dpo.token_holdings(GAME, 1, b) for b in buyers) == Decimal("1000")
        assert borrowed.balance("alice") == Decimal("6")
        assert borrowed.balance(borrowed.dpo.escrow_wallet) == Decimal("0")
        assert borrowed.dpo.get_open_orders(GAME, 1) == []

    def test_racing_claims_pay_once(self, borrowed):
        borrowed.fund("payer", "1")
        borrowed.dpo.distribute_interest("payer", GAME, 1, Decimal("1"))

        paid = _race(4, lambda i: borrowed.dpo.claim_interest("alice", GAME, 1))

        assert sorted(paid) == [Decimal("0"), Decimal("0"), Decimal("0"), Decimal("1")]
        assert borrowed.dpo.interest_pool_balance() == Decimal("0")
