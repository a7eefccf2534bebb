"""
nft.py - NFT issuance and approve-then-transfer custody handoff

Each NFT is its own unit (NFT:{collection}:{token_id}); the holder is the one
wallet with balance 1. The unit row records the operator currently approved
to move it, which the vault checks before taking custody.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from ..core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    SYSTEM_WALLET, NotOwner, OriginType,
    build_transaction, create_nft_unit, event_origin, nft_symbol,
)


def nft_owner(view: LedgerView, collection: str, token_id: int) -> Optional[str]:
    """Wallet holding the NFT, or None if it was never minted."""
    symbol = nft_symbol(collection, token_id)
    if not view.has_unit(symbol):
        return None
    for wallet, quantity in view.get_positions(symbol).items():
        if wallet != SYSTEM_WALLET and quantity > 0:
            return wallet
    return None


def compute_mint_nft(
    view: LedgerView,
    collection: str,
    token_id: int,
    to: str,
    minted_by: str = SYSTEM_WALLET,
) -> PendingTransaction:
    """
    Issue a new NFT to `to`.

    Raises:
        ValueError: If the NFT already exists
    """
    symbol = nft_symbol(collection, token_id)
    if view.has_unit(symbol):
        raise ValueError(f"{symbol} already minted")
    unit = create_nft_unit(collection, token_id)
    moves = [Move(Decimal("1"), symbol, SYSTEM_WALLET, to, f"mint_{symbol}")]
    origin = event_origin(
        minted_by, "NFTMinted", symbol, OriginType.ADMIN,
        collection=collection, token_id=int(token_id), to=to,
    )
    return build_transaction(view, moves, origin=origin, units_to_create=(unit,))


def compute_approve(
    view: LedgerView,
    collection: str,
    token_id: int,
    owner: str,
    operator: Optional[str],
) -> PendingTransaction:
    """
    Approve `operator` to move the NFT on the owner's behalf (None clears it).

    Raises:
        NotOwner: If `owner` does not hold the NFT
    """
    symbol = nft_symbol(collection, token_id)
    if nft_owner(view, collection, token_id) != owner:
        raise NotOwner(f"{owner} does not own {symbol}")
    old_state = view.get_unit_state(symbol)
    new_state = {**old_state, 'approved': operator}
    origin = event_origin(
        owner, "Approval", symbol,
        collection=collection, token_id=int(token_id), operator=operator,
    )
    return build_transaction(
        view, [], [UnitStateChange(symbol, old_state, new_state)], origin=origin
    )
