"""
Keyed rows of the vault and their pure transaction builders.

- nft: NFT issuance and approvals
- collection: allow-listed collection configuration
- position: deposits and loans per (collection, token_id)
- dpo: debt position units, order book and interest pool
"""

from .nft import compute_approve, compute_mint_nft, nft_owner
from .collection import compute_set_collection, load_collection
from .position import (
    PositionState,
    load_position,
    total_debt,
    compute_deposit,
    compute_withdraw,
    compute_borrow,
    compute_repay,
    compute_liquidate,
)
from .dpo import (
    DPOState,
    Order,
    Fill,
    load_dpo,
    holder_positions,
    token_holdings,
    calculate_distribution,
    match_sell_orders,
    compute_mint,
    compute_transfer,
    compute_place_sell_order,
    compute_place_buy_order,
    compute_cancel_order,
    compute_distribute_interest,
    compute_claim_interest,
)

__all__ = [
    'compute_approve', 'compute_mint_nft', 'nft_owner',
    'compute_set_collection', 'load_collection',
    'PositionState', 'load_position', 'total_debt',
    'compute_deposit', 'compute_withdraw', 'compute_borrow', 'compute_repay', 'compute_liquidate',
    'DPOState', 'Order', 'Fill', 'load_dpo', 'holder_positions', 'token_holdings',
    'calculate_distribution', 'match_sell_orders',
    'compute_mint', 'compute_transfer', 'compute_place_sell_order', 'compute_place_buy_order',
    'compute_cancel_order', 'compute_distribute_interest', 'compute_claim_interest',
]
