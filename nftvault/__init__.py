"""
nftvault - NFT collateral vault with tokenized debt positions

Users deposit game NFTs into a vault, borrow against their oracle floor
price and receive DPO units representing the debt, which trade on a per-loan
order book and earn pro-rata interest.

Usage:
    from decimal import Decimal
    from nftvault import Ledger, NFTVault, DPOToken, StaticValuationOracle

    ledger = Ledger("main")
    oracle = StaticValuationOracle({"0xgame": Decimal("10")})
    vault = NFTVault(ledger, oracle, owner="admin")
    dpo = DPOToken(ledger, owner="admin")
    dpo.authorize_minter("admin", vault.wallet)
    vault.set_dpo_token("admin", dpo)
    vault.add_supported_collection("admin", "0xgame", risk_tier=2)

    vault.mint_nft("admin", "0xgame", 1, "alice")
    vault.approve("alice", "0xgame", 1, vault.wallet)
    vault.deposit_nft("alice", "0xgame", 1)
    vault.borrow_against_nft("alice", "0xgame", 1, Decimal("5"))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    combine_transactions,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    native_currency,
    create_nft_unit,
    nft_symbol,
    dpo_symbol,
    position_symbol,
    collection_symbol,
    SYSTEM_WALLET,
    UNIT_TYPE_CURRENCY,
    UNIT_TYPE_NFT,
    UNIT_TYPE_DPO,
    UNIT_TYPE_VAULT_POSITION,
    UNIT_TYPE_COLLECTION,
    # Errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    AuthorizationError,
    NotOwner,
    NotYourNFT,
    NotApproved,
    Unauthorized,
    PolicyViolation,
    ExceedsMaxLTV,
    UnsupportedCollection,
    OutstandingDebt,
    BelowLiquidationThreshold,
    InvalidAmount,
    ResourceError,
    InsufficientLiquidity,
    InsufficientBalance,
    InsufficientPayment,
    StateError,
    NoActiveLoan,
    NoActiveDeposit,
    DepositAlreadyActive,
    OrderNotFound,
    DPOTokenNotConfigured,
)

# Ledger
from .ledger import Ledger

# Oracle
from .oracle import (
    ValuationOracle,
    StaticValuationOracle,
    PriceInfo,
    CollectionMetrics,
)

# Risk model
from .risk import (
    RiskModel,
    CollectionConfig,
    EffectiveParameters,
    DEFAULT_RISK_MODELS,
    resolve_parameters,
    calculate_utility_bonus,
    calculate_max_ltv,
    calculate_max_borrow,
    calculate_current_ltv,
    calculate_pending_interest,
    is_liquidatable,
)

# Access control
from .access import AccessControl, Role

# Services
from .vault import NFTVault, UserPosition, Deposit, LoanInfo, LoanAtRisk
from .dpo_token import DPOToken, BuyResult
from .units.dpo import Order

# Configuration and logging
from .config import VaultConfig, WalletNames, load_config, validate_config
from .logging_setup import configure_logging


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin',
    'OriginType', 'build_transaction', 'combine_transactions', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'native_currency', 'create_nft_unit',
    'nft_symbol', 'dpo_symbol', 'position_symbol', 'collection_symbol', 'SYSTEM_WALLET',
    'UNIT_TYPE_CURRENCY', 'UNIT_TYPE_NFT', 'UNIT_TYPE_DPO', 'UNIT_TYPE_VAULT_POSITION',
    'UNIT_TYPE_COLLECTION',
    # Errors
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered', 'TransactionRejected',
    'AuthorizationError', 'NotOwner', 'NotYourNFT', 'NotApproved', 'Unauthorized',
    'PolicyViolation', 'ExceedsMaxLTV', 'UnsupportedCollection', 'OutstandingDebt',
    'BelowLiquidationThreshold', 'InvalidAmount',
    'ResourceError', 'InsufficientLiquidity', 'InsufficientBalance', 'InsufficientPayment',
    'StateError', 'NoActiveLoan', 'NoActiveDeposit', 'DepositAlreadyActive', 'OrderNotFound',
    'DPOTokenNotConfigured',
    # Ledger
    'Ledger',
    # Oracle
    'ValuationOracle', 'StaticValuationOracle', 'PriceInfo', 'CollectionMetrics',
    # Risk
    'RiskModel', 'CollectionConfig', 'EffectiveParameters', 'DEFAULT_RISK_MODELS',
    'resolve_parameters', 'calculate_utility_bonus', 'calculate_max_ltv',
    'calculate_max_borrow', 'calculate_current_ltv', 'calculate_pending_interest',
    'is_liquidatable',
    # Access
    'AccessControl', 'Role',
    # Services
    'NFTVault', 'UserPosition', 'Deposit', 'LoanInfo', 'LoanAtRisk',
    'DPOToken', 'BuyResult', 'Order',
    # Config
    'VaultConfig', 'WalletNames', 'load_config', 'validate_config', 'configure_logging',
]

__version__ = '1.0.0'
