"""Configuration loader: reads a vault YAML file, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .core import DEFAULT_CURRENCY_DECIMALS, to_decimal
from .risk import (
    DEFAULT_MAX_UTILITY_BONUS,
    DEFAULT_RISK_MODELS,
    DEFAULT_UTILITY_BONUS_TIERS,
    CollectionConfig,
    RiskModel,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletNames:
    vault: str = "vault"
    interest_pool: str = "dpo_interest_pool"
    order_escrow: str = "dpo_escrow"
    fee: str = "treasury"


@dataclass(frozen=True)
class VaultConfig:
    currency_symbol: str = "DPSV"
    currency_name: str = "Devpros"
    currency_decimals: int = DEFAULT_CURRENCY_DECIMALS
    dpo_exchange_rate: Decimal = Decimal("1000")
    dpo_decimals: int = 18
    protocol_fee_bps: int = 0
    burn_on_repay: bool = False
    utility_bonus_tiers: Tuple[Tuple[int, int], ...] = DEFAULT_UTILITY_BONUS_TIERS
    max_utility_bonus: int = DEFAULT_MAX_UTILITY_BONUS
    risk_tiers: Dict[int, RiskModel] = field(default_factory=lambda: dict(DEFAULT_RISK_MODELS))
    default_risk_tier: int = 3
    days_per_year: int = 365
    wallets: WalletNames = field(default_factory=WalletNames)
    collections: Tuple[CollectionConfig, ...] = ()

    @property
    def fee_wallet(self) -> str:
        return self.wallets.fee


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML -> dataclass builders
# ---------------------------------------------------------------------------


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _build_risk_tiers(raw: Dict[Any, Any]) -> Dict[int, RiskModel]:
    if not raw:
        return dict(DEFAULT_RISK_MODELS)
    tiers: Dict[int, RiskModel] = {}
    for tier, cfg in raw.items():
        tiers[int(tier)] = RiskModel(
            tier=int(tier),
            base_ltv=to_decimal(cfg["base_ltv"]),
            liquidation_threshold=to_decimal(cfg["liquidation_threshold"]),
            base_interest_rate=to_decimal(cfg.get("base_interest_rate", 0)),
        )
    return tiers


def _build_bonus_tiers(raw: Any) -> Tuple[Tuple[int, int], ...]:
    if not raw:
        return DEFAULT_UTILITY_BONUS_TIERS
    return tuple((int(t["min_score"]), int(t["bonus"])) for t in raw)


def _build_wallets(raw: Dict[str, Any]) -> WalletNames:
    return WalletNames(
        vault=raw.get("vault", WalletNames.vault),
        interest_pool=raw.get("interest_pool", WalletNames.interest_pool),
        order_escrow=raw.get("order_escrow", WalletNames.order_escrow),
        fee=raw.get("fee", WalletNames.fee),
    )


def _build_collections(raw: list, default_tier: int) -> Tuple[CollectionConfig, ...]:
    collections = []
    for c in raw:
        collections.append(
            CollectionConfig(
                collection=c["address"],
                risk_tier=int(c.get("risk_tier", default_tier)),
                game_category=int(c.get("game_category", 0)),
                max_ltv_override=_optional_decimal(c.get("max_ltv")),
                liquidation_threshold_override=_optional_decimal(c.get("liquidation_threshold")),
                interest_rate_override=_optional_decimal(c.get("base_interest_rate")),
            )
        )
    return tuple(collections)


def _build_config(raw: Dict[str, Any]) -> VaultConfig:
    currency = raw.get("currency", {})
    dpo = raw.get("dpo", {})
    risk = raw.get("risk", {})
    default_tier = int(risk.get("default_tier", 3))
    return VaultConfig(
        currency_symbol=currency.get("symbol", "DPSV"),
        currency_name=currency.get("name", "Devpros"),
        currency_decimals=int(currency.get("decimals", DEFAULT_CURRENCY_DECIMALS)),
        dpo_exchange_rate=to_decimal(dpo.get("exchange_rate", "1000")),
        dpo_decimals=int(dpo.get("decimals", 18)),
        protocol_fee_bps=int(dpo.get("protocol_fee_bps", 0)),
        burn_on_repay=bool(dpo.get("burn_on_repay", False)),
        utility_bonus_tiers=_build_bonus_tiers(risk.get("utility_bonus_tiers")),
        max_utility_bonus=int(risk.get("max_utility_bonus", DEFAULT_MAX_UTILITY_BONUS)),
        risk_tiers=_build_risk_tiers(risk.get("tiers", {})),
        default_risk_tier=default_tier,
        days_per_year=int(raw.get("interest", {}).get("days_per_year", 365)),
        wallets=_build_wallets(raw.get("wallets", {})),
        collections=_build_collections(raw.get("collections", []), default_tier),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: Union[str, Path]) -> VaultConfig:
    """Load and validate vault configuration from YAML + .env.

    Args:
        config_path: Path to the vault YAML file. Missing sections fall back
            to the VaultConfig defaults.
    """
    load_dotenv()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)
    cfg = _build_config(raw)

    validate_config(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate_config(cfg: VaultConfig) -> None:
    """Raise ValueError on invalid configuration."""
    if not cfg.currency_symbol:
        raise ValueError("currency symbol cannot be empty")
    if cfg.dpo_exchange_rate <= 0:
        raise ValueError(f"dpo exchange_rate must be positive, got {cfg.dpo_exchange_rate}")
    if not 0 <= cfg.protocol_fee_bps < 10_000:
        raise ValueError(f"protocol_fee_bps must be in [0, 10000), got {cfg.protocol_fee_bps}")
    if cfg.burn_on_repay:
        raise ValueError("burn_on_repay is reserved; DPO units are never burned")
    if cfg.days_per_year <= 0:
        raise ValueError(f"days_per_year must be positive, got {cfg.days_per_year}")
    if cfg.default_risk_tier not in cfg.risk_tiers:
        raise ValueError(f"default risk tier {cfg.default_risk_tier} is not configured")
    for min_score, bonus in cfg.utility_bonus_tiers:
        if not 1 <= min_score <= 100:
            raise ValueError(f"utility bonus min_score must be in 1..100, got {min_score}")
        if bonus < 0:
            raise ValueError(f"utility bonus cannot be negative, got {bonus}")
    names = [cfg.wallets.vault, cfg.wallets.interest_pool, cfg.wallets.order_escrow, cfg.wallets.fee]
    if len(set(names)) != len(names):
        raise ValueError(f"service wallet names must be distinct, got {names}")
    for collection in cfg.collections:
        if collection.risk_tier not in cfg.risk_tiers:
            raise ValueError(
                f"Collection '{collection.collection}' references unknown risk tier {collection.risk_tier}"
            )
