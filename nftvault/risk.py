"""
risk.py - Risk tiers, collection parameters and the pure lending math

FROZEN DATACLASSES (explicit inputs):
   - RiskModel: per-tier base LTV, liquidation threshold, base interest rate
   - CollectionConfig: per-collection allow-listing, tier and overrides

PURE CALCULATION FUNCTIONS (calculate_*):
   - No LedgerView, no oracle, no hidden state
   - Every percentage is expressed in points (65 means 65%)

Key Formulas:
    max_ltv          = min(base_ltv + utility_bonus, liquidation_threshold - 1)
    max_borrow       = collateral_value * max_ltv / 100 - total_debt   (floored at 0)
    current_ltv      = total_debt / collateral_value * 100             (0 if value is 0)
    pending_interest = principal * rate / 100 * elapsed_seconds / seconds_per_year
    liquidatable     = collateral_value > 0 and current_ltv >= liquidation_threshold
                       or collateral_value == 0 and total_debt > 0
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .core import QUANTITY_EPSILON, to_decimal


HUNDRED = Decimal("100")
SECONDS_PER_DAY = Decimal("86400")

# (minimum utility score, bonus points), checked highest first
DEFAULT_UTILITY_BONUS_TIERS: Tuple[Tuple[int, int], ...] = ((90, 10), (80, 5))
DEFAULT_MAX_UTILITY_BONUS = 10


@dataclass(frozen=True, slots=True)
class RiskModel:
    """
    Static parameters of one risk tier.

    Invariant: 0 < base_ltv < liquidation_threshold < 100.
    """
    tier: int
    base_ltv: Decimal
    liquidation_threshold: Decimal
    base_interest_rate: Decimal

    def __post_init__(self):
        for name in ('base_ltv', 'liquidation_threshold', 'base_interest_rate'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        if not Decimal("0") < self.base_ltv < HUNDRED:
            raise ValueError(f"base_ltv must be in (0, 100), got {self.base_ltv}")
        if not Decimal("0") < self.liquidation_threshold < HUNDRED:
            raise ValueError(
                f"liquidation_threshold must be in (0, 100), got {self.liquidation_threshold}"
            )
        if self.liquidation_threshold <= self.base_ltv:
            raise ValueError(
                f"liquidation_threshold ({self.liquidation_threshold}) must exceed "
                f"base_ltv ({self.base_ltv}) for tier {self.tier}"
            )
        if self.base_interest_rate < 0:
            raise ValueError(f"base_interest_rate cannot be negative, got {self.base_interest_rate}")


DEFAULT_RISK_MODELS: Dict[int, RiskModel] = {
    1: RiskModel(1, Decimal("70"), Decimal("80"), Decimal("5")),
    2: RiskModel(2, Decimal("65"), Decimal("75"), Decimal("7")),
    3: RiskModel(3, Decimal("55"), Decimal("65"), Decimal("10")),
    4: RiskModel(4, Decimal("45"), Decimal("55"), Decimal("12")),
    5: RiskModel(5, Decimal("35"), Decimal("45"), Decimal("15")),
}


@dataclass(frozen=True, slots=True)
class CollectionConfig:
    """
    Per-collection parameters. Overrides replace the tier's values when set.

    Invariant: LTV and threshold overrides lie in (0, 100).
    """
    collection: str
    supported: bool = True
    risk_tier: int = 3
    game_category: int = 0
    max_ltv_override: Optional[Decimal] = None
    liquidation_threshold_override: Optional[Decimal] = None
    interest_rate_override: Optional[Decimal] = None

    def __post_init__(self):
        for name in ('max_ltv_override', 'liquidation_threshold_override', 'interest_rate_override'):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        for name in ('max_ltv_override', 'liquidation_threshold_override'):
            value = getattr(self, name)
            if value is not None and not Decimal("0") < value < HUNDRED:
                raise ValueError(f"{self.collection}: {name} must be in (0, 100), got {value}")
        if self.interest_rate_override is not None and self.interest_rate_override < 0:
            raise ValueError(
                f"{self.collection}: interest_rate_override cannot be negative, "
                f"got {self.interest_rate_override}"
            )


@dataclass(frozen=True, slots=True)
class EffectiveParameters:
    """Parameters actually applied to a collection after overrides."""
    risk_tier: int
    base_ltv: Decimal
    liquidation_threshold: Decimal
    base_interest_rate: Decimal


def resolve_parameters(
    config: CollectionConfig,
    risk_models: Mapping[int, RiskModel],
) -> EffectiveParameters:
    """
    Combine a collection's tier with its overrides.

    Raises:
        ValueError: If the tier is unknown or the overrides break
            base_ltv < liquidation_threshold.
    """
    if config.risk_tier not in risk_models:
        raise ValueError(f"Unknown risk tier {config.risk_tier} for {config.collection}")
    model = risk_models[config.risk_tier]
    params = EffectiveParameters(
        risk_tier=model.tier,
        base_ltv=config.max_ltv_override if config.max_ltv_override is not None else model.base_ltv,
        liquidation_threshold=(
            config.liquidation_threshold_override
            if config.liquidation_threshold_override is not None
            else model.liquidation_threshold
        ),
        base_interest_rate=(
            config.interest_rate_override
            if config.interest_rate_override is not None
            else model.base_interest_rate
        ),
    )
    if params.liquidation_threshold <= params.base_ltv:
        raise ValueError(
            f"{config.collection}: liquidation threshold {params.liquidation_threshold} "
            f"must exceed max LTV {params.base_ltv}"
        )
    return params


def with_overrides(config: CollectionConfig, **changes) -> CollectionConfig:
    return replace(config, **changes)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_utility_bonus(
    utility_score: int,
    tiers: Sequence[Tuple[int, int]] = DEFAULT_UTILITY_BONUS_TIERS,
    max_bonus: int = DEFAULT_MAX_UTILITY_BONUS,
) -> Decimal:
    """
    LTV bonus points for a utility score.

    The first tier whose minimum score is met wins; the result never
    exceeds max_bonus. Unknown scores (0) earn nothing.
    """
    for min_score, bonus in sorted(tiers, key=lambda t: t[0], reverse=True):
        if utility_score >= min_score:
            return Decimal(min(bonus, max_bonus))
    return Decimal("0")


def calculate_max_ltv(
    base_ltv: Decimal,
    liquidation_threshold: Decimal,
    utility_bonus: Decimal,
) -> Decimal:
    """
    Effective max LTV in points.

    Capped one point below the liquidation threshold so a loan drawn to
    capacity is not liquidatable at origination.
    """
    return min(to_decimal(base_ltv) + to_decimal(utility_bonus), to_decimal(liquidation_threshold) - 1)


def calculate_total_debt(
    principal: Decimal,
    accrued_interest: Decimal,
    pending_interest: Decimal = Decimal("0"),
) -> Decimal:
    return to_decimal(principal) + to_decimal(accrued_interest) + to_decimal(pending_interest)


def calculate_borrow_capacity(collateral_value: Decimal, max_ltv: Decimal) -> Decimal:
    """collateral_value * max_ltv / 100; zero for unpriced collateral."""
    collateral_value = to_decimal(collateral_value)
    if collateral_value <= 0:
        return Decimal("0")
    return collateral_value * to_decimal(max_ltv) / HUNDRED


def calculate_max_borrow(
    collateral_value: Decimal,
    max_ltv: Decimal,
    total_debt: Decimal,
) -> Decimal:
    """Remaining borrowing capacity, never negative."""
    remaining = calculate_borrow_capacity(collateral_value, max_ltv) - to_decimal(total_debt)
    return remaining if remaining > 0 else Decimal("0")


def calculate_current_ltv(total_debt: Decimal, collateral_value: Decimal) -> Decimal:
    """
    Debt as a percentage of collateral value.

    Returns 0 when the collateral is unpriced instead of dividing by zero;
    is_liquidatable handles the debt-against-zero-value case separately.
    """
    collateral_value = to_decimal(collateral_value)
    if collateral_value <= 0:
        return Decimal("0")
    return to_decimal(total_debt) * HUNDRED / collateral_value


def calculate_pending_interest(
    principal: Decimal,
    annual_rate_points: Decimal,
    last_accrual: Optional[datetime],
    current_time: Optional[datetime],
    days_per_year: int = 365,
) -> Decimal:
    """
    Simple interest accrued since last_accrual.

    Zero if there is no principal, no rate, no accrual start or no elapsed time.
    """
    principal = to_decimal(principal)
    rate = to_decimal(annual_rate_points)
    if (
        last_accrual is None
        or current_time is None
        or principal <= QUANTITY_EPSILON
        or rate <= 0
    ):
        return Decimal("0")
    elapsed = Decimal(str((current_time - last_accrual).total_seconds()))
    if elapsed <= 0:
        return Decimal("0")
    seconds_per_year = SECONDS_PER_DAY * Decimal(days_per_year)
    return principal * rate / HUNDRED * elapsed / seconds_per_year


def is_liquidatable(
    total_debt: Decimal,
    collateral_value: Decimal,
    liquidation_threshold: Decimal,
) -> bool:
    """
    True when current LTV is at or above the threshold.

    Debt against collateral the oracle values at zero is always liquidatable.
    """
    total_debt = to_decimal(total_debt)
    if total_debt <= QUANTITY_EPSILON:
        return False
    if to_decimal(collateral_value) <= 0:
        return True
    return calculate_current_ltv(total_debt, collateral_value) >= to_decimal(liquidation_threshold)
