"""
oracle.py - Valuation oracle interface and in-memory implementation

The vault consumes the oracle read-only:
- get_floor_price(collection) -> Decimal (0 when unset)
- get_utility_score(collection, category) -> int in 1..100 (0 when unset)
- get_price_info(collection) -> PriceInfo

StaticValuationOracle keeps a timestamped floor-price history per collection
(latest observation at or before a timestamp wins, like a time-series pricing
source) plus utility scores and collection metrics. It stands in for the
on-chain oracle in tests and simulations.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable
import logging

from .core import to_decimal

logger = logging.getLogger(__name__)

MIN_UTILITY_SCORE = 1
MAX_UTILITY_SCORE = 100


@dataclass(frozen=True, slots=True)
class PriceInfo:
    """Snapshot of a collection's price feed."""
    floor_price: Decimal
    last_updated: Optional[datetime]
    is_active: bool
    observations: int


@dataclass(frozen=True, slots=True)
class CollectionMetrics:
    volume_24h: Decimal
    holders: int
    listing_count: int
    avg_hold_time_seconds: int
    is_gamefi: bool


@runtime_checkable
class ValuationOracle(Protocol):
    """
    Read interface the vault consumes.

    Implementations must return Decimal("0") for a collection with no
    price rather than raising.
    """

    def get_floor_price(self, collection: str) -> Decimal:
        ...

    def get_utility_score(self, collection: str, category: int) -> int:
        ...

    def get_price_info(self, collection: str) -> PriceInfo:
        ...


class StaticValuationOracle:
    """
    In-memory oracle with a floor-price history per collection.

    Reads default to the latest observation. Passing at= returns the most
    recent observation at or before that time.
    """

    def __init__(self, floor_prices: Optional[Dict[str, Decimal]] = None):
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        self.utility_scores: Dict[Tuple[str, int], int] = {}
        self.metrics: Dict[str, CollectionMetrics] = {}
        self._inactive: set = set()
        for collection, price in (floor_prices or {}).items():
            self.update_floor_price(collection, price, datetime(1970, 1, 1))

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def update_floor_price(
        self,
        collection: str,
        price: Decimal,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Record a floor price observation.

        Raises:
            ValueError: If price is negative
        """
        price = to_decimal(price)
        if price < 0:
            raise ValueError(f"floor price cannot be negative, got {price}")
        history = self.price_history.setdefault(collection, [])
        history.append((timestamp or datetime.now(), price))
        history.sort(key=lambda x: x[0])
        self._inactive.discard(collection)
        logger.info("Floor price for %s set to %s", collection, price)

    def update_utility_score(self, collection: str, category: int, score: int) -> None:
        """
        Set the utility score of a collection within a game category.

        Raises:
            ValueError: If score is outside 1..100
        """
        if not MIN_UTILITY_SCORE <= int(score) <= MAX_UTILITY_SCORE:
            raise ValueError(
                f"utility score must be between {MIN_UTILITY_SCORE} and {MAX_UTILITY_SCORE}, got {score}"
            )
        self.utility_scores[(collection, int(category))] = int(score)

    def update_collection_metrics(
        self,
        collection: str,
        volume_24h: Decimal,
        holders: int,
        listing_count: int,
        avg_hold_time_seconds: int,
        is_gamefi: bool,
    ) -> None:
        self.metrics[collection] = CollectionMetrics(
            volume_24h=to_decimal(volume_24h),
            holders=int(holders),
            listing_count=int(listing_count),
            avg_hold_time_seconds=int(avg_hold_time_seconds),
            is_gamefi=bool(is_gamefi),
        )

    def deactivate(self, collection: str) -> None:
        """Stop serving prices for a collection; reads return 0 until the next update."""
        self._inactive.add(collection)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_floor_price(self, collection: str, at: Optional[datetime] = None) -> Decimal:
        if collection in self._inactive:
            return Decimal("0")
        history = self.price_history.get(collection)
        if not history:
            return Decimal("0")
        if at is None:
            return history[-1][1]
        idx = bisect_right([ts for ts, _ in history], at)
        if idx == 0:
            return Decimal("0")
        return history[idx - 1][1]

    def get_utility_score(self, collection: str, category: int) -> int:
        return self.utility_scores.get((collection, int(category)), 0)

    def get_price_info(self, collection: str) -> PriceInfo:
        history = self.price_history.get(collection, [])
        last_updated = history[-1][0] if history else None
        return PriceInfo(
            floor_price=self.get_floor_price(collection),
            last_updated=last_updated,
            is_active=bool(history) and collection not in self._inactive,
            observations=len(history),
        )

    def get_collection_metrics(self, collection: str) -> Optional[CollectionMetrics]:
        return self.metrics.get(collection)

    def __repr__(self):
        total = sum(len(h) for h in self.price_history.values())
        return f"StaticValuationOracle({len(self.price_history)} collections, {total} observations)"
