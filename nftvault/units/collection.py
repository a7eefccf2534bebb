"""
collection.py - Collection configuration rows

Each allow-listed collection has a state-only row COLL:{collection} holding
its CollectionConfig, so configuration changes go through Ledger.execute
like every other write and show up in the event log.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    UNIT_TYPE_COLLECTION, OriginType,
    build_transaction, collection_symbol, event_origin, no_transfer_rule,
    to_decimal, _freeze_state,
)
from ..risk import CollectionConfig, RiskModel, resolve_parameters


def to_state_dict(config: CollectionConfig) -> Dict[str, Any]:
    return {
        'collection': config.collection,
        'supported': config.supported,
        'risk_tier': config.risk_tier,
        'game_category': config.game_category,
        'max_ltv_override': config.max_ltv_override,
        'liquidation_threshold_override': config.liquidation_threshold_override,
        'interest_rate_override': config.interest_rate_override,
    }


def _optional(value: Any):
    return None if value is None else to_decimal(value)


def load_collection(view: LedgerView, collection: str) -> Optional[CollectionConfig]:
    """The collection's config, or None if it was never added."""
    symbol = collection_symbol(collection)
    if not view.has_unit(symbol):
        return None
    raw = view.get_unit_state(symbol)
    return CollectionConfig(
        collection=raw['collection'],
        supported=bool(raw.get('supported', False)),
        risk_tier=int(raw['risk_tier']),
        game_category=int(raw.get('game_category', 0)),
        max_ltv_override=_optional(raw.get('max_ltv_override')),
        liquidation_threshold_override=_optional(raw.get('liquidation_threshold_override')),
        interest_rate_override=_optional(raw.get('interest_rate_override')),
    )


def create_collection_unit(config: CollectionConfig) -> Unit:
    return Unit(
        symbol=collection_symbol(config.collection),
        name=f"Collection {config.collection}",
        unit_type=UNIT_TYPE_COLLECTION,
        transfer_rule=no_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(config)),
    )


def compute_set_collection(
    view: LedgerView,
    config: CollectionConfig,
    risk_models: Mapping[int, RiskModel],
    caller: str,
    event_type: str = "CollectionUpdated",
) -> PendingTransaction:
    """
    Write a collection's config row, creating it on first write.

    Raises:
        ValueError: If the tier is unknown or the overrides put the
            liquidation threshold at or below the max LTV
    """
    params = resolve_parameters(config, risk_models)
    symbol = collection_symbol(config.collection)
    origin = event_origin(
        caller, event_type, symbol, OriginType.ADMIN,
        collection=config.collection,
        supported=config.supported,
        risk_tier=config.risk_tier,
        game_category=config.game_category,
        max_ltv=params.base_ltv,
        liquidation_threshold=params.liquidation_threshold,
        base_interest_rate=params.base_interest_rate,
    )
    if not view.has_unit(symbol):
        return build_transaction(
            view, [], origin=origin, units_to_create=(create_collection_unit(config),)
        )
    change = UnitStateChange(symbol, view.get_unit_state(symbol), to_state_dict(config))
    return build_transaction(view, [], [change], origin=origin)
