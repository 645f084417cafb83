"""Market-aware availability from per-location inventory levels.

Each vendor location fulfils a set of markets (ISO country codes, or
``GLOBAL``). A variant's stock for a market is the sum of its levels at the
locations that serve that market.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from stocksync import config
from stocksync.stock import BACKORDER_POLICY
from stocksync.models import vendor_id

logger = logging.getLogger(__name__)

GLOBAL_MARKET = "GLOBAL"

# Used when LOCATION_MARKETS is not configured: the dropship fulfilment
# service ships everywhere.
DEFAULT_LOCATION_MARKETS: dict[str, dict[str, Any]] = {
    "114729156951": {
        "name": "dsers-fulfillment-service",
        "markets": [GLOBAL_MARKET],
        "priority": 1,
    },
}


@dataclass
class MarketLocation:
    location_id: str
    name: str
    markets: list[str]
    priority: int = 1

    def serves(self, country_code: str) -> bool:
        return country_code in self.markets or GLOBAL_MARKET in self.markets


@dataclass
class InventoryBreakdown:
    total_available: int = 0
    locations: list[dict[str, Any]] = field(default_factory=list)


def _mapping() -> dict[str, dict[str, Any]]:
    return config.LOCATION_MARKETS or DEFAULT_LOCATION_MARKETS


def locations_for_market(country_code: str | None) -> list[MarketLocation]:
    """Locations able to fulfil a market, lowest priority number first."""
    if not country_code:
        return []
    code = country_code.upper()
    locations = [
        MarketLocation(
            location_id=str(location_id),
            name=entry.get("name", str(location_id)),
            markets=[m.upper() for m in entry.get("markets", [])],
            priority=int(entry.get("priority", 1)),
        )
        for location_id, entry in _mapping().items()
    ]
    return sorted(
        (loc for loc in locations if loc.serves(code)),
        key=lambda loc: loc.priority,
    )


def _relevant_levels(variant: dict[str, Any], country_code: str) -> list[dict[str, Any]]:
    location_ids = {loc.location_id for loc in locations_for_market(country_code)}
    if not location_ids:
        return []
    return [
        level
        for level in variant.get("inventory_levels") or []
        if vendor_id(level.get("location_id")) in location_ids
    ]


def available_inventory_for_market(variant: dict[str, Any] | None, country_code: str | None) -> int:
    if not variant or not country_code:
        return 0
    return sum(int(level.get("available") or 0) for level in _relevant_levels(variant, country_code))


def is_available_in_market(variant: dict[str, Any] | None, country_code: str | None) -> bool:
    """Backorder variants are always sellable; others need stock in the market."""
    if not variant:
        return False
    if variant.get("inventory_policy") == BACKORDER_POLICY:
        return True
    return available_inventory_for_market(variant, country_code) > 0


def inventory_breakdown_for_market(
    variant: dict[str, Any] | None, country_code: str | None
) -> InventoryBreakdown:
    if not variant or not country_code:
        return InventoryBreakdown()
    locations = [
        {
            "location_id": vendor_id(level.get("location_id")),
            "location_name": level.get("location_name"),
            "available": int(level.get("available") or 0),
        }
        for level in _relevant_levels(variant, country_code)
    ]
    return InventoryBreakdown(
        total_available=sum(loc["available"] for loc in locations),
        locations=locations,
    )


def check_cart_availability(
    cart_items: Iterable[dict[str, Any]] | None, country_code: str
) -> tuple[bool, list[dict[str, Any]]]:
    """Return (all_available, unavailable_items) for a cart in one market.

    Cart items either embed the variant under ``variant`` or are variants.
    """
    unavailable = []
    for item in cart_items or []:
        variant = item.get("variant") or item
        if is_available_in_market(variant, country_code):
            continue
        unavailable.append(
            {
                "variant_id": variant.get("id") or variant.get("shopify_variant_id"),
                "title": variant.get("title") or item.get("title") or "Unknown product",
                "available_stock": available_inventory_for_market(variant, country_code),
            }
        )
    if unavailable:
        logger.info("Cart has %d item(s) unavailable in %s", len(unavailable), country_code)
    return not unavailable, unavailable
