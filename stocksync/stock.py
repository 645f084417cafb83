"""Stock arithmetic on variant documents.

Source items keep vendor variants (``inventory_quantity``); storefront copies
keep their own variants (``stock``). Both carry ``inventory_levels``, the
per-location breakdown. Everything here is pure: callers decide what to write.
"""

from __future__ import annotations

from typing import Any, Iterable

from stocksync.models import InventoryLevel, StockStatus, utcnow_iso, vendor_id

# Field names that may hold a variant's stock count, in lookup order
_STOCK_FIELDS = ("stock", "inventory_quantity", "inventoryQuantity", "inventory_quantity_total")

BACKORDER_POLICY = "continue"


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def variant_stock(variant: dict[str, Any]) -> int:
    """Stock count of a variant: first non-zero stock field, else 0."""
    for name in _STOCK_FIELDS:
        count = _as_int(variant.get(name))
        if count:
            return count
    return 0


def is_variant_available(variant: dict[str, Any]) -> bool:
    """A variant is sellable when it has stock or allows backorders."""
    return variant_stock(variant) > 0 or variant.get("inventory_policy") == BACKORDER_POLICY


def calculate_product_stock(variants: Iterable[dict[str, Any]] | None) -> StockStatus:
    """Derive product-level stock flags from a product's variants."""
    variants = list(variants or [])
    if not variants:
        return StockStatus()

    total = 0
    in_stock = 0
    for variant in variants:
        total += variant_stock(variant)
        if is_variant_available(variant):
            in_stock += 1

    return StockStatus(
        total_stock=total,
        has_in_stock_variants=in_stock > 0,
        in_stock_variant_count=in_stock,
        total_variant_count=len(variants),
    )


def normalize_inventory_level(level: dict[str, Any], now: str | None = None) -> InventoryLevel:
    """Convert one vendor inventory level into the stored shape."""
    location = level.get("location") or {}
    return InventoryLevel(
        location_id=vendor_id(level.get("location_id")) or "",
        available=_as_int(level.get("available")),
        location_name=location.get("name") or level.get("location_name"),
        updated_at=level.get("updated_at") or now or utcnow_iso(),
    )


def normalize_inventory_levels(
    levels: Iterable[dict[str, Any]] | None, now: str | None = None
) -> list[InventoryLevel]:
    now = now or utcnow_iso()
    return [normalize_inventory_level(level, now) for level in (levels or [])]


def merge_location_level(
    existing: Iterable[dict[str, Any]] | None,
    location_id: Any,
    available: int,
    location_name: str | None = None,
    updated_at: str | None = None,
) -> list[dict[str, Any]]:
    """Update one location's level in a breakdown, appending it if absent.

    Returns a new list; the input is not modified.
    """
    location_id = vendor_id(location_id) or ""
    updated_at = updated_at or utcnow_iso()
    merged = [dict(level) for level in (existing or [])]

    for level in merged:
        if vendor_id(level.get("location_id")) == location_id:
            level["available"] = _as_int(available)
            level["updated_at"] = updated_at
            if location_name:
                level["location_name"] = location_name
            return merged

    merged.append(
        InventoryLevel(
            location_id=location_id,
            available=_as_int(available),
            location_name=location_name,
            updated_at=updated_at,
        ).to_dict()
    )
    return merged


def total_available(levels: Iterable[dict[str, Any]] | None) -> int:
    return sum(_as_int(level.get("available")) for level in (levels or []))


def apply_levels_to_source_variant(
    variant: dict[str, Any], levels: list[dict[str, Any]], now: str | None = None
) -> dict[str, Any]:
    """Return a copy of a vendor variant carrying the given location levels.

    The total is written to every stock field the vendor payload uses so that
    readers of either field see the same figure.
    """
    total = total_available(levels)
    updated = dict(variant)
    updated.update(
        {
            "inventory_levels": levels,
            "inventory_quantity": total,
            "inventory_quantity_total": total,
            "available": total > 0 or variant.get("inventory_policy") == BACKORDER_POLICY,
            "inventory_updated_at": now or utcnow_iso(),
        }
    )
    return updated
