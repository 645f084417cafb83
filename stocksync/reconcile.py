"""Reconcile stage: recompute stock on the source items an event touches.

Each entry point writes the authoritative ``source_items`` documents first and
then hands off to ``stocksync.propagate`` for the storefront copies. A failed
source write raises, so the webhook answers 500 and the vendor redelivers;
storefront failures are reported in the returned ``PropagationResult``.
"""

from __future__ import annotations

import logging
from typing import Any

from stocksync import catalog
from stocksync.errors import PayloadError, StockSyncError
from stocksync.models import InventoryLevels, PropagationResult, utcnow_iso, vendor_id
from stocksync.propagate import (
    LevelUpdate,
    deactivate_storefront_copies,
    propagate_inventory_levels,
    propagate_product_update,
    remove_storefront_variants,
    target_storefronts,
)
from stocksync.stock import apply_levels_to_source_variant, merge_location_level
from stocksync.store import SOURCE_ITEMS, DocumentStore

logger = logging.getLogger(__name__)


def _fetch_levels(client, inventory_item_id: str) -> InventoryLevels | None:
    """All location levels from the vendor, or None when they can't be fetched."""
    if client is None or not client.configured:
        logger.info("Shopify client not configured, using webhook data only")
        return None
    try:
        return client.fetch_inventory_levels(inventory_item_id)
    except StockSyncError as e:
        logger.warning("Could not fetch inventory levels for %s: %s", inventory_item_id, e)
        return None


def apply_levels_to_source_items(
    store: DocumentStore, inventory_item_id: str, level_update: LevelUpdate
) -> list[dict[str, Any]]:
    """Rewrite the matching variants of every source item holding this item.

    Returns the source items that were written.
    """
    now = utcnow_iso()
    written = []
    for item in store.find(SOURCE_ITEMS, {"inventory_item_ids": inventory_item_id}):
        raw = dict(item.get("raw_product") or {})
        variants = []
        changed = False
        for variant in raw.get("variants") or []:
            if vendor_id(variant.get("inventory_item_id")) == inventory_item_id:
                levels = level_update(variant.get("inventory_levels") or [])
                variant = apply_levels_to_source_variant(variant, levels, now)
                changed = True
            variants.append(variant)
        if not changed:
            continue

        raw["variants"] = variants
        fields = {"raw_product": raw, **catalog.variant_index_fields(variants)}
        store.update(SOURCE_ITEMS, item["id"], fields)
        written.append({**item, **fields})
        logger.info(
            "Source item %s: item %s now has %d in stock",
            item["id"],
            inventory_item_id,
            fields["total_stock"],
        )
    return written


def _reconcile_levels(
    store: DocumentStore, inventory_item_id: str, level_update: LevelUpdate
) -> PropagationResult:
    result = PropagationResult(entity_id=inventory_item_id)
    source_items = apply_levels_to_source_items(store, inventory_item_id, level_update)
    result.source_updated = len(source_items)
    if not source_items:
        logger.info("No source item references inventory item %s", inventory_item_id)

    storefronts = target_storefronts(store, source_items)
    return propagate_inventory_levels(store, inventory_item_id, level_update, storefronts, result)


def reconcile_inventory_level(store: DocumentStore, client, payload: dict[str, Any]) -> PropagationResult:
    """Handle inventory_levels/update for one item at one location.

    The full breakdown is fetched from the vendor so every location stays
    current; if that fails the webhook's single location is merged in.
    """
    inventory_item_id = vendor_id(payload.get("inventory_item_id"))
    if not inventory_item_id:
        raise PayloadError("inventory_levels/update payload has no inventory_item_id")
    location_id = vendor_id(payload.get("location_id"))
    available = payload.get("available")
    updated_at = payload.get("updated_at") or utcnow_iso()

    fetched = _fetch_levels(client, inventory_item_id)
    if fetched is not None:
        levels = fetched.as_dicts()
        logger.info(
            "Item %s: %d location(s), %d available in total",
            inventory_item_id,
            len(levels),
            fetched.total_available,
        )

        def level_update(existing: list[dict[str, Any]]) -> list[dict[str, Any]]:
            return [dict(level) for level in levels]

    else:
        if not location_id:
            raise PayloadError("inventory_levels/update payload has no location_id")

        def level_update(existing: list[dict[str, Any]]) -> list[dict[str, Any]]:
            return merge_location_level(existing, location_id, available or 0, updated_at=updated_at)

    return _reconcile_levels(store, inventory_item_id, level_update)


def reconcile_inventory_item(store: DocumentStore, client, payload: dict[str, Any]) -> PropagationResult:
    """Handle inventory_items/update: replace an item's levels wholesale.

    Without fetched levels there is nothing authoritative to write.
    """
    inventory_item_id = vendor_id(payload.get("id") or payload.get("inventory_item_id"))
    if not inventory_item_id:
        raise PayloadError("inventory_items/update payload has no id")

    fetched = _fetch_levels(client, inventory_item_id)
    if fetched is None:
        logger.info("No inventory levels for item %s, nothing to update", inventory_item_id)
        return PropagationResult(entity_id=inventory_item_id)

    levels = fetched.as_dicts()
    return _reconcile_levels(store, inventory_item_id, lambda existing: [dict(level) for level in levels])


def reconcile_product_update(store: DocumentStore, product: dict[str, Any]) -> PropagationResult:
    """Handle products/update: refresh the source item, then its storefront copies.

    Variants that disappeared from the payload are removed from the
    storefronts as well.
    """
    if not vendor_id(product.get("id")):
        raise PayloadError("products/update payload has no id")
    previous = catalog.find_source_item(store, product.get("id"))
    source_item = catalog.update_source_item(store, product)
    result = propagate_product_update(store, product, source_item)

    if "variants" not in product:
        return result
    current_ids = {vendor_id(v.get("id")) for v in product["variants"] or []}
    for variant in ((previous or {}).get("raw_product") or {}).get("variants") or []:
        variant_id = vendor_id(variant.get("id"))
        if variant_id and variant_id not in current_ids:
            logger.info("Variant %s removed from product %s", variant_id, product.get("id"))
            remove_storefront_variants(
                store, variant_id, vendor_id(variant.get("inventory_item_id")), result
            )
    return result


def reconcile_product_deletion(store: DocumentStore, product_id: Any) -> PropagationResult:
    """Handle products/delete: flag the source item, deactivate every copy."""
    shopify_id = vendor_id(product_id)
    if not shopify_id:
        raise PayloadError("products/delete payload has no id")
    source_doc_id = catalog.mark_source_item_deleted(store, shopify_id)
    result = PropagationResult(entity_id=shopify_id, source_updated=1 if source_doc_id else 0)
    return deactivate_storefront_copies(store, shopify_id, source_doc_id, result)


def delete_variant(
    store: DocumentStore, variant_id: Any = None, inventory_item_id: Any = None
) -> PropagationResult:
    """Remove one vendor variant from source items and storefront copies."""
    variant_id = vendor_id(variant_id)
    inventory_item_id = vendor_id(inventory_item_id)
    if not variant_id and not inventory_item_id:
        raise PayloadError("Variant deletion needs a variant id or inventory item id")

    result = PropagationResult(entity_id=variant_id or inventory_item_id or "")
    items: dict[str, dict[str, Any]] = {}
    if variant_id:
        items.update({i["id"]: i for i in store.find(SOURCE_ITEMS, {"variant_ids": variant_id})})
    if inventory_item_id:
        items.update({i["id"]: i for i in store.find(SOURCE_ITEMS, {"inventory_item_ids": inventory_item_id})})

    for item in items.values():
        raw = dict(item.get("raw_product") or {})
        variants = [
            v
            for v in raw.get("variants") or []
            if not (
                (variant_id and vendor_id(v.get("id")) == variant_id)
                or (inventory_item_id and vendor_id(v.get("inventory_item_id")) == inventory_item_id)
            )
        ]
        raw["variants"] = variants
        store.update(SOURCE_ITEMS, item["id"], {"raw_product": raw, **catalog.variant_index_fields(variants)})
        result.source_updated += 1
        logger.info("Removed variant %s from source item %s", variant_id or inventory_item_id, item["id"])

    return remove_storefront_variants(store, variant_id, inventory_item_id, result)
