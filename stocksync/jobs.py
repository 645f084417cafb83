"""Batch jobs: drift repair, stock recalculation, reprocessing.

These run from the CLI or the admin routes. They are idempotent: a second
run over unchanged data writes nothing.
"""

from __future__ import annotations

import logging
from typing import Any

from stocksync.errors import StoreError
from stocksync.markets import inventory_breakdown_for_market, is_available_in_market
from stocksync.models import JobSummary, PropagationResult, StockStatus, vendor_id
from stocksync.propagate import (
    delete_storefront_product,
    find_storefront_products,
    for_each_storefront,
    product_variants,
    refresh_product_stock,
    stock_differs,
    target_storefronts,
)
from stocksync.stock import calculate_product_stock, variant_stock
from stocksync.store import (
    PRODUCTS,
    SOURCE_ITEMS,
    VARIANTS,
    DocumentStore,
    discover_storefronts,
    storefront_collection,
)

logger = logging.getLogger(__name__)


def _source_variant_index(source_variants: list[dict[str, Any]]) -> dict[tuple[str, str], dict[str, Any]]:
    index = {}
    for variant in source_variants:
        item_id = vendor_id(variant.get("inventory_item_id"))
        if item_id:
            index[("item", item_id)] = variant
        variant_id = vendor_id(variant.get("id"))
        if variant_id:
            index[("variant", variant_id)] = variant
    return index


def _sync_variants(
    store: DocumentStore,
    storefront: str,
    product_id: str,
    index: dict[tuple[str, str], dict[str, Any]],
) -> int:
    variants_coll = storefront_collection(storefront, VARIANTS)
    updates = 0
    for variant in product_variants(store, storefront, product_id):
        source = index.get(("item", vendor_id(variant.get("shopify_inventory_item_id")) or "")) or index.get(
            ("variant", vendor_id(variant.get("shopify_variant_id")) or "")
        )
        if source is None:
            continue
        stock = variant_stock(source)
        levels = source.get("inventory_levels")
        fields: dict[str, Any] = {}
        if variant.get("stock") != stock:
            fields["stock"] = stock
        if levels is not None and variant.get("inventory_levels") != levels:
            fields["inventory_levels"] = levels
        if fields:
            store.update(variants_coll, variant["id"], fields)
            updates += 1
    return updates


def sync_stock_from_source_items(store: DocumentStore) -> JobSummary:
    """Repair drift between source items and their storefront copies."""
    summary = JobSummary()
    source_items = [item for item in store.find(SOURCE_ITEMS) if item.get("shopify_id")]
    logger.info("Syncing stock for %d source item(s)", len(source_items))

    for item in source_items:
        source_variants = (item.get("raw_product") or {}).get("variants") or []
        status = calculate_product_stock(source_variants)
        index = _source_variant_index(source_variants)

        for storefront in target_storefronts(store, [item]):
            products_coll = storefront_collection(storefront, PRODUCTS)
            try:
                copies = find_storefront_products(store, storefront, item["shopify_id"], item["id"])
                for product in copies:
                    changed = False
                    if stock_differs(product, status):
                        store.update(products_coll, product["id"], status.to_fields())
                        changed = True
                    variant_updates = _sync_variants(store, storefront, product["id"], index)
                    summary.variant_updates += variant_updates
                    if changed or variant_updates:
                        summary.updated += 1
                    else:
                        summary.skipped += 1
            except Exception:
                logger.exception("Stock sync failed for %s in %s", item["id"], storefront)
                summary.errors += 1
                summary.details.append(f"{storefront}/{item['id']}")

    logger.info(
        "Stock sync complete: updated=%d skipped=%d variant_updates=%d errors=%d",
        summary.updated,
        summary.skipped,
        summary.variant_updates,
        summary.errors,
    )
    return summary


def recalculate_product_stock(store: DocumentStore) -> JobSummary:
    """Recompute every storefront product's stock flags from its own variants."""
    summary = JobSummary()
    for storefront in discover_storefronts(store):
        for product in store.find(storefront_collection(storefront, PRODUCTS)):
            try:
                if refresh_product_stock(store, storefront, product, only_if_changed=True):
                    summary.updated += 1
                else:
                    summary.skipped += 1
            except Exception:
                logger.exception("Recalculation failed for %s in %s", product["id"], storefront)
                summary.errors += 1
    logger.info("Recalculated stock: updated=%d skipped=%d errors=%d", summary.updated, summary.skipped, summary.errors)
    return summary


def _get_source_item(store: DocumentStore, doc_id: str) -> dict[str, Any]:
    item = store.get(SOURCE_ITEMS, doc_id)
    if item is None:
        raise StoreError(f"Source item {doc_id} not found")
    return item


def reprocess_source_item(store: DocumentStore, doc_id: str) -> PropagationResult:
    """Delete every storefront copy of a source item and reset its assignment."""
    item = _get_source_item(store, doc_id)
    result = PropagationResult(entity_id=doc_id)

    def apply(storefront: str) -> int:
        written = 0
        for product in find_storefront_products(store, storefront, item.get("shopify_id"), doc_id):
            written += delete_storefront_product(store, storefront, product)
        return written

    for_each_storefront(discover_storefronts(store), result, apply)
    if result.ok:
        store.update(SOURCE_ITEMS, doc_id, {"storefronts": [], "processed_storefronts": []})
        result.source_updated = 1
        logger.info("Reset storefront assignment of %s", doc_id)
    else:
        logger.warning("Kept assignment of %s, storefront cleanup failed: %s", doc_id, result.errors)
    return result


def source_item_stock(store: DocumentStore, doc_id: str) -> StockStatus:
    """Stock flags of a source item, recomputed from its variants."""
    item = _get_source_item(store, doc_id)
    return calculate_product_stock((item.get("raw_product") or {}).get("variants") or [])


def check_source_item_drift(store: DocumentStore, client, doc_id: str) -> list[dict[str, Any]]:
    """Compare a source item's variant stock with the vendor's current figures.

    Returns one entry per variant whose mirrored stock differs.
    """
    item = _get_source_item(store, doc_id)
    vendor_stock = client.fetch_variant_inventory(item.get("shopify_id"))
    drift = []
    for variant in (item.get("raw_product") or {}).get("variants") or []:
        variant_id = vendor_id(variant.get("id"))
        if variant_id not in vendor_stock:
            continue
        mirrored = variant_stock(variant)
        if mirrored != vendor_stock[variant_id]:
            drift.append({"variant_id": variant_id, "mirrored": mirrored, "vendor": vendor_stock[variant_id]})
    if drift:
        logger.warning("Source item %s drifted on %d variant(s)", doc_id, len(drift))
    return drift


def source_item_market_availability(store: DocumentStore, doc_id: str, market: str) -> list[dict[str, Any]]:
    """Per-variant sellability of a source item in one market."""
    item = _get_source_item(store, doc_id)
    availability = []
    for variant in (item.get("raw_product") or {}).get("variants") or []:
        breakdown = inventory_breakdown_for_market(variant, market)
        availability.append(
            {
                "variant_id": vendor_id(variant.get("id")),
                "available": is_available_in_market(variant, market),
                "total_available": breakdown.total_available,
                "locations": breakdown.locations,
            }
        )
    return availability
