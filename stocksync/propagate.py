"""Propagate stage: write recomputed fields to the storefront copies.

Every function here runs after the authoritative source item has been
written. Storefronts are processed independently; a failure in one is logged
and reported in the ``PropagationResult`` while the others continue.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Iterable

from stocksync.models import PropagationResult, StockStatus, utcnow, vendor_id
from stocksync.stock import calculate_product_stock, total_available, variant_stock
from stocksync.store import (
    CATEGORIES,
    PRODUCTS,
    VARIANTS,
    DocumentStore,
    discover_storefronts,
    storefront_collection,
)

logger = logging.getLogger(__name__)

# Storefront products keep at most this many gallery images
MAX_PRODUCT_IMAGES = 10

LevelUpdate = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


def target_storefronts(
    store: DocumentStore, source_items: Iterable[dict[str, Any] | None] = ()
) -> list[str]:
    """Storefronts a change may be written to.

    The union of the source items' assignment lists; an empty list on any of
    them (or no source item at all) means every discovered storefront.
    """
    assigned: list[str] = []
    for item in source_items:
        storefronts = (item or {}).get("storefronts") or []
        if not storefronts:
            return discover_storefronts(store)
        for storefront in storefronts:
            if storefront not in assigned:
                assigned.append(storefront)
    return assigned or discover_storefronts(store)


def for_each_storefront(
    storefronts: Iterable[str],
    result: PropagationResult,
    action: Callable[[str], int],
) -> PropagationResult:
    """Run ``action`` per storefront, recording counts and isolating failures."""
    for storefront in storefronts:
        try:
            count = action(storefront)
        except Exception as e:
            logger.exception("Propagation of %s to %s failed", result.entity_id, storefront)
            result.errors[storefront] = f"{type(e).__name__}: {e}"
            continue
        if count:
            result.record(storefront, count)
    return result


def find_storefront_products(
    store: DocumentStore,
    storefront: str,
    shopify_id: Any,
    source_doc_id: str | None = None,
) -> list[dict[str, Any]]:
    """Storefront copies of one vendor product, by vendor id or source doc id."""
    products_coll = storefront_collection(storefront, PRODUCTS)
    found: dict[str, dict[str, Any]] = {}
    shopify_id = vendor_id(shopify_id)
    if shopify_id:
        for product in store.find(products_coll, {"source_shopify_id": shopify_id}):
            found[product["id"]] = product
    if source_doc_id:
        for product in store.find(products_coll, {"source_item_doc_id": source_doc_id}):
            found.setdefault(product["id"], product)
    return list(found.values())


def product_variants(store: DocumentStore, storefront: str, product_id: str) -> list[dict[str, Any]]:
    return store.find(storefront_collection(storefront, VARIANTS), {"product_id": product_id})


def stock_differs(product: dict[str, Any], status: StockStatus) -> bool:
    return any(product.get(key) != value for key, value in status.to_fields().items())


def refresh_product_stock(
    store: DocumentStore,
    storefront: str,
    product: dict[str, Any],
    only_if_changed: bool = False,
) -> bool:
    """Recompute a storefront product's stock flags from its own variants.

    Returns True when the product was written.
    """
    status = calculate_product_stock(product_variants(store, storefront, product["id"]))
    if only_if_changed and not stock_differs(product, status):
        return False
    store.update(storefront_collection(storefront, PRODUCTS), product["id"], status.to_fields())
    return True


def propagate_inventory_levels(
    store: DocumentStore,
    inventory_item_id: str,
    level_update: LevelUpdate,
    storefronts: Iterable[str],
    result: PropagationResult,
) -> PropagationResult:
    """Apply new location levels to every storefront variant of one item."""

    def apply(storefront: str) -> int:
        variants_coll = storefront_collection(storefront, VARIANTS)
        variants = store.find(variants_coll, {"shopify_inventory_item_id": inventory_item_id})
        written = 0
        touched_products: set[str] = set()
        for variant in variants:
            levels = level_update(variant.get("inventory_levels") or [])
            store.update(
                variants_coll,
                variant["id"],
                {"inventory_levels": levels, "stock": total_available(levels)},
            )
            written += 1
            if variant.get("product_id"):
                touched_products.add(variant["product_id"])

        products_coll = storefront_collection(storefront, PRODUCTS)
        for product_id in sorted(touched_products):
            product = store.get(products_coll, product_id)
            if product is None:
                logger.warning("Variant parent %s missing in %s", product_id, storefront)
                continue
            refresh_product_stock(store, storefront, product)
            written += 1
        if written:
            logger.info(
                "Updated %d variant(s) of item %s in %s", len(variants), inventory_item_id, storefront
            )
        return written

    return for_each_storefront(storefronts, result, apply)


def _first_option(variant: dict[str, Any]) -> str:
    for key in ("option1", "option2", "option3"):
        if variant.get(key):
            return str(variant[key]).lower()
    return ""


def match_storefront_variant(
    vendor_variant: dict[str, Any], candidates: list[dict[str, Any]]
) -> dict[str, Any] | None:
    """Find the storefront variant for a vendor variant.

    Tries the vendor variant id, then the SKU, then the first option value
    against the stored size or color (case-insensitive).
    """
    variant_id = vendor_id(vendor_variant.get("id"))
    if variant_id:
        for candidate in candidates:
            if vendor_id(candidate.get("shopify_variant_id")) == variant_id:
                return candidate

    sku = vendor_variant.get("sku")
    if sku:
        for candidate in candidates:
            if candidate.get("sku") == sku:
                return candidate

    option = _first_option(vendor_variant)
    if option:
        for candidate in candidates:
            if option in (str(candidate.get("size") or "").lower(), str(candidate.get("color") or "").lower()):
                return candidate
    return None


def _parse_price(value: Any) -> float | None:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if math.isfinite(price) else None


def _variant_images(
    vendor_variant: dict[str, Any], product_images: list[dict[str, Any]], product_urls: list[str]
) -> list[str]:
    """Images specific to the variant first, then the product gallery, deduplicated."""
    own = [
        image.get("src")
        for image in product_images
        if isinstance(image, dict) and vendor_variant.get("id") in (image.get("variant_ids") or [])
    ]
    images: list[str] = []
    for url in [*own, *product_urls]:
        if url and url not in images:
            images.append(url)
    return images


def propagate_product_update(
    store: DocumentStore, product: dict[str, Any], source_item: dict[str, Any] | None
) -> PropagationResult:
    """Write a vendor product update to its storefront copies (products/update)."""
    shopify_id = vendor_id(product.get("id")) or ""
    result = PropagationResult(entity_id=shopify_id, source_updated=1 if source_item else 0)
    source_doc_id = source_item["id"] if source_item else None

    vendor_variants = product.get("variants") or []
    source_variants = {
        vendor_id(v.get("id")): v
        for v in ((source_item or {}).get("raw_product") or {}).get("variants") or []
    }
    raw_images = product.get("images") or []
    image_urls = [
        image.get("src") if isinstance(image, dict) else image for image in raw_images
    ]
    image_urls = [url for url in image_urls if url]
    base_price = _parse_price(vendor_variants[0].get("price")) if vendor_variants else None

    def apply(storefront: str) -> int:
        products_coll = storefront_collection(storefront, PRODUCTS)
        variants_coll = storefront_collection(storefront, VARIANTS)
        written = 0
        for sf_product in find_storefront_products(store, storefront, shopify_id, source_doc_id):
            fields: dict[str, Any] = {
                "source_shopify_id": shopify_id,
                "images": image_urls[:MAX_PRODUCT_IMAGES] or sf_product.get("images") or [],
            }
            if base_price is not None:
                fields["base_price"] = base_price
            store.update(products_coll, sf_product["id"], fields)
            written += 1

            candidates = product_variants(store, storefront, sf_product["id"])
            for vendor_variant in vendor_variants:
                match = match_storefront_variant(vendor_variant, candidates)
                if match is None:
                    logger.debug(
                        "No storefront variant for vendor variant %s in %s",
                        vendor_variant.get("id"),
                        storefront,
                    )
                    continue
                source_variant = source_variants.get(vendor_id(vendor_variant.get("id")))
                mirrored = source_variant or vendor_variant
                levels = mirrored.get("inventory_levels")
                price = _parse_price(vendor_variant.get("price"))
                update: dict[str, Any] = {
                    "shopify_variant_id": vendor_id(vendor_variant.get("id")),
                    "shopify_inventory_item_id": vendor_id(vendor_variant.get("inventory_item_id")),
                    "stock": variant_stock(mirrored),
                    "inventory_policy": vendor_variant.get("inventory_policy"),
                    "images": _variant_images(vendor_variant, raw_images, image_urls),
                }
                if levels is not None or source_variant is not None:
                    update["inventory_levels"] = levels or []
                if price is not None:
                    update["price"] = price
                    update["price_override"] = price
                store.update(variants_coll, match["id"], update)
                written += 1

            refresh_product_stock(store, storefront, sf_product)
        return written

    storefronts = target_storefronts(store, [source_item])
    return for_each_storefront(storefronts, result, apply)


def remove_product_from_categories(
    store: DocumentStore, storefront: str, product_id: str, category_ids: Iterable[str]
) -> int:
    """Drop a deleted product from its categories.

    Categories left without products are deleted; the rest lose the product
    from ``preview_product_ids``. Returns the number of categories written.
    """
    categories_coll = storefront_collection(storefront, CATEGORIES)
    products_coll = storefront_collection(storefront, PRODUCTS)
    written = 0
    for category_id in category_ids or []:
        category = store.get(categories_coll, category_id)
        if category is None:
            continue
        remaining = [
            p for p in store.find(products_coll, {"category_ids": category_id}) if p["id"] != product_id
        ]
        if not remaining:
            store.delete(categories_coll, category_id)
            logger.info("Deleted empty category %s in %s", category_id, storefront)
        else:
            previews = [pid for pid in category.get("preview_product_ids") or [] if pid != product_id]
            store.update(categories_coll, category_id, {"preview_product_ids": previews})
        written += 1
    return written


def delete_storefront_product(store: DocumentStore, storefront: str, product: dict[str, Any]) -> int:
    """Delete a storefront product, its variants, and clean up its categories."""
    variants_coll = storefront_collection(storefront, VARIANTS)
    written = 0
    for variant in product_variants(store, storefront, product["id"]):
        store.delete(variants_coll, variant["id"])
        written += 1
    store.delete(storefront_collection(storefront, PRODUCTS), product["id"])
    written += 1
    written += remove_product_from_categories(
        store, storefront, product["id"], product.get("category_ids") or []
    )
    return written


def deactivate_storefront_copies(
    store: DocumentStore, shopify_id: str, source_doc_id: str | None, result: PropagationResult
) -> PropagationResult:
    """Mark every storefront copy inactive and remove its variants (products/delete)."""
    deleted_at = utcnow()

    def apply(storefront: str) -> int:
        products_coll = storefront_collection(storefront, PRODUCTS)
        variants_coll = storefront_collection(storefront, VARIANTS)
        written = 0
        for sf_product in find_storefront_products(store, storefront, shopify_id, source_doc_id):
            store.update(products_coll, sf_product["id"], {"active": False, "deleted_at": deleted_at})
            written += 1
            for variant in product_variants(store, storefront, sf_product["id"]):
                store.delete(variants_coll, variant["id"])
                written += 1
        return written

    return for_each_storefront(discover_storefronts(store), result, apply)


def _default_variant_fields(variant: dict[str, Any]) -> dict[str, Any]:
    images = [url for url in variant.get("images") or [] if url]
    main_image = images[0] if images else variant.get("image_url")
    fields: dict[str, Any] = {
        "default_variant_id": variant["id"],
        "default_variant_price": variant.get("price"),
    }
    if main_image:
        fields["main_image"] = main_image
        fields["images"] = (images or [main_image])[:MAX_PRODUCT_IMAGES]
    return fields


def remove_storefront_variants(
    store: DocumentStore,
    variant_id: str | None,
    inventory_item_id: str | None,
    result: PropagationResult,
) -> PropagationResult:
    """Delete a vendor variant from every storefront and repair its products."""

    def apply(storefront: str) -> int:
        variants_coll = storefront_collection(storefront, VARIANTS)
        products_coll = storefront_collection(storefront, PRODUCTS)
        matches: list[dict[str, Any]] = []
        if variant_id:
            matches = store.find(variants_coll, {"shopify_variant_id": variant_id})
        if not matches and inventory_item_id:
            matches = store.find(variants_coll, {"shopify_inventory_item_id": inventory_item_id})

        written = 0
        for variant in matches:
            store.delete(variants_coll, variant["id"])
            written += 1
            product = store.get(products_coll, variant.get("product_id") or "")
            if product is None:
                continue

            remaining = product_variants(store, storefront, product["id"])
            if not remaining:
                logger.info("Product %s in %s lost its last variant, deleting", product["id"], storefront)
                store.delete(products_coll, product["id"])
                written += 1 + remove_product_from_categories(
                    store, storefront, product["id"], product.get("category_ids") or []
                )
                continue

            fields = calculate_product_stock(remaining).to_fields()
            prices = [p for p in (_parse_price(v.get("price")) for v in remaining) if p and p > 0]
            if prices:
                fields["base_price"] = min(prices)
            if product.get("default_variant_id") == variant["id"]:
                fields.update(_default_variant_fields(remaining[0]))
            store.update(products_coll, product["id"], fields)
            written += 1
        return written

    return for_each_storefront(discover_storefronts(store), result, apply)
