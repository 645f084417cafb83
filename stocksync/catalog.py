"""Authoritative source items: one mirror document per vendor product.

Source items are written by the products/* webhooks and the import job. They
are storefront-agnostic; the ``storefronts`` list records which storefronts
an admin assigned the product to (empty means every storefront).
"""

from __future__ import annotations

import logging
import re
from typing import Any

from stocksync.models import JobSummary, utcnow, vendor_id
from stocksync.stock import calculate_product_stock, total_available, variant_stock
from stocksync.store import SOURCE_ITEMS, DocumentStore

logger = logging.getLogger(__name__)

STATUS_DELETED = "deleted"

# category slug -> keywords in title/description, product types, tags
CATEGORY_MATCHING: dict[str, dict[str, list[str]]] = {
    "lingerie": {
        "keywords": ["lingerie", "bra", "bralette", "bra set", "corset", "bustier", "teddy",
                     "bodysuit", "garter", "stockings", "thong", "panties set", "matching set"],
        "product_types": ["lingerie", "bra", "bralette", "underwear set"],
        "tags": ["lingerie", "bra", "bralette", "matching set"],
    },
    "underwear": {
        "keywords": ["underwear", "panties", "brief", "thong", "g-string", "boy short",
                     "hipster", "bikini", "underwear set"],
        "product_types": ["underwear", "panties", "briefs", "thong"],
        "tags": ["underwear", "panties", "briefs", "thong"],
    },
    "sports": {
        "keywords": ["sport", "activewear", "athletic", "yoga", "gym", "workout", "fitness",
                     "running", "leggings", "sports bra", "athletic wear"],
        "product_types": ["activewear", "sportswear", "athletic", "yoga wear"],
        "tags": ["sport", "activewear", "athletic", "yoga", "fitness"],
    },
    "dresses": {
        "keywords": ["dress", "gown", "frock", "evening dress", "cocktail dress", "maxi dress",
                     "midi dress", "mini dress"],
        "product_types": ["dress", "gown", "evening wear"],
        "tags": ["dress", "gown", "evening"],
    },
    "clothes": {
        "keywords": ["top", "shirt", "blouse", "sweater", "cardigan", "jacket", "coat", "pants",
                     "trousers", "skirt", "shorts", "jumpsuit", "romper"],
        "product_types": ["top", "shirt", "blouse", "sweater", "jacket", "pants", "skirt"],
        "tags": ["clothing", "apparel", "fashion"],
    },
}

_TITLE_WEIGHT = 3
_DESCRIPTION_WEIGHT = 1
_PRODUCT_TYPE_WEIGHT = 5
_TAG_WEIGHT = 4


def _slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower().strip()).strip("-")


def generate_document_id(product: dict[str, Any]) -> str:
    """Stable document id: slug of the handle, then of the title, then the vendor id."""
    for key in ("handle", "title"):
        slug = _slugify(product.get(key) or "")
        if slug:
            return slug
    return f"shopify-product-{vendor_id(product.get('id'))}"


def parse_tags(tags: Any) -> list[str]:
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


def extract_image_urls(product: dict[str, Any]) -> list[str]:
    urls = []
    for image in product.get("images") or []:
        url = image.get("src") if isinstance(image, dict) else image
        if url:
            urls.append(url)
    return urls


def match_category(product: dict[str, Any]) -> str | None:
    """Best-scoring category slug for a vendor product, or None."""
    title = (product.get("title") or "").lower()
    description = (product.get("body_html") or "").lower()
    product_type = (product.get("product_type") or "").lower()
    tags = [t.lower() for t in parse_tags(product.get("tags"))]

    scores: dict[str, int] = {}
    for slug, rules in CATEGORY_MATCHING.items():
        score = 0
        for keyword in rules["keywords"]:
            if keyword in title:
                score += _TITLE_WEIGHT
            if keyword in description:
                score += _DESCRIPTION_WEIGHT
        if product_type and any(pt in product_type for pt in rules["product_types"]):
            score += _PRODUCT_TYPE_WEIGHT
        for tag in tags:
            if any(rule_tag in tag for rule_tag in rules["tags"]):
                score += _TAG_WEIGHT
        if score > 0:
            scores[slug] = score

    if not scores:
        return None
    # max() keeps the first of equal scores, i.e. CATEGORY_MATCHING order
    return max(scores, key=lambda slug: scores[slug])


def variant_index_fields(variants: list[dict[str, Any]]) -> dict[str, Any]:
    """Lookup keys and stock flags derived from a source item's variants.

    ``variant_ids`` and ``inventory_item_ids`` let inventory events find the
    source items they touch with an equality query.
    """
    return {
        "variant_ids": [vid for vid in (vendor_id(v.get("id")) for v in variants) if vid],
        "inventory_item_ids": [
            iid for iid in (vendor_id(v.get("inventory_item_id")) for v in variants) if iid
        ],
        **calculate_product_stock(variants).to_fields(),
    }


def _vendor_fields(product: dict[str, Any]) -> dict[str, Any]:
    return {
        "shopify_id": vendor_id(product.get("id")),
        "title": product.get("title"),
        "handle": product.get("handle"),
        "status": product.get("status"),
        "vendor": product.get("vendor"),
        "product_type": product.get("product_type"),
        "tags": parse_tags(product.get("tags")),
        "image_urls": extract_image_urls(product),
        "raw_product": product,
        **variant_index_fields(product.get("variants") or []),
    }


def build_source_item(product: dict[str, Any]) -> dict[str, Any]:
    """Source document for a vendor product not yet mirrored."""
    doc_id = generate_document_id(product)
    return {
        **_vendor_fields(product),
        "slug": doc_id,
        "matched_category_slug": match_category(product),
        "storefronts": [],
        "processed_storefronts": [],
        "fetched_at": utcnow(),
    }


def find_source_item(store: DocumentStore, product_id: Any) -> dict[str, Any] | None:
    return store.find_one(SOURCE_ITEMS, {"shopify_id": vendor_id(product_id)})


def store_new_product(store: DocumentStore, product: dict[str, Any]) -> tuple[str, str | None]:
    """Mirror a newly created vendor product (products/create).

    Re-delivery of the same product keeps the admin's storefront assignment.
    Returns (document id, matched category slug).
    """
    doc = build_source_item(product)
    existing = find_source_item(store, product.get("id"))
    doc_id = existing["id"] if existing else doc["slug"]
    if existing:
        doc.pop("storefronts")
        doc.pop("processed_storefronts")
        doc.pop("slug")
    store.set(SOURCE_ITEMS, doc_id, doc, merge=True)
    logger.info(
        "Stored source item %s (shopify_id=%s, category=%s)",
        doc_id,
        doc["shopify_id"],
        doc["matched_category_slug"],
    )
    return doc_id, doc["matched_category_slug"]


def _carry_inventory_levels(
    new_variants: list[dict[str, Any]], old_variants: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Keep per-location levels from the mirror; product payloads omit them.

    Levels whose total no longer matches the payload quantity are stale and
    are dropped; the next inventory webhook brings the fresh breakdown.
    """
    old_by_id = {vendor_id(v.get("id")): v for v in old_variants}
    merged = []
    for variant in new_variants:
        old = old_by_id.get(vendor_id(variant.get("id")))
        levels = (old or {}).get("inventory_levels")
        if levels and "inventory_levels" not in variant:
            quantity = variant.get("inventory_quantity")
            if quantity is None or total_available(levels) == variant_stock(variant):
                variant = {**variant, "inventory_levels": levels}
            else:
                logger.info(
                    "Dropping stale levels of variant %s (levels %d, payload %s)",
                    variant.get("id"),
                    total_available(levels),
                    quantity,
                )
        merged.append(variant)
    return merged


def update_source_item(store: DocumentStore, product: dict[str, Any]) -> dict[str, Any] | None:
    """Refresh the mirror of an updated vendor product (products/update).

    Returns the updated document, or None when the product is not mirrored.
    """
    existing = find_source_item(store, product.get("id"))
    if existing is None:
        logger.info("Source item for shopify_id=%s not found, skipping update", product.get("id"))
        return None

    old_variants = (existing.get("raw_product") or {}).get("variants") or []
    if "variants" in product:
        variants = _carry_inventory_levels(product["variants"] or [], old_variants)
    else:
        # payload without variants leaves them as mirrored
        variants = old_variants
    product = {**product, "variants": variants}
    fields = _vendor_fields(product)
    fields["title"] = fields["title"] or existing.get("title")
    if existing.get("title") != fields["title"]:
        logger.info("Title changed: %r -> %r", existing.get("title"), fields["title"])

    store.update(SOURCE_ITEMS, existing["id"], fields)
    logger.info("Updated source item %s", existing["id"])
    return {**existing, **fields}


def mark_source_item_deleted(store: DocumentStore, product_id: Any) -> str | None:
    """Flag a source item as deleted; history is kept for orders and analytics."""
    existing = find_source_item(store, product_id)
    if existing is None:
        return None
    store.update(SOURCE_ITEMS, existing["id"], {"status": STATUS_DELETED, "deleted_at": utcnow()})
    logger.info("Marked source item %s as deleted", existing["id"])
    return existing["id"]


def import_vendor_products(store: DocumentStore, client, skip_existing: bool = True) -> JobSummary:
    """Mirror every vendor product into the source collection."""
    products = client.fetch_all_products()
    logger.info("Fetched %d products from Shopify", len(products))

    summary = JobSummary()
    unmatched = 0
    for product in products:
        try:
            if skip_existing and find_source_item(store, product.get("id")):
                summary.skipped += 1
                continue
            _, category = store_new_product(store, product)
            if category is None:
                unmatched += 1
                summary.details.append(f"unmatched: {product.get('title')}")
            summary.updated += 1
        except Exception:
            logger.exception("Failed to import product %s", product.get("id"))
            summary.errors += 1

    logger.info(
        "Import complete: imported=%d skipped=%d unmatched=%d errors=%d",
        summary.updated,
        summary.skipped,
        unmatched,
        summary.errors,
    )
    return summary
