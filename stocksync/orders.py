"""Vendor orders mirrored into per-storefront order collections."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from stocksync import config
from stocksync.errors import PayloadError
from stocksync.models import utcnow, vendor_id
from stocksync.store import ORDERS, DocumentStore, discover_storefronts, storefront_collection

logger = logging.getLogger(__name__)

# Fast lookup for order-confirmation pages, keyed by confirmation number
ORDER_CONFIRMATIONS = "order_confirmations"

DEFAULT_MARKET = "DE"

STATUS_MAP = {
    "pending": "pending",
    "authorized": "paid",
    "paid": "paid",
    "partially_paid": "paid",
    "partially_refunded": "paid",
    "refunded": "cancelled",
    "voided": "cancelled",
    "cancelled": "cancelled",
    "fulfilled": "shipped",
    "partially_fulfilled": "shipped",
}


def _money(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp %r", value)
        return None


def _note_attribute(order: dict[str, Any], *names: str) -> str | None:
    for attr in order.get("note_attributes") or []:
        if attr.get("name") in names and attr.get("value"):
            return attr["value"]
    return None


def order_status(order: dict[str, Any]) -> str:
    return (
        STATUS_MAP.get(order.get("financial_status") or "")
        or STATUS_MAP.get(order.get("fulfillment_status") or "")
        or "pending"
    )


def order_storefront(order: dict[str, Any]) -> str:
    return _note_attribute(order, "_storefront", "storefront") or config.DEFAULT_STOREFRONT


def order_market(order: dict[str, Any]) -> str:
    from_attributes = _note_attribute(order, "_market", "storefront_market")
    from_country = ((order.get("shipping_address") or {}).get("country_code") or "").upper()
    return from_attributes or from_country or DEFAULT_MARKET


def _shipping_total(order: dict[str, Any]) -> float:
    amount = (((order.get("total_shipping_price_set") or {}).get("shop_money")) or {}).get("amount")
    if amount is not None:
        return _money(amount)
    return sum(_money(line.get("price")) for line in order.get("shipping_lines") or [])


def _shipping_address(address: dict[str, Any] | None) -> dict[str, Any] | None:
    if not address:
        return None
    return {
        "name": f"{address.get('first_name') or ''} {address.get('last_name') or ''}".strip(),
        "address1": address.get("address1") or "",
        "address2": address.get("address2"),
        "city": address.get("city") or "",
        "state": address.get("province") or "",
        "zip": address.get("zip") or "",
        "country": address.get("country") or "",
        "phone": address.get("phone"),
    }


def fulfillment_fields(fulfillment: dict[str, Any]) -> dict[str, Any]:
    return {
        "shipped_at": _parse_time(fulfillment.get("created_at")) or utcnow(),
        "tracking_number": fulfillment.get("tracking_number"),
        "tracking_company": fulfillment.get("tracking_company"),
        "tracking_url": fulfillment.get("tracking_url"),
        "status": fulfillment.get("status") or "success",
    }


def transform_order(order: dict[str, Any]) -> dict[str, Any]:
    """Map a vendor order payload to the stored order document."""
    order_id = vendor_id(order.get("id"))
    if not order_id:
        raise PayloadError("Order payload has no id")

    items = []
    for line in order.get("line_items") or []:
        quantity = int(line.get("quantity") or 0)
        unit_price = _money(line.get("price"))
        items.append(
            {
                "product_id": vendor_id(line.get("product_id")),
                "variant_id": vendor_id(line.get("variant_id")),
                "quantity": quantity,
                "unit_price": unit_price,
                "subtotal": unit_price * quantity,
                "title": line.get("title") or "",
                "sku": line.get("sku"),
            }
        )

    transactions = order.get("transactions") or []
    fulfillments = order.get("fulfillments") or []
    order_number = order.get("order_number")

    return {
        "shopify_order_id": order_id,
        "order_number": str(order_number) if order_number is not None else order.get("name"),
        "confirmation_number": order.get("confirmation_number") or order.get("name"),
        "email": order.get("email"),
        "storefront": order_storefront(order),
        "market": order_market(order),
        "status": order_status(order),
        "items": items,
        "totals": {
            "subtotal": _money(order.get("subtotal_price")),
            "discounts": _money(order.get("total_discounts")),
            "tax": _money(order.get("total_tax")),
            "shipping": _shipping_total(order),
            "grand_total": _money(order.get("total_price")),
        },
        "shipping_address": _shipping_address(order.get("shipping_address")),
        "payment_summary": {
            "provider": order.get("gateway") or "unknown",
            "transaction_id": vendor_id(transactions[0].get("id")) if transactions else vendor_id(order_number),
            "gateway": (order.get("payment_gateway_names") or [None])[0],
        },
        "fulfillment": fulfillment_fields(fulfillments[0]) if fulfillments else None,
        "placed_at": _parse_time(order.get("created_at")) or utcnow(),
        "currency": order.get("currency") or "USD",
        "note": order.get("note"),
        "tags": order.get("tags") or [],
    }


def find_order(
    store: DocumentStore, shopify_order_id: Any, storefront: str | None = None
) -> tuple[str, dict[str, Any]] | None:
    """Locate an order by vendor id, in one storefront or across all of them."""
    order_id = vendor_id(shopify_order_id)
    storefronts = [storefront] if storefront else discover_storefronts(store, ORDERS)
    for name in storefronts:
        found = store.find_one(storefront_collection(name, ORDERS), {"shopify_order_id": order_id})
        if found:
            return name, found
    return None


def _write_confirmation(store: DocumentStore, doc: dict[str, Any]) -> None:
    """Write the confirmation-page entry. Failures are logged, not raised."""
    number = doc.get("confirmation_number")
    if not number:
        return
    try:
        store.set(
            ORDER_CONFIRMATIONS,
            str(number).lstrip("#"),
            {
                "order_id": doc["shopify_order_id"],
                "order_number": doc["order_number"],
                "storefront": doc["storefront"],
                "market": doc["market"],
                "email": doc["email"],
                "total": doc["totals"]["grand_total"],
                "currency": doc["currency"],
                "items": [
                    {"title": i["title"], "quantity": i["quantity"], "price": i["unit_price"]}
                    for i in doc["items"]
                ],
            },
        )
    except Exception:
        logger.exception("Failed to write confirmation %s", number)


def sync_order(store: DocumentStore, order: dict[str, Any]) -> str:
    """Create or update an order (orders/create, orders/updated).

    Returns the stored document id. ``created_at`` is never overwritten.
    """
    doc = transform_order(order)
    collection = storefront_collection(doc["storefront"], ORDERS)
    existing = store.find_one(collection, {"shopify_order_id": doc["shopify_order_id"]})
    if existing:
        doc_id = existing["id"]
        store.update(collection, doc_id, doc)
        logger.info("Updated order %s (Shopify order %s) in %s", doc_id, doc["shopify_order_id"], collection)
    else:
        doc_id = store.insert(collection, doc)
        logger.info("Created order %s (Shopify order %s) in %s", doc_id, doc["shopify_order_id"], collection)
    _write_confirmation(store, doc)
    return doc_id


def cancel_order(store: DocumentStore, order: dict[str, Any]) -> str | None:
    """Mark an order cancelled (orders/cancelled). None when it is unknown."""
    order_id = vendor_id(order.get("id"))
    if not order_id:
        raise PayloadError("Order payload has no id")
    found = find_order(store, order_id, _note_attribute(order, "_storefront", "storefront"))
    if found is None:
        found = find_order(store, order_id)
    if found is None:
        logger.info("Order %s not found, may have been cancelled before sync", order_id)
        return None
    storefront, doc = found
    store.update(
        storefront_collection(storefront, ORDERS),
        doc["id"],
        {"status": "cancelled", "cancelled_at": _parse_time(order.get("cancelled_at")) or utcnow()},
    )
    logger.info("Cancelled order %s (Shopify order %s)", doc["id"], order_id)
    return doc["id"]


def record_fulfillment(store: DocumentStore, fulfillment: dict[str, Any]) -> str | None:
    """Attach shipment details to an order (fulfillments/create)."""
    order_id = vendor_id(fulfillment.get("order_id"))
    if not order_id:
        raise PayloadError("Fulfillment payload has no order_id")
    found = find_order(store, order_id)
    if found is None:
        logger.info("Order %s not found for fulfillment %s", order_id, fulfillment.get("id"))
        return None
    storefront, doc = found
    store.update(
        storefront_collection(storefront, ORDERS),
        doc["id"],
        {"fulfillment": fulfillment_fields(fulfillment), "status": "shipped"},
    )
    logger.info("Recorded fulfillment for order %s (Shopify order %s)", doc["id"], order_id)
    return doc["id"]
