"""Webhook topic dispatcher: routes Shopify topics to pipeline entry points.

``parse_event`` validates the payload for its topic and extracts the changed
entity id; ``dispatch`` runs the handler and returns a JSON-ready summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from stocksync import catalog, orders, reconcile
from stocksync.errors import PayloadError
from stocksync.store import DocumentStore
from stocksync.webhooks.payloads import (
    FulfillmentPayload,
    InventoryItemPayload,
    InventoryLevelPayload,
    OrderPayload,
    ProductDeletePayload,
    ProductPayload,
    ShopifyPayload,
)

logger = logging.getLogger(__name__)


@dataclass
class WebhookEvent:
    """Validated webhook delivery ready for dispatch."""

    topic: str
    webhook_id: str
    entity_id: str
    payload: dict[str, Any]


def _inventory_level(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    return reconcile.reconcile_inventory_level(store, client, event.payload).to_dict()


def _inventory_item(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    return reconcile.reconcile_inventory_item(store, client, event.payload).to_dict()


def _product_create(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    doc_id, category = catalog.store_new_product(store, event.payload)
    return {"entity_id": event.entity_id, "source_item": doc_id, "category": category}


def _product_update(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    return reconcile.reconcile_product_update(store, event.payload).to_dict()


def _product_delete(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    return reconcile.reconcile_product_deletion(store, event.entity_id).to_dict()


def _order_sync(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    return {"entity_id": event.entity_id, "order": orders.sync_order(store, event.payload)}


def _order_cancel(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    order_id = orders.cancel_order(store, event.payload)
    return {"entity_id": event.entity_id, "order": order_id, "found": order_id is not None}


def _fulfillment_create(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    order_id = orders.record_fulfillment(store, event.payload)
    return {
        "entity_id": event.entity_id,
        "order": order_id,
        "tracking_number": event.payload.get("tracking_number"),
    }


Handler = Callable[[WebhookEvent, DocumentStore, Any], dict[str, Any]]

# topic -> (payload model, id field, handler)
_SHOPIFY_TOPICS: dict[str, tuple[type[ShopifyPayload], str, Handler]] = {
    "inventory_levels/update": (InventoryLevelPayload, "inventory_item_id", _inventory_level),
    "inventory_items/update": (InventoryItemPayload, "id", _inventory_item),
    "products/create": (ProductPayload, "id", _product_create),
    "products/update": (ProductPayload, "id", _product_update),
    "products/delete": (ProductDeletePayload, "id", _product_delete),
    "orders/create": (OrderPayload, "id", _order_sync),
    "orders/updated": (OrderPayload, "id", _order_sync),
    "orders/cancelled": (OrderPayload, "id", _order_cancel),
    "fulfillments/create": (FulfillmentPayload, "order_id", _fulfillment_create),
}

SUPPORTED_TOPICS = frozenset(_SHOPIFY_TOPICS)


def normalize_topic(topic: str | None) -> str:
    """``products-update`` and ``PRODUCTS/UPDATE`` both become ``products/update``."""
    topic = (topic or "").strip().strip("/").lower()
    if "/" not in topic and "-" in topic:
        resource, _, action = topic.rpartition("-")
        topic = f"{resource.replace('-', '_')}/{action}"
    return topic


def parse_event(topic: str, payload: Any, webhook_id: str | None = None) -> WebhookEvent | None:
    """Validate a payload for its topic.

    Returns None for topics we don't handle; raises PayloadError when the
    payload lacks the entity id or has the wrong shape.
    """
    topic = normalize_topic(topic)
    entry = _SHOPIFY_TOPICS.get(topic)
    if entry is None:
        logger.info("Unrecognized webhook topic: %s, skipping", topic)
        return None
    if not isinstance(payload, dict):
        raise PayloadError(f"{topic} payload is not an object")

    model, id_field, _ = entry
    try:
        parsed = model.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise PayloadError(f"{topic} payload invalid: {fields}") from e

    return WebhookEvent(
        topic=topic,
        webhook_id=webhook_id or "",
        entity_id=getattr(parsed, id_field),
        payload=payload,
    )


def dispatch(event: WebhookEvent, store: DocumentStore, client) -> dict[str, Any]:
    """Run the pipeline for one event. Exceptions propagate to the caller."""
    _, _, handler = _SHOPIFY_TOPICS[event.topic]
    logger.info("Dispatching webhook %s for %s", event.topic, event.entity_id)
    return handler(event, store, client)
