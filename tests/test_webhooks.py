"""Tests for the inbound Shopify webhook system.

Tests:
- Signature verification (constant-time HMAC, fail closed)
- Idempotency (Redis-based dedup, fail open)
- Topic parsing and payload validation
- Handler integration (full request flow against the in-memory store)
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from stocksync.errors import PayloadError
from stocksync.serve import create_app
from stocksync.store import SOURCE_ITEMS
from stocksync.webhooks.dispatcher import SUPPORTED_TOPICS, normalize_topic, parse_event
from stocksync.webhooks.idempotency import is_duplicate, release
from stocksync.webhooks.verification import verify_shopify, verify_webhook

SECRET = "test-webhook-secret"


# ── Signature Verification ────────────────────────────────────────────────


class TestShopifyVerification:
    """Shopify HMAC-SHA256 verification (base64-encoded)."""

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET)
    def test_valid_signature(self, sign):
        body = b'{"inventory_item_id": 3001}'
        assert verify_shopify(body, sign(body, SECRET)) is True

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET)
    def test_invalid_signature(self):
        assert verify_shopify(b'{"id": 1}', "invalid-signature") is False

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET)
    def test_tampered_body(self, sign):
        sig = sign(b'{"id": 1}', SECRET)
        assert verify_shopify(b'{"id": 2}', sig) is False

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET)
    def test_missing_signature(self):
        assert verify_shopify(b"body", None) is False

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", "")
    def test_missing_secret_rejects(self, sign):
        """No secret configured -> always reject (fail closed)."""
        body = b'{"id": 1}'
        assert verify_shopify(body, sign(body, "")) is False

    @patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET)
    def test_verify_webhook_reads_lowercase_header(self, sign):
        body = b"{}"
        assert verify_webhook({"x-shopify-hmac-sha256": sign(body, SECRET)}, body) is True
        assert verify_webhook({}, body) is False


# ── Idempotency ───────────────────────────────────────────────────────────


class TestIdempotency:
    @patch("stocksync.webhooks.idempotency._get_redis")
    def test_new_webhook_not_duplicate(self, mock_redis_fn):
        mock_r = MagicMock()
        mock_r.set.return_value = True
        mock_redis_fn.return_value = mock_r

        assert is_duplicate("products/update", "wh_123") is False
        key = mock_r.set.call_args[0][0]
        assert key == "webhook:seen:shopify:products/update:wh_123"
        assert mock_r.set.call_args[1] == {"nx": True, "ex": 86400}

    @patch("stocksync.webhooks.idempotency._get_redis")
    def test_seen_webhook_is_duplicate(self, mock_redis_fn):
        mock_redis_fn.return_value.set.return_value = None
        assert is_duplicate("products/update", "wh_123") is True

    @patch("stocksync.webhooks.idempotency._get_redis")
    def test_redis_down_allows_through(self, mock_redis_fn):
        mock_redis_fn.side_effect = Exception("Redis connection refused")
        assert is_duplicate("products/update", "wh_123") is False

    def test_empty_webhook_id_not_duplicate(self):
        assert is_duplicate("products/update", "") is False

    @patch("stocksync.webhooks.idempotency._get_redis")
    def test_release_deletes_key(self, mock_redis_fn):
        release("orders/create", "wh_9")
        mock_redis_fn.return_value.delete.assert_called_once_with("webhook:seen:shopify:orders/create:wh_9")


# ── Topic parsing ─────────────────────────────────────────────────────────


class TestParseEvent:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("products/update", "products/update"),
            ("PRODUCTS/UPDATE", "products/update"),
            ("inventory-levels-update", "inventory_levels/update"),
            ("/orders/cancelled/", "orders/cancelled"),
            (None, ""),
        ],
    )
    def test_normalize_topic(self, raw, expected):
        assert normalize_topic(raw) == expected

    def test_supported_topics(self):
        assert {
            "inventory_levels/update",
            "inventory_items/update",
            "products/create",
            "products/update",
            "products/delete",
            "orders/create",
            "orders/updated",
            "orders/cancelled",
            "fulfillments/create",
        } == set(SUPPORTED_TOPICS)

    def test_entity_id_extracted(self):
        event = parse_event("inventory_levels/update", {"inventory_item_id": 3001, "location_id": 1}, "wh_1")
        assert event.entity_id == "3001"
        assert event.webhook_id == "wh_1"
        assert event.payload["location_id"] == 1

    def test_gid_normalized(self):
        event = parse_event("products/delete", {"id": "gid://shopify/Product/77"})
        assert event.entity_id == "77"

    def test_fulfillment_keyed_by_order(self):
        assert parse_event("fulfillments/create", {"id": 1, "order_id": 42}).entity_id == "42"

    def test_unrecognized_topic(self):
        assert parse_event("carts/update", {"id": 1}) is None

    def test_missing_entity_id(self):
        with pytest.raises(PayloadError):
            parse_event("inventory_levels/update", {"location_id": 1, "available": 3})

    def test_non_object_payload(self):
        with pytest.raises(PayloadError):
            parse_event("products/update", [1, 2])


# ── Handler integration ───────────────────────────────────────────────────


@pytest.fixture
def redis_mock():
    with patch("stocksync.webhooks.idempotency._get_redis") as mock_redis_fn:
        mock_redis_fn.return_value.set.return_value = True
        yield mock_redis_fn.return_value


@pytest.fixture
def api(store, client, redis_mock):
    app = create_app(store=store, client=client)
    with patch("stocksync.webhooks.verification._SHOPIFY_WEBHOOK_SECRET", SECRET):
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c


@pytest.fixture
def post(api, sign):
    def _post(topic, payload, webhook_id="wh-1", path="/webhooks/shopify", signature=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Topic": topic,
            "X-Shopify-Hmac-Sha256": signature or sign(body, SECRET),
            "X-Shopify-Webhook-Id": webhook_id,
        }
        return api.post(path, content=body, headers=headers)

    return _post


class TestWebhookHandler:
    def test_inventory_level_update(self, post, store, make_product, seed_source, seed_storefront):
        doc_id = seed_source(store, make_product())
        seed_storefront(
            store, "LUNERA", "p1", "1001", [{"id": "sv1", "shopify_inventory_item_id": "3001", "stock": 5}]
        )

        resp = post("inventory_levels/update", {"inventory_item_id": 3001, "location_id": 10, "available": 2})

        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["topic"] == "inventory_levels/update"
        assert data["source_updated"] == 1
        assert data["storefronts"] == {"LUNERA": 2}
        assert store.get(SOURCE_ITEMS, doc_id)["total_stock"] == 2
        assert store.get("LUNERA.variants", "sv1")["stock"] == 2

    def test_bad_signature_rejected(self, post, store):
        resp = post("products/create", {"id": 1, "title": "X"}, signature="forged")
        assert resp.status_code == 401
        assert store.find(SOURCE_ITEMS) == []

    def test_missing_entity_id(self, post):
        resp = post("inventory_levels/update", {"location_id": 10, "available": 2})
        assert resp.status_code == 200
        assert resp.json()["ok"] is False

    def test_invalid_json(self, post):
        resp = post("products/create", b"{not json")
        assert resp.status_code == 200
        assert resp.json()["ok"] is False

    def test_unsupported_topic_skipped(self, post):
        resp = post("carts/update", {"id": 1})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "skipped": True}

    def test_duplicate_not_reprocessed(self, post, store, redis_mock):
        redis_mock.set.return_value = None
        resp = post("products/create", {"id": 1, "title": "Silk Dress", "variants": []})
        assert resp.json() == {"ok": True, "duplicate": True}
        assert store.find(SOURCE_ITEMS) == []

    def test_topic_from_path(self, post, store):
        resp = post("", {"id": 1, "title": "Silk Dress", "variants": []}, path="/webhooks/shopify/products-create")
        assert resp.status_code == 200
        assert resp.json()["source_item"] == "silk-dress"
        assert resp.json()["category"] == "dresses"

    @patch("stocksync.webhooks.handlers.dispatch")
    def test_failure_is_generic_500_and_releases_dedup(self, mock_dispatch, post, redis_mock):
        mock_dispatch.side_effect = RuntimeError("mongodb://user:secret@db")
        resp = post("products/update", {"id": 1}, webhook_id="wh-err")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
        assert "secret" not in resp.text
        redis_mock.delete.assert_called_once_with("webhook:seen:shopify:products/update:wh-err")

    def test_order_then_fulfillment(self, post, store):
        order = {
            "id": 5551,
            "order_number": 1001,
            "financial_status": "paid",
            "note_attributes": [{"name": "_storefront", "value": "LUNERA"}],
            "line_items": [],
        }
        assert post("orders/create", order).json()["ok"] is True
        resp = post("fulfillments/create", {"id": 9, "order_id": 5551, "tracking_number": "1Z"}, webhook_id="wh-2")
        assert resp.json()["tracking_number"] == "1Z"
        stored = store.find_one("LUNERA.orders", {"shopify_order_id": "5551"})
        assert stored["status"] == "shipped"

    def test_liveness(self, api):
        assert api.get("/webhooks/shopify").status_code == 200
        resp = api.get("/webhooks/shopify/inventory-levels-update")
        assert resp.json() == {"message": "Shopify inventory_levels/update webhook endpoint is active"}

    def test_status_counts(self, api, post):
        post("carts/update", {"id": 1})
        assert api.get("/webhooks/status").json()["counts"]["carts/update"] >= 1
