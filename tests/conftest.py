"""Shared fixtures for the stocksync test suite.

Tests run against the in-memory document store and a mocked Shopify client;
nothing here touches the network, MongoDB or Redis.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any
from unittest.mock import MagicMock

import pytest

from stocksync import config
from stocksync.models import InventoryLevel, InventoryLevels
from stocksync.shopify.client import ShopifyAdminClient
from stocksync.store import PRODUCTS, SOURCE_ITEMS, VARIANTS, MemoryDocumentStore, storefront_collection

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def _storefront_config(monkeypatch):
    """Pin the configured storefronts regardless of the local environment."""
    monkeypatch.setattr(config, "STOREFRONTS", ["LUNERA"])
    monkeypatch.setattr(config, "DEFAULT_STOREFRONT", "LUNERA")
    monkeypatch.setattr(config, "LOCATION_MARKETS", {})


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def client() -> MagicMock:
    """Shopify client mock with credentials configured and no levels found."""
    mock = MagicMock(spec=ShopifyAdminClient)
    mock.configured = True
    mock.fetch_inventory_levels.return_value = None
    return mock


def _make_levels(item_id: str, *levels: tuple[str, int]) -> InventoryLevels:
    return InventoryLevels(
        inventory_item_id=item_id,
        levels=[
            InventoryLevel(location_id=loc, available=qty, updated_at="2026-01-01T00:00:00+00:00")
            for loc, qty in levels
        ],
    )


def _vendor_variant(variant_id: int, item_id: int, qty: int = 0, **extra: Any) -> dict[str, Any]:
    return {
        "id": variant_id,
        "inventory_item_id": item_id,
        "inventory_quantity": qty,
        "inventory_policy": "deny",
        "price": "19.99",
        **extra,
    }


def _vendor_product(product_id: int = 1001, variants: list | None = None, **extra: Any) -> dict[str, Any]:
    return {
        "id": product_id,
        "title": "Lace Bralette",
        "handle": "lace-bralette",
        "status": "active",
        "product_type": "Bralette",
        "tags": "lingerie, lace",
        "images": [{"src": "https://cdn.example.com/a.jpg", "variant_ids": []}],
        "variants": variants if variants is not None else [_vendor_variant(2001, 3001, 5)],
        **extra,
    }


def _seed_source_item(store, product: dict[str, Any], storefronts: list[str] | None = None) -> str:
    from stocksync.catalog import store_new_product

    doc_id, _ = store_new_product(store, product)
    if storefronts:
        store.update(SOURCE_ITEMS, doc_id, {"storefronts": storefronts})
    return doc_id


def _seed_storefront_product(
    store,
    storefront: str,
    product_id: str,
    source_shopify_id: str,
    variants: list[dict[str, Any]],
    **fields: Any,
) -> None:
    """Write a storefront product and its variants (``product_id`` links them)."""
    store.set(
        storefront_collection(storefront, PRODUCTS),
        product_id,
        {"source_shopify_id": source_shopify_id, "active": True, **fields},
        merge=False,
    )
    for variant in variants:
        variant_id = variant.pop("id")
        store.set(
            storefront_collection(storefront, VARIANTS),
            variant_id,
            {"product_id": product_id, **variant},
            merge=False,
        )


def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


# Factories are exposed as fixtures so test modules need no helper imports.


@pytest.fixture
def make_levels():
    return _make_levels


@pytest.fixture
def make_variant():
    return _vendor_variant


@pytest.fixture
def make_product():
    return _vendor_product


@pytest.fixture
def seed_source():
    return _seed_source_item


@pytest.fixture
def seed_storefront():
    return _seed_storefront_product


@pytest.fixture
def sign():
    return _sign
