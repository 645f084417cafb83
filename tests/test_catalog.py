"""Tests for the source-item catalog (products/create, products/update, import)."""

from __future__ import annotations

from stocksync.catalog import (
    build_source_item,
    find_source_item,
    generate_document_id,
    import_vendor_products,
    mark_source_item_deleted,
    match_category,
    parse_tags,
    store_new_product,
    update_source_item,
)
from stocksync.store import SOURCE_ITEMS


class TestDocumentId:
    def test_handle_slug(self):
        assert generate_document_id({"handle": "Lace Bralette!", "title": "x"}) == "lace-bralette"

    def test_title_fallback(self):
        assert generate_document_id({"title": "Silk  Dress"}) == "silk-dress"

    def test_vendor_id_fallback(self):
        assert generate_document_id({"id": 5, "title": "!!!"}) == "shopify-product-5"


class TestCategoryMatching:
    def test_lingerie(self, make_product):
        assert match_category(make_product()) == "lingerie"

    def test_no_match(self):
        assert match_category({"title": "Gift card", "product_type": "", "tags": ""}) is None

    def test_tie_resolves_in_declared_order(self):
        assert match_category({"title": "dress top"}) == "dresses"

    def test_product_type_outweighs_description(self):
        product = {"title": "Classic", "body_html": "a lovely dress", "product_type": "Leggings activewear"}
        assert match_category(product) == "sports"

    def test_parse_tags(self):
        assert parse_tags("a, b ,,c") == ["a", "b", "c"]
        assert parse_tags(["x", " "]) == ["x"]
        assert parse_tags(None) == []


class TestBuildSourceItem:
    def test_fields(self, make_product, make_variant):
        product = make_product(variants=[make_variant(1, 11, 2), make_variant(2, 12, 0)])
        doc = build_source_item(product)
        assert doc["shopify_id"] == "1001"
        assert doc["slug"] == "lace-bralette"
        assert doc["storefronts"] == []
        assert doc["variant_ids"] == ["1", "2"]
        assert doc["inventory_item_ids"] == ["11", "12"]
        assert doc["total_stock"] == 2
        assert doc["in_stock_variant_count"] == 1
        assert doc["image_urls"] == ["https://cdn.example.com/a.jpg"]
        assert doc["tags"] == ["lingerie", "lace"]


class TestStoreNewProduct:
    def test_creates_source_item(self, store, make_product):
        doc_id, category = store_new_product(store, make_product())
        assert (doc_id, category) == ("lace-bralette", "lingerie")
        assert store.get(SOURCE_ITEMS, doc_id)["shopify_id"] == "1001"

    def test_redelivery_keeps_assignment(self, store, make_product, seed_source):
        doc_id = seed_source(store, make_product(), storefronts=["LUNERA"])
        again_id, _ = store_new_product(store, make_product(title="Renamed"))
        assert again_id == doc_id
        doc = store.get(SOURCE_ITEMS, doc_id)
        assert doc["storefronts"] == ["LUNERA"]
        assert doc["title"] == "Renamed"


class TestUpdateSourceItem:
    def test_not_mirrored(self, store, make_product):
        assert update_source_item(store, make_product()) is None

    def test_updates_fields_and_keeps_admin_fields(self, store, make_product, make_variant, seed_source):
        doc_id = seed_source(store, make_product(), storefronts=["LUNERA"])
        updated = update_source_item(store, make_product(variants=[make_variant(2001, 3001, 0)]))
        assert updated["id"] == doc_id
        doc = store.get(SOURCE_ITEMS, doc_id)
        assert doc["storefronts"] == ["LUNERA"]
        assert doc["total_stock"] == 0
        assert doc["has_in_stock_variants"] is False

    def test_carries_inventory_levels(self, store, make_product, seed_source):
        doc_id = seed_source(store, make_product())
        raw = store.get(SOURCE_ITEMS, doc_id)["raw_product"]
        raw["variants"][0]["inventory_levels"] = [{"location_id": "1", "available": 5}]
        store.update(SOURCE_ITEMS, doc_id, {"raw_product": raw})

        update_source_item(store, make_product())
        variant = store.get(SOURCE_ITEMS, doc_id)["raw_product"]["variants"][0]
        assert variant["inventory_levels"] == [{"location_id": "1", "available": 5}]

    def test_drops_levels_that_disagree_with_quantity(self, store, make_product, make_variant, seed_source):
        doc_id = seed_source(store, make_product())
        raw = store.get(SOURCE_ITEMS, doc_id)["raw_product"]
        raw["variants"][0]["inventory_levels"] = [{"location_id": "1", "available": 5}]
        store.update(SOURCE_ITEMS, doc_id, {"raw_product": raw})

        update_source_item(store, make_product(variants=[make_variant(2001, 3001, 3)]))
        doc = store.get(SOURCE_ITEMS, doc_id)
        assert "inventory_levels" not in doc["raw_product"]["variants"][0]
        assert doc["total_stock"] == 3

    def test_missing_variants_key_keeps_mirrored_variants(self, store, make_product, seed_source):
        doc_id = seed_source(store, make_product())
        payload = make_product(status="draft")
        del payload["variants"]

        update_source_item(store, payload)
        doc = store.get(SOURCE_ITEMS, doc_id)
        assert doc["inventory_item_ids"] == ["3001"]
        assert doc["variant_ids"] == ["2001"]
        assert doc["raw_product"]["variants"][0]["inventory_quantity"] == 5

    def test_missing_title_keeps_existing(self, store, make_product, seed_source):
        doc_id = seed_source(store, make_product())
        update_source_item(store, make_product(title=None))
        assert store.get(SOURCE_ITEMS, doc_id)["title"] == "Lace Bralette"


class TestMarkDeleted:
    def test_marks_status(self, store, make_product, seed_source):
        doc_id = seed_source(store, make_product())
        assert mark_source_item_deleted(store, "gid://shopify/Product/1001") == doc_id
        doc = store.get(SOURCE_ITEMS, doc_id)
        assert doc["status"] == "deleted"
        assert doc["deleted_at"] is not None

    def test_unknown_product(self, store):
        assert mark_source_item_deleted(store, 42) is None


class TestImport:
    def test_counts(self, store, client, make_product, seed_source):
        seed_source(store, make_product(product_id=1))
        client.fetch_all_products.return_value = [
            make_product(product_id=1),
            make_product(product_id=2, handle="silk-dress", title="Silk Dress", product_type="Dress", tags=""),
            make_product(product_id=3, handle="gift-card", title="Gift Card", product_type="", tags=""),
        ]
        summary = import_vendor_products(store, client)
        assert summary.updated == 2
        assert summary.skipped == 1
        assert summary.errors == 0
        assert summary.details == ["unmatched: Gift Card"]
        assert find_source_item(store, 2)["matched_category_slug"] == "dresses"

    def test_reimport_all(self, store, client, make_product, seed_source):
        seed_source(store, make_product())
        client.fetch_all_products.return_value = [make_product()]
        summary = import_vendor_products(store, client, skip_existing=False)
        assert summary.updated == 1
        assert summary.skipped == 0
