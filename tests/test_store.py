"""Tests for the document store and storefront discovery."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from stocksync.errors import StoreError
from stocksync.store import (
    MongoDocumentStore,
    discover_storefronts,
    storefront_collection,
)


class TestMemoryStore:
    def test_insert_and_get(self, store):
        doc_id = store.insert("things", {"name": "a"})
        doc = store.get("things", doc_id)
        assert doc["id"] == doc_id
        assert doc["name"] == "a"

    def test_insert_duplicate_id_raises(self, store):
        store.insert("things", {"name": "a"}, doc_id="x")
        with pytest.raises(StoreError):
            store.insert("things", {"name": "b"}, doc_id="x")

    def test_get_missing(self, store):
        assert store.get("things", "nope") is None

    def test_returned_docs_are_copies(self, store):
        store.set("things", "x", {"tags": ["a"]})
        store.get("things", "x")["tags"].append("b")
        assert store.get("things", "x")["tags"] == ["a"]

    def test_set_merge_and_replace(self, store):
        store.set("things", "x", {"a": 1, "b": 2})
        store.set("things", "x", {"b": 3})
        assert store.get("things", "x")["a"] == 1
        store.set("things", "x", {"c": 4}, merge=False)
        doc = store.get("things", "x")
        assert "a" not in doc
        assert doc["c"] == 4

    def test_set_keeps_created_at(self, store):
        with freeze_time("2026-01-01"):
            store.set("things", "x", {"a": 1})
        with freeze_time("2026-02-01"):
            store.set("things", "x", {"a": 2}, merge=False)
        doc = store.get("things", "x")
        assert doc["created_at"] == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert doc["updated_at"] == datetime(2026, 2, 1, tzinfo=timezone.utc)

    def test_update_dotted_path(self, store):
        store.set("things", "x", {"totals": {"a": 1}})
        store.update("things", "x", {"totals.b": 2})
        assert store.get("things", "x")["totals"] == {"a": 1, "b": 2}

    def test_update_missing_raises(self, store):
        with pytest.raises(StoreError):
            store.update("things", "x", {"a": 1})

    def test_find_equality_and_limit(self, store):
        for i in range(3):
            store.set("things", f"d{i}", {"kind": "even" if i % 2 == 0 else "odd"})
        assert {d["id"] for d in store.find("things", {"kind": "even"})} == {"d0", "d2"}
        assert len(store.find("things", limit=2)) == 2
        assert store.find_one("things", {"kind": "odd"})["id"] == "d1"

    def test_find_matches_array_membership(self, store):
        store.set("things", "x", {"ids": ["1", "2"]})
        assert store.find("things", {"ids": "2"})[0]["id"] == "x"
        assert store.find("things", {"ids": "3"}) == []

    def test_find_nested_field(self, store):
        store.set("things", "x", {"meta": {"kind": "a"}})
        assert store.find_one("things", {"meta.kind": "a"})["id"] == "x"

    def test_delete(self, store):
        store.set("things", "x", {"a": 1})
        store.delete("things", "x")
        store.delete("things", "x")
        assert store.get("things", "x") is None


class TestStorefrontDiscovery:
    def test_collection_name(self):
        assert storefront_collection("LUNERA", "products") == "LUNERA.products"

    def test_configured_plus_discovered(self, store):
        store.set("FIVESTAR.products", "p1", {})
        store.set("source_items", "s1", {})
        store.set("LUNERA.orders", "o1", {})
        assert discover_storefronts(store) == ["LUNERA", "FIVESTAR"]

    def test_reserved_roots_skipped(self, store):
        store.set("source_items.products", "p1", {})
        assert discover_storefronts(store) == ["LUNERA"]

    @patch("stocksync.config.STOREFRONTS", [])
    def test_falls_back_to_default(self, store):
        assert discover_storefronts(store) == ["LUNERA"]

    def test_discovery_failure_uses_configured(self):
        broken = MagicMock()
        broken.collection_names.side_effect = RuntimeError("db down")
        assert discover_storefronts(broken) == ["LUNERA"]


class TestMongoStore:
    """MongoDB mapping of ids and upserts (pymongo client mocked)."""

    @pytest.fixture
    def mongo(self):
        with patch("pymongo.MongoClient") as mock_client_cls:
            db = MagicMock()
            mock_client_cls.return_value.__getitem__.return_value = db
            mongo = MongoDocumentStore("mongodb://test", "testdb")
            yield mongo, db

    def test_get_maps_id(self, mongo):
        store, db = mongo
        db.__getitem__.return_value.find_one.return_value = {"_id": "x", "a": 1}
        assert store.get("things", "x") == {"id": "x", "a": 1}

    def test_find_translates_id_filter(self, mongo):
        store, db = mongo
        coll = db.__getitem__.return_value
        coll.find.return_value = [{"_id": "x"}]
        assert store.find("things", {"id": "x"}) == [{"id": "x"}]
        coll.find.assert_called_once_with({"_id": "x"})

    def test_merge_set_upserts(self, mongo):
        store, db = mongo
        coll = db.__getitem__.return_value
        store.set("things", "x", {"a": 1})
        query, update = coll.update_one.call_args[0]
        assert query == {"_id": "x"}
        assert update["$set"]["a"] == 1
        assert "created_at" in update["$setOnInsert"]
        assert coll.update_one.call_args[1]["upsert"] is True

    def test_update_missing_raises(self, mongo):
        store, db = mongo
        db.__getitem__.return_value.update_one.return_value.matched_count = 0
        with pytest.raises(StoreError):
            store.update("things", "x", {"a": 1})
