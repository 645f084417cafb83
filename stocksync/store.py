"""Document store: the authoritative and denormalized collections.

Layout:
    source_items                    authoritative mirror, one doc per vendor product
    <STOREFRONT>.products           denormalized storefront copies
    <STOREFRONT>.variants           storefront variants (``product_id`` -> product)
    <STOREFRONT>.categories         curated categories
    <STOREFRONT>.orders             completed purchases

Every document is returned as a dict with its id under ``"id"``. Writes stamp
``updated_at`` (and ``created_at`` on first write).
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any

from stocksync import config
from stocksync.errors import StoreError
from stocksync.models import utcnow

logger = logging.getLogger(__name__)

SOURCE_ITEMS = "source_items"

PRODUCTS = "products"
VARIANTS = "variants"
CATEGORIES = "categories"
ORDERS = "orders"

# Root collections that never name a storefront
_RESERVED_ROOTS = {SOURCE_ITEMS, "carts", "users", "user_events", "shipping_rates", "system"}


def storefront_collection(storefront: str, segment: str) -> str:
    """Name of a storefront's collection, e.g. ``LUNERA.products``."""
    return f"{storefront}.{segment}"


def _new_id() -> str:
    return uuid.uuid4().hex


def _get_path(doc: dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(doc: dict[str, Any], filter_dict: dict[str, Any] | None) -> bool:
    for key, expected in (filter_dict or {}).items():
        value = doc.get("id") if key == "id" else _get_path(doc, key)
        # array fields match on membership, as in MongoDB
        if isinstance(value, list) and not isinstance(expected, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


class DocumentStore(ABC):
    """Minimal document-database interface (equality queries only)."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def find(
        self,
        collection: str,
        filter_dict: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    def insert(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str: ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = True) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Partially update an existing document. Raises StoreError if absent."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    def collection_names(self) -> list[str]: ...

    def find_one(self, collection: str, filter_dict: dict[str, Any]) -> dict[str, Any] | None:
        docs = self.find(collection, filter_dict, limit=1)
        return docs[0] if docs else None

    def close(self) -> None:
        """Release connections. No-op by default."""


class MemoryDocumentStore(DocumentStore):
    """In-process store for local runs and tests."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _out(self, doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return self._out(doc_id, doc) if doc is not None else None

    def find(self, collection, filter_dict=None, limit=None):
        with self._lock:
            results = []
            for doc_id, doc in self._collections.get(collection, {}).items():
                if _matches({**doc, "id": doc_id}, filter_dict):
                    results.append(self._out(doc_id, doc))
                    if limit is not None and len(results) >= limit:
                        break
            return results

    def insert(self, collection, data, doc_id=None):
        doc_id = doc_id or _new_id()
        now = utcnow()
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if doc_id in docs:
                raise StoreError(f"Document {collection}/{doc_id} already exists")
            body = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
            body.setdefault("created_at", now)
            body["updated_at"] = now
            docs[doc_id] = body
        return doc_id

    def set(self, collection, doc_id, data, merge=True):
        now = utcnow()
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            existing = docs.get(doc_id)
            body = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
            if existing is not None and merge:
                merged = copy.deepcopy(existing)
                merged.update(body)
                body = merged
            if existing is not None:
                body.setdefault("created_at", existing.get("created_at", now))
            else:
                body.setdefault("created_at", now)
            body["updated_at"] = now
            docs[doc_id] = body

    def update(self, collection, doc_id, fields):
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise StoreError(f"Document {collection}/{doc_id} not found")
            for key, value in fields.items():
                if key == "id":
                    continue
                target = doc
                parts = key.split(".")
                for part in parts[:-1]:
                    target = target.setdefault(part, {})
                target[parts[-1]] = copy.deepcopy(value)
            doc["updated_at"] = utcnow()

    def delete(self, collection, doc_id):
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    def collection_names(self):
        with self._lock:
            return [name for name, docs in self._collections.items() if docs]


class MongoDocumentStore(DocumentStore):
    """MongoDB-backed store. Storefront collections use dotted names."""

    def __init__(self, url: str | None = None, database: str | None = None):
        from pymongo import MongoClient

        self._client = MongoClient(url or config.MONGODB_URL)
        self._db = self._client[database or config.MONGODB_DATABASE]

    @staticmethod
    def _out(doc: dict[str, Any]) -> dict[str, Any]:
        doc["id"] = str(doc.pop("_id"))
        return doc

    @staticmethod
    def _query(filter_dict: dict[str, Any] | None) -> dict[str, Any]:
        query = dict(filter_dict or {})
        if "id" in query:
            query["_id"] = query.pop("id")
        return query

    def get(self, collection, doc_id):
        doc = self._db[collection].find_one({"_id": doc_id})
        return self._out(doc) if doc else None

    def find(self, collection, filter_dict=None, limit=None):
        cursor = self._db[collection].find(self._query(filter_dict))
        if limit:
            cursor = cursor.limit(limit)
        return [self._out(doc) for doc in cursor]

    def insert(self, collection, data, doc_id=None):
        from pymongo.errors import DuplicateKeyError

        now = utcnow()
        body = {k: v for k, v in data.items() if k != "id"}
        body.setdefault("created_at", now)
        body["updated_at"] = now
        body["_id"] = doc_id or _new_id()
        try:
            self._db[collection].insert_one(body)
        except DuplicateKeyError as e:
            raise StoreError(f"Document {collection}/{body['_id']} already exists") from e
        return body["_id"]

    def set(self, collection, doc_id, data, merge=True):
        now = utcnow()
        body = {k: v for k, v in data.items() if k not in ("id", "created_at")}
        body["updated_at"] = now
        coll = self._db[collection]
        if merge:
            coll.update_one(
                {"_id": doc_id},
                {"$set": body, "$setOnInsert": {"created_at": data.get("created_at", now)}},
                upsert=True,
            )
        else:
            existing = coll.find_one({"_id": doc_id}, {"created_at": 1})
            body["created_at"] = (existing or {}).get("created_at") or data.get("created_at", now)
            coll.replace_one({"_id": doc_id}, body, upsert=True)

    def update(self, collection, doc_id, fields):
        body = {k: v for k, v in fields.items() if k != "id"}
        body["updated_at"] = utcnow()
        result = self._db[collection].update_one({"_id": doc_id}, {"$set": body})
        if result.matched_count == 0:
            raise StoreError(f"Document {collection}/{doc_id} not found")

    def delete(self, collection, doc_id):
        self._db[collection].delete_one({"_id": doc_id})

    def collection_names(self):
        return self._db.list_collection_names()

    def close(self):
        self._client.close()


def discover_storefronts(store: DocumentStore, segment: str = PRODUCTS) -> list[str]:
    """Configured storefronts plus any that hold a ``segment`` collection.

    Falls back to the default storefront when nothing is found.
    """
    found: list[str] = [name for name in config.STOREFRONTS if name]
    try:
        names = store.collection_names()
    except Exception:
        logger.exception("Storefront discovery failed, using configured list")
        return found or [config.DEFAULT_STOREFRONT]

    suffix = f".{segment}"
    for name in sorted(names):
        if not name.endswith(suffix):
            continue
        storefront = name[: -len(suffix)]
        if storefront and storefront not in _RESERVED_ROOTS and storefront not in found:
            found.append(storefront)
    return found or [config.DEFAULT_STOREFRONT]


def get_store() -> DocumentStore:
    """Build the configured store (MongoDB)."""
    logger.info("Connecting to MongoDB database %s", config.MONGODB_DATABASE)
    return MongoDocumentStore()
