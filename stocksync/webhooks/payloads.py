"""Validated shapes of the Shopify webhook payloads we consume.

Only the fields the pipeline relies on are declared; everything else passes
through untouched. Ids are normalized to strings.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stocksync.models import vendor_id


class ShopifyPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class InventoryLevelPayload(ShopifyPayload):
    inventory_item_id: str = Field(description="Inventory item whose level changed")
    location_id: str | None = None
    available: int | None = None
    updated_at: str | None = None

    @field_validator("inventory_item_id", "location_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)


class InventoryItemPayload(ShopifyPayload):
    id: str = Field(description="Inventory item id")
    sku: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)


class ProductPayload(ShopifyPayload):
    id: str = Field(description="Product id")
    title: str | None = None
    variants: list[dict[str, Any]] | None = None
    images: list[Any] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)


class ProductDeletePayload(ShopifyPayload):
    id: str = Field(description="Deleted product id")

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)


class OrderPayload(ShopifyPayload):
    id: str = Field(description="Order id")
    note_attributes: list[dict[str, Any]] | None = None
    line_items: list[dict[str, Any]] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)


class FulfillmentPayload(ShopifyPayload):
    order_id: str = Field(description="Order the fulfillment belongs to")
    id: str | None = None
    tracking_number: str | None = None

    @field_validator("order_id", "id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str | None:
        return vendor_id(value)
