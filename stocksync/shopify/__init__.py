"""Shopify Admin API access (REST + GraphQL)."""

from stocksync.shopify.client import ShopifyAdminClient, get_client

__all__ = ["ShopifyAdminClient", "get_client"]
