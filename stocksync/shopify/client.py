"""Shopify Admin API client.

REST is used where the webhook flow needs it (inventory levels, product
pages); GraphQL for everything else. All requests go through
``retry_with_backoff``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from stocksync import config
from stocksync.errors import ConfigurationError, VendorAPIError
from stocksync.models import InventoryLevels, vendor_id
from stocksync.shopify.retry import retry_with_backoff
from stocksync.stock import normalize_inventory_levels

logger = logging.getLogger(__name__)

_PAGE_SIZE = 250


class ShopifyAdminClient:
    """Thin wrapper over the Shopify Admin REST and GraphQL endpoints."""

    def __init__(
        self,
        store_url: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
        http: httpx.Client | None = None,
        page_delay: float = 0.5,
    ):
        self.store_url = store_url if store_url is not None else config.SHOPIFY_STORE_URL
        self.access_token = access_token if access_token is not None else config.SHOPIFY_ACCESS_TOKEN
        self.api_version = api_version or config.SHOPIFY_API_VERSION
        # Shopify allows ~2 REST calls/second on standard plans
        self.page_delay = page_delay
        self._http = http or httpx.Client(timeout=30.0)

    @property
    def configured(self) -> bool:
        return bool(self.store_url and self.access_token)

    @property
    def base_url(self) -> str:
        return f"https://{self.store_url}/admin/api/{self.api_version}"

    def _require_credentials(self) -> None:
        if not self.configured:
            raise ConfigurationError(
                "Missing Shopify Admin API credentials. Set SHOPIFY_STORE_URL and SHOPIFY_ACCESS_TOKEN."
            )

    def _headers(self) -> dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    @retry_with_backoff(max_retries=3, base_delay=1.0, max_delay=30.0)
    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = self._http.request(method, url, headers=self._headers(), **kwargs)
        response.raise_for_status()
        return response

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self._require_credentials()
        try:
            return self._send(method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            raise VendorAPIError(
                f"Shopify API error: {e.response.status_code} {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise VendorAPIError(f"Shopify API unreachable: {type(e).__name__}") from e

    def graphql(self, query: str, variables: dict | None = None) -> dict[str, Any]:
        """Execute a GraphQL Admin API request and return ``data``."""
        response = self._request(
            "POST",
            f"{self.base_url}/graphql.json",
            json={"query": query, "variables": variables or {}},
        )
        body = response.json()
        if body.get("errors"):
            raise VendorAPIError(f"Shopify GraphQL errors: {body['errors']}")
        return body.get("data") or {}

    def fetch_variant_inventory(self, product_id: Any) -> dict[str, int]:
        """Vendor-side stock per variant id for one product."""
        query = """
        query ($id: ID!) {
          product(id: $id) {
            id
            totalInventory
            variants(first: 100) {
              edges {
                node {
                  id
                  inventoryQuantity
                }
              }
            }
          }
        }
        """
        gid = f"gid://shopify/Product/{vendor_id(product_id)}"
        product = self.graphql(query, {"id": gid}).get("product")
        if not product:
            return {}
        return {
            vendor_id(edge["node"]["id"]): int(edge["node"].get("inventoryQuantity") or 0)
            for edge in product.get("variants", {}).get("edges", [])
        }

    def fetch_inventory_levels(self, inventory_item_id: Any) -> InventoryLevels | None:
        """All location levels for an inventory item, or None if it has none."""
        item_id = vendor_id(inventory_item_id)
        response = self._request(
            "GET",
            f"{self.base_url}/inventory_levels.json",
            params={"inventory_item_ids": item_id},
        )
        levels = response.json().get("inventory_levels") or []
        if not levels:
            return None
        return InventoryLevels(
            inventory_item_id=item_id or "",
            levels=normalize_inventory_levels(levels),
        )

    def fetch_product(self, product_id: Any) -> dict[str, Any] | None:
        try:
            response = self._request("GET", f"{self.base_url}/products/{vendor_id(product_id)}.json")
        except VendorAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json().get("product")

    def fetch_all_products(self) -> list[dict[str, Any]]:
        """Every product in the shop, following cursor pagination."""
        products: list[dict[str, Any]] = []
        params: dict[str, Any] = {"limit": _PAGE_SIZE}
        url = f"{self.base_url}/products.json"

        while True:
            response = self._request("GET", url, params=params)
            page = response.json().get("products") or []
            products.extend(page)
            logger.info("Fetched %d products (total: %d)", len(page), len(products))

            next_url = response.links.get("next", {}).get("url")
            if not next_url:
                break
            page_info = httpx.URL(next_url).params.get("page_info")
            if not page_info:
                break
            # page_info cursors may not be combined with other filters
            params = {"limit": _PAGE_SIZE, "page_info": page_info}
            if self.page_delay:
                time.sleep(self.page_delay)

        return products

    def close(self) -> None:
        self._http.close()


def get_client() -> ShopifyAdminClient:
    return ShopifyAdminClient()
