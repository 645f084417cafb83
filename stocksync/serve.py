"""FastAPI application: webhook receiver plus admin job routes.

Run with ``python -m stocksync.serve`` or ``stocksync serve``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from stocksync import __version__, catalog, jobs, reconcile
from stocksync.errors import ConfigurationError, PayloadError, StoreError, VendorAPIError
from stocksync.logging_setup import configure_logging
from stocksync.orders import DEFAULT_MARKET
from stocksync.shopify import get_client
from stocksync.store import DocumentStore, get_store
from stocksync.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


def _vendor_unavailable(e: ConfigurationError | VendorAPIError) -> HTTPException:
    """503 when Shopify credentials are missing, 502 when Shopify fails."""
    logger.warning("Shopify call failed: %s", e)
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=503, detail="Shopify credentials not configured")
    return HTTPException(status_code=502, detail="Shopify API error")


class VariantDeleteRequest(BaseModel):
    variant_id: str | None = Field(default=None, description="Shopify variant id")
    inventory_item_id: str | None = Field(default=None, description="Shopify inventory item id")


def create_app(store: DocumentStore | None = None, client=None) -> FastAPI:
    """Build the app. Missing collaborators are created at startup and
    closed at shutdown; injected ones are left to the caller."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = []
        if app.state.store is None:
            app.state.store = get_store()
            owned.append(app.state.store)
        if app.state.client is None:
            app.state.client = get_client()
            owned.append(app.state.client)
        logger.info("stocksync %s started", __version__)
        try:
            yield
        finally:
            for resource in owned:
                resource.close()
            logger.info("stocksync stopped")

    app = FastAPI(title="stocksync", version=__version__, lifespan=lifespan)
    app.state.store = store
    app.state.client = client

    register_webhook_routes(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    @app.post("/admin/sync-stock")
    async def sync_stock():
        summary = await run_in_threadpool(jobs.sync_stock_from_source_items, app.state.store)
        return summary.to_dict()

    @app.post("/admin/recalculate-stock")
    async def recalculate_stock():
        summary = await run_in_threadpool(jobs.recalculate_product_stock, app.state.store)
        return summary.to_dict()

    @app.post("/admin/import-products")
    async def import_products(skip_existing: bool = True):
        try:
            summary = await run_in_threadpool(
                catalog.import_vendor_products, app.state.store, app.state.client, skip_existing
            )
        except (ConfigurationError, VendorAPIError) as e:
            raise _vendor_unavailable(e)
        return summary.to_dict()

    @app.post("/admin/source-items/{doc_id}/reprocess")
    async def reprocess(doc_id: str):
        try:
            result = await run_in_threadpool(jobs.reprocess_source_item, app.state.store, doc_id)
        except StoreError:
            raise HTTPException(status_code=404, detail="Source item not found")
        return result.to_dict()

    @app.get("/admin/source-items/{doc_id}/stock")
    async def source_stock(doc_id: str):
        try:
            status = await run_in_threadpool(jobs.source_item_stock, app.state.store, doc_id)
        except StoreError:
            raise HTTPException(status_code=404, detail="Source item not found")
        return {"id": doc_id, **status.to_fields()}

    @app.get("/admin/source-items/{doc_id}/drift")
    async def source_drift(doc_id: str):
        try:
            drift = await run_in_threadpool(
                jobs.check_source_item_drift, app.state.store, app.state.client, doc_id
            )
        except StoreError:
            raise HTTPException(status_code=404, detail="Source item not found")
        except (ConfigurationError, VendorAPIError) as e:
            raise _vendor_unavailable(e)
        return {"id": doc_id, "in_sync": not drift, "variants": drift}

    @app.get("/admin/source-items/{doc_id}/availability")
    async def source_availability(doc_id: str, market: str = DEFAULT_MARKET):
        market = market.upper()
        try:
            variants = await run_in_threadpool(
                jobs.source_item_market_availability, app.state.store, doc_id, market
            )
        except StoreError:
            raise HTTPException(status_code=404, detail="Source item not found")
        return {"id": doc_id, "market": market, "variants": variants}

    @app.post("/admin/variants/delete")
    async def delete_variant(body: VariantDeleteRequest):
        try:
            result = await run_in_threadpool(
                reconcile.delete_variant, app.state.store, body.variant_id, body.inventory_item_id
            )
        except PayloadError:
            raise HTTPException(status_code=422, detail="variant_id or inventory_item_id required")
        return result.to_dict()

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
