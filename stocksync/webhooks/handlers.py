"""Webhook HTTP handlers: FastAPI routes for inbound Shopify webhooks.

Each delivery:
1. Reads the raw body (needed for HMAC verification)
2. Verifies the signature
3. Parses and validates the payload for its topic
4. Checks idempotency (duplicates are acknowledged, not reprocessed)
5. Runs the pipeline before answering, so a 500 makes Shopify redeliver

Response contract:
- 401 only for signature failures
- 200 with ok=false for payloads without the entity id (retrying won't help)
- 500 with a generic message for unexpected failures, never error details
- Every delivery gets a WEBHOOK_AUDIT log line
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from stocksync.errors import PayloadError
from stocksync.webhooks.dispatcher import dispatch, normalize_topic, parse_event
from stocksync.webhooks.idempotency import is_duplicate, release
from stocksync.webhooks.verification import verify_webhook

logger = logging.getLogger(__name__)

# Webhook receive counter per topic, exposed on /webhooks/status
_webhook_counts: dict[str, int] = {}


def _log_webhook(topic: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[topic] = _webhook_counts.get(topic, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT topic=%s id=%s status=%s count=%d",
        topic,
        webhook_id or "-",
        status,
        _webhook_counts[topic],
    )


async def _handle_webhook(request: Request, path_topic: str | None = None) -> JSONResponse:
    start = time.time()
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    topic = normalize_topic(path_topic or headers.get("x-shopify-topic"))
    webhook_id = headers.get("x-shopify-webhook-id", "")

    # 1. Verify signature
    if not verify_webhook(headers, body):
        _log_webhook(topic or "unknown", webhook_id, "signature_failed")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    # 2. Parse JSON payload and validate it for the topic
    try:
        payload = json.loads(body)
        event = parse_event(topic, payload, webhook_id)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _log_webhook(topic or "unknown", webhook_id, "invalid_json")
        return JSONResponse({"ok": False, "error": "Invalid payload"}, status_code=200)
    except PayloadError as e:
        logger.warning("Rejected %s payload: %s", topic, e)
        _log_webhook(topic, webhook_id, "invalid_payload")
        return JSONResponse({"ok": False, "error": "Missing entity id"}, status_code=200)

    if event is None:
        _log_webhook(topic or "unknown", webhook_id, "skipped")
        return JSONResponse({"ok": True, "skipped": True}, status_code=200)

    # 3. Check idempotency
    if is_duplicate(event.topic, webhook_id):
        _log_webhook(event.topic, webhook_id, "duplicate")
        return JSONResponse({"ok": True, "duplicate": True}, status_code=200)

    # 4. Reconcile and propagate
    try:
        result = await run_in_threadpool(
            dispatch, event, request.app.state.store, request.app.state.client
        )
    except Exception:
        logger.exception("Failed to process webhook %s for %s", event.topic, event.entity_id)
        release(event.topic, webhook_id)
        _log_webhook(event.topic, webhook_id, "failed")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    status = "processed" if not result.get("errors") else "partial"
    _log_webhook(event.topic, webhook_id, status)
    logger.debug("Webhook processed in %.1fms: %s", (time.time() - start) * 1000, event.topic)
    return JSONResponse({"ok": True, "topic": event.topic, **result}, status_code=200)


def register_webhook_routes(app: FastAPI) -> None:
    """Register the webhook endpoints. The app must carry ``state.store``
    and ``state.client``."""

    @app.post("/webhooks/shopify")
    async def shopify_webhook(request: Request):
        """Receive Shopify webhooks, topic from X-Shopify-Topic."""
        return await _handle_webhook(request)

    @app.post("/webhooks/shopify/{topic:path}")
    async def shopify_webhook_with_topic(request: Request, topic: str):
        """Receive Shopify webhooks with the topic as a subpath."""
        return await _handle_webhook(request, topic)

    @app.get("/webhooks/shopify")
    async def shopify_webhook_alive():
        return {"message": "Shopify webhook endpoint is active"}

    @app.get("/webhooks/shopify/{topic:path}")
    async def shopify_topic_alive(topic: str):
        return {"message": f"Shopify {normalize_topic(topic)} webhook endpoint is active"}

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook receive counts per topic."""
        return {"counts": dict(_webhook_counts)}

    logger.info("Webhook routes registered: /webhooks/shopify")
