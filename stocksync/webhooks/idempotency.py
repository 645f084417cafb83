"""Webhook deduplication in Redis.

- Delivery ids (X-Shopify-Webhook-Id) are kept for 24h
- Duplicates are acknowledged with 200 so Shopify stops retrying
- Key pattern: webhook:seen:shopify:{topic}:{webhook_id}
- If Redis is down, deliveries are processed (fail open)
"""

from __future__ import annotations

import logging

from stocksync import config

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours

_KEY_PREFIX = "webhook:seen:shopify"


def _get_redis():
    import redis as redis_lib

    return redis_lib.from_url(config.REDIS_URL, decode_responses=True)


def _key(topic: str, webhook_id: str) -> str:
    return f"{_KEY_PREFIX}:{topic}:{webhook_id}"


def is_duplicate(topic: str, webhook_id: str | None) -> bool:
    """Atomically check-and-mark a delivery (SET NX EX).

    Returns True if this delivery id was already seen.
    """
    if not webhook_id:
        return False

    try:
        r = _get_redis()
        was_set = r.set(_key(topic, webhook_id), "1", nx=True, ex=_DEDUP_TTL_SECONDS)
        if not was_set:
            logger.info("Duplicate webhook rejected: %s/%s", topic, webhook_id)
            return True
        return False
    except Exception:
        logger.warning(
            "Redis unavailable for webhook dedup, allowing %s/%s",
            topic,
            webhook_id,
            exc_info=True,
        )
        return False


def release(topic: str, webhook_id: str | None) -> None:
    """Forget a delivery whose processing failed so Shopify's retry is accepted."""
    if not webhook_id:
        return
    try:
        _get_redis().delete(_key(topic, webhook_id))
    except Exception:
        logger.warning("Failed to release webhook %s/%s", topic, webhook_id, exc_info=True)
