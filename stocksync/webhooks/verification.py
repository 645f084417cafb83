"""Shopify webhook signature verification.

- Comparison uses hmac.compare_digest() (constant time)
- A missing secret rejects every delivery (fail closed)
- Verification failure -> 401, the payload is never parsed
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Mapping

from stocksync import config

logger = logging.getLogger(__name__)

_SHOPIFY_WEBHOOK_SECRET = config.SHOPIFY_WEBHOOK_SECRET

SIGNATURE_HEADER = "x-shopify-hmac-sha256"


def verify_shopify(body: bytes, signature_header: str | None) -> bool:
    """Check the base64 HMAC-SHA256 of the raw body against the header."""
    if not _SHOPIFY_WEBHOOK_SECRET:
        logger.warning("SHOPIFY_WEBHOOK_SECRET not set, rejecting webhook")
        return False
    if not signature_header:
        return False

    computed = hmac.new(
        _SHOPIFY_WEBHOOK_SECRET.encode("utf-8"),
        body,
        hashlib.sha256,
    ).digest()
    computed_b64 = base64.b64encode(computed).decode("utf-8")

    return hmac.compare_digest(computed_b64, signature_header.strip())


def verify_webhook(headers: Mapping[str, str], body: bytes) -> bool:
    """Verify a delivery given its (lowercase) headers and raw body."""
    valid = verify_shopify(body, headers.get(SIGNATURE_HEADER))
    if not valid:
        logger.warning("Webhook signature verification failed")
    return valid
