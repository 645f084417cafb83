"""Environment-driven settings.

Values are read once at import, after a local ``.env`` file (if any) has been
loaded. Variables already set in the environment win over the file.
"""

from __future__ import annotations

import json
import os

from dotenv import load_dotenv

load_dotenv(override=False)


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# Vendor (Shopify Admin API)
SHOPIFY_STORE_URL = (
    os.environ.get("SHOPIFY_STORE_URL", "")
    .replace("https://", "")
    .replace("http://", "")
    .rstrip("/")
)
SHOPIFY_ACCESS_TOKEN = os.environ.get("SHOPIFY_ACCESS_TOKEN", "")
SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2025-10")
SHOPIFY_WEBHOOK_SECRET = os.environ.get("SHOPIFY_WEBHOOK_SECRET", "")

# Document database
MONGODB_URL = os.environ.get("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DATABASE = os.environ.get("MONGODB_DATABASE", "stocksync")

# Storefronts known up front; more are discovered from the database
DEFAULT_STOREFRONT = os.environ.get("DEFAULT_STOREFRONT", "LUNERA")
STOREFRONTS = _split(os.environ.get("STOREFRONTS", DEFAULT_STOREFRONT))

# Webhook dedup
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# location_id -> {"name": str, "markets": [country codes], "priority": int}
LOCATION_MARKETS: dict[str, dict] = json.loads(
    os.environ.get("LOCATION_MARKETS", "{}") or "{}"
)
