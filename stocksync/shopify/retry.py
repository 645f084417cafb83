"""Backoff for Shopify Admin calls.

Shopify throttles with 429 and a Retry-After header; 5xx and transport
errors are usually transient too. Everything else is raised at once.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _retry_reason(exc: Exception) -> str | None:
    """Short reason when ``exc`` is worth retrying, else None."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return f"HTTP {status}" if status in RETRYABLE_STATUS_CODES else None
    if isinstance(exc, httpx.TransportError):
        return type(exc).__name__
    return None


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float,
    response: httpx.Response | None = None,
) -> float:
    """Seconds to wait before retry ``attempt + 1``.

    A numeric Retry-After wins (capped at ``max_delay``). Otherwise the delay
    doubles per attempt and is spread by +/- ``jitter``, never below 0.1s.
    """
    retry_after = response.headers.get("Retry-After") if response is not None else None
    if retry_after:
        try:
            return min(float(retry_after), max_delay)
        except ValueError:
            logger.debug("Ignoring non-numeric Retry-After %r", retry_after)

    backoff = min(base_delay * 2**attempt, max_delay)
    return max(0.1, backoff * random.uniform(1 - jitter, 1 + jitter))


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.3,
) -> Callable:
    """Decorator: retry an httpx call on retryable statuses and transport errors."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return fn(*args, **kwargs)
                except (httpx.HTTPStatusError, httpx.TransportError) as e:
                    reason = _retry_reason(e)
                    if reason is None or attempt >= max_retries:
                        raise
                    response = e.response if isinstance(e, httpx.HTTPStatusError) else None
                    delay = compute_delay(attempt, base_delay, max_delay, jitter, response)
                    attempt += 1
                    logger.warning(
                        "Shopify call %s failed (%s), retry %d/%d in %.1fs",
                        fn.__name__,
                        reason,
                        attempt,
                        max_retries,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
