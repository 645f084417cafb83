"""Process-wide logging configuration for the entry points."""

from __future__ import annotations

import logging

from stocksync import config

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once. Modules only call ``getLogger``."""
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=_FORMAT,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
