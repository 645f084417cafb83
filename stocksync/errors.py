"""Exception hierarchy for stocksync."""

from __future__ import annotations


class StockSyncError(Exception):
    """Base class for all stocksync errors."""


class ConfigurationError(StockSyncError):
    """A required setting (credential, URL) is missing."""


class PayloadError(StockSyncError):
    """A webhook payload is malformed or lacks the entity id."""


class StoreError(StockSyncError):
    """The document store rejected an operation."""


class VendorAPIError(StockSyncError):
    """The vendor API returned an error response or GraphQL errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
