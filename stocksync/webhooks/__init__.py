"""Inbound Shopify webhooks.

Each delivery is signature-verified, deduplicated on its webhook id, and
dispatched synchronously to the reconcile/propagate stages.
"""
