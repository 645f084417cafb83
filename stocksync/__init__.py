"""stocksync: keeps per-storefront product copies consistent with the
authoritative Shopify product mirror.
"""

__version__ = "0.1.0"
