"""Command line for the batch jobs and the server.

Usage:
    python -m stocksync.cli sync-stock
    python -m stocksync.cli recalculate-stock
    python -m stocksync.cli import-products [--all]
    python -m stocksync.cli serve [--port 8000]
"""

from __future__ import annotations

import argparse
import json
import sys

from stocksync import catalog, jobs
from stocksync.logging_setup import configure_logging
from stocksync.models import JobSummary
from stocksync.shopify import get_client
from stocksync.store import get_store


def _report(summary: JobSummary) -> None:
    print(json.dumps(summary.to_dict(), indent=2))
    if not summary.ok:
        print(f"ERROR: {summary.errors} item(s) failed", file=sys.stderr)
        sys.exit(1)


def cmd_sync_stock(args: argparse.Namespace) -> None:
    """Repair stock drift between source items and storefront copies."""
    store = get_store()
    try:
        summary = jobs.sync_stock_from_source_items(store)
    finally:
        store.close()
    _report(summary)


def cmd_recalculate_stock(args: argparse.Namespace) -> None:
    """Recompute storefront product stock flags from their variants."""
    store = get_store()
    try:
        summary = jobs.recalculate_product_stock(store)
    finally:
        store.close()
    _report(summary)


def cmd_import_products(args: argparse.Namespace) -> None:
    """Mirror every Shopify product into the source collection."""
    store = get_store()
    client = get_client()
    try:
        summary = catalog.import_vendor_products(store, client, skip_existing=not args.all)
    finally:
        client.close()
        store.close()
    _report(summary)


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    from stocksync.serve import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="stocksync",
        description="Shopify to storefront stock synchronization",
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync-stock", help="Repair storefront stock drift")
    p_sync.set_defaults(func=cmd_sync_stock)

    p_recalc = sub.add_parser("recalculate-stock", help="Recompute product stock flags")
    p_recalc.set_defaults(func=cmd_recalculate_stock)

    p_import = sub.add_parser("import-products", help="Import Shopify products")
    p_import.add_argument("--all", action="store_true", help="Re-import products already mirrored")
    p_import.set_defaults(func=cmd_import_products)

    p_serve = sub.add_parser("serve", help="Run the webhook server")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
