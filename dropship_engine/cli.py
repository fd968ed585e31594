import argparse
import json
import logging
import sys
from dataclasses import asdict

from dropship_engine.db import session_factory
from dropship_engine.services.catalog_sync import CatalogSyncEngine, SyncOptions
from dropship_engine.services.fulfillment import FulfillmentService
from dropship_engine.services.pricing import reprice_active_products
from dropship_engine.services.review_sync import sync_reviews_for_all
from dropship_engine.services.stock_check import check_stock, refresh_stock, sync_delivery_estimates
from dropship_engine.settings import settings
from dropship_engine.supplier_client import get_supplier_client

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("dropship_engine.cli")


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args) -> int:
    session = session_factory()
    client = get_supplier_client()
    try:
        if args.command == "run-sync":
            logger.info("[CLI] Starting catalog sync")
            options = SyncOptions(
                category_id=args.category,
                warehouse=args.warehouse,
                page_size=args.page_size,
                max_pages=args.max_pages,
                resync=args.resync,
                quote_freight=not args.no_freight,
            )
            result = CatalogSyncEngine(session, client).run(options)
            _print(asdict(result))
            return 0

        if args.command == "reprice":
            logger.info("[CLI] Repricing active products")
            override = json.loads(args.config) if args.config else None
            _print(reprice_active_products(session, override=override))
            return 0

        if args.command == "poll-tracking":
            service = FulfillmentService(session, client)
            if args.order_id:
                _print(asdict(service.poll_tracking(args.order_id)))
            else:
                _print([asdict(r) for r in service.poll_all_tracking()])
            return 0

        if args.command == "sync-reviews":
            logger.info("[CLI] Syncing supplier reviews")
            _print(sync_reviews_for_all(session, client))
            return 0

        if args.command == "check-stock":
            if args.pid:
                _print(asdict(check_stock(client, args.pid)))
            else:
                summary = refresh_stock(session, client)
                _print({**summary, "reports": [asdict(r) for r in summary["reports"]]})
            return 0

        if args.command == "sync-shipping":
            logger.info("[CLI] Refreshing delivery estimates")
            _print(sync_delivery_estimates(session, client))
            return 0

        logger.error(f"[CLI] Unsupported command: {args.command}")
        return 1

    except Exception as e:
        logger.exception(f"[CLI] Critical error: {e}")
        return 1
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dropship engine operations CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("run-sync", help="Sync the catalog from the supplier")
    sync_parser.add_argument("--category", help="Supplier category id (skips reconciliation)")
    sync_parser.add_argument("--warehouse", choices=["US", "CN", "all"], default="all")
    sync_parser.add_argument("--page-size", type=int, default=None)
    sync_parser.add_argument("--max-pages", type=int, default=None)
    sync_parser.add_argument("--resync", action="store_true", help="Re-fetch product detail for every entry")
    sync_parser.add_argument("--no-freight", action="store_true", help="Use the shipping estimate instead of live freight quotes")

    reprice_parser = subparsers.add_parser("reprice", help="Re-price active products from stored costs")
    reprice_parser.add_argument("--config", help='JSON override, e.g. \'{"markup_multiplier": 2.5}\'')

    tracking_parser = subparsers.add_parser("poll-tracking", help="Poll supplier tracking")
    tracking_parser.add_argument("--order-id", help="Poll one order instead of every open one")

    subparsers.add_parser("sync-reviews", help="Mirror supplier reviews for supplier-linked products")

    stock_parser = subparsers.add_parser("check-stock", help="Refresh warehouse stock")
    stock_parser.add_argument("--pid", help="Only report stock for one supplier pid")

    subparsers.add_parser("sync-shipping", help="Refresh warehouse placement and delivery estimates")

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)
    sys.exit(run_command(args))


if __name__ == "__main__":
    main()
