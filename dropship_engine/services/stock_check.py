import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from dropship_engine.models import Product
from dropship_engine.services.catalog_sync import summarize_stock
from dropship_engine.services.shipping import build_delivery_estimate
from dropship_engine.settings import Settings, settings as default_settings
from dropship_engine.supplier_client import SupplierAuthError, SupplierError

logger = logging.getLogger(__name__)


@dataclass
class StockReport:
    pid: str
    has_us_stock: bool = False
    us_quantity: int = 0
    has_cn_stock: bool = False
    cn_quantity: int = 0
    available_warehouses: list[str] = field(default_factory=list)
    total_quantity: int = 0
    warehouse: Optional[str] = None
    error: Optional[str] = None


def check_stock(client: Any, pid: str) -> StockReport:
    """Per-warehouse stock for one supplier product; supplier failures land in `error`."""
    try:
        stocks = client.get_stock(pid)
    except SupplierError as e:
        logger.warning(f"[STOCK] Lookup failed for {pid}: {e}")
        return StockReport(pid=pid, error=str(e) or "stock lookup failed")

    us = sum(s.quantity for s in stocks if s.country_code == "US")
    cn = sum(s.quantity for s in stocks if s.country_code == "CN")
    warehouse, available, total = summarize_stock(stocks)
    return StockReport(
        pid=pid,
        has_us_stock=us > 0,
        us_quantity=us,
        has_cn_stock=cn > 0,
        cn_quantity=cn,
        available_warehouses=available,
        total_quantity=total,
        warehouse=warehouse,
    )


def _linked_products(session: Session, product_ids: Optional[Iterable[Any]]) -> list[Product]:
    stmt = select(Product).where(Product.external_ref.is_not(None)).order_by(Product.name, Product.id)
    if product_ids is not None:
        stmt = stmt.where(Product.id.in_(list(product_ids)))
    return list(session.execute(stmt).scalars().all())


def refresh_stock(
    session: Session,
    client: Any,
    product_ids: Optional[Iterable[Any]] = None,
    settings: Settings | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """
    Re-read supplier stock for one, several or all supplier-linked products and
    store stock count and warehouse placement. Products whose lookup fails keep
    their stored values.
    """
    settings = settings or default_settings
    products = _linked_products(session, product_ids)

    reports: list[StockReport] = []
    updated = failed = 0
    for index, product in enumerate(products):
        if index and settings.stock_check_delay:
            sleep(settings.stock_check_delay)
        # credentials problems stop the sweep instead of failing every product
        client.authenticate()
        report = check_stock(client, product.external_ref)
        reports.append(report)
        if report.error:
            failed += 1
            continue

        product.stock_count = report.total_quantity
        product.warehouse = report.warehouse
        product.available_warehouses = report.available_warehouses
        session.commit()
        updated += 1

    logger.info(f"[STOCK] Checked {len(reports)} products: updated={updated}, failed={failed}")
    return {"checked": len(reports), "updated": updated, "failed": failed, "reports": reports}


def collect_delivery_cycles(client: Any, settings: Settings | None = None) -> dict[str, str]:
    """Supplier processing days per pid, read from the catalog listing."""
    settings = settings or default_settings
    size = settings.catalog_page_size
    cycles: dict[str, str] = {}
    fetched = 0
    for page in range(1, settings.catalog_max_pages + 1):
        try:
            listing = client.list_products(page=page, size=size)
        except SupplierAuthError:
            raise
        except SupplierError as e:
            logger.warning(f"[SHIPPING] Listing page {page} failed, keeping stored delivery cycles: {e}")
            break
        raw_count = max(listing.raw_count, len(listing.items))
        if raw_count == 0:
            break
        fetched += raw_count
        for item in listing.items:
            if item.delivery_cycle:
                cycles[item.pid] = item.delivery_cycle
        if listing.total and fetched >= listing.total:
            break
    return cycles


def sync_delivery_estimates(
    session: Session,
    client: Any,
    product_ids: Optional[Iterable[Any]] = None,
    settings: Settings | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """
    Refresh warehouse placement and the customer-facing delivery estimate.

    Delivery cycles come from one read of the listing; warehouse placement
    from a stock lookup per product. A product whose stock lookup fails keeps
    its stored values.
    """
    settings = settings or default_settings
    products = _linked_products(session, product_ids)
    if not products:
        return {"checked": 0, "updated": 0, "failed": 0, "us_warehouse": 0, "cn_warehouse": 0}

    cycles = collect_delivery_cycles(client, settings)

    updated = failed = us_warehouse = cn_warehouse = 0
    for index, product in enumerate(products):
        if index and settings.stock_check_delay:
            sleep(settings.stock_check_delay)
        client.authenticate()
        report = check_stock(client, product.external_ref)
        if report.error:
            failed += 1
            continue

        product.warehouse = report.warehouse
        product.available_warehouses = report.available_warehouses
        product.delivery_cycle = cycles.get(product.external_ref) or product.delivery_cycle
        product.shipping_estimate = build_delivery_estimate(product.warehouse, product.delivery_cycle)
        session.commit()
        updated += 1
        if product.warehouse == "US":
            us_warehouse += 1
        else:
            cn_warehouse += 1

    logger.info(
        f"[SHIPPING] Delivery estimates refreshed for {updated} products "
        f"(US={us_warehouse}, CN={cn_warehouse}, failed={failed})"
    )
    return {
        "checked": len(products),
        "updated": updated,
        "failed": failed,
        "us_warehouse": us_warehouse,
        "cn_warehouse": cn_warehouse,
    }
