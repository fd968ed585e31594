"""
Catalog sync: reconcile local products against the supplier catalog.

A pass pages through the supplier listing and, one product at a time, fetches
detail and per-warehouse stock, prices it, and upserts the product and its
variants keyed by the supplier pid. After a complete, unscoped pass every
active or pending product the listing no longer contains is hidden. Passes are
safe to abort and re-run: writes are idempotent per pid and committed per product.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dropship_engine.models import Product, ProductStatus, ProductVariant, SyncRun
from dropship_engine.schemas.config import PricingConfig
from dropship_engine.schemas.supplier import SupplierProduct, WarehouseStock
from dropship_engine.services.config_store import load_pricing_config
from dropship_engine.services.pricing import PricingResult, apply_pricing, calculate_pricing
from dropship_engine.services.shipping import build_delivery_estimate
from dropship_engine.services.sync_runner import SyncRunner
from dropship_engine.services.variant_parser import parse_variant
from dropship_engine.settings import Settings, settings as default_settings
from dropship_engine.supplier_client import SupplierAuthError, SupplierError, SupplierTransientError

logger = logging.getLogger(__name__)

WAREHOUSES = ("US", "CN", "all")


class SyncPhase(str, Enum):
    LISTING = "listing"
    DETAILING = "detailing"
    PRICING = "pricing"
    UPSERTING = "upserting"
    RECONCILING = "reconciling"
    DONE = "done"


@dataclass
class SyncOptions:
    category_id: Optional[str] = None
    warehouse: str = "all"  # US, CN, all
    page_size: Optional[int] = None
    max_pages: Optional[int] = None
    resync: bool = False  # re-fetch detail even when the listing entry is complete
    quote_freight: bool = True


@dataclass
class SyncResult:
    synced: int = 0
    created: int = 0
    updated: int = 0
    hidden: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    skipped_reasons: dict[str, int] = field(default_factory=dict)

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skipped_reasons[reason] = self.skipped_reasons.get(reason, 0) + 1


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def summarize_stock(stocks: list[WarehouseStock], us_source: bool = False) -> tuple[str, list[str], int]:
    """
    Return (warehouse, available warehouses, total quantity). US wins when it
    has inventory; `us_source` (the supplier flags the product as shipped from
    its US warehouse) decides only when no warehouse reports any stock.
    """
    totals: dict[str, int] = {}
    for stock in stocks:
        totals[stock.country_code] = totals.get(stock.country_code, 0) + stock.quantity
    available = [country for country, qty in totals.items() if qty > 0]
    total = sum(totals.values())
    if totals.get("US", 0) > 0 or (us_source and total == 0):
        return "US", available, total
    return "CN", available, total


@dataclass
class _Candidate:
    pid: str
    name: str
    product: SupplierProduct
    cost: float
    warehouse: str
    available_warehouses: list[str]
    stock_count: int
    shipping: float = 0.0
    pricing: Optional[PricingResult] = None


class CatalogSyncEngine:
    def __init__(
        self,
        session: Session,
        client: Any,
        pricing_config: PricingConfig | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.client = client
        self.settings = settings or default_settings
        # loaded once per pass, never per item
        self.pricing_config = pricing_config or load_pricing_config(session)
        self.phase = SyncPhase.LISTING

    def run(self, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        if options.warehouse not in WAREHOUSES:
            raise ValueError(f"warehouse must be one of {WAREHOUSES}, got {options.warehouse!r}")

        scope = f"catalog:{options.category_id or 'all'}"
        runner = SyncRunner(self.session, scope)
        meta = {
            "category_id": options.category_id,
            "warehouse": options.warehouse,
            "resync": options.resync,
        }
        return runner.run(lambda sync_run: self._run_pass(sync_run, runner, options), meta=meta)

    # ------------------------------------------------------------------
    # pass
    # ------------------------------------------------------------------

    def _run_pass(self, sync_run: SyncRun, runner: SyncRunner, options: SyncOptions) -> SyncResult:
        result = SyncResult()
        calls_before = getattr(self.client, "api_calls", 0)

        # credentials problems abort before any item is touched
        self.client.authenticate()

        page_size = options.page_size or self.settings.catalog_page_size
        max_pages = options.max_pages or self.settings.catalog_max_pages
        observed: set[str] = set()
        listing_complete = False
        fetched = unreadable = 0

        page = 1
        while page <= max_pages:
            self.phase = SyncPhase.LISTING
            try:
                listing = self.client.list_products(
                    page=page,
                    size=page_size,
                    category_id=options.category_id,
                    country_code="US" if options.warehouse == "US" else None,
                )
            except SupplierAuthError:
                raise
            except SupplierError as e:
                logger.error(f"[SYNC] Listing page {page} failed: {e}")
                result.errors.append(f"Listing page {page}: {e}")
                runner.log_error(sync_run, f"listing page {page}: {e}")
                self.session.commit()
                break

            # entries dropped for a missing pid still count; only an empty page ends the listing
            raw_count = max(listing.raw_count, len(listing.items))
            if raw_count == 0:
                listing_complete = True
                break
            fetched += raw_count
            unreadable += raw_count - len(listing.items)

            logger.info(f"[SYNC] Page {page}: {len(listing.items)} products (total={listing.total})")
            for entry in listing.items:
                observed.add(entry.pid)
                self._sync_entry(entry, options, result, sync_run, runner)

            if listing.total and fetched >= listing.total:
                listing_complete = True
                break
            page += 1

        if not listing_complete:
            logger.warning(f"[SYNC] Listing not exhausted (stopped at page {page}); reconciliation skipped")
        elif unreadable:
            logger.warning(f"[SYNC] {unreadable} listing entries had no pid; reconciliation skipped")
            listing_complete = False

        if listing_complete and options.category_id is None and options.warehouse == "all":
            self.phase = SyncPhase.RECONCILING
            result.hidden = self._reconcile(observed)

        self.phase = SyncPhase.DONE
        sync_run.created_count = result.created
        sync_run.updated_count = result.updated
        sync_run.hidden_count = result.hidden
        sync_run.skipped_count = result.skipped
        sync_run.api_calls = getattr(self.client, "api_calls", 0) - calls_before
        sync_run.meta = {**(sync_run.meta or {}), "skipped_reasons": result.skipped_reasons}
        self.session.commit()

        logger.info(
            f"[SYNC] Pass finished: synced={result.synced}, created={result.created}, updated={result.updated}, "
            f"hidden={result.hidden}, skipped={result.skipped}, errors={len(result.errors)}"
        )
        return result

    def _sync_entry(
        self,
        entry: SupplierProduct,
        options: SyncOptions,
        result: SyncResult,
        sync_run: SyncRun,
        runner: SyncRunner,
    ) -> None:
        pid = entry.pid
        if not entry.name:
            result.skip("missing_name")
            return
        if entry.sell_price is None or entry.sell_price <= 0:
            result.skip("invalid_price")
            return

        try:
            candidate = self._detail(entry, options, result)
            if candidate is None:
                return

            self.phase = SyncPhase.PRICING
            candidate.shipping = self._estimate_shipping(candidate, options)
            candidate.pricing = calculate_pricing(candidate.cost, candidate.shipping, self.pricing_config)
            if not candidate.pricing.is_viable:
                logger.info(
                    f"[SYNC] {pid} not viable: retail={candidate.pricing.retail_price}, "
                    f"margin={candidate.pricing.margin_dollars}"
                )
                result.skip("not_viable")
                return

            self.phase = SyncPhase.UPSERTING
            with self.session.begin_nested():
                created = self._upsert(candidate)
            self.session.commit()
        except SupplierAuthError:
            raise
        except SupplierTransientError as e:
            logger.warning(f"[SYNC] {pid} skipped, supplier unavailable: {e}")
            result.skip("supplier_unavailable")
            result.errors.append(f"Product {pid}: {e}")
            runner.log_error(sync_run, str(e), entity_id=pid)
            self.session.commit()
            return
        except SupplierError as e:
            logger.error(f"[SYNC] {pid} failed: {e}")
            result.skip("supplier_rejected")
            result.errors.append(f"Product {pid}: {e}")
            runner.log_error(sync_run, str(e), entity_id=pid)
            self.session.commit()
            return
        except SQLAlchemyError as e:
            logger.exception(f"[SYNC] {pid} store write failed")
            result.errors.append(f"Product {pid}: {e}")
            runner.log_error(sync_run, f"store write failed: {e}", entity_id=pid)
            self.session.commit()
            return

        result.synced += 1
        if created:
            result.created += 1
        else:
            result.updated += 1

    def _detail(self, entry: SupplierProduct, options: SyncOptions, result: SyncResult) -> Optional[_Candidate]:
        self.phase = SyncPhase.DETAILING
        detail = entry
        if options.resync or not entry.has_detail:
            detail = self.client.get_product(entry.pid)
        stocks = self.client.get_stock(entry.pid)
        us_source = (detail.source_from or entry.source_from) == 4
        warehouse, available, stock_count = summarize_stock(stocks, us_source=us_source)

        if options.warehouse != "all" and warehouse != options.warehouse:
            result.skip("warehouse_mismatch")
            return None

        weight = detail.weight_grams or entry.weight_grams
        if weight is None and self.settings.catalog_require_weight:
            result.skip("missing_weight")
            return None

        merged = detail.model_copy(
            update={
                "name": detail.name or entry.name,
                "images": detail.images or entry.images,
                "weight_grams": weight,
                "category_id": detail.category_id or entry.category_id,
                "delivery_cycle": detail.delivery_cycle or entry.delivery_cycle,
            }
        )
        return _Candidate(
            pid=entry.pid,
            name=merged.name or entry.name or entry.pid,
            product=merged,
            cost=detail.sell_price if detail.sell_price and detail.sell_price > 0 else entry.sell_price,
            warehouse=warehouse,
            available_warehouses=available,
            stock_count=stock_count,
        )

    def _estimate_shipping(self, candidate: _Candidate, options: SyncOptions) -> float:
        fallback = max(candidate.cost * 0.3, self.pricing_config.shipping_cost_estimate)
        variants = candidate.product.variants
        if not options.quote_freight or not variants:
            return fallback
        try:
            quotes = self.client.freight_quote(
                [{"vid": variants[0].vid, "quantity": 1}],
                destination_country=self.settings.catalog_freight_country,
            )
        except SupplierAuthError:
            raise
        except SupplierError as e:
            logger.info(f"[SYNC] Freight quote failed for {candidate.pid}, using estimate: {e}")
            return fallback
        prices = [q.price for q in quotes if q.price > 0]
        return min(prices) if prices else fallback

    # ------------------------------------------------------------------
    # store
    # ------------------------------------------------------------------

    def _initial_status(self, stock_count: int) -> str:
        if self.settings.catalog_auto_activate and stock_count > 0:
            return ProductStatus.ACTIVE.value
        return ProductStatus.PENDING.value

    def _unique_slug(self, name: str, pid: str) -> str:
        base = f"{(slugify(name) or 'product')[:80].strip('-')}-{slugify(pid[:8]) or 'item'}"
        slug = base
        suffix = 2
        while self.session.execute(select(Product.id).where(Product.slug == slug)).first():
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def _upsert(self, candidate: _Candidate) -> bool:
        """Insert or update one product and its variants; returns True when inserted."""
        product = self.session.execute(
            select(Product).where(Product.external_ref == candidate.pid)
        ).scalar_one_or_none()

        created = product is None
        if created:
            product = Product(
                external_ref=candidate.pid,
                slug=self._unique_slug(candidate.name, candidate.pid),
                name=candidate.name,
                status=self._initial_status(candidate.stock_count),
            )
            self.session.add(product)
        elif product.status == ProductStatus.HIDDEN.value:
            product.status = self._initial_status(candidate.stock_count)
            logger.info(f"[SYNC] {candidate.pid} reappeared, status -> {product.status}")

        data = candidate.product
        product.name = candidate.name
        product.description = data.description or product.description
        product.images = list(data.images) or product.images
        product.category_id = data.category_id or product.category_id
        apply_pricing(product, candidate.pricing, self.pricing_config)
        product.weight_grams = data.weight_grams
        product.warehouse = candidate.warehouse
        product.available_warehouses = candidate.available_warehouses
        product.stock_count = candidate.stock_count
        product.delivery_cycle = data.delivery_cycle or product.delivery_cycle
        product.shipping_estimate = build_delivery_estimate(candidate.warehouse, product.delivery_cycle)
        product.supplier_raw = data.raw
        product.last_synced_at = datetime.now(timezone.utc)
        self.session.flush()

        self._upsert_variants(product, candidate)
        return created

    def _upsert_variants(self, product: Product, candidate: _Candidate) -> None:
        existing = {
            (v.color, v.size): v
            for v in self.session.execute(
                select(ProductVariant).where(ProductVariant.product_id == product.id)
            ).scalars()
        }

        seen: set[tuple[Optional[str], Optional[str]]] = set()
        for position, supplier_variant in enumerate(candidate.product.variants):
            parsed = parse_variant(supplier_variant, candidate.name)
            key = (parsed.color, parsed.size)
            if key in seen:
                logger.info(f"[SYNC] {candidate.pid} duplicate variant {key}, dropping {supplier_variant.vid}")
                continue
            seen.add(key)

            cost = supplier_variant.sell_price if supplier_variant.sell_price else candidate.cost
            pricing = calculate_pricing(cost, candidate.shipping, self.pricing_config)
            retail = pricing.retail_price if pricing.is_viable else product.retail_price

            variant = existing.get(key)
            if variant is None:
                variant = ProductVariant(product_id=product.id, color=parsed.color, size=parsed.size)
                self.session.add(variant)
            variant.external_ref = supplier_variant.vid
            variant.name = parsed.name
            variant.supplier_cost = cost
            variant.retail_price = retail
            variant.stock_count = supplier_variant.stock if supplier_variant.stock is not None else candidate.stock_count
            variant.image_url = supplier_variant.image
            variant.is_active = True
            variant.position = position

        for key, variant in existing.items():
            if key not in seen and variant.is_active:
                variant.is_active = False
        self.session.flush()
        self.session.expire(product, ["variants"])

    def _reconcile(self, observed: set[str]) -> int:
        stale = self.session.execute(
            select(Product).where(
                Product.status.in_((ProductStatus.ACTIVE.value, ProductStatus.PENDING.value)),
                Product.external_ref.is_not(None),
            )
        ).scalars().all()

        hidden = 0
        for product in stale:
            if product.external_ref not in observed:
                product.status = ProductStatus.HIDDEN.value
                hidden += 1
        self.session.commit()
        if hidden:
            logger.info(f"[SYNC] Reconciliation hid {hidden} products no longer listed")
        return hidden
