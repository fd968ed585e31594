from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from dropship_engine.models import Product, ProductStatus
from dropship_engine.schemas.config import PricingConfig
from dropship_engine.services.config_store import load_pricing_config

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round2(value: float | Decimal) -> float:
    """Half-up rounding to cents; float binary noise never flips a result."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PricingResult:
    supplier_cost: float
    shipping_cost: float
    stripe_fee: float
    total_cost: float
    markup_multiplier: float
    retail_price: float
    margin_dollars: float
    margin_percent: float
    is_viable: bool


def _usable(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value >= 0


def calculate_pricing(
    cost: float,
    shipping: float,
    config: PricingConfig,
    markup_multiplier: float | None = None,
) -> PricingResult:
    markup = config.markup_multiplier if markup_multiplier is None else markup_multiplier
    if not (_usable(cost) and _usable(shipping) and _usable(markup)):
        return PricingResult(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, False)

    base = Decimal(str(cost)) + Decimal(str(shipping))
    stripe_fee = Decimal(str(round2(base * Decimal(str(config.stripe_fee_percent)) + Decimal(str(config.stripe_fee_fixed)))))
    total_cost = Decimal(str(round2(base + stripe_fee)))

    raw_retail = total_cost * Decimal(str(markup))
    if config.round_to_99:
        retail = Decimal(math.ceil(raw_retail)) - CENT
        if retail < 0:
            retail = Decimal("0")
    else:
        retail = Decimal(str(round2(raw_retail)))

    margin = Decimal(str(round2(retail - total_cost)))
    margin_percent = round2(margin / retail * 100) if retail > 0 else 0.0

    return PricingResult(
        supplier_cost=round2(cost),
        shipping_cost=round2(shipping),
        stripe_fee=float(stripe_fee),
        total_cost=float(total_cost),
        markup_multiplier=float(markup),
        retail_price=float(retail),
        margin_dollars=float(margin),
        margin_percent=margin_percent,
        is_viable=retail > 0 and margin > Decimal(str(config.min_margin_dollars)),
    )


def compute_compare_at_price(retail_price: float, config: PricingConfig) -> float:
    """Display-only "was" price, `compare_at_percent` above retail."""
    if not retail_price or retail_price <= 0:
        return 0.0
    return round2(Decimal(str(retail_price)) * (1 + Decimal(str(config.compare_at_percent)) / 100))


def apply_pricing(product: Product, pricing: PricingResult, config: PricingConfig) -> None:
    product.supplier_cost = pricing.supplier_cost
    product.shipping_cost = pricing.shipping_cost
    product.stripe_fee = pricing.stripe_fee
    product.total_cost = pricing.total_cost
    product.markup_multiplier = pricing.markup_multiplier
    product.retail_price = pricing.retail_price
    product.compare_at_price = compute_compare_at_price(pricing.retail_price, config)
    product.margin_dollars = pricing.margin_dollars
    product.margin_percent = pricing.margin_percent


def reprice_active_products(session: Session, override: dict[str, Any] | None = None) -> dict[str, int]:
    """
    Re-price every active product from its stored supplier cost and shipping cost.

    The supplier is never contacted. Products without a positive cost, or whose
    new price would not be viable, keep their current price and count as skipped.
    Variants follow the product's shipping cost with their own supplier cost.
    """
    config = load_pricing_config(session)
    if override:
        config = PricingConfig.model_validate({**config.model_dump(), **override})

    processed = updated = skipped = 0
    products = session.execute(
        select(Product)
        .where(Product.status == ProductStatus.ACTIVE.value)
        .options(selectinload(Product.variants))
        .order_by(Product.created_at, Product.id)
    ).scalars().all()

    for product in products:
        processed += 1
        cost = float(product.supplier_cost or 0)
        if cost <= 0:
            skipped += 1
            continue

        shipping = product.shipping_cost
        shipping = float(shipping) if shipping is not None else config.shipping_cost_estimate
        pricing = calculate_pricing(cost, shipping, config)
        if not pricing.is_viable:
            skipped += 1
            continue

        apply_pricing(product, pricing, config)
        for variant in product.variants:
            if not variant.is_active or not variant.supplier_cost or variant.supplier_cost <= 0:
                continue
            variant_pricing = calculate_pricing(float(variant.supplier_cost), shipping, config)
            if variant_pricing.is_viable:
                variant.retail_price = variant_pricing.retail_price
        updated += 1

    session.commit()
    logger.info(f"[PRICING] Repriced active products: processed={processed}, updated={updated}, skipped={skipped}")
    return {"processed": processed, "updated": updated, "skipped": skipped}
