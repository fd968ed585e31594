"""
Customer shipping charge.

`calculate_shipping` is the static policy (free-shipping rule, weight tiers,
unknown-weight rate, minimum floor). `quote_shipping` adds the live freight
quote from the supplier on top and falls back to the static policy on any
failure, so a checkout never fails because of a shipping estimate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from dropship_engine.schemas.config import ShippingConfig
from dropship_engine.schemas.supplier import FreightOption
from dropship_engine.services.pricing import round2

logger = logging.getLogger(__name__)

# quotes the supplier returns for the preferred service under either spelling
CARRIER_ALIASES = {"USPS+": {"USPS+", "USPS Plus"}}


@dataclass(frozen=True)
class ShippingQuote:
    amount: float
    source: str  # free, tier, last_tier, unknown_weight, live
    tier_max_grams: Optional[float] = None
    carrier: Optional[str] = None


def _known_weight(weight_grams: float | None) -> bool:
    return weight_grams is not None and weight_grams >= 0


def _free_shipping(weight_grams: float | None, subtotal: float, config: ShippingConfig) -> bool:
    return (
        config.free_shipping_enabled
        and subtotal >= config.free_shipping_threshold
        and _known_weight(weight_grams)
        and weight_grams <= config.free_shipping_max_weight_grams
    )


def _floor(amount: float, config: ShippingConfig) -> float:
    return round2(max(amount, config.minimum_shipping_charge))


def calculate_shipping(weight_grams: float | None, subtotal: float, config: ShippingConfig) -> ShippingQuote:
    if _free_shipping(weight_grams, subtotal, config):
        return ShippingQuote(amount=0.0, source="free")

    if not _known_weight(weight_grams):
        return ShippingQuote(amount=_floor(config.unknown_weight_rate, config), source="unknown_weight")

    tiers = config.weight_tiers
    for tier in tiers:
        if tier.max_grams is None or tier.max_grams >= weight_grams:
            return ShippingQuote(amount=_floor(tier.price, config), source="tier", tier_max_grams=tier.max_grams)

    if tiers:
        last = tiers[-1]
        return ShippingQuote(amount=_floor(last.price, config), source="last_tier", tier_max_grams=last.max_grams)
    return ShippingQuote(amount=_floor(config.unknown_weight_rate, config), source="unknown_weight")


def select_freight_option(options: list[FreightOption], preferred_carrier: str | None) -> FreightOption | None:
    # $0 quotes mean shipping is baked into the unit cost; not a real quote
    priced = [o for o in options if o.price > 0]
    if not priced:
        return None
    if preferred_carrier:
        names = CARRIER_ALIASES.get(preferred_carrier, {preferred_carrier})
        for option in priced:
            if option.carrier in names:
                return option
    return min(priced, key=lambda o: o.price)


def quote_shipping(
    client: Any,
    items: list[dict[str, Any]],
    weight_grams: float | None,
    subtotal: float,
    config: ShippingConfig,
) -> ShippingQuote:
    """Live freight quote with markup; degrades to `calculate_shipping` instead of raising."""
    if _free_shipping(weight_grams, subtotal, config):
        return ShippingQuote(amount=0.0, source="free")

    fallback = calculate_shipping(weight_grams, subtotal, config)
    if not config.use_live_quotes or client is None or not items:
        return fallback

    try:
        options = client.freight_quote(items, destination_country=config.destination_country)
    except Exception as e:
        logger.warning(f"[SHIPPING] Live freight quote failed, using static rates: {e}")
        return fallback

    option = select_freight_option(options, config.preferred_carrier)
    if option is None:
        logger.info("[SHIPPING] No priced freight options, using static rates")
        return fallback

    amount = option.price * (1 + config.freight_markup_percent / 100)
    return ShippingQuote(amount=_floor(amount, config), source="live", carrier=option.carrier)


US_DELIVERY_ESTIMATE = "2-5 business days"
DEFAULT_DELIVERY_ESTIMATE = "10-20 business days"


def parse_delivery_cycle(cycle: str | None) -> tuple[int, int] | None:
    """Supplier processing days as (min, max); "3-7" and "5" are accepted."""
    if not cycle:
        return None
    parts = [part.strip() for part in str(cycle).split("-")]
    try:
        numbers = [int(float(part)) for part in parts]
    except ValueError:
        return None
    if len(numbers) == 2:
        return numbers[0], numbers[1]
    if len(numbers) == 1:
        return numbers[0], numbers[0]
    return None


def build_delivery_estimate(warehouse: str | None, cycle: str | None) -> str:
    """Customer-facing delivery window: US stock ships domestically, CN adds transit to processing days."""
    if warehouse == "US":
        return US_DELIVERY_ESTIMATE
    parsed = parse_delivery_cycle(cycle)
    if parsed is None:
        return DEFAULT_DELIVERY_ESTIMATE
    low, high = parsed
    return f"{low + 7}-{high + 14} business days"
