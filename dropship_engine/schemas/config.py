from typing import Optional

from pydantic import BaseModel, Field, field_validator


class PricingConfig(BaseModel):
    """Retail pricing rules; persisted as the `pricing_config` system setting."""

    markup_multiplier: float = Field(default=2.0, gt=0)
    min_margin_dollars: float = Field(default=1.00, ge=0)
    shipping_cost_estimate: float = Field(default=3.00, ge=0)
    stripe_fee_percent: float = Field(default=0.029, ge=0, lt=1)
    stripe_fee_fixed: float = Field(default=0.30, ge=0)
    compare_at_percent: float = Field(default=30.0, ge=0)
    round_to_99: bool = False


class WeightTier(BaseModel):
    max_grams: Optional[float] = None  # None = unlimited
    price: float = Field(ge=0)


def default_tiers() -> list[WeightTier]:
    return [
        WeightTier(max_grams=500, price=4.99),
        WeightTier(max_grams=2000, price=7.99),
        WeightTier(max_grams=5000, price=12.99),
        WeightTier(max_grams=None, price=19.99),
    ]


class ShippingConfig(BaseModel):
    """Customer-facing shipping rules; persisted as the `shipping_config` system setting."""

    free_shipping_enabled: bool = True
    free_shipping_threshold: float = Field(default=50.0, ge=0)
    free_shipping_max_weight_grams: float = Field(default=10000, ge=0)
    weight_tiers: list[WeightTier] = Field(default_factory=default_tiers)
    unknown_weight_rate: float = Field(default=7.99, ge=0)
    minimum_shipping_charge: float = Field(default=2.99, ge=0)
    use_live_quotes: bool = False
    freight_markup_percent: float = Field(default=15.0, ge=0)
    preferred_carrier: str = "USPS+"
    destination_country: str = "US"

    @field_validator("weight_tiers")
    @classmethod
    def sort_tiers(cls, v: list[WeightTier]) -> list[WeightTier]:
        # ascending by bound, unlimited last
        return sorted(v, key=lambda t: (t.max_grams is None, t.max_grams or 0))
