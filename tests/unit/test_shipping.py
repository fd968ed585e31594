from unittest.mock import Mock

import pytest

from dropship_engine.schemas.config import ShippingConfig, WeightTier
from dropship_engine.schemas.supplier import FreightOption
from dropship_engine.services.shipping import (
    build_delivery_estimate,
    calculate_shipping,
    parse_delivery_cycle,
    quote_shipping,
    select_freight_option,
)
from dropship_engine.supplier_client import SupplierNetworkError


@pytest.fixture
def config() -> ShippingConfig:
    return ShippingConfig()


@pytest.mark.unit
class TestCalculateShipping:
    def test_free_over_threshold(self, config):
        quote = calculate_shipping(300, 50.0, config)
        assert quote.amount == 0.0
        assert quote.source == "free"

    def test_free_shipping_disabled(self, config):
        config = config.model_copy(update={"free_shipping_enabled": False})
        assert calculate_shipping(300, 80.0, config).amount == 4.99

    def test_heavy_order_is_not_free(self, config):
        quote = calculate_shipping(12000, 80.0, config)
        assert quote.amount == 19.99
        assert quote.source == "tier"
        assert quote.tier_max_grams is None

    def test_unknown_weight_never_ships_free(self, config):
        quote = calculate_shipping(None, 80.0, config)
        assert quote.amount == 7.99
        assert quote.source == "unknown_weight"

    def test_negative_weight_counts_as_unknown(self, config):
        assert calculate_shipping(-5, 10.0, config).source == "unknown_weight"

    @pytest.mark.parametrize(
        "weight,amount",
        [(0, 4.99), (500, 4.99), (501, 7.99), (2000, 7.99), (4999.5, 12.99), (7000, 19.99)],
    )
    def test_tier_bounds_are_inclusive(self, config, weight, amount):
        assert calculate_shipping(weight, 10.0, config).amount == amount

    def test_falls_back_to_last_tier_when_no_bound_covers_weight(self):
        config = ShippingConfig(
            weight_tiers=[WeightTier(max_grams=500, price=4.99), WeightTier(max_grams=2000, price=7.99)]
        )
        quote = calculate_shipping(3000, 10.0, config)
        assert quote.amount == 7.99
        assert quote.source == "last_tier"
        assert quote.tier_max_grams == 2000

    def test_minimum_charge_floor(self):
        config = ShippingConfig(weight_tiers=[WeightTier(max_grams=None, price=1.00)], unknown_weight_rate=0.5)
        assert calculate_shipping(100, 10.0, config).amount == 2.99
        assert calculate_shipping(None, 10.0, config).amount == 2.99

    def test_tiers_are_sorted_on_load(self):
        config = ShippingConfig.model_validate(
            {
                "weight_tiers": [
                    {"max_grams": None, "price": 19.99},
                    {"max_grams": 2000, "price": 7.99},
                    {"max_grams": 500, "price": 4.99},
                ]
            }
        )
        assert [t.max_grams for t in config.weight_tiers] == [500, 2000, None]


@pytest.mark.unit
class TestSelectFreightOption:
    def test_prefers_preferred_carrier_under_either_spelling(self):
        options = [
            FreightOption(carrier="CJPacket", price=4.20),
            FreightOption(carrier="USPS Plus", price=6.50),
        ]
        assert select_freight_option(options, "USPS+").carrier == "USPS Plus"

    def test_zero_priced_quotes_are_ignored(self):
        options = [FreightOption(carrier="USPS+", price=0), FreightOption(carrier="CJPacket", price=6.20)]
        assert select_freight_option(options, "USPS+").carrier == "CJPacket"

    def test_cheapest_when_preferred_missing(self):
        options = [FreightOption(carrier="DHL", price=12.0), FreightOption(carrier="CJPacket", price=6.2)]
        assert select_freight_option(options, "USPS+").price == 6.2

    def test_none_when_nothing_priced(self):
        assert select_freight_option([FreightOption(carrier="USPS+", price=0)], "USPS+") is None
        assert select_freight_option([], "USPS+") is None


@pytest.mark.unit
class TestQuoteShipping:
    ITEMS = [{"vid": "V1", "quantity": 1}]

    def test_static_rates_when_live_quotes_disabled(self, config):
        client = Mock()
        quote = quote_shipping(client, self.ITEMS, 300, 10.0, config)
        assert quote.source == "tier"
        client.freight_quote.assert_not_called()

    def test_live_quote_with_markup(self, config):
        config = config.model_copy(update={"use_live_quotes": True, "freight_markup_percent": 50})
        client = Mock()
        client.freight_quote.return_value = [
            FreightOption(carrier="USPS+", price=6.50),
            FreightOption(carrier="CJPacket", price=3.00),
        ]
        quote = quote_shipping(client, self.ITEMS, 300, 10.0, config)
        assert quote.amount == 9.75
        assert quote.source == "live"
        assert quote.carrier == "USPS+"

    def test_free_rule_wins_over_live_quote(self, config):
        config = config.model_copy(update={"use_live_quotes": True})
        client = Mock()
        assert quote_shipping(client, self.ITEMS, 300, 75.0, config).source == "free"
        client.freight_quote.assert_not_called()

    def test_supplier_failure_falls_back_to_static_rates(self, config):
        config = config.model_copy(update={"use_live_quotes": True})
        client = Mock()
        client.freight_quote.side_effect = SupplierNetworkError("timeout")
        quote = quote_shipping(client, self.ITEMS, 1500, 10.0, config)
        assert quote.amount == 7.99
        assert quote.source == "tier"

    def test_no_priced_options_falls_back(self, config):
        config = config.model_copy(update={"use_live_quotes": True})
        client = Mock()
        client.freight_quote.return_value = [FreightOption(carrier="USPS+", price=0)]
        assert quote_shipping(client, self.ITEMS, None, 10.0, config).source == "unknown_weight"


@pytest.mark.unit
class TestDeliveryEstimate:
    def test_parse_cycle(self):
        assert parse_delivery_cycle("3-7") == (3, 7)
        assert parse_delivery_cycle(" 5 ") == (5, 5)
        assert parse_delivery_cycle("about a week") is None
        assert parse_delivery_cycle(None) is None

    def test_us_warehouse_ignores_cycle(self):
        assert build_delivery_estimate("US", "3-7") == "2-5 business days"

    def test_cn_adds_transit_to_processing_days(self):
        assert build_delivery_estimate("CN", "3-7") == "10-21 business days"
        assert build_delivery_estimate("CN", "5") == "12-19 business days"

    def test_unknown_cycle(self):
        assert build_delivery_estimate("CN", None) == "10-20 business days"
        assert build_delivery_estimate(None, "n/a") == "10-20 business days"
