import pytest

from dropship_engine.schemas.supplier import SupplierVariant
from dropship_engine.services.variant_parser import ParsedVariant, is_color, is_size, parse_option_label, parse_variant


@pytest.mark.unit
class TestParseOptionLabel:
    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Black", ParsedVariant("Black", "Black", None)),
            ("Green-M", ParsedVariant("Green / M", "Green", "M")),
            ("dark blue-xl", ParsedVariant("Dark Blue / XL", "Dark Blue", "XL")),
            ("XL", ParsedVariant("XL", None, "XL")),
            ("White2Pack", ParsedVariant("White", "White", None)),
            ("Black10cm", ParsedVariant("Black / 10cm", "Black", "10cm")),
            ("PACK3-L", ParsedVariant("Style 3 / L", "Style 3", "L")),
        ],
    )
    def test_color_and_size(self, label, expected):
        assert parse_option_label(label) == expected

    @pytest.mark.parametrize("label", ["Default", "As Picture", "one size", "  "])
    def test_junk_labels(self, label):
        assert parse_option_label(label) is None

    @pytest.mark.parametrize("label", ["A1234", "style02", "2 pcs", "3 Pack"])
    def test_model_codes_and_quantities_carry_no_dimensions(self, label):
        parsed = parse_option_label(label)
        assert parsed == ParsedVariant(label, None, None)

    def test_color_suffix_word(self):
        assert is_color("Navy Blue Color")
        assert not is_color("Cotton")

    def test_sizes(self):
        assert is_size("3XL")
        assert is_size("12 inch")
        assert is_size("60x90cm")
        assert is_size("Queen")
        assert not is_size("Large-ish")


@pytest.mark.unit
class TestParseVariant:
    def test_variant_key_first(self):
        variant = SupplierVariant(vid="V1", variant_key="Red-S", name="Cotton Tee Blue M")
        assert parse_variant(variant, "Cotton Tee") == ParsedVariant("Red / S", "Red", "S")

    def test_name_with_product_prefix_stripped(self):
        variant = SupplierVariant(vid="V1", variant_key="Default", name="Cotton Tee - Red")
        assert parse_variant(variant, "Cotton Tee") == ParsedVariant("Red", "Red", None)

    def test_unrecognized_key_becomes_the_name(self):
        variant = SupplierVariant(vid="V1", variant_key="Style A")
        assert parse_variant(variant, "Cotton Tee") == ParsedVariant("Style A", None, None)

    def test_model_code_key_falls_back_to_variant_name(self):
        variant = SupplierVariant(vid="V1", variant_key="A1234", name="Deluxe edition")
        assert parse_variant(variant) == ParsedVariant("Deluxe edition", None, None)

    def test_nothing_usable_falls_back_to_vid(self):
        assert parse_variant(SupplierVariant(vid="V9")) == ParsedVariant("V9", None, None)
