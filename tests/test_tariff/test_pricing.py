"""
TARDOC pricing tests.
Pure functions, no DB fixtures needed.
"""

from decimal import Decimal

import pytest

from app.tariff.constants import CANTON_TAX_POINT_VALUES, COST_NEUTRALITY_FACTOR
from app.tariff.pricing import (
    UnknownCantonError,
    UnknownTariffError,
    canton_tax_point_value,
    price,
    price_line,
    resolve_canton,
    round_chf,
)


class TestPrice:
    def test_geneva_first_consultation(self):
        """48.5 × 0.96 × 0.95 = 44.232 → 44.23"""
        assert price(Decimal("48.5"), "GE") == Decimal("44.23")

    def test_zurich_value_applied(self):
        """48.5 × 0.93 × 0.95 = 42.84975 → 42.85"""
        assert price(Decimal("48.5"), "ZH") == Decimal("42.85")

    def test_default_canton_when_omitted(self):
        assert price(Decimal("48.5")) == price(Decimal("48.5"), "GE")

    def test_canton_code_is_case_and_space_insensitive(self):
        assert price("32.5", " zh ") == price("32.5", "ZH")

    def test_result_has_two_decimals(self):
        assert price(Decimal("16.25"), "VD").as_tuple().exponent == -2

    def test_rounds_half_up(self):
        """1 × 0.93 × 0.95 = 0.8835 → 0.88; 10.5 × 0.86 × 0.95 = 8.5785 → 8.58"""
        assert price(1, "ZH") == Decimal("0.88")
        assert price("10.5", "SG") == Decimal("8.58")

    def test_float_input_uses_shortest_repr(self):
        assert price(48.5, "GE") == price(Decimal("48.5"), "GE")

    def test_zero_tax_points(self):
        assert price(0, "GE") == Decimal("0.00")

    def test_negative_tax_points_rejected(self):
        with pytest.raises(ValueError):
            price(Decimal("-1"), "GE")

    def test_non_numeric_tax_points_rejected(self):
        with pytest.raises(ValueError):
            price("many", "GE")

    def test_unknown_canton_raises(self):
        with pytest.raises(UnknownCantonError) as exc_info:
            price(Decimal("48.5"), "XX")
        assert exc_info.value.canton == "XX"

    def test_explicit_none_or_empty_canton_is_not_default(self):
        """Only an omitted canton falls back to the default."""
        with pytest.raises(UnknownCantonError):
            price(Decimal("48.5"), None)
        with pytest.raises(UnknownCantonError):
            price(Decimal("48.5"), "")

    def test_never_decreases_as_tax_points_rise(self):
        points = [Decimal(n) / 4 for n in range(0, 401)]
        for canton in ("GE", "ZH", "VS"):
            prices = [price(p, canton) for p in points]
            assert prices == sorted(prices)

    def test_every_canton_prices(self):
        for canton, value in CANTON_TAX_POINT_VALUES.items():
            expected = round_chf(Decimal("100") * value * COST_NEUTRALITY_FACTOR)
            assert price(100, canton) == expected


class TestCantonValue:
    def test_known_canton(self):
        assert canton_tax_point_value("GE") == Decimal("0.96")

    def test_unknown_canton(self):
        with pytest.raises(UnknownCantonError):
            canton_tax_point_value("ZZ")

    def test_resolve_canton_falls_back(self):
        assert resolve_canton("vd") == "VD"
        assert resolve_canton("XX") == "GE"
        assert resolve_canton(None, fallback="ZH") == "ZH"


class TestPriceLine:
    def test_prices_catalog_item(self):
        line = price_line("AA.01.0010", 2, "GE")
        assert line.item.code == "AA.01.0010"
        assert line.canton == "GE"
        assert line.unit_price == Decimal("44.23")
        assert line.total_price == Decimal("88.46")
        assert line.tax_point_value == Decimal("0.96")
        assert line.cost_neutrality_factor == Decimal("0.95")

    def test_unit_price_rounded_before_quantity(self):
        """Line total is the rounded unit price times quantity, re-rounded."""
        line = price_line("AA.01.0030", 3, "ZH")
        # 16.25 × 0.93 × 0.95 = 14.356875 → 14.36; × 3 = 43.08
        assert line.unit_price == Decimal("14.36")
        assert line.total_price == Decimal("43.08")

    def test_lookup_is_case_insensitive(self):
        assert price_line("aa.01.0010").item.code == "AA.01.0010"

    def test_default_canton(self):
        assert price_line("AA.01.0010").canton == "GE"

    def test_unknown_code(self):
        with pytest.raises(UnknownTariffError) as exc_info:
            price_line("ZZ.99.9999")
        assert exc_info.value.code == "ZZ.99.9999"

    def test_non_positive_quantity(self):
        with pytest.raises(ValueError):
            price_line("AA.01.0010", 0)

    def test_unknown_canton(self):
        with pytest.raises(UnknownCantonError):
            price_line("AA.01.0010", 1, "XX")
