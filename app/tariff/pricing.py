"""
TARDOC pricing: deterministic CHF amounts from tax points.

    price = round_half_up(tax_points × canton value × COST_NEUTRALITY_FACTOR, 2)

Design principle: pure functions over Decimal, no DB access.

Canton handling: an explicitly supplied canton must be known
(UnknownCantonError otherwise). The default canton applies only when the
caller omits the argument entirely; passing None or "" is not "omitting".
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from app.tariff.catalog import TariffItem, lookup
from app.tariff.constants import (
    CANTON_TAX_POINT_VALUES,
    COST_NEUTRALITY_FACTOR,
    DEFAULT_CANTON,
)

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]

_OMITTED = object()


class UnknownCantonError(ValueError):
    def __init__(self, canton):
        self.canton = canton
        super().__init__(f"Unknown canton code: {canton!r}")


class UnknownTariffError(LookupError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Unknown tariff code: {code!r}")


@dataclass(frozen=True)
class PricedLine:
    """A catalog item priced for a given canton and quantity."""

    item: TariffItem
    canton: str
    quantity: Decimal
    tax_point_value: Decimal
    cost_neutrality_factor: Decimal
    unit_price: Decimal
    total_price: Decimal


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their shortest repr (0.1 → "0.1")
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def round_chf(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def canton_tax_point_value(canton=_OMITTED) -> Decimal:
    if canton is _OMITTED:
        canton = DEFAULT_CANTON
    key = canton.strip().upper() if isinstance(canton, str) else canton
    try:
        return CANTON_TAX_POINT_VALUES[key]
    except (KeyError, TypeError):
        raise UnknownCantonError(canton) from None


def price(tax_points: Number, canton=_OMITTED) -> Decimal:
    """
    CHF price for `tax_points` in `canton`, rounded half-up to 2 decimals.

    Raises UnknownCantonError for an unknown explicit canton and ValueError
    for negative or non-numeric tax points.
    """
    points = to_decimal(tax_points)
    if points < 0:
        raise ValueError(f"Tax points must not be negative: {tax_points!r}")
    tpv = canton_tax_point_value(canton)
    return round_chf(points * tpv * COST_NEUTRALITY_FACTOR)


def price_line(
    code: str,
    quantity: Number = 1,
    canton=_OMITTED,
) -> PricedLine:
    """Price one catalog item. Unit price is rounded before multiplying."""
    item = lookup(code)
    if item is None:
        raise UnknownTariffError(code)
    qty = to_decimal(quantity)
    if qty <= 0:
        raise ValueError(f"Quantity must be positive: {quantity!r}")

    resolved = DEFAULT_CANTON if canton is _OMITTED else canton
    tpv = canton_tax_point_value(resolved)
    unit_price = price(item.tax_points, resolved)
    return PricedLine(
        item=item,
        canton=resolved.strip().upper(),
        quantity=qty,
        tax_point_value=tpv,
        cost_neutrality_factor=COST_NEUTRALITY_FACTOR,
        unit_price=unit_price,
        total_price=round_chf(unit_price * qty),
    )


def resolve_canton(canton: Optional[str], fallback: str = DEFAULT_CANTON) -> str:
    """Pick a canton for document fields: the given one if known, else fallback."""
    if canton and canton.strip().upper() in CANTON_TAX_POINT_VALUES:
        return canton.strip().upper()
    return fallback
