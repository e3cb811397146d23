"""Tariff catalog and price quote schemas."""

from decimal import Decimal
from typing import Optional

from app.schemas.common import BaseSchema


class TariffItemResponse(BaseSchema):
    code: str
    main_chapter: str
    description: str
    description_fr: str
    description_de: str
    tax_points: Decimal
    technical_tax_points: Decimal
    medical_tax_points: Decimal
    duration_minutes: int
    requires_qualification: Optional[str] = None


class PriceQuoteResponse(BaseSchema):
    tax_points: Decimal
    canton: str
    tax_point_value: Decimal
    cost_neutrality_factor: Decimal
    price: Decimal


class LineQuoteResponse(BaseSchema):
    """A catalog item priced for a canton and quantity."""

    item: TariffItemResponse
    canton: str
    quantity: Decimal
    tax_point_value: Decimal
    cost_neutrality_factor: Decimal
    unit_price: Decimal
    total_price: Decimal
