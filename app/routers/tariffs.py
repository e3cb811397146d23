"""
Tariff catalog routes (read-only reference data, no auth).

  GET /tariffs/search?q=&chapter=&limit=   → catalog search
  GET /tariffs/price?tax_points=&canton=   → price quote for raw tax points
  GET /tariffs/{code}                      → single item
  GET /tariffs/{code}/quote?quantity=&canton= → priced line

/price is declared before /{code} so it is not captured as a code.
"""

import itertools
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from app.schemas.tariff import LineQuoteResponse, PriceQuoteResponse, TariffItemResponse
from app.tariff import catalog
from app.tariff.constants import COST_NEUTRALITY_FACTOR, DEFAULT_CANTON
from app.tariff.pricing import (
    UnknownCantonError,
    UnknownTariffError,
    canton_tax_point_value,
    price,
    price_line,
)

router = APIRouter(prefix="/tariffs", tags=["tariffs"])


@router.get("/search", response_model=list[TariffItemResponse])
def search_tariffs(
    q: str = "",
    chapter: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> list:
    matches = catalog.search(q)
    if chapter:
        in_chapter = {item.code for item in catalog.items_by_chapter(chapter.strip().upper())}
        matches = (item for item in matches if item.code in in_chapter)
    return list(itertools.islice(matches, limit))


@router.get("/price", response_model=PriceQuoteResponse)
def quote_price(
    tax_points: Decimal = Query(..., ge=0),
    canton: Optional[str] = None,
) -> PriceQuoteResponse:
    resolved = canton if canton is not None else DEFAULT_CANTON
    try:
        amount = price(tax_points, resolved)
        tpv = canton_tax_point_value(resolved)
    except UnknownCantonError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return PriceQuoteResponse(
        tax_points=tax_points,
        canton=resolved.strip().upper(),
        tax_point_value=tpv,
        cost_neutrality_factor=COST_NEUTRALITY_FACTOR,
        price=amount,
    )


@router.get("/{code}", response_model=TariffItemResponse)
def get_tariff(code: str):
    item = catalog.lookup(code)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Tariff code {code!r} not found")
    return item


@router.get("/{code}/quote", response_model=LineQuoteResponse)
def quote_line(
    code: str,
    quantity: Decimal = Query(default=Decimal("1"), gt=0),
    canton: Optional[str] = None,
):
    try:
        if canton is None:
            return price_line(code, quantity)
        return price_line(code, quantity, canton)
    except UnknownTariffError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except UnknownCantonError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
