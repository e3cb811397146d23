"""Payment webhook and bank-file import schemas."""

from decimal import Decimal
from typing import Optional

from app.schemas.common import BaseSchema


class WebhookAck(BaseSchema):
    """
    Always returned with HTTP 200, whatever happened internally. `error` is
    set when the update could not be applied; the details are in the logs.
    """

    received: bool = True
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    outcome: Optional[str] = None
    invoice_number: Optional[str] = None
    duplicate: bool = False
    error: Optional[str] = None


class BankFileItem(BaseSchema):
    bank_reference: str
    reference: Optional[str] = None
    amount: Decimal
    currency: str
    booked_on: Optional[str] = None
    outcome: str
    invoice_number: Optional[str] = None
    notes: Optional[str] = None


class BankFileResponse(BaseSchema):
    message_id: Optional[str] = None
    total: int
    paid: int
    partial: int
    overpaid: int
    already_paid: int
    unmatched: int
    duplicates: int
    errors: int
    matched_amount: Decimal
    items: list[BankFileItem] = []
