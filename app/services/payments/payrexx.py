"""
Payrexx payment gateway: webhook parsing and invoice reconciliation.

Payrexx posts a transaction update every time a transaction changes state,
and retries until it receives a 2xx. The router therefore always answers
200; everything in here may raise and the router logs it.

Flow for one webhook delivery:
  1. parse_webhook_payload()  body (JSON or form-encoded) → dict
  2. transaction_from_payload() dict → PayrexxTransaction
  3. reconcile_transaction()  dedupe → match invoice → apply → commit

Amounts arrive in minor units (Rappen). A confirmed transaction that settles
more than one cent below the invoice total is a fee deduction or a short
payment: the invoice becomes PARTIAL_LOSS and keeps the settled amount.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from urllib.parse import parse_qsl

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.base import utcnow
from app.models.invoice import Invoice, InvoiceStatus
from app.models.payment import PaymentEvent, PaymentOutcome, PaymentSource
from app.services.audit.logger import log_payment_applied

logger = logging.getLogger(__name__)

PAYMENT_TOLERANCE = Decimal("0.01")

_BRACKET_KEY = re.compile(r"\[([^\]]*)\]")


class PayrexxStatus:
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    AUTHORIZED = "authorized"
    RESERVED = "reserved"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially-refunded"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    ERROR = "error"
    UNCAPTURED = "uncaptured"

    ALL = [
        WAITING,
        CONFIRMED,
        AUTHORIZED,
        RESERVED,
        REFUNDED,
        PARTIALLY_REFUNDED,
        CANCELLED,
        DECLINED,
        ERROR,
        UNCAPTURED,
    ]


class WebhookPayloadError(ValueError):
    pass


def is_transaction_paid(status: Optional[str]) -> bool:
    return (status or "").strip().lower() == PayrexxStatus.CONFIRMED


# ── Parsing ──────────────────────────────────────────────────────────────────


def parse_webhook_payload(body: bytes, content_type: Optional[str]) -> dict:
    """
    Decode a webhook body into a dict with a "transaction" key.

    JSON bodies are used as-is. Form-encoded bodies carry either a
    `transaction` field holding JSON, or bracketed keys such as
    `transaction[invoice][referenceId]`.
    """
    content_type = (content_type or "").lower()
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        raise WebhookPayloadError("Empty webhook body")

    if "application/x-www-form-urlencoded" in content_type or (
        "json" not in content_type and not text.startswith("{")
    ):
        return _parse_form(text)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise WebhookPayloadError(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    return payload


def _parse_form(text: str) -> dict:
    fields = parse_qsl(text, keep_blank_values=True)
    if not fields:
        raise WebhookPayloadError("Form body has no fields")

    payload: dict[str, Any] = {}
    for key, value in fields:
        if key == "transaction":
            try:
                payload["transaction"] = json.loads(value)
            except json.JSONDecodeError as exc:
                raise WebhookPayloadError(
                    f"Form field 'transaction' is not valid JSON: {exc}"
                ) from exc
            continue
        head, _, rest = key.partition("[")
        path = [head] + (_BRACKET_KEY.findall("[" + rest) if rest else [])
        node = payload
        for part in path[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                break
        else:
            node[path[-1]] = value
    return payload


@dataclass
class PayrexxTransaction:
    id: Optional[str]
    uuid: Optional[str]
    status: Optional[str]
    reference: Optional[str]
    amount: Optional[Decimal]  # CHF, converted from minor units
    currency: str = "CHF"

    @property
    def external_id(self) -> str:
        return f"{self.id}:{self.status}"

    @property
    def is_paid(self) -> bool:
        return is_transaction_paid(self.status)


def transaction_from_payload(payload: dict) -> PayrexxTransaction:
    """
    Read the fields we reconcile on. The payload may wrap the transaction
    (`{"transaction": {...}}`) or be the transaction itself.
    """
    tx = payload.get("transaction", payload)
    if not isinstance(tx, dict):
        raise WebhookPayloadError("No transaction data in webhook payload")
    invoice = tx.get("invoice") if isinstance(tx.get("invoice"), dict) else {}

    tx_id = _first(tx, "id", "transactionId")
    status = _first(tx, "status")
    if tx_id is None or status is None:
        raise WebhookPayloadError("Transaction id or status missing")

    minor_units = _first(tx, "amount", "settledAmountMinorUnits")
    if minor_units is None:
        minor_units = _first(invoice, "amount")

    return PayrexxTransaction(
        id=str(tx_id),
        uuid=_str_or_none(_first(tx, "uuid")),
        status=str(status).strip().lower(),
        reference=_str_or_none(
            _first(tx, "referenceId") or _first(invoice, "referenceId")
        ),
        amount=_from_minor_units(minor_units),
        currency=str(_first(tx, "currency") or _first(invoice, "currency") or "CHF").upper(),
    )


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def _from_minor_units(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return (Decimal(str(value)) / 100).quantize(Decimal("0.01"))
    except InvalidOperation:
        logger.warning("Ignoring unparseable transaction amount %r", value)
        return None


# ── Reconciliation ───────────────────────────────────────────────────────────


@dataclass
class PaymentResult:
    outcome: str
    invoice_id: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = None
    invoice_status: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    previous_status: Optional[str] = None
    duplicate: bool = False

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "invoice_id": str(self.invoice_id) if self.invoice_id else None,
            "invoice_number": self.invoice_number,
            "invoice_status": self.invoice_status,
            "paid_amount": str(self.paid_amount) if self.paid_amount is not None else None,
            "duplicate": self.duplicate,
        }


def settle_status(settled: Decimal, total: Decimal) -> str:
    """PARTIAL_LOSS when the settled amount is one cent or more below the total, else PAID."""
    if settled <= total - PAYMENT_TOLERANCE:
        return InvoiceStatus.PARTIAL_LOSS
    return InvoiceStatus.PAID


def reconcile_transaction(
    db: Session,
    tx: PayrexxTransaction,
    payload: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> PaymentResult:
    """
    Apply one transaction update to its invoice, exactly once, and commit.

    The same (transaction id, status) pair delivered twice is reported as a
    duplicate and changes nothing.
    """
    now = now or utcnow()

    seen = (
        db.query(PaymentEvent)
        .filter_by(source=PaymentSource.PAYREXX, external_id=tx.external_id)
        .first()
    )
    if seen is not None:
        logger.info("Payrexx transaction %s already applied", tx.external_id)
        return PaymentResult(
            outcome=seen.outcome, invoice_id=seen.invoice_id, duplicate=True
        )

    invoice = None
    if tx.reference:
        invoice = (
            db.query(Invoice)
            .filter(Invoice.invoice_number == tx.reference)
            .with_for_update()
            .first()
        )

    event = PaymentEvent(
        source=PaymentSource.PAYREXX,
        external_id=tx.external_id,
        reference=tx.reference,
        external_status=tx.status,
        amount=tx.amount,
        currency=tx.currency,
        payload=payload,
        booked_at=now,
    )

    if invoice is None:
        event.outcome = PaymentOutcome.UNMATCHED
        event.notes = f"No invoice with number {tx.reference!r}"
        logger.warning(
            "Payrexx transaction %s references unknown invoice %r", tx.id, tx.reference
        )
        result = PaymentResult(outcome=PaymentOutcome.UNMATCHED)
    else:
        event.invoice_id = invoice.id
        result = _apply_to_invoice(db, invoice, tx, event, now)

    db.add(event)
    try:
        db.flush()
        if invoice is not None and result.outcome in (
            PaymentOutcome.PAID,
            PaymentOutcome.PAID_SHORT,
        ):
            log_payment_applied(db, invoice, event, result.previous_status)
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same update won the insert
        db.rollback()
        logger.info("Payrexx transaction %s applied concurrently", tx.external_id)
        return PaymentResult(outcome=PaymentOutcome.ALREADY_PAID, duplicate=True)

    return result


def _apply_to_invoice(
    db: Session,
    invoice: Invoice,
    tx: PayrexxTransaction,
    event: PaymentEvent,
    now: datetime,
) -> PaymentResult:
    invoice.gateway_transaction_id = tx.id
    invoice.gateway_transaction_uuid = tx.uuid
    invoice.gateway_payment_status = tx.status

    result = PaymentResult(
        outcome=PaymentOutcome.NOT_PAID,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
    )

    if not tx.is_paid:
        event.outcome = PaymentOutcome.NOT_PAID
    elif invoice.status in InvoiceStatus.SETTLED:
        event.outcome = PaymentOutcome.ALREADY_PAID
        logger.info(
            "Invoice %s is already %s; confirmed transaction %s recorded only",
            invoice.invoice_number,
            invoice.status,
            tx.id,
        )
    else:
        total = invoice.total_amount or Decimal("0.00")
        settled = tx.amount if tx.amount is not None else total
        previous = invoice.status
        invoice.status = settle_status(settled, total)
        invoice.paid_amount = settled
        invoice.paid_at = now
        if invoice.status == InvoiceStatus.PARTIAL_LOSS:
            event.outcome = PaymentOutcome.PAID_SHORT
            logger.warning(
                "Invoice %s settled short: %s of %s %s",
                invoice.invoice_number,
                settled,
                total,
                tx.currency,
            )
        else:
            event.outcome = PaymentOutcome.PAID
            logger.info("Invoice %s paid via Payrexx (%s)", invoice.invoice_number, tx.id)
        result.previous_status = previous

    result.outcome = event.outcome
    result.invoice_status = invoice.status
    result.paid_amount = invoice.paid_amount
    return result
