"""
camt.054 bank-to-customer debit/credit notification import.

Swiss banks report incoming QR-bill payments as camt.054 XML. Each credit
entry (or each TxDtls inside it) carries the 27-digit creditor reference we
printed on the payment slip, so matching is by Invoice.reference_number.

Parsing ignores XML namespaces: banks ship camt.054.001.04 and .08 side by
side and only the element names matter here.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil.parser import isoparse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.base import utcnow
from app.models.invoice import Invoice, InvoiceStatus
from app.models.payment import PaymentEvent, PaymentOutcome, PaymentSource
from app.services.audit.logger import log_payment_applied

logger = logging.getLogger(__name__)

TOLERANCE = Decimal("0.01")


class Camt054Error(ValueError):
    pass


@dataclass
class BankEntry:
    amount: Decimal
    currency: str
    credit: bool
    reference: Optional[str]
    bank_reference: str
    booked_on: Optional[date] = None
    debtor_name: Optional[str] = None


@dataclass
class BankFileReport:
    message_id: Optional[str] = None
    total: int = 0
    paid: int = 0
    partial: int = 0
    overpaid: int = 0
    already_paid: int = 0
    unmatched: int = 0
    duplicates: int = 0
    errors: int = 0
    matched_amount: Decimal = Decimal("0.00")
    items: list[dict] = field(default_factory=list)


# ── Parsing ──────────────────────────────────────────────────────────────────


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _find(element: ET.Element, path: str) -> Optional[ET.Element]:
    """Namespace-agnostic child lookup, `path` like "BookgDt/Dt"."""
    node = element
    for name in path.split("/"):
        matches = _children(node, name)
        if not matches:
            return None
        node = matches[0]
    return node


def _find_text(element: ET.Element, path: str) -> Optional[str]:
    node = _find(element, path)
    if node is None or node.text is None:
        return None
    return node.text.strip() or None


def _iter(element: ET.Element, name: str):
    for node in element.iter():
        if _local(node.tag) == name:
            yield node


def _amount(element: Optional[ET.Element]) -> tuple[Optional[Decimal], Optional[str]]:
    if element is None or not (element.text or "").strip():
        return None, None
    try:
        value = Decimal(element.text.strip())
    except InvalidOperation:
        return None, None
    return value, element.get("Ccy")


def _booking_date(entry: ET.Element) -> Optional[date]:
    raw = _find_text(entry, "BookgDt/Dt") or _find_text(entry, "BookgDt/DtTm")
    if not raw:
        return None
    try:
        return isoparse(raw).date()
    except ValueError:
        return None


def parse_camt054(content: bytes) -> tuple[Optional[str], list[BankEntry]]:
    """
    Return (message id, entries). One BankEntry per TxDtls, or per Ntry when
    the bank does not itemise. Raises Camt054Error on unreadable XML.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise Camt054Error(f"Not a readable XML document: {exc}") from exc

    header = next(_iter(root, "GrpHdr"), None)
    message_id = _find_text(header, "MsgId") if header is not None else None

    entries: list[BankEntry] = []
    for index, ntry in enumerate(_iter(root, "Ntry")):
        entry_amount, entry_currency = _amount(_find(ntry, "Amt"))
        credit = (_find_text(ntry, "CdtDbtInd") or "CRDT").upper() == "CRDT"
        booked_on = _booking_date(ntry)
        entry_ref = _find_text(ntry, "AcctSvcrRef")

        details = list(_iter(ntry, "TxDtls")) or [ntry]
        for position, tx in enumerate(details):
            amount, currency = _amount(_find(tx, "Amt")) if tx is not ntry else (None, None)
            if amount is None:
                amount, currency = entry_amount, entry_currency
            if amount is None:
                logger.warning("camt.054 entry %d has no amount; skipped", index)
                continue

            reference = next(
                (
                    (ref.text or "").replace(" ", "").strip() or None
                    for info in _iter(tx, "CdtrRefInf")
                    for ref in _children(info, "Ref")
                ),
                None,
            )
            bank_reference = (
                _find_text(tx, "Refs/AcctSvcrRef")
                or (f"{entry_ref}/{position}" if entry_ref else None)
                or f"{message_id}/{index}/{position}"
            )
            debtor = next(
                (
                    _find_text(party, "Nm") or _find_text(party, "Pty/Nm")
                    for party in _iter(tx, "Dbtr")
                ),
                None,
            )
            entries.append(
                BankEntry(
                    amount=abs(amount),
                    currency=(currency or "CHF").upper(),
                    credit=credit,
                    reference=reference,
                    bank_reference=bank_reference,
                    booked_on=booked_on,
                    debtor_name=debtor,
                )
            )
    return message_id, entries


# ── Matching ─────────────────────────────────────────────────────────────────


def accumulated_status(paid: Decimal, total: Decimal) -> str:
    if abs(paid - total) <= TOLERANCE:
        return InvoiceStatus.PAID
    if paid > total:
        return InvoiceStatus.OVERPAID
    return InvoiceStatus.PARTIAL_PAID


_OUTCOME_COUNTER = {
    PaymentOutcome.PAID: "paid",
    PaymentOutcome.PARTIAL: "partial",
    PaymentOutcome.OVERPAID: "overpaid",
    PaymentOutcome.ALREADY_PAID: "already_paid",
    PaymentOutcome.UNMATCHED: "unmatched",
}

_STATUS_OUTCOME = {
    InvoiceStatus.PAID: PaymentOutcome.PAID,
    InvoiceStatus.OVERPAID: PaymentOutcome.OVERPAID,
    InvoiceStatus.PARTIAL_PAID: PaymentOutcome.PARTIAL,
}


def apply_bank_file(
    db: Session, entries: list[BankEntry], message_id: Optional[str] = None
) -> BankFileReport:
    """
    Apply every credit entry. Each entry commits on its own; a failing entry
    is rolled back, counted and skipped. Debit entries are ignored.
    """
    report = BankFileReport(message_id=message_id)
    for entry in entries:
        if not entry.credit or entry.amount <= 0:
            continue
        report.total += 1
        try:
            item = _apply_entry(db, entry)
        except IntegrityError:
            db.rollback()
            report.duplicates += 1
            continue
        except Exception:
            db.rollback()
            report.errors += 1
            logger.exception("Applying bank entry %s failed", entry.bank_reference)
            continue

        if item is None:
            report.duplicates += 1
            continue
        setattr(
            report,
            _OUTCOME_COUNTER[item["outcome"]],
            getattr(report, _OUTCOME_COUNTER[item["outcome"]]) + 1,
        )
        if item["outcome"] in _STATUS_OUTCOME.values():
            report.matched_amount += entry.amount
        report.items.append(item)

    logger.info(
        "Bank file %s: %d credit(s), %d paid, %d partial, %d overpaid, %d unmatched",
        message_id,
        report.total,
        report.paid,
        report.partial,
        report.overpaid,
        report.unmatched,
    )
    return report


def _apply_entry(db: Session, entry: BankEntry) -> Optional[dict]:
    seen = (
        db.query(PaymentEvent)
        .filter_by(source=PaymentSource.BANK_CAMT054, external_id=entry.bank_reference)
        .first()
    )
    if seen is not None:
        return None

    event = PaymentEvent(
        source=PaymentSource.BANK_CAMT054,
        external_id=entry.bank_reference,
        reference=entry.reference,
        amount=entry.amount,
        currency=entry.currency,
        booked_at=(
            datetime.combine(entry.booked_on, time.min, tzinfo=timezone.utc)
            if entry.booked_on
            else None
        ),
        payload={
            "debtor_name": entry.debtor_name,
        },
    )

    invoice = None
    if entry.reference:
        invoice = (
            db.query(Invoice)
            .filter(Invoice.reference_number == entry.reference)
            .with_for_update()
            .first()
        )

    previous_status = None
    if invoice is None:
        event.outcome = PaymentOutcome.UNMATCHED
        event.notes = (
            f"No invoice for reference {entry.reference}"
            if entry.reference
            else "No reference number in transaction"
        )
    else:
        event.invoice_id = invoice.id
        total = invoice.total_amount or Decimal("0.00")
        already = invoice.paid_amount or Decimal("0.00")
        if invoice.status in InvoiceStatus.SETTLED or total - already <= TOLERANCE:
            event.outcome = PaymentOutcome.ALREADY_PAID
            event.notes = (
                f"Invoice {invoice.invoice_number} already paid ({already}/{total} CHF)"
            )
        else:
            previous_status = invoice.status
            invoice.paid_amount = already + entry.amount
            invoice.status = accumulated_status(invoice.paid_amount, total)
            if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.OVERPAID):
                invoice.paid_at = utcnow()
            event.outcome = _STATUS_OUTCOME[invoice.status]
            event.notes = (
                f"{entry.amount} {entry.currency} applied; "
                f"paid {invoice.paid_amount} of {total}"
            )

    db.add(event)
    db.flush()
    if previous_status is not None:
        log_payment_applied(db, invoice, event, previous_status)
    db.commit()

    if event.outcome == PaymentOutcome.UNMATCHED:
        logger.warning("Bank entry %s: %s", entry.bank_reference, event.notes)

    return {
        "bank_reference": entry.bank_reference,
        "reference": entry.reference,
        "amount": str(entry.amount),
        "currency": entry.currency,
        "booked_on": entry.booked_on.isoformat() if entry.booked_on else None,
        "outcome": event.outcome,
        "invoice_number": invoice.invoice_number if invoice is not None else None,
        "notes": event.notes,
    }
