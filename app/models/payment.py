"""
PaymentEvent: log of every external payment signal applied to an invoice.

One row per (source, external_id). A redelivered webhook or a bank file
imported twice hits the unique constraint and is skipped, so each signal
moves invoice state at most once.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin


class PaymentSource:
    PAYREXX = "payrexx"
    BANK_CAMT054 = "camt054"


class PaymentOutcome:
    PAID = "paid"
    PAID_SHORT = "paid_short"
    PARTIAL = "partial"
    OVERPAID = "overpaid"
    ALREADY_PAID = "already_paid"
    NOT_PAID = "not_paid"  # gateway status other than confirmed
    UNMATCHED = "unmatched"


class PaymentEvent(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_payment_event_source_ext"),
    )

    source: Mapped[str] = mapped_column(String(16), nullable=False)
    external_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="payrexx: '<transaction id>:<status>'; camt054: bank reference",
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CHF")
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    booked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PaymentEvent {self.source}:{self.external_id} outcome={self.outcome!r}>"
        )
