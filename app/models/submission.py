"""
Clearing-house records: Submission, SubmissionHistory, ResponseRecord,
NotificationRecord.

Dedupe keys live in the database (unique constraints), not in memory:
  - Submission.medidata_message_id   one per upload
  - ResponseRecord.medidata_message_id one per downloaded insurer document
  - NotificationRecord.medidata_notification_id one per upstream notification
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from app.models.invoice import Invoice


# ── Constant classes (avoid Enum to keep migrations simple) ─────────────────


class SubmissionStatus:
    DRAFT = "draft"  # record created, upload not (yet) accepted by the proxy
    PENDING = "pending"  # uploaded, upstream message id known
    TRANSMITTED = "transmitted"  # clearing house finished processing
    DELIVERED = "delivered"  # handed to the insurer
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    ALL = [DRAFT, PENDING, TRANSMITTED, DELIVERED, ACCEPTED, REJECTED, CANCELLED]

    # Candidates for upstream status polling
    POLLABLE = [PENDING, TRANSMITTED]

    # Terminal states: a new submission may be created for the invoice
    TERMINAL = {ACCEPTED, REJECTED, CANCELLED}


class TriageStatus:
    NOT_REQUIRED = "NOT_REQUIRED"  # matched automatically
    OPEN = "OPEN"  # unmatched, waiting for an operator
    RESOLVED = "RESOLVED"  # operator linked it to a submission
    DISMISSED = "DISMISSED"  # operator confirmed it belongs to no submission

    ALL = [NOT_REQUIRED, OPEN, RESOLVED, DISMISSED]


# ── Models ───────────────────────────────────────────────────────────────────


class Submission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    One transmission attempt of an Invoice to the clearing house.

    At most one non-terminal Submission exists per invoice; the submitter
    checks before creating a new one.
    """

    __tablename__ = "medidata_submissions"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Snapshots at submission time, used for correlation matching
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    invoice_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    billing_type: Mapped[str] = mapped_column(String(4), nullable=False)
    law_type: Mapped[str] = mapped_column(String(8), nullable=False)

    # ── Document ──────────────────────────────────────────────────────────────
    xml_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    xml_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    xml_version: Mapped[str] = mapped_column(String(32), nullable=False)
    validation_warning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Transport ─────────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SubmissionStatus.DRAFT,
        index=True,
    )
    medidata_message_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, unique=True
    )
    patient_copy_ref: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="Message id of the Tiers Payant copy sent to the patient",
    )
    transmitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_status_check_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last upload status check; the poll checks the stalest first",
    )
    medidata_response_code: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True
    )
    medidata_response_message: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )

    # ── Insurer reply ─────────────────────────────────────────────────────────
    insurance_response_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    insurance_response_code: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True
    )
    insurance_response_message: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="submissions")
    history: Mapped[list["SubmissionHistory"]] = relationship(
        "SubmissionHistory",
        back_populates="submission",
        order_by="SubmissionHistory.id",
    )
    responses: Mapped[list["ResponseRecord"]] = relationship(
        "ResponseRecord", back_populates="submission"
    )

    @property
    def is_active(self) -> bool:
        return self.status not in SubmissionStatus.TERMINAL

    def __repr__(self) -> str:
        return (
            f"<Submission invoice_number={self.invoice_number!r} "
            f"status={self.status!r} message_id={self.medidata_message_id!r}>"
        )


class SubmissionHistory(Base):
    """
    Append-only status trail. Never updated or deleted.

    The integer primary key gives strict insertion order per submission,
    independent of clock resolution.
    """

    __tablename__ = "medidata_submission_history"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("medidata_submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    response_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    response_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    submission: Mapped["Submission"] = relationship(
        "Submission", back_populates="history"
    )

    def __repr__(self) -> str:
        return (
            f"<SubmissionHistory {self.previous_status!r} → {self.new_status!r}>"
        )


class ResponseRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    One insurer document downloaded from the clearing house.

    submission_id is NULL when no submission could be matched; such rows stay
    in the triage queue until an operator resolves them. They are never
    discarded.
    """

    __tablename__ = "medidata_responses"

    medidata_message_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    document_reference: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )
    correlation_reference: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    sender_gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    submission_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("medidata_submissions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    match_method: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="transmission_reference | correlation_reference | manual",
    )
    triage_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TriageStatus.NOT_REQUIRED, index=True
    )
    triage_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Parsed content ────────────────────────────────────────────────────────
    response_type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="accepted | rejected | pending | unknown"
    )
    status_in: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status_out: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    document_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    submission: Mapped[Optional["Submission"]] = relationship(
        "Submission", back_populates="responses"
    )

    def __repr__(self) -> str:
        return (
            f"<ResponseRecord message_id={self.medidata_message_id!r} "
            f"type={self.response_type!r}>"
        )


class NotificationRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Delivery / error notice from the clearing house (not an insurer reply)."""

    __tablename__ = "medidata_notifications"

    medidata_notification_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    severity: Mapped[str] = mapped_column(
        String(16), nullable=False, default="INFO", comment="INFO | WARNING | ERROR"
    )
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transmission_reference: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    submission_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("medidata_submissions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    medidata_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRecord id={self.medidata_notification_id!r} "
            f"severity={self.severity!r}>"
        )
