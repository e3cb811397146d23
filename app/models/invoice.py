"""
Invoice-side entities: Invoice, LineItem.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from app.models.party import BillingEntity, Insurer, MedicalStaff, Patient
    from app.models.submission import Submission


# ── Lifecycle state constants ────────────────────────────────────────────────


class InvoiceStatus:
    DRAFT = "DRAFT"
    OPEN = "OPEN"  # finalized, not (yet) sent electronically
    PENDING = "PENDING"  # submitted to the clearing house
    PAID = "PAID"
    PARTIAL_PAID = "PARTIAL_PAID"
    PARTIAL_LOSS = "PARTIAL_LOSS"  # settled short, e.g. gateway fee deducted
    OVERPAID = "OVERPAID"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    ALL = [
        DRAFT,
        OPEN,
        PENDING,
        PAID,
        PARTIAL_PAID,
        PARTIAL_LOSS,
        OVERPAID,
        REJECTED,
        CANCELLED,
    ]

    # Financially settled: no further payment transitions
    SETTLED = {PAID, PARTIAL_LOSS, OVERPAID}
    TERMINAL = {PAID, PARTIAL_LOSS, OVERPAID, CANCELLED}


class BillingType:
    TG = "TG"  # Tiers Garant: patient pays, claims back from insurer
    TP = "TP"  # Tiers Payant: insurer pays the provider directly

    ALL = [TG, TP]


class HealthInsuranceLaw:
    KVG = "KVG"
    UVG = "UVG"
    IVG = "IVG"
    MVG = "MVG"
    VVG = "VVG"

    ALL = [KVG, UVG, IVG, MVG, VVG]


class TariffCatalog:
    TARDOC = "TARDOC"
    ACF = "ACF"
    OTHER = "OTHER"


# ── Models ───────────────────────────────────────────────────────────────────


class Invoice(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    A patient invoice for one consultation / treatment episode.

    invoice_number is the business key the clearing house echoes back as the
    correlation reference, and the reference a payment gateway reports.
    """

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    treatment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    treatment_date_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    treatment_canton: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    treatment_reason: Mapped[str] = mapped_column(
        String(16), nullable=False, default="disease"
    )

    # ── Parties ───────────────────────────────────────────────────────────────
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    billing_entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("billing_entities.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("medical_staff.id", ondelete="SET NULL"),
        nullable=True,
    )
    insurer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("insurers.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Snapshot fallbacks captured at finalization (used when a party row
    # is missing or incomplete)
    provider_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    provider_gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    provider_zsr: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    provider_iban: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    doctor_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    doctor_gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    doctor_zsr: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # ── Insurance context ─────────────────────────────────────────────────────
    law_type: Mapped[str] = mapped_column(
        String(8), nullable=False, default=HealthInsuranceLaw.KVG
    )
    billing_type: Mapped[str] = mapped_column(
        String(4), nullable=False, default=BillingType.TG
    )
    diagnosis_codes: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment='[{"type": "ICD", "code": "Z42.1"}] or plain code strings',
    )

    # ── Amounts (CHF) ─────────────────────────────────────────────────────────
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    vat_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    reference_number: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        index=True,
        comment="27-digit QR/ESR reference printed on the payment slip",
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        index=True,
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Payment gateway linkage ───────────────────────────────────────────────
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    gateway_transaction_uuid: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    gateway_payment_status: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    patient: Mapped["Patient"] = relationship("Patient", back_populates="invoices")
    billing_entity: Mapped[Optional["BillingEntity"]] = relationship(
        "BillingEntity", back_populates="invoices"
    )
    staff: Mapped[Optional["MedicalStaff"]] = relationship("MedicalStaff")
    insurer: Mapped[Optional["Insurer"]] = relationship("Insurer")
    line_items: Mapped[list["LineItem"]] = relationship(
        "LineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="LineItem.sort_order",
    )
    submissions: Mapped[list["Submission"]] = relationship(
        "Submission",
        back_populates="invoice",
        order_by="Submission.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice invoice_number={self.invoice_number!r} status={self.status!r}>"
        )


class LineItem(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    A single billable service on an invoice.

    unit_price is CHF per unit as priced at finalization (tax points × canton
    value × neutrality factor for TARDOC; catalog price for ACF).
    """

    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Tariff ────────────────────────────────────────────────────────────────
    catalog_name: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TariffCatalog.TARDOC
    )
    tariff_type: Mapped[Optional[str]] = mapped_column(
        String(3),
        nullable=True,
        comment="001 TARDOC/TARMED | 005 ACF | 402 drugs | 999 other; derived if NULL",
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ref_code: Mapped[Optional[str]] = mapped_column(
        String(16), nullable=True, comment="ICD-10 reference code"
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("1")
    )
    session_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tax_points: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    external_factor_mt: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4),
        nullable=True,
        comment="ACF external factor; ignored for other catalogs",
    )
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )

    date_begin: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    side_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="0 none | 1 left | 2 right | 3 both"
    )

    # GLN overrides, validated (and replaced if malformed) by the builder
    provider_gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    responsible_gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")

    def __repr__(self) -> str:
        return (
            f"<LineItem code={self.code!r} qty={self.quantity} "
            f"total={self.total_price}>"
        )
