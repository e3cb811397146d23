"""
Parties that appear on an invoice: BillingEntity, MedicalStaff, Insurer,
Patient, plus the operator User who drives submissions.

Identifiers are stored exactly as entered. Format checks and fallbacks
happen in the document builder, never on write, so a half-configured
practice can still save its data.
"""

from datetime import date
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Date, String, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from app.models.invoice import Invoice


# ── Enums (stored as strings for readability + migration safety) ────────────


class UserRole:
    ADMIN = "ADMIN"
    BILLING = "BILLING"

    ALL = [ADMIN, BILLING]


class Sex:
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


# ── Models ──────────────────────────────────────────────────────────────────


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(256), nullable=False, unique=True, index=True
    )
    hashed_password: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    def __repr__(self) -> str:
        return f"<User email={self.email!r} role={self.role!r}>"


class BillingEntity(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """The practice or clinic that issues invoices and receives payment."""

    __tablename__ = "billing_entities"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    zsr: Mapped[Optional[str]] = mapped_column(
        String(16), nullable=True, comment="santésuisse registry number, e.g. H123456"
    )
    iban: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="QR-IBAN preferred; raw as entered"
    )
    vat_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    salutation: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    street: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    street_no: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    canton: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    invoices: Mapped[list["Invoice"]] = relationship(
        "Invoice", back_populates="billing_entity"
    )

    def __repr__(self) -> str:
        return f"<BillingEntity name={self.name!r} gln={self.gln!r}>"


class MedicalStaff(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    A treating doctor. Personal GLN/ZSR are optional: staff without their own
    billing credentials bill under the BillingEntity.
    """

    __tablename__ = "medical_staff"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    salutation: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    zsr: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    street: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    street_no: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    canton: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    def __repr__(self) -> str:
        return f"<MedicalStaff name={self.name!r}>"


class Insurer(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "insurers"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    gln: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    receiver_gln: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="Transmission target when it differs from the insurer GLN",
    )
    tp_allowed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    def __repr__(self) -> str:
        return f"<Insurer name={self.name!r} gln={self.gln!r}>"


class Patient(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "patients"

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    birthdate: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sex: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    avs_number: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="AHV/AVS social security number"
    )
    insurance_card_number: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    street: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    invoices: Mapped[list["Invoice"]] = relationship(
        "Invoice", back_populates="patient"
    )

    def __repr__(self) -> str:
        return f"<Patient id={self.id} last_name={self.last_name!r}>"
