"""
Invoice document builder: turns stored invoice rows into an InvoiceDocument.

Design principle: pure function, caller persists. No DB access, no network,
no storage. ORM rows are accepted as-is; anything with the same attribute
names works (tests pass SimpleNamespace objects).

Resolution happens in a fixed order so that a half-configured practice still
produces a transmittable document:

  biller GLN        billing entity → invoice snapshot → LAST_RESORT_GLN
  biller ZSR/name   billing entity → invoice snapshot
  IBAN              billing entity → invoice snapshot → FALLBACK_QR_IBAN (+ warning)
  line provider     line override → staff → biller
  line responsible  line override → line provider

Staff without their own credentials (valid GLN *and* ZSR) bill under the
billing entity: the document shows the entity's name, the staff name is kept
on internal_staff_name for statistics only.

Hard failures raise BuildError; everything recoverable becomes a warning.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

from app.services.invoice_document.codes import (
    DiagnosisType,
    LawType,
    RequestSubtype,
    SideType,
    TiersMode,
    TariffType,
)
from app.services.invoice_document.identifiers import (
    FALLBACK_QR_IBAN,
    LAST_RESORT_GLN,
    MEDIDATA_INTERMEDIATE_GLN,
    TG_NO_TRANSMISSION_GLN,
    esr_reference,
    first_valid_gln,
    is_valid_avs,
    is_valid_gln,
    is_valid_zsr,
    normalize_avs,
    pick_valid_gln,
    sanitize_iban,
)
from app.tariff.constants import DEFAULT_CANTON
from app.tariff.pricing import resolve_canton, round_chf, to_decimal

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "generalInvoiceRequest_500"
MIN_DIAGNOSIS_CODE_LENGTH = 2


class BuildError(Exception):
    """Unrecoverable input problem; no document can be produced."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


# ── Document types ───────────────────────────────────────────────────────────


@dataclass
class Address:
    street: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    canton: Optional[str] = None


@dataclass
class Party:
    gln: str
    name: str
    zsr: Optional[str] = None
    address: Address = field(default_factory=Address)

    @property
    def display_name(self) -> str:
        return self.name


@dataclass
class InsurerParty:
    gln: str
    name: str


@dataclass
class PatientParty:
    first_name: str
    last_name: str
    birthdate: Optional[date]
    sex: str
    ssn: Optional[str]
    card_number: Optional[str]
    address: Address = field(default_factory=Address)


@dataclass
class Diagnosis:
    type: DiagnosisType
    code: str


@dataclass
class Treatment:
    date_begin: Optional[date]
    date_end: Optional[date]
    canton: str
    reason: str
    diagnoses: list[Diagnosis] = field(default_factory=list)


@dataclass
class ServiceLine:
    record_id: int
    tariff_type: str
    code: str
    name: str
    quantity: Decimal
    date_begin: Optional[date]
    provider_gln: str
    responsible_gln: str
    unit_price: Decimal
    amount: Decimal
    external_factor: Decimal = Decimal("1")
    side_type: SideType = SideType.NONE
    session: int = 1
    ref_code: Optional[str] = None


@dataclass
class TransportRouting:
    from_gln: str
    via_gln: str
    to_gln: str


@dataclass
class InvoiceDocument:
    invoice_number: str
    invoice_date: date
    due_date: Optional[date]
    request_subtype: RequestSubtype
    law_type: LawType
    tiers_mode: TiersMode
    biller: Party
    provider: Party
    patient: PatientParty
    insurer: Optional[InsurerParty]
    treatment: Treatment
    services: list[ServiceLine]
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    iban: str
    reference_number: str
    routing: TransportRouting
    vat_number: Optional[str] = None
    currency: str = "CHF"
    internal_staff_name: Optional[str] = None

    @property
    def is_copy(self) -> bool:
        return self.request_subtype == RequestSubtype.COPY

    @property
    def is_storno(self) -> bool:
        return self.request_subtype == RequestSubtype.STORNO


@dataclass
class BuildOptions:
    sender_gln: Optional[str] = None
    default_canton: str = DEFAULT_CANTON
    currency: str = "CHF"
    payment_period_days: int = 30  # due date when the invoice has none


@dataclass
class BuildResult:
    document: InvoiceDocument
    used_schema: str = SCHEMA_VERSION
    warnings: list[str] = field(default_factory=list)

    @property
    def validation_warning(self) -> Optional[str]:
        return "; ".join(self.warnings) if self.warnings else None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    value = getattr(obj, name, default)
    return default if value is None else value


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _address(obj: Any) -> Address:
    street = _text(_get(obj, "street"))
    street_no = _text(_get(obj, "street_no"))
    if street and street_no:
        street = f"{street} {street_no}"
    return Address(
        street=street,
        zip_code=_text(_get(obj, "zip_code")),
        city=_text(_get(obj, "city")),
        canton=_text(_get(obj, "canton")),
    )


class _DoctorSnapshot:
    """Treating-doctor view over the invoice's doctor_* snapshot columns."""

    def __init__(self, invoice: Any):
        self.name = _get(invoice, "doctor_name")
        self.gln = _get(invoice, "doctor_gln")
        self.zsr = _get(invoice, "doctor_zsr")
        self.street = None


def _due_date(invoice: Any, payment_period_days: int) -> Optional[date]:
    due = _get(invoice, "due_date")
    issued = _get(invoice, "invoice_date")
    if due is None and issued is not None:
        return issued + timedelta(days=payment_period_days)
    return due


def has_billing_credentials(staff: Any) -> bool:
    return is_valid_gln(_get(staff, "gln")) and is_valid_zsr(_get(staff, "zsr"))


def resolve_tariff_type(line_item: Any) -> str:
    stored = _text(_get(line_item, "tariff_type"))
    if stored:
        return stored
    catalog = (_get(line_item, "catalog_name", "") or "").upper()
    if catalog == "ACF":
        return TariffType.ACF.value
    if catalog in ("TARDOC", "TARMED"):
        return TariffType.TARDOC.value
    return TariffType.OTHER.value


def normalize_diagnoses(raw: Any) -> tuple[list[Diagnosis], int]:
    """
    Keep plain code strings (read as ICD) and dicts with a known coding system.
    Returns (kept, dropped_count). Codes shorter than two characters are dropped.
    """
    kept: list[Diagnosis] = []
    dropped = 0
    if not isinstance(raw, (list, tuple)):
        return kept, 0

    for entry in raw:
        if isinstance(entry, str):
            dtype, code = DiagnosisType.ICD, entry.strip()
        elif isinstance(entry, dict):
            dtype = DiagnosisType.lookup(entry.get("type"))
            code = str(entry.get("code") or "").strip()
        else:
            dropped += 1
            continue

        if dtype is None or len(code) < MIN_DIAGNOSIS_CODE_LENGTH:
            dropped += 1
            continue
        kept.append(Diagnosis(type=dtype, code=code))

    return kept, dropped


def resolve_transport_to(
    tiers_mode: TiersMode, insurer: Any, biller_gln: str
) -> str:
    if tiers_mode == TiersMode.GARANT:
        return TG_NO_TRANSMISSION_GLN
    return pick_valid_gln(
        _get(insurer, "receiver_gln"), _get(insurer, "gln"), fallback=biller_gln
    )


# ── Build ────────────────────────────────────────────────────────────────────


def build(
    invoice: Any,
    line_items: Iterable[Any],
    patient: Any,
    billing_entity: Any = None,
    staff: Any = None,
    insurer: Any = None,
    *,
    request_subtype: RequestSubtype = RequestSubtype.NORMAL,
    options: Optional[BuildOptions] = None,
) -> BuildResult:
    """
    Build the generalInvoiceRequest document for one invoice.

    Raises BuildError("no_services", ...) when there is nothing to bill and
    BuildError("no_patient", ...) when the patient row is missing.
    """
    options = options or BuildOptions()
    warnings: list[str] = []
    items = list(line_items or [])

    if not items:
        raise BuildError("no_services", "No line items found for this invoice")
    if patient is None:
        raise BuildError("no_patient", "Invoice has no patient")

    invoice_number = _get(invoice, "invoice_number")
    if not invoice_number:
        raise BuildError("no_invoice_number", "Invoice has no invoice number")

    # ── Biller ────────────────────────────────────────────────────────────────
    biller_gln = first_valid_gln(
        _get(billing_entity, "gln"), _get(invoice, "provider_gln")
    )
    if biller_gln is None:
        biller_gln = LAST_RESORT_GLN
        warnings.append(
            f"No valid biller GLN on billing entity or invoice; using {LAST_RESORT_GLN}"
        )

    biller_zsr = _text(_get(billing_entity, "zsr")) or _text(
        _get(invoice, "provider_zsr")
    )
    if biller_zsr and not is_valid_zsr(biller_zsr):
        warnings.append(f"Biller ZSR {biller_zsr!r} does not match the ZSR format")

    biller_name = (
        _text(_get(billing_entity, "name"))
        or _text(_get(invoice, "provider_name"))
        or ""
    )

    canton = resolve_canton(
        _text(_get(billing_entity, "canton"))
        or _text(_get(invoice, "treatment_canton")),
        fallback=options.default_canton,
    )

    biller_address = _address(billing_entity)
    biller_address.canton = canton
    biller = Party(gln=biller_gln, name=biller_name, zsr=biller_zsr, address=biller_address)

    iban = sanitize_iban(_get(billing_entity, "iban")) or sanitize_iban(
        _get(invoice, "provider_iban")
    )
    if iban is None:
        iban = FALLBACK_QR_IBAN
        warnings.append(f"No valid IBAN on file; using fallback QR-IBAN {FALLBACK_QR_IBAN}")

    # ── Provider (treating staff) ─────────────────────────────────────────────
    # Without a staff row the invoice's doctor snapshot stands in
    treating = staff or _DoctorSnapshot(invoice)
    internal_staff_name = None
    staff_gln: Optional[str] = None
    if has_billing_credentials(treating):
        staff_gln = _get(treating, "gln")
        provider = Party(
            gln=staff_gln,
            name=_text(_get(treating, "name")) or biller_name,
            zsr=_text(_get(treating, "zsr")),
            address=_address(treating) if _get(treating, "street") else biller_address,
        )
    else:
        # Bill under the practice; keep who actually treated for statistics
        internal_staff_name = _text(_get(treating, "name"))
        provider = Party(
            gln=biller_gln,
            name=biller_name,
            zsr=biller_zsr,
            address=biller_address,
        )

    # ── Services ──────────────────────────────────────────────────────────────
    services: list[ServiceLine] = []
    replaced_glns = 0
    for index, item in enumerate(items, start=1):
        override = _get(item, "provider_gln")
        if override and not is_valid_gln(override):
            replaced_glns += 1
        line_provider = pick_valid_gln(override, staff_gln, fallback=biller_gln)
        line_responsible = pick_valid_gln(
            _get(item, "responsible_gln"), fallback=line_provider
        )

        tariff_type = resolve_tariff_type(item)
        external_factor = Decimal("1")
        if tariff_type == TariffType.ACF.value:
            external_factor = to_decimal(_get(item, "external_factor_mt", "1"))

        quantity = to_decimal(_get(item, "quantity", "1"))
        unit_price = round_chf(to_decimal(_get(item, "unit_price", "0")))
        amount = _get(item, "total_price")
        amount = (
            round_chf(to_decimal(amount))
            if amount is not None
            else round_chf(unit_price * quantity * external_factor)
        )

        services.append(
            ServiceLine(
                record_id=index,
                tariff_type=tariff_type,
                code=_get(item, "code", ""),
                name=_text(_get(item, "name")) or _get(item, "code", ""),
                quantity=quantity,
                date_begin=_get(item, "date_begin") or _get(invoice, "treatment_date"),
                provider_gln=line_provider,
                responsible_gln=line_responsible,
                unit_price=unit_price,
                amount=amount,
                external_factor=external_factor,
                side_type=SideType.parse(_get(item, "side_type", 0)),
                session=int(_get(item, "session_number", 1)) or 1,
                ref_code=_text(_get(item, "ref_code")),
            )
        )

    if replaced_glns:
        warnings.append(
            f"{replaced_glns} line item(s) had a malformed provider GLN and were re-assigned"
        )

    # ── Diagnoses ─────────────────────────────────────────────────────────────
    diagnoses, dropped = normalize_diagnoses(_get(invoice, "diagnosis_codes", []))
    if dropped:
        warnings.append(f"Dropped {dropped} malformed diagnosis entr{'y' if dropped == 1 else 'ies'}")

    treatment_begin = _get(invoice, "treatment_date") or _get(invoice, "invoice_date")
    treatment = Treatment(
        date_begin=treatment_begin,
        date_end=_get(invoice, "treatment_date_end") or treatment_begin,
        canton=canton,
        reason=_get(invoice, "treatment_reason", "disease"),
        diagnoses=diagnoses,
    )

    # ── Insurer / patient ─────────────────────────────────────────────────────
    tiers_mode = TiersMode.from_billing_type(_get(invoice, "billing_type"))
    insurer_gln = first_valid_gln(_get(insurer, "receiver_gln"), _get(insurer, "gln"))
    insurer_party = (
        InsurerParty(gln=insurer_gln, name=_get(insurer, "name", ""))
        if insurer_gln
        else None
    )
    if tiers_mode == TiersMode.PAYANT and insurer_party is None:
        warnings.append("Tiers Payant invoice without a valid insurer GLN")

    avs = _text(_get(patient, "avs_number"))
    if avs and not is_valid_avs(avs):
        warnings.append(f"Patient AVS number {avs!r} fails the 756 check; sent as entered")

    patient_party = PatientParty(
        first_name=_get(patient, "first_name", ""),
        last_name=_get(patient, "last_name", ""),
        birthdate=_get(patient, "birthdate"),
        sex=_get(patient, "sex", "unknown"),
        ssn=normalize_avs(_get(patient, "avs_number")),
        card_number=_text(_get(patient, "insurance_card_number")),
        address=_address(patient),
    )

    routing = TransportRouting(
        from_gln=pick_valid_gln(options.sender_gln, fallback=biller_gln),
        via_gln=MEDIDATA_INTERMEDIATE_GLN,
        to_gln=resolve_transport_to(tiers_mode, insurer, biller_gln),
    )

    reference_number = _text(_get(invoice, "reference_number")) or esr_reference(
        invoice_number
    )

    document = InvoiceDocument(
        invoice_number=invoice_number,
        invoice_date=_get(invoice, "invoice_date"),
        due_date=_due_date(invoice, options.payment_period_days),
        request_subtype=request_subtype,
        law_type=LawType.parse(_get(invoice, "law_type")),
        tiers_mode=tiers_mode,
        biller=biller,
        provider=provider,
        patient=patient_party,
        insurer=insurer_party,
        treatment=treatment,
        services=services,
        subtotal=round_chf(to_decimal(_get(invoice, "subtotal", "0"))),
        vat_amount=round_chf(to_decimal(_get(invoice, "vat_amount", "0"))),
        total=round_chf(to_decimal(_get(invoice, "total_amount", "0"))),
        iban=iban,
        reference_number=reference_number,
        routing=routing,
        vat_number=_text(_get(billing_entity, "vat_number")),
        currency=options.currency,
        internal_staff_name=internal_staff_name,
    )

    if warnings:
        logger.info(
            "Built invoice %s with %d warning(s): %s",
            invoice_number,
            len(warnings),
            "; ".join(warnings),
        )

    return BuildResult(document=document, warnings=warnings)
