"""
Serialise an InvoiceDocument to generalInvoiceRequest XML.

ElementTree handles escaping; attribute order follows insertion order.
The output is what gets uploaded and stored, so rendering is deterministic
for a given document and timestamp.
"""

import xml.etree.ElementTree as ET
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from app.services.invoice_document.builder import (
    Address,
    InvoiceDocument,
    Party,
    PatientParty,
)
from app.services.invoice_document.codes import RequestSubtype, TiersMode

NAMESPACE = "http://www.forum-datenaustausch.ch/invoice"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
SCHEMA_LOCATION = f"{NAMESPACE} generalInvoiceRequest_500.xsd"

PACKAGE_NAME = "medidata-billing"
PACKAGE_VERSION = "100"

ET.register_namespace("", NAMESPACE)
ET.register_namespace("xsi", XSI_NAMESPACE)


def _tag(name: str) -> str:
    return f"{{{NAMESPACE}}}{name}"


def _sub(parent: ET.Element, tag: str, **attrs) -> ET.Element:
    clean = {k: v for k, v in attrs.items() if v is not None and v != ""}
    return ET.SubElement(parent, _tag(tag), clean)


def _fmt_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _fmt_amount(value: Decimal) -> str:
    return f"{value:.2f}"


def _postal(parent: ET.Element, address: Address) -> None:
    postal = _sub(parent, "postal")
    for name, value in (
        ("street", address.street),
        ("zip", address.zip_code),
        ("city", address.city),
    ):
        if value:
            _sub(postal, name).text = value


def _company(parent: ET.Element, party: Party, with_postal: bool = True) -> None:
    company = _sub(parent, "company")
    _sub(company, "companyname").text = party.display_name
    if with_postal:
        _postal(company, party.address)


def _person(parent: ET.Element, patient: PatientParty) -> None:
    person = _sub(parent, "person")
    _sub(person, "familyname").text = patient.last_name
    _sub(person, "givenname").text = patient.first_name
    _postal(person, patient.address)


def render_xml(document: InvoiceDocument, timestamp: Optional[datetime] = None) -> str:
    """Render `document` as a UTF-8 XML string with declaration."""
    timestamp = timestamp or datetime.now(timezone.utc)
    request_id = f"{document.invoice_number}-{int(timestamp.timestamp())}"
    invoice_date = _fmt_date(document.invoice_date)

    root = ET.Element(
        _tag("request"),
        {
            f"{{{XSI_NAMESPACE}}}schemaLocation": SCHEMA_LOCATION,
            "language": "fr",
            "modus": "production",
            "validation_status": "0",
        },
    )

    processing = _sub(root, "processing")
    transport = _sub(
        processing,
        "transport",
        **{"from": document.routing.from_gln, "to": document.routing.to_gln},
    )
    _sub(transport, "via", via=document.routing.via_gln, sequence_id="1")

    payload = _sub(
        root,
        "payload",
        type="invoice",
        copy="1" if document.request_subtype == RequestSubtype.COPY else "0",
        storno="1" if document.request_subtype == RequestSubtype.STORNO else "0",
    )
    invoice = _sub(
        payload,
        "invoice",
        request_timestamp=str(int(timestamp.timestamp())),
        request_date=invoice_date,
        request_id=request_id,
    )
    body = _sub(invoice, "body", role="physician", place="practice")

    prolog = _sub(body, "prolog")
    _sub(prolog, "package", name=PACKAGE_NAME, version=PACKAGE_VERSION, id="0")

    # ── Tiers block ───────────────────────────────────────────────────────────
    tiers = _sub(body, "tiers_" + document.tiers_mode.role)

    biller = _sub(
        tiers, "biller", ean_party=document.biller.gln, zsr=document.biller.zsr
    )
    _company(biller, document.biller)

    provider = _sub(
        tiers, "provider", ean_party=document.provider.gln, zsr=document.provider.zsr
    )
    _company(provider, document.provider)

    if document.insurer is not None:
        insurance = _sub(tiers, "insurance", ean_party=document.insurer.gln)
        company = _sub(insurance, "company")
        _sub(company, "companyname").text = document.insurer.name

    patient_el = _sub(
        tiers,
        "patient",
        gender=document.patient.sex or "unknown",
        birthdate=_fmt_date(document.patient.birthdate),
    )
    _person(patient_el, document.patient)
    if document.patient.ssn:
        _sub(patient_el, "ssn").text = document.patient.ssn
    if document.patient.card_number:
        _sub(patient_el, "card", card_id=document.patient.card_number)

    if document.tiers_mode == TiersMode.GARANT:
        guarantor = _sub(tiers, "guarantor")
        _person(guarantor, document.patient)

    # ── Law / treatment ───────────────────────────────────────────────────────
    law = _sub(body, document.law_type.name.lower())
    treatment = _sub(
        law,
        "treatment",
        date_begin=_fmt_date(document.treatment.date_begin),
        date_end=_fmt_date(document.treatment.date_end),
        canton=document.treatment.canton,
        reason=document.treatment.reason,
    )
    for diagnosis in document.treatment.diagnoses:
        _sub(treatment, "diagnosis", type=diagnosis.type.xml_name, code=diagnosis.code)

    # ── Services ──────────────────────────────────────────────────────────────
    services = _sub(body, "services")
    for line in document.services:
        record = _sub(
            services,
            "record_tarmed",
            record_id=str(line.record_id),
            tariff_type=line.tariff_type,
            code=line.code,
            quantity=format(line.quantity.normalize(), "f"),
            date_begin=_fmt_date(line.date_begin),
            provider_id=line.provider_gln,
            responsible_id=line.responsible_gln,
            unit=_fmt_amount(line.unit_price),
            unit_factor="1.00",
            external_factor=(
                _fmt_amount(line.external_factor)
                if line.external_factor != 1
                else None
            ),
            service_attributes=(
                str(int(line.side_type)) if line.side_type else None
            ),
            session=str(line.session) if line.session > 1 else None,
            ref_code=line.ref_code,
            amount=_fmt_amount(line.amount),
        )
        _sub(record, "text").text = line.name

    # ── Balance / payment ─────────────────────────────────────────────────────
    balance = _sub(
        body,
        "balance",
        currency=document.currency,
        amount=_fmt_amount(document.subtotal),
        amount_due=_fmt_amount(document.total),
        amount_prepaid="0.00",
    )
    vat = _sub(balance, "vat", vat_number=document.vat_number)
    _sub(
        vat,
        "vat_rate",
        vat_rate="0.00",
        amount=_fmt_amount(document.subtotal),
        vat=_fmt_amount(document.vat_amount),
    )

    _sub(
        body,
        "esrQR",
        type="esrQR",
        iban=document.iban,
        reference_number=document.reference_number,
    )

    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="UTF-8", xml_declaration=True).decode("utf-8")
