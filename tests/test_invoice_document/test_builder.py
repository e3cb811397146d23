"""
Invoice document builder tests.

The builder reads plain attributes, so these tests feed it SimpleNamespace
rows instead of ORM objects and need no database.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.services.invoice_document.builder import (
    BuildError,
    BuildOptions,
    build,
    normalize_diagnoses,
    resolve_tariff_type,
)
from app.services.invoice_document.codes import (
    DiagnosisType,
    LawType,
    RequestSubtype,
    TiersMode,
)
from app.services.invoice_document.identifiers import (
    FALLBACK_QR_IBAN,
    LAST_RESORT_GLN,
    MEDIDATA_INTERMEDIATE_GLN,
    TG_NO_TRANSMISSION_GLN,
    esr_reference,
)

ENTITY_GLN = "7601000000002"
STAFF_GLN = "7601000000019"
INSURER_GLN = "7601003000382"


# ── Helpers ───────────────────────────────────────────────────────────────────


def _entity(**overrides):
    fields = dict(
        name="Cabinet Médical du Lac",
        gln=ENTITY_GLN,
        zsr="H123456",
        iban="CH93 0076 2011 6238 5295 7",
        street="Rue du Rhône",
        street_no="12",
        zip_code="1204",
        city="Genève",
        canton="GE",
        vat_number=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _invoice(**overrides):
    fields = dict(
        invoice_number="INV-2024-0001",
        invoice_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        treatment_date=date(2024, 2, 28),
        billing_type="TG",
        law_type="KVG",
        diagnosis_codes=[{"type": "ICD", "code": "J06.9"}],
        subtotal=Decimal("88.46"),
        vat_amount=Decimal("0"),
        total_amount=Decimal("88.46"),
        reference_number=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _line(**overrides):
    fields = dict(
        code="AA.01.0010",
        name="First consultation, comprehensive",
        catalog_name="TARDOC",
        tariff_type=None,
        quantity=Decimal("2"),
        unit_price=Decimal("44.23"),
        total_price=Decimal("88.46"),
        provider_gln=None,
        responsible_gln=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _patient():
    return SimpleNamespace(
        first_name="Marie",
        last_name="Dupont",
        birthdate=date(1980, 5, 12),
        sex="female",
        avs_number="756.1234.5678.97",
        insurance_card_number="80756012345678901234",
    )


def _staff(**overrides):
    fields = dict(name="Dr. Léa Martin", gln=None, zsr=None)
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _build(invoice=None, lines=None, entity=None, staff=None, insurer=None, **kwargs):
    return build(
        invoice or _invoice(),
        [_line()] if lines is None else lines,
        _patient(),
        _entity() if entity is None else entity,
        staff,
        insurer,
        **kwargs,
    )


# ── Tests ─────────────────────────────────────────────────────────────────────


class TestBuilderHappyPath:
    def test_complete_practice_builds_without_warnings(self):
        result = _build(staff=_staff())
        assert result.warnings == []
        assert result.validation_warning is None
        assert result.used_schema == "generalInvoiceRequest_500"

    def test_due_date_kept(self):
        assert _build().document.due_date == date(2024, 3, 31)

    def test_due_date_from_payment_period(self):
        document = _build(
            invoice=_invoice(due_date=None), options=BuildOptions(payment_period_days=10)
        ).document
        assert document.due_date == date(2024, 3, 11)

    def test_biller_from_billing_entity(self):
        document = _build().document
        assert document.biller.gln == ENTITY_GLN
        assert document.biller.zsr == "H123456"
        assert document.biller.address.street == "Rue du Rhône 12"
        assert document.iban == "CH9300762011623852957"

    def test_codes_resolved(self):
        document = _build().document
        assert document.law_type == LawType.KVG
        assert document.tiers_mode == TiersMode.GARANT
        assert document.request_subtype == RequestSubtype.NORMAL
        assert document.services[0].tariff_type == "001"

    def test_patient_ssn_normalised(self):
        assert _build().document.patient.ssn == "7561234567897"

    def test_reference_derived_from_invoice_number(self):
        assert _build().document.reference_number == esr_reference("INV-2024-0001")

    def test_stored_reference_kept(self):
        invoice = _invoice(reference_number="210000000003139471430009017")
        assert _build(invoice).document.reference_number == "210000000003139471430009017"

    def test_treatment_canton_and_dates(self):
        treatment = _build().document.treatment
        assert treatment.canton == "GE"
        assert treatment.date_begin == date(2024, 2, 28)
        assert treatment.date_end == date(2024, 2, 28)
        assert [d.code for d in treatment.diagnoses] == ["J06.9"]


class TestBillerFallbacks:
    def test_invoice_snapshot_gln_used(self):
        result = _build(
            _invoice(provider_gln="7601000000019"), entity=_entity(gln="not-a-gln")
        )
        assert result.document.biller.gln == "7601000000019"
        assert result.warnings == []

    def test_last_resort_gln(self):
        result = _build(entity=_entity(gln=None))
        assert result.document.biller.gln == LAST_RESORT_GLN
        assert any(LAST_RESORT_GLN in w for w in result.warnings)

    def test_missing_iban_uses_fallback_qr_iban(self):
        result = _build(entity=_entity(iban="DE89370400440532013000"))
        assert result.document.iban == FALLBACK_QR_IBAN
        assert any("fallback QR-IBAN" in w for w in result.warnings)

    def test_too_short_iban_uses_fallback(self):
        result = _build(entity=_entity(iban="CH1234"))
        assert result.document.iban == FALLBACK_QR_IBAN
        assert result.validation_warning is not None
        assert "fallback QR-IBAN" in result.validation_warning

    def test_invoice_iban_snapshot(self):
        invoice = _invoice(provider_iban="CH0930788000050249289")
        result = _build(invoice, entity=_entity(iban=None))
        assert result.document.iban == "CH0930788000050249289"
        assert result.warnings == []

    def test_malformed_zsr_warns(self):
        result = _build(entity=_entity(zsr="12345"))
        assert any("ZSR" in w for w in result.warnings)

    def test_unknown_canton_uses_default(self):
        result = _build(entity=_entity(canton="XX"), options=BuildOptions(default_canton="VD"))
        assert result.document.treatment.canton == "VD"


class TestProvider:
    def test_staff_without_credentials_bills_under_practice(self):
        document = _build(staff=_staff()).document
        assert document.provider.gln == ENTITY_GLN
        assert document.internal_staff_name == "Dr. Léa Martin"
        assert document.services[0].provider_gln == ENTITY_GLN

    def test_staff_with_credentials_is_provider(self):
        document = _build(staff=_staff(gln=STAFF_GLN, zsr="Z654321")).document
        assert document.provider.gln == STAFF_GLN
        assert document.provider.zsr == "Z654321"
        assert document.internal_staff_name is None
        assert document.services[0].provider_gln == STAFF_GLN
        assert document.services[0].responsible_gln == STAFF_GLN

    def test_malformed_line_gln_replaced(self):
        lines = [_line(provider_gln="12345"), _line(provider_gln=STAFF_GLN)]
        result = _build(lines=lines)
        assert result.document.services[0].provider_gln == ENTITY_GLN
        assert result.document.services[1].provider_gln == STAFF_GLN
        assert "1 line item(s) had a malformed provider GLN and were re-assigned" in result.warnings

    def test_record_ids_sequential(self):
        document = _build(lines=[_line(), _line(), _line()]).document
        assert [s.record_id for s in document.services] == [1, 2, 3]


class TestServices:
    def test_amount_taken_from_line_total(self):
        assert _build().document.services[0].amount == Decimal("88.46")

    def test_acf_external_factor(self):
        line = _line(
            catalog_name="ACF",
            quantity=Decimal("1"),
            unit_price=Decimal("100"),
            total_price=None,
            external_factor_mt=Decimal("0.9"),
        )
        service = _build(lines=[line]).document.services[0]
        assert service.tariff_type == "005"
        assert service.external_factor == Decimal("0.9")
        assert service.amount == Decimal("90.00")

    def test_stored_tariff_type_wins(self):
        assert resolve_tariff_type(SimpleNamespace(tariff_type="402", catalog_name="ACF")) == "402"

    def test_unknown_catalog(self):
        assert resolve_tariff_type(SimpleNamespace(catalog_name="LAB")) == "999"


class TestPatient:
    def test_bad_avs_warns_but_is_sent(self):
        patient = _patient()
        patient.avs_number = "756.1234.5678.98"
        result = build(_invoice(), [_line()], patient, _entity())
        assert result.document.patient.ssn == "7561234567898"
        assert any("AVS" in w for w in result.warnings)

    def test_valid_avs_no_warning(self):
        assert not any("AVS" in w for w in _build().warnings)


class TestDiagnoses:
    def test_mixed_entries(self):
        kept, dropped = normalize_diagnoses(
            ["J06.9", {"type": "ICD10", "code": "M54.5"}, {"type": "bogus", "code": "X1"}, "A", 42]
        )
        assert [(d.type, d.code) for d in kept] == [
            (DiagnosisType.ICD, "J06.9"),
            (DiagnosisType.ICD, "M54.5"),
        ]
        assert dropped == 3

    def test_not_a_list(self):
        assert normalize_diagnoses(None) == ([], 0)

    def test_dropped_entries_warn(self):
        result = _build(_invoice(diagnosis_codes=["J06.9", "A"]))
        assert "Dropped 1 malformed diagnosis entry" in result.warnings

    def test_plural_warning(self):
        result = _build(_invoice(diagnosis_codes=["A", {"type": "ICD"}]))
        assert "Dropped 2 malformed diagnosis entries" in result.warnings


class TestRouting:
    def test_tiers_garant_goes_to_no_transmission_gln(self):
        routing = _build().document.routing
        assert routing.from_gln == ENTITY_GLN
        assert routing.via_gln == MEDIDATA_INTERMEDIATE_GLN
        assert routing.to_gln == TG_NO_TRANSMISSION_GLN

    def test_sender_gln_option(self):
        routing = _build(options=BuildOptions(sender_gln="2099988899483")).document.routing
        assert routing.from_gln == "2099988899483"

    def test_tiers_payant_goes_to_receiver_gln(self):
        insurer = SimpleNamespace(name="Assura", gln=INSURER_GLN, receiver_gln="7601003000016")
        document = _build(_invoice(billing_type="TP"), insurer=insurer).document
        assert document.tiers_mode == TiersMode.PAYANT
        assert document.routing.to_gln == "7601003000016"
        assert document.insurer.gln == "7601003000016"

    def test_tiers_payant_insurer_gln_when_no_receiver(self):
        insurer = SimpleNamespace(name="Assura", gln=INSURER_GLN, receiver_gln=None)
        document = _build(_invoice(billing_type="TP"), insurer=insurer).document
        assert document.routing.to_gln == INSURER_GLN

    def test_tiers_payant_without_insurer_warns(self):
        result = _build(_invoice(billing_type="TP"))
        assert result.document.insurer is None
        assert result.document.routing.to_gln == ENTITY_GLN
        assert "Tiers Payant invoice without a valid insurer GLN" in result.warnings


class TestBuildErrors:
    def test_no_line_items(self):
        with pytest.raises(BuildError) as exc_info:
            _build(lines=[])
        assert exc_info.value.code == "no_services"

    def test_no_patient(self):
        with pytest.raises(BuildError) as exc_info:
            build(_invoice(), [_line()], None, _entity())
        assert exc_info.value.code == "no_patient"

    def test_no_invoice_number(self):
        with pytest.raises(BuildError) as exc_info:
            _build(_invoice(invoice_number=""))
        assert exc_info.value.code == "no_invoice_number"

    def test_subtype_carried(self):
        document = _build(request_subtype=RequestSubtype.COPY).document
        assert document.is_copy
        assert not document.is_storno
