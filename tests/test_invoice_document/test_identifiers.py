"""
Swiss billing identifier checks: GLN, ZSR, IBAN, AVS and QR references.
"""

from app.services.invoice_document.identifiers import (
    LAST_RESORT_GLN,
    MEDIDATA_INTERMEDIATE_GLN,
    esr_check_digit,
    esr_reference,
    first_valid_gln,
    gln_check_digit_ok,
    is_valid_avs,
    is_valid_gln,
    is_valid_zsr,
    pick_valid_gln,
    sanitize_iban,
)


class TestGln:
    def test_format_only(self):
        assert is_valid_gln("7601000000002")
        assert not is_valid_gln("760100000000")
        assert not is_valid_gln("76010000000021")
        assert not is_valid_gln("760100000000X")
        assert not is_valid_gln(None)

    def test_check_digit(self):
        assert gln_check_digit_ok("7601000000002")
        assert not gln_check_digit_ok("7601000000003")

    def test_built_in_glns_carry_valid_check_digits(self):
        assert gln_check_digit_ok(LAST_RESORT_GLN)
        assert gln_check_digit_ok(MEDIDATA_INTERMEDIATE_GLN)

    def test_pick_first_valid(self):
        assert pick_valid_gln("bad", None, "7601000000019") == "7601000000019"

    def test_pick_falls_back(self):
        assert pick_valid_gln("123", "") == LAST_RESORT_GLN
        assert pick_valid_gln(None, fallback="7601000000002") == "7601000000002"

    def test_first_valid_or_none(self):
        assert first_valid_gln(None, "12") is None


class TestZsr:
    def test_valid(self):
        assert is_valid_zsr("H123456")
        assert is_valid_zsr(" z999999 ")

    def test_invalid(self):
        assert not is_valid_zsr("123456")
        assert not is_valid_zsr("H12345")
        assert not is_valid_zsr(None)


class TestIban:
    def test_sanitize_strips_spaces_and_uppercases(self):
        assert sanitize_iban("ch93 0076 2011 6238 5295 7") == "CH9300762011623852957"

    def test_non_swiss_or_short_rejected(self):
        assert sanitize_iban("DE89370400440532013000") is None
        assert sanitize_iban("CH93 0076") is None
        assert sanitize_iban("") is None


class TestAvs:
    def test_valid_formatted_and_plain(self):
        assert is_valid_avs("756.1234.5678.97")
        assert is_valid_avs("7561234567897")

    def test_wrong_check_digit(self):
        assert not is_valid_avs("756.1234.5678.98")

    def test_wrong_country_prefix(self):
        assert not is_valid_avs("7551234567897")


class TestEsrReference:
    def test_known_check_digit(self):
        assert esr_check_digit("21000000000313947143000901") == 7

    def test_all_zeros(self):
        assert esr_check_digit("0" * 26) == 0

    def test_reference_from_invoice_number(self):
        reference = esr_reference("INV-2024-0001")
        assert len(reference) == 27
        assert reference.isdigit()
        assert reference[:26] == "20240001".rjust(26, "0")
        assert int(reference[-1]) == esr_check_digit(reference[:26])

    def test_reference_without_digits(self):
        assert esr_reference("ABC") == "0" * 27
