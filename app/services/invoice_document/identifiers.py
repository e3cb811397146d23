"""
Swiss billing identifiers: GLN, ZSR, IBAN, AVS/AHV and QR/ESR references.

Two levels of GLN checking exist on purpose:
  - is_valid_gln()          format only (13 digits). This is what the
                            builder's fallback chain uses; test GLNs issued
                            by MediData do not always carry a valid check digit.
  - gln_check_digit_ok()    EAN-13 check digit, for operator-facing warnings.
"""

import re
from typing import Optional

GLN_PATTERN = re.compile(r"^\d{13}$")
ZSR_PATTERN = re.compile(r"^[A-Za-z]\d{6}$")
SWISS_IBAN_PATTERN = re.compile(r"^CH[0-9A-Z]{19}$")

# QR-IBAN (IID 30000–31999) used when the practice has no valid IBAN on file
FALLBACK_QR_IBAN = "CH0930788000050249289"

# Used only when neither line item, staff nor billing entity has a valid GLN
LAST_RESORT_GLN = "7601003000115"

# MediData routing
MEDIDATA_INTERMEDIATE_GLN = "7601001304307"
TG_NO_TRANSMISSION_GLN = "2000000000008"

_ESR_TABLE = (0, 9, 4, 6, 8, 2, 7, 1, 3, 5)


def is_valid_gln(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(GLN_PATTERN.match(value))


def pick_valid_gln(*candidates: Optional[str], fallback: str = LAST_RESORT_GLN) -> str:
    """First candidate that is a 13-digit GLN, else `fallback`."""
    for candidate in candidates:
        if is_valid_gln(candidate):
            return candidate
    return fallback


def first_valid_gln(*candidates: Optional[str]) -> Optional[str]:
    for candidate in candidates:
        if is_valid_gln(candidate):
            return candidate
    return None


def ean13_check_digit(digits12: str) -> int:
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(digits12))
    return (10 - total % 10) % 10


def gln_check_digit_ok(value: Optional[str]) -> bool:
    if not is_valid_gln(value):
        return False
    return ean13_check_digit(value[:12]) == int(value[12])


def is_valid_zsr(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(ZSR_PATTERN.match(value.strip()))


def sanitize_iban(raw: Optional[str]) -> Optional[str]:
    """Whitespace-stripped, upper-cased Swiss IBAN, or None if malformed."""
    if not raw:
        return None
    stripped = re.sub(r"\s+", "", raw).upper()
    if SWISS_IBAN_PATTERN.match(stripped):
        return stripped
    return None


def normalize_avs(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return re.sub(r"[.\s-]", "", raw)


def is_valid_avs(raw: Optional[str]) -> bool:
    """756.XXXX.XXXX.XC — 13 digits, country prefix 756, EAN-13 check digit."""
    cleaned = normalize_avs(raw)
    if not cleaned or len(cleaned) != 13 or not cleaned.isdigit():
        return False
    if not cleaned.startswith("756"):
        return False
    return ean13_check_digit(cleaned[:12]) == int(cleaned[12])


def esr_check_digit(digits: str) -> int:
    """Modulo-10 recursive check digit used by ESR and QR references."""
    carry = 0
    for char in digits:
        carry = _ESR_TABLE[(carry + int(char)) % 10]
    return (10 - carry) % 10


def esr_reference(invoice_number: str) -> str:
    """
    27-digit QR/ESR reference derived from an invoice number: up to 20 of its
    digits, left-padded to 26, plus the check digit.
    """
    numeric = re.sub(r"[^0-9]", "", invoice_number or "")[:20]
    padded = numeric.rjust(26, "0")
    return padded + str(esr_check_digit(padded))
