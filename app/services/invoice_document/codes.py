"""
Enumerated codes of the Forum Datenaustausch generalInvoiceRequest model.

Integer values follow the Sumex1 invoice-manager interface so a document can
be handed to either our XML writer or a Sumex server unchanged.
"""

from enum import Enum, IntEnum


class LawType(IntEnum):
    KVG = 0
    UVG = 1
    MVG = 2
    IVG = 3
    VVG = 4

    @classmethod
    def parse(cls, value) -> "LawType":
        """Law name or code → LawType. Anything unrecognised bills as KVG."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper(), cls.KVG)
        try:
            return cls(value)
        except (ValueError, TypeError):
            return cls.KVG


class TiersMode(IntEnum):
    GARANT = 0  # TG: patient pays
    PAYANT = 1  # TP: insurer pays
    SOLDANT = 2

    @classmethod
    def from_billing_type(cls, billing_type) -> "TiersMode":
        if isinstance(billing_type, str) and billing_type.strip().upper() == "TP":
            return cls.PAYANT
        return cls.GARANT

    @property
    def role(self) -> str:
        return {0: "garant", 1: "payant", 2: "soldant"}[self.value]


class SideType(IntEnum):
    NONE = 0
    LEFT = 1
    RIGHT = 2
    BOTH = 3

    @classmethod
    def parse(cls, value) -> "SideType":
        try:
            return cls(int(value))
        except (ValueError, TypeError):
            return cls.NONE


class DiagnosisType(IntEnum):
    ICD = 0
    CANTONAL = 1
    BY_CONTRACT = 2
    FREE_TEXT = 3
    BIRTH_DEFECT = 4
    ICPC = 5
    DRG = 6

    @classmethod
    def lookup(cls, name) -> "DiagnosisType | None":
        """Coding-system name as stored on invoices → type, or None."""
        if not isinstance(name, str):
            return None
        return _DIAGNOSIS_NAMES.get(name.strip().upper().replace("_", "").replace(" ", ""))

    @property
    def xml_name(self) -> str:
        return {
            0: "ICD",
            1: "cantonal",
            2: "by_contract",
            3: "freetext",
            4: "birthdefect",
            5: "ICPC",
            6: "DRG",
        }[self.value]


_DIAGNOSIS_NAMES = {
    "ICD": DiagnosisType.ICD,
    "ICD10": DiagnosisType.ICD,
    "CANTONAL": DiagnosisType.CANTONAL,
    "BYCONTRACT": DiagnosisType.BY_CONTRACT,
    "FREETEXT": DiagnosisType.FREE_TEXT,
    "BIRTHDEFECT": DiagnosisType.BIRTH_DEFECT,
    "ICPC": DiagnosisType.ICPC,
    "DRG": DiagnosisType.DRG,
}


class RequestSubtype(IntEnum):
    NORMAL = 0
    COPY = 1
    REFUND = 2
    STORNO = 3


class TariffType(str, Enum):
    TARDOC = "001"  # TARMED / TARDOC
    ACF = "005"  # ambulatory flat rates
    DRUGS = "402"  # GTIN-coded drugs and products
    OTHER = "999"

