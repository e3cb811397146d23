"""
TARDOC reference data: canton tax-point values and the tariff catalog.

Format: each catalog entry is a dict that maps 1:1 to TariffItem fields.
These are the ground-truth definitions; nothing mutates them at runtime.

TARDOC replaced TARMED on 2026-01-01. Prices are
    tax points × canton tax-point value × cost-neutrality factor.

Main chapters used here:
  A  General services
  K  Skin
"""

from decimal import Decimal

# CHF per tax point, 2026 values
CANTON_TAX_POINT_VALUES: dict[str, Decimal] = {
    "AG": Decimal("0.89"),
    "AI": Decimal("0.86"),
    "AR": Decimal("0.86"),
    "BE": Decimal("0.89"),
    "BL": Decimal("0.91"),
    "BS": Decimal("0.96"),
    "FR": Decimal("0.88"),
    "GE": Decimal("0.96"),
    "GL": Decimal("0.86"),
    "GR": Decimal("0.86"),
    "JU": Decimal("0.86"),
    "LU": Decimal("0.89"),
    "NE": Decimal("0.89"),
    "NW": Decimal("0.86"),
    "OW": Decimal("0.86"),
    "SG": Decimal("0.86"),
    "SH": Decimal("0.86"),
    "SO": Decimal("0.89"),
    "SZ": Decimal("0.86"),
    "TG": Decimal("0.86"),
    "TI": Decimal("0.90"),
    "UR": Decimal("0.86"),
    "VD": Decimal("0.93"),
    "VS": Decimal("0.86"),
    "ZG": Decimal("0.93"),
    "ZH": Decimal("0.93"),
}

DEFAULT_CANTON = "GE"

# TARMED → TARDOC transition multiplier, applied uniformly
COST_NEUTRALITY_FACTOR = Decimal("0.95")


TARDOC_ITEMS: list[dict] = [
    # ══════════════════════════════════════════════════════════════════════════
    # A: general services
    # ══════════════════════════════════════════════════════════════════════════
    {
        "code": "AA.01.0010",
        "main_chapter": "A",
        "description": "First consultation, comprehensive",
        "description_fr": "Première consultation, complète",
        "description_de": "Erstkonsultation, umfassend",
        "tax_points": "48.5",
        "technical_tax_points": "15.2",
        "medical_tax_points": "33.3",
        "duration_minutes": 30,
        "requires_qualification": None,
    },
    {
        "code": "AA.01.0020",
        "main_chapter": "A",
        "description": "Follow-up consultation, standard",
        "description_fr": "Consultation de suivi, standard",
        "description_de": "Folgekonsultation, Standard",
        "tax_points": "32.5",
        "technical_tax_points": "10.5",
        "medical_tax_points": "22.0",
        "duration_minutes": 20,
        "requires_qualification": None,
    },
    {
        "code": "AA.01.0030",
        "main_chapter": "A",
        "description": "Brief consultation",
        "description_fr": "Consultation brève",
        "description_de": "Kurzkonsultation",
        "tax_points": "16.25",
        "technical_tax_points": "5.25",
        "medical_tax_points": "11.0",
        "duration_minutes": 10,
        "requires_qualification": None,
    },
    {
        "code": "AA.05.0010",
        "main_chapter": "A",
        "description": "Post-operative wound care, simple",
        "description_fr": "Soins de plaie post-opératoire, simple",
        "description_de": "Postoperative Wundversorgung, einfach",
        "tax_points": "18.0",
        "technical_tax_points": "8.0",
        "medical_tax_points": "10.0",
        "duration_minutes": 15,
        "requires_qualification": None,
    },
    {
        "code": "AA.05.0020",
        "main_chapter": "A",
        "description": "Suture removal",
        "description_fr": "Ablation des sutures",
        "description_de": "Nahtentfernung",
        "tax_points": "12.5",
        "technical_tax_points": "5.5",
        "medical_tax_points": "7.0",
        "duration_minutes": 10,
        "requires_qualification": None,
    },
    # ══════════════════════════════════════════════════════════════════════════
    # K: skin
    # ══════════════════════════════════════════════════════════════════════════
    {
        "code": "KA.01.0010",
        "main_chapter": "K",
        "description": "Botulinum toxin injection, per region",
        "description_fr": "Injection de toxine botulique, par région",
        "description_de": "Botulinumtoxin-Injektion, pro Region",
        "tax_points": "45.0",
        "technical_tax_points": "12.5",
        "medical_tax_points": "32.5",
        "duration_minutes": 15,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KA.01.0020",
        "main_chapter": "K",
        "description": "Dermal filler injection, per syringe",
        "description_fr": "Injection de comblement dermique, par seringue",
        "description_de": "Dermalfiller-Injektion, pro Spritze",
        "tax_points": "52.0",
        "technical_tax_points": "15.0",
        "medical_tax_points": "37.0",
        "duration_minutes": 20,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KA.02.0010",
        "main_chapter": "K",
        "description": "Chemical peel, superficial",
        "description_fr": "Peeling chimique, superficiel",
        "description_de": "Chemisches Peeling, oberflächlich",
        "tax_points": "38.0",
        "technical_tax_points": "12.0",
        "medical_tax_points": "26.0",
        "duration_minutes": 25,
        "requires_qualification": None,
    },
    {
        "code": "KA.02.0020",
        "main_chapter": "K",
        "description": "Chemical peel, medium depth",
        "description_fr": "Peeling chimique, profondeur moyenne",
        "description_de": "Chemisches Peeling, mittlere Tiefe",
        "tax_points": "65.0",
        "technical_tax_points": "20.0",
        "medical_tax_points": "45.0",
        "duration_minutes": 40,
        "requires_qualification": "FMH Dermatology",
    },
    {
        "code": "KA.03.0010",
        "main_chapter": "K",
        "description": "Laser skin resurfacing, per session",
        "description_fr": "Resurfaçage cutané au laser, par séance",
        "description_de": "Laser-Hauterneuerung, pro Sitzung",
        "tax_points": "85.0",
        "technical_tax_points": "35.0",
        "medical_tax_points": "50.0",
        "duration_minutes": 45,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KA.04.0010",
        "main_chapter": "K",
        "description": "Microneedling treatment",
        "description_fr": "Traitement par microneedling",
        "description_de": "Microneedling-Behandlung",
        "tax_points": "42.0",
        "technical_tax_points": "15.0",
        "medical_tax_points": "27.0",
        "duration_minutes": 30,
        "requires_qualification": None,
    },
    {
        "code": "KS.01.0010",
        "main_chapter": "K",
        "description": "Blepharoplasty, upper eyelid, unilateral",
        "description_fr": "Blépharoplastie, paupière supérieure, unilatérale",
        "description_de": "Blepharoplastik, Oberlid, einseitig",
        "tax_points": "180.0",
        "technical_tax_points": "60.0",
        "medical_tax_points": "120.0",
        "duration_minutes": 60,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.01.0020",
        "main_chapter": "K",
        "description": "Blepharoplasty, lower eyelid, unilateral",
        "description_fr": "Blépharoplastie, paupière inférieure, unilatérale",
        "description_de": "Blepharoplastik, Unterlid, einseitig",
        "tax_points": "195.0",
        "technical_tax_points": "65.0",
        "medical_tax_points": "130.0",
        "duration_minutes": 75,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.02.0010",
        "main_chapter": "K",
        "description": "Facelift, partial (SMAS)",
        "description_fr": "Lifting facial, partiel (SMAS)",
        "description_de": "Facelift, partiell (SMAS)",
        "tax_points": "450.0",
        "technical_tax_points": "150.0",
        "medical_tax_points": "300.0",
        "duration_minutes": 180,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.02.0020",
        "main_chapter": "K",
        "description": "Facelift, complete",
        "description_fr": "Lifting facial, complet",
        "description_de": "Facelift, komplett",
        "tax_points": "650.0",
        "technical_tax_points": "200.0",
        "medical_tax_points": "450.0",
        "duration_minutes": 240,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.03.0010",
        "main_chapter": "K",
        "description": "Rhinoplasty, cosmetic",
        "description_fr": "Rhinoplastie, esthétique",
        "description_de": "Rhinoplastik, kosmetisch",
        "tax_points": "520.0",
        "technical_tax_points": "170.0",
        "medical_tax_points": "350.0",
        "duration_minutes": 180,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.04.0010",
        "main_chapter": "K",
        "description": "Liposuction, per region",
        "description_fr": "Liposuccion, par région",
        "description_de": "Liposuktion, pro Region",
        "tax_points": "280.0",
        "technical_tax_points": "90.0",
        "medical_tax_points": "190.0",
        "duration_minutes": 90,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.05.0010",
        "main_chapter": "K",
        "description": "Breast augmentation with implants",
        "description_fr": "Augmentation mammaire avec implants",
        "description_de": "Brustvergrösserung mit Implantaten",
        "tax_points": "480.0",
        "technical_tax_points": "150.0",
        "medical_tax_points": "330.0",
        "duration_minutes": 120,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.05.0020",
        "main_chapter": "K",
        "description": "Breast reduction",
        "description_fr": "Réduction mammaire",
        "description_de": "Brustreduktion",
        "tax_points": "550.0",
        "technical_tax_points": "180.0",
        "medical_tax_points": "370.0",
        "duration_minutes": 180,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.05.0030",
        "main_chapter": "K",
        "description": "Breast lift (mastopexy)",
        "description_fr": "Lifting des seins (mastopexie)",
        "description_de": "Bruststraffung (Mastopexie)",
        "tax_points": "420.0",
        "technical_tax_points": "140.0",
        "medical_tax_points": "280.0",
        "duration_minutes": 150,
        "requires_qualification": "FMH Plastic Surgery",
    },
    {
        "code": "KS.06.0010",
        "main_chapter": "K",
        "description": "Abdominoplasty",
        "description_fr": "Abdominoplastie",
        "description_de": "Abdominoplastik",
        "tax_points": "580.0",
        "technical_tax_points": "190.0",
        "medical_tax_points": "390.0",
        "duration_minutes": 210,
        "requires_qualification": "FMH Plastic Surgery",
    },
]
