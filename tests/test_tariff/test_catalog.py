"""
Tariff catalog lookup and search tests.
"""

from decimal import Decimal

from app.tariff import catalog
from app.tariff.catalog import TariffCatalog, TariffItem


def _item(code: str, description: str, is_active: bool = True) -> TariffItem:
    return TariffItem.from_dict(
        {
            "code": code,
            "main_chapter": code[0],
            "description": description,
            "tax_points": "10",
            "is_active": is_active,
        }
    )


class TestLookup:
    def test_known_code(self):
        item = catalog.lookup("AA.01.0010")
        assert item is not None
        assert item.tax_points == Decimal("48.5")
        assert item.description_fr == "Première consultation, complète"
        assert item.description_de == "Erstkonsultation, umfassend"

    def test_lookup_normalises_code(self):
        assert catalog.lookup("  aa.01.0010 ") is catalog.lookup("AA.01.0010")

    def test_unknown_and_empty(self):
        assert catalog.lookup("XX.00.0000") is None
        assert catalog.lookup("") is None

    def test_qualification_carried(self):
        assert catalog.lookup("KA.01.0010").requires_qualification == "FMH Plastic Surgery"


class TestSearch:
    def test_empty_query_returns_everything(self):
        assert len(list(catalog.search(""))) == len(catalog.CATALOG)

    def test_matches_english_description(self):
        codes = [item.code for item in catalog.search("consultation")]
        assert codes == ["AA.01.0010", "AA.01.0020", "AA.01.0030"]

    def test_matches_french_and_german(self):
        assert "AA.01.0010" in [i.code for i in catalog.search("Première")]
        assert "AA.01.0010" in [i.code for i in catalog.search("erstkonsultation")]

    def test_matches_code_fragment(self):
        assert all(item.code.startswith("KS.05") for item in catalog.search("ks.05"))

    def test_search_is_repeatable(self):
        """Each call starts a fresh scan."""
        first = [item.code for item in catalog.search("peel")]
        second = [item.code for item in catalog.search("peel")]
        assert first == second == ["KA.02.0010", "KA.02.0020"]

    def test_inactive_items_hidden(self):
        local = TariffCatalog([_item("AA.00.0001", "Active"), _item("AA.00.0002", "Retired", False)])
        assert [item.code for item in local.search("")] == ["AA.00.0001"]
        # Lookup still resolves historical codes
        assert local.lookup("AA.00.0002") is not None


class TestChapters:
    def test_chapter_a(self):
        items = catalog.items_by_chapter("A")
        assert len(items) == 5
        assert all(item.main_chapter == "A" for item in items)

    def test_chapter_k(self):
        assert {item.code[:2] for item in catalog.items_by_chapter("K")} == {"KA", "KS"}

    def test_unknown_chapter(self):
        assert catalog.items_by_chapter("Z") == []
