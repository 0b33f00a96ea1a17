"""Tests for merchant extraction and category intent inference."""

import pytest

from kakebo.learning import (
    contains_merchant,
    extract_all_merchants,
    extract_merchant,
    get_merchant_confidence,
    infer_query_categories,
)
from kakebo.learning.merchant_extractor import normalize_concept
from kakebo.models.expense import KakeboCategory


class TestExtractMerchant:
    """Tests for extract_merchant."""

    @pytest.mark.parametrize(
        "concept,expected",
        [
            ("Mercadona compra semanal", "mercadona"),
            ("Vaper El Estanco", "vaper"),
            ("Netflix suscripción", "netflix"),
            ("Uber Eats pedido", "uber eats"),
            ("Uber al aeropuerto", "uber"),
            ("Cuota gym enero", "gimnasio"),
            ("Billete Cercanías", "renfe"),
        ],
    )
    def test_known_merchants(self, concept, expected):
        """Known merchants are matched by pattern."""
        assert extract_merchant(concept) == expected

    def test_higher_priority_wins(self):
        """A supermarket outranks an e-commerce mention in the same concept."""
        assert extract_merchant("Amazon pedido a Carrefour") == "carrefour"

    def test_falls_back_to_first_significant_word(self):
        """Unknown concepts use the first word with 4+ characters."""
        assert extract_merchant("El Corte Inglés ropa") == "corte"

    def test_short_first_word_fallback(self):
        """A 3-letter first word is used when no longer word exists."""
        assert extract_merchant("bar") == "bar"

    def test_currency_symbols_are_ignored(self):
        """Currency symbols do not end up in the merchant."""
        assert extract_merchant("€ Panadería 3€") == "panadería"

    @pytest.mark.parametrize("concept", ["", "   ", "ab", "€€"])
    def test_nothing_to_extract(self, concept):
        """Empty or meaningless concepts give None."""
        assert extract_merchant(concept) is None

    def test_normalize_concept(self):
        """Lowercases, strips currency and collapses whitespace."""
        assert normalize_concept("  Café   LUNES  5€ ") == "café lunes 5"


class TestMerchantHelpers:
    """Tests for the secondary merchant helpers."""

    def test_extract_all_merchants(self):
        """Every known merchant is listed once."""
        assert extract_all_merchants("Mercadona y Lidl, luego Mercadona") == ["mercadona", "lidl"]

    def test_extract_all_merchants_fallback(self):
        """Unknown concepts fall back to the single extracted merchant."""
        assert extract_all_merchants("Frutería Pepe") == ["frutería"]
        assert extract_all_merchants("") == []

    def test_contains_merchant(self):
        """Substring match ignores case."""
        assert contains_merchant("Compra MERCADONA", "mercadona")
        assert not contains_merchant("Compra Lidl", "mercadona")
        assert not contains_merchant("", "mercadona")

    def test_merchant_confidence(self):
        """Known merchants are fully trusted, fallbacks less so."""
        assert get_merchant_confidence("Netflix", "netflix") == 1.0
        assert get_merchant_confidence("Frutería Pepe", "frutería") == 0.8
        assert get_merchant_confidence("Kiosko", "kiosk") == 0.7
        assert get_merchant_confidence("bar", "bar") == 0.6
        assert get_merchant_confidence("nada", None) == 0.0


class TestCategoryIntent:
    """Tests for infer_query_categories."""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("farmacia", KakeboCategory.SURVIVAL),
            ("gastos de comida", KakeboCategory.SURVIVAL),
            ("restaurantes caros", KakeboCategory.OPTIONAL),
            ("vicios", KakeboCategory.OPTIONAL),
            ("entradas de cine", KakeboCategory.CULTURE),
            ("Libros de febrero", KakeboCategory.CULTURE),
            ("algo extra", KakeboCategory.EXTRA),
        ],
    )
    def test_known_keywords(self, query, expected):
        """The first matching keyword decides the expected category."""
        assert infer_query_categories(query) == frozenset({expected})

    def test_no_match_is_neutral(self):
        """Unknown queries produce no expectation."""
        assert infer_query_categories("último gasto") is None
        assert infer_query_categories("") is None
