"""
Unit tests for query classification and routing.
"""
import pytest

from tonerweb.core.config import ClassifierSettings
from tonerweb.services.routing.query_classification import (
    QueryClassifier,
    extract_product_identifiers,
    suggest_alternative_terms,
)
from tonerweb.services.routing.schema import QueryType, Strategy


@pytest.fixture
def classifier():
    return QueryClassifier()


def test_missing_settings_fall_back_to_defaults():
    assert QueryClassifier(None).settings == ClassifierSettings()


def test_direct_product_lookup_is_simple(classifier):
    result = classifier.classify("Canon PG-540 pris")

    assert result.type == QueryType.SIMPLE
    assert result.strategy == Strategy.SEARCH_ONLY
    # pris 2 + brand pattern 3 + short query 3 + model token 2
    assert result.scores["simple"] == 10
    assert result.confidence == pytest.approx(0.4)
    assert result.requires_image is False


def test_complex_query_with_price_goes_unified(classifier):
    result = classifier.classify("Hvilken blekkpatron er best til prisen?")

    assert result.type == QueryType.COMPLEX
    assert result.strategy == Strategy.UNIFIED_REASONING
    assert result.scores["complex"] == 7
    assert result.scores["simple"] == 2
    assert result.confidence == pytest.approx(0.28)


def test_complex_query_without_purchase_goes_reasoning_only(classifier):
    result = classifier.classify("Hvorfor blekner utskriftene mine så raskt etter noen uker?")

    assert result.type == QueryType.COMPLEX
    assert result.strategy == Strategy.REASONING_ONLY
    assert result.confidence == pytest.approx(2 / 25)


def test_comparison_query(classifier):
    result = classifier.classify("Er original toner bedre enn kompatibel toner?")

    assert result.type == QueryType.COMPARISON
    assert result.strategy == Strategy.UNIFIED_REASONING
    assert result.scores["comparison"] == 5
    assert result.scores["compatibility"] == 2


def test_tie_goes_to_earlier_type(classifier):
    result = classifier.classify("Jeg lurer på om denne passer, eller?")

    assert result.scores["compatibility"] == result.scores["comparison"] == 2
    assert result.type == QueryType.COMPATIBILITY


def test_empty_query_defaults_to_search(classifier):
    result = classifier.classify("   ")

    assert result.type == QueryType.SIMPLE
    assert result.strategy == Strategy.SEARCH_ONLY
    assert result.confidence == 0.0


def test_image_requirement(classifier):
    assert classifier.classify("Hva slags patron er på bildet?").requires_image is True
    assert classifier.classify("Canon PG-540", has_image=True).requires_image is True
    assert classifier.classify("Canon PG-540").requires_image is False


def test_word_count_bonuses(classifier):
    short = classifier.score("x")
    assert short[QueryType.SIMPLE] == 3

    long = classifier.score(" ".join(["a"] * 16))
    assert long[QueryType.COMPLEX] == 2
    assert long[QueryType.SIMPLE] == 0


def test_confidence_is_clamped():
    classifier = QueryClassifier(ClassifierSettings(max_score=1.0))
    result = classifier.classify("Canon PG-540 pris")

    assert result.confidence == 1.0


def test_classification_is_deterministic(classifier):
    query = "Passer HP 305 til min DeskJet 2720?"
    assert classifier.classify(query) == classifier.classify(query)


def test_extract_product_identifiers():
    assert extract_product_identifiers("Blekk til Canon PIXMA MG3650S, PG-540") == [
        "PG-540",
        "PIXMA MG3650S",
    ]
    assert extract_product_identifiers("hei") == []


def test_suggest_alternative_terms():
    assert suggest_alternative_terms("Toner til HP LaserJet") == [
        "tonerpatron",
        "toner cartridge",
        "HP LaserJet",
        "HP OfficeJet",
        "HP DeskJet",
    ]
    assert suggest_alternative_terms("papir") == []
