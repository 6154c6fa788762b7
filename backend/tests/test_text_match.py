"""
Unit tests for free-text matching used by name/description filters.
"""
from mrp_assistant.services.query.text_match import (
    normalize_text,
    query_terms,
    record_matches,
    text_matches,
)


def test_normalize_text_unifies_units_and_decimal_commas():
    """Spacing, unit aliases and decimal commas normalize to one spelling."""
    assert normalize_text("Pasta 300 gr") == "pasta 300g"
    assert normalize_text("Pasta 300gram") == "pasta 300g"
    assert normalize_text("Sos 0,5 kg") == "sos 0.5kg"
    assert normalize_text("Olej 1 litr") == "olej 1l"
    assert normalize_text(None) == ""


def test_normalize_text_folds_diacritics_and_punctuation():
    """Case, diacritics and punctuation do not affect matching."""
    assert normalize_text("Hotel ŁĄKA!") == "hotel laka"
    assert normalize_text("MO-00001") == "mo 00001"


def test_quantity_spelled_differently_still_matches():
    """'300 gr' finds a product stored as '300 g'."""
    assert text_matches("pasta 300 gr", "Pasta pomidorowa 300 g")
    assert text_matches("0.5kg", "Sos czosnkowy 0,5 kg")


def test_every_query_word_must_match():
    """A multi-word query is an AND over its words."""
    assert text_matches("pasta pomidorowa", "Pasta pomidorowa 300 g")
    assert not text_matches("pasta czosnkowa", "Pasta pomidorowa 300 g")


def test_words_may_span_candidate_fields():
    """Candidates are joined, so words can come from different fields."""
    assert text_matches("pasta 00001", "Pasta pomidorowa", "MO-00001")


def test_empty_query_matches_everything():
    """A blank query places no constraint."""
    assert query_terms("   ") == []
    assert text_matches("", "anything")


def test_record_matches_reads_named_fields_only():
    """record_matches() ignores fields it was not asked to search."""
    record = {"name": "Czosnek", "description": "granulowany", "category": "pomidory"}

    assert record_matches("czosnek granulowany", record, ("name", "description"))
    assert not record_matches("pomidory", record, ("name", "description"))
