"""
Unit tests -- "did you mean" field suggestions.
"""
from src.intent.suggestions import FieldSuggestion, suggest_fields


def test_typo_suggests_real_field(finance_schema):
    hints = suggest_fields("revnue_amount", finance_schema)
    assert hints
    assert hints[0].name == "revenue_amount"


def test_display_name_is_scored(finance_schema):
    hints = suggest_fields("营收金", finance_schema)
    assert hints[0].name == "revenue_amount"


def test_prefix_match(monthly_schema):
    hints = suggest_fields("gross", monthly_schema)
    assert "gross_revenue" in [h.name for h in hints]


def test_nonsense_returns_nothing(finance_schema):
    assert suggest_fields("zzzzqqq", finance_schema) == []


def test_empty_term_returns_nothing(finance_schema):
    assert suggest_fields("", finance_schema) == []


def test_top_k_and_ordering(finance_schema):
    hints = suggest_fields("amount", finance_schema, top_k=1, min_score=0.0)
    assert len(hints) == 1
    all_hints = suggest_fields("amount", finance_schema, top_k=10, min_score=0.0)
    scores = [h.score for h in all_hints]
    assert scores == sorted(scores, reverse=True)


def test_to_dict_uses_camel_case():
    d = FieldSuggestion(name="a", display_name="A", score=0.12345).to_dict()
    assert d == {"name": "a", "displayName": "A", "score": 0.123}
