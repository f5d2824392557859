from __future__ import annotations

import pytest

from semantic_retrieval.query_analysis import analyze_query, classify_intent, extract_terms


def test_extract_terms_drops_short_tokens_and_stop_words() -> None:
    assert extract_terms("What is the best pair of wireless headphones for the gym?") == [
        "what",
        "best",
        "pair",
        "wireless",
        "headphones",
        "gym",
    ]


def test_extract_terms_deduplicates_in_order() -> None:
    assert extract_terms("Headphones, headphones and more HEADPHONES") == ["headphones", "more"]


@pytest.mark.parametrize(
    ("query", "intent"),
    [
        ("compare sony vs bose headphones", "comparison"),
        ("I want to buy a laptop", "purchase_intent"),
        ("SKU-12345", "lookup"),
        ("how do I reset my router", "information_seeking"),
        ("is this waterproof?", "information_seeking"),
        ("wireless headphones", "general_search"),
    ],
)
def test_classify_intent(query: str, intent: str) -> None:
    assert classify_intent(query).intent == intent


def test_analyze_query_trims_and_lowercases() -> None:
    analysis = analyze_query("  Wireless Headphones ")

    assert analysis.original_query == "  Wireless Headphones "
    assert analysis.processed_query == "wireless headphones"
    assert analysis.extracted_terms == ("wireless", "headphones")
    assert analysis.query_intent == "general_search"


def test_extract_terms_keeps_non_ascii_words_whole() -> None:
    assert extract_terms("écouteurs sans fil für Kinder") == ["écouteurs", "sans", "fil", "für", "kinder"]
