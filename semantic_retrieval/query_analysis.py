"""Heuristic query analysis: tokenization, term extraction and intent classification.

Defines:
- tokenize: Lowercase alphanumeric tokenization shared by grounding and explainability.
- extract_terms: Distinctive query terms with stop words removed.
- IntentDecision: Dataclass carrying the chosen intent and its rationale.
- classify_intent: Keyword heuristics producing an IntentDecision (no model call).
- analyze_query: Builds the QueryAnalysis block of the explainability payload.
"""
import re
from dataclasses import dataclass
from typing import List, Literal

from semantic_retrieval.schemas import QueryAnalysis

Intent = Literal["comparison", "purchase_intent", "information_seeking", "lookup", "general_search"]

STOP_WORDS = {
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "a", "an", "is", "are", "from", "this", "that",
}
COMPARISON_TERMS = {"compare", "comparison", "vs", "versus", "difference", "better"}
PURCHASE_TERMS = {"buy", "purchase", "order", "price", "cheap", "checkout", "deal"}
QUESTION_WORDS = {"how", "what", "why", "when", "where", "which", "who"}
CODEY = re.compile(r"\b[A-Z]{2,}[-_]?\d+[A-Z0-9-]*\b|\b[A-Za-z]+[-_]\d{2,}\b")
NUMERIC_HEAVY = re.compile(r"\b\d{3,}\b")


@dataclass
class IntentDecision:
    """Intent label and short human-readable rationale."""
    intent: Intent
    reason: str


def tokenize(s: str) -> List[str]:
    """Lowercase alphanumeric tokenization (Unicode letters and digits, no underscores).

    Args:
        s: Input string.

    Returns:
        List[str]: Alphanumeric tokens in lowercase.
    """
    return re.findall(r"[^\W_]+", s.lower())


def extract_terms(query: str, min_len: int = 3) -> List[str]:
    """Extract query terms used for matching, in query order.

    Keeps tokens of at least min_len characters that are not stop words,
    de-duplicated while preserving order.
    """
    seen = set()
    out: List[str] = []
    for t in tokenize(query):
        if len(t) < min_len or t in STOP_WORDS or t in seen:
            continue
        seen.add(t)
        out.append(t)
    return out


def classify_intent(query: str) -> IntentDecision:
    """Classify a query into a coarse intent label.

    Heuristics, first match wins:
        - 'comparison' when comparison keywords (compare, vs, versus...) appear.
        - 'purchase_intent' for buying vocabulary.
        - 'lookup' for SKU/code-like identifiers or long numbers.
        - 'information_seeking' for question-form queries.
        - 'general_search' otherwise.
    """
    tokens = set(tokenize(query))

    if tokens & COMPARISON_TERMS:
        return IntentDecision(intent="comparison", reason="comparison keywords present")
    if tokens & PURCHASE_TERMS:
        return IntentDecision(intent="purchase_intent", reason="purchase keywords present")
    if CODEY.search(query) or NUMERIC_HEAVY.search(query):
        return IntentDecision(intent="lookup", reason="identifier-like tokens present")
    if tokens & QUESTION_WORDS or query.strip().endswith("?"):
        return IntentDecision(intent="information_seeking", reason="question-form query")
    return IntentDecision(intent="general_search", reason="default")


def analyze_query(query: str) -> QueryAnalysis:
    """Build the query analysis block for a raw query string."""
    return QueryAnalysis(
        original_query=query,
        processed_query=query.strip().lower(),
        extracted_terms=tuple(extract_terms(query)),
        query_intent=classify_intent(query).intent,
    )
