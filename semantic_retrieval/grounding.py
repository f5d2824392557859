"""Grounding validation: is a retrieved snippet actually relevant to the query?

Two methods, chosen per candidate:
- backend_reranker: the backend supplied a reranking/grounding signal; it is
  clamped and used as the grounding score, and backend reasons are kept.
- heuristic_distance: no such signal; the score comes from the distance
  transform (or the clamped similarity) and query terms are matched literally
  against the snippet.
"""
from typing import List, Sequence, Tuple

from semantic_retrieval.normalizer import NormalizedCandidate
from semantic_retrieval.query_analysis import extract_terms, tokenize
from semantic_retrieval.schemas import (
    DocumentGrounding,
    GroundingCheckResponse,
    GroundingDocument,
    GroundingValidation,
)
from semantic_retrieval.scoring import clamp_unit, distance_to_score

BACKEND_RERANKER = "backend_reranker"
HEURISTIC_DISTANCE = "heuristic_distance"


def match_terms(terms: Sequence[str], snippet: str) -> List[str]:
    """Return the query terms that occur as tokens in the snippet, in query order."""
    tokens = set(tokenize(snippet))
    return [t for t in terms if t in tokens]


def validate(
    candidate: NormalizedCandidate,
    terms: Sequence[str],
    threshold: float,
    baseline: float,
) -> Tuple[GroundingValidation, Tuple[str, ...]]:
    """Validate one candidate against the query terms.

    Args:
        candidate: Normalized backend row.
        terms: Extracted query terms.
        threshold: Caller's relevance threshold; 0 means none was requested.
        baseline: Protocol baseline used for the pass decision when threshold is 0.

    Returns:
        Tuple[GroundingValidation, Tuple[str, ...]]: The validation and the matched terms.
    """
    if candidate.query_term_matches is not None:
        matches = tuple(candidate.query_term_matches)
    else:
        matches = tuple(match_terms(terms, candidate.snippet))

    reasons: List[str] = []
    if candidate.reranker_score is not None:
        method = BACKEND_RERANKER
        score = clamp_unit(candidate.reranker_score)
        reasons.append(f"Backend reranker scored the snippet at {score:.2f}")
        reasons.extend(r for r in candidate.backend_reasons if r.strip())
    else:
        method = HEURISTIC_DISTANCE
        if candidate.distance is not None:
            score = clamp_unit(distance_to_score(candidate.distance))
            reasons.append(f"Distance {candidate.distance:.3f} maps to grounding score {score:.2f}")
        else:
            score = clamp_unit(candidate.score)
            reasons.append(f"Similarity score {score:.2f} used as grounding score")
        reasons.append(f"{len(matches)} of {len(terms)} query terms matched in the snippet")

    cutoff = threshold if threshold > 0 else baseline
    label = "relevance threshold" if threshold > 0 else "baseline"
    passed = score >= cutoff
    op = ">=" if passed else "<"
    reasons.append(f"Score {score:.2f} {op} {label} {cutoff:.2f}")

    return GroundingValidation(passed=passed, score=score, reasons=tuple(reasons), method=method), matches


def validate_documents(
    query: str,
    documents: Sequence[GroundingDocument],
    threshold: float = 0.0,
    baseline: float = 0.3,
) -> GroundingCheckResponse:
    """Run grounding validation over caller-supplied documents."""
    terms = extract_terms(query)
    out: List[DocumentGrounding] = []
    for doc in documents:
        candidate = NormalizedCandidate(
            id=doc.id,
            snippet=doc.content,
            score=doc.score if doc.score is not None else 0.0,
            confidence=0.0,
            document_type="unknown",
            distance=doc.distance,
            reranker_score=doc.grounding_score,
        )
        validation, matches = validate(candidate, terms, threshold, baseline)
        out.append(
            DocumentGrounding(document_id=doc.id, grounding_validation=validation, query_term_matches=matches)
        )
    return GroundingCheckResponse(
        results=tuple(out),
        passed_count=sum(1 for d in out if d.grounding_validation.passed),
        total_documents=len(out),
    )
