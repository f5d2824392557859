"""Explainability payloads attached to every retrieval response.

Defines:
- compose_strategy: Retrieval strategy block (algorithm, effective parameters, optimizations).
- api_metrics: Backend call metrics, only built after a live call.
- explain_result: Per-result explanation with a templated retrieval reason.
"""
from typing import Iterable, Optional, Sequence

from semantic_retrieval.grounding import BACKEND_RERANKER
from semantic_retrieval.normalizer import NormalizedCandidate
from semantic_retrieval.schemas import (
    ApiMetrics,
    GroundingValidation,
    ResultExplainability,
    RetrievalRequest,
    RetrievalStrategy,
)
from semantic_retrieval.scoring import clamp_unit

CACHE_LOOKUP = "cache_lookup"
THRESHOLD_FILTER = "threshold_filter"
DOCUMENT_TYPE_FILTER = "document_type_filter"
CLIENT_SIDE_RANK_SORT = "client_side_rank_sort"
PROTOCOL_FALLBACK = "protocol_fallback"
HYBRID_SEARCH = "hybrid_search"
CIRCUIT_OPEN_SKIP = "circuit_open_skip"

FAILED_RETRIEVAL = "failed_retrieval"

_METHOD_WORDS = {
    BACKEND_RERANKER: "the backend reranker",
}


def request_optimizations(request: RetrievalRequest) -> list:
    """Optimizations implied by the request alone."""
    opts = [CACHE_LOOKUP]
    if request.relevance_threshold > 0:
        opts.append(THRESHOLD_FILTER)
    if request.document_types:
        opts.append(DOCUMENT_TYPE_FILTER)
    if request.use_hybrid_search:
        opts.append(HYBRID_SEARCH)
    return opts


def compose_strategy(
    algorithm: str,
    request: RetrievalRequest,
    optimizations: Iterable[str] = (),
    error: Optional[str] = None,
) -> RetrievalStrategy:
    """Build the retrieval strategy block.

    Args:
        algorithm: Protocol tag that served the response, or 'failed_retrieval'.
        request: Effective request after defaulting.
        optimizations: Optimizations applied, in application order.
        error: Combined error text for failure responses.
    """
    parameters = {
        "query": request.query,
        "tenant_id": request.tenant_id,
        "limit": request.limit,
        "relevance_threshold": request.relevance_threshold,
        "document_types": sorted(request.document_types),
        "include_metadata": request.include_metadata,
        "use_hybrid_search": request.use_hybrid_search,
    }
    if error is not None:
        parameters["error"] = error
    seen = []
    for opt in optimizations:
        if opt not in seen:
            seen.append(opt)
    return RetrievalStrategy(algorithm=algorithm, parameters=parameters, optimizations=tuple(seen))


def api_metrics(response_time_ms: int, result_count: int, protocol_used: str, cache_status: str) -> ApiMetrics:
    return ApiMetrics(
        response_time_ms=max(0, int(response_time_ms)),
        result_count=result_count,
        protocol_used=protocol_used,
        cache_status=cache_status,
    )


def _relevance_level(value: float) -> str:
    if value >= 0.75:
        return "high"
    if value >= 0.5:
        return "moderate"
    return "low"


def explain_result(
    candidate: NormalizedCandidate,
    validation: GroundingValidation,
    matches: Sequence[str],
    terms: Sequence[str],
    document_type_filtered: bool,
) -> ResultExplainability:
    """Explain why one result was returned.

    semantic_similarity is the backend value when present, else the clamped
    score. contextual_relevance is the backend value when present, else a
    0.7/0.3 blend of semantic similarity and query-term overlap.
    """
    if candidate.semantic_similarity is not None:
        semantic = clamp_unit(candidate.semantic_similarity)
    else:
        semantic = clamp_unit(candidate.score)

    overlap = len(matches) / len(terms) if terms else 0.0
    if candidate.contextual_relevance is not None:
        contextual = clamp_unit(candidate.contextual_relevance)
    else:
        contextual = clamp_unit(0.7 * semantic + 0.3 * overlap)

    method_words = _METHOD_WORDS.get(validation.method, "distance-based heuristic scoring")
    reason = (
        f"{_relevance_level(validation.score).capitalize()} relevance ({validation.score:.2f}) "
        f"according to {method_words}"
    )
    if matches:
        reason += f", matching {', '.join(matches)}"
    if document_type_filtered:
        reason += f"; restricted to requested document types ({candidate.document_type})"
    else:
        reason += "; no document type filter applied"

    return ResultExplainability(
        query_term_matches=tuple(matches),
        semantic_similarity=semantic,
        contextual_relevance=contextual,
        retrieval_reason=reason + ".",
    )
