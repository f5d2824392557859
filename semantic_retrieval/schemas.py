"""Pydantic request/response schemas for the retrieval layer.

Defines the contracts shared by the orchestrator, the cache and the API:
- RetrievalRequest: Caller-supplied query and tenant scope.
- RetrievalResult: One normalized, grounded and explained backend match.
- RetrievalResponse: Ordered results plus timing, cache and explainability data.
- GroundingCheckRequest/GroundingCheckResponse: Grounding validation of caller-supplied documents.

All models are frozen. Attributes are snake_case in Python and camelCase on the wire.
"""
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from semantic_retrieval.config import settings

Scalar = Union[str, int, float, bool, None]


class FrozenModel(BaseModel):
    """Immutable base model with camelCase aliases."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class RetrievalRequest(FrozenModel):
    """Request for semantic retrieval within one tenant.

    Attributes:
        query: Natural-language query text.
        tenant_id: Already-authenticated tenant identifier.
        limit: Maximum number of results to return.
        relevance_threshold: Minimum grounding score; 0 disables filtering.
        document_types: Optional document type filter.
        include_metadata: Whether result metadata should be returned.
        use_hybrid_search: Blend keyword and semantic matching on the backend.
    """
    query: str = Field(..., min_length=1, max_length=1000, description="Query text")
    tenant_id: str = Field(..., min_length=1, description="Tenant identifier")
    limit: int = Field(
        default_factory=lambda: settings.DEFAULT_LIMIT,
        gt=0,
        le=settings.MAX_LIMIT,
        description="Maximum number of results",
    )
    relevance_threshold: float = Field(
        default_factory=lambda: settings.DEFAULT_RELEVANCE_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Minimum grounding score (0 = no filtering)",
    )
    document_types: FrozenSet[str] = Field(default_factory=frozenset)
    include_metadata: bool = True
    use_hybrid_search: bool = False

    @field_validator("query", "tenant_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class GroundingValidation(FrozenModel):
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    reasons: Tuple[str, ...]
    method: str


class ResultExplainability(FrozenModel):
    query_term_matches: Tuple[str, ...] = ()
    semantic_similarity: float = 0.0
    contextual_relevance: float = 0.0
    retrieval_reason: str


class RetrievalResult(FrozenModel):
    """A single normalized match.

    `score` keeps the backend-native scale; `confidence` and the grounding score are within [0, 1].
    """
    id: str
    snippet: str = ""
    score: float = 0.0
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    document_type: str = "unknown"
    source_uri: Optional[str] = None
    metadata: Dict[str, Scalar] = Field(default_factory=dict)
    grounding_pass: bool
    grounding_validation: GroundingValidation
    explainability: ResultExplainability


class QueryAnalysis(FrozenModel):
    original_query: str
    processed_query: str
    extracted_terms: Tuple[str, ...]
    query_intent: str


class RetrievalStrategy(FrozenModel):
    algorithm: str
    parameters: Dict[str, Any]
    optimizations: Tuple[str, ...] = ()


class ApiMetrics(FrozenModel):
    response_time_ms: int = Field(..., ge=0)
    result_count: int = Field(..., ge=0)
    protocol_used: str
    cache_status: str


class ResponseExplainability(FrozenModel):
    query_analysis: QueryAnalysis
    retrieval_strategy: RetrievalStrategy
    api_metrics: Optional[ApiMetrics] = None


class RetrievalResponse(FrozenModel):
    """Response returned to the conversational layer.

    Attributes:
        results: Matches in backend rank order (or score order for unordered protocols).
        total_found: Number of matches known to satisfy the request before truncation to `limit`.
        query_processing_time_ms: Wall-clock time of the live retrieval that produced this response.
        cache_hit: Whether the response was served from the cache.
        explainability: Query analysis, strategy and backend call metrics.
    """
    results: Tuple[RetrievalResult, ...] = ()
    total_found: int = Field(0, ge=0)
    query_processing_time_ms: int = Field(0, ge=0)
    cache_hit: bool = False
    explainability: ResponseExplainability


class GroundingDocument(FrozenModel):
    """A caller-supplied document to validate against a query."""
    id: str
    content: str
    distance: Optional[float] = None
    score: Optional[float] = None
    grounding_score: Optional[float] = None


class GroundingCheckRequest(FrozenModel):
    query: str = Field(..., min_length=1, max_length=1000)
    documents: Tuple[GroundingDocument, ...] = Field(..., min_length=1)
    relevance_threshold: float = Field(0.0, ge=0.0, le=1.0)


class DocumentGrounding(FrozenModel):
    document_id: str
    grounding_validation: GroundingValidation
    query_term_matches: Tuple[str, ...] = ()


class GroundingCheckResponse(FrozenModel):
    results: Tuple[DocumentGrounding, ...]
    passed_count: int
    total_documents: int
