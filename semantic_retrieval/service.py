"""Fallback orchestrator: the public entry point of the retrieval layer.

SemanticRetrievalService.retrieve never raises to its caller (caller
cancellation excepted). Each request resolves to exactly one FallbackOutcome:
the primary protocol served it, the secondary protocol served it, or both
failed and a labelled empty response is returned.
"""
import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from semantic_retrieval.breaker import BreakerState, CircuitBreaker
from semantic_retrieval.cache import CacheStore, cache_key
from semantic_retrieval.config import RetrievalProtocol, Settings, settings as default_settings
from semantic_retrieval.errors import CacheUnavailable, RetrievalError, ValidationWarning
from semantic_retrieval.explainability import (
    CIRCUIT_OPEN_SKIP,
    CLIENT_SIDE_RANK_SORT,
    FAILED_RETRIEVAL,
    PROTOCOL_FALLBACK,
    api_metrics,
    compose_strategy,
    explain_result,
    request_optimizations,
)
from semantic_retrieval.grounding import validate, validate_documents
from semantic_retrieval.normalizer import NormalizedPayload, normalize_payload
from semantic_retrieval.obs import Trace, span
from semantic_retrieval.query_analysis import analyze_query
from semantic_retrieval.schemas import (
    GroundingCheckRequest,
    GroundingCheckResponse,
    QueryAnalysis,
    ResponseExplainability,
    RetrievalRequest,
    RetrievalResponse,
    RetrievalResult,
)

logger = logging.getLogger(__name__)


class ProtocolClient(Protocol):
    protocol: RetrievalProtocol

    async def fetch(self, request: RetrievalRequest, candidate_limit: int) -> Any:
        ...

    async def ping(self) -> bool:
        ...


class FallbackOutcome(str, Enum):
    PRIMARY_SUCCESS = "primary_success"
    SECONDARY_SUCCESS = "secondary_success"
    BOTH_FAILED = "both_failed"


@dataclass
class Attempt:
    """Result of trying one protocol: a response, or the error that stopped it."""
    protocol: RetrievalProtocol
    response: Optional[RetrievalResponse] = None
    error: Optional[str] = None
    from_cache: bool = False
    live: bool = False
    skipped: bool = False


class SemanticRetrievalService:
    """Coordinates cache lookup, protocol fallback, normalization, grounding and explainability.

    Args:
        primary: Client for the primary protocol.
        secondary: Client for the protocol tried when the primary fails.
        cache: Cache store shared by both protocols (keys are protocol-scoped).
        settings: Service settings; per-protocol knobs come from settings.profile_for.
        clock: Monotonic time source for the per-protocol circuit breakers.
    """

    def __init__(
        self,
        primary: ProtocolClient,
        secondary: ProtocolClient,
        cache: CacheStore,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        if primary.protocol == secondary.protocol:
            raise ValueError("primary and secondary clients must use different protocols")
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.settings = settings
        self.breakers: Dict[RetrievalProtocol, CircuitBreaker] = {
            c.protocol: CircuitBreaker.from_settings(settings, clock) for c in (primary, secondary)
        }

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResponse:
        """Retrieve grounded, explained results for one request.

        Args:
            request: Validated retrieval request.

        Returns:
            RetrievalResponse: Results, or an empty response labelled 'failed_retrieval'.
        """
        t0 = time.time()
        trace = Trace("retrieve", input={"query": request.query, "tenant_id": request.tenant_id})
        try:
            outcome, response = await self._run(request, trace, t0)
        except Exception as e:
            logger.exception("unexpected error while retrieving for tenant %s", request.tenant_id)
            outcome = FallbackOutcome.BOTH_FAILED
            response = self._failure_response(
                request, analyze_query(request.query), [f"unexpected: {e}"], self.secondary.protocol, t0
            )
        trace.end(
            output={
                "outcome": outcome.value,
                "result_count": len(response.results),
                "cache_hit": response.cache_hit,
            }
        )
        return response

    async def _run(
        self, request: RetrievalRequest, trace: Trace, t0: float
    ) -> Tuple[FallbackOutcome, RetrievalResponse]:
        analysis = analyze_query(request.query)
        errors: List[str] = []
        notes: List[str] = []
        live_call = False
        clients = (self.primary, self.secondary)
        for position, client in enumerate(clients):
            attempt = await self._attempt(client, request, analysis, notes, trace)
            live_call = live_call or attempt.live
            if attempt.response is not None:
                if position == 0:
                    return FallbackOutcome.PRIMARY_SUCCESS, attempt.response
                logger.info(
                    "served by secondary protocol %s after primary failure", attempt.protocol.value
                )
                response = attempt.response
                if attempt.from_cache and live_call:
                    response = self._with_fallback_metrics(response, attempt.protocol, t0)
                return FallbackOutcome.SECONDARY_SUCCESS, response
            errors.append(attempt.error or f"{attempt.protocol.value}: unknown error")
            notes.append(PROTOCOL_FALLBACK)
            if attempt.skipped:
                notes.append(CIRCUIT_OPEN_SKIP)
            trace.event("protocol_failed", {"protocol": attempt.protocol.value, "error": attempt.error})
            logger.warning("protocol %s failed: %s", attempt.protocol.value, attempt.error)

        logger.error("all protocols failed for tenant %s: %s", request.tenant_id, "; ".join(errors))
        trace.event("retrieval_failed", {"errors": errors})
        return FallbackOutcome.BOTH_FAILED, self._failure_response(
            request, analysis, errors, clients[-1].protocol, t0, notes, live_call
        )

    async def _attempt(
        self,
        client: ProtocolClient,
        request: RetrievalRequest,
        analysis: QueryAnalysis,
        notes: Sequence[str],
        trace: Trace,
    ) -> Attempt:
        protocol = client.protocol
        profile = self.settings.profile_for(protocol)
        key = cache_key(request, protocol)

        cached = await self._cache_get(key)
        if cached is not None:
            trace.event("cache_hit", {"protocol": protocol.value})
            explainability = cached.explainability.model_copy(update={"api_metrics": None})
            return Attempt(
                protocol=protocol,
                response=cached.model_copy(update={"cache_hit": True, "explainability": explainability}),
                from_cache=True,
            )

        breaker = self.breakers[protocol]
        if not breaker.allow():
            return Attempt(
                protocol=protocol,
                error=f"{protocol.value}: circuit open, call skipped",
                skipped=True,
            )

        started = time.time()
        candidate_limit = request.limit * max(1, self.settings.CANDIDATE_OVERFETCH_FACTOR)
        try:
            with span(
                f"retrieval.{protocol.value}",
                {"tenant_id": request.tenant_id, "limit": candidate_limit, "fallback": bool(notes)},
            ):
                payload = await asyncio.wait_for(
                    client.fetch(request, candidate_limit), timeout=profile.timeout_ms / 1000
                )
            normalized = normalize_payload(
                payload,
                protocol,
                pre_ranked=profile.pre_ranked,
                include_metadata=request.include_metadata,
            )
        except asyncio.TimeoutError:
            breaker.record_failure()
            return Attempt(
                protocol=protocol, error=f"{protocol.value}: timed out after {profile.timeout_ms} ms", live=True
            )
        except RetrievalError as e:
            breaker.record_failure()
            return Attempt(protocol=protocol, error=f"{protocol.value}: {e}", live=True)
        breaker.record_success()

        self._log_warnings(protocol, normalized.warnings)
        response = self._build_response(
            request, analysis, normalized, protocol, profile.grounding_baseline, notes, started
        )
        await self._cache_set(key, response, profile.cache_ttl_seconds)
        return Attempt(protocol=protocol, response=response, live=True)

    def _build_response(
        self,
        request: RetrievalRequest,
        analysis: QueryAnalysis,
        normalized: NormalizedPayload,
        protocol: RetrievalProtocol,
        baseline: float,
        notes: Sequence[str],
        started: float,
    ) -> RetrievalResponse:
        threshold = request.relevance_threshold
        terms = analysis.extracted_terms
        filtered = []
        off_type = 0
        for candidate in normalized.candidates:
            if request.document_types and candidate.document_type not in request.document_types:
                off_type += 1
                continue
            validation, matches = validate(candidate, terms, threshold, baseline)
            if threshold > 0 and validation.score < threshold:
                continue
            filtered.append((candidate, validation, matches))
        if off_type:
            logger.info("%s returned %d rows outside the requested document types", protocol.value, off_type)

        if normalized.reported_total is not None and threshold == 0 and not off_type:
            total_found = max(normalized.reported_total, len(filtered))
        else:
            total_found = len(filtered)

        results = tuple(
            RetrievalResult(
                id=candidate.id,
                snippet=candidate.snippet,
                score=candidate.score,
                confidence=candidate.confidence,
                document_type=candidate.document_type,
                source_uri=candidate.source_uri,
                metadata=candidate.metadata,
                grounding_pass=validation.passed,
                grounding_validation=validation,
                explainability=explain_result(
                    candidate, validation, matches, terms, bool(request.document_types)
                ),
            )
            for candidate, validation, matches in filtered[: request.limit]
        )

        optimizations = request_optimizations(request)
        if normalized.sorted_client_side:
            optimizations.append(CLIENT_SIDE_RANK_SORT)
        optimizations.extend(notes)

        elapsed_ms = int((time.time() - started) * 1000)
        return RetrievalResponse(
            results=results,
            total_found=total_found,
            query_processing_time_ms=elapsed_ms,
            cache_hit=False,
            explainability=ResponseExplainability(
                query_analysis=analysis,
                retrieval_strategy=compose_strategy(protocol.value, request, optimizations),
                api_metrics=api_metrics(elapsed_ms, len(results), protocol.value, "miss"),
            ),
        )

    @staticmethod
    def _with_fallback_metrics(
        response: RetrievalResponse, protocol: RetrievalProtocol, t0: float
    ) -> RetrievalResponse:
        """Attach metrics to a cached fallback response when the primary made a live call."""
        elapsed_ms = int((time.time() - t0) * 1000)
        metrics = api_metrics(elapsed_ms, len(response.results), protocol.value, "hit")
        explainability = response.explainability.model_copy(update={"api_metrics": metrics})
        return response.model_copy(update={"explainability": explainability})

    def _failure_response(
        self,
        request: RetrievalRequest,
        analysis: QueryAnalysis,
        errors: Sequence[str],
        last_protocol: RetrievalProtocol,
        t0: float,
        notes: Sequence[str] = (PROTOCOL_FALLBACK,),
        live_call: bool = True,
    ) -> RetrievalResponse:
        elapsed_ms = int((time.time() - t0) * 1000)
        optimizations = request_optimizations(request) + list(notes)
        return RetrievalResponse(
            results=(),
            total_found=0,
            query_processing_time_ms=elapsed_ms,
            cache_hit=False,
            explainability=ResponseExplainability(
                query_analysis=analysis,
                retrieval_strategy=compose_strategy(
                    FAILED_RETRIEVAL, request, optimizations, error="; ".join(errors)
                ),
                api_metrics=api_metrics(elapsed_ms, 0, last_protocol.value, "miss") if live_call else None,
            ),
        )

    async def _cache_get(self, key: str) -> Optional[RetrievalResponse]:
        try:
            return await self.cache.get(key)
        except CacheUnavailable as e:
            logger.warning("cache unavailable on read, treating as miss: %s", e)
            return None

    async def _cache_set(self, key: str, value: RetrievalResponse, ttl_seconds: int) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds)
        except CacheUnavailable as e:
            logger.warning("cache unavailable on write, response not cached: %s", e)

    @staticmethod
    def _log_warnings(protocol: RetrievalProtocol, warnings: Sequence[ValidationWarning]) -> None:
        if not warnings:
            return
        counts = Counter(w.field for w in warnings)
        logger.info(
            "%s payload defaulted fields: %s",
            protocol.value,
            ", ".join(f"{name}={n}" for name, n in sorted(counts.items())),
        )

    def validate_documents(self, request: GroundingCheckRequest) -> GroundingCheckResponse:
        """Grounding validation of caller-supplied documents, using the primary protocol baseline."""
        baseline = self.settings.profile_for(self.primary.protocol).grounding_baseline
        return validate_documents(request.query, request.documents, request.relevance_threshold, baseline)

    async def health(self) -> Dict[str, Any]:
        """Probe the cache and both protocol backends concurrently."""
        cache_ok, primary_ok, secondary_ok = await asyncio.gather(
            self.cache.ping(), self.primary.ping(), self.secondary.ping()
        )
        components = {
            "cache": "up" if cache_ok else "down",
            self.primary.protocol.value: "up" if primary_ok else "down",
            self.secondary.protocol.value: "up" if secondary_ok else "down",
        }
        breakers = {p.value: b.state.value for p, b in self.breakers.items()}
        healthy = all(v == "up" for v in components.values()) and all(
            s != BreakerState.OPEN.value for s in breakers.values()
        )
        return {"status": "healthy" if healthy else "degraded", "components": components, "breakers": breakers}
