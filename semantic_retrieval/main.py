"""FastAPI application entrypoint and routes.

Exposes health, component health, /retrieve and /validate-grounding. The
SemanticRetrievalService is built lazily from settings and injected with
Depends so tests can override it.
"""
import logging
import threading
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from semantic_retrieval.cache import build_cache_store
from semantic_retrieval.clients import ProceduralPredictClient, StructuredQueryClient, build_http_client
from semantic_retrieval.config import RetrievalProtocol, settings
from semantic_retrieval.obs import setup_logging
from semantic_retrieval.schemas import (
    GroundingCheckRequest,
    GroundingCheckResponse,
    RetrievalRequest,
    RetrievalResponse,
)
from semantic_retrieval.service import SemanticRetrievalService

logger = logging.getLogger(__name__)

app = FastAPI(title="Semantic Retrieval API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)

_service: Optional[SemanticRetrievalService] = None
_http = None
_service_lock = threading.Lock()


def get_service() -> SemanticRetrievalService:
    """Return the process-wide retrieval service, building it on first use.

    FastAPI runs sync dependencies in its threadpool, so construction is guarded by a lock.
    """
    global _service, _http
    if _service is not None:
        return _service
    with _service_lock:
        if _service is not None:
            return _service
        _http = build_http_client(settings)
        structured = StructuredQueryClient(_http, settings)
        procedural = ProceduralPredictClient(_http, settings)
        if settings.PRIMARY_PROTOCOL == RetrievalProtocol.STRUCTURED:
            primary, secondary = structured, procedural
        else:
            primary, secondary = procedural, structured
        _service = SemanticRetrievalService(primary, secondary, build_cache_store(settings), settings)
        logger.info(
            "retrieval service ready (primary=%s, secondary=%s, cache=%s)",
            primary.protocol.value,
            secondary.protocol.value,
            settings.CACHE_BACKEND,
        )
    return _service


@app.on_event("startup")
def on_startup() -> None:
    """Configure logging at application startup."""
    setup_logging()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Close the backend HTTP client and the cache connection."""
    global _service, _http
    if _service is not None:
        await _service.cache.close()
    if _http is not None:
        await _http.aclose()
    _service = None
    _http = None


@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.get("/health/components")
async def component_health(service: SemanticRetrievalService = Depends(get_service)):
    """Readiness probe covering the cache and both backend protocols (503 when degraded)."""
    report = await service.health()
    return JSONResponse(report, status_code=200 if report["status"] == "healthy" else 503)


@app.post("/retrieve", response_model=RetrievalResponse, response_model_by_alias=True)
async def retrieve(
    req: RetrievalRequest, service: SemanticRetrievalService = Depends(get_service)
) -> RetrievalResponse:
    """Retrieve grounded snippets for a tenant-scoped query.

    Backend failures are reported inside the response (algorithm 'failed_retrieval'),
    never as an HTTP error.
    """
    return await service.retrieve(req)


@app.post("/validate-grounding", response_model=GroundingCheckResponse, response_model_by_alias=True)
def validate_grounding(
    req: GroundingCheckRequest, service: SemanticRetrievalService = Depends(get_service)
) -> GroundingCheckResponse:
    """Validate caller-supplied documents against a query."""
    return service.validate_documents(req)
