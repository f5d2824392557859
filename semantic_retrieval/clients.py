"""Retrieval gateway: the two protocols used to query the backend.

Provides:
- StructuredQueryClient: Declarative query rendered with SQLAlchemy Core and sent to the SQL endpoint.
- ProceduralPredictClient: Per-tenant predictor invocation over JSON.
- build_http_client: Shared httpx.AsyncClient configured from settings.

Both clients return the raw decoded JSON body; interpretation belongs to the normalizer.
"""
import logging
import re
from typing import Any, Dict

import httpx
from sqlalchemy import column, literal_column, select, table
from sqlalchemy.dialects import mysql

from semantic_retrieval.config import RetrievalProtocol, Settings
from semantic_retrieval.errors import NormalizationError, TransportError
from semantic_retrieval.schemas import RetrievalRequest

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
SQL_QUERY_PATH = "/api/sql/query"


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared async HTTP client for backend calls.

    Per-call timeouts are enforced by the orchestrator; the client timeout is
    the larger of the two protocol timeouts.
    """
    headers = {"Accept": "application/json"}
    if settings.BACKEND_API_KEY:
        headers["Authorization"] = f"Bearer {settings.BACKEND_API_KEY}"
    timeout_s = max(settings.STRUCTURED_TIMEOUT_MS, settings.PROCEDURAL_TIMEOUT_MS) / 1000
    return httpx.AsyncClient(base_url=settings.BACKEND_BASE_URL, headers=headers, timeout=timeout_s)


def _check_tenant(tenant_id: str) -> None:
    if not TENANT_ID_PATTERN.match(tenant_id):
        raise TransportError(f"tenant id {tenant_id!r} cannot address a backend resource")


async def _post_json(http: httpx.AsyncClient, path: str, body: Dict[str, Any]) -> Any:
    """POST a JSON body and decode the JSON response.

    Raises:
        TransportError: On network failures and non-2xx statuses.
        NormalizationError: When the body is not JSON.
    """
    try:
        resp = await http.post(path, json=body)
    except httpx.HTTPError as e:
        raise TransportError(f"{type(e).__name__} calling {path}: {e}") from e
    if resp.status_code < 200 or resp.status_code >= 300:
        raise TransportError(f"HTTP {resp.status_code} from {path}: {resp.text[:200]}")
    try:
        return resp.json()
    except ValueError as e:
        raise NormalizationError(f"non-JSON body from {path}") from e


class StructuredQueryClient:
    """Declarative query protocol against the per-tenant retrieval resource."""

    protocol = RetrievalProtocol.STRUCTURED

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._settings = settings

    def build_query(self, request: RetrievalRequest, candidate_limit: int) -> str:
        """Render the SELECT statement for one request.

        Args:
            request: Retrieval request.
            candidate_limit: Number of rows to ask the backend for.

        Returns:
            str: SQL text with literal values bound.
        """
        s = self._settings
        resource = table(f"{s.STRUCTURED_RESOURCE_PREFIX}{request.tenant_id}", schema=s.BACKEND_PROJECT)
        stmt = (
            select(literal_column("*"))
            .select_from(resource)
            .where(column(s.STRUCTURED_SEMANTIC_COLUMN) == request.query)
            .where(column(s.STRUCTURED_TENANT_COLUMN) == request.tenant_id)
        )
        if request.document_types:
            stmt = stmt.where(column("document_type").in_(sorted(request.document_types)))
        if request.relevance_threshold > 0:
            stmt = stmt.where(column("relevance") >= request.relevance_threshold)
        if request.use_hybrid_search:
            stmt = stmt.where(column("hybrid_search") == literal_column("true")).where(
                column("hybrid_search_alpha") == s.HYBRID_SEARCH_ALPHA
            )
        stmt = stmt.limit(candidate_limit)
        # the named paramstyle keeps "%" in literals from being doubled
        dialect = mysql.dialect(paramstyle="named")
        return str(stmt.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))

    async def fetch(self, request: RetrievalRequest, candidate_limit: int) -> Any:
        _check_tenant(request.tenant_id)
        sql = self.build_query(request, candidate_limit)
        logger.debug("structured query for tenant %s: %s", request.tenant_id, sql)
        payload = await _post_json(self._http, SQL_QUERY_PATH, {"query": sql})
        if isinstance(payload, dict) and payload.get("type") == "error":
            msg = payload.get("error_message") or payload.get("error") or "unknown error"
            raise TransportError(f"backend rejected query: {msg}")
        return payload

    async def ping(self) -> bool:
        try:
            payload = await _post_json(self._http, SQL_QUERY_PATH, {"query": "SELECT 1"})
        except (TransportError, NormalizationError):
            return False
        return not (isinstance(payload, dict) and payload.get("type") == "error")


class ProceduralPredictClient:
    """Procedural protocol: invoke the tenant's retrieval predictor."""

    protocol = RetrievalProtocol.PROCEDURAL

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._settings = settings

    def path_for(self, tenant_id: str) -> str:
        s = self._settings
        return s.PROCEDURAL_PATH_TEMPLATE.format(
            project=s.BACKEND_PROJECT, capability=s.PROCEDURAL_CAPABILITY, tenant_id=tenant_id
        )

    def build_body(self, request: RetrievalRequest, candidate_limit: int) -> Dict[str, Any]:
        body = {
            "query": request.query,
            "limit": candidate_limit,
            "threshold": request.relevance_threshold,
            "include_metadata": request.include_metadata,
            "document_types": sorted(request.document_types),
            "merchant_id": request.tenant_id,
            "response_format": self._settings.PROCEDURAL_RESPONSE_FORMAT,
            "include_confidence": True,
            "include_grounding_reasons": True,
        }
        if request.use_hybrid_search:
            body["use_hybrid_search"] = True
            body["hybrid_search_alpha"] = self._settings.HYBRID_SEARCH_ALPHA
        return body

    async def fetch(self, request: RetrievalRequest, candidate_limit: int) -> Any:
        _check_tenant(request.tenant_id)
        payload = await _post_json(
            self._http, self.path_for(request.tenant_id), self.build_body(request, candidate_limit)
        )
        if isinstance(payload, dict) and payload.get("type") == "error":
            raise TransportError(f"predictor error: {payload.get('error_message') or payload.get('error')}")
        return payload

    async def ping(self) -> bool:
        try:
            resp = await self._http.get(self._settings.PROCEDURAL_HEALTH_PATH)
        except httpx.HTTPError:
            return False
        return resp.is_success
