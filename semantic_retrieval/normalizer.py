"""Response normalization for heterogeneous backend payloads.

The backend returns the same logical field under different names depending on
protocol and backend version. Each canonical field is resolved from an ordered
table of candidate paths (FIELD_PATHS); the first present, correctly typed
value wins and a documented default applies otherwise. Backend drift is
therefore a one-line table edit.

Provides:
- FIELD_PATHS / RESULT_LIST_PATHS / TOTAL_PATHS: Per-protocol candidate tables.
- NormalizedCandidate: Canonical, backend-agnostic view of one row.
- NormalizedPayload: Candidates plus reported total and default-substitution warnings.
- normalize_payload: Entry point raising NormalizationError for unrecognizable payloads.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from semantic_retrieval.config import RetrievalProtocol
from semantic_retrieval.errors import NormalizationError, ValidationWarning
from semantic_retrieval.scoring import as_number, clamp_unit, distance_to_score

_COMMON_PATHS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "document_id", "doc_id", "chunk_id", "metadata.document_id"),
    "snippet": ("snippet", "content", "chunk_content", "text", "document.content"),
    "score": ("score", "similarity", "similarity_score", "relevance_score"),
    "distance": ("distance", "_distance", "vector_distance"),
    "confidence": ("confidence", "confidence_score", "probability", "metadata.confidence"),
    "reranker_score": ("grounding_score", "rerank_score", "relevance", "grounding.score"),
    "grounding_reasons": ("grounding_reasons", "grounding.reasons"),
    "query_term_matches": ("query_term_matches", "explainability.query_term_matches"),
    "semantic_similarity": ("semantic_similarity", "explainability.semantic_similarity"),
    "contextual_relevance": ("contextual_relevance", "explainability.contextual_relevance"),
    "document_type": ("document_type", "documentType", "metadata.document_type", "metadata.documentType"),
    "source_uri": ("source_uri", "sourceUri", "metadata.source_uri", "metadata.sourceUri", "url"),
    "metadata": ("metadata", "chunk_metadata"),
}

FIELD_PATHS: Dict[RetrievalProtocol, Dict[str, Tuple[str, ...]]] = {
    RetrievalProtocol.STRUCTURED: dict(_COMMON_PATHS),
    RetrievalProtocol.PROCEDURAL: {
        **_COMMON_PATHS,
        "id": ("id", "document_id", "documentId", "doc_id", "metadata.document_id"),
        "score": ("score", "similarity", "similarity_score", "relevance_score", "relevanceScore"),
        "reranker_score": ("grounding_score", "groundingScore", "rerank_score", "grounding.score"),
        "grounding_reasons": ("grounding_reasons", "groundingReasons", "grounding.reasons"),
        "query_term_matches": ("query_term_matches", "queryTermMatches", "explainability.queryTermMatches"),
    },
}

RESULT_LIST_PATHS: Dict[RetrievalProtocol, Tuple[str, ...]] = {
    RetrievalProtocol.STRUCTURED: ("rows", "data", "results"),
    RetrievalProtocol.PROCEDURAL: ("results", "data.results", "predictions", "data", "documents"),
}

TOTAL_PATHS: Tuple[str, ...] = ("total_found", "totalFound", "total", "count", "data.total")

# Fields whose absence is counted as backend drift.
_TRACKED_DEFAULTS = ("id", "snippet", "score", "confidence", "document_type")

_MISSING = object()


@dataclass(frozen=True)
class NormalizedCandidate:
    """One backend row in canonical form, before grounding and explainability."""
    id: str
    snippet: str
    score: float
    confidence: float
    document_type: str
    source_uri: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    distance: Optional[float] = None
    reranker_score: Optional[float] = None
    backend_reasons: Tuple[str, ...] = ()
    query_term_matches: Optional[Tuple[str, ...]] = None
    semantic_similarity: Optional[float] = None
    contextual_relevance: Optional[float] = None


@dataclass(frozen=True)
class NormalizedPayload:
    candidates: Tuple[NormalizedCandidate, ...]
    reported_total: Optional[int] = None
    warnings: Tuple[ValidationWarning, ...] = ()
    sorted_client_side: bool = False


def _resolve(obj: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; _MISSING when absent."""
    cur = obj
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    return None


def _as_mapping(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _as_string_list(value: Any) -> Optional[Tuple[str, ...]]:
    """Accept a list of strings, a JSON-encoded list, or a single plain string."""
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return (value,) if value.strip() else ()
        value = parsed
    if isinstance(value, list):
        return tuple(str(v) for v in value if v is not None)
    return None


_CONVERTERS = {
    "id": _as_text,
    "snippet": _as_text,
    "score": as_number,
    "distance": as_number,
    "confidence": as_number,
    "reranker_score": as_number,
    "semantic_similarity": as_number,
    "contextual_relevance": as_number,
    "grounding_reasons": _as_string_list,
    "query_term_matches": _as_string_list,
    "document_type": _as_text,
    "source_uri": _as_text,
    "metadata": _as_mapping,
}


def extract_field(row: Dict[str, Any], name: str, paths: Sequence[str]) -> Any:
    """Return the first candidate path value that converts cleanly, else None.

    Args:
        row: One backend row.
        name: Canonical field name (selects the type converter).
        paths: Ordered candidate paths.
    """
    convert = _CONVERTERS[name]
    for path in paths:
        raw = _resolve(row, path)
        if raw is _MISSING or raw is None:
            continue
        value = convert(raw)
        if value is not None:
            return value
    return None


def _scalar_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Keep scalar values and JSON-encode nested ones, preserving key order."""
    out: Dict[str, Any] = {}
    for k, v in metadata.items():
        if v is None or isinstance(v, (str, int, float, bool)):
            out[str(k)] = v
        else:
            out[str(k)] = json.dumps(v, ensure_ascii=False, sort_keys=True, default=str)
    return out


def _table_rows(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Zip a {'column_names': [...], 'data': [[...]]} table into row dicts."""
    columns = payload.get("column_names")
    data = payload.get("data")
    if not isinstance(columns, list) or not isinstance(data, list):
        raise NormalizationError("tabular payload must carry 'column_names' and 'data' lists")
    rows: List[Dict[str, Any]] = []
    for i, values in enumerate(data):
        if not isinstance(values, list) or len(values) != len(columns):
            raise NormalizationError(f"row {i} does not match the {len(columns)} declared columns")
        rows.append({str(c).lower(): v for c, v in zip(columns, values)})
    return rows


def _locate_rows(payload: Any, protocol: RetrievalProtocol) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        if protocol == RetrievalProtocol.STRUCTURED and "column_names" in payload:
            return _table_rows(payload)
        rows = None
        for path in RESULT_LIST_PATHS[protocol]:
            found = _resolve(payload, path)
            if isinstance(found, list):
                rows = found
                break
        if rows is None:
            raise NormalizationError(
                f"no result list found under any of {', '.join(RESULT_LIST_PATHS[protocol])}"
            )
    else:
        raise NormalizationError(f"unexpected payload type {type(payload).__name__}")

    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            raise NormalizationError(f"result {i} is a {type(row).__name__}, expected an object")
    return rows


def _normalize_row(
    row: Dict[str, Any],
    index: int,
    protocol: RetrievalProtocol,
    include_metadata: bool,
    warnings: List[ValidationWarning],
) -> NormalizedCandidate:
    paths = FIELD_PATHS[protocol]
    values = {name: extract_field(row, name, paths[name]) for name in paths}

    distance = values["distance"]
    score = values["score"]
    if score is None and distance is not None:
        score = distance_to_score(distance)

    defaults = {
        "id": f"{protocol.value}-{index + 1}",
        "snippet": "",
        "score": 0.0,
        "confidence": 0.0,
        "document_type": "unknown",
    }
    resolved = {"id": values["id"], "snippet": values["snippet"], "score": score,
                "confidence": values["confidence"], "document_type": values["document_type"]}
    for name in _TRACKED_DEFAULTS:
        if resolved[name] is None:
            resolved[name] = defaults[name]
            warnings.append(ValidationWarning(field=name, index=index, default=defaults[name]))

    metadata = _scalar_metadata(values["metadata"] or {}) if include_metadata else {}

    return NormalizedCandidate(
        id=resolved["id"],
        snippet=resolved["snippet"],
        score=float(resolved["score"]),
        confidence=clamp_unit(resolved["confidence"]),
        document_type=resolved["document_type"],
        source_uri=values["source_uri"],
        metadata=metadata,
        distance=distance,
        reranker_score=values["reranker_score"],
        backend_reasons=values["grounding_reasons"] or (),
        query_term_matches=values["query_term_matches"],
        semantic_similarity=values["semantic_similarity"],
        contextual_relevance=values["contextual_relevance"],
    )


def normalize_payload(
    payload: Any,
    protocol: RetrievalProtocol,
    *,
    pre_ranked: bool = True,
    include_metadata: bool = True,
) -> NormalizedPayload:
    """Turn one raw backend payload into canonical candidates.

    Args:
        payload: Decoded JSON body returned by a protocol client.
        protocol: Protocol that produced the payload (selects candidate tables).
        pre_ranked: When False the candidates are stable-sorted by score, descending.
        include_metadata: When False candidate metadata is dropped.

    Returns:
        NormalizedPayload: Candidates, reported total and default-substitution warnings.

    Raises:
        NormalizationError: If no result list can be located or rows are not objects.
    """
    rows = _locate_rows(payload, protocol)
    warnings: List[ValidationWarning] = []
    candidates = [
        _normalize_row(row, i, protocol, include_metadata, warnings) for i, row in enumerate(rows)
    ]
    if not pre_ranked:
        candidates.sort(key=lambda c: c.score, reverse=True)  # list.sort is stable

    reported_total = None
    if isinstance(payload, dict):
        for path in TOTAL_PATHS:
            raw = _resolve(payload, path)
            total = None if raw is _MISSING else as_number(raw)
            if total is not None and total >= 0:
                reported_total = int(total)
                break

    return NormalizedPayload(
        candidates=tuple(candidates),
        reported_total=reported_total,
        warnings=tuple(warnings),
        sorted_client_side=not pre_ranked,
    )
