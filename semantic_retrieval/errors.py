"""Error taxonomy for the retrieval layer.

TransportError and NormalizationError both trigger protocol fallback;
CacheUnavailable degrades to cache-miss behavior. None of them reach the
caller of SemanticRetrievalService.retrieve.
"""
from dataclasses import dataclass
from typing import Any


class RetrievalError(Exception):
    """Base class for failures raised inside the retrieval layer."""


class TransportError(RetrievalError):
    """Network, HTTP status, timeout or backend-reported failure on a protocol call."""


class NormalizationError(RetrievalError):
    """The backend payload does not have any recognizable structure."""


class CacheUnavailable(RetrievalError):
    """The cache store could not be reached."""


@dataclass(frozen=True)
class ValidationWarning:
    """A field was missing from a backend row and a default was substituted.

    Attributes:
        field: Canonical field name that defaulted.
        index: Position of the row in the backend payload.
        default: The value that was substituted.
    """
    field: str
    index: int
    default: Any
