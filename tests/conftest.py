from __future__ import annotations

import asyncio
from typing import Any

import pytest

from semantic_retrieval.cache import InMemoryCacheStore
from semantic_retrieval.config import RetrievalProtocol, Settings
from semantic_retrieval.errors import CacheUnavailable
from semantic_retrieval.schemas import RetrievalRequest, RetrievalResponse


class FakeClient:
    """Protocol client double returning a canned payload or raising an error."""

    def __init__(
        self,
        protocol: RetrievalProtocol,
        payload: Any = None,
        error: Exception | None = None,
        delay: float = 0.0,
        healthy: bool = True,
    ) -> None:
        self.protocol = protocol
        self.payload = payload
        self.error = error
        self.delay = delay
        self.healthy = healthy
        self.calls: list[tuple[RetrievalRequest, int]] = []
        self.cancelled = False

    async def fetch(self, request: RetrievalRequest, candidate_limit: int) -> Any:
        self.calls.append((request, candidate_limit))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.payload

    async def ping(self) -> bool:
        return self.healthy


class UnavailableCache:
    """Cache store whose connection is always down."""

    def __init__(self) -> None:
        self.reads = 0
        self.writes = 0

    async def get(self, key: str) -> RetrievalResponse | None:
        self.reads += 1
        raise CacheUnavailable("connection refused")

    async def set(self, key: str, value: RetrievalResponse, ttl_seconds: int) -> None:
        self.writes += 1
        raise CacheUnavailable("connection refused")

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


def table_payload(rows: list[list[Any]], columns: list[str] | None = None) -> dict[str, Any]:
    return {
        "type": "table",
        "column_names": columns or ["id", "content", "distance", "document_type", "metadata"],
        "data": rows,
    }


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, CACHE_BACKEND="memory", STRUCTURED_TIMEOUT_MS=500, PROCEDURAL_TIMEOUT_MS=500)


@pytest.fixture
def memory_cache() -> InMemoryCacheStore:
    return InMemoryCacheStore(max_entries=32)


@pytest.fixture
def headphones_request() -> RetrievalRequest:
    return RetrievalRequest(query="wireless headphones", tenant_id="m1", limit=2, relevance_threshold=0.5)
