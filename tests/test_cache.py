from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from semantic_retrieval.cache import InMemoryCacheStore, RedisCacheStore, build_cache_store, cache_key
from semantic_retrieval.config import RetrievalProtocol, Settings
from semantic_retrieval.errors import CacheUnavailable
from semantic_retrieval.query_analysis import analyze_query
from semantic_retrieval.schemas import (
    ResponseExplainability,
    RetrievalRequest,
    RetrievalResponse,
    RetrievalStrategy,
)

BASE = RetrievalRequest(query="wireless headphones", tenant_id="m1", limit=5)


def _response(total: int = 1) -> RetrievalResponse:
    return RetrievalResponse(
        total_found=total,
        query_processing_time_ms=12,
        explainability=ResponseExplainability(
            query_analysis=analyze_query("wireless headphones"),
            retrieval_strategy=RetrievalStrategy(algorithm="structured_query", parameters={"limit": 5}),
        ),
    )


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class BrokenRedis(FakeRedis):
    async def get(self, key: str) -> str | None:
        raise RedisConnectionError("refused")

    async def setex(self, key: str, ttl: int, value: str) -> None:
        raise RedisConnectionError("refused")

    async def ping(self) -> bool:
        raise RedisConnectionError("refused")


def test_cache_key_is_deterministic() -> None:
    same = RetrievalRequest(query="wireless headphones", tenant_id="m1", limit=5)
    assert cache_key(BASE, RetrievalProtocol.STRUCTURED) == cache_key(same, RetrievalProtocol.STRUCTURED)


def test_cache_key_is_protocol_scoped() -> None:
    structured = cache_key(BASE, RetrievalProtocol.STRUCTURED)
    procedural = cache_key(BASE, RetrievalProtocol.PROCEDURAL)

    assert structured != procedural
    assert "structured_query" in structured
    assert "procedural_predict" in procedural


@pytest.mark.parametrize(
    "update",
    [
        {"query": "Wireless headphones"},
        {"tenant_id": "m2"},
        {"limit": 6},
        {"relevance_threshold": 0.4},
        {"document_types": frozenset({"faq"})},
        {"include_metadata": False},
        {"use_hybrid_search": True},
    ],
)
def test_cache_key_changes_with_every_request_field(update: dict) -> None:
    changed = BASE.model_copy(update=update)
    assert cache_key(changed, RetrievalProtocol.STRUCTURED) != cache_key(BASE, RetrievalProtocol.STRUCTURED)


def test_cache_key_ignores_document_type_order() -> None:
    a = RetrievalRequest(query="q", tenant_id="m1", document_types=["faq", "product"])
    b = RetrievalRequest(query="q", tenant_id="m1", document_types=["product", "faq"])
    assert cache_key(a, RetrievalProtocol.PROCEDURAL) == cache_key(b, RetrievalProtocol.PROCEDURAL)


@pytest.mark.asyncio
async def test_memory_store_expires_entries() -> None:
    now = [100.0]
    store = InMemoryCacheStore(clock=lambda: now[0])
    await store.set("k", _response(), ttl_seconds=10)

    now[0] = 109.0
    assert await store.get("k") is not None
    now[0] = 110.0
    assert await store.get("k") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_memory_store_evicts_least_recently_used() -> None:
    store = InMemoryCacheStore(max_entries=2)
    await store.set("a", _response(1), 60)
    await store.set("b", _response(2), 60)
    await store.get("a")
    await store.set("c", _response(3), 60)

    assert await store.get("b") is None
    assert (await store.get("a")).total_found == 1
    assert (await store.get("c")).total_found == 3


@pytest.mark.asyncio
async def test_memory_store_returns_copies() -> None:
    store = InMemoryCacheStore()
    original = _response()
    await store.set("k", original, 60)

    first = await store.get("k")
    second = await store.get("k")

    assert first == original
    assert first is not original
    assert first is not second


@pytest.mark.asyncio
async def test_redis_store_round_trips_with_ttl() -> None:
    fake = FakeRedis()
    store = RedisCacheStore(fake)
    await store.set("k", _response(7), 1800)

    loaded = await store.get("k")

    assert loaded is not None
    assert loaded.total_found == 7
    assert fake.ttls["k"] == 1800
    assert '"totalFound":7' in fake.store["k"]


@pytest.mark.asyncio
async def test_redis_store_treats_unreadable_entry_as_miss() -> None:
    fake = FakeRedis()
    fake.store["k"] = "{not json"
    assert await RedisCacheStore(fake).get("k") is None


@pytest.mark.asyncio
async def test_redis_store_connection_errors_raise_cache_unavailable() -> None:
    store = RedisCacheStore(BrokenRedis())

    with pytest.raises(CacheUnavailable):
        await store.get("k")
    with pytest.raises(CacheUnavailable):
        await store.set("k", _response(), 60)
    assert await store.ping() is False


def test_build_cache_store_selects_backend() -> None:
    assert isinstance(build_cache_store(Settings(_env_file=None, CACHE_BACKEND="memory")), InMemoryCacheStore)
    with pytest.raises(ValueError):
        build_cache_store(Settings(_env_file=None, CACHE_BACKEND="memcached"))
