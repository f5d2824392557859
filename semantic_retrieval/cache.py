"""Caching of retrieval responses.

Provides:
- cache_key: Stable, protocol-scoped cache key derived from a RetrievalRequest.
- CacheStore: Async protocol implemented by every store.
- RedisCacheStore: Redis-backed store using SETEX with JSON payloads.
- InMemoryCacheStore: TTL + LRU bounded store for tests and single-process use.
- build_cache_store: Store selected by settings.CACHE_BACKEND.
"""
import hashlib
import json
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol, Tuple

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from semantic_retrieval.config import RetrievalProtocol, Settings
from semantic_retrieval.errors import CacheUnavailable
from semantic_retrieval.schemas import RetrievalRequest, RetrievalResponse


def cache_key(request: RetrievalRequest, protocol: RetrievalProtocol) -> str:
    """Compute a stable cache key for a request served by one protocol.

    The query is hashed verbatim; only document_types is canonicalized (sorted)
    because it is a set.

    Args:
        request: Retrieval request.
        protocol: Protocol the response is (or would be) produced by.

    Returns:
        str: Namespaced cache key tagged with the protocol.
    """
    data = {
        "protocol": protocol.value,
        "query": request.query,
        "tenant_id": request.tenant_id,
        "limit": request.limit,
        "relevance_threshold": request.relevance_threshold,
        "document_types": sorted(request.document_types),
        "include_metadata": request.include_metadata,
        "use_hybrid_search": request.use_hybrid_search,
    }
    h = hashlib.sha256(json.dumps(data, sort_keys=True).encode("utf-8")).hexdigest()
    return f"rag:retrieval:v1:{protocol.value}:{h}"


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[RetrievalResponse]:
        ...

    async def set(self, key: str, value: RetrievalResponse, ttl_seconds: int) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


def _decode(raw: Optional[str]) -> Optional[RetrievalResponse]:
    if not raw:
        return None
    try:
        return RetrievalResponse.model_validate_json(raw)
    except ValidationError:
        return None


class RedisCacheStore:
    """Cache store backed by a redis.asyncio client (decode_responses=True)."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[RetrievalResponse]:
        """Fetch a cached response; unreadable entries count as misses.

        Raises:
            CacheUnavailable: If Redis cannot be reached.
        """
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"redis get failed: {e}") from e
        return _decode(raw)

    async def set(self, key: str, value: RetrievalResponse, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value.model_dump_json(by_alias=True))
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"redis setex failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCacheStore:
    """Process-local store with per-entry expiry and an LRU size bound.

    Values are stored as their JSON serialization so callers never share
    instances with the cache.
    """

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[RetrievalResponse]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return _decode(raw)

    async def set(self, key: str, value: RetrievalResponse, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        self._entries[key] = (self._clock() + ttl_seconds, value.model_dump_json(by_alias=True))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


def build_cache_store(settings: Settings) -> CacheStore:
    """Create the cache store selected by settings.CACHE_BACKEND ('redis' or 'memory')."""
    backend = settings.CACHE_BACKEND.strip().lower()
    if backend == "memory":
        return InMemoryCacheStore(max_entries=settings.CACHE_MAX_ENTRIES)
    if backend == "redis":
        return RedisCacheStore.from_url(settings.REDIS_URL)
    raise ValueError(f"unknown CACHE_BACKEND {settings.CACHE_BACKEND!r}")
