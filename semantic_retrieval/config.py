"""Service configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- The external retrieval backend (base URL, project, optional bearer token)
- Per-protocol knobs (timeouts, cache TTLs, ordering, grounding baselines)
- Request defaults (limit, relevance threshold)
- Cache store selection (Redis or in-process memory)
- Optional observability (log level, OpenTelemetry console export, Langfuse)
"""
from dataclasses import dataclass
from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrievalProtocol(str, Enum):
    """The two ways the backend can be queried; values double as cache tags."""

    STRUCTURED = "structured_query"
    PROCEDURAL = "procedural_predict"


@dataclass(frozen=True)
class ProtocolProfile:
    """Effective per-protocol settings used by the orchestrator.

    Attributes:
        protocol: Which protocol this profile describes.
        timeout_ms: Upper bound for one backend call.
        cache_ttl_seconds: Lifetime of cache entries produced by this protocol.
        pre_ranked: Whether the backend returns rows already in rank order.
        grounding_baseline: Minimum grounding score for a pass when the caller set no threshold.
    """
    protocol: RetrievalProtocol
    timeout_ms: int
    cache_ttl_seconds: int
    pre_ranked: bool
    grounding_baseline: float


class Settings(BaseSettings):
    """Strongly-typed service settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    """
    # Backend
    BACKEND_BASE_URL: str = "http://mindsdb:47334"
    BACKEND_API_KEY: str = ""
    BACKEND_PROJECT: str = "mindsdb"

    # Structured (declarative query) protocol
    STRUCTURED_RESOURCE_PREFIX: str = "semantic_retriever_"
    STRUCTURED_SEMANTIC_COLUMN: str = "content"
    STRUCTURED_TENANT_COLUMN: str = "merchant_id"
    STRUCTURED_TIMEOUT_MS: int = 30000
    STRUCTURED_CACHE_TTL_SECONDS: int = 1800
    STRUCTURED_PRE_RANKED: bool = True  # knowledge base answers in relevance order
    STRUCTURED_GROUNDING_BASELINE: float = 0.3

    # Procedural (predictor invocation) protocol
    PROCEDURAL_PATH_TEMPLATE: str = "/api/projects/{project}/models/{capability}_{tenant_id}/predict"
    PROCEDURAL_CAPABILITY: str = "semantic_retriever"
    PROCEDURAL_RESPONSE_FORMAT: str = "detailed"
    PROCEDURAL_HEALTH_PATH: str = "/api/status"
    PROCEDURAL_TIMEOUT_MS: int = 15000
    PROCEDURAL_CACHE_TTL_SECONDS: int = 600
    PROCEDURAL_PRE_RANKED: bool = False
    PROCEDURAL_GROUNDING_BASELINE: float = 0.3

    # Orchestration
    PRIMARY_PROTOCOL: RetrievalProtocol = RetrievalProtocol.STRUCTURED
    CANDIDATE_OVERFETCH_FACTOR: int = 2
    DEFAULT_LIMIT: int = 10
    MAX_LIMIT: int = 100
    DEFAULT_RELEVANCE_THRESHOLD: float = 0.0  # 0 means no filtering
    HYBRID_SEARCH_ALPHA: float = 0.7  # semantic weight vs keyword weight

    # Circuit breaker (per protocol)
    BREAKER_FAILURE_THRESHOLD: int = 3
    BREAKER_RESET_TIMEOUT_SECONDS: float = 30.0
    BREAKER_MONITORING_WINDOW_SECONDS: float = 60.0

    # Cache
    CACHE_BACKEND: str = "redis"  # "redis" | "memory"
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_MAX_ENTRIES: int = 1024

    # Observability (optional)
    LOG_LEVEL: str = "INFO"
    OTEL_CONSOLE_EXPORT: bool = False
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def SECONDARY_PROTOCOL(self) -> RetrievalProtocol:
        """The protocol tried after the primary one fails."""
        if self.PRIMARY_PROTOCOL == RetrievalProtocol.STRUCTURED:
            return RetrievalProtocol.PROCEDURAL
        return RetrievalProtocol.STRUCTURED

    def profile_for(self, protocol: RetrievalProtocol) -> ProtocolProfile:
        """Collect the per-protocol knobs into a ProtocolProfile.

        Args:
            protocol: Protocol to describe.

        Returns:
            ProtocolProfile: Timeout, TTL, ordering and grounding baseline for the protocol.
        """
        if protocol == RetrievalProtocol.STRUCTURED:
            return ProtocolProfile(
                protocol=protocol,
                timeout_ms=self.STRUCTURED_TIMEOUT_MS,
                cache_ttl_seconds=self.STRUCTURED_CACHE_TTL_SECONDS,
                pre_ranked=self.STRUCTURED_PRE_RANKED,
                grounding_baseline=self.STRUCTURED_GROUNDING_BASELINE,
            )
        return ProtocolProfile(
            protocol=protocol,
            timeout_ms=self.PROCEDURAL_TIMEOUT_MS,
            cache_ttl_seconds=self.PROCEDURAL_CACHE_TTL_SECONDS,
            pre_ranked=self.PROCEDURAL_PRE_RANKED,
            grounding_baseline=self.PROCEDURAL_GROUNDING_BASELINE,
        )


settings = Settings()
