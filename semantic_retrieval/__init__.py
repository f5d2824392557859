"""Semantic retrieval layer of a retrieval-augmented chat assistant.

Submodules overview:
- main: FastAPI application bootstrap and routes.
- config: Service settings and per-protocol profiles.
- schemas: Pydantic request/response models for API contracts.
- service: Fallback orchestrator (public entry point).
- breaker: Per-protocol circuit breaker.
- clients: Structured-query and procedural-predict backend clients.
- normalizer: Candidate-path extraction of heterogeneous backend payloads.
- grounding: Grounding validation (backend reranker or heuristic).
- explainability: Strategy, metrics and per-result explanations.
- query_analysis: Tokenization, term extraction and intent heuristics.
- scoring: Shared numeric transforms (distance to score, clamping).
- cache: Protocol-scoped response caching (Redis or in-memory).
- errors: Error taxonomy.
- obs: Logging setup and tracing (OpenTelemetry spans, Langfuse traces).
"""
