from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClient, table_payload
from semantic_retrieval import main
from semantic_retrieval.cache import InMemoryCacheStore
from semantic_retrieval.config import RetrievalProtocol, Settings
from semantic_retrieval.errors import TransportError
from semantic_retrieval.main import app, get_service
from semantic_retrieval.service import SemanticRetrievalService


def _override(service: SemanticRetrievalService) -> TestClient:
    app.dependency_overrides[get_service] = lambda: service
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides() -> Iterator[None]:
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def working_service(test_settings: Settings) -> SemanticRetrievalService:
    rows = [
        ["d1", "Wireless headphones with noise cancelling", 0.2, "product", '{"brand": "Acme"}'],
        ["d2", "Headphone carrying case", 0.6, "accessory", None],
    ]
    return SemanticRetrievalService(
        FakeClient(RetrievalProtocol.STRUCTURED, payload=table_payload(rows)),
        FakeClient(RetrievalProtocol.PROCEDURAL, healthy=False),
        InMemoryCacheStore(),
        test_settings,
    )


def test_health() -> None:
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_retrieve_returns_camel_case_payload(working_service: SemanticRetrievalService) -> None:
    client = _override(working_service)

    response = client.post("/retrieve", json={"query": "wireless headphones", "tenantId": "m1", "limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["totalFound"] == 2
    assert body["cacheHit"] is False
    assert len(body["results"]) == 1
    result = body["results"][0]
    assert result["id"] == "d1"
    assert result["documentType"] == "product"
    assert result["metadata"] == {"brand": "Acme"}
    assert result["groundingValidation"]["method"] == "heuristic_distance"
    assert result["explainability"]["retrievalReason"]
    assert body["explainability"]["retrievalStrategy"]["algorithm"] == "structured_query"
    assert body["explainability"]["apiMetrics"]["protocolUsed"] == "structured_query"


def test_backend_failure_is_not_an_http_error(test_settings: Settings) -> None:
    service = SemanticRetrievalService(
        FakeClient(RetrievalProtocol.STRUCTURED, error=TransportError("down")),
        FakeClient(RetrievalProtocol.PROCEDURAL, error=TransportError("down")),
        InMemoryCacheStore(),
        test_settings,
    )
    client = _override(service)

    response = client.post("/retrieve", json={"query": "q", "tenantId": "m1"})

    assert response.status_code == 200
    strategy = response.json()["explainability"]["retrievalStrategy"]
    assert strategy["algorithm"] == "failed_retrieval"
    assert "structured_query: down" in strategy["parameters"]["error"]


@pytest.mark.parametrize(
    "body",
    [
        {"query": "x" * 1001, "tenantId": "m1"},
        {"query": "   ", "tenantId": "m1"},
        {"query": "q", "tenantId": ""},
        {"query": "q", "tenantId": "m1", "limit": 0},
        {"query": "q", "tenantId": "m1", "relevanceThreshold": 1.5},
    ],
)
def test_invalid_requests_are_rejected(working_service: SemanticRetrievalService, body: dict) -> None:
    client = _override(working_service)
    assert client.post("/retrieve", json=body).status_code == 422


def test_component_health_is_503_when_degraded(working_service: SemanticRetrievalService) -> None:
    client = _override(working_service)

    response = client.get("/health/components")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"
    assert response.json()["components"]["procedural_predict"] == "down"


def test_validate_grounding(working_service: SemanticRetrievalService) -> None:
    client = _override(working_service)

    response = client.post(
        "/validate-grounding",
        json={
            "query": "wireless headphones",
            "documents": [
                {"id": "a", "content": "wireless headphones", "distance": 0.1},
                {"id": "b", "content": "garden hose", "distance": 9.0},
            ],
            "relevanceThreshold": 0.5,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["passedCount"] == 1
    assert body["totalDocuments"] == 2
    assert body["results"][0]["documentId"] == "a"
    assert body["results"][0]["queryTermMatches"] == ["wireless", "headphones"]


def test_concurrent_first_requests_build_one_service(monkeypatch: pytest.MonkeyPatch) -> None:
    built: list[object] = []
    guard = threading.Lock()

    def slow_http_client(settings: Settings) -> object:
        time.sleep(0.05)
        http = object()
        with guard:
            built.append(http)
        return http

    monkeypatch.setattr(main, "_service", None)
    monkeypatch.setattr(main, "_http", None)
    monkeypatch.setattr(main, "build_http_client", slow_http_client)
    monkeypatch.setattr(main, "build_cache_store", lambda settings: InMemoryCacheStore())

    with ThreadPoolExecutor(max_workers=8) as pool:
        services = list(pool.map(lambda _: get_service(), range(8)))

    assert len(built) == 1
    assert all(s is services[0] for s in services)
    assert main._http is built[0]
