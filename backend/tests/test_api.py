"""Endpoint tests for the FastAPI application, using TestClient over fakes."""

import pytest
from fastapi.testclient import TestClient

from clearclause.api.app import create_app
from clearclause.errors import FallbackFailure

from conftest import CONTRACT, FakeFallbackClient, FakeModelBackend, build_router


@pytest.fixture
def router():
    return build_router()


@pytest.fixture
def client(router):
    with TestClient(create_app(router=router)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Health and analysis
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["model"]["loaded"] is False

    def test_analyze_on_local_model(self, client):
        assert client.post("/v1/model/load").status_code == 200

        response = client.post("/v1/analyze", json={"text": CONTRACT})

        assert response.status_code == 200
        body = response.json()
        assert body["metadata"]["processingMethod"] == "ai_model"
        assert body["summary"]["totalClauses"] == len(body["clauses"])
        assert "startPosition" in body["clauses"][0]

    def test_analyze_falls_back_when_unloaded(self, client):
        response = client.post(
            "/v1/analyze", json={"text": CONTRACT, "options": {"enableRecommendations": False}}
        )
        assert response.status_code == 200
        assert response.json()["metadata"]["processingMethod"] == "api_fallback"

    def test_empty_text_rejected(self, client):
        response = client.post("/v1/analyze", json={"text": "  "})
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInput"

    def test_missing_text_is_validation_error(self, client):
        assert client.post("/v1/analyze", json={}).status_code == 422

    def test_fallback_failure_is_503(self):
        error = FallbackFailure("Fallback API returned 502 (BAD_GATEWAY)", code="BAD_GATEWAY", status_code=502)
        router = build_router(fallback=FakeFallbackClient(error=error))
        with TestClient(create_app(router=router)) as client:
            response = client.post("/v1/analyze", json={"text": CONTRACT})

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "FallbackFailure"
        assert body["message"].startswith("API fallback failed:")
        assert "timestamp" in body

    def test_unexpected_error_is_500(self, router, monkeypatch):
        async def explode(text, options=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(router, "analyze", explode)
        with TestClient(create_app(router=router), raise_server_exceptions=False) as client:
            response = client.post("/v1/analyze", json={"text": CONTRACT})

        assert response.status_code == 500
        assert response.json() == {
            "error": "InternalServerError",
            "message": "Internal server error",
            "timestamp": response.json()["timestamp"],
        }


# ---------------------------------------------------------------------------
# Model lifecycle
# ---------------------------------------------------------------------------


class TestModelEndpoints:
    def test_load_status_optimize_unload(self, client):
        loaded = client.post("/v1/model/load").json()
        assert loaded["loaded"] is True
        assert loaded["model_name"] == "fake-1b"
        assert loaded["memory_utilization"] > 0

        status = client.get("/v1/model/status").json()
        assert status["state"]["loaded"] is True
        assert status["performance"]["total_requests"] == 0

        optimized = client.post("/v1/model/optimize").json()
        assert optimized["freed_mb"] >= 0
        assert optimized["state"]["memory_usage_mb"] <= loaded["memory_usage_mb"]

        unloaded = client.post("/v1/model/unload").json()
        assert unloaded["loaded"] is False
        assert unloaded["memory_usage_mb"] == 0.0

    def test_unload_is_idempotent(self, client):
        assert client.post("/v1/model/unload").status_code == 200
        assert client.post("/v1/model/unload").status_code == 200

    def test_failed_load_is_409(self):
        router = build_router(backend=FakeModelBackend(load_error=OSError("weights missing")))
        with TestClient(create_app(router=router)) as client:
            response = client.post("/v1/model/load")

        assert response.status_code == 409
        assert response.json()["error"] == "ModelNotLoaded"


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestStats:
    def test_stats_and_decisions(self, client):
        client.post("/v1/analyze", json={"text": CONTRACT})
        client.post("/v1/analyze", json={"text": CONTRACT})

        stats = client.get("/v1/stats").json()
        assert stats["router"]["total_requests"] == 2
        assert stats["router"]["api_requests"] == 2
        assert stats["router"]["total_success_rate"] == 1.0
        assert stats["metrics"]["fallback_reasons"] == {"model_unavailable": 2}
        assert stats["queue"]["max_concurrent"] == 2

        decisions = client.get("/v1/decisions", params={"limit": 1}).json()
        assert len(decisions) == 1
        assert decisions[0]["outcome"] == "fallback_unavailable"

    def test_decisions_limit_validated(self, client):
        assert client.get("/v1/decisions", params={"limit": 0}).status_code == 422

    def test_shutdown_closes_fallback_client(self):
        fallback = FakeFallbackClient()
        with TestClient(create_app(router=build_router(fallback=fallback))):
            pass
        assert fallback.closed is True
