"""Unit tests for the HTTP API."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from skillgraph.config import Settings
from skillgraph.main import create_app
from skillgraph.store.memory import InMemoryArtifactStore
from tests.factories import OTHER_TENANT, TENANT, make_artifact

CRON_SECRET = "s3cret"
HEADERS = {"X-Tenant-ID": TENANT}


@pytest.fixture
def memory_store():
    """In-memory store with a small catalog."""
    store = InMemoryArtifactStore(dimensions=4)
    store.add_artifact(make_artifact("review", name="Code Review", description="Review pull requests"))
    store.add_artifact(make_artifact("deploy", name="Deploy", description="Ship code to production"))
    store.add_artifact(make_artifact("mine", name="Private review", visibility="private", author_id="u-1"))
    return store


@pytest.fixture
def settings():
    """Settings with a cron secret and no database."""
    settings = Settings()
    settings.database.url = None
    settings.embedding.dimensions = 4
    settings.security.cron_secret = CRON_SECRET
    settings.graph_config_path = Path("config/does-not-exist.yaml")
    return settings


@pytest.fixture
def client(settings, memory_store):
    """Test client running the application lifespan."""
    app = create_app(settings=settings, store=memory_store)
    with TestClient(app) as test_client:
        yield test_client


def _embed(client, artifact_id, vector):
    return client.put(
        f"/api/v1/embeddings/{artifact_id}",
        headers=HEADERS,
        json={"vector": vector, "input_hash": "A" * 64},
    )


@pytest.mark.unit
class TestSystemRoutes:
    """Tests for health and metrics."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["store_configured"] is True
        assert "X-Request-ID" in response.headers

    def test_request_id_propagated(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "skillgraph_" in response.text

    def test_metrics_disabled(self, settings, memory_store):
        settings.observability.prometheus_enabled = False
        with TestClient(create_app(settings=settings, store=memory_store)) as client:
            response = client.get("/metrics")

        assert response.status_code == 404


@pytest.mark.unit
class TestEmbeddingRoutes:
    """Tests for PUT /api/v1/embeddings/{artifact_id}."""

    def test_upsert(self, client):
        response = _embed(client, "review", [1.0, 0.0, 0.0, 0.0])

        assert response.status_code == 200
        body = response.json()
        assert body["dimensions"] == 4
        assert body["inputHash"] == "a" * 64

    def test_wrong_dimensions(self, client):
        response = _embed(client, "review", [1.0, 0.0])

        assert response.status_code == 422

    def test_bad_input_hash(self, client):
        response = client.put(
            "/api/v1/embeddings/review",
            headers=HEADERS,
            json={"vector": [1.0, 0.0, 0.0, 0.0], "input_hash": "nothex"},
        )

        assert response.status_code == 422

    def test_other_tenant_artifact(self, client, memory_store):
        memory_store.add_artifact(make_artifact("theirs", OTHER_TENANT))

        response = _embed(client, "theirs", [1.0, 0.0, 0.0, 0.0])

        assert response.status_code == 404

    def test_missing_tenant(self, client):
        response = client.put(
            "/api/v1/embeddings/review",
            json={"vector": [1.0, 0.0, 0.0, 0.0], "input_hash": "a" * 64},
        )

        assert response.status_code == 400


@pytest.mark.unit
class TestSearchRoutes:
    """Tests for search and similar artifacts."""

    def test_search(self, client):
        _embed(client, "review", [1.0, 0.0, 0.0, 0.0])
        _embed(client, "deploy", [0.0, 1.0, 0.0, 0.0])

        response = client.post(
            "/api/v1/search",
            headers=HEADERS,
            json={"query": "review", "query_embedding": [1.0, 0.0, 0.0, 0.0]},
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert results[0]["id"] == "review"
        assert results[0]["ftRank"] == 1
        assert results[0]["smRank"] == 1
        assert "mine" not in [r["id"] for r in results]

    def test_search_as_author(self, client):
        response = client.post(
            "/api/v1/search",
            headers={**HEADERS, "X-Principal-ID": "u-1"},
            json={"query": "review"},
        )

        assert "mine" in [r["id"] for r in response.json()["results"]]

    def test_limit_validated(self, client):
        response = client.post("/api/v1/search", headers=HEADERS, json={"query": "x", "limit": 500})

        assert response.status_code == 422

    def test_similar(self, client):
        _embed(client, "review", [1.0, 0.0, 0.0, 0.0])
        _embed(client, "deploy", [1.0, 1.0, 0.0, 0.0])

        response = client.get("/api/v1/artifacts/review/similar", headers=HEADERS)

        assert response.status_code == 200
        assert [s["id"] for s in response.json()["similar"]] == ["deploy"]


@pytest.mark.unit
class TestCommunityRoutes:
    """Tests for detection, browse and topology."""

    def test_detect_requires_bearer(self, client):
        response = client.post(f"/api/v1/communities/detect?tenant_id={TENANT}")

        assert response.status_code == 401

    def test_detect_wrong_secret(self, client):
        response = client.post(
            f"/api/v1/communities/detect?tenant_id={TENANT}",
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401

    def test_detect_without_secret_configured(self, settings, memory_store):
        settings.security.cron_secret = None
        with TestClient(create_app(settings=settings, store=memory_store)) as client:
            response = client.post(f"/api/v1/communities/detect?tenant_id={TENANT}")

        assert response.status_code == 200
        assert response.json() == {"skipped": True, "reason": "cron secret not configured"}

    def test_detect_skipped_small_catalog(self, client):
        response = client.post(
            f"/api/v1/communities/detect?tenant_id={TENANT}",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )

        assert response.status_code == 200
        assert response.json()["skipped"] == "too few artifacts"
        assert response.json()["communityCount"] == 0

    def test_detect_and_browse(self, client, memory_store):
        vectors = {
            "a1": [1.0, 0.0, 0.0, 0.0],
            "a2": [1.0, 0.1, 0.0, 0.0],
            "a3": [1.0, 0.0, 0.1, 0.0],
            "b1": [0.0, 0.0, 0.0, 1.0],
            "b2": [0.0, 0.1, 0.0, 1.0],
            "b3": [0.0, 0.0, 0.1, 1.0],
        }
        for artifact_id, vector in vectors.items():
            memory_store.add_artifact(make_artifact(artifact_id))
            assert _embed(client, artifact_id, vector).status_code == 200

        detect = client.post(
            f"/api/v1/communities/detect?tenant_id={TENANT}",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )
        assert detect.status_code == 200
        assert detect.json()["communityCount"] == 2

        listing = client.get("/api/v1/communities", headers=HEADERS).json()
        assert listing["count"] == 2

        detail = client.get("/api/v1/communities/0", headers=HEADERS)
        assert detail.status_code == 200
        assert detail.json()["memberCount"] == 3

        topology = client.get("/api/v1/topology", headers=HEADERS).json()
        assert topology["stats"]["communityCount"] == 2
        assert "mine" not in [n["id"] for n in topology["nodes"]]

    def test_unknown_community(self, client):
        response = client.get("/api/v1/communities/7", headers=HEADERS)

        assert response.status_code == 404
