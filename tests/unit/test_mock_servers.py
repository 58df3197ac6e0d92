"""Unit tests for the mock Aha! API."""

import pytest
from fastapi.testclient import TestClient

from aha_smt.mock_servers import create_app, create_mock_app


class TestMockServer:

    @pytest.fixture
    def app(self):
        return create_mock_app(
            name="test-server",
            releases=2,
            features_per_release=25,
            random_seed=42,
            error_rate=0.0,  # No errors for basic tests
        )

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "server": "test-server"}

    def test_current_user(self, client):
        response = client.get("/api/v1/me")
        assert response.status_code == 200
        assert response.json()["user"]["id"] == "u-1"

    def test_release_features_first_page(self, client):
        response = client.get("/api/v1/releases/rel-1/features?page=1&per_page=10")
        assert response.status_code == 200

        data = response.json()
        assert len(data["features"]) == 10
        assert data["pagination"] == {
            "total_records": 25,
            "total_pages": 3,
            "current_page": 1,
            "per_page": 10,
        }

    def test_release_features_last_page(self, client):
        data = client.get("/api/v1/releases/rel-1/features?page=3&per_page=10").json()

        assert len(data["features"]) == 5
        assert all(f["release"]["id"] == "rel-1" for f in data["features"])

    def test_invalid_page_number(self, client):
        response = client.get("/api/v1/releases/rel-1/features?page=0")
        assert response.status_code == 400

    def test_unknown_release(self, client):
        assert client.get("/api/v1/releases/rel-99").status_code == 404
        assert client.get("/api/v1/releases/rel-99/features").status_code == 404

    def test_update_feature_score(self, client):
        response = client.put("/api/v1/features/rel-1-f1", json={"feature": {"score": 21, "name": "ignored"}})
        assert response.status_code == 200
        assert response.json()["feature"]["score"] == 21

        feature = client.get("/api/v1/features/rel-1-f1").json()["feature"]
        assert feature["score"] == 21
        assert feature["name"] == "Feature 1"

    def test_vote_lifecycle(self, client):
        created = client.post("/api/v1/features/rel-1-f2/votes", json={"vote": {"user_id": "u-1"}})
        assert created.status_code == 200
        vote_id = created.json()["vote"]["id"]

        votes = client.get("/api/v1/features/rel-1-f2/votes").json()["votes"]
        assert [v["id"] for v in votes] == [vote_id]

        assert client.delete(f"/api/v1/features/rel-1-f2/votes/{vote_id}").status_code == 204
        assert client.get("/api/v1/features/rel-1-f2/votes").json()["votes"] == []

    def test_vote_ids_stay_unique_after_delete(self, client):
        first = client.post("/api/v1/features/rel-1-f4/votes", json={"vote": {"user_id": "u-1"}}).json()["vote"]
        second = client.post("/api/v1/features/rel-1-f4/votes", json={"vote": {"user_id": "u-2"}}).json()["vote"]
        client.delete(f"/api/v1/features/rel-1-f4/votes/{first['id']}")

        third = client.post("/api/v1/features/rel-1-f4/votes", json={"vote": {"user_id": "u-3"}}).json()["vote"]

        assert third["id"] not in {first["id"], second["id"]}
        votes = client.get("/api/v1/features/rel-1-f4/votes").json()["votes"]
        assert [v["id"] for v in votes] == [second["id"], third["id"]]

    def test_request_count_tracks_api_calls(self, app, client):
        client.get("/api/v1/me")
        client.get("/api/v1/me")
        client.get("/health")

        assert app.state.request_count == 2

    def test_deterministic_with_seed(self):
        """Same seed should produce the same feature scores."""
        first = create_mock_app(random_seed=123)
        second = create_mock_app(random_seed=123)

        scores_a = [f["score"] for f in first.state.features.values()]
        scores_b = [f["score"] for f in second.state.features.values()]
        assert scores_a == scores_b


class TestErrorInjection:

    def test_always_failing_server(self):
        client = TestClient(create_mock_app(random_seed=1, error_rate=1.0, rate_limit_status=429))

        response = client.get("/api/v1/me")
        assert response.status_code == 429
        # Health stays up regardless of error injection
        assert client.get("/health").status_code == 200

    def test_create_app_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ERROR_RATE", "1.0")
        client = TestClient(create_app())

        assert client.get("/api/v1/me").status_code == 503
