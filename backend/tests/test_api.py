"""
Tests for the HTTP surface.
"""
import json
import pytest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from glucose_forecast.api.v1.predictions import MAX_HISTORY_SAMPLES
from glucose_forecast.config import MLSettings
from glucose_forecast.exceptions import ModelCompatibilityError
from glucose_forecast.main import create_app
from glucose_forecast.models.schemas import ModelMetadata

from conftest import FakeEngine


def request_body(base_time, hours=6, value=6.0):
    return {
        "glucose_history": [
            {
                "timestamp": (base_time - timedelta(minutes=5 + 5 * i)).isoformat(),
                "value": value,
                "trend": "Flat",
            }
            for i in range(hours * 12)
        ],
        "insulin_history": [
            {"timestamp": (base_time - timedelta(minutes=30)).isoformat(), "value": 2.0}
        ],
        "carb_history": [],
        "activity_history": [
            {"timestamp": (base_time - timedelta(minutes=12)).isoformat(), "activity_type": "Walking"}
        ],
        "prediction_time": base_time.isoformat(),
    }


@pytest.fixture
def client(model_metadata, settings):
    app = create_app(model_metadata, FakeEngine(6.5), settings)
    with TestClient(app) as client:
        yield client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"ready": True, "model_version": "test-1.0"}

    def test_not_ready_before_startup(self, model_metadata, settings):
        app = create_app(model_metadata, FakeEngine(), settings)
        client = TestClient(app)  # lifespan does not run outside the context manager

        assert client.get("/ready").status_code == 503
        assert client.post("/api/v1/predictions", json={}).status_code == 503

    def test_incompatible_model_fails_startup(self, feature_names, settings):
        metadata = ModelMetadata(model_version="bad", feature_names=feature_names[:100])
        app = create_app(metadata, FakeEngine(), settings)

        with pytest.raises(ModelCompatibilityError):
            with TestClient(app):
                pass


class TestPredictionEndpoints:
    """Test prediction routes."""

    def test_predict(self, client, base_time):
        response = client.post("/api/v1/predictions", json=request_body(base_time))

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["predicted_value"] == 6.5
        assert data["category"] == "target"
        assert data["risk_level"] == 0.0
        assert data["feature_count"] == 296
        assert data["metadata"]["cache_used"] is False

    def test_repeat_request_served_from_cache(self, client, base_time):
        client.post("/api/v1/predictions", json=request_body(base_time))
        response = client.post("/api/v1/predictions", json=request_body(base_time))

        assert response.json()["metadata"]["cache_used"] is True

    def test_empty_history_is_structured_failure(self, client, base_time):
        body = request_body(base_time)
        body["glucose_history"] = []

        response = client.post("/api/v1/predictions", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert "Missing glucose history" in data["error"]
        assert data["category"] is None

    def test_naive_timestamps_read_as_utc(self, client):
        """Naive timestamps with a defaulted prediction time still predict."""
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        body = request_body(now)
        del body["prediction_time"]

        response = client.post("/api/v1/predictions", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True

    def test_history_trimmed_to_lookback(self, client, base_time):
        response = client.post("/api/v1/predictions", json=request_body(base_time, hours=24))

        data = response.json()
        assert data["is_valid"] is True
        assert data["metadata"]["history_hours"] <= 6.0

    def test_oversized_history_rejected(self, client, base_time):
        body = request_body(base_time)
        reading = body["glucose_history"][0]
        body["glucose_history"] = [reading] * (MAX_HISTORY_SAMPLES + 1)

        response = client.post("/api/v1/predictions", json=body)

        assert response.status_code == 422

    def test_malformed_request(self, client):
        response = client.post("/api/v1/predictions", json={"glucose_history": [{"value": "high"}]})
        assert response.status_code == 422

    def test_batch(self, client, base_time):
        empty = request_body(base_time)
        empty["glucose_history"] = []
        body = {"requests": [request_body(base_time), empty, request_body(base_time - timedelta(minutes=10))]}

        response = client.post("/api/v1/predictions/batch", json=body)

        assert response.status_code == 200
        assert [r["is_valid"] for r in response.json()] == [True, False, True]

    def test_empty_batch_rejected(self, client):
        response = client.post("/api/v1/predictions/batch", json={"requests": []})
        assert response.status_code == 422

    def test_stats(self, client, base_time):
        client.post("/api/v1/predictions", json=request_body(base_time))

        response = client.get("/api/v1/predictions/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert data["caches"]["predictions"]["size"] == 1


class TestStartupConfiguration:
    """Test metadata resolution when no model is passed in."""

    def test_metadata_from_config_file(self, tmp_path, feature_names):
        path = tmp_path / "model_config.json"
        path.write_text(json.dumps({
            "model_version": "3.0.0",
            "feature_count": len(feature_names),
            "input_features": feature_names,
            "model_params": {},
        }))
        settings = MLSettings(_env_file=None, model_config_path=str(path))

        with TestClient(create_app(settings=settings)) as client:
            assert client.get("/ready").json()["model_version"] == "3.0.0"

    def test_linear_trend_fallback(self, settings, base_time):
        with TestClient(create_app(settings=settings)) as client:
            response = client.post("/api/v1/predictions", json=request_body(base_time))

        data = response.json()
        assert data["is_valid"] is True
        assert data["metadata"]["model_version"] == "linear-trend"
        assert data["predicted_value"] == pytest.approx(6.0 - 1.7 * 0.5)
