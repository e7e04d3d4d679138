"""
Tests for building contexts from history sources and running predictions.
"""
import logging
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from glucose_forecast.models.schemas import ActivityEvent, CarbEntry, InsulinDose
from glucose_forecast.services.glucose_prediction_service import GlucosePredictionService
from glucose_forecast.services.prediction_service import create_prediction_orchestrator

from conftest import FakeEngine, make_glucose_history


def source_returning(samples):
    source = AsyncMock()
    source.get_samples_in_range = AsyncMock(return_value=samples)
    return source


@pytest.fixture
def sources(base_time):
    return {
        "glucose_source": source_returning(make_glucose_history(base_time)),
        "insulin_source": source_returning([InsulinDose(timestamp=base_time - timedelta(hours=1), value=3.0)]),
        "carb_source": source_returning([CarbEntry(timestamp=base_time - timedelta(hours=1), value=30.0)]),
        "activity_source": source_returning([ActivityEvent(timestamp=base_time - timedelta(minutes=20), activity_type="Sitting")]),
    }


def make_service(model_metadata, settings, sources, engine=None):
    orchestrator = create_prediction_orchestrator(model_metadata, engine or FakeEngine(), settings)
    return GlucosePredictionService(orchestrator, **sources)


class TestGlucosePredictionService:
    """Test history loading and prediction flow."""

    async def test_build_context_queries_lookback_window(self, model_metadata, settings, sources, base_time):
        service = make_service(model_metadata, settings, sources)

        context = await service.build_prediction_context("user-1", base_time)

        for source in sources.values():
            source.get_samples_in_range.assert_awaited_once_with(
                "user-1", base_time - timedelta(hours=6), base_time
            )
        assert len(context.glucose_history) == 72
        assert len(context.insulin_history) == 1
        assert context.prediction_time == base_time

    async def test_create_prediction(self, model_metadata, settings, sources, base_time):
        service = make_service(model_metadata, settings, sources)

        result = await service.create_prediction("user-1", base_time)

        assert result.is_valid
        assert result.predicted_value == 6.5
        assert result.used_features.features["estimated_active_insulin"] == pytest.approx(2.55)

    async def test_source_failure_propagates(self, model_metadata, settings, sources, base_time):
        sources["glucose_source"].get_samples_in_range.side_effect = ConnectionError("store offline")
        service = make_service(model_metadata, settings, sources)

        with pytest.raises(ConnectionError):
            await service.create_prediction("user-1", base_time)

    async def test_multiple_predictions(self, model_metadata, settings, sources, base_time):
        service = make_service(model_metadata, settings, sources)
        times = [base_time - timedelta(minutes=15 * i) for i in range(3)]

        results = await service.create_multiple_predictions("user-1", times)

        assert len(results) == 3
        assert [r.prediction_time for r in results] == times

    async def test_hypoglycemia_risk_logged(self, model_metadata, settings, sources, base_time, caplog):
        service = make_service(model_metadata, settings, sources, engine=FakeEngine(3.2))

        with caplog.at_level(logging.WARNING):
            result = await service.create_prediction("user-1", base_time)

        assert result.is_hypoglycemia_risk
        assert "Hypoglycemia risk for user user-1" in caplog.text

    async def test_hyperglycemia_risk_logged(self, model_metadata, settings, sources, base_time, caplog):
        service = make_service(model_metadata, settings, sources, engine=FakeEngine(12.5))

        with caplog.at_level(logging.WARNING):
            await service.create_prediction("user-1", base_time)

        assert "Hyperglycemia risk for user user-1" in caplog.text
