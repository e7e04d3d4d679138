"""
Pytest configuration and fixtures for glucose forecast tests.
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import numpy as np

# Add src to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from glucose_forecast.config import MLSettings
from glucose_forecast.ml.feature_engineering import build_feature_names
from glucose_forecast.models.schemas import (
    ActivityEvent,
    CarbEntry,
    GlucoseReading,
    InsulinDose,
    ModelMetadata,
    PredictionContext,
)


class FakeEngine:
    """Inference engine double returning a fixed value and recording inputs."""

    def __init__(self, value: float = 6.5):
        self.value = value
        self.calls: List[np.ndarray] = []

    async def predict(self, features: np.ndarray) -> float:
        self.calls.append(features)
        return self.value


@pytest.fixture
def settings():
    """Default settings, isolated from any local .env file."""
    return MLSettings(_env_file=None)


@pytest.fixture
def base_time():
    """Fixed prediction instant on a 5-minute boundary."""
    return datetime(2024, 6, 1, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def feature_names():
    return build_feature_names()


@pytest.fixture
def model_metadata(feature_names):
    return ModelMetadata(
        model_version="test-1.0",
        feature_names=feature_names,
        model_params={"hidden_size": 64.0},
    )


@pytest.fixture
def fake_engine():
    return FakeEngine()


def make_glucose_history(
    end: datetime,
    hours: float = 6.0,
    value: float = 6.0,
    step_minutes: int = 5,
    latest_offset_minutes: int = 5,
) -> List[GlucoseReading]:
    """Readings every ``step_minutes``, newest ``latest_offset_minutes`` before ``end``."""
    count = int(hours * 60 / step_minutes)
    return [
        GlucoseReading(
            timestamp=end - timedelta(minutes=latest_offset_minutes + i * step_minutes),
            value=value,
        )
        for i in range(count)
    ]


def make_context(
    prediction_time: datetime,
    glucose: Optional[List[GlucoseReading]] = None,
    insulin: Optional[List[InsulinDose]] = None,
    carbs: Optional[List[CarbEntry]] = None,
    activity: Optional[List[ActivityEvent]] = None,
) -> PredictionContext:
    return PredictionContext(
        glucose_history=make_glucose_history(prediction_time) if glucose is None else glucose,
        insulin_history=insulin or [],
        carb_history=carbs or [],
        activity_history=activity or [],
        prediction_time=prediction_time,
    )


@pytest.fixture
def full_context(base_time):
    """Six hours of steady glucose with a meal bolus and a walk."""
    return make_context(
        base_time,
        insulin=[InsulinDose(timestamp=base_time - timedelta(minutes=30), value=4.0)],
        carbs=[CarbEntry(timestamp=base_time - timedelta(minutes=30), value=40.0)],
        activity=[ActivityEvent(timestamp=base_time - timedelta(minutes=12), activity_type="Walking")],
    )
