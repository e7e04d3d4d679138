"""
Tests for data model behavior: classification, conversion and metadata parsing.
"""
import json
import pytest
from datetime import datetime, timedelta, timezone

import numpy as np
from pydantic import ValidationError as PydanticValidationError

from glucose_forecast.exceptions import ModelCompatibilityError
from glucose_forecast.models.schemas import (
    FeatureVector,
    GlucoseReading,
    GlycemiaCategory,
    InsulinDose,
    InsulinType,
    ModelMetadata,
    PredictionContext,
    PredictionResult,
    categorize_glucose,
    load_model_metadata,
)

from conftest import make_context


def result_with(value: float, base_time: datetime) -> PredictionResult:
    return PredictionResult(
        predicted_value=value,
        confidence_level=0.9,
        prediction_time=base_time,
        target_time=base_time + timedelta(minutes=60),
        used_features=FeatureVector(features={}, prediction_time=base_time, is_valid=True),
        is_valid=True,
    )


class TestGlycemiaClassification:
    """Test glycemic bands and risk scores."""

    @pytest.mark.parametrize("value,category", [
        (2.5, GlycemiaCategory.SEVERE_HYPO),
        (3.0, GlycemiaCategory.HYPO),
        (3.9, GlycemiaCategory.TARGET),
        (10.0, GlycemiaCategory.TARGET),
        (12.0, GlycemiaCategory.HYPER),
        (13.9, GlycemiaCategory.HYPER),
        (14.0, GlycemiaCategory.SEVERE_HYPER),
    ])
    def test_categorize(self, value, category):
        assert categorize_glucose(value) == category

    @pytest.mark.parametrize("value,risk", [
        (2.5, 1.0), (3.5, 0.8), (6.0, 0.0), (12.0, 0.6), (15.0, 0.9),
    ])
    def test_risk_level(self, base_time, value, risk):
        assert result_with(value, base_time).risk_level == risk

    def test_risk_flags(self, base_time):
        assert result_with(3.5, base_time).is_hypoglycemia_risk
        assert result_with(11.0, base_time).is_hyperglycemia_risk
        assert result_with(6.0, base_time).is_in_target_range

    def test_confidence_bounds(self, base_time):
        with pytest.raises(PydanticValidationError):
            PredictionResult(
                predicted_value=6.0,
                confidence_level=1.5,
                prediction_time=base_time,
                target_time=base_time,
                used_features=FeatureVector.invalid("x", base_time),
                is_valid=True,
            )


class TestPredictionResult:
    def test_failure_shape(self, base_time):
        result = PredictionResult.failure("boom", base_time, metadata={"error_type": "X"})

        assert not result.is_valid
        assert result.error == "boom"
        assert result.target_time == base_time + timedelta(minutes=60)
        assert not result.used_features.is_valid
        assert "error: boom" in str(result)

    def test_str(self, base_time):
        assert "6.2 mmol/L" in str(result_with(6.2, base_time))


class TestFeatureVector:
    """Test positional conversion."""

    def test_to_list_fills_missing(self, base_time):
        vector = FeatureVector(features={"a": 1.0, "b": 2.0}, prediction_time=base_time, is_valid=True)
        assert vector.to_list(["b", "c", "a"]) == [2.0, 0.0, 1.0]

    def test_to_array(self, base_time):
        vector = FeatureVector(features={"a": 1.0}, prediction_time=base_time, is_valid=True)
        array = vector.to_array(["a", "b"])
        assert array.dtype == np.float32
        assert array.tolist() == [1.0, 0.0]

    def test_invalid_vector_cannot_convert(self, base_time):
        with pytest.raises(ValueError):
            FeatureVector.invalid("bad", base_time).to_list(["a"])

    def test_has_all_features(self, base_time):
        vector = FeatureVector(features={"a": 1.0}, prediction_time=base_time, is_valid=True)
        assert vector.has_all_features(["a"])
        assert not vector.has_all_features(["a", "b"])

    def test_frozen(self, base_time):
        vector = FeatureVector(features={"a": 1.0}, prediction_time=base_time, is_valid=True)
        with pytest.raises(PydanticValidationError):
            vector.is_valid = False


class TestPredictionContext:
    """Test context construction and derived properties."""

    def test_history_hours(self, full_context):
        assert full_context.history_hours == pytest.approx(6.0)

    def test_empty_history(self, base_time):
        context = make_context(base_time, glucose=[])
        assert context.history_hours == 0.0
        assert context.latest_glucose is None
        assert not context.is_valid

    def test_latest_glucose(self, base_time):
        readings = [
            GlucoseReading(timestamp=base_time - timedelta(minutes=10), value=5.0),
            GlucoseReading(timestamp=base_time - timedelta(minutes=2), value=6.0),
            GlucoseReading(timestamp=base_time - timedelta(minutes=7), value=7.0),
        ]
        assert make_context(base_time, glucose=readings).latest_glucose.value == 6.0

    def test_from_history_applies_window(self, base_time):
        glucose = [
            GlucoseReading(timestamp=base_time - timedelta(hours=7), value=5.0),
            GlucoseReading(timestamp=base_time - timedelta(hours=1), value=6.0),
        ]
        insulin = [InsulinDose(timestamp=base_time - timedelta(hours=8), value=2.0)]

        context = PredictionContext.from_history(glucose, insulin=insulin, prediction_time=base_time)

        assert [r.value for r in context.glucose_history] == [6.0]
        assert context.insulin_history == []
        assert context.prediction_time == base_time

    def test_mixed_timezones(self, base_time):
        naive = InsulinDose(timestamp=base_time.replace(tzinfo=None), value=1.0)
        assert not make_context(base_time).has_mixed_timezones
        assert make_context(base_time, insulin=[naive]).has_mixed_timezones

    def test_far_future_is_invalid(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert not make_context(future).is_valid

    def test_insulin_type_default(self, base_time):
        dose = InsulinDose(timestamp=base_time, value=1.0)
        assert dose.insulin_type == InsulinType.BOLUS.value


class TestModelMetadata:
    """Test parsing the model loader config."""

    def config(self, names):
        return {
            "model_version": "2.1.0",
            "feature_count": len(names),
            "input_features": names,
            "model_params": {"hidden_size": 64, "dropout": 0.2},
        }

    def test_from_config(self, feature_names):
        metadata = ModelMetadata.from_config(self.config(feature_names))

        assert metadata.model_version == "2.1.0"
        assert metadata.feature_names == feature_names
        assert metadata.model_params["hidden_size"] == 64.0

    def test_missing_keys(self):
        with pytest.raises(ModelCompatibilityError, match="missing required keys"):
            ModelMetadata.from_config({"model_version": "1"})

    def test_declared_count_mismatch(self, feature_names):
        config = self.config(feature_names)
        config["feature_count"] = 289

        with pytest.raises(ModelCompatibilityError, match="declared 289"):
            ModelMetadata.from_config(config)

    def test_load_from_file(self, tmp_path, feature_names):
        path = tmp_path / "model_config.json"
        path.write_text(json.dumps(self.config(feature_names)))

        metadata = load_model_metadata(path)

        assert len(metadata.feature_names) == 296
