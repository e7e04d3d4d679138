"""
Pydantic Models/Schemas for Glucose Forecast
Defines history samples, prediction contexts, feature vectors and results.
All glucose values are in mmol/L.
"""
import json
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ModelCompatibilityError


# Glycemic thresholds (mmol/L)
SEVERE_HYPO_THRESHOLD = 3.0
HYPO_THRESHOLD = 3.9
TARGET_RANGE_MIN = 3.9
TARGET_RANGE_MAX = 10.0
HYPER_THRESHOLD = 10.0
SEVERE_HYPER_THRESHOLD = 13.9

PREDICTION_HORIZON_MINUTES = 60
LOOKBACK_HOURS = 6
FUTURE_TOLERANCE = timedelta(minutes=5)


def now_like(reference: datetime) -> datetime:
    """Wall-clock now with the same tz-awareness as ``reference``."""
    if reference.tzinfo is not None:
        return datetime.now(reference.tzinfo)
    return datetime.now()


# ==================== Enums ====================

class GlycemiaCategory(str, Enum):
    SEVERE_HYPO = "severe_hypo"    # < 3.0 mmol/L
    HYPO = "hypo"                  # 3.0-3.9 mmol/L
    TARGET = "target"              # 3.9-10.0 mmol/L
    HYPER = "hyper"                # 10.0-13.9 mmol/L
    SEVERE_HYPER = "severe_hyper"  # > 13.9 mmol/L


class TrendDirection(str, Enum):
    DOUBLE_UP = "DoubleUp"
    SINGLE_UP = "SingleUp"
    FORTY_FIVE_UP = "FortyFiveUp"
    FLAT = "Flat"
    FORTY_FIVE_DOWN = "FortyFiveDown"
    SINGLE_DOWN = "SingleDown"
    DOUBLE_DOWN = "DoubleDown"
    NOT_COMPUTABLE = "NotComputable"
    RATE_OUT_OF_RANGE = "RateOutOfRange"


class InsulinType(str, Enum):
    BOLUS = "bolus"
    BASAL = "basal"
    CORRECTION = "correction"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


def categorize_glucose(value: float) -> GlycemiaCategory:
    """Classify a glucose value into a glycemic band."""
    if value < SEVERE_HYPO_THRESHOLD:
        return GlycemiaCategory.SEVERE_HYPO
    elif value < HYPO_THRESHOLD:
        return GlycemiaCategory.HYPO
    elif value <= TARGET_RANGE_MAX:
        return GlycemiaCategory.TARGET
    elif value <= SEVERE_HYPER_THRESHOLD:
        return GlycemiaCategory.HYPER
    return GlycemiaCategory.SEVERE_HYPER


# ==================== History Samples ====================

class TimedSample(BaseModel):
    """A single timestamped observation, read-only once recorded."""
    timestamp: datetime = Field(..., description="Sample timestamp")

    model_config = ConfigDict(frozen=True, use_enum_values=True)


class GlucoseReading(TimedSample):
    """A glucose reading from CGM or meter."""
    value: float = Field(..., description="Glucose value in mmol/L")
    trend: Optional[TrendDirection] = Field(None, description="Trend direction")


class InsulinDose(TimedSample):
    """An insulin dose."""
    value: float = Field(..., description="Insulin units")
    insulin_type: InsulinType = Field(default=InsulinType.BOLUS)


class CarbEntry(TimedSample):
    """A carbohydrate intake entry."""
    value: float = Field(..., description="Carbohydrates in grams")
    meal_type: Optional[MealType] = Field(None)


class ActivityEvent(TimedSample):
    """An activity tag. Carries a label only, no magnitude."""
    activity_type: str = Field(..., description="Activity label, e.g. Walking")


# ==================== Prediction Context ====================

class PredictionContext(BaseModel):
    """Everything the feature builder needs for one prediction."""
    glucose_history: List[GlucoseReading] = Field(default_factory=list)
    insulin_history: List[InsulinDose] = Field(default_factory=list)
    carb_history: List[CarbEntry] = Field(default_factory=list)
    activity_history: List[ActivityEvent] = Field(default_factory=list)
    prediction_time: datetime

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_history(
        cls,
        glucose: Sequence[GlucoseReading],
        insulin: Sequence[InsulinDose] = (),
        carbs: Sequence[CarbEntry] = (),
        activity: Sequence[ActivityEvent] = (),
        prediction_time: Optional[datetime] = None,
        lookback_hours: int = LOOKBACK_HOURS,
    ) -> "PredictionContext":
        """Build a context from full histories, keeping only the lookback window."""
        now = prediction_time or datetime.now(timezone.utc)
        window_start = now - timedelta(hours=lookback_hours)

        def within(samples):
            return [s for s in samples if s.timestamp > window_start]

        return cls(
            glucose_history=within(glucose),
            insulin_history=within(insulin),
            carb_history=within(carbs),
            activity_history=within(activity),
            prediction_time=now,
        )

    @property
    def history_hours(self) -> float:
        """Hours between the oldest glucose reading and the prediction time."""
        if not self.glucose_history:
            return 0.0
        oldest = min(r.timestamp for r in self.glucose_history)
        return (self.prediction_time - oldest).total_seconds() / 3600.0

    @property
    def has_mixed_timezones(self) -> bool:
        """True when some timestamps are tz-aware and others naive."""
        aware = self.prediction_time.tzinfo is not None
        samples = (
            *self.glucose_history,
            *self.insulin_history,
            *self.carb_history,
            *self.activity_history,
        )
        return any((s.timestamp.tzinfo is not None) != aware for s in samples)

    @property
    def latest_glucose(self) -> Optional[GlucoseReading]:
        if not self.glucose_history:
            return None
        return max(self.glucose_history, key=lambda r: r.timestamp)

    @property
    def is_valid(self) -> bool:
        return (
            bool(self.glucose_history) and
            self.prediction_time <= now_like(self.prediction_time) + FUTURE_TOLERANCE
        )

    def __str__(self) -> str:
        return (
            f"PredictionContext(glucose: {len(self.glucose_history)} readings, "
            f"insulin: {len(self.insulin_history)} records, "
            f"carbs: {len(self.carb_history)} records, "
            f"activity: {len(self.activity_history)} records, "
            f"time: {self.prediction_time.isoformat()})"
        )


# ==================== Feature Vector ====================

class FeatureVector(BaseModel):
    """Named model inputs for one prediction. Immutable once built."""
    features: Dict[str, float] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    prediction_time: datetime
    is_valid: bool
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def invalid(cls, error: str, prediction_time: datetime) -> "FeatureVector":
        """Create an invalid vector carrying the error text."""
        return cls(prediction_time=prediction_time, is_valid=False, error=error)

    @property
    def length(self) -> int:
        return len(self.features)

    def has_all_features(self, required: Sequence[str]) -> bool:
        return all(name in self.features for name in required)

    def to_list(self, feature_names: Sequence[str]) -> List[float]:
        """Values in the given positional order; unknown names become 0.0."""
        if not self.is_valid:
            raise ValueError("Cannot convert invalid feature vector to list")
        return [self.features.get(name, 0.0) for name in feature_names]

    def to_array(self, feature_names: Sequence[str]) -> np.ndarray:
        """Positional float32 array of shape (n_features,)."""
        return np.asarray(self.to_list(feature_names), dtype=np.float32)

    def __str__(self) -> str:
        if not self.is_valid:
            return f"FeatureVector(invalid: {self.error})"
        return f"FeatureVector({self.length} features, created: {self.created_at.isoformat()})"


# ==================== Prediction Result ====================

class PredictionResult(BaseModel):
    """Outcome of one forecast, valid or failed."""
    predicted_value: float = Field(..., description="Predicted glucose in mmol/L")
    confidence_level: float = Field(..., ge=0.0, le=1.0)
    prediction_time: datetime
    target_time: datetime
    used_features: FeatureVector
    is_valid: bool
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def failure(
        cls,
        error: str,
        prediction_time: datetime,
        horizon_minutes: int = PREDICTION_HORIZON_MINUTES,
        used_features: Optional[FeatureVector] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "PredictionResult":
        """Create a failed result that still has a valid shape."""
        return cls(
            predicted_value=0.0,
            confidence_level=0.0,
            prediction_time=prediction_time,
            target_time=prediction_time + timedelta(minutes=horizon_minutes),
            used_features=used_features or FeatureVector.invalid(
                error="Features were not prepared",
                prediction_time=prediction_time,
            ),
            is_valid=False,
            error=error,
            metadata=metadata or {},
        )

    @property
    def prediction_horizon_minutes(self) -> int:
        return int((self.target_time - self.prediction_time).total_seconds() // 60)

    @property
    def is_in_target_range(self) -> bool:
        return TARGET_RANGE_MIN <= self.predicted_value <= TARGET_RANGE_MAX

    @property
    def is_hypoglycemia_risk(self) -> bool:
        return self.predicted_value < HYPO_THRESHOLD

    @property
    def is_hyperglycemia_risk(self) -> bool:
        return self.predicted_value > HYPER_THRESHOLD

    @property
    def category(self) -> GlycemiaCategory:
        return categorize_glucose(self.predicted_value)

    @property
    def risk_level(self) -> float:
        """Risk score from 0 (in range) to 1 (severe hypoglycemia)."""
        if self.predicted_value < SEVERE_HYPO_THRESHOLD:
            return 1.0
        elif self.predicted_value < HYPO_THRESHOLD:
            return 0.8
        elif self.predicted_value > SEVERE_HYPER_THRESHOLD:
            return 0.9
        elif self.predicted_value > HYPER_THRESHOLD:
            return 0.6
        return 0.0

    def __str__(self) -> str:
        if not self.is_valid:
            return f"PredictionResult(error: {self.error})"
        return (
            f"PredictionResult(value: {self.predicted_value:.1f} mmol/L, "
            f"confidence: {self.confidence_level * 100:.1f}%, "
            f"horizon: {self.prediction_horizon_minutes}min, "
            f"category: {self.category.value})"
        )


# ==================== Model Metadata ====================

class ModelMetadata(BaseModel):
    """Declared schema of a loaded forecasting model."""
    model_version: str
    feature_names: List[str] = Field(..., description="Ordered model input names")
    model_params: Dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ModelMetadata":
        """
        Parse the model loader's JSON config.

        Expected keys: model_version, feature_count, input_features, model_params.
        """
        required_keys = ["model_version", "feature_count", "input_features", "model_params"]
        missing = [key for key in required_keys if key not in config]
        if missing:
            raise ModelCompatibilityError(
                "Model config is missing required keys",
                details=", ".join(missing),
            )

        input_features = list(config["input_features"])
        feature_count = int(config["feature_count"])
        if len(input_features) != feature_count:
            raise ModelCompatibilityError(
                f"Feature count mismatch in model config: declared {feature_count}, "
                f"listed {len(input_features)}"
            )

        return cls(
            model_version=str(config["model_version"]),
            feature_names=[str(name) for name in input_features],
            model_params={k: float(v) for k, v in dict(config["model_params"]).items()},
        )


def load_model_metadata(path: Union[str, Path]) -> ModelMetadata:
    """Read model metadata from a JSON config file."""
    with open(path, "r", encoding="utf-8") as f:
        return ModelMetadata.from_config(json.load(f))
