"""
Input and output validation for the forecasting pipeline.

Errors make a result unusable; warnings are recorded but do not block.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from ..config import MLSettings, get_settings
from ..models.schemas import FeatureVector, PredictionContext, now_like
from .feature_engineering import CRITICAL_FEATURES, build_feature_names

logger = logging.getLogger(__name__)

MIXED_TIMEZONES_ERROR = "Mixed timezone-aware and naive timestamps"


@dataclass
class ValidationResult:
    """Outcome of one validation check."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def total_issues(self) -> int:
        return len(self.errors) + len(self.warnings)

    def __str__(self) -> str:
        if self.is_valid and not self.has_warnings:
            return "ValidationResult(valid)"
        status = "valid" if self.is_valid else "invalid"
        return f"ValidationResult({status}, {len(self.errors)} errors, {len(self.warnings)} warnings)"


class FeatureValidator:
    """Checks prediction contexts, feature vectors and model outputs."""

    def __init__(
        self,
        settings: Optional[MLSettings] = None,
        expected_feature_count: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        if expected_feature_count is None:
            expected_feature_count = len(build_feature_names(
                self.settings.required_history_hours,
                self.settings.sampling_minutes,
            ))
        self.expected_feature_count = expected_feature_count

    def validate_context(self, context: PredictionContext) -> ValidationResult:
        result = ValidationResult()
        s = self.settings

        if not context.glucose_history:
            result.errors.append("Missing glucose history: glucose history is empty")
        else:
            invalid_glucose = sum(
                1 for r in context.glucose_history
                if not math.isfinite(r.value) or not s.min_glucose_value <= r.value <= s.max_glucose_value
            )
            if invalid_glucose:
                result.warnings.append(f"Found {invalid_glucose} invalid glucose values")

        invalid_insulin = sum(
            1 for d in context.insulin_history
            if not math.isfinite(d.value) or not 0 <= d.value <= s.max_insulin_value
        )
        if invalid_insulin:
            result.warnings.append(f"Found {invalid_insulin} invalid insulin values")

        invalid_carbs = sum(
            1 for c in context.carb_history
            if not math.isfinite(c.value) or not 0 <= c.value <= s.max_carb_value
        )
        if invalid_carbs:
            result.warnings.append(f"Found {invalid_carbs} invalid carb values")

        if context.has_mixed_timezones:
            # Naive and aware datetimes cannot be compared
            result.errors.append(MIXED_TIMEZONES_ERROR)
        elif context.glucose_history and context.history_hours < s.required_history_hours:
            result.warnings.append(
                f"Insufficient history: {context.history_hours:.1f}h "
                f"(required: {s.required_history_hours}h)"
            )

        tolerance = timedelta(minutes=s.max_future_tolerance_minutes)
        if context.prediction_time > now_like(context.prediction_time) + tolerance:
            result.errors.append("Prediction time is too far in the future")

        if not result.is_valid:
            logger.warning(f"Context validation failed: {'; '.join(result.errors)}")
        return result

    def validate_feature_vector(self, vector: FeatureVector) -> ValidationResult:
        result = ValidationResult()

        if not vector.is_valid:
            result.errors.append(f"Feature vector is invalid: {vector.error}")
            return result

        if vector.length != self.expected_feature_count:
            result.warnings.append(
                f"Unexpected feature count: {vector.length} "
                f"(expected: {self.expected_feature_count})"
            )

        non_finite = [name for name, value in vector.features.items() if not math.isfinite(value)]
        if non_finite:
            result.errors.append(f"Found non-finite values in features: {', '.join(non_finite)}")

        missing_critical = [name for name in CRITICAL_FEATURES if name not in vector.features]
        if missing_critical:
            result.errors.append(f"Missing critical features: {', '.join(missing_critical)}")

        return result

    def validate_prediction_result(self, prediction: float) -> ValidationResult:
        result = ValidationResult()
        s = self.settings

        if not math.isfinite(prediction):
            result.errors.append("Prediction is not a finite number")
            return result

        if not s.min_plausible_prediction <= prediction <= s.max_plausible_prediction:
            result.errors.append(f"Prediction out of plausible range: {prediction:.2f}")
        elif prediction < s.critical_low_prediction:
            result.warnings.append(f"Very low prediction: {prediction:.2f}")
        elif prediction > s.critical_high_prediction:
            result.warnings.append(f"Very high prediction: {prediction:.2f}")

        return result
