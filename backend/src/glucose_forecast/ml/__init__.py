# Forecasting ML core: feature building, validation and schema checks

from .activity_codec import ActivityCodec, ACTIVITY_CODES, UNKNOWN_ACTIVITY
from .feature_engineering import (
    FeatureBuilder,
    build_feature_names,
    CRITICAL_FEATURES,
    SCALAR_FEATURES,
)
from .feature_validator import FeatureValidator, ValidationResult
from .compatibility import ModelCompatibilityChecker, CompatibilityReport
from .inference import InferenceEngine, LinearTrendEngine

__all__ = [
    # Activity
    "ActivityCodec",
    "ACTIVITY_CODES",
    "UNKNOWN_ACTIVITY",
    # Feature Engineering
    "FeatureBuilder",
    "build_feature_names",
    "CRITICAL_FEATURES",
    "SCALAR_FEATURES",
    # Validation
    "FeatureValidator",
    "ValidationResult",
    "ModelCompatibilityChecker",
    "CompatibilityReport",
    # Inference
    "InferenceEngine",
    "LinearTrendEngine",
]
