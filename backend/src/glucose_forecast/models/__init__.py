# Glucose Forecast Models Package
from .schemas import (
    GlycemiaCategory,
    TrendDirection,
    InsulinType,
    MealType,
    GlucoseReading,
    InsulinDose,
    CarbEntry,
    ActivityEvent,
    PredictionContext,
    FeatureVector,
    PredictionResult,
    ModelMetadata,
    categorize_glucose,
    load_model_metadata,
)

__all__ = [
    "GlycemiaCategory",
    "TrendDirection",
    "InsulinType",
    "MealType",
    "GlucoseReading",
    "InsulinDose",
    "CarbEntry",
    "ActivityEvent",
    "PredictionContext",
    "FeatureVector",
    "PredictionResult",
    "ModelMetadata",
    "categorize_glucose",
    "load_model_metadata",
]
