# Glucose Forecast Services Package
# Note: Import specific items as needed to avoid circular imports

__all__ = [
    # Caching
    "MLCacheService",
    "TTLCache",
    # Performance
    "PerformanceMonitor",
    # Predictions
    "PredictionOrchestrator",
    "PredictionState",
    "create_prediction_orchestrator",
    "GlucosePredictionService",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name in ("MLCacheService", "TTLCache"):
        from . import cache_service
        return getattr(cache_service, name)
    elif name == "PerformanceMonitor":
        from .performance_monitor import PerformanceMonitor
        return PerformanceMonitor
    elif name in ("PredictionOrchestrator", "PredictionState", "create_prediction_orchestrator"):
        from . import prediction_service
        return getattr(prediction_service, name)
    elif name == "GlucosePredictionService":
        from .glucose_prediction_service import GlucosePredictionService
        return GlucosePredictionService
    raise AttributeError(f"module 'glucose_forecast.services' has no attribute '{name}'")
