"""
Prediction Service
Orchestrates caching, validation, feature building, inference and
confidence scoring for one glucose forecast at a time.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..config import MLSettings, get_settings
from ..exceptions import (
    FeatureBuildError,
    InferenceError,
    MLError,
    ServiceUnavailableError,
    ValidationError,
)
from ..ml.compatibility import ModelCompatibilityChecker
from ..ml.feature_engineering import FeatureBuilder
from ..ml.feature_validator import MIXED_TIMEZONES_ERROR, FeatureValidator
from ..ml.inference.base import InferenceEngine
from ..models.schemas import FeatureVector, ModelMetadata, PredictionContext, PredictionResult
from .cache_service import MLCacheService
from .performance_monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


class PredictionState(str, Enum):
    NOT_READY = "not_ready"
    VALIDATING = "validating"
    CACHE_HIT = "cache_hit"
    BUILDING_FEATURES = "building_features"
    INFERRING = "inferring"
    VALIDATING_OUTPUT = "validating_output"
    SCORING_CONFIDENCE = "scoring_confidence"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _PredictionTrace:
    """Progress of a single predict() call."""
    state: PredictionState = PredictionState.NOT_READY
    features: Optional[FeatureVector] = None

    def advance(self, state: PredictionState) -> None:
        logger.debug(f"Prediction state: {self.state.value} -> {state.value}")
        self.state = state


def generate_cache_key(context: PredictionContext, bucket_minutes: int = 5) -> str:
    """
    Fingerprint of a context's recent state.

    Contexts in the same time bucket with the same sample counts and the
    same newest glucose reading share a key.
    """
    bucket_ms = bucket_minutes * 60 * 1000
    time_bucket = int(context.prediction_time.timestamp() * 1000) // bucket_ms

    latest = context.latest_glucose
    if latest is None:
        latest_part = "none"
    else:
        latest_ms = int(latest.timestamp.timestamp() * 1000)
        value_part = round(latest.value * 100) if math.isfinite(latest.value) else "nan"
        latest_part = f"{latest_ms}_{value_part}"

    return (
        f"{time_bucket}_{len(context.glucose_history)}_{len(context.insulin_history)}_"
        f"{len(context.carb_history)}_{len(context.activity_history)}_{latest_part}"
    )


def calculate_confidence(
    context: PredictionContext,
    features: FeatureVector,
    prediction: float,
) -> float:
    """Confidence from history length, data recency and plausibility."""
    confidence = 0.7

    history_hours = context.history_hours
    if history_hours >= 6:
        confidence += 0.2
    elif history_hours >= 3:
        confidence += 0.1

    latest = context.latest_glucose
    if latest is not None:
        # Exact elapsed minutes; a reading 5.5 minutes old is not "within 5"
        age_minutes = (context.prediction_time - latest.timestamp).total_seconds() / 60.0
        if age_minutes <= 5:
            confidence += 0.1
        elif age_minutes <= 10:
            confidence += 0.05

    if prediction < 3.0 or prediction > 15.0:
        confidence *= 0.8

    if abs(features.features.get("glucose_rate", 0.0)) > 0.3:
        confidence *= 0.9

    return max(0.0, min(1.0, confidence))


class PredictionOrchestrator:
    """
    Runs glucose predictions against an initialized model.

    Every per-call failure comes back as an invalid PredictionResult; only
    initialize() raises, when the model schema is incompatible.
    """

    def __init__(
        self,
        model_metadata: ModelMetadata,
        engine: InferenceEngine,
        feature_builder: FeatureBuilder,
        validator: FeatureValidator,
        cache: MLCacheService,
        compatibility_checker: ModelCompatibilityChecker,
        monitor: Optional[PerformanceMonitor] = None,
        settings: Optional[MLSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.model_metadata = model_metadata
        self.engine = engine
        self.feature_builder = feature_builder
        self.validator = validator
        self.cache = cache
        self.compatibility_checker = compatibility_checker
        self.monitor = monitor or PerformanceMonitor(enabled=self.settings.enable_performance_metrics)
        self._ready = False

    def initialize(self) -> None:
        """
        Check model compatibility and mark the service ready.

        Raises:
            ModelCompatibilityError: if the model's feature schema differs
                from the feature builder's catalog
        """
        if self._ready:
            return
        self.compatibility_checker.ensure_compatible(self.model_metadata)
        self._ready = True
        logger.info(f"Prediction service ready with model {self.model_metadata.model_version}")

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def predict(self, context: PredictionContext) -> PredictionResult:
        """Run one forecast. Never raises for per-call problems."""
        trace = _PredictionTrace()
        try:
            if not self._ready:
                raise ServiceUnavailableError("Prediction service is not initialized")
            with self.monitor.track("prediction"):
                return await self._run(context, trace)

        except MLError as e:
            logger.warning(f"Prediction failed in state {trace.state.value}: {e}")
            return self._failure(context, trace, e)
        except Exception as e:
            logger.error(f"Unexpected prediction error in state {trace.state.value}: {e}", exc_info=True)
            return self._failure(context, trace, e)

    async def predict_batch(self, contexts: Sequence[PredictionContext]) -> List[PredictionResult]:
        """Run forecasts for several contexts; results keep input order."""
        semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

        async def run_one(context: PredictionContext) -> PredictionResult:
            async with semaphore:
                return await self.predict(context)

        results = await asyncio.gather(*(run_one(c) for c in contexts))
        failed = sum(1 for r in results if not r.is_valid)
        if failed:
            logger.info(f"Batch prediction: {failed}/{len(results)} failed")
        return list(results)

    async def _run(self, context: PredictionContext, trace: _PredictionTrace) -> PredictionResult:
        trace.advance(PredictionState.VALIDATING)
        if context.has_mixed_timezones:
            raise ValidationError("Invalid prediction context", details=MIXED_TIMEZONES_ERROR)
        key = generate_cache_key(context, self.settings.cache_bucket_minutes)

        cached = self.cache.get_prediction(key)
        if cached is not None:
            trace.advance(PredictionState.CACHE_HIT)
            logger.debug(f"Prediction cache hit: {key}")
            return cached.model_copy(update={"metadata": {**cached.metadata, "cache_used": True}})

        context_check = self.validator.validate_context(context)
        if not context_check.is_valid:
            raise ValidationError("Invalid prediction context", details="; ".join(context_check.errors))
        warnings = list(context_check.warnings)

        trace.advance(PredictionState.BUILDING_FEATURES)
        features = self.cache.get_features(key)
        features_cached = features is not None
        if features is None:
            with self.monitor.track("feature_building"):
                features = self.feature_builder.prepare(context)
            if not features.is_valid:
                raise FeatureBuildError(features.error or "Feature building failed")
            self.cache.put_features(key, features)
        trace.features = features

        vector_check = self.validator.validate_feature_vector(features)
        if not vector_check.is_valid:
            raise FeatureBuildError("Feature vector failed validation", details="; ".join(vector_check.errors))
        warnings.extend(vector_check.warnings)
        warnings.extend(features.warnings)

        trace.advance(PredictionState.INFERRING)
        prediction = await self._infer(features.to_array(self.model_metadata.feature_names))

        trace.advance(PredictionState.VALIDATING_OUTPUT)
        output_check = self.validator.validate_prediction_result(prediction)
        if not output_check.is_valid:
            raise InferenceError("Prediction failed output validation", details="; ".join(output_check.errors))
        warnings.extend(output_check.warnings)

        trace.advance(PredictionState.SCORING_CONFIDENCE)
        confidence = calculate_confidence(context, features, prediction)

        result = PredictionResult(
            predicted_value=prediction,
            confidence_level=confidence,
            prediction_time=context.prediction_time,
            target_time=context.prediction_time + timedelta(minutes=self.settings.prediction_horizon_minutes),
            used_features=features,
            is_valid=True,
            metadata={
                "model_version": self.model_metadata.model_version,
                "cache_used": False,
                "features_cached": features_cached,
                "history_hours": round(context.history_hours, 2),
                "warnings": warnings,
            },
        )
        self.cache.put_prediction(key, result)

        trace.advance(PredictionState.DONE)
        logger.debug(f"Prediction complete: {result}")
        return result

    async def _infer(self, model_input) -> float:
        timeout = self.settings.inference_timeout_seconds
        try:
            with self.monitor.track("inference"):
                raw = await asyncio.wait_for(self.engine.predict(model_input), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InferenceError(f"Inference timed out after {timeout}s") from e

        try:
            prediction = float(raw)
        except (TypeError, ValueError) as e:
            raise InferenceError("Inference engine returned a non-numeric value", details=repr(raw)) from e

        if not math.isfinite(prediction) or prediction < 0:
            raise InferenceError(f"Inference engine returned an unusable value: {prediction}")
        return prediction

    def _failure(
        self,
        context: PredictionContext,
        trace: _PredictionTrace,
        error: Exception,
    ) -> PredictionResult:
        failed_state = trace.state
        trace.advance(PredictionState.FAILED)
        metadata: Dict[str, Any] = {
            "error_type": type(error).__name__,
            "failed_state": failed_state.value,
            "cache_used": False,
        }
        if isinstance(error, MLError) and error.details:
            metadata["details"] = error.details

        return PredictionResult.failure(
            error=str(error) if isinstance(error, MLError) else f"Prediction error: {error}",
            prediction_time=context.prediction_time,
            horizon_minutes=self.settings.prediction_horizon_minutes,
            used_features=trace.features,
            metadata=metadata,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "ready": self._ready,
            "model_version": self.model_metadata.model_version,
            "feature_count": len(self.model_metadata.feature_names),
            "caches": {name: s.model_dump() for name, s in self.cache.get_cache_stats().items()},
            "performance": {name: s.model_dump() for name, s in self.monitor.get_stats().items()},
        }

    def dispose(self) -> None:
        """Clear caches, log timing stats and leave the service not ready."""
        self.cache.clear_all()
        self.monitor.log_stats()
        self.monitor.clear()
        self._ready = False
        logger.info("Prediction service disposed")


def create_prediction_orchestrator(
    model_metadata: ModelMetadata,
    engine: InferenceEngine,
    settings: Optional[MLSettings] = None,
    initialize: bool = True,
) -> PredictionOrchestrator:
    """
    Factory function to build a prediction orchestrator and its components.

    Args:
        model_metadata: Declared schema of the loaded model
        engine: Inference engine for the model
        settings: Settings to use (default: environment settings)
        initialize: Run the compatibility check immediately

    Returns:
        PredictionOrchestrator, ready when ``initialize`` is True

    Raises:
        ModelCompatibilityError: if ``initialize`` and the schemas differ
    """
    settings = settings or get_settings()
    feature_builder = FeatureBuilder(settings)
    feature_names = feature_builder.get_feature_names()

    orchestrator = PredictionOrchestrator(
        model_metadata=model_metadata,
        engine=engine,
        feature_builder=feature_builder,
        validator=FeatureValidator(settings, expected_feature_count=len(feature_names)),
        cache=MLCacheService(settings),
        compatibility_checker=ModelCompatibilityChecker(feature_names),
        monitor=PerformanceMonitor(enabled=settings.enable_performance_metrics),
        settings=settings,
    )
    if initialize:
        orchestrator.initialize()
    return orchestrator
