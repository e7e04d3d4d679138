"""
Glucose Prediction Service
Builds prediction contexts from per-kind history sources and runs them
through the prediction orchestrator.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Generic, List, Optional, Protocol, Sequence, TypeVar

from ..models.schemas import (
    LOOKBACK_HOURS,
    ActivityEvent,
    CarbEntry,
    GlucoseReading,
    InsulinDose,
    PredictionContext,
    PredictionResult,
)
from .prediction_service import PredictionOrchestrator

logger = logging.getLogger(__name__)

S = TypeVar("S", covariant=True)


class HistorySource(Protocol, Generic[S]):
    """Read-only access to one kind of history sample."""

    async def get_samples_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> Sequence[S]:
        """Return all samples for ``user_id`` with start <= timestamp < end, in any order."""
        ...


class GlucosePredictionService:
    """
    Application-facing prediction entry point.

    Loads the lookback window from each history source concurrently,
    predicts, and logs hypo/hyperglycemia risk for valid results.
    """

    def __init__(
        self,
        orchestrator: PredictionOrchestrator,
        glucose_source: HistorySource[GlucoseReading],
        insulin_source: HistorySource[InsulinDose],
        carb_source: HistorySource[CarbEntry],
        activity_source: HistorySource[ActivityEvent],
        lookback_hours: int = LOOKBACK_HOURS,
    ):
        self.orchestrator = orchestrator
        self.glucose_source = glucose_source
        self.insulin_source = insulin_source
        self.carb_source = carb_source
        self.activity_source = activity_source
        self.lookback_hours = lookback_hours

    async def create_prediction(
        self,
        user_id: str,
        prediction_time: Optional[datetime] = None,
    ) -> PredictionResult:
        """Predict glucose for a user at ``prediction_time`` (default: now)."""
        try:
            context = await self.build_prediction_context(user_id, prediction_time)
        except Exception as e:
            logger.error(f"Failed to load history for user {user_id}: {e}")
            raise

        result = await self.orchestrator.predict(context)
        self._process_prediction_result(user_id, result)
        return result

    async def create_multiple_predictions(
        self,
        user_id: str,
        prediction_times: Sequence[datetime],
    ) -> List[PredictionResult]:
        """Predict at several instants, e.g. to draw a forecast curve."""
        contexts = [
            await self.build_prediction_context(user_id, t)
            for t in prediction_times
        ]
        results = await self.orchestrator.predict_batch(contexts)
        for result in results:
            self._process_prediction_result(user_id, result)
        return results

    async def build_prediction_context(
        self,
        user_id: str,
        prediction_time: Optional[datetime] = None,
    ) -> PredictionContext:
        now = prediction_time or datetime.now(timezone.utc)
        window_start = now - timedelta(hours=self.lookback_hours)

        glucose, insulin, carbs, activity = await asyncio.gather(
            self.glucose_source.get_samples_in_range(user_id, window_start, now),
            self.insulin_source.get_samples_in_range(user_id, window_start, now),
            self.carb_source.get_samples_in_range(user_id, window_start, now),
            self.activity_source.get_samples_in_range(user_id, window_start, now),
        )

        return PredictionContext(
            glucose_history=list(glucose),
            insulin_history=list(insulin),
            carb_history=list(carbs),
            activity_history=list(activity),
            prediction_time=now,
        )

    def _process_prediction_result(self, user_id: str, result: PredictionResult) -> None:
        if not result.is_valid:
            return
        if result.is_hypoglycemia_risk:
            logger.warning(
                f"Hypoglycemia risk for user {user_id}: "
                f"{result.predicted_value:.1f} mmol/L at {result.target_time.isoformat()}"
            )
        if result.is_hyperglycemia_risk:
            logger.warning(
                f"Hyperglycemia risk for user {user_id}: "
                f"{result.predicted_value:.1f} mmol/L at {result.target_time.isoformat()}"
            )
