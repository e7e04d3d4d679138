"""
Predictions API Endpoints
Single and batch glucose forecasts from caller-supplied history.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ...models.schemas import (
    ActivityEvent,
    CarbEntry,
    GlycemiaCategory,
    GlucoseReading,
    InsulinDose,
    PredictionContext,
    PredictionResult,
)
from ...services.prediction_service import PredictionOrchestrator


router = APIRouter(prefix="/predictions", tags=["predictions"])

MAX_BATCH_SIZE = 48
# Two days of one-minute CGM readings
MAX_HISTORY_SAMPLES = 2880

Sample = TypeVar("Sample", GlucoseReading, InsulinDose, CarbEntry, ActivityEvent)


def _as_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _with_utc_timestamps(samples: Sequence[Sample]) -> List[Sample]:
    return [
        s if s.timestamp.tzinfo is not None
        else s.model_copy(update={"timestamp": _as_utc(s.timestamp)})
        for s in samples
    ]


# Request/Response Models
class PredictionRequest(BaseModel):
    """History window and prediction instant for one forecast."""
    glucose_history: List[GlucoseReading] = Field(default_factory=list, max_length=MAX_HISTORY_SAMPLES)
    insulin_history: List[InsulinDose] = Field(default_factory=list, max_length=MAX_HISTORY_SAMPLES)
    carb_history: List[CarbEntry] = Field(default_factory=list, max_length=MAX_HISTORY_SAMPLES)
    activity_history: List[ActivityEvent] = Field(default_factory=list, max_length=MAX_HISTORY_SAMPLES)
    prediction_time: Optional[datetime] = Field(None, description="Defaults to now (UTC)")

    def to_context(self, lookback_hours: int) -> PredictionContext:
        """
        Build the context the orchestrator expects.

        Naive timestamps are taken as UTC and samples older than the
        lookback window are dropped.
        """
        return PredictionContext.from_history(
            glucose=_with_utc_timestamps(self.glucose_history),
            insulin=_with_utc_timestamps(self.insulin_history),
            carbs=_with_utc_timestamps(self.carb_history),
            activity=_with_utc_timestamps(self.activity_history),
            prediction_time=_as_utc(self.prediction_time) if self.prediction_time else None,
            lookback_hours=lookback_hours,
        )


class BatchPredictionRequest(BaseModel):
    requests: List[PredictionRequest] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


class PredictionResponse(BaseModel):
    """Forecast 60 minutes ahead, or the reason it failed."""
    predicted_value: float = Field(..., description="Predicted glucose in mmol/L")
    confidence_level: float
    prediction_time: datetime
    target_time: datetime
    is_valid: bool
    error: Optional[str] = None
    category: Optional[GlycemiaCategory] = None
    risk_level: Optional[float] = None
    is_hypoglycemia_risk: bool = False
    is_hyperglycemia_risk: bool = False
    feature_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: PredictionResult) -> "PredictionResponse":
        classification: Dict[str, Any] = {}
        if result.is_valid:
            classification = {
                "category": result.category,
                "risk_level": result.risk_level,
                "is_hypoglycemia_risk": result.is_hypoglycemia_risk,
                "is_hyperglycemia_risk": result.is_hyperglycemia_risk,
            }
        return cls(
            predicted_value=result.predicted_value,
            confidence_level=result.confidence_level,
            prediction_time=result.prediction_time,
            target_time=result.target_time,
            is_valid=result.is_valid,
            error=result.error,
            feature_count=result.used_features.length,
            metadata=result.metadata,
            **classification,
        )


# Dependencies
async def get_orchestrator(request: Request) -> PredictionOrchestrator:
    """Get the ready prediction orchestrator or fail with 503."""
    orchestrator: Optional[PredictionOrchestrator] = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None or not orchestrator.is_ready:
        raise HTTPException(status_code=503, detail="Prediction service is not ready")
    return orchestrator


# Endpoints
@router.post("", response_model=PredictionResponse)
async def create_prediction(
    request: PredictionRequest,
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """
    Forecast glucose 60 minutes after the prediction time.

    Invalid input produces a response with is_valid=false and an error,
    not an HTTP error.
    """
    context = request.to_context(orchestrator.settings.required_history_hours)
    result = await orchestrator.predict(context)
    return PredictionResponse.from_result(result)


@router.post("/batch", response_model=List[PredictionResponse])
async def create_batch_predictions(
    request: BatchPredictionRequest,
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """Forecast for several contexts; failures are reported per item."""
    lookback = orchestrator.settings.required_history_hours
    results = await orchestrator.predict_batch([r.to_context(lookback) for r in request.requests])
    return [PredictionResponse.from_result(r) for r in results]


@router.get("/stats")
async def get_prediction_stats(
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """Cache and timing statistics for the prediction service."""
    return orchestrator.get_stats()
