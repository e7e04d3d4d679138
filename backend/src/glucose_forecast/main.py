"""
Glucose Forecast - FastAPI Application
Serves 60-minute glucose forecasts from a pre-trained model.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .api.v1 import predictions
from .config import MLSettings, get_settings
from .ml.feature_engineering import build_feature_names
from .ml.inference import InferenceEngine, LinearTrendEngine
from .models.schemas import ModelMetadata, load_model_metadata
from .services.prediction_service import create_prediction_orchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def resolve_model_metadata(settings: MLSettings) -> ModelMetadata:
    """Metadata from the configured JSON file, or the built-in linear trend schema."""
    if settings.model_config_path:
        logger.info(f"Loading model metadata from {settings.model_config_path}")
        return load_model_metadata(settings.model_config_path)

    logger.warning("No model config configured. Using linear trend engine.")
    return ModelMetadata(
        model_version="linear-trend",
        feature_names=build_feature_names(settings.required_history_hours, settings.sampling_minutes),
    )


def create_app(
    model_metadata: Optional[ModelMetadata] = None,
    engine: Optional[InferenceEngine] = None,
    settings: Optional[MLSettings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The orchestrator is created during startup; an incompatible model
    schema raises ModelCompatibilityError and the app never starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"ML Device: {settings.model_device}")

        metadata = model_metadata or resolve_model_metadata(settings)
        inference_engine = engine or LinearTrendEngine(
            metadata.feature_names,
            horizon_minutes=settings.prediction_horizon_minutes,
            sampling_minutes=settings.sampling_minutes,
        )

        app.state.orchestrator = create_prediction_orchestrator(metadata, inference_engine, settings)

        yield

        # Cleanup on shutdown
        logger.info(f"Shutting down {settings.app_name}...")
        app.state.orchestrator.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Short-horizon glucose forecasting service",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        """Liveness check."""
        return {"status": "healthy", "version": settings.app_version}

    @app.get("/ready")
    async def readiness_check():
        """Readiness check - the model schema has been verified."""
        orchestrator = getattr(app.state, "orchestrator", None)
        ready = orchestrator is not None and orchestrator.is_ready
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "ready": ready,
                "model_version": orchestrator.model_metadata.model_version if orchestrator else None,
            },
        )

    app.include_router(predictions.router, prefix="/api/v1", tags=["Predictions"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("glucose_forecast.main:app", host="0.0.0.0", port=8000, reload=get_settings().debug)
