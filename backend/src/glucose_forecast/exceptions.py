"""
ML pipeline errors.

Per-call errors (validation, feature building, inference, unavailability)
are converted into failed PredictionResults by the orchestrator.
ModelCompatibilityError is the only one allowed to stop the service
from becoming ready.
"""
from datetime import datetime, timezone
from typing import Optional


class MLError(Exception):
    """Base class for forecasting pipeline errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class ValidationError(MLError):
    """Input context is missing data or is out of bounds."""


class FeatureBuildError(MLError):
    """Feature computation could not produce a usable vector."""


class ModelCompatibilityError(MLError):
    """Model feature schema does not match the feature generator."""


class InferenceError(MLError):
    """Inference engine failed or returned an unusable value."""


class ServiceUnavailableError(MLError):
    """Prediction requested before the service is ready."""
