"""
Glucose Forecast Configuration
Loads ML serving settings from environment variables with validation.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MLSettings(BaseSettings):
    """Forecasting core settings loaded from environment variables."""

    # App
    app_name: str = "glucose-forecast"
    app_version: str = "1.0.0"
    debug: bool = False

    # Model
    model_config_path: Optional[str] = Field(default=None, description="Path to the model's JSON metadata")
    model_device: str = Field(default="cpu", description="cpu or cuda")
    prediction_horizon_minutes: int = Field(default=60, ge=5)
    required_history_hours: int = Field(default=6, ge=1)
    sampling_minutes: int = Field(default=5, ge=1)
    inference_timeout_seconds: float = Field(default=5.0, gt=0)
    batch_concurrency: int = Field(default=4, ge=1)

    # Validation (mmol/L, units, grams)
    min_glucose_value: float = 1.0
    max_glucose_value: float = 30.0
    max_insulin_value: float = 50.0
    max_carb_value: float = 200.0
    max_glucose_rate_change: float = 0.5  # mmol/L per 5 min
    max_future_tolerance_minutes: int = 5
    min_plausible_prediction: float = 0.5
    max_plausible_prediction: float = 35.0
    critical_low_prediction: float = 2.0
    critical_high_prediction: float = 20.0

    # Caching
    enable_feature_caching: bool = True
    enable_prediction_caching: bool = True
    feature_cache_ttl_seconds: float = Field(default=120.0, gt=0)
    prediction_cache_ttl_seconds: float = Field(default=300.0, gt=0)
    max_cache_size: int = Field(default=100, ge=1)
    cache_bucket_minutes: int = Field(default=5, ge=1)

    # Diagnostics
    enable_performance_metrics: bool = True

    model_config = SettingsConfigDict(
        env_prefix="GLUCOSE_ML_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=("settings_",),
    )


@lru_cache()
def get_settings() -> MLSettings:
    """Get cached settings instance."""
    return MLSettings()
