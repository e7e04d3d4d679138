"""
Linear Trend Engine
Deterministic extrapolation from the feature vector itself, used when no
trained model is available and as a stand-in engine in tests.
"""
import logging
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class LinearTrendEngine:
    """
    Fits a line through the most recent glucose buckets and extrapolates
    to the horizon, then adjusts for active insulin and carbs.
    """

    def __init__(
        self,
        feature_names: Sequence[str],
        horizon_minutes: int = 60,
        history_points: int = 6,  # 30 min of buckets at 5-min intervals
        sampling_minutes: int = 5,
        insulin_effect: float = 0.5,  # mmol/L per active unit
        carb_effect: float = 0.1,  # mmol/L per active gram
        min_value: float = 2.0,
        max_value: float = 25.0,
    ):
        self.feature_names = list(feature_names)
        self.horizon_minutes = horizon_minutes
        self.history_points = history_points
        self.sampling_minutes = sampling_minutes
        self.insulin_effect = insulin_effect
        self.carb_effect = carb_effect
        self.min_value = min_value
        self.max_value = max_value

        self._index = {name: i for i, name in enumerate(self.feature_names)}
        self._bg_indices = [
            self._index[f"bg-0-{k * sampling_minutes:02d}"]
            for k in range(history_points)
            if f"bg-0-{k * sampling_minutes:02d}" in self._index
        ]

    def _value(self, features: np.ndarray, name: str) -> float:
        idx: Optional[int] = self._index.get(name)
        return float(features[idx]) if idx is not None else 0.0

    def _slope_per_minute(self, features: np.ndarray) -> float:
        values = np.array([features[i] for i in self._bg_indices], dtype=float)
        # Bucket k sits k*sampling minutes before the prediction time
        minutes = -np.arange(len(values), dtype=float) * self.sampling_minutes
        known = values > 0
        if known.sum() >= 2:
            slope, _ = np.polyfit(minutes[known], values[known], 1)
            return float(slope)
        return self._value(features, "glucose_rate") / self.sampling_minutes

    async def predict(self, features: np.ndarray) -> float:
        features = np.asarray(features, dtype=float)
        current = self._value(features, "bg-0-00")
        slope = self._slope_per_minute(features)

        predicted = (
            current
            + slope * self.horizon_minutes
            - self._value(features, "estimated_active_insulin") * self.insulin_effect
            + self._value(features, "estimated_active_carbs") * self.carb_effect
        )
        return float(np.clip(predicted, self.min_value, self.max_value))
