"""
Feature Engineering Module

Turns a PredictionContext into the fixed, ordered feature vector the
forecasting model was trained on:

- bg-H-MM:        glucose aligned to 5-minute buckets (closest sample or interpolation)
- insulin-H-MM:   insulin summed per 5-minute bucket
- carbs-H-MM:     carbs summed per 5-minute bucket
- activity-H-MM:  latest activity per bucket, label-encoded
- glucose_rate, estimated_active_insulin, estimated_active_carbs,
  insulin_carb_ratio, sin_hour, cos_hour, sin_minute, cos_minute
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config import MLSettings, get_settings
from ..exceptions import FeatureBuildError, ValidationError
from ..models.schemas import (
    ActivityEvent,
    CarbEntry,
    FeatureVector,
    GlucoseReading,
    InsulinDose,
    PredictionContext,
)
from .activity_codec import UNKNOWN_ACTIVITY, ActivityCodec

logger = logging.getLogger(__name__)


SAMPLING_MIN = 5
INTERPOLATION_MAX_GAP_MIN = 15
RATIO_EPSILON = 1e-6
CARB_ABSORPTION_HOURS = 2.0

GLUCOSE_KIND = "bg"
INSULIN_KIND = "insulin"
CARBS_KIND = "carbs"
ACTIVITY_KIND = "activity"
HISTORY_KINDS = (GLUCOSE_KIND, INSULIN_KIND, CARBS_KIND, ACTIVITY_KIND)

SCALAR_FEATURES = [
    "glucose_rate",
    "estimated_active_insulin",
    "estimated_active_carbs",
    "insulin_carb_ratio",
    "sin_hour",
    "cos_hour",
    "sin_minute",
    "cos_minute",
]

CRITICAL_FEATURES = ["bg-0-00", "glucose_rate", "estimated_active_insulin"]

# (upper bound in hours, fraction of the dose still active)
INSULIN_ACTIVITY_CURVE: List[Tuple[float, float]] = [
    (1.0, 0.85),
    (2.0, 0.60),
    (3.0, 0.35),
    (4.0, 0.10),
]


def sincos(value: float, period: float) -> Tuple[float, float]:
    """Convert a cyclical value to sin/cos components."""
    theta = 2 * np.pi * value / period
    return float(np.sin(theta)), float(np.cos(theta))


def insulin_activity_factor(hours_ago: float) -> float:
    """Piecewise-constant fraction of an insulin dose still active."""
    for upper_hours, factor in INSULIN_ACTIVITY_CURVE:
        if hours_ago <= upper_hours:
            return factor
    return 0.0


def bucket_feature_name(kind: str, bucket: int, sampling_min: int = SAMPLING_MIN) -> str:
    """Name of bucket ``bucket`` counted back from the prediction time, e.g. bg-1-05."""
    per_hour = 60 // sampling_min
    hour, minute_index = divmod(bucket, per_hour)
    return f"{kind}-{hour}-{minute_index * sampling_min:02d}"


def build_feature_names(history_hours: int = 6, sampling_min: int = SAMPLING_MIN) -> List[str]:
    """Ordered feature catalog for the given lookback window."""
    n_buckets = history_hours * (60 // sampling_min)
    names = [
        bucket_feature_name(kind, bucket, sampling_min)
        for kind in HISTORY_KINDS
        for bucket in range(n_buckets)
    ]
    names.extend(SCALAR_FEATURES)
    return names


def _offsets_us(samples: Sequence, prediction_time: datetime) -> np.ndarray:
    """Microseconds from each sample back to the prediction time (positive = past)."""
    return np.array(
        [(prediction_time - s.timestamp) // timedelta(microseconds=1) for s in samples],
        dtype=np.int64,
    )


class FeatureBuilder:
    """
    Builds feature vectors for the glucose forecasting model.

    Stateless apart from configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        settings: Optional[MLSettings] = None,
        activity_codec: Optional[ActivityCodec] = None,
    ):
        settings = settings or get_settings()
        self.history_hours = settings.required_history_hours
        self.sampling_min = settings.sampling_minutes
        self.max_rate = settings.max_glucose_rate_change
        self.measurements_per_hour = 60 // self.sampling_min
        self.n_buckets = self.history_hours * self.measurements_per_hour

        self._step_us = self.sampling_min * 60 * 1_000_000
        self._max_gap_us = INTERPOLATION_MAX_GAP_MIN * 60 * 1_000_000
        self._activity_codec = activity_codec or ActivityCodec()
        self._feature_names = build_feature_names(self.history_hours, self.sampling_min)

    def get_feature_names(self) -> List[str]:
        """Ordered list of every feature this builder produces."""
        return list(self._feature_names)

    def prepare(self, context: PredictionContext) -> FeatureVector:
        """
        Build the full feature vector for a prediction context.

        Never raises: failures come back as an invalid FeatureVector
        carrying the error text.
        """
        warnings: List[str] = []

        try:
            self._validate_input(context, warnings)
            prediction_time = context.prediction_time

            features: Dict[str, float] = {}
            features.update(self._create_glucose_features(context.glucose_history, prediction_time))
            features.update(self._create_interval_sum_features(INSULIN_KIND, context.insulin_history, prediction_time))
            features.update(self._create_interval_sum_features(CARBS_KIND, context.carb_history, prediction_time))
            features.update(self._create_activity_features(context.activity_history, prediction_time))

            active_insulin = self._calculate_active_insulin(context.insulin_history, prediction_time, warnings)
            active_carbs = self._calculate_active_carbs(context.carb_history, prediction_time, warnings)

            features["glucose_rate"] = self._calculate_glucose_rate(context.glucose_history)
            features["estimated_active_insulin"] = active_insulin
            features["estimated_active_carbs"] = active_carbs
            features["insulin_carb_ratio"] = self._calculate_insulin_carb_ratio(active_insulin, active_carbs)
            features.update(self._create_time_features(prediction_time))

            ordered = self._finalize_features(features, warnings)

        except (ValidationError, FeatureBuildError) as e:
            logger.warning(f"Feature engineering failed: {e}")
            return FeatureVector.invalid(error=str(e), prediction_time=context.prediction_time)
        except (TypeError, ValueError) as e:
            # Typically mixed naive/aware timestamps in the history
            logger.error(f"Error in feature engineering: {e}", exc_info=True)
            return FeatureVector.invalid(
                error=f"Feature engineering error: {e}",
                prediction_time=context.prediction_time,
            )

        logger.debug(f"Feature vector prepared: {len(ordered)} features, {len(warnings)} warnings")
        return FeatureVector(
            features=ordered,
            prediction_time=context.prediction_time,
            is_valid=True,
            warnings=warnings,
        )

    # ==================== History Features ====================

    def _create_glucose_features(
        self,
        history: Sequence[GlucoseReading],
        prediction_time: datetime,
    ) -> Dict[str, float]:
        """Align glucose to each bucket's target time."""
        names = [bucket_feature_name(GLUCOSE_KIND, k, self.sampling_min) for k in range(self.n_buckets)]
        if not history:
            return dict.fromkeys(names, 0.0)

        # Newest first so argmin resolves ties to the most recent reading
        ordered = sorted(history, key=lambda r: r.timestamp, reverse=True)
        offsets = _offsets_us(ordered, prediction_time)
        values = np.array([r.value for r in ordered], dtype=float)

        targets = np.arange(self.n_buckets, dtype=np.int64) * self._step_us
        distances = np.abs(offsets[np.newaxis, :] - targets[:, np.newaxis])
        closest = distances.argmin(axis=1)

        features = {}
        for bucket, name in enumerate(names):
            idx = closest[bucket]
            value = values[idx]
            if distances[bucket, idx] > self._max_gap_us:
                interpolated = self._interpolate_glucose(offsets, values, targets[bucket])
                if interpolated is not None:
                    value = interpolated
            features[name] = float(value)

        return features

    @staticmethod
    def _interpolate_glucose(
        offsets: np.ndarray,
        values: np.ndarray,
        target: int,
    ) -> Optional[float]:
        """Linear interpolation between the readings either side of ``target``."""
        before_mask = offsets > target  # strictly earlier than the target time
        after_mask = ~before_mask
        if not before_mask.any() or not after_mask.any():
            return None

        before_idx = np.flatnonzero(before_mask)[offsets[before_mask].argmin()]
        after_idx = np.flatnonzero(after_mask)[offsets[after_mask].argmax()]

        span = offsets[before_idx] - offsets[after_idx]
        ratio = (offsets[before_idx] - target) / span
        return float(values[before_idx] + (values[after_idx] - values[before_idx]) * ratio)

    def _bucket_frame(self, samples: Sequence, prediction_time: datetime) -> pd.DataFrame:
        """
        Assign each sample to its bucket.

        Bucket k covers [T - (k+1)*step, T - k*step): a sample exactly on a
        boundary belongs to the newer bucket and is never dropped. Samples
        outside the window or at/after the prediction time are dropped.
        """
        offsets = _offsets_us(samples, prediction_time)
        buckets = -(-offsets // self._step_us) - 1
        frame = pd.DataFrame({"bucket": buckets, "offset": offsets})
        in_window = (frame["bucket"] >= 0) & (frame["bucket"] < self.n_buckets)
        return frame[in_window]

    def _create_interval_sum_features(
        self,
        kind: str,
        history: Sequence,
        prediction_time: datetime,
    ) -> Dict[str, float]:
        """Sum insulin units or carb grams per bucket."""
        names = [bucket_feature_name(kind, k, self.sampling_min) for k in range(self.n_buckets)]
        features = dict.fromkeys(names, 0.0)
        if not history:
            return features

        frame = self._bucket_frame(history, prediction_time)
        frame = frame.assign(value=[history[i].value for i in frame.index])
        for bucket, total in frame.groupby("bucket")["value"].sum().items():
            features[names[int(bucket)]] = float(total)

        return features

    def _create_activity_features(
        self,
        history: Sequence[ActivityEvent],
        prediction_time: datetime,
    ) -> Dict[str, float]:
        """Encode the latest activity inside each bucket."""
        names = [bucket_feature_name(ACTIVITY_KIND, k, self.sampling_min) for k in range(self.n_buckets)]
        none_code = float(self._activity_codec.encode(UNKNOWN_ACTIVITY))
        features = dict.fromkeys(names, none_code)
        if not history:
            return features

        frame = self._bucket_frame(history, prediction_time)
        frame = frame.assign(activity=[history[i].activity_type for i in frame.index])
        latest = frame.sort_values("offset", kind="mergesort").groupby("bucket").first()
        for bucket, row in latest.iterrows():
            features[names[int(bucket)]] = float(self._activity_codec.encode(row["activity"]))

        return features

    # ==================== Scalar Features ====================

    def _create_time_features(self, time: datetime) -> Dict[str, float]:
        """Cyclic hour/minute encodings of the prediction time."""
        sin_hour, cos_hour = sincos(time.hour, 24)
        sin_minute, cos_minute = sincos(time.minute, 60)
        return {
            "sin_hour": sin_hour,
            "cos_hour": cos_hour,
            "sin_minute": sin_minute,
            "cos_minute": cos_minute,
        }

    def _calculate_glucose_rate(self, history: Sequence[GlucoseReading]) -> float:
        """Change between the two newest readings, in mmol/L per 5 minutes."""
        if len(history) < 2:
            return 0.0

        ordered = sorted(history, key=lambda r: r.timestamp, reverse=True)
        current, previous = ordered[0], ordered[1]

        gap_minutes = (current.timestamp - previous.timestamp).total_seconds() / 60.0
        if gap_minutes == 0:
            return 0.0

        rate = (current.value - previous.value) / (gap_minutes / self.sampling_min)
        # np.clip keeps NaN so the finite-check below can report it
        return float(np.clip(rate, -self.max_rate, self.max_rate))

    def _calculate_active_insulin(
        self,
        history: Sequence[InsulinDose],
        prediction_time: datetime,
        warnings: List[str],
    ) -> float:
        """Insulin on board using the piecewise activity curve."""
        active_insulin = 0.0
        future_doses = 0

        for dose in history:
            # Fractional hours, not whole elapsed minutes
            hours_ago = (prediction_time - dose.timestamp).total_seconds() / 3600.0
            if hours_ago < 0:
                future_doses += 1
                continue
            active_insulin += dose.value * insulin_activity_factor(hours_ago)

        if future_doses:
            message = f"Ignored {future_doses} insulin doses dated after the prediction time"
            logger.warning(message)
            warnings.append(message)

        return active_insulin

    def _calculate_active_carbs(
        self,
        history: Sequence[CarbEntry],
        prediction_time: datetime,
        warnings: List[str],
    ) -> float:
        """Carbs on board with linear absorption over two hours."""
        active_carbs = 0.0
        future_entries = 0

        for entry in history:
            hours_ago = (prediction_time - entry.timestamp).total_seconds() / 3600.0
            if hours_ago < 0:
                future_entries += 1
                continue
            if hours_ago <= CARB_ABSORPTION_HOURS:
                active_carbs += entry.value * max(0.0, 1.0 - hours_ago / CARB_ABSORPTION_HOURS)

        if future_entries:
            message = f"Ignored {future_entries} carb entries dated after the prediction time"
            logger.warning(message)
            warnings.append(message)

        return active_carbs

    @staticmethod
    def _calculate_insulin_carb_ratio(active_insulin: float, active_carbs: float) -> float:
        return (active_insulin + RATIO_EPSILON) / (active_carbs + RATIO_EPSILON)

    # ==================== Checks ====================

    def _validate_input(self, context: PredictionContext, warnings: List[str]) -> None:
        if not context.glucose_history:
            raise ValidationError("Missing glucose history: glucose history cannot be empty")

        oldest_required = context.prediction_time - timedelta(hours=self.history_hours)
        has_enough_history = any(
            r.timestamp < oldest_required + timedelta(minutes=30)
            for r in context.glucose_history
        )
        if not has_enough_history:
            message = "Insufficient glucose history for optimal prediction"
            logger.info(message)
            warnings.append(message)

    def _finalize_features(self, features: Dict[str, float], warnings: List[str]) -> Dict[str, float]:
        """Order features by the catalog and replace non-finite values with 0.0."""
        missing = [name for name in self._feature_names if name not in features]
        if missing:
            raise FeatureBuildError(
                f"Missing required feature: {missing[0]}",
                details=f"{len(missing)} features missing",
            )

        ordered = {}
        for name in self._feature_names:
            value = features[name]
            if not np.isfinite(value):
                message = f"Invalid value for feature {name}: {value}, replaced with 0.0"
                logger.warning(message)
                warnings.append(message)
                value = 0.0
            ordered[name] = float(value)

        return ordered
