# Inference engines
from .base import InferenceEngine
from .linear_trend import LinearTrendEngine

__all__ = [
    "InferenceEngine",
    "LinearTrendEngine",
]
