# Glucose Forecast API v1
from . import predictions

__all__ = [
    "predictions",
]
