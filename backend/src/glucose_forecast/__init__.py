"""Short-horizon glucose forecasting core."""

__version__ = "1.0.0"
