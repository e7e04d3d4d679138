"""
Inference engine capability.

The orchestrator only needs vector-in, scalar-out. Concrete engines are
chosen at startup and passed in explicitly.
"""
from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class InferenceEngine(Protocol):
    """Anything that turns a positional feature vector into one glucose value."""

    async def predict(self, features: np.ndarray) -> float:
        """
        Args:
            features: float32 array of shape (n_features,), ordered as the
                      model's declared feature names

        Returns:
            Predicted glucose in mmol/L at the forecast horizon
        """
        ...
