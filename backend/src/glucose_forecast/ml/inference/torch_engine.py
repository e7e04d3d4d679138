"""
PyTorch Inference Engine
Runs an already constructed torch module on a single feature vector.
"""
import asyncio
import logging
from typing import Any, Optional

import numpy as np
import torch

logger = logging.getLogger(__name__)


class TorchInferenceEngine:
    """
    Inference engine backed by a torch.nn.Module.

    The module must map a (1, n_features) float tensor to a tensor whose
    first element is the forecast. Optional scalers follow the
    scikit-learn transform/inverse_transform convention.
    """

    def __init__(
        self,
        model: torch.nn.Module,
        features_scaler: Optional[Any] = None,
        targets_scaler: Optional[Any] = None,
        device: str = "cpu",
    ):
        """
        Args:
            model: Trained forecasting module
            features_scaler: Scaler applied to inputs before inference
            targets_scaler: Scaler whose inverse is applied to the output
            device: Device to run inference on ("cpu" or "cuda")
        """
        self.device = torch.device(device)
        self.model = model.to(self.device)
        self.model.eval()
        self.features_scaler = features_scaler
        self.targets_scaler = targets_scaler

    def _predict_sync(self, features: np.ndarray) -> float:
        row = np.asarray(features, dtype=np.float32).reshape(1, -1)
        if self.features_scaler is not None:
            row = self.features_scaler.transform(row)

        input_tensor = torch.tensor(row, dtype=torch.float32, device=self.device)

        with torch.no_grad():
            output = self.model(input_tensor)

        prediction = output.detach().cpu().numpy().reshape(1, -1)
        if self.targets_scaler is not None:
            prediction = self.targets_scaler.inverse_transform(prediction)

        return float(prediction[0, 0])

    async def predict(self, features: np.ndarray) -> float:
        # Model forward pass is CPU-bound; keep it off the event loop
        return await asyncio.to_thread(self._predict_sync, features)
