# optim/clearer.py
from typing import Optional, Sequence

import numpy as np

from .model_layer import ModelLayer


class GradientClearer:
    """Zero gradient tensors in place between iterations."""

    def clear(self, layers: Sequence[ModelLayer]) -> None:
        for layer in layers:
            for identifier in layer.identifiers:
                layer.gradient(identifier).fill(0.0)

    def clear_tensors(self, gradients: Sequence[Optional[np.ndarray]]) -> None:
        for g in gradients:
            if g is not None:
                g.fill(0.0)
