# optim/clipping.py
from __future__ import annotations

from typing import Sequence

import numpy as np

from ..config import NetworkParameters
from ..parallel import parallel_for
from ..rmad.core.tensor import copy_into
from .model_layer import ModelLayer


def clip_gradients(gradient: np.ndarray, clip_value: float, minimum_value: float) -> np.ndarray:
    """
    Dynamic gradient clipping, in place.

    1. z = (g - mean(g)) / std(g) over all elements (z = 0 when std == 0)
    2. each g is clamped to +/- min(clip_value, 1 + |z|)
    3. nonzero values smaller than ``minimum_value`` in magnitude are raised
       to ``minimum_value`` keeping their sign

    Returns the same array.
    """
    if gradient.size == 0:
        return gradient

    std = float(np.std(gradient))
    if std > 0.0:
        standardized = (gradient - np.mean(gradient)) / std
    else:
        standardized = np.zeros_like(gradient)

    bound = np.minimum(clip_value, 1.0 + np.abs(standardized))
    clipped = np.clip(gradient, -bound, bound)
    tiny = (clipped != 0.0) & (np.abs(clipped) < minimum_value)
    clipped = np.where(tiny, np.sign(clipped) * minimum_value, clipped)
    return copy_into(gradient, clipped)


class GradientClipper:
    """Apply ``clip_gradients`` to every gradient tensor of every layer, one layer per worker."""

    def __init__(self, params: NetworkParameters):
        self.params = params

    def clip(self, layers: Sequence[ModelLayer], run_sequentially: bool = False) -> None:
        def clip_layer(layer: ModelLayer) -> None:
            for identifier in layer.identifiers:
                clip_gradients(
                    layer.gradient(identifier),
                    self.params.clip_value,
                    self.params.minimum_clip_value,
                )

        parallel_for(clip_layer, layers, max_workers=self.params.max_workers, run_sequentially=run_sequentially)
