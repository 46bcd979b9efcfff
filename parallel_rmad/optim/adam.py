# optim/adam.py
from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ..config import NetworkParameters
from ..parallel import parallel_for
from ..rmad.core.tensor import as_matrices
from .model_layer import ModelLayer

logger = logging.getLogger(__name__)


def update_weight_with_adam(
    w: np.ndarray,
    m: np.ndarray,
    v: np.ndarray,
    gradient: np.ndarray,
    beta1: float,
    beta2: float,
    epsilon: float,
    learning_rate: float,
    iteration: int,
) -> None:
    """
    One Adam step on a single matrix, in place.

        m = beta1 * m + (1 - beta1) * g
        v = beta2 * v + (1 - beta2) * g^2
        m_hat = m / (1 - beta1^t)
        v_hat = v / (1 - beta2^t)
        w -= lr * m_hat / (sqrt(v_hat) + eps)
    """
    m *= beta1
    m += (1.0 - beta1) * gradient
    v *= beta2
    v += (1.0 - beta2) * (gradient * gradient)

    m_hat = m / (1.0 - beta1 ** iteration)
    v_hat = v / (1.0 - beta2 ** iteration)
    w -= learning_rate * m_hat / (np.sqrt(v_hat) + epsilon)


class AdamOptimizer:
    """
    Adam over every parameter group of every layer.

    Layers are updated in parallel; tensors of rank 3 and 4 are updated as
    repeated 2-D matrices. ``params.adam_iteration`` is the step ``t``; the
    owning network advances it.
    """

    def __init__(self, params: NetworkParameters):
        self.params = params

    def optimize(self, layers: Sequence[ModelLayer], run_sequentially: bool = False) -> None:
        p = self.params

        def optimize_layer(layer: ModelLayer) -> None:
            for identifier in layer.identifiers:
                element = layer[identifier]
                for w, m, v, g in zip(
                    as_matrices(element.weight),
                    as_matrices(element.first_moment),
                    as_matrices(element.second_moment),
                    as_matrices(element.gradient),
                ):
                    update_weight_with_adam(
                        w, m, v, g,
                        p.adam_beta1, p.adam_beta2, p.adam_epsilon,
                        p.learning_rate, p.adam_iteration,
                    )

        logger.debug("Adam step t=%d over %d layers", p.adam_iteration, len(layers))
        parallel_for(optimize_layer, layers, max_workers=p.max_workers, run_sequentially=run_sequentially)
