# networks/feedforward.py
"""
Feed-forward network

    input -> [W_l, B_l, leaky ReLU] x num_layers -> WOut, BOut -> MSE loss

Hidden layers are one layer group of the architecture replicated
``num_layers`` times; each layer links to the one before it through the
``previous`` operation finder.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..config import NetworkParameters
from ..optim import AdamOptimizer, GradientClearer, GradientClipper, ModelLayer, ModelLayerBuilder
from ..rmad.core import Architecture, BackwardVisitor, ComputationGraph
from ..rmad.core.tensor import copy_into, zeros

logger = logging.getLogger(__name__)

ARCHITECTURE_PATH = Path(__file__).with_name("architectures") / "feedforward.json"


class FeedForwardNetwork:
    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        num_layers: int = 2,
        params: Optional[NetworkParameters] = None,
        seed: Optional[int] = None,
        architecture: Optional[Union[Architecture, str, Path]] = None,
    ):
        if num_layers < 1:
            raise ValueError("num_layers must be >= 1")
        self.params = params if params is not None else NetworkParameters()
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size
        self.num_layers = num_layers

        rng = np.random.default_rng(seed)
        self.hidden_layers: List[ModelLayer] = []
        for l in range(num_layers):
            fan_in = input_size if l == 0 else hidden_size
            self.hidden_layers.append(
                ModelLayerBuilder(rng=rng)
                .add_group("W", (fan_in, hidden_size), "he")
                .add_group("B", (1, hidden_size), "zeroes")
                .build()
            )
        self.output_layer = (
            ModelLayerBuilder(rng=rng)
            .add_group("WOut", (hidden_size, output_size), "xavier")
            .add_group("BOut", (1, output_size), "zeroes")
            .build()
        )

        batch = self.params.batch_size
        self.input = zeros((batch, input_size))
        self.target = zeros((batch, output_size))
        self.output = zeros((batch, output_size))

        if architecture is None:
            architecture = ARCHITECTURE_PATH
        if not isinstance(architecture, Architecture):
            architecture = Architecture.from_json(architecture)
        self.graph = self._build_graph(architecture)

        self.clipper = GradientClipper(self.params)
        self.optimizer = AdamOptimizer(self.params)
        self.clearer = GradientClearer()

    @property
    def model_layers(self) -> List[ModelLayer]:
        return self.hidden_layers + [self.output_layer]

    def _build_graph(self, architecture: Architecture) -> ComputationGraph:
        hidden = self.hidden_layers
        out = self.output_layer
        graph = ComputationGraph(self.params)

        def previous(t, l):
            if l == 0:
                return graph.node("input", t)
            return graph.node("activated", t, l - 1)

        (graph
            .add_intermediate("Input", lambda t, l: self.input)
            .add_intermediate("Target", lambda t, l: self.target)
            .add_intermediate("Output", lambda t, l: self.output)
            .add_weight("W", lambda t, l: hidden[l].weight("W"))
            .add_bias("B", lambda t, l: hidden[l].weight("B"))
            .add_weight("WOut", lambda t, l: out.weight("WOut"))
            .add_bias("BOut", lambda t, l: out.weight("BOut"))
            .add_gradient("DW", lambda t, l: hidden[l].gradient("W"))
            .add_gradient("DB", lambda t, l: hidden[l].gradient("B"))
            .add_gradient("DWOut", lambda t, l: out.gradient("WOut"))
            .add_gradient("DBOut", lambda t, l: out.gradient("BOut"))
            .add_operation_finder("previous", previous)
            .add_operation_finder("lastActivated", lambda t, l: graph.node("activated", t, self.num_layers - 1))
            .construct(architecture, num_layers=self.num_layers))
        return graph

    def forward(self, x: np.ndarray, y: Optional[np.ndarray] = None) -> float:
        """Run the graph on a batch and return the loss."""
        x = np.asarray(x, dtype=np.float64)
        if x.shape != self.input.shape:
            raise ValueError(f"Expected input of shape {self.input.shape}, got {x.shape}")
        copy_into(self.input, x)
        if y is not None:
            y = np.asarray(y, dtype=np.float64)
            if y.shape != self.target.shape:
                raise ValueError(f"Expected target of shape {self.target.shape}, got {y.shape}")
            copy_into(self.target, y)
        loss = self.graph.forward()
        return float(loss[0, 0])

    def predict(self, x: np.ndarray) -> np.ndarray:
        self.forward(x)
        return self.output.copy()

    def backward(self, run_sequentially: bool = False) -> BackwardVisitor:
        """Accumulate dL/dW into every layer's gradient tensors."""
        return self.graph.backward(
            self.graph.last_node,
            np.ones((1, 1)),
            run_sequentially=run_sequentially,
        )

    def clear_gradients(self) -> None:
        self.clearer.clear(self.model_layers)

    def optimize(self) -> None:
        self.clipper.clip(self.model_layers)
        self.optimizer.optimize(self.model_layers)
        self.params.adam_iteration += 1

    def train_step(self, x: np.ndarray, y: np.ndarray) -> float:
        self.clear_gradients()
        loss = self.forward(x, y)
        self.backward()
        self.optimize()
        logger.debug("iteration %d loss %.6g", self.params.adam_iteration - 1, loss)
        return loss
