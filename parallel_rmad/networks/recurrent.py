# networks/recurrent.py
"""
Elman recurrent network unrolled over a fixed number of time steps.

    h_t    = tanh(x_t Wx + h_{t-1} Wh + Bh)
    y_t    = h_t Wy + By
    L      = sum_t mean((y_t - target_t)^2)

The architecture is a single time step replicated ``num_time_steps`` times.
``previousHidden`` and ``previousTotal`` are operation finders that link a
step to the one before it (or to a zero tensor at t = 0), every step writes
its hidden state into ``hidden_states[t]`` through ``setResultTo``, and the
shared weights receive gradient contributions from every step.
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

ARCHITECTURE_PATH = Path(__file__).with_name("architectures") / "recurrent.json"


class RecurrentNetwork:
    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        num_time_steps: int,
        params: Optional[NetworkParameters] = None,
        seed: Optional[int] = None,
        architecture: Optional[Union[Architecture, str, Path]] = None,
    ):
        if num_time_steps < 1:
            raise ValueError("num_time_steps must be >= 1")
        self.params = params if params is not None else NetworkParameters()
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size
        self.num_time_steps = num_time_steps

        self.layer = (
            ModelLayerBuilder(seed=seed)
            .add_group("Wx", (input_size, hidden_size), "xavier")
            .add_group("Wh", (hidden_size, hidden_size), "xavier")
            .add_group("Bh", (1, hidden_size), "zeroes")
            .add_group("Wy", (hidden_size, output_size), "xavier")
            .add_group("By", (1, output_size), "zeroes")
            .build()
        )

        batch = self.params.batch_size
        self.inputs = zeros((num_time_steps, batch, input_size))
        self.targets = zeros((num_time_steps, batch, output_size))
        self.hidden_states = zeros((num_time_steps, batch, hidden_size))
        self.initial_hidden = zeros((batch, hidden_size))
        self._zero_loss = zeros((1, 1))

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
        return [self.layer]

    def _build_graph(self, architecture: Architecture) -> ComputationGraph:
        layer = self.layer
        graph = ComputationGraph(self.params)

        def previous_hidden(t, l):
            if t == 0:
                return self.initial_hidden
            return graph.node("hidden", t - 1, l)

        def previous_total(t, l):
            if t == 0:
                return self._zero_loss
            return graph.node("total_loss", t - 1, l)

        graph.add_intermediate("Input", lambda t, l: self.inputs[t])
        graph.add_intermediate("Target", lambda t, l: self.targets[t])
        graph.add_intermediate("Hidden", lambda t, l: self.hidden_states[t])
        for name in layer.identifiers:
            graph.add_weight(name, lambda t, l, name=name: layer.weight(name))
            graph.add_gradient("D" + name, lambda t, l, name=name: layer.gradient(name))
        graph.add_operation_finder("previousHidden", previous_hidden)
        graph.add_operation_finder("previousTotal", previous_total)
        return graph.construct(architecture, num_time_steps=self.num_time_steps)

    def forward(self, xs: np.ndarray, ys: Optional[np.ndarray] = None) -> float:
        """Run all time steps; ``xs`` is (time, batch, input). Returns the summed loss."""
        xs = np.asarray(xs, dtype=np.float64)
        if xs.shape != self.inputs.shape:
            raise ValueError(f"Expected inputs of shape {self.inputs.shape}, got {xs.shape}")
        copy_into(self.inputs, xs)
        if ys is not None:
            ys = np.asarray(ys, dtype=np.float64)
            if ys.shape != self.targets.shape:
                raise ValueError(f"Expected targets of shape {self.targets.shape}, got {ys.shape}")
            copy_into(self.targets, ys)
        total = self.graph.forward()
        return float(total[0, 0])

    def outputs(self) -> np.ndarray:
        """Per-step outputs of the last forward pass, shape (time, batch, output)."""
        return np.stack([self.graph.node("output", t).output for t in range(self.num_time_steps)])

    def backward(self, run_sequentially: bool = False) -> BackwardVisitor:
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

    def train_step(self, xs: np.ndarray, ys: np.ndarray) -> float:
        self.clear_gradients()
        loss = self.forward(xs, ys)
        self.backward()
        self.optimize()
        logger.debug("iteration %d loss %.6g", self.params.adam_iteration - 1, loss)
        return loss
