# optim/model_layer.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..rmad.core.tensor import DTYPE, zeros

INITIALIZATIONS = ("xavier", "he", "zeroes")


def _fans(shape: Tuple[int, ...]) -> Tuple[int, int]:
    # the trailing two dimensions are the matrix each update acts on
    if len(shape) == 1:
        return 1, shape[0]
    return shape[-2], shape[-1]


def initialize(shape: Sequence[int], initialization: str, rng: np.random.Generator) -> np.ndarray:
    """
    Allocate a weight tensor.

    xavier: uniform in [-limit, limit], limit = sqrt(6 / (fan_in + fan_out))
    he:     normal with std = sqrt(2 / fan_in)
    zeroes: all zeros
    """
    shape = tuple(int(d) for d in shape)
    if initialization == "zeroes":
        return zeros(shape)
    fan_in, fan_out = _fans(shape)
    if initialization == "xavier":
        limit = np.sqrt(6.0 / (fan_in + fan_out))
        return rng.uniform(-limit, limit, size=shape).astype(DTYPE)
    if initialization == "he":
        return rng.normal(0.0, np.sqrt(2.0 / fan_in), size=shape).astype(DTYPE)
    raise ValueError(f"Unknown initialization {initialization!r}; expected one of {INITIALIZATIONS}")


@dataclass(eq=False)
class ModelElement:
    """Weight, gradient and both Adam moments of one parameter group."""

    weight: np.ndarray
    gradient: np.ndarray
    first_moment: np.ndarray
    second_moment: np.ndarray
    shape: Tuple[int, ...]
    initialization: str

    def tensors(self) -> Dict[str, np.ndarray]:
        return {
            "weight": self.weight,
            "gradient": self.gradient,
            "first_moment": self.first_moment,
            "second_moment": self.second_moment,
        }


class ModelLayer:
    """
    Parameter groups of one layer, keyed by identifier.

    Tensors are allocated once; the optimizer, the clipper and checkpoint
    loading all mutate them in place, so graphs holding references through
    their resolvers see every update.
    """

    def __init__(self):
        self.elements: Dict[str, ModelElement] = {}

    @property
    def identifiers(self) -> List[str]:
        return list(self.elements)

    def __getitem__(self, identifier: str) -> ModelElement:
        return self.elements[identifier]

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.elements

    def __iter__(self) -> Iterator[str]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def weight(self, identifier: str) -> np.ndarray:
        return self.elements[identifier].weight

    def gradient(self, identifier: str) -> np.ndarray:
        return self.elements[identifier].gradient

    def shape(self, identifier: str) -> Tuple[int, ...]:
        return self.elements[identifier].shape


class ModelLayerBuilder:
    """
    Fluent builder:

        layer = (ModelLayerBuilder(seed=0)
                 .add_group("W", (4, 8), "xavier")
                 .add_group("B", (1, 8), "zeroes")
                 .build())
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self._layer = ModelLayer()

    def add_group(self, identifier: str, shape: Sequence[int], initialization: str = "xavier") -> "ModelLayerBuilder":
        shape = tuple(int(d) for d in shape)
        if not 1 <= len(shape) <= 4:
            raise ValueError(f"Invalid dimensions {shape}: expected rank 1 to 4")
        if identifier in self._layer.elements:
            raise ValueError(f"Model element group {identifier!r} already exists")
        self._layer.elements[identifier] = ModelElement(
            weight=initialize(shape, initialization, self.rng),
            gradient=zeros(shape),
            first_moment=zeros(shape),
            second_moment=zeros(shape),
            shape=shape,
            initialization=initialization,
        )
        return self

    def build(self) -> ModelLayer:
        return self._layer
