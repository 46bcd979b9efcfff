# rmad/ops/base.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import numpy as np

from ...config import NetworkParameters
from ..core.errors import UnknownOperationError

Gradients = Tuple[Optional[np.ndarray], ...]

_REGISTRY: Dict[str, Type["Operation"]] = {}


class Operation:
    """
    A unit with a forward and a backward transform.

    Subclasses implement ``forward(*inputs) -> ndarray`` and
    ``backward(grad) -> tuple`` returning one gradient per input, in input
    order (``None`` for an input that takes no gradient, e.g. a scalar).

    Anything the backward transform needs from the forward pass goes into
    ``self.cache``; those tensors are part of the node's working state and are
    captured by the intermediates store.
    """

    type_name: str = "Operation"

    def __init__(self, params: NetworkParameters):
        self.params = params
        self.cache: Dict[str, Any] = {}

    @classmethod
    def instantiate(cls, params: NetworkParameters) -> "Operation":
        return cls(params)

    def forward(self, *inputs: Any) -> np.ndarray:
        raise NotImplementedError

    def backward(self, grad: np.ndarray) -> Gradients:
        raise NotImplementedError

    def reset(self) -> None:
        self.cache.clear()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def register_operation(name: str) -> Callable[[Type[Operation]], Type[Operation]]:
    """Class decorator adding an operation type to the registry under ``name``."""

    def deco(cls: Type[Operation]) -> Type[Operation]:
        if name in _REGISTRY and _REGISTRY[name] is not cls:
            raise ValueError(f"Operation type {name!r} is already registered")
        cls.type_name = name
        _REGISTRY[name] = cls
        return cls

    return deco


def get_operation_type(name: str) -> Type[Operation]:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise UnknownOperationError(name) from None


def create_operation(name: str, params: NetworkParameters) -> Operation:
    return get_operation_type(name).instantiate(params)


def registered_operations() -> List[str]:
    return sorted(_REGISTRY)


def unbroadcast(grad: np.ndarray, shape: Tuple[int, ...]) -> np.ndarray:
    """Sum ``grad`` down to ``shape`` (reverse of numpy broadcasting)."""
    if grad.shape == tuple(shape):
        return grad
    while grad.ndim > len(shape):
        grad = grad.sum(axis=0)
    for axis, dim in enumerate(shape):
        if dim == 1 and grad.shape[axis] != 1:
            grad = grad.sum(axis=axis, keepdims=True)
    return grad
