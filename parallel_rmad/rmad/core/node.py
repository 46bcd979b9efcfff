# rmad/core/node.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from ..ops.base import Operation
from .tensor import copy_into


class SpecificId(NamedTuple):
    """
    Composite identity of a node instance: (logical id, time step, layer).

    ``time_step`` and ``layer`` are None when the graph has no temporal or
    layered component, and start/end operations carry ``layer=None``.
    """

    id: str
    time_step: Optional[int] = None
    layer: Optional[int] = None

    def __str__(self) -> str:
        parts = [self.id]
        if self.time_step is not None:
            parts.append(f"t{self.time_step}")
        if self.layer is not None:
            parts.append(f"l{self.layer}")
        return "@".join(parts)


@dataclass(eq=False)
class OperationNode:
    """
    One node of the computation graph.

    Attributes
    ----------
    key : SpecificId
        Unique identity within one graph.
    operation : Operation
        Forward/backward transform; owns its cached working tensors.
    inputs : List[str]
        Input tokens as written in the architecture.
    parameters : List[Any]
        One entry per input, resolved once at build time: either a predecessor
        OperationNode or an external value (weight, bias, buffer, scalar).
    successors : List[SpecificId]
        One entry per consuming input slot; the build-time backward fan-in.
    result_to : Optional[str]
        Name of an intermediate slot that receives a copy of the output.
    result_destination : Optional[np.ndarray]
        The tensor ``result_to`` resolved to at build time.
    gradient_destinations : List[Optional[np.ndarray]]
        Per input, a gradient tensor that accumulates that input's gradient.
    dependency_counts : Dict[SpecificId, int]
        Fan-in per terminal key, filled by the dependency-counting pass.
    """

    key: SpecificId
    operation: Operation
    inputs: List[str] = field(default_factory=list)
    parameters: List[Any] = field(default_factory=list)
    successors: List[SpecificId] = field(default_factory=list)
    result_to: Optional[str] = None
    result_destination: Optional[np.ndarray] = field(default=None, repr=False)
    gradient_destinations: List[Optional[np.ndarray]] = field(default_factory=list)
    dependency_counts: Dict[SpecificId, int] = field(default_factory=dict)
    output: Optional[np.ndarray] = None
    calculated_gradient: Optional[Tuple[Optional[np.ndarray], ...]] = None

    # backward bookkeeping, reset after every traversal
    gradient: Optional[np.ndarray] = None
    pending: int = 0
    received: int = 0
    visited_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def id(self) -> str:
        return self.key.id

    @property
    def type_name(self) -> str:
        return self.operation.type_name

    @property
    def out_degree(self) -> int:
        return len(self.successors)

    @property
    def predecessors(self) -> List["OperationNode"]:
        return [p for p in self.parameters if isinstance(p, OperationNode)]

    def input_values(self) -> List[Any]:
        """Current values of the inputs: predecessor outputs or external values."""
        values = []
        for p in self.parameters:
            if isinstance(p, OperationNode):
                if p.output is None:
                    raise RuntimeError(f"Node {self.key} reads {p.key} before it was computed")
                values.append(p.output)
            else:
                values.append(p)
        return values

    def set_output(self, result: Any) -> np.ndarray:
        """Write ``result`` into the existing output buffer; allocate only on shape change."""
        result = np.asarray(result, dtype=np.float64)
        if self.output is None or self.output.shape != result.shape:
            self.output = result.copy()
        else:
            copy_into(self.output, result)
        return self.output

    def accumulate(self, grad: np.ndarray) -> None:
        """Add one successor's contribution; caller holds ``self.lock``."""
        if self.gradient is None:
            self.gradient = np.array(grad, dtype=np.float64, copy=True)
        else:
            self.gradient = self.gradient + grad
        self.received += 1

    def working_tensors(self) -> Dict[str, Any]:
        tensors: Dict[str, Any] = {}
        if self.output is not None:
            tensors["output"] = self.output
        for name, value in self.operation.cache.items():
            tensors[f"cache.{name}"] = value
        return tensors

    def reset(self) -> None:
        """Clear backward bookkeeping so the node can take part in the next traversal."""
        self.gradient = None
        self.pending = 0
        self.received = 0
        self.visited_count = 0

    def clear_state(self) -> None:
        """Zero working tensors in place ahead of a forward pass."""
        if self.output is not None:
            self.output.fill(0.0)
        self.operation.reset()
        self.calculated_gradient = None
        self.reset()

    def __repr__(self) -> str:
        return f"OperationNode({self.key}, {self.type_name}, inputs={self.inputs})"
