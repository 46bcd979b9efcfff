# rmad/core/graph.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Union

import numpy as np

from ...config import NetworkParameters
from ..ops.base import create_operation
from .architecture import Architecture, OperationSpec, base_name
from .errors import GraphBuildError, UnresolvedInputError
from .intermediates import IntermediatesStore
from .node import OperationNode, SpecificId

logger = logging.getLogger(__name__)

Resolver = Callable[[Optional[int], Optional[int]], Any]
NodeRef = Union[OperationNode, SpecificId, tuple, str]


class ComputationGraph:
    """
    A computation graph built from an architecture descriptor.

    External values are supplied through resolvers, each a function
    ``(time_step, layer) -> value-or-node`` registered under a base name:

        graph = (ComputationGraph(params)
                 .add_intermediate("Input", lambda t, l: x)
                 .add_weight("W", lambda t, l: weights[l])
                 .add_gradient("DW", lambda t, l: gradients[l])
                 .construct(architecture, num_layers=2))

    Every input is resolved exactly once, at build time. Nodes are kept in an
    explicit list in build order, which is topological because a node's
    predecessors are always built before it.
    """

    def __init__(self, params: Optional[NetworkParameters] = None):
        self.params = params if params is not None else NetworkParameters()
        self.nodes: List[OperationNode] = []
        self._index: Dict[SpecificId, OperationNode] = {}
        self._weights: Dict[str, Resolver] = {}
        self._gradients: Dict[str, Resolver] = {}
        self._intermediates: Dict[str, Resolver] = {}
        self._scalars: Dict[str, Resolver] = {}
        self._finders: Dict[str, Resolver] = {}
        self.counted_terminals: Set[SpecificId] = set()
        self.intermediates_store = IntermediatesStore()

    # ------------------------------------------------------------------ #
    # resolver registration
    # ------------------------------------------------------------------ #
    def add_weight(self, name: str, resolver: Resolver) -> "ComputationGraph":
        return self._register(self._weights, name, resolver)

    def add_bias(self, name: str, resolver: Resolver) -> "ComputationGraph":
        return self._register(self._weights, name, resolver)

    def add_gradient(self, name: str, resolver: Resolver) -> "ComputationGraph":
        return self._register(self._gradients, name, resolver)

    def add_intermediate(self, name: str, resolver: Resolver) -> "ComputationGraph":
        return self._register(self._intermediates, name, resolver)

    def add_scalar(self, name: str, resolver: Resolver) -> "ComputationGraph":
        return self._register(self._scalars, name, resolver)

    def add_operation_finder(self, name: str, resolver: Resolver) -> "ComputationGraph":
        """Register a resolver that may return a node of this graph (a cross-step or cross-layer link)."""
        return self._register(self._finders, name, resolver)

    def _register(self, table: Dict[str, Resolver], name: str, resolver: Resolver) -> "ComputationGraph":
        if not name:
            raise ValueError("The parameter name cannot be null or empty.")
        if not callable(resolver):
            raise TypeError(f"Resolver for {name!r} must be callable")
        table[name] = resolver
        return self

    # ------------------------------------------------------------------ #
    # construction
    # ------------------------------------------------------------------ #
    def construct(
        self,
        architecture: Union[Architecture, Mapping[str, Any]],
        num_time_steps: Optional[int] = None,
        num_layers: Optional[int] = None,
    ) -> "ComputationGraph":
        """
        Build nodes for every operation of the architecture.

        Without ``num_time_steps`` each descriptor time step is built once with
        ``time_step=None``; with it, the descriptor is replicated for every
        ``t``. Layer groups are replicated ``num_layers`` times the same way.
        Any build failure discards all nodes built by this call.
        """
        if architecture is None:
            raise GraphBuildError("The parameter architecture cannot be None.")
        if not isinstance(architecture, Architecture):
            architecture = Architecture.from_dict(architecture)
        if num_time_steps is not None and num_time_steps < 0:
            raise GraphBuildError("The parameter num_time_steps cannot be less than zero.")
        if num_layers is not None and num_layers < 0:
            raise GraphBuildError("The parameter num_layers cannot be less than zero.")

        time_range: List[Optional[int]] = [None] if num_time_steps is None else list(range(num_time_steps))
        layer_range: List[Optional[int]] = [None] if num_layers is None else list(range(num_layers))
        first_new = len(self.nodes)
        try:
            for t in time_range:
                for step in architecture.time_steps:
                    for spec in step.start_operations:
                        self.add_operation(spec, t, None)
                    for layer in layer_range:
                        for layer_spec in step.layers:
                            for spec in layer_spec.operations:
                                self.add_operation(spec, t, layer)
                    for spec in step.end_operations:
                        self.add_operation(spec, t, None)
        except Exception:
            self._discard_from(first_new)
            raise

        # new nodes invalidate cached fan-in counts
        self.counted_terminals.clear()
        logger.debug(
            "Constructed graph with %d operations (time steps=%s, layers=%s)",
            len(self.nodes) - first_new, num_time_steps, num_layers,
        )
        return self

    def add_operation(
        self,
        spec: Union[OperationSpec, Mapping[str, Any]],
        time_step: Optional[int] = None,
        layer: Optional[int] = None,
    ) -> OperationNode:
        if spec is None:
            raise GraphBuildError("The parameter spec cannot be None.")
        if not isinstance(spec, OperationSpec):
            spec = OperationSpec.from_dict(spec)

        key = SpecificId(spec.id, time_step, layer)
        if key in self._index:
            raise GraphBuildError(f"Duplicate operation {key}")
        if len(spec.gradient_result_to) > len(spec.inputs):
            raise GraphBuildError(
                f"Operation {spec.id!r} lists {len(spec.gradient_result_to)} gradient destinations "
                f"for {len(spec.inputs)} inputs"
            )

        node = OperationNode(
            key=key,
            operation=create_operation(spec.type, self.params),
            inputs=list(spec.inputs),
            result_to=spec.set_result_to,
        )
        try:
            node.parameters = [self._resolve_input(node, token) for token in spec.inputs]
            node.gradient_destinations = self._resolve_gradient_destinations(node, spec)
            if spec.set_result_to is not None:
                node.result_destination = self._resolve_result_destination(node, spec.set_result_to)
        except Exception:
            self._unlink({key})
            raise

        self.nodes.append(node)
        self._index[key] = node
        return node

    def _resolve_input(self, node: OperationNode, token: str) -> Any:
        name = base_name(token)
        t, l = node.key.time_step, node.key.layer

        for candidate in (SpecificId(name, t, l), SpecificId(name, t, None)):
            pred = self._index.get(candidate)
            if pred is not None:
                return self._link(pred, node)

        if name in self._finders:
            value = self._call(self._finders[name], name, node)
            if isinstance(value, OperationNode):
                if self._index.get(value.key) is not value:
                    raise GraphBuildError(f"Operation finder {name!r} returned a node of another graph: {value.key}")
                return self._link(value, node)
            return value

        for table in (self._weights, self._intermediates, self._scalars):
            if name in table:
                return self._call(table[name], name, node)

        raise UnresolvedInputError(name, node.id, tuple(node.key))

    def _resolve_gradient_destinations(self, node: OperationNode, spec: OperationSpec) -> List[Optional[np.ndarray]]:
        destinations: List[Optional[np.ndarray]] = [None] * len(spec.inputs)
        for i, token in enumerate(spec.gradient_result_to):
            if token is None:
                continue
            name = base_name(token)
            if name not in self._gradients:
                raise UnresolvedInputError(name, node.id, tuple(node.key))
            destinations[i] = self._call(self._gradients[name], name, node)
        return destinations

    def _resolve_result_destination(self, node: OperationNode, token: str) -> np.ndarray:
        name = base_name(token)
        if name not in self._intermediates:
            raise UnresolvedInputError(name, node.id, tuple(node.key))
        destination = self._call(self._intermediates[name], name, node)
        if not isinstance(destination, np.ndarray):
            raise GraphBuildError(f"Result destination {name!r} of {node.key} must be a tensor")
        return destination

    @staticmethod
    def _call(resolver: Resolver, name: str, node: OperationNode) -> Any:
        value = resolver(node.key.time_step, node.key.layer)
        if value is None:
            raise GraphBuildError(f"Resolver for {name!r} returned None for {node.key}")
        return value

    @staticmethod
    def _link(pred: OperationNode, node: OperationNode) -> OperationNode:
        pred.successors.append(node.key)
        return pred

    def _discard_from(self, start: int) -> None:
        discarded = self.nodes[start:]
        discarded_keys = {n.key for n in discarded}
        for node in discarded:
            self._index.pop(node.key, None)
        del self.nodes[start:]
        self._unlink(discarded_keys)
        self.counted_terminals.clear()

    def _unlink(self, keys: Set[SpecificId]) -> None:
        for node in self.nodes:
            node.successors = [k for k in node.successors if k not in keys]

    # ------------------------------------------------------------------ #
    # access
    # ------------------------------------------------------------------ #
    def resolve_node(self, ref: NodeRef) -> OperationNode:
        if isinstance(ref, OperationNode):
            if self._index.get(ref.key) is not ref:
                raise KeyError(f"Node {ref.key} does not belong to this graph")
            return ref
        if isinstance(ref, str):
            ref = SpecificId(ref)
        return self._index[SpecificId(*ref)]

    def node(self, id: str, time_step: Optional[int] = None, layer: Optional[int] = None) -> OperationNode:
        return self._index[SpecificId(id, time_step, layer)]

    def __getitem__(self, ref: NodeRef) -> OperationNode:
        return self.resolve_node(ref)

    def __contains__(self, ref: object) -> bool:
        try:
            self.resolve_node(ref)  # type: ignore[arg-type]
        except (KeyError, TypeError):
            return False
        return True

    def __iter__(self) -> Iterator[OperationNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def last_node(self) -> Optional[OperationNode]:
        return self.nodes[-1] if self.nodes else None

    # ------------------------------------------------------------------ #
    # state
    # ------------------------------------------------------------------ #
    def clear_state(self) -> None:
        for node in self.nodes:
            node.clear_state()

    def reset(self) -> None:
        """Reset backward bookkeeping on every node."""
        for node in self.nodes:
            node.reset()

    def store(self, snapshot_id: Optional[str] = None) -> str:
        return self.intermediates_store.store(self.nodes, snapshot_id)

    def restore(self, snapshot_id: str) -> None:
        self.intermediates_store.restore(self.nodes, snapshot_id)

    def discard(self, snapshot_id: str) -> bool:
        return self.intermediates_store.discard(snapshot_id)

    @property
    def snapshot_ids(self) -> List[str]:
        return self.intermediates_store.ids

    # ------------------------------------------------------------------ #
    # execution shortcuts
    # ------------------------------------------------------------------ #
    def forward(self, clear_state: bool = True) -> np.ndarray:
        from .engine import ForwardExecutor
        return ForwardExecutor(self).run(clear_state=clear_state)

    def count_dependencies(self, terminal: NodeRef) -> Dict[SpecificId, int]:
        from .engine import DependencyCounter
        return DependencyCounter(self).count(terminal)

    def backward(self, start: NodeRef, gradient: Any, *, run_sequentially: bool = False, strict: bool = False):
        from .engine import BackwardVisitor
        visitor = BackwardVisitor(
            self, start,
            run_sequentially=run_sequentially,
            max_workers=self.params.max_workers,
            strict=strict,
        )
        return visitor.traverse(gradient)
