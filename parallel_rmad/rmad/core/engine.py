# rmad/core/engine.py
from __future__ import annotations

import logging
import threading
import uuid
import weakref
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ...parallel import parallel_for
from .errors import BackwardTraversalError, NonFiniteOutputError
from .node import OperationNode, SpecificId
from .tensor import as_tensor, copy_into, is_finite

if TYPE_CHECKING:
    from .graph import ComputationGraph, NodeRef

logger = logging.getLogger(__name__)

_destination_locks: Dict[int, threading.Lock] = {}
_registry_lock = threading.Lock()


def destination_lock(destination: np.ndarray) -> threading.Lock:
    """
    Return the lock guarding writes into ``destination``.

    Locks belong to the buffer, not to a visitor: every view of the same base
    array maps to one lock, so traversals of different graphs that share a
    gradient tensor serialise their accumulation into it. An entry is dropped
    when its base array is garbage collected.
    """
    root = destination
    while isinstance(root.base, np.ndarray):
        root = root.base
    key = id(root)
    with _registry_lock:
        lock = _destination_locks.get(key)
        if lock is None:
            lock = _destination_locks[key] = threading.Lock()
            weakref.finalize(root, _destination_locks.pop, key, None)
        return lock


class ForwardExecutor:
    """
    Run every node of a graph once, in build order.

    Each result is copied into the node's existing output buffer. When the node
    has a result binding, the output is also copied into the bound tensor.
    Non-finite outputs are ignored, logged or raised according to
    ``nan_policy`` (default: the graph's ``params.nan_policy``).
    """

    def __init__(self, graph: "ComputationGraph", nan_policy: Optional[str] = None):
        self.graph = graph
        self.nan_policy = nan_policy or graph.params.nan_policy

    def run(self, clear_state: bool = True) -> np.ndarray:
        if not self.graph.nodes:
            raise RuntimeError("Graph has no operations; call construct() first")
        if clear_state:
            self.graph.clear_state()

        out = None
        for node in self.graph.nodes:
            result = node.operation.forward(*node.input_values())
            out = node.set_output(result)
            if self.nan_policy != "ignore" and not is_finite(out):
                self._non_finite(node)
            if node.result_destination is not None:
                copy_into(node.result_destination, out)
        return out

    def _non_finite(self, node: OperationNode) -> None:
        msg = f"Operation {node.key} ({node.type_name}) produced a non-finite output"
        if self.nan_policy == "raise":
            raise NonFiniteOutputError(msg)
        logger.warning(msg)


def run_forward_parallel(
    graphs: Sequence["ComputationGraph"],
    max_workers: Optional[int] = None,
    run_sequentially: bool = False,
) -> List[np.ndarray]:
    """Run the forward pass of independent graphs (e.g. one per batch) concurrently."""
    return parallel_for(
        lambda g: ForwardExecutor(g).run(),
        graphs,
        max_workers=max_workers,
        run_sequentially=run_sequentially,
    )


class DependencyCounter:
    """
    One-time walk from a terminal node over predecessor links.

    A node's count is the number of times the walk reaches it, which is the
    number of successor edges coming from nodes reachable from the terminal:
    exactly the number of gradient contributions it must wait for. Counts are
    cached on each node under the terminal's key.
    """

    def __init__(self, graph: "ComputationGraph"):
        self.graph = graph

    def count(self, terminal: "NodeRef") -> Dict[SpecificId, int]:
        terminal = self.graph.resolve_node(terminal)
        reached = self._walk(terminal)

        counts = {}
        for node in reached:
            node.dependency_counts[terminal.key] = node.visited_count
            counts[node.key] = node.visited_count
        self.reset_visited_counts(terminal)
        self.graph.counted_terminals.add(terminal.key)

        logger.debug("Counted dependencies of %d nodes from %s", len(counts), terminal.key)
        return counts

    @staticmethod
    def _walk(terminal: OperationNode) -> List[OperationNode]:
        reached = [terminal]
        seen = {terminal.key}
        stack = [terminal]
        while stack:
            node = stack.pop()
            for pred in node.predecessors:
                pred.visited_count += 1
                if pred.key not in seen:
                    seen.add(pred.key)
                    reached.append(pred)
                    stack.append(pred)
        return reached

    def reset_visited_counts(self, terminal: "NodeRef") -> None:
        terminal = self.graph.resolve_node(terminal)
        terminal.visited_count = 0
        seen = {terminal.key}
        stack = [terminal]
        while stack:
            for pred in stack.pop().predecessors:
                pred.visited_count = 0
                if pred.key not in seen:
                    seen.add(pred.key)
                    stack.append(pred)


class BackwardVisitor:
    """
    Reverse traversal of a graph starting from one node.

    A node fires once every gradient contribution it waits for has arrived; its
    backward transform then feeds its predecessors. Independent branches run on
    a thread pool unless ``run_sequentially`` is set.

    Failures inside a firing node are collected. A single failure is logged and
    the rest of the graph still completes (``errors`` exposes it); two or more
    raise ``BackwardTraversalError``. With ``strict=True`` any failure raises.
    """

    def __init__(
        self,
        graph: "ComputationGraph",
        start: "NodeRef",
        run_sequentially: bool = False,
        max_workers: Optional[int] = None,
        strict: bool = False,
    ):
        if graph is None:
            raise ValueError("The parameter graph cannot be None.")
        self.graph = graph
        self.start = graph.resolve_node(start)
        self.run_sequentially = run_sequentially
        self.max_workers = max_workers
        self.strict = strict
        self.id = uuid.uuid4().hex
        self.errors: List[BaseException] = []

    def traverse(self, gradient: Any) -> "BackwardVisitor":
        start = self.start
        terminal = start.key
        if terminal not in self.graph.counted_terminals:
            DependencyCounter(self.graph).count(start)

        self.errors = []
        for node in self.graph.nodes:
            node.reset()
            node.pending = node.dependency_counts.get(terminal, 0)
        start.accumulate(as_tensor(gradient))

        try:
            if self.run_sequentially:
                self._run_sequential(start)
            else:
                self._run_parallel(start)
        finally:
            self.graph.reset()

        if len(self.errors) > 1 or (self.strict and self.errors):
            raise BackwardTraversalError(self.errors)
        if self.errors:
            logger.warning("Backward traversal %s completed with one failed branch", self.id)
        return self

    def _run_sequential(self, start: OperationNode) -> None:
        stack = [start]
        while stack:
            node = stack.pop()
            try:
                ready = self._fire(node)
            except Exception as e:
                self._record_failure(node, e)
                continue
            stack.extend(reversed(ready))

    def _run_parallel(self, start: OperationNode) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            running = {executor.submit(self._fire, start): start}
            while running:
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    node = running.pop(future)
                    try:
                        ready = future.result()
                    except Exception as e:
                        self._record_failure(node, e)
                        continue
                    for pred in ready:
                        running[executor.submit(self._fire, pred)] = pred

    def _fire(self, node: OperationNode) -> List[OperationNode]:
        """Run one node's backward transform; return the predecessors that became ready."""
        grad = node.gradient
        if grad is None:
            grad = np.zeros_like(node.output)
        grads = tuple(node.operation.backward(grad))
        if len(grads) != len(node.parameters):
            raise RuntimeError(
                f"{node.type_name} at {node.key} returned {len(grads)} gradients for "
                f"{len(node.parameters)} inputs"
            )
        node.calculated_gradient = grads
        self._write_destinations(node, grads)

        ready = []
        for param, g in zip(node.parameters, grads):
            if not isinstance(param, OperationNode):
                continue
            with param.lock:
                if g is None:
                    param.received += 1
                else:
                    param.accumulate(g)
                param.pending -= 1
                if param.pending == 0:
                    ready.append(param)
                elif param.pending < 0:
                    raise RuntimeError(f"Node {param.key} received more gradients than its fan-in")
        return ready

    def _write_destinations(self, node: OperationNode, grads: Tuple[Optional[np.ndarray], ...]) -> None:
        for destination, g in zip(node.gradient_destinations, grads):
            if destination is None or g is None:
                continue
            with destination_lock(destination):
                np.add(destination, g, out=destination)

    def _record_failure(self, node: OperationNode, error: BaseException) -> None:
        logger.error("Backward failed at %s (%s): %s", node.key, node.type_name, error)
        self.errors.append(error)


def run_backward_parallel(
    jobs: Sequence[Tuple[BackwardVisitor, Any]],
    max_workers: Optional[int] = None,
    run_sequentially: bool = False,
) -> List[BackwardVisitor]:
    """Run independent traversals, each a ``(visitor, gradient)`` pair, concurrently."""
    return parallel_for(
        lambda job: job[0].traverse(job[1]),
        jobs,
        max_workers=max_workers,
        run_sequentially=run_sequentially,
    )
