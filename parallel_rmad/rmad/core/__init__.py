# rmad/core/__init__.py

"""
Core public API of the reverse-mode engine.

Exports:
    ComputationGraph     : Builds a node graph from an architecture and resolvers.
    Architecture         : Immutable architecture descriptor (parsed from JSON/dict).
    OperationNode        : One node of a built graph.
    SpecificId           : Composite node key (id, time_step, layer).
    ForwardExecutor      : Runs the forward pass in build order.
    DependencyCounter    : Computes per-terminal backward fan-in.
    BackwardVisitor      : Parallel or sequential reverse traversal.
    IntermediatesStore   : Snapshots of node working tensors.
"""

from .errors import (
    RmadError,
    GraphBuildError,
    UnresolvedInputError,
    UnknownOperationError,
    BackwardTraversalError,
    SnapshotNotFoundError,
    NonFiniteOutputError,
    CheckpointError,
)
from .tensor import as_tensor, zeros, clone, copy_into, is_finite, as_matrices
from .node import OperationNode, SpecificId
from .architecture import Architecture, TimeStepSpec, LayerSpec, OperationSpec, base_name
from .intermediates import IntermediatesStore, NodeSnapshot
from .graph import ComputationGraph
from .engine import (
    ForwardExecutor,
    DependencyCounter,
    BackwardVisitor,
    run_forward_parallel,
    run_backward_parallel,
)
from .graph_utils import print_graph_summary, get_graph_stats, analyze_graph_complexity

__all__ = [
    "RmadError", "GraphBuildError", "UnresolvedInputError", "UnknownOperationError",
    "BackwardTraversalError", "SnapshotNotFoundError", "NonFiniteOutputError",
    "CheckpointError",
    "as_tensor", "zeros", "clone", "copy_into", "is_finite", "as_matrices",
    "OperationNode", "SpecificId",
    "Architecture", "TimeStepSpec", "LayerSpec", "OperationSpec", "base_name",
    "IntermediatesStore", "NodeSnapshot",
    "ComputationGraph",
    "ForwardExecutor", "DependencyCounter", "BackwardVisitor",
    "run_forward_parallel", "run_backward_parallel",
    "print_graph_summary", "get_graph_stats", "analyze_graph_complexity",
]
