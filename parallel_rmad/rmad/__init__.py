# rmad/__init__.py
# Reverse-mode automatic differentiation over operation graphs

from .core import (
    ComputationGraph,
    Architecture,
    OperationNode,
    SpecificId,
    ForwardExecutor,
    DependencyCounter,
    BackwardVisitor,
    run_forward_parallel,
    run_backward_parallel,
)
from . import ops
from .ops import Operation, register_operation, create_operation, registered_operations

__all__ = [
    # Core
    'ComputationGraph',
    'Architecture',
    'OperationNode',
    'SpecificId',
    # Engine
    'ForwardExecutor',
    'DependencyCounter',
    'BackwardVisitor',
    'run_forward_parallel',
    'run_backward_parallel',
    # Operations
    'ops',
    'Operation',
    'register_operation',
    'create_operation',
    'registered_operations',
]
