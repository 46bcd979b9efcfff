# parallel_rmad/__init__.py
# Parallel reverse-mode automatic differentiation over declarative operation graphs

from .config import NetworkParameters
from .rmad import (
    ComputationGraph,
    Architecture,
    OperationNode,
    SpecificId,
    ForwardExecutor,
    DependencyCounter,
    BackwardVisitor,
    run_forward_parallel,
    run_backward_parallel,
    register_operation,
)
from .rmad.core.errors import (
    RmadError,
    GraphBuildError,
    UnresolvedInputError,
    UnknownOperationError,
    BackwardTraversalError,
    SnapshotNotFoundError,
    NonFiniteOutputError,
    CheckpointError,
)
from .parallel import parallel_for

__version__ = "0.1.0"

__all__ = [
    # Configuration
    'NetworkParameters',
    # Graph
    'ComputationGraph',
    'Architecture',
    'OperationNode',
    'SpecificId',
    'register_operation',
    # Engine
    'ForwardExecutor',
    'DependencyCounter',
    'BackwardVisitor',
    'run_forward_parallel',
    'run_backward_parallel',
    'parallel_for',
    # Errors
    'RmadError',
    'GraphBuildError',
    'UnresolvedInputError',
    'UnknownOperationError',
    'BackwardTraversalError',
    'SnapshotNotFoundError',
    'NonFiniteOutputError',
    'CheckpointError',
]
