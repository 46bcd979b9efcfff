# rmad/ops/__init__.py

# Importing the modules registers their operation types
from . import arithmetic
from . import activations
from . import loss

from .base import (
    Operation,
    register_operation,
    get_operation_type,
    create_operation,
    registered_operations,
)
from .arithmetic import (
    MatrixMultiply, MatrixAdd, MatrixAddBroadcasting, MatrixSubtract,
    HadamardProduct, ScalarMultiply, MatrixTranspose, Copy,
)
from .activations import LeakyReLU, Sigmoid, Tanh, Softmax
from .loss import MeanSquaredErrorLoss

__all__ = [
    "Operation", "register_operation", "get_operation_type",
    "create_operation", "registered_operations",
    "MatrixMultiply", "MatrixAdd", "MatrixAddBroadcasting", "MatrixSubtract",
    "HadamardProduct", "ScalarMultiply", "MatrixTranspose", "Copy",
    "LeakyReLU", "Sigmoid", "Tanh", "Softmax",
    "MeanSquaredErrorLoss",
]
