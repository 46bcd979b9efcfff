# rmad/ops/arithmetic.py
import numpy as np

from ..core.tensor import as_tensor
from .base import Operation, register_operation, unbroadcast


@register_operation("MatrixMultiply")
class MatrixMultiply(Operation):
    """
    out = a @ b

    Local partials:
      dL/da = g @ b.T
      dL/db = a.T @ g
    """

    def forward(self, a, b):
        a = as_tensor(a)
        b = as_tensor(b)
        self.cache["a"] = a.copy()
        self.cache["b"] = b.copy()
        return a @ b

    def backward(self, grad):
        a, b = self.cache["a"], self.cache["b"]
        return grad @ b.T, a.T @ grad


@register_operation("MatrixAdd")
class MatrixAdd(Operation):
    def forward(self, a, b):
        a = as_tensor(a)
        b = as_tensor(b)
        if a.shape != b.shape:
            raise ValueError(f"MatrixAdd expects equal shapes, got {a.shape} and {b.shape}")
        return a + b

    def backward(self, grad):
        return grad, grad


@register_operation("MatrixAddBroadcasting")
class MatrixAddBroadcasting(Operation):
    """out = a + b with b broadcast over the rows of a (bias add)."""

    def forward(self, a, b):
        a = as_tensor(a)
        b = as_tensor(b)
        self.cache["a_shape"] = np.asarray(a.shape)
        self.cache["b_shape"] = np.asarray(b.shape)
        return a + b

    def backward(self, grad):
        a_shape = tuple(int(d) for d in self.cache["a_shape"])
        b_shape = tuple(int(d) for d in self.cache["b_shape"])
        return unbroadcast(grad, a_shape), unbroadcast(grad, b_shape)


@register_operation("MatrixSubtract")
class MatrixSubtract(Operation):
    def forward(self, a, b):
        return as_tensor(a) - as_tensor(b)

    def backward(self, grad):
        return grad, -grad


@register_operation("HadamardProduct")
class HadamardProduct(Operation):
    """Elementwise product; d(a*b) = b da + a db."""

    def forward(self, a, b):
        a = as_tensor(a)
        b = as_tensor(b)
        self.cache["a"] = a.copy()
        self.cache["b"] = b.copy()
        return a * b

    def backward(self, grad):
        a, b = self.cache["a"], self.cache["b"]
        return unbroadcast(grad * b, a.shape), unbroadcast(grad * a, b.shape)


@register_operation("ScalarMultiply")
class ScalarMultiply(Operation):
    """out = x * s where s is a plain scalar; the scalar takes no gradient."""

    def forward(self, x, scalar):
        self.cache["scalar"] = np.asarray(float(scalar))
        return as_tensor(x) * float(scalar)

    def backward(self, grad):
        return grad * float(self.cache["scalar"]), None


@register_operation("MatrixTranspose")
class MatrixTranspose(Operation):
    def forward(self, x):
        return np.ascontiguousarray(as_tensor(x).T)

    def backward(self, grad):
        return (np.ascontiguousarray(grad.T),)


@register_operation("Copy")
class Copy(Operation):
    """Identity; useful as a named graph entry point for external inputs."""

    def forward(self, x):
        return as_tensor(x).copy()

    def backward(self, grad):
        return (grad,)
