# rmad/ops/activations.py
import numpy as np

from ..core.tensor import as_tensor
from .base import Operation, register_operation


@register_operation("LeakyReLU")
class LeakyReLU(Operation):
    """
    out = x if x > 0 else alpha * x

    alpha comes from NetworkParameters.leaky_relu_alpha.
    """

    def forward(self, x):
        x = as_tensor(x)
        self.cache["x"] = x.copy()
        return np.where(x > 0, x, self.params.leaky_relu_alpha * x)

    def backward(self, grad):
        x = self.cache["x"]
        return (np.where(x > 0, grad, self.params.leaky_relu_alpha * grad),)


@register_operation("Sigmoid")
class Sigmoid(Operation):
    def forward(self, x):
        x = as_tensor(x)
        out = 1.0 / (1.0 + np.exp(-x))
        self.cache["out"] = out.copy()
        return out

    def backward(self, grad):
        s = self.cache["out"]
        return (grad * s * (1.0 - s),)


@register_operation("Tanh")
class Tanh(Operation):
    def forward(self, x):
        out = np.tanh(as_tensor(x))
        self.cache["out"] = out.copy()
        return out

    def backward(self, grad):
        t = self.cache["out"]
        return (grad * (1.0 - t * t),)


@register_operation("Softmax")
class Softmax(Operation):
    """Row-wise softmax over the last axis."""

    def forward(self, x):
        x = as_tensor(x)
        shifted = x - np.max(x, axis=-1, keepdims=True)
        e = np.exp(shifted)
        out = e / np.sum(e, axis=-1, keepdims=True)
        self.cache["out"] = out.copy()
        return out

    def backward(self, grad):
        s = self.cache["out"]
        # dL/dx = s * (g - sum(g * s))
        dot = np.sum(grad * s, axis=-1, keepdims=True)
        return (s * (grad - dot),)
