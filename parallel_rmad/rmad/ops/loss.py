# rmad/ops/loss.py
import numpy as np

from ..core.tensor import as_tensor
from .base import Operation, register_operation


@register_operation("MeanSquaredErrorLoss")
class MeanSquaredErrorLoss(Operation):
    """
    Primitive: out = mean((prediction - target)^2) as a 1x1 tensor.

    Only the prediction receives a gradient; the target is a constant.
    Backward scales by the incoming gradient, which is 1 when this node is
    the terminal of the graph.
    """

    def forward(self, prediction, target):
        prediction = as_tensor(prediction)
        target = as_tensor(target)
        if prediction.shape != target.shape:
            raise ValueError(
                f"MeanSquaredErrorLoss expects equal shapes, got {prediction.shape} and {target.shape}"
            )
        diff = prediction - target
        self.cache["diff"] = diff.copy()
        return np.array([[np.mean(diff * diff)]])

    def backward(self, grad):
        diff = self.cache["diff"]
        scale = float(np.sum(grad))
        return (scale * 2.0 * diff / diff.size, None)
