# optim/__init__.py
# Model layers and the gradient post-processing applied after each backward pass

from .model_layer import ModelElement, ModelLayer, ModelLayerBuilder, initialize, INITIALIZATIONS
from .clipping import clip_gradients, GradientClipper
from .adam import update_weight_with_adam, AdamOptimizer
from .clearer import GradientClearer
from .checkpoint import save_checkpoint, load_checkpoint, WeightStore

__all__ = [
    "ModelElement", "ModelLayer", "ModelLayerBuilder", "initialize", "INITIALIZATIONS",
    "clip_gradients", "GradientClipper",
    "update_weight_with_adam", "AdamOptimizer",
    "GradientClearer",
    "save_checkpoint", "load_checkpoint", "WeightStore",
]
