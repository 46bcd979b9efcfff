"""
Network Configuration

Shared configuration for computation graphs, operations and optimizers.
Every value is supplied by the owning network; the engine bakes none in.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional

NAN_POLICIES = ("ignore", "warn", "raise")


@dataclass
class NetworkParameters:
    """
    Hyper-parameters shared by a network, its graph and its optimizer.

    Attributes:
        learning_rate: Adam step size
        clip_value: Upper bound of the dynamic gradient clip
        minimum_clip_value: Magnitude floor applied to nonzero gradients
        adam_beta1: First-moment decay
        adam_beta2: Second-moment decay
        adam_epsilon: Denominator guard
        adam_iteration: Current optimizer iteration ``t`` (1-based)
        leaky_relu_alpha: Negative slope used by LeakyReLU operations
        batch_size: Rows per batch for the example networks
        max_workers: Thread-pool size; None lets the executor decide
        nan_policy: What the forward executor does with non-finite outputs
    """

    learning_rate: float = 0.001
    clip_value: float = 4.0
    minimum_clip_value: float = 1e-16
    adam_beta1: float = 0.9
    adam_beta2: float = 0.999
    adam_epsilon: float = 1e-8
    adam_iteration: int = 1
    leaky_relu_alpha: float = 0.01
    batch_size: int = 1
    max_workers: Optional[int] = None
    nan_policy: str = "warn"

    def __post_init__(self) -> None:
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be > 0")
        if self.clip_value <= 0:
            raise ValueError("clip_value must be > 0")
        if self.minimum_clip_value < 0:
            raise ValueError("minimum_clip_value must be >= 0")
        if not 0.0 <= self.adam_beta1 < 1.0:
            raise ValueError("adam_beta1 must be in [0, 1)")
        if not 0.0 <= self.adam_beta2 < 1.0:
            raise ValueError("adam_beta2 must be in [0, 1)")
        if self.adam_epsilon <= 0:
            raise ValueError("adam_epsilon must be > 0")
        if self.adam_iteration < 1:
            raise ValueError("adam_iteration must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.nan_policy not in NAN_POLICIES:
            raise ValueError(f"nan_policy must be one of {NAN_POLICIES}, got {self.nan_policy!r}")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "NetworkParameters":
        """Build parameters from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown network parameters: {unknown}")
        return cls(**values)

    def replace(self, **changes: Any) -> "NetworkParameters":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)
