# rmad/core/errors.py
from __future__ import annotations

from typing import List, Optional, Sequence


class RmadError(Exception):
    """Base class for every error raised by the engine."""


class GraphBuildError(RmadError, ValueError):
    """The architecture could not be turned into a graph; no partial graph is usable."""


class UnresolvedInputError(GraphBuildError):
    """An input token matched neither a built node nor any registered resolver."""

    def __init__(self, name: str, operation_id: str, key: Optional[tuple] = None):
        self.name = name
        self.operation_id = operation_id
        self.key = key
        where = f" (node {key})" if key is not None else ""
        super().__init__(f"Input name {name!r} of operation {operation_id!r}{where} not found in value map")


class UnknownOperationError(GraphBuildError):
    """The architecture names an operation type that is not registered."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"Unknown operation type {type_name!r}")


class BackwardTraversalError(RmadError, RuntimeError):
    """More than one backward branch failed; carries every failure."""

    def __init__(self, errors: Sequence[BaseException]):
        self.errors: List[BaseException] = list(errors)
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} backward branches failed: {summary}")


class SnapshotNotFoundError(RmadError, KeyError):
    """No intermediates snapshot is stored under the requested id."""

    def __str__(self) -> str:
        return f"No intermediates snapshot stored under id {self.args[0]!r}"


class NonFiniteOutputError(RmadError, FloatingPointError):
    """A forward output contained NaN or Inf while nan_policy='raise'."""


class CheckpointError(RmadError, OSError):
    """Reading or writing a model-layer checkpoint failed."""
