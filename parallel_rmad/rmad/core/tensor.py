# rmad/core/tensor.py
"""
Tensor helpers.

A tensor is a plain ``numpy.ndarray`` of float64. Identity is by reference:
the engine and the optimizer mutate tensors in place so that every node or
resolver holding a reference observes the update.
"""
from __future__ import annotations

from typing import Any, Iterator, Sequence

import numpy as np

DTYPE = np.float64

Tensor = np.ndarray


def as_tensor(value: Any) -> Tensor:
    """
    Convert a numeric value to a float64 ndarray.

    Only numeric scalars, sequences or arrays are accepted; an existing float64
    array is returned as-is (no copy) so identity is preserved.
    """
    if isinstance(value, np.ndarray):
        return value if value.dtype == DTYPE else value.astype(DTYPE)
    if not isinstance(value, (int, float, list, tuple, np.floating, np.integer)):
        raise TypeError(
            f"Tensors only accept numeric types (int, float, list, tuple, ndarray), "
            f"but got {type(value)}"
        )
    return np.asarray(value, dtype=DTYPE)


def zeros(shape: Sequence[int]) -> Tensor:
    shape = tuple(int(d) for d in shape)
    if any(d < 0 for d in shape):
        raise ValueError(f"Tensor dimensions must be non-negative, got {shape}")
    return np.zeros(shape, dtype=DTYPE)


def clone(t: Tensor) -> Tensor:
    return np.array(t, dtype=DTYPE, copy=True)


def copy_into(dst: Tensor, src: Any) -> Tensor:
    """Overwrite ``dst`` with ``src`` in place and return ``dst``."""
    np.copyto(dst, src, casting="unsafe")
    return dst


def is_finite(t: Any) -> bool:
    return bool(np.all(np.isfinite(t)))


def as_matrices(t: Tensor) -> Iterator[Tensor]:
    """
    Yield 2-D views over ``t``.

    Rank 0/1 tensors become a single row, rank 2 is yielded once, rank 3 is a
    list of matrices and rank 4 a nested list; all views write through.
    """
    if t.ndim < 2:
        yield t.reshape(1, -1)
        return
    if t.ndim == 2:
        yield t
        return
    for sub in t:
        yield from as_matrices(sub)
