# optim/checkpoint.py
"""
Model-layer checkpoints.

On disk a checkpoint is a directory ``{root}/{uuid}_{iteration}/`` with one
``layer{index}.npz`` archive per layer. Each archive holds, per parameter
group, ``{identifier}.weight``, ``{identifier}.first_moment`` and
``{identifier}.second_moment``.

``WeightStore`` is the in-memory counterpart: a copy of every layer's weights
that can be written back to roll back an update.
"""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Iterable, List, Sequence, Union

import numpy as np

from ..rmad.core.errors import CheckpointError
from ..rmad.core.tensor import clone, copy_into
from .model_layer import ModelLayer

logger = logging.getLogger(__name__)

SAVED_TENSORS = ("weight", "first_moment", "second_moment")


def save_checkpoint(layers: Sequence[ModelLayer], root: Union[str, Path], iteration: int) -> Path:
    """Write every layer to a fresh checkpoint directory under ``root`` and return it."""
    directory = Path(root) / f"{uuid.uuid4().hex}_{iteration}"
    try:
        directory.mkdir(parents=True, exist_ok=False)
        for index, layer in enumerate(layers):
            arrays = {}
            for identifier in layer.identifiers:
                tensors = layer[identifier].tensors()
                for name in SAVED_TENSORS:
                    arrays[f"{identifier}.{name}"] = tensors[name]
            np.savez(directory / f"layer{index}.npz", **arrays)
    except OSError as e:
        raise CheckpointError(f"Failed to write checkpoint to {directory}: {e}") from e

    logger.info("Saved checkpoint of %d layers to %s", len(layers), directory)
    return directory


def load_checkpoint(layers: Sequence[ModelLayer], directory: Union[str, Path]) -> None:
    """Copy weights and moments from ``directory`` back into ``layers`` in place."""
    directory = Path(directory)
    for index, layer in enumerate(layers):
        path = directory / f"layer{index}.npz"
        try:
            with np.load(path) as archive:
                for identifier in layer.identifiers:
                    tensors = layer[identifier].tensors()
                    for name in SAVED_TENSORS:
                        key = f"{identifier}.{name}"
                        if key not in archive.files:
                            raise CheckpointError(f"{path} has no entry {key!r}")
                        saved = archive[key]
                        if saved.shape != tensors[name].shape:
                            raise CheckpointError(
                                f"{path}: {key} has shape {saved.shape}, expected {tensors[name].shape}"
                            )
                        copy_into(tensors[name], saved)
        except CheckpointError:
            raise
        except (OSError, ValueError) as e:
            raise CheckpointError(f"Failed to read checkpoint {path}: {e}") from e

    logger.info("Loaded checkpoint of %d layers from %s", len(layers), directory)


class WeightStore:
    """In-memory copies of layer weights, grouped per layer in the order added."""

    def __init__(self):
        self._layers: List[dict] = []

    def add(self, layer: ModelLayer) -> None:
        self._layers.append({identifier: clone(layer.weight(identifier)) for identifier in layer.identifiers})

    def add_range(self, layers: Iterable[ModelLayer]) -> None:
        for layer in layers:
            self.add(layer)

    def restore(self, layers: Sequence[ModelLayer]) -> None:
        if len(layers) != len(self._layers):
            raise ValueError(f"WeightStore holds {len(self._layers)} layers, got {len(layers)}")
        for layer, saved in zip(layers, self._layers):
            for identifier, weight in saved.items():
                copy_into(layer.weight(identifier), weight)

    def clear(self) -> None:
        self._layers.clear()

    def __len__(self) -> int:
        return len(self._layers)
