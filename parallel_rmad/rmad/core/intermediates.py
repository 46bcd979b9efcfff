# rmad/core/intermediates.py
from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

import numpy as np

from .errors import SnapshotNotFoundError
from .tensor import clone, copy_into

if TYPE_CHECKING:
    from .node import OperationNode, SpecificId

logger = logging.getLogger(__name__)


@dataclass
class NodeSnapshot:
    output: Optional[np.ndarray] = None
    cache: Dict[str, Any] = field(default_factory=dict)


def _copy_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return clone(value)
    return copy.deepcopy(value)


def _restore_value(current: Any, saved: Any) -> Any:
    """Copy ``saved`` into ``current`` when shapes agree, otherwise return a fresh copy."""
    if (
        isinstance(current, np.ndarray)
        and isinstance(saved, np.ndarray)
        and current.shape == saved.shape
        and current.flags.writeable
    ):
        copy_into(current, saved)
        return current
    return _copy_value(saved)


class IntermediatesStore:
    """
    Named snapshots of every node's working tensors.

    ``store`` deep-copies outputs and operation caches under an id;
    ``restore`` writes them back in place and drops the snapshot. Several
    snapshots may coexist, so a group of inputs can be run forward one after
    another and replayed backward later.
    """

    def __init__(self):
        self._snapshots: Dict[str, Dict["SpecificId", NodeSnapshot]] = {}
        self._lock = threading.Lock()

    def store(self, nodes: Iterable["OperationNode"], snapshot_id: Optional[str] = None) -> str:
        snapshot_id = snapshot_id or uuid.uuid4().hex
        captured = {
            node.key: NodeSnapshot(
                output=None if node.output is None else clone(node.output),
                cache={name: _copy_value(v) for name, v in node.operation.cache.items()},
            )
            for node in nodes
        }
        with self._lock:
            if snapshot_id in self._snapshots:
                logger.warning("Overwriting intermediates snapshot %s", snapshot_id)
            self._snapshots[snapshot_id] = captured
        logger.debug("Stored intermediates snapshot %s (%d nodes)", snapshot_id, len(captured))
        return snapshot_id

    def restore(self, nodes: Iterable["OperationNode"], snapshot_id: str) -> None:
        with self._lock:
            if snapshot_id not in self._snapshots:
                raise SnapshotNotFoundError(snapshot_id)
            captured = self._snapshots.pop(snapshot_id)

        for node in nodes:
            snap = captured.get(node.key)
            if snap is None:
                continue
            if snap.output is None:
                node.output = None
            else:
                node.output = _restore_value(node.output, snap.output)
            cache = node.operation.cache
            for name in list(cache):
                if name not in snap.cache:
                    del cache[name]
            for name, saved in snap.cache.items():
                cache[name] = _restore_value(cache.get(name), saved)
        logger.debug("Restored intermediates snapshot %s", snapshot_id)

    def discard(self, snapshot_id: str) -> bool:
        with self._lock:
            return self._snapshots.pop(snapshot_id, None) is not None

    @property
    def ids(self) -> List[str]:
        with self._lock:
            return list(self._snapshots)

    def __contains__(self, snapshot_id: object) -> bool:
        with self._lock:
            return snapshot_id in self._snapshots

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)
