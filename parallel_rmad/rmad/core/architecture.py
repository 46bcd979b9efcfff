# rmad/core/architecture.py
"""
Architecture descriptor.

The declarative structure a graph is built from, read once at construction
time and immutable afterwards. The wire format is JSON with camelCase keys:

    {
      "timeSteps": [
        {
          "startOperations": [{"id": "...", "type": "...", "inputs": [...]}],
          "layers": [{"operations": [...]}],
          "endOperations": [...]
        }
      ]
    }

Operation specs may also carry ``setResultTo`` (a result-binding name) and
``gradientResultTo`` (one gradient name or null per input).
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import GraphBuildError

_SUBSCRIPT = re.compile(r"\[[^\]]*\]")


def base_name(token: str) -> str:
    """Strip bracketed subscripts: ``"h[t-1]"`` -> ``"h"``."""
    name = _SUBSCRIPT.sub("", token).strip()
    if not name:
        raise GraphBuildError(f"Input token {token!r} has an empty base name")
    return name


@dataclass(frozen=True)
class OperationSpec:
    id: str
    type: str
    inputs: Tuple[str, ...] = ()
    set_result_to: Optional[str] = None
    gradient_result_to: Tuple[Optional[str], ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationSpec":
        if data is None:
            raise GraphBuildError("Operation spec must not be None")
        if not isinstance(data, Mapping):
            raise GraphBuildError(f"Operation spec must be a mapping, got {type(data).__name__}")
        op_id = data.get("id")
        op_type = data.get("type")
        if not op_id:
            raise GraphBuildError(f"Operation spec is missing 'id': {dict(data)!r}")
        if not op_type:
            raise GraphBuildError(f"Operation spec {op_id!r} is missing 'type'")
        inputs = data.get("inputs") or ()
        if isinstance(inputs, str) or not all(isinstance(i, str) for i in inputs):
            raise GraphBuildError(f"Operation spec {op_id!r} must list 'inputs' as strings")
        gradient_result_to = data.get("gradientResultTo") or ()
        if isinstance(gradient_result_to, str):
            raise GraphBuildError(f"Operation spec {op_id!r} must list 'gradientResultTo' as an array")
        return cls(
            id=str(op_id),
            type=str(op_type),
            inputs=tuple(inputs),
            set_result_to=data.get("setResultTo"),
            gradient_result_to=tuple(gradient_result_to),
        )


@dataclass(frozen=True)
class LayerSpec:
    operations: Tuple[OperationSpec, ...] = ()


@dataclass(frozen=True)
class TimeStepSpec:
    start_operations: Tuple[OperationSpec, ...] = ()
    layers: Tuple[LayerSpec, ...] = ()
    end_operations: Tuple[OperationSpec, ...] = ()

    @property
    def operation_count(self) -> int:
        return (
            len(self.start_operations)
            + sum(len(layer.operations) for layer in self.layers)
            + len(self.end_operations)
        )


@dataclass(frozen=True)
class Architecture:
    time_steps: Tuple[TimeStepSpec, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Architecture":
        if data is None:
            raise GraphBuildError("Architecture must not be None")
        if not isinstance(data, Mapping):
            raise GraphBuildError(f"Architecture must be a mapping, got {type(data).__name__}")
        if "timeSteps" not in data:
            raise GraphBuildError("Architecture is missing 'timeSteps'")
        time_steps: List[TimeStepSpec] = []
        for i, ts in enumerate(_entries(data["timeSteps"], "timeSteps")):
            if not isinstance(ts, Mapping):
                raise GraphBuildError(f"timeSteps[{i}] must be a mapping, got {type(ts).__name__}")
            layers = []
            for j, layer in enumerate(_entries(ts.get("layers"), f"timeSteps[{i}].layers")):
                if not isinstance(layer, Mapping):
                    raise GraphBuildError(
                        f"timeSteps[{i}].layers[{j}] must be a mapping, got {type(layer).__name__}"
                    )
                operations = _ops(layer.get("operations"), f"timeSteps[{i}].layers[{j}].operations")
                layers.append(LayerSpec(operations=operations))
            time_steps.append(
                TimeStepSpec(
                    start_operations=_ops(ts.get("startOperations"), f"timeSteps[{i}].startOperations"),
                    layers=tuple(layers),
                    end_operations=_ops(ts.get("endOperations"), f"timeSteps[{i}].endOperations"),
                )
            )
        return cls(time_steps=tuple(time_steps))

    @classmethod
    def from_json(cls, source: Union[str, Path]) -> "Architecture":
        """Parse from a JSON file path or a JSON string."""
        if isinstance(source, Path) or (isinstance(source, str) and not source.lstrip().startswith("{")):
            text = Path(source).read_text(encoding="utf-8")
        else:
            text = source
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GraphBuildError(f"Architecture JSON is malformed: {e}") from e
        return cls.from_dict(data)


def _entries(items: Any, where: str) -> Sequence[Any]:
    if items is None:
        return ()
    if not isinstance(items, (list, tuple)):
        raise GraphBuildError(f"{where} must be an array, got {type(items).__name__}")
    return items


def _ops(items: Optional[List[Dict[str, Any]]], where: str) -> Tuple[OperationSpec, ...]:
    return tuple(OperationSpec.from_dict(item) for item in _entries(items, where))
