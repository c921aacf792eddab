"""Execution context threaded through a workflow run."""

from __future__ import annotations

from collections import ChainMap
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class ExecutionContext:
    """Accumulated input and step outputs visible to expression resolution.

    ``steps`` maps step ids to ``{"output": value}`` and ``outputs`` maps
    result keys (``output_key`` or step id) to values.  Both only ever grow.
    A forked context reads through to its parent and keeps its own writes
    apart, so concurrent branches never touch shared state; the parent
    absorbs a fork's writes with :meth:`merge` once the branch is done.
    """

    def __init__(
        self, input: Dict[str, Any], parent: Optional["ExecutionContext"] = None
    ) -> None:
        self.input = input
        self._parent = parent
        self._steps: Dict[str, Dict[str, Any]] = {}
        self._outputs: Dict[str, Any] = {}
        self._keys: Dict[str, str] = {}

    @property
    def steps(self) -> Mapping[str, Dict[str, Any]]:
        if self._parent is None:
            return MappingProxyType(self._steps)
        return MappingProxyType(ChainMap(self._steps, self._parent.steps))

    @property
    def outputs(self) -> Mapping[str, Any]:
        if self._parent is None:
            return MappingProxyType(self._outputs)
        return MappingProxyType(ChainMap(self._outputs, self._parent.outputs))

    def record(self, step_id: str, output: Any, key: Optional[str] = None) -> None:
        """Publish a step's output; ``key`` also exposes it in ``outputs``."""
        self._steps[step_id] = {"output": output}
        if key is not None:
            self._outputs[key] = output
            self._keys[step_id] = key

    def key_for(self, step_id: str) -> str:
        """Result key a step published under, defaulting to its id."""
        if step_id in self._keys:
            return self._keys[step_id]
        if self._parent is not None:
            return self._parent.key_for(step_id)
        return step_id

    def fork(self) -> "ExecutionContext":
        return ExecutionContext(self.input, parent=self)

    def merge(self, child: "ExecutionContext") -> None:
        self._steps.update(child._steps)
        self._outputs.update(child._outputs)
        self._keys.update(child._keys)

    def output_snapshot(self) -> Dict[str, Any]:
        """Plain dict of every keyed result, suitable for persisting."""
        return dict(self.outputs)
