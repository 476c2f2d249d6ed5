"""
Shared workflow context: stage id to committed result, written once per stage.
"""

import asyncio
from types import MappingProxyType
from typing import Any

from ..exceptions import ConductorError
from .models import TaskResult


class ContextWriteError(ConductorError):
    """A stage tried to commit a second result."""


class WorkflowContext:
    def __init__(self, variables: dict[str, Any] | None = None):
        self.variables = MappingProxyType(dict(variables or {}))
        self._results: dict[str, TaskResult] = {}
        self._lock = asyncio.Lock()

    async def commit(self, stage_id: str, result: TaskResult) -> None:
        async with self._lock:
            if stage_id in self._results:
                raise ContextWriteError(f"Stage '{stage_id}' already committed a result")
            self._results[stage_id] = result

    def get(self, stage_id: str) -> TaskResult | None:
        return self._results.get(stage_id)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._results

    def results(self, stage_ids: tuple[str, ...] | None = None) -> dict[str, TaskResult]:
        """Snapshot of committed results, optionally limited to some stages."""
        if stage_ids is None:
            return dict(self._results)
        return {sid: self._results[sid] for sid in stage_ids if sid in self._results}

    def template_values(self, stage_ids: tuple[str, ...]) -> dict[str, str]:
        """Variables plus the given upstream outputs, for prompt rendering."""
        values = {k: str(v) for k, v in self.variables.items()}
        for sid, result in self.results(stage_ids).items():
            values[sid] = result.output
        return values
