"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import uuid
from collections.abc import Collection
from typing import Any, Dict, List

from ..contracts import WorkflowDefinition
from ..errors import NotFoundError
from .models import (
    EXECUTION_PATCH_FIELDS,
    STEP_PATCH_FIELDS,
    StepExecutionRecord,
    StoredWorkflow,
    WorkflowExecution,
    check_patch,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store executions and custom workflows in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, WorkflowExecution] = {}
        self._steps: Dict[str, StepExecutionRecord] = {}
        self._workflows: Dict[str, StoredWorkflow] = {}

    # ------------------------------------------------------------------
    async def create_execution(
        self, workflow_id: str, input: dict[str, Any]
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=str(uuid.uuid4()), workflow_id=workflow_id, input=dict(input)
        )
        self._executions[execution.id] = execution
        return execution.model_copy(deep=True)

    async def update_execution(
        self,
        execution_id: str,
        patch: dict[str, Any],
        expected_statuses: Collection[str] | None = None,
    ) -> WorkflowExecution | None:
        check_patch(patch, EXECUTION_PATCH_FIELDS)
        execution = self._executions.get(execution_id)
        if execution is None:
            raise NotFoundError("Workflow execution", execution_id)
        if expected_statuses is not None and execution.status not in expected_statuses:
            return None
        updated = execution.model_copy(update=patch, deep=True)
        self._executions[execution_id] = updated
        return updated.model_copy(deep=True)

    async def create_step(self, execution_id: str, step_id: str) -> StepExecutionRecord:
        if execution_id not in self._executions:
            raise NotFoundError("Workflow execution", execution_id)
        record = StepExecutionRecord(
            id=str(uuid.uuid4()), execution_id=execution_id, step_id=step_id
        )
        self._steps[record.id] = record
        return record.model_copy(deep=True)

    async def update_step(
        self, record_id: str, patch: dict[str, Any]
    ) -> StepExecutionRecord:
        check_patch(patch, STEP_PATCH_FIELDS)
        record = self._steps.get(record_id)
        if record is None:
            raise NotFoundError("Step execution", record_id)
        updated = record.model_copy(update=patch, deep=True)
        self._steps[record_id] = updated
        return updated.model_copy(deep=True)

    async def find_execution(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return None
        steps = [
            step.model_copy(deep=True)
            for step in self._steps.values()
            if step.execution_id == execution_id
        ]
        return execution.model_copy(update={"steps": steps}, deep=True)

    async def list_executions(self) -> list[WorkflowExecution]:
        executions = sorted(
            self._executions.values(), key=lambda e: e.created_at, reverse=True
        )
        return [execution.model_copy(deep=True) for execution in executions]

    async def create_workflow(self, definition: WorkflowDefinition) -> StoredWorkflow:
        if definition.id in self._workflows:
            raise ValueError(f"Workflow {definition.id} already exists")
        stored = StoredWorkflow(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            steps=definition.steps,
        )
        self._workflows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_workflow(self, workflow_id: str) -> StoredWorkflow | None:
        stored = self._workflows.get(workflow_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_custom_workflows(self) -> List[StoredWorkflow]:
        return [stored.model_copy(deep=True) for stored in self._workflows.values()]
