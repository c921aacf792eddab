"""Repository abstraction for execution and workflow persistence."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any, Protocol

from ..contracts import WorkflowDefinition
from .models import StepExecutionRecord, StoredWorkflow, WorkflowExecution


class WorkflowRepository(Protocol):
    """Persistence gateway used by the engine and the step executor.

    Implementations provide per-row atomicity; the engine never relies on
    multi-row transactions.  Rejections are raised, never swallowed.
    """

    async def create_execution(
        self, workflow_id: str, input: dict[str, Any]
    ) -> WorkflowExecution:
        """Persist a new execution in ``pending`` status."""

    async def update_execution(
        self,
        execution_id: str,
        patch: dict[str, Any],
        expected_statuses: Collection[str] | None = None,
    ) -> WorkflowExecution | None:
        """Apply ``patch`` to an execution and return the updated record.

        With ``expected_statuses`` the patch is applied atomically only while
        the stored status is one of them; otherwise nothing changes and
        ``None`` is returned.
        """

    async def create_step(self, execution_id: str, step_id: str) -> StepExecutionRecord:
        """Persist a new step record in ``pending`` status."""

    async def update_step(
        self, record_id: str, patch: dict[str, Any]
    ) -> StepExecutionRecord:
        """Apply ``patch`` to a step record and return the updated record."""

    async def find_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Retrieve an execution together with its step records."""

    async def list_executions(self) -> list[WorkflowExecution]:
        """Return all executions, newest first, without step records."""

    async def create_workflow(self, definition: WorkflowDefinition) -> StoredWorkflow:
        """Persist a custom workflow definition."""

    async def find_workflow(self, workflow_id: str) -> StoredWorkflow | None:
        """Retrieve a stored custom workflow by id."""

    async def list_custom_workflows(self) -> list[StoredWorkflow]:
        """Return all stored custom workflows."""
