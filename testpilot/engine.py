"""Workflow engine: runs, tracks, cancels and prices workflow executions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Dict

from .catalog import PREDEFINED_WORKFLOWS
from .config import OrchestratorConfig
from .context import ExecutionContext
from .contracts import WorkflowDefinition
from .errors import (
    IllegalStateError,
    NotFoundError,
    StepExecutionError,
    UnknownWorkflowError,
    ValidationError,
)
from .estimator import CostEstimator
from .execute import RunState, StepExecutor
from .expressions import ExpressionResolver
from .models import CostEstimate, WorkflowCatalog, WorkflowStatus, WorkflowSummary
from .persistence import StoredWorkflow, WorkflowExecution, WorkflowRepository, get_repository
from .persistence.models import ACTIVE_STATUSES, utcnow
from .registry import AgentRegistry
from .validation import WorkflowValidator, parse_definition

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Entry point for running predefined and custom workflows.

    The agent registry and repository are injected; an omitted repository is
    taken from :func:`testpilot.persistence.get_repository`.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        repository: WorkflowRepository | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository or get_repository()
        self._config = config or OrchestratorConfig()
        resolver = ExpressionResolver()
        self._executor = StepExecutor(registry, self._repository, resolver)
        self._validator = WorkflowValidator(registry)
        self._estimator = CostEstimator(self._config, resolver)

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Execution
    async def execute_workflow(
        self, name_or_id: str, input: Dict[str, Any]
    ) -> WorkflowExecution:
        """Run a predefined or stored custom workflow.

        Step failures do not raise: the returned execution is ``failed`` and
        carries the original message in ``error``.

        Raises:
            ValidationError: If ``input`` has no ``projectId``.
            UnknownWorkflowError: If no workflow matches ``name_or_id``.
        """
        self._require_project(input)
        definition = await self._find_definition(name_or_id)
        return await self._run(definition, input)

    async def execute_custom_workflow(
        self, definition: WorkflowDefinition | Mapping[str, Any], input: Dict[str, Any]
    ) -> WorkflowExecution:
        """Run a one-off definition without validating or storing it."""
        self._require_project(input)
        return await self._run(parse_definition(definition), input)

    @staticmethod
    def _require_project(input: Dict[str, Any]) -> None:
        if not isinstance(input, Mapping) or not input.get("projectId"):
            raise ValidationError("projectId is required")

    async def _find_definition(self, name_or_id: str) -> WorkflowDefinition:
        predefined = PREDEFINED_WORKFLOWS.get(name_or_id)
        if predefined is not None:
            return predefined
        stored = await self._repository.find_workflow(name_or_id)
        if stored is None:
            raise UnknownWorkflowError(name_or_id)
        return stored.to_definition()

    async def _run(
        self, definition: WorkflowDefinition, input: Dict[str, Any]
    ) -> WorkflowExecution:
        execution = await self._repository.create_execution(definition.id, input)
        run = RunState(execution.id)
        context = ExecutionContext(dict(input))
        status, error = "completed", None
        try:
            started = await self._repository.update_execution(
                execution.id,
                {"status": "running", "started_at": utcnow()},
                expected_statuses={"pending"},
            )
            if started is None:
                logger.info(f"Execution {execution.id} was cancelled before it started")
            else:
                logger.info(f"Started execution {execution.id} of workflow {definition.id}")
                try:
                    await self._run_steps(definition, context, run)
                except StepExecutionError as exc:
                    logger.error(
                        f"Execution {execution.id} of workflow {definition.id} failed "
                        f"at step {exc.step_id}: {exc.message}"
                    )
                    status, error = "failed", exc.message
            return await self._finish(execution.id, status, context, run, error=error)
        except Exception as exc:
            await self._abort(execution.id, exc)
            raise

    async def _run_steps(
        self, definition: WorkflowDefinition, context: ExecutionContext, run: RunState
    ) -> None:
        for step in definition.steps:
            if await self._is_cancelled(run.execution_id):
                logger.info(f"Execution {run.execution_id} cancelled before step {step.id}")
                return
            await self._executor.execute(step, context, run)

    async def _is_cancelled(self, execution_id: str) -> bool:
        current = await self._repository.find_execution(execution_id)
        return current is not None and current.status == "cancelled"

    async def _finish(
        self,
        execution_id: str,
        status: str,
        context: ExecutionContext,
        run: RunState,
        error: str | None = None,
    ) -> WorkflowExecution:
        results: Dict[str, Any] = {
            "output": context.output_snapshot(),
            "total_cost_usd": run.total_cost_usd,
        }
        terminal = {**results, "status": status, "completed_at": utcnow()}
        if error is not None:
            terminal["error"] = error
        updated = await self._repository.update_execution(
            execution_id, terminal, expected_statuses={"running"}
        )
        if updated is None:
            # cancelled meanwhile: keep that status, still record what was produced
            updated = await self._repository.update_execution(execution_id, results)
        logger.info(
            f"Execution {execution_id} finished with status {updated.status} "
            f"(total_cost_usd={run.total_cost_usd:.6f})"
        )
        return await self._get_execution(execution_id)

    async def _abort(self, execution_id: str, exc: Exception) -> None:
        """Mark a run that broke outside any step as ``failed``, if it is still running."""
        logger.error(f"Execution {execution_id} aborted: {exc}")
        try:
            await self._repository.update_execution(
                execution_id,
                {"status": "failed", "error": str(exc), "completed_at": utcnow()},
                expected_statuses=ACTIVE_STATUSES,
            )
        except Exception:
            logger.exception(f"Could not mark execution {execution_id} as failed")

    async def _get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self._repository.find_execution(execution_id)
        if execution is None:
            raise NotFoundError("Workflow execution", execution_id)
        return execution

    # ------------------------------------------------------------------
    # Tracking
    async def get_workflow_status(self, execution_id: str) -> WorkflowStatus:
        execution = await self._get_execution(execution_id)
        elapsed_ms = 0
        if execution.started_at is not None:
            elapsed = utcnow() - execution.started_at
            elapsed_ms = max(0, int(elapsed.total_seconds() * 1000))
        return WorkflowStatus(
            execution_id=execution.id,
            status=execution.status,
            steps=execution.steps,
            completed_steps=sum(1 for step in execution.steps if step.status == "completed"),
            total_steps=len(execution.steps),
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            elapsed_ms=elapsed_ms,
            total_cost_usd=execution.total_cost_usd,
        )

    async def cancel_workflow(self, execution_id: str) -> WorkflowExecution:
        """Flag an execution as cancelled.

        Only ``pending`` and ``running`` executions move to ``cancelled``; the
        status check and the write are one conditional update. Agent calls
        already in flight finish, and the run stops before its next top-level
        step.
        """
        cancelled = await self._repository.update_execution(
            execution_id,
            {"status": "cancelled", "completed_at": utcnow()},
            expected_statuses=ACTIVE_STATUSES,
        )
        if cancelled is None:
            current = await self._get_execution(execution_id)
            raise IllegalStateError(f"Cannot cancel workflow with status: {current.status}")
        logger.info(f"Cancelled execution {execution_id}")
        return await self._get_execution(execution_id)

    # ------------------------------------------------------------------
    # Definitions
    async def create_custom_workflow(
        self, definition: WorkflowDefinition | Mapping[str, Any]
    ) -> StoredWorkflow:
        validated = self._validator.validate(definition)
        if validated.id in PREDEFINED_WORKFLOWS or (
            await self._repository.find_workflow(validated.id) is not None
        ):
            raise ValidationError(f"Workflow id already exists: {validated.id}")
        stored = await self._repository.create_workflow(validated)
        logger.info(f"Created custom workflow {stored.id} ({stored.name})")
        return stored

    async def list_workflows(self) -> WorkflowCatalog:
        custom = await self._repository.list_custom_workflows()
        return WorkflowCatalog(
            predefined=[_summary(d) for d in PREDEFINED_WORKFLOWS.values()],
            custom=[_summary(stored.to_definition()) for stored in custom],
        )

    async def estimate_cost(self, name_or_id: str, input: Dict[str, Any]) -> CostEstimate:
        definition = await self._find_definition(name_or_id)
        return self._estimator.estimate(definition, input)


def _summary(definition: WorkflowDefinition) -> WorkflowSummary:
    return WorkflowSummary(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        agents=definition.agents(),
    )
