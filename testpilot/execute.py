"""Step execution for workflow runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from numbers import Number
from typing import Any, Dict, List, Optional

from .context import ExecutionContext
from .contracts import (
    AgentResponse,
    AgentStep,
    AggregateStep,
    ConditionStep,
    ParallelStep,
    TransformStep,
    ValidateStep,
    WorkflowStep,
    iter_steps,
)
from .errors import StepExecutionError, ValidationFailedError
from .expressions import ExpressionResolver
from .persistence import WorkflowRepository
from .persistence.models import StepExecutionRecord, utcnow
from .registry import AgentRegistry

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    output: Any = None
    cost_usd: float = 0.0


class RunState:
    """Cost ledger for one execution, or for one parallel branch of it.

    Costs added to a branch ledger roll up into every ancestor ledger, so the
    execution total keeps what succeeded branches spent even when a sibling
    fails.
    """

    def __init__(self, execution_id: str, parent: Optional["RunState"] = None) -> None:
        self.execution_id = execution_id
        self.total_cost_usd = 0.0
        self._parent = parent

    def add_cost(self, amount: float) -> None:
        state: Optional[RunState] = self
        while state is not None:
            state.total_cost_usd += amount
            state = state._parent

    def fork(self) -> "RunState":
        return RunState(self.execution_id, parent=self)


class StepExecutor:
    """Executes one step of any variant, recording it through the repository."""

    def __init__(
        self,
        registry: AgentRegistry,
        repository: WorkflowRepository,
        resolver: ExpressionResolver | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._resolver = resolver or ExpressionResolver()

    async def execute(
        self, step: WorkflowStep, context: ExecutionContext, run: RunState
    ) -> StepResult:
        """Run ``step`` and return its output and the cost it incurred.

        Raises:
            StepExecutionError: If the step, a nested step, an agent call or
                the repository fails. The original message is kept verbatim.
        """
        try:
            return await self._execute_recorded(step, context, run)
        except StepExecutionError:
            raise
        except Exception as exc:
            raise StepExecutionError(step.id, str(exc)) from exc

    async def _execute_recorded(
        self, step: WorkflowStep, context: ExecutionContext, run: RunState
    ) -> StepResult:
        record = await self._repository.create_step(run.execution_id, step.id)
        await self._repository.update_step(
            record.id, {"status": "running", "started_at": utcnow()}
        )
        cost_before = run.total_cost_usd
        logger.debug(f"Starting {step.type} step {step.id} for execution {run.execution_id}")

        try:
            output = await self._dispatch(step, context, run)
        except Exception as exc:
            message = exc.message if isinstance(exc, StepExecutionError) else str(exc)
            logger.error(f"Step {step.id} failed for execution {run.execution_id}: {message}")
            await self._finish(record, "failed", cost=run.total_cost_usd - cost_before, error=message)
            if isinstance(exc, StepExecutionError):
                raise
            raise StepExecutionError(step.id, message) from exc

        result = StepResult(output=output, cost_usd=run.total_cost_usd - cost_before)
        await self._finish(record, "completed", cost=result.cost_usd, output=output)
        return result

    async def _finish(
        self,
        record: StepExecutionRecord,
        status: str,
        cost: float,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        patch: Dict[str, Any] = {
            "status": status,
            "completed_at": utcnow(),
            "cost_usd": cost,
        }
        if output is not None:
            patch["output"] = output
        if error is not None:
            patch["error"] = error
        await self._repository.update_step(record.id, patch)

    async def _dispatch(
        self, step: WorkflowStep, context: ExecutionContext, run: RunState
    ) -> Any:
        match step:
            case AgentStep():
                return await self._run_agent(step, context, run)
            case ConditionStep():
                return await self._run_condition(step, context, run)
            case ParallelStep():
                return await self._run_parallel(step, context, run)
            case AggregateStep():
                return self._run_aggregate(step, context)
            case TransformStep():
                return self._run_transform(step, context)
            case ValidateStep():
                return self._run_validate(step, context)
        raise TypeError(f"Unsupported step type: {type(step).__name__}")

    # ------------------------------------------------------------------
    # Step variants
    async def _run_agent(
        self, step: AgentStep, context: ExecutionContext, run: RunState
    ) -> Any:
        operation = self._registry.get(step.agent, step.operation)
        payload = self._resolver.resolve(step.input, context)

        raw = await operation(payload)
        response = raw if isinstance(raw, AgentResponse) else AgentResponse.model_validate(raw)

        run.add_cost(response.usage.cost_usd)
        context.record(step.id, response.data, step.result_key)
        logger.info(
            f"Agent {step.agent}.{step.operation} completed step {step.id} "
            f"for execution {run.execution_id} (cost_usd={response.usage.cost_usd:.6f})"
        )
        return response.data

    async def _run_condition(
        self, step: ConditionStep, context: ExecutionContext, run: RunState
    ) -> Dict[str, Any]:
        taken = self._resolver.evaluate_condition(step.condition, context)
        chosen, skipped = (step.then, step.else_) if taken else (step.else_, step.then)
        logger.debug(
            f"Condition {step.id} evaluated to {taken}, "
            f"running {'then' if taken else 'else'} branch"
        )
        await self._skip(skipped, run)

        outputs: Dict[str, Any] = {}
        for child in chosen:
            result = await self.execute(child, context, run)
            if not isinstance(child, ValidateStep):
                outputs[child.result_key] = result.output
        context.record(step.id, outputs)
        return outputs

    async def _skip(self, steps: List[WorkflowStep], run: RunState) -> None:
        for skipped in iter_steps(steps):
            record = await self._repository.create_step(run.execution_id, skipped.id)
            await self._repository.update_step(
                record.id, {"status": "skipped", "completed_at": utcnow(), "cost_usd": 0.0}
            )

    async def _run_parallel(
        self, step: ParallelStep, context: ExecutionContext, run: RunState
    ) -> Dict[str, Any]:
        forks = [context.fork() for _ in step.branches]
        results = await asyncio.gather(
            *(
                self.execute(branch, fork, run.fork())
                for branch, fork in zip(step.branches, forks)
            ),
            return_exceptions=True,
        )

        outputs: Dict[str, Any] = {}
        failures: List[BaseException] = []
        for branch, fork, result in zip(step.branches, forks, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append(result)
                continue
            context.merge(fork)
            if not isinstance(branch, ValidateStep):
                outputs[branch.result_key] = result.output

        if failures:
            first = failures[0]
            message = first.message if isinstance(first, StepExecutionError) else str(first)
            logger.warning(
                f"{len(failures)} of {len(step.branches)} branches failed in parallel step {step.id}"
            )
            raise StepExecutionError(step.id, message) from first

        context.record(step.id, outputs)
        return outputs

    def _run_aggregate(self, step: AggregateStep, context: ExecutionContext) -> Any:
        collected: Dict[str, Any] = {}
        for source in step.sources:
            entry = context.steps.get(source)
            if entry is None:
                logger.debug(f"Aggregate {step.id} skipping source {source} with no output")
                continue
            collected[context.key_for(source)] = entry["output"]

        if step.aggregate_function == "merge":
            value: Any = collected
        elif step.aggregate_function == "concat":
            value = []
            for output in collected.values():
                if isinstance(output, list):
                    value.extend(output)
                elif output is not None:
                    value.append(output)
        else:
            value = 0
            for source, output in collected.items():
                if output is None:
                    continue
                if isinstance(output, bool) or not isinstance(output, Number):
                    raise ValueError(f"Cannot sum non-numeric output of {source}")
                value += output

        context.record(step.id, value, step.result_key)
        return value

    def _run_transform(self, step: TransformStep, context: ExecutionContext) -> Dict[str, Any]:
        transformed = {
            key: self._resolver.resolve(template, context)
            for key, template in step.transform.items()
        }
        context.record(step.id, transformed, step.result_key)
        return transformed

    def _run_validate(self, step: ValidateStep, context: ExecutionContext) -> None:
        for rule in step.validation.rules:
            value = self._resolver.evaluate_expression(rule.field, context)
            if not self._resolver.evaluate_predicate(rule.condition, value):
                logger.info(f"Validation rule on {rule.field} failed in step {step.id}")
                raise ValidationFailedError(step.id, rule.message)
        return None
