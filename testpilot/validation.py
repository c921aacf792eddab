"""Structural checks for custom workflow definitions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Set

from pydantic import ValidationError as PydanticValidationError

from .contracts import (
    STEP_TYPES,
    AgentStep,
    AggregateStep,
    ConditionStep,
    ParallelStep,
    TransformStep,
    ValidateStep,
    WorkflowDefinition,
    WorkflowStep,
    iter_steps,
)
from .errors import ValidationError
from .expressions import ExpressionResolver
from .registry import AgentRegistry

logger = logging.getLogger(__name__)

_NESTED_FIELDS = ("then", "else", "else_", "branches")


def parse_definition(definition: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
    """Load a raw mapping into a :class:`WorkflowDefinition`.

    Pydantic errors are re-raised as :class:`testpilot.errors.ValidationError`.
    """
    if isinstance(definition, WorkflowDefinition):
        return definition
    try:
        return WorkflowDefinition.model_validate(definition)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid workflow definition: {exc}") from exc


class WorkflowValidator:
    """Reject definitions that could not run as written.

    Checks run in a fixed order and the first failure wins: name, steps,
    step types, agents, duplicate ids, reference cycles, then references to
    steps that have not run yet.
    """

    def __init__(self, registry: AgentRegistry) -> None:
        self._registry = registry

    def validate(self, definition: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
        if isinstance(definition, Mapping):
            self._check_raw(definition)
        parsed = parse_definition(definition)

        if not parsed.name.strip():
            raise ValidationError("Workflow name is required")
        if not parsed.steps:
            raise ValidationError("Workflow must have at least one step")

        self._check_agents(parsed)
        self._check_unique_ids(parsed)
        edges = self._reference_graph(parsed)
        self._check_cycles(edges)
        self._check_order(parsed.steps, set(), edges)

        logger.debug(f"Workflow {parsed.id} ({parsed.name}) passed validation")
        return parsed

    # ------------------------------------------------------------------
    # Raw shape
    def _check_raw(self, raw: Mapping[str, Any]) -> None:
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Workflow name is required")
        steps = raw.get("steps")
        if not steps:
            raise ValidationError("Workflow must have at least one step")
        if not isinstance(steps, list):
            raise ValidationError("Workflow steps must be a list")
        self._check_raw_types(steps)

    def _check_raw_types(self, steps: Iterable[Any]) -> None:
        for step in steps:
            if not isinstance(step, Mapping):
                raise ValidationError(f"Invalid step: {step!r}")
            step_type = step.get("type")
            if step_type not in STEP_TYPES:
                raise ValidationError(f"Invalid step type: {step_type}")
            for field in _NESTED_FIELDS:
                nested = step.get(field)
                if isinstance(nested, list):
                    self._check_raw_types(nested)

    # ------------------------------------------------------------------
    # Semantic checks
    def _check_agents(self, definition: WorkflowDefinition) -> None:
        for step in definition.iter_steps():
            if not isinstance(step, AgentStep):
                continue
            if not self._registry.has_agent(step.agent):
                raise ValidationError(f"Unknown agent: {step.agent}")
            if not self._registry.has_operation(step.agent, step.operation):
                raise ValidationError(f"Unknown operation: {step.agent}.{step.operation}")

    def _check_unique_ids(self, definition: WorkflowDefinition) -> None:
        seen: Set[str] = set()
        for step in definition.iter_steps():
            if step.id in seen:
                raise ValidationError(f"Duplicate step id: {step.id}")
            seen.add(step.id)

    def _reference_graph(self, definition: WorkflowDefinition) -> Dict[str, Set[str]]:
        """Edge ``a -> b`` when step ``a`` reads the output of step ``b``."""
        edges: Dict[str, Set[str]] = {}
        for step in definition.iter_steps():
            edges[step.id] = self._references(step)
        return edges

    @staticmethod
    def _references(step: WorkflowStep) -> Set[str]:
        refs = ExpressionResolver.referenced_steps
        match step:
            case AgentStep():
                return refs(step.input)
            case ConditionStep():
                return refs(step.condition, bare=True)
            case TransformStep():
                return refs(step.transform)
            case AggregateStep():
                return set(step.sources)
            case ValidateStep():
                found: Set[str] = set()
                for rule in step.validation.rules:
                    found |= refs(rule.field, bare=True)
                return found
        return set()

    def _check_cycles(self, edges: Dict[str, Set[str]]) -> None:
        visiting: Set[str] = set()
        done: Set[str] = set()

        def visit(node: str) -> None:
            if node in done:
                return
            if node in visiting:
                raise ValidationError("Circular dependency detected")
            visiting.add(node)
            for target in edges.get(node, ()):
                if target in edges:
                    visit(target)
            visiting.discard(node)
            done.add(node)

        for node in edges:
            visit(node)

    def _check_order(
        self, steps: List[WorkflowStep], visible: Set[str], edges: Dict[str, Set[str]]
    ) -> None:
        visible = set(visible)
        for step in steps:
            for ref in sorted(edges[step.id]):
                if ref not in visible:
                    raise ValidationError(
                        f"Step '{step.id}' references step '{ref}' before it has run"
                    )
            if isinstance(step, ConditionStep):
                self._check_order(step.then, visible, edges)
                self._check_order(step.else_, visible, edges)
            elif isinstance(step, ParallelStep):
                for branch in step.branches:
                    self._check_order([branch], visible, edges)
            visible.update(nested.id for nested in iter_steps([step]))
