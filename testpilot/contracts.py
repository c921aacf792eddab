"""Workflow definition and agent envelope contracts."""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

StepType = Literal["agent", "condition", "parallel", "aggregate", "transform", "validate"]
STEP_TYPES: tuple[str, ...] = (
    "agent",
    "condition",
    "parallel",
    "aggregate",
    "transform",
    "validate",
)


class _Step(BaseModel):
    """Fields shared by every step variant."""

    model_config = ConfigDict(populate_by_name=True)

    id: str

    def children(self) -> List["WorkflowStep"]:
        """Return nested steps, in declaration order."""
        return []

    @property
    def result_key(self) -> str:
        """Key under which the step's output is published."""
        return getattr(self, "output_key", None) or self.id


class AgentStep(_Step):
    """Invoke ``agent.operation`` with the resolved ``input`` template."""

    type: Literal["agent"] = "agent"
    agent: str
    operation: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output_key: Optional[str] = Field(default=None, alias="outputKey")


class ConditionStep(_Step):
    """Run ``then`` or ``else`` depending on ``condition``."""

    type: Literal["condition"] = "condition"
    condition: str
    then: List["WorkflowStep"] = Field(default_factory=list)
    else_: List["WorkflowStep"] = Field(default_factory=list, alias="else")

    def children(self) -> List["WorkflowStep"]:
        return [*self.then, *self.else_]


class ParallelStep(_Step):
    """Run every branch concurrently and join on all of them."""

    type: Literal["parallel"] = "parallel"
    branches: List["WorkflowStep"] = Field(default_factory=list)

    def children(self) -> List["WorkflowStep"]:
        return list(self.branches)


class AggregateStep(_Step):
    """Combine the outputs of earlier steps."""

    type: Literal["aggregate"] = "aggregate"
    sources: List[str] = Field(default_factory=list)
    aggregate_function: Literal["merge", "concat", "sum"] = Field(
        default="merge", alias="aggregateFunction"
    )
    output_key: Optional[str] = Field(default=None, alias="outputKey")


class TransformStep(_Step):
    """Build a new object from independently resolved templates."""

    type: Literal["transform"] = "transform"
    transform: Dict[str, Any] = Field(default_factory=dict)
    output_key: Optional[str] = Field(default=None, alias="outputKey")


class ValidationRule(BaseModel):
    field: str
    condition: str = ""
    message: str


class Validation(BaseModel):
    rules: List[ValidationRule] = Field(default_factory=list)


class ValidateStep(_Step):
    """Hard gate: abort the workflow when a rule does not hold."""

    type: Literal["validate"] = "validate"
    validation: Validation = Field(default_factory=Validation)


WorkflowStep = Annotated[
    Union[AgentStep, ConditionStep, ParallelStep, AggregateStep, TransformStep, ValidateStep],
    Field(discriminator="type"),
]

ConditionStep.model_rebuild()
ParallelStep.model_rebuild()


class WorkflowDefinition(BaseModel):
    """Reusable, named sequence of steps."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)

    def iter_steps(self) -> Iterator[WorkflowStep]:
        """Yield every step, nested ones included, depth first."""
        return iter_steps(self.steps)

    def agents(self) -> List[str]:
        """Names of the agents used, in order of first appearance."""
        seen: List[str] = []
        for step in self.iter_steps():
            if isinstance(step, AgentStep) and step.agent not in seen:
                seen.append(step.agent)
        return seen


def iter_steps(steps: List[WorkflowStep]) -> Iterator[WorkflowStep]:
    for step in steps:
        yield step
        yield from iter_steps(step.children())


class AgentUsage(BaseModel):
    """Token and cost accounting reported by an agent call."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    cache_read_tokens: int = Field(default=0, alias="cacheReadTokens")
    cache_creation_tokens: int = Field(default=0, alias="cacheCreationTokens")
    cost_usd: float = Field(default=0.0, alias="costUsd")
    model: Optional[str] = None
    duration_ms: int = Field(default=0, alias="durationMs")


class AgentResponse(BaseModel):
    """Envelope every agent operation returns."""

    model_config = ConfigDict(populate_by_name=True)

    data: Any = None
    usage: AgentUsage = Field(default_factory=AgentUsage)
