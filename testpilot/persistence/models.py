"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import WorkflowDefinition, WorkflowStep

ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]

ACTIVE_STATUSES = frozenset({"pending", "running"})
EXECUTION_PATCH_FIELDS = frozenset(
    {"status", "output", "started_at", "completed_at", "error", "total_cost_usd"}
)
STEP_PATCH_FIELDS = frozenset(
    {"status", "output", "error", "cost_usd", "started_at", "completed_at"}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_patch(patch: Dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


class StepExecutionRecord(BaseModel):
    """Record of one step within an execution."""

    id: str
    execution_id: str
    step_id: str
    status: StepStatus = "pending"
    output: Any = None
    error: Optional[str] = None
    cost_usd: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowExecution(BaseModel):
    """One run of a workflow definition against an input."""

    id: str
    workflow_id: str
    status: ExecutionStatus = "pending"
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepExecutionRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    total_cost_usd: float = 0.0


class StoredWorkflow(BaseModel):
    """A custom workflow definition saved through the repository."""

    id: str
    name: str
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def to_definition(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=self.id, name=self.name, description=self.description, steps=self.steps
        )
