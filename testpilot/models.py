"""Result models returned by the workflow engine."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .persistence.models import ExecutionStatus, StepExecutionRecord


class WorkflowStatus(BaseModel):
    """Progress snapshot of one execution."""

    execution_id: str
    status: ExecutionStatus
    steps: List[StepExecutionRecord] = Field(default_factory=list)
    completed_steps: int = 0
    total_steps: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    elapsed_ms: int = 0
    total_cost_usd: float = 0.0


class StepCostEstimate(BaseModel):
    step_id: str
    agent: str
    estimated_cost_usd: float
    estimated_tokens: int


class CostEstimate(BaseModel):
    """Dry-run projection of what a workflow run would cost."""

    workflow_id: str
    estimated_cost_usd: float = 0.0
    estimated_tokens: int = 0
    breakdown: List[StepCostEstimate] = Field(default_factory=list)


class WorkflowSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    agents: List[str] = Field(default_factory=list)


class WorkflowCatalog(BaseModel):
    """Predefined and stored custom workflows."""

    predefined: List[WorkflowSummary] = Field(default_factory=list)
    custom: List[WorkflowSummary] = Field(default_factory=list)
