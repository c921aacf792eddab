"""TestPilot: workflow orchestration for AI testing agents."""

from .contracts import AgentResponse, AgentUsage, WorkflowDefinition
from .engine import WorkflowEngine
from .errors import (
    IllegalStateError,
    NotFoundError,
    OrchestratorError,
    StepExecutionError,
    UnknownAgentError,
    UnknownWorkflowError,
    ValidationError,
    ValidationFailedError,
)
from .estimator import CostEstimator
from .expressions import ExpressionResolver
from .persistence import get_repository
from .registry import AgentRegistry
from .validation import WorkflowValidator

__version__ = "0.1.0"
__all__ = [
    "AgentRegistry",
    "AgentResponse",
    "AgentUsage",
    "CostEstimator",
    "ExpressionResolver",
    "IllegalStateError",
    "NotFoundError",
    "OrchestratorError",
    "StepExecutionError",
    "UnknownAgentError",
    "UnknownWorkflowError",
    "ValidationError",
    "ValidationFailedError",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowValidator",
    "get_repository",
]
