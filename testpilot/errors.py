"""Exception hierarchy for the TestPilot orchestrator."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ValidationError(OrchestratorError):
    """A workflow definition or execution input is malformed."""


class ExpressionError(ValidationError):
    """A ``${...}`` template could not be parsed."""


class UnknownWorkflowError(ValidationError):
    """No predefined or stored workflow matches the requested id."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Unknown workflow: {workflow_id}")
        self.workflow_id = workflow_id


class UnknownAgentError(OrchestratorError):
    """A step references an agent or operation that is not registered."""

    def __init__(self, agent: str, operation: str | None = None) -> None:
        if operation is None:
            message = f"Unknown agent: {agent}"
        else:
            message = f"Agent {agent} does not have operation {operation}"
        super().__init__(message)
        self.agent = agent
        self.operation = operation


class StepExecutionError(OrchestratorError):
    """A step failed while running; ``message`` is the underlying error text."""

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.message = message


class ValidationFailedError(StepExecutionError):
    """A validate step rule did not hold."""


class NotFoundError(OrchestratorError):
    """The requested execution does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} with id '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class IllegalStateError(OrchestratorError):
    """The requested transition is not allowed from the current status."""
