"""Persistence layer for TestPilot executions and custom workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OrchestratorConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ACTIVE_STATUSES,
    ExecutionStatus,
    StepExecutionRecord,
    StepStatus,
    StoredWorkflow,
    WorkflowExecution,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

DATABASE_URL_VARIABLES = ("TESTPILOT_DATABASE_URL", "DATABASE_URL")

_repository_instance: WorkflowRepository | None = None


def create_repository(database_url: Optional[str]) -> WorkflowRepository:
    """Build a fresh repository for ``database_url``.

    ``None``, an empty string and ``memory://`` select the in-memory backend;
    ``sqlite://<path>`` and ``postgres(ql)://...`` select the database ones.
    """
    if not database_url or database_url == "memory://":
        return InMemoryWorkflowRepository()

    scheme, _, location = database_url.partition("://")
    if scheme == "sqlite" and location:
        return SQLiteWorkflowRepository(location)
    if scheme in ("postgres", "postgresql"):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available, install testpilot[postgres]")
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def _configured_url(config: Optional[OrchestratorConfig]) -> Optional[str]:
    for variable in DATABASE_URL_VARIABLES:
        value = os.getenv(variable)
        if value:
            return value
    return (config or load_config()).database_url


def get_repository(
    database_url: Optional[str] = None, config: Optional[OrchestratorConfig] = None
) -> WorkflowRepository:
    """Return the shared workflow repository.

    The first call (or any call naming ``database_url`` or ``config``) builds
    the repository from the explicit URL, then ``TESTPILOT_DATABASE_URL`` or
    ``DATABASE_URL``, then the loaded configuration. Later bare calls reuse it.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    _repository_instance = create_repository(database_url or _configured_url(config))
    return _repository_instance


def set_repository(repository: WorkflowRepository) -> None:
    """Install ``repository`` as the shared instance returned by :func:`get_repository`."""
    global _repository_instance
    _repository_instance = repository


def reset_repository() -> None:
    global _repository_instance
    _repository_instance = None


__all__ = [
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "create_repository",
    "get_repository",
    "set_repository",
    "reset_repository",
    "ExecutionStatus",
    "StepStatus",
    "ACTIVE_STATUSES",
    "StepExecutionRecord",
    "StoredWorkflow",
    "WorkflowExecution",
]
