"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
import uuid
from collections.abc import Collection
from typing import Any

import asyncpg

from ..contracts import WorkflowDefinition
from ..errors import NotFoundError
from .models import (
    EXECUTION_PATCH_FIELDS,
    STEP_PATCH_FIELDS,
    StepExecutionRecord,
    StoredWorkflow,
    WorkflowExecution,
    check_patch,
)
from .repository import WorkflowRepository

_JSON_COLUMNS = frozenset({"input", "output", "steps"})


def _to_column(name: str, value: Any) -> Any:
    if value is not None and name in _JSON_COLUMNS:
        return json.dumps(value, default=str)
    return value


def _from_record(record: asyncpg.Record) -> dict[str, Any]:
    data = dict(record)
    for name in _JSON_COLUMNS & data.keys():
        if data[name] is not None:
            data[name] = json.loads(data[name])
    data.pop("seq", None)
    return data


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist executions and custom workflows using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input JSONB NOT NULL,
                output JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                error TEXT,
                total_cost_usd DOUBLE PRECISION NOT NULL DEFAULT 0
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                execution_id TEXT NOT NULL REFERENCES executions(id),
                step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                output JSONB,
                error TEXT,
                cost_usd DOUBLE PRECISION NOT NULL DEFAULT 0,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                steps JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    async def _update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
        statuses: Collection[str] | None = None,
    ) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            if not patch:
                return await conn.fetchrow(f"SELECT * FROM {table} WHERE id = $1", record_id)
            names = list(patch)
            assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(names, start=2))
            params = [_to_column(name, patch[name]) for name in names]
            where = "id = $1"
            if statuses is not None:
                params.append(sorted(statuses))
                where += f" AND status = ANY(${len(params) + 1}::text[])"
            return await conn.fetchrow(
                f"UPDATE {table} SET {assignments} WHERE {where} RETURNING *",
                record_id,
                *params,
            )
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def create_execution(
        self, workflow_id: str, input: dict[str, Any]
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=str(uuid.uuid4()), workflow_id=workflow_id, input=dict(input)
        )
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO executions (id, workflow_id, status, input, output, created_at) "
                "VALUES ($1, $2, $3, $4, $5, $6)",
                execution.id,
                workflow_id,
                execution.status,
                _to_column("input", execution.input),
                _to_column("output", execution.output),
                execution.created_at,
            )
        finally:
            await conn.close()
        return execution

    async def update_execution(
        self,
        execution_id: str,
        patch: dict[str, Any],
        expected_statuses: Collection[str] | None = None,
    ) -> WorkflowExecution | None:
        check_patch(patch, EXECUTION_PATCH_FIELDS)
        record = await self._update("executions", execution_id, patch, expected_statuses)
        if record is not None:
            return WorkflowExecution(**_from_record(record))
        if expected_statuses is not None:
            existing = await self._update("executions", execution_id, {})
            if existing is not None:
                return None
        raise NotFoundError("Workflow execution", execution_id)

    async def create_step(self, execution_id: str, step_id: str) -> StepExecutionRecord:
        record = StepExecutionRecord(
            id=str(uuid.uuid4()), execution_id=execution_id, step_id=step_id
        )
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO step_executions (id, execution_id, step_id, status) VALUES ($1, $2, $3, $4)",
                record.id,
                execution_id,
                step_id,
                record.status,
            )
        finally:
            await conn.close()
        return record

    async def update_step(
        self, record_id: str, patch: dict[str, Any]
    ) -> StepExecutionRecord:
        check_patch(patch, STEP_PATCH_FIELDS)
        record = await self._update("step_executions", record_id, patch)
        if record is None:
            raise NotFoundError("Step execution", record_id)
        return StepExecutionRecord(**_from_record(record))

    async def find_execution(self, execution_id: str) -> WorkflowExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM executions WHERE id = $1", execution_id)
            if row is None:
                return None
            step_rows = await conn.fetch(
                "SELECT * FROM step_executions WHERE execution_id = $1 ORDER BY seq",
                execution_id,
            )
        finally:
            await conn.close()
        steps = [StepExecutionRecord(**_from_record(r)) for r in step_rows]
        return WorkflowExecution(**_from_record(row), steps=steps)

    async def list_executions(self) -> list[WorkflowExecution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT * FROM executions ORDER BY created_at DESC")
        finally:
            await conn.close()
        return [WorkflowExecution(**_from_record(row)) for row in rows]

    async def create_workflow(self, definition: WorkflowDefinition) -> StoredWorkflow:
        stored = StoredWorkflow(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            steps=definition.steps,
        )
        steps = definition.model_dump(mode="json", by_alias=True)["steps"]
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workflows (id, name, description, steps, created_at) VALUES ($1, $2, $3, $4, $5)",
                stored.id,
                stored.name,
                stored.description,
                _to_column("steps", steps),
                stored.created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ValueError(f"Workflow {stored.id} already exists") from exc
        finally:
            await conn.close()
        return stored

    async def find_workflow(self, workflow_id: str) -> StoredWorkflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
        finally:
            await conn.close()
        return StoredWorkflow(**_from_record(row)) if row else None

    async def list_custom_workflows(self) -> list[StoredWorkflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT * FROM workflows ORDER BY created_at")
        finally:
            await conn.close()
        return [StoredWorkflow(**_from_record(row)) for row in rows]
