"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from collections.abc import Collection
from datetime import datetime
from pathlib import Path
from typing import Any

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
_TIME_COLUMNS = frozenset({"created_at", "started_at", "completed_at"})


def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _JSON_COLUMNS:
        return json.dumps(value, default=str)
    if name in _TIME_COLUMNS:
        return value.isoformat()
    return value


def _from_row(row: sqlite3.Row) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for name in row.keys():
        value = row[name]
        if value is not None and name in _JSON_COLUMNS:
            value = json.loads(value)
        elif value is not None and name in _TIME_COLUMNS:
            value = datetime.fromisoformat(value)
        data[name] = value
    return data


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist executions and custom workflows using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # parallel branches write step records from several worker threads
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input TEXT NOT NULL,
                output TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                error TEXT,
                total_cost_usd REAL NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                execution_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                output TEXT,
                error TEXT,
                cost_usd REAL NOT NULL DEFAULT 0,
                started_at TEXT,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                steps TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    async def _update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
        statuses: Collection[str] | None = None,
    ) -> sqlite3.Row | None:
        """Apply ``patch`` and return the row.

        ``None`` means the row is missing, or its status was not in ``statuses``.
        """
        where, guard = "id = ?", []
        if statuses is not None:
            guard = sorted(statuses)
            where += f" AND status IN ({', '.join('?' for _ in guard)})"
        if patch:
            assignments = ", ".join(f"{name} = ?" for name in patch)
            params = [_to_column(name, value) for name, value in patch.items()]
            changed = await asyncio.to_thread(
                self._execute,
                f"UPDATE {table} SET {assignments} WHERE {where}",
                *params,
                record_id,
                *guard,
            )
            if statuses is not None and not changed:
                return None
        return await asyncio.to_thread(
            self._fetchone, f"SELECT * FROM {table} WHERE id = ?", record_id
        )

    @staticmethod
    def _step_from_row(row: sqlite3.Row) -> StepExecutionRecord:
        data = _from_row(row)
        data.pop("seq", None)
        return StepExecutionRecord(**data)

    # ------------------------------------------------------------------
    # Repository API
    async def create_execution(
        self, workflow_id: str, input: dict[str, Any]
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=str(uuid.uuid4()), workflow_id=workflow_id, input=dict(input)
        )
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO executions (id, workflow_id, status, input, output, created_at, total_cost_usd) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            execution.id,
            workflow_id,
            execution.status,
            _to_column("input", execution.input),
            _to_column("output", execution.output),
            _to_column("created_at", execution.created_at),
            0.0,
        )
        return execution

    async def update_execution(
        self,
        execution_id: str,
        patch: dict[str, Any],
        expected_statuses: Collection[str] | None = None,
    ) -> WorkflowExecution | None:
        check_patch(patch, EXECUTION_PATCH_FIELDS)
        row = await self._update("executions", execution_id, patch, expected_statuses)
        if row is not None:
            return WorkflowExecution(**_from_row(row))
        if expected_statuses is not None:
            existing = await asyncio.to_thread(
                self._fetchone, "SELECT id FROM executions WHERE id = ?", execution_id
            )
            if existing is not None:
                return None
        raise NotFoundError("Workflow execution", execution_id)

    async def create_step(self, execution_id: str, step_id: str) -> StepExecutionRecord:
        record = StepExecutionRecord(
            id=str(uuid.uuid4()), execution_id=execution_id, step_id=step_id
        )
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO step_executions (id, execution_id, step_id, status, cost_usd) VALUES (?, ?, ?, ?, ?)",
            record.id,
            execution_id,
            step_id,
            record.status,
            0.0,
        )
        return record

    async def update_step(
        self, record_id: str, patch: dict[str, Any]
    ) -> StepExecutionRecord:
        check_patch(patch, STEP_PATCH_FIELDS)
        row = await self._update("step_executions", record_id, patch)
        if row is None:
            raise NotFoundError("Step execution", record_id)
        return self._step_from_row(row)

    async def find_execution(self, execution_id: str) -> WorkflowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM executions WHERE id = ?", execution_id
        )
        if not row:
            return None
        step_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM step_executions WHERE execution_id = ? ORDER BY seq",
            execution_id,
        )
        steps = [self._step_from_row(r) for r in step_rows]
        return WorkflowExecution(**_from_row(row), steps=steps)

    async def list_executions(self) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM executions ORDER BY created_at DESC"
        )
        return [WorkflowExecution(**_from_row(row)) for row in rows]

    async def create_workflow(self, definition: WorkflowDefinition) -> StoredWorkflow:
        stored = StoredWorkflow(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            steps=definition.steps,
        )
        steps = definition.model_dump(mode="json", by_alias=True)["steps"]
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO workflows (id, name, description, steps, created_at) VALUES (?, ?, ?, ?, ?)",
                stored.id,
                stored.name,
                stored.description,
                _to_column("steps", steps),
                _to_column("created_at", stored.created_at),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Workflow {stored.id} already exists") from exc
        return stored

    async def find_workflow(self, workflow_id: str) -> StoredWorkflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        return StoredWorkflow(**_from_row(row)) if row else None

    async def list_custom_workflows(self) -> list[StoredWorkflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM workflows ORDER BY created_at"
        )
        return [StoredWorkflow(**_from_row(row)) for row in rows]
