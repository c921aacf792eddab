"""Command line interface for running TestPilot workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

import typer
import yaml

from testpilot.agent import build_default_registry
from testpilot.config import load_config
from testpilot.engine import WorkflowEngine
from testpilot.errors import OrchestratorError
from testpilot.persistence import WorkflowExecution, get_repository

app = typer.Typer(help="CLI for TestPilot workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for defining and running workflows")
execution_app = typer.Typer(help="Commands for inspecting workflow executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")

INPUT_OPTION = typer.Option("{}", "--input", "-i", help="Workflow input as a JSON object")


@app.callback()
def main() -> None:
    """TestPilot CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine() -> WorkflowEngine:
    config = load_config()
    return WorkflowEngine(build_default_registry(config), get_repository(), config)


def _parse_input(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Input is not valid JSON: {exc}")
    if not isinstance(data, dict):
        raise typer.BadParameter("Input must be a JSON object")
    return data


def _load_definition(path: Path) -> Dict[str, Any]:
    if not path.exists():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    # YAML is a superset of JSON, so both formats load here.
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        typer.secho(f"Could not parse {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho("Workflow file must contain a mapping", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _fail(exc: OrchestratorError) -> None:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _report(execution: WorkflowExecution) -> None:
    typer.echo(f"Execution {execution.id}: {execution.status}")
    typer.echo(f"Total cost: ${execution.total_cost_usd:.6f}")
    if execution.output:
        typer.echo(f"Output: {json.dumps(execution.output, default=str, indent=2)}")
    if execution.error:
        typer.secho(f"Error: {execution.error}", fg=typer.colors.RED)
    if execution.status == "failed":
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List predefined and custom workflows.

    Example:
        testpilot workflow list
        # Output: predefined  full-test-suite  Full Test Suite Generation  (TestWeaver, ScriptSmith, CodeGuardian)
    """
    catalog = asyncio.run(_engine().list_workflows())
    for kind, summaries in (("predefined", catalog.predefined), ("custom", catalog.custom)):
        for summary in summaries:
            typer.echo(
                f"{kind}\t{summary.id}\t{summary.name}\t({', '.join(summary.agents)})"
            )


@workflow_app.command("run")
def workflow_run(name: str, input: str = INPUT_OPTION) -> None:
    """
    Run a predefined or stored custom workflow.

    Example:
        testpilot workflow run full-test-suite --input '{"projectId": "p1", "specification": "User login"}'
    """
    data = _parse_input(input)
    try:
        execution = asyncio.run(_engine().execute_workflow(name, data))
    except OrchestratorError as exc:
        _fail(exc)
    _report(execution)


@workflow_app.command("run-file")
def workflow_run_file(path: Path, input: str = INPUT_OPTION) -> None:
    """Run a one-off workflow definition from a YAML or JSON file without storing it."""
    definition = _load_definition(path)
    data = _parse_input(input)
    try:
        execution = asyncio.run(_engine().execute_custom_workflow(definition, data))
    except OrchestratorError as exc:
        _fail(exc)
    _report(execution)


@workflow_app.command("create")
def workflow_create(path: Path) -> None:
    """Validate a workflow definition file and store it as a custom workflow."""
    definition = _load_definition(path)
    try:
        stored = asyncio.run(_engine().create_custom_workflow(definition))
    except OrchestratorError as exc:
        _fail(exc)
    typer.echo(f"Created workflow {stored.id}: {stored.name}")


@workflow_app.command("estimate")
def workflow_estimate(name: str, input: str = INPUT_OPTION) -> None:
    """Estimate token usage and cost of a workflow without calling any agent."""
    data = _parse_input(input)
    try:
        estimate = asyncio.run(_engine().estimate_cost(name, data))
    except OrchestratorError as exc:
        _fail(exc)
    for item in estimate.breakdown:
        typer.echo(
            f"- {item.step_id} ({item.agent}): {item.estimated_tokens} tokens, "
            f"${item.estimated_cost_usd:.6f}"
        )
    typer.echo(
        f"Estimated total: {estimate.estimated_tokens} tokens, "
        f"${estimate.estimated_cost_usd:.6f}"
    )


@execution_app.command("list")
def execution_list() -> None:
    """List executions, newest first."""
    repo = get_repository()
    executions = asyncio.run(repo.list_executions())
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_id}\t{execution.status}")


@execution_app.command("status")
def execution_status(execution_id: str) -> None:
    """
    Show progress of one execution with its step records.

    Example:
        testpilot execution status abc123
        # Output: Execution abc123: completed (3/3 steps, 4210 ms, $0.045000)
        #         - step-1: completed
    """
    try:
        status = asyncio.run(_engine().get_workflow_status(execution_id))
    except OrchestratorError as exc:
        _fail(exc)
    typer.echo(
        f"Execution {status.execution_id}: {status.status} "
        f"({status.completed_steps}/{status.total_steps} steps, "
        f"{status.elapsed_ms} ms, ${status.total_cost_usd:.6f})"
    )
    for step in status.steps:
        line = f"- {step.step_id}: {step.status}"
        if step.error:
            line += f" ({step.error})"
        typer.echo(line)


@execution_app.command("cancel")
def execution_cancel(execution_id: str) -> None:
    """Cancel a pending or running execution."""
    try:
        execution = asyncio.run(_engine().cancel_workflow(execution_id))
    except OrchestratorError as exc:
        _fail(exc)
    typer.echo(f"Execution {execution.id}: {execution.status}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
