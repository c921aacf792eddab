"""Shared fixtures: fake agent collaborators and in-memory persistence."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

import testpilot.persistence as persistence
from testpilot.catalog import AGENT_OPERATIONS
from testpilot.engine import WorkflowEngine
from testpilot.persistence import InMemoryWorkflowRepository
from testpilot.registry import AgentRegistry

CATALOG_DATA: Dict[str, Any] = {
    "TestWeaver": {
        "testCases": [
            {"title": "Login succeeds with valid credentials", "priority": "high"},
            {"title": "Login fails with wrong password", "priority": "high"},
            {"title": "Remember-me persists session", "priority": "low"},
        ]
    },
    "ScriptSmith": {"code": "test('login', async () => { /* ... */ });"},
    "CodeGuardian": {"tests": "describe('login', () => {});", "coverage": 87},
    "VisualAnalysis": {"hasVisualRegression": False, "differences": []},
    "BugPattern": {"patterns": ["layout-shift"], "confidence": 0.72},
    "FlowPilot": {"setup": "const api = client();", "tests": ["GET /users"]},
    "CodeAnalysis": {"complexity": 12, "issues": []},
    "TestEvolution": {"healthScore": 0.8, "flaky": []},
}


class FakeAgent:
    """Agent operation double that records every call."""

    def __init__(
        self,
        data: Any = None,
        cost_usd: float = 0.015,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.data = data if data is not None else {}
        self.cost_usd = cost_usd
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, input: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(input)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        data = self.data(input) if callable(self.data) else self.data
        return {
            "data": data,
            "usage": {"inputTokens": 120, "outputTokens": 340, "costUsd": self.cost_usd},
        }


@pytest.fixture(autouse=True)
def reset_repository_instance():
    yield
    persistence.reset_repository()


@pytest.fixture
def fake_agent() -> Callable[..., FakeAgent]:
    return FakeAgent


@pytest.fixture
def agents() -> Dict[str, FakeAgent]:
    """One fake per catalog agent, shared by all of its operations."""
    return {name: FakeAgent(data=CATALOG_DATA[name]) for name in AGENT_OPERATIONS}


@pytest.fixture
def registry(agents) -> AgentRegistry:
    return AgentRegistry(
        {
            name: {operation: agents[name] for operation in operations}
            for name, operations in AGENT_OPERATIONS.items()
        }
    )


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(registry, repository) -> WorkflowEngine:
    return WorkflowEngine(registry, repository)
