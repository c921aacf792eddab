"""Tests for the pydantic-ai backed agent collaborators."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pydantic_ai.models.test import TestModel

from testpilot.agent import LLMAgent, build_default_registry
from testpilot.catalog import AGENT_OPERATIONS
from testpilot.config import AgentsConfig, OrchestratorConfig
from testpilot.contracts import AgentResponse


class _ScriptedAgent:
    """Stands in for a pydantic-ai Agent with canned outcomes per call."""

    def __init__(self, *outcomes, usage=None):
        self.outcomes = list(outcomes)
        self.prompts = []
        self.model = SimpleNamespace(model_name="claude-sonnet-4-20250514")
        self._usage = usage or SimpleNamespace(
            input_tokens=1000, output_tokens=500, cache_read_tokens=0, cache_write_tokens=0
        )

    async def run(self, prompt):
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(output=outcome, usage=lambda: self._usage)


@pytest.fixture
def no_backoff(monkeypatch):
    sleeper = AsyncMock(return_value=0.0)
    monkeypatch.setattr("testpilot.agent.llm.schedule_retry", sleeper)
    return sleeper


@pytest.mark.asyncio
async def test_llm_agent_runs_with_test_model():
    agent = LLMAgent("CodeAnalysis", ["analyze"], model=TestModel())

    response = await agent.run("analyze", {"code": "def f():\n    return 1"})

    assert isinstance(response, AgentResponse)
    assert isinstance(response.data, dict)
    usage = response.usage
    assert usage.model == "test"
    # unknown models are priced like the configured default model
    assert usage.cost_usd == pytest.approx(
        (usage.input_tokens * 3.0 + usage.output_tokens * 15.0) / 1_000_000
    )


@pytest.mark.asyncio
async def test_prompt_carries_json_input():
    agent = LLMAgent("TestWeaver", ["generate"])
    scripted = _ScriptedAgent({"testCases": []})
    agent._agents["generate"] = scripted

    response = await agent.run("generate", {"specification": "User login flow"})

    assert response.data == {"testCases": []}
    assert '"specification": "User login flow"' in scripted.prompts[0]


@pytest.mark.asyncio
async def test_cost_includes_cache_multipliers():
    usage = SimpleNamespace(
        input_tokens=1000, output_tokens=500, cache_read_tokens=200, cache_write_tokens=100
    )
    agent = LLMAgent("CodeGuardian", ["analyze"])
    agent._agents["analyze"] = _ScriptedAgent({"ok": True}, usage=usage)

    response = await agent.run("analyze", {})

    assert response.usage.cache_read_tokens == 200
    assert response.usage.cache_creation_tokens == 100
    assert response.usage.cost_usd == pytest.approx(0.010035)
    assert response.usage.model == "claude-sonnet-4-20250514"


@pytest.mark.asyncio
async def test_transient_failures_are_retried(no_backoff):
    agent = LLMAgent("ScriptSmith", ["generate"])
    scripted = _ScriptedAgent(RuntimeError("overloaded"), RuntimeError("overloaded"), {"code": "ok"})
    agent._agents["generate"] = scripted

    response = await agent.run("generate", {"testCases": []})

    assert response.data == {"code": "ok"}
    assert len(scripted.prompts) == 3
    assert [call.args[0] for call in no_backoff.await_args_list] == [0, 1]


@pytest.mark.asyncio
async def test_retries_are_bounded(no_backoff):
    config = OrchestratorConfig(agents=AgentsConfig(max_retries=1))
    agent = LLMAgent("FlowPilot", ["generate"], config=config)
    scripted = _ScriptedAgent(RuntimeError("down"), RuntimeError("still down"), {"never": "reached"})
    agent._agents["generate"] = scripted

    with pytest.raises(RuntimeError, match="still down"):
        await agent.run("generate", {})
    assert len(scripted.prompts) == 2


def test_unknown_operation_is_rejected():
    agent = LLMAgent("VisualAnalysis", ["analyze"])
    with pytest.raises(ValueError, match="no operation 'generate'"):
        agent.operation("generate")


@pytest.mark.asyncio
async def test_default_registry_covers_catalog():
    registry = build_default_registry(model=TestModel())

    assert sorted(registry.agents()) == sorted(AGENT_OPERATIONS)
    for name, operations in AGENT_OPERATIONS.items():
        assert registry.operations(name) == list(operations)

    response = await registry.get("TestWeaver", "batchGenerate")({"specifications": ["a", "b"]})
    assert isinstance(response, AgentResponse)
