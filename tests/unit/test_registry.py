import pytest

from testpilot.errors import UnknownAgentError
from testpilot.registry import AgentRegistry


class _Collaborator:
    async def analyze(self, input):
        return {"data": {"seen": input}}

    not_callable = "nope"


def test_get_returns_registered_operation(fake_agent):
    op = fake_agent()
    registry = AgentRegistry({"CodeAnalysis": {"analyze": op}})
    assert registry.get("CodeAnalysis", "analyze") is op
    assert registry.has_agent("CodeAnalysis")
    assert registry.has_operation("CodeAnalysis", "analyze")
    assert not registry.has_operation("CodeAnalysis", "evolve")
    assert "CodeAnalysis" in registry
    assert len(registry) == 1


def test_unknown_agent_and_operation_raise():
    registry = AgentRegistry({"CodeAnalysis": {"analyze": lambda payload: payload}})

    with pytest.raises(UnknownAgentError, match="Unknown agent: Ghost"):
        registry.get("Ghost", "analyze")

    with pytest.raises(UnknownAgentError) as exc_info:
        registry.get("CodeAnalysis", "evolve")
    assert exc_info.value.agent == "CodeAnalysis"
    assert exc_info.value.operation == "evolve"


def test_registry_is_immutable_and_with_agent_returns_copy(fake_agent):
    source = {"A": {"run": fake_agent()}}
    registry = AgentRegistry(source)
    source["B"] = {"run": fake_agent()}
    assert registry.agents() == ["A"]

    extended = registry.with_agent("B", {"run": fake_agent(), "stop": fake_agent()})
    assert registry.agents() == ["A"]
    assert sorted(extended.agents()) == ["A", "B"]
    assert extended.operations("B") == ["run", "stop"]

    with pytest.raises(TypeError):
        registry._agents["C"] = {}


@pytest.mark.asyncio
async def test_from_instances_binds_methods():
    registry = AgentRegistry.from_instances({"CodeAnalysis": (_Collaborator(), ["analyze"])})
    result = await registry.get("CodeAnalysis", "analyze")({"code": "x = 1"})
    assert result == {"data": {"seen": {"code": "x = 1"}}}


def test_from_instances_rejects_missing_operations():
    with pytest.raises(ValueError, match="no callable operation 'not_callable'"):
        AgentRegistry.from_instances({"CodeAnalysis": (_Collaborator(), ["not_callable"])})
