"""Agent registry: agent name -> operation name -> async callable."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Tuple

from ..errors import UnknownAgentError

AgentOperation = Callable[[Dict[str, Any]], Awaitable[Any]]


class AgentRegistry:
    """Immutable lookup table of agent operations.

    The registry is handed to the engine explicitly, so tests can swap in
    fakes without touching module state.  Use :meth:`with_agent` to derive
    an extended copy.
    """

    def __init__(
        self, agents: Mapping[str, Mapping[str, AgentOperation]] | None = None
    ) -> None:
        self._agents: Mapping[str, Mapping[str, AgentOperation]] = MappingProxyType(
            {name: MappingProxyType(dict(ops)) for name, ops in (agents or {}).items()}
        )

    @classmethod
    def from_instances(
        cls, instances: Mapping[str, Tuple[Any, Iterable[str]]]
    ) -> "AgentRegistry":
        """Bind ``operations`` of each collaborator object under its agent name."""
        agents: Dict[str, Dict[str, AgentOperation]] = {}
        for name, (instance, operations) in instances.items():
            bound: Dict[str, AgentOperation] = {}
            for operation in operations:
                method = getattr(instance, operation, None)
                if not callable(method):
                    raise ValueError(f"Agent {name} has no callable operation '{operation}'")
                bound[operation] = method
            agents[name] = bound
        return cls(agents)

    def with_agent(
        self, name: str, operations: Mapping[str, AgentOperation]
    ) -> "AgentRegistry":
        agents = {key: dict(value) for key, value in self._agents.items()}
        agents[name] = dict(operations)
        return AgentRegistry(agents)

    def get(self, agent: str, operation: str) -> AgentOperation:
        operations = self._agents.get(agent)
        if operations is None:
            raise UnknownAgentError(agent)
        method = operations.get(operation)
        if method is None:
            raise UnknownAgentError(agent, operation)
        return method

    def has_agent(self, agent: str) -> bool:
        return agent in self._agents

    def has_operation(self, agent: str, operation: str) -> bool:
        return operation in self._agents.get(agent, {})

    def agents(self) -> List[str]:
        return list(self._agents)

    def operations(self, agent: str) -> List[str]:
        return list(self._agents.get(agent, {}))

    def __contains__(self, agent: object) -> bool:
        return agent in self._agents

    def __len__(self) -> int:
        return len(self._agents)


__all__ = ["AgentOperation", "AgentRegistry"]
