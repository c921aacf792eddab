"""LLM-backed agent collaborators built on pydantic-ai."""

from __future__ import annotations

import json
import logging
import time
from functools import partial
from typing import Any, Dict, Iterable, Optional

from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from ..catalog import AGENT_DESCRIPTIONS, AGENT_OPERATIONS
from ..config import OrchestratorConfig
from ..contracts import AgentResponse, AgentUsage
from ..registry import AgentOperation, AgentRegistry
from ..utils.retry import schedule_retry

logger = logging.getLogger(__name__)

CACHE_READ_MULTIPLIER = 0.1
CACHE_WRITE_MULTIPLIER = 1.25

_INSTRUCTIONS = (
    "You are {name}, part of an automated software testing toolkit. {description}.\n"
    "Perform the '{operation}' operation on the JSON input you receive and "
    "reply with a single JSON object holding your result."
)


class LLMAgent:
    """Agent collaborator that answers each operation with one model call.

    A pydantic-ai ``Agent`` is built lazily per operation. Failed calls are
    retried with exponential backoff up to ``config.agents.max_retries``
    times before the last error is raised to the caller.
    """

    def __init__(
        self,
        name: str,
        operations: Iterable[str],
        config: OrchestratorConfig | None = None,
        model: Model | str | None = None,
        description: Optional[str] = None,
    ) -> None:
        self.name = name
        self._operations = list(operations)
        self._config = config or OrchestratorConfig()
        self._model = model or self._config.agents.model
        self._description = description or AGENT_DESCRIPTIONS.get(name, name)
        self._agents: Dict[str, Agent] = {}

    @property
    def operations(self) -> list[str]:
        return list(self._operations)

    def operation(self, operation: str) -> AgentOperation:
        """Return ``operation`` as a callable matching the collaborator contract."""
        if operation not in self._operations:
            raise ValueError(f"Agent {self.name} has no operation '{operation}'")
        return partial(self.run, operation)

    def _agent_for(self, operation: str) -> Agent:
        agent = self._agents.get(operation)
        if agent is None:
            settings = self._config.agents
            agent = Agent(
                self._model,
                output_type=dict[str, Any],
                name=f"{self.name}.{operation}",
                instructions=_INSTRUCTIONS.format(
                    name=self.name, description=self._description, operation=operation
                ),
                model_settings=ModelSettings(
                    max_tokens=settings.max_tokens, temperature=settings.temperature
                ),
            )
            self._agents[operation] = agent
        return agent

    async def run(self, operation: str, input: Dict[str, Any]) -> AgentResponse:
        agent = self._agent_for(operation)
        prompt = json.dumps(input, default=str, indent=2)
        max_retries = self._config.agents.max_retries

        attempt = 0
        while True:
            started = time.monotonic()
            try:
                result = await agent.run(prompt)
                break
            except Exception as exc:
                if attempt >= max_retries:
                    logger.error(
                        f"Agent {self.name}.{operation} failed after {attempt + 1} attempts: {exc}"
                    )
                    raise
                logger.warning(
                    f"Agent {self.name}.{operation} attempt {attempt + 1} failed: {exc}; retrying"
                )
                await schedule_retry(attempt)
                attempt += 1

        usage = self._usage(agent, result.usage(), int((time.monotonic() - started) * 1000))
        logger.debug(
            f"Agent {self.name}.{operation} used {usage.input_tokens} input and "
            f"{usage.output_tokens} output tokens"
        )
        return AgentResponse(data=result.output, usage=usage)

    def _usage(self, agent: Agent, run_usage: Any, duration_ms: int) -> AgentUsage:
        model_name = getattr(agent.model, "model_name", None) or str(self._model)
        pricing = self._config.pricing_for(model_name)

        input_tokens = run_usage.input_tokens or 0
        output_tokens = run_usage.output_tokens or 0
        cache_read = getattr(run_usage, "cache_read_tokens", 0) or 0
        cache_write = getattr(run_usage, "cache_write_tokens", 0) or 0
        uncached = max(0, input_tokens - cache_read - cache_write)

        cost = (
            uncached * pricing.input
            + cache_read * pricing.input * CACHE_READ_MULTIPLIER
            + cache_write * pricing.input * CACHE_WRITE_MULTIPLIER
            + output_tokens * pricing.output
        ) / 1_000_000
        return AgentUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cache_read,
            cache_creation_tokens=cache_write,
            cost_usd=cost,
            model=model_name,
            duration_ms=duration_ms,
        )


def build_default_registry(
    config: OrchestratorConfig | None = None, model: Model | str | None = None
) -> AgentRegistry:
    """Registry with an :class:`LLMAgent` for every catalog agent."""
    agents: Dict[str, Dict[str, AgentOperation]] = {}
    for name, operations in AGENT_OPERATIONS.items():
        agent = LLMAgent(name, operations, config=config, model=model)
        agents[name] = {operation: agent.operation(operation) for operation in operations}
    return AgentRegistry(agents)
