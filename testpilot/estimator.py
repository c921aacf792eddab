"""Dry-run cost projection for workflow definitions."""

from __future__ import annotations

import json
import math
from typing import Any, Dict, List

from .catalog import AGENT_OUTPUT_TOKEN_ESTIMATES, DEFAULT_OUTPUT_TOKEN_ESTIMATE
from .config import OrchestratorConfig
from .contracts import AgentStep, WorkflowDefinition
from .expressions import ExpressionResolver
from .models import CostEstimate, StepCostEstimate

CHARS_PER_TOKEN = 4
# System prompt and instructions sent with every agent call.
PROMPT_OVERHEAD_TOKENS = 500


class CostEstimator:
    """Estimate tokens and USD for a run without calling any agent.

    Both branches of every condition are counted, so the figure is an upper
    bound for workflows with conditional steps.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        resolver: ExpressionResolver | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._resolver = resolver or ExpressionResolver()

    def estimate(self, definition: WorkflowDefinition, input: Dict[str, Any]) -> CostEstimate:
        pricing = self._config.pricing_for()
        context = {"input": input, "steps": {}}
        breakdown: List[StepCostEstimate] = []

        for step in definition.iter_steps():
            if not isinstance(step, AgentStep):
                continue
            payload = self._resolver.resolve(step.input, context)
            input_tokens = self.count_tokens(payload) + PROMPT_OVERHEAD_TOKENS
            output_tokens = AGENT_OUTPUT_TOKEN_ESTIMATES.get(
                step.agent, DEFAULT_OUTPUT_TOKEN_ESTIMATE
            )
            cost = (input_tokens * pricing.input + output_tokens * pricing.output) / 1_000_000
            breakdown.append(
                StepCostEstimate(
                    step_id=step.id,
                    agent=step.agent,
                    estimated_cost_usd=round(cost, 6),
                    estimated_tokens=input_tokens + output_tokens,
                )
            )

        return CostEstimate(
            workflow_id=definition.id,
            estimated_cost_usd=round(sum(item.estimated_cost_usd for item in breakdown), 6),
            estimated_tokens=sum(item.estimated_tokens for item in breakdown),
            breakdown=breakdown,
        )

    @staticmethod
    def count_tokens(payload: Any) -> int:
        """Rough token count of ``payload`` serialized as JSON."""
        return math.ceil(len(json.dumps(payload, default=str)) / CHARS_PER_TOKEN)
