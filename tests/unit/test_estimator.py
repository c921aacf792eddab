import pytest

from testpilot.catalog import PREDEFINED_WORKFLOWS
from testpilot.config import AgentsConfig, ModelPricing, OrchestratorConfig
from testpilot.estimator import PROMPT_OVERHEAD_TOKENS, CostEstimator


def test_breakdown_covers_every_agent_step():
    estimate = CostEstimator().estimate(
        PREDEFINED_WORKFLOWS["full-test-suite"], {"specification": "User login flow"}
    )

    assert estimate.workflow_id == "full-test-suite"
    assert [(item.step_id, item.agent) for item in estimate.breakdown] == [
        ("step-1", "TestWeaver"),
        ("step-2", "ScriptSmith"),
        ("step-3", "CodeGuardian"),
    ]
    assert estimate.estimated_tokens == sum(item.estimated_tokens for item in estimate.breakdown)
    assert estimate.estimated_cost_usd == pytest.approx(
        sum(item.estimated_cost_usd for item in estimate.breakdown)
    )


def test_token_estimate_uses_resolved_input_and_agent_average():
    estimate = CostEstimator().estimate(
        PREDEFINED_WORKFLOWS["full-test-suite"], {"specification": "User login flow"}
    )

    payload = {"specification": "User login flow", "inputMethod": "specification"}
    expected = CostEstimator.count_tokens(payload) + PROMPT_OVERHEAD_TOKENS + 2000
    assert estimate.breakdown[0].estimated_tokens == expected

    # later steps have no outputs yet, so references resolve to null
    step_two = {"testCases": None, "inputMethod": "test_case"}
    expected = CostEstimator.count_tokens(step_two) + PROMPT_OVERHEAD_TOKENS + 1500
    assert estimate.breakdown[1].estimated_tokens == expected


def test_condition_branches_are_both_counted():
    estimate = CostEstimator().estimate(PREDEFINED_WORKFLOWS["visual-regression-flow"], {})
    assert [item.agent for item in estimate.breakdown] == ["VisualAnalysis", "BugPattern"]


def test_parallel_branches_are_counted():
    estimate = CostEstimator().estimate(PREDEFINED_WORKFLOWS["code-quality-audit"], {})
    assert [item.step_id for item in estimate.breakdown] == ["branch-1", "branch-2"]


def test_longer_input_costs_more():
    estimator = CostEstimator()
    definition = PREDEFINED_WORKFLOWS["full-test-suite"]

    short = estimator.estimate(definition, {"specification": "User login flow"})
    long = estimator.estimate(definition, {"specification": "User login flow" * 100})

    assert long.estimated_cost_usd > short.estimated_cost_usd


def test_cost_uses_configured_model_pricing():
    config = OrchestratorConfig(
        agents=AgentsConfig(model="anthropic:budget-model"),
        pricing={"budget-model": ModelPricing(input=1.0, output=2.0)},
    )
    estimate = CostEstimator(config).estimate(PREDEFINED_WORKFLOWS["api-test-flow"], {})

    first = estimate.breakdown[0]
    input_tokens = first.estimated_tokens - 1400
    assert first.estimated_cost_usd == pytest.approx(
        round((input_tokens * 1.0 + 1400 * 2.0) / 1_000_000, 6)
    )
