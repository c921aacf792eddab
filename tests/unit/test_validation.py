"""Tests for custom workflow definition validation."""

import pytest

from testpilot.contracts import AgentStep, WorkflowDefinition
from testpilot.errors import ExpressionError, ValidationError
from testpilot.validation import WorkflowValidator


@pytest.fixture
def validator(registry):
    return WorkflowValidator(registry)


def _agent(step_id, agent="TestWeaver", operation="generate", **input):
    return {
        "id": step_id,
        "type": "agent",
        "agent": agent,
        "operation": operation,
        "input": input,
    }


def _definition(*steps, name="Custom flow"):
    return {"id": "custom-1", "name": name, "steps": list(steps)}


def test_valid_definition_is_parsed(validator):
    definition = _definition(
        _agent("step-1", specification="${input.specification}"),
        {
            "id": "step-2",
            "type": "validate",
            "validation": {
                "rules": [
                    {
                        "field": "steps.step-1.output.testCases",
                        "condition": "length > 0",
                        "message": "No test cases generated",
                    }
                ]
            },
        },
        {
            "id": "step-3",
            "type": "transform",
            "transform": {"count": "${steps.step-1.output.testCases.length}"},
            "outputKey": "summary",
        },
    )

    parsed = validator.validate(definition)

    assert isinstance(parsed, WorkflowDefinition)
    assert parsed.id == "custom-1"
    assert [step.id for step in parsed.steps] == ["step-1", "step-2", "step-3"]
    assert parsed.steps[2].output_key == "summary"


def test_accepts_definition_models(validator):
    definition = WorkflowDefinition(
        name="Model flow",
        steps=[AgentStep(id="a", agent="CodeAnalysis", operation="analyze")],
    )
    assert validator.validate(definition) is definition


@pytest.mark.parametrize("name", [None, "", "   "])
def test_name_is_required(validator, name):
    with pytest.raises(ValidationError, match="Workflow name is required"):
        validator.validate(_definition(_agent("a"), name=name))


def test_at_least_one_step_is_required(validator):
    with pytest.raises(ValidationError, match="Workflow must have at least one step"):
        validator.validate(_definition())
    with pytest.raises(ValidationError, match="Workflow must have at least one step"):
        validator.validate(WorkflowDefinition(name="Empty", steps=[]))


def test_invalid_step_type_is_reported_even_when_nested(validator):
    definition = _definition(
        _agent("a"),
        {
            "id": "b",
            "type": "condition",
            "condition": "${steps.a.output.ok}",
            "then": [{"id": "c", "type": "loop"}],
        },
    )
    with pytest.raises(ValidationError, match="Invalid step type: loop"):
        validator.validate(definition)


def test_unknown_agent_and_operation(validator):
    with pytest.raises(ValidationError, match="Unknown agent: Ghost"):
        validator.validate(_definition(_agent("a", agent="Ghost")))
    with pytest.raises(ValidationError, match="Unknown operation: TestWeaver.analyze"):
        validator.validate(_definition(_agent("a", operation="analyze")))


def test_duplicate_step_ids_across_nesting(validator):
    definition = _definition(
        _agent("a"),
        {"id": "p", "type": "parallel", "branches": [_agent("a", agent="CodeAnalysis", operation="analyze")]},
    )
    with pytest.raises(ValidationError, match="Duplicate step id: a"):
        validator.validate(definition)


def test_mutual_reference_is_a_cycle(validator):
    definition = _definition(
        _agent("step-1", specification="${steps.step-2.output.text}"),
        _agent("step-2", specification="${steps.step-1.output.text}"),
    )
    with pytest.raises(ValidationError, match="Circular dependency detected"):
        validator.validate(definition)


def test_self_reference_is_a_cycle(validator):
    with pytest.raises(ValidationError, match="Circular dependency detected"):
        validator.validate(_definition(_agent("a", previous="${steps.a.output}")))


def test_aggregate_sources_count_as_references(validator):
    definition = _definition(
        {"id": "agg", "type": "aggregate", "sources": ["agg"], "outputKey": "all"},
    )
    with pytest.raises(ValidationError, match="Circular dependency detected"):
        validator.validate(definition)


def test_forward_reference_is_rejected(validator):
    definition = _definition(
        _agent("step-1", specification="${steps.step-2.output.text}"),
        _agent("step-2"),
    )
    with pytest.raises(
        ValidationError, match="Step 'step-1' references step 'step-2' before it has run"
    ):
        validator.validate(definition)


def test_unknown_reference_is_rejected(validator):
    definition = _definition(_agent("a", specification="${steps.ghost.output}"))
    with pytest.raises(ValidationError, match="references step 'ghost'"):
        validator.validate(definition)


def test_parallel_branches_cannot_read_each_other(validator):
    definition = _definition(
        {
            "id": "p",
            "type": "parallel",
            "branches": [
                _agent("b1", agent="CodeAnalysis", operation="analyze"),
                _agent("b2", agent="TestEvolution", operation="analyze", seed="${steps.b1.output}"),
            ],
        }
    )
    with pytest.raises(ValidationError, match="Step 'b2' references step 'b1'"):
        validator.validate(definition)


def test_nested_steps_see_prior_steps_and_later_steps_see_nested(validator):
    definition = _definition(
        _agent("a", agent="VisualAnalysis", operation="analyze"),
        {
            "id": "cond",
            "type": "condition",
            "condition": "steps.a.output.hasVisualRegression",
            "then": [_agent("fix", agent="BugPattern", operation="analyze", diff="${steps.a.output}")],
            "else": [],
        },
        {"id": "agg", "type": "aggregate", "sources": ["a", "fix"], "outputKey": "report"},
    )
    parsed = validator.validate(definition)
    assert [step.id for step in parsed.iter_steps()] == ["a", "cond", "fix", "agg"]


def test_validate_rule_fields_are_references(validator):
    definition = _definition(
        {
            "id": "gate",
            "type": "validate",
            "validation": {
                "rules": [{"field": "steps.later.output", "condition": "", "message": "m"}]
            },
        },
        _agent("later"),
    )
    with pytest.raises(ValidationError, match="Step 'gate' references step 'later'"):
        validator.validate(definition)


def test_malformed_template_raises_expression_error(validator):
    with pytest.raises(ExpressionError):
        validator.validate(_definition(_agent("a", spec="${input.a.}")))


def test_schema_errors_become_validation_errors(validator):
    definition = _definition({"id": "a", "type": "agent", "agent": "TestWeaver"})
    with pytest.raises(ValidationError, match="Invalid workflow definition"):
        validator.validate(definition)
