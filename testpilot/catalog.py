"""Predefined workflows and the agent catalog they draw on."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping

from .contracts import WorkflowDefinition

AGENT_OPERATIONS: Mapping[str, List[str]] = MappingProxyType(
    {
        "TestWeaver": ["generate", "evolve", "batchGenerate"],
        "ScriptSmith": ["generate", "edit"],
        "CodeGuardian": ["generate", "analyze"],
        "VisualAnalysis": ["analyze"],
        "BugPattern": ["analyze", "suggestFix"],
        "FlowPilot": ["generate", "chain"],
        "CodeAnalysis": ["analyze"],
        "TestEvolution": ["evolve", "analyze"],
    }
)

AGENT_DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "TestWeaver": "Generates structured test cases from specifications",
        "ScriptSmith": "Turns test cases into executable automation scripts",
        "CodeGuardian": "Generates unit tests and reviews code for defects",
        "VisualAnalysis": "Compares screenshots against baselines for visual regressions",
        "BugPattern": "Clusters failures into known bug patterns and suggests fixes",
        "FlowPilot": "Generates API test flows from OpenAPI specifications",
        "CodeAnalysis": "Analyzes source code for complexity and quality issues",
        "TestEvolution": "Tracks test suite health and suggests improvements",
    }
)

# Average completion size per agent call, in tokens.
AGENT_OUTPUT_TOKEN_ESTIMATES: Mapping[str, int] = MappingProxyType(
    {
        "TestWeaver": 2000,
        "ScriptSmith": 1500,
        "CodeGuardian": 1800,
        "VisualAnalysis": 2500,
        "BugPattern": 1600,
        "FlowPilot": 1400,
        "CodeAnalysis": 2000,
        "TestEvolution": 1700,
    }
)
DEFAULT_OUTPUT_TOKEN_ESTIMATE = 1500

_DEFINITIONS: List[Dict] = [
    {
        "id": "full-test-suite",
        "name": "Full Test Suite Generation",
        "description": "Generate comprehensive test suite: TestWeaver -> ScriptSmith -> CodeGuardian",
        "steps": [
            {
                "id": "step-1",
                "type": "agent",
                "agent": "TestWeaver",
                "operation": "generate",
                "input": {
                    "specification": "${input.specification}",
                    "inputMethod": "specification",
                },
                "outputKey": "testWeaver",
            },
            {
                "id": "step-2",
                "type": "agent",
                "agent": "ScriptSmith",
                "operation": "generate",
                "input": {
                    "testCases": "${steps.step-1.output.testCases}",
                    "inputMethod": "test_case",
                },
                "outputKey": "scriptSmith",
            },
            {
                "id": "step-3",
                "type": "agent",
                "agent": "CodeGuardian",
                "operation": "generate",
                "input": {"code": "${steps.step-2.output.code}", "language": "typescript"},
                "outputKey": "codeGuardian",
            },
        ],
    },
    {
        "id": "visual-regression-flow",
        "name": "Visual Regression Testing Flow",
        "description": "Visual analysis with conditional bug pattern detection",
        "steps": [
            {
                "id": "step-1",
                "type": "agent",
                "agent": "VisualAnalysis",
                "operation": "analyze",
                "input": {
                    "screenshot": "${input.screenshot}",
                    "baselineScreenshot": "${input.baselineScreenshot}",
                },
                "outputKey": "visualAnalysis",
            },
            {
                "id": "step-2",
                "type": "condition",
                "condition": "${steps.step-1.output.hasVisualRegression}",
                "then": [
                    {
                        "id": "step-2a",
                        "type": "agent",
                        "agent": "BugPattern",
                        "operation": "analyze",
                        "input": {"differences": "${steps.step-1.output}"},
                        "outputKey": "bugPattern",
                    }
                ],
                "else": [],
            },
        ],
    },
    {
        "id": "api-test-flow",
        "name": "API Test Generation Flow",
        "description": "Generate API tests: FlowPilot -> CodeGuardian",
        "steps": [
            {
                "id": "step-1",
                "type": "agent",
                "agent": "FlowPilot",
                "operation": "generate",
                "input": {"openApiSpec": "${input.openApiSpec}"},
                "outputKey": "flowPilot",
            },
            {
                "id": "step-2",
                "type": "agent",
                "agent": "CodeGuardian",
                "operation": "generate",
                "input": {
                    "code": "${steps.step-1.output.setup}",
                    "tests": "${steps.step-1.output.tests}",
                    "language": "typescript",
                },
                "outputKey": "codeGuardian",
            },
        ],
    },
    {
        "id": "code-quality-audit",
        "name": "Code Quality Audit",
        "description": "Parallel code analysis and test evolution",
        "steps": [
            {
                "id": "step-1",
                "type": "parallel",
                "branches": [
                    {
                        "id": "branch-1",
                        "type": "agent",
                        "agent": "CodeAnalysis",
                        "operation": "analyze",
                        "input": {"code": "${input.code}"},
                        "outputKey": "codeAnalysis",
                    },
                    {
                        "id": "branch-2",
                        "type": "agent",
                        "agent": "TestEvolution",
                        "operation": "analyze",
                        "input": {"testCases": "${input.testCases}"},
                        "outputKey": "testEvolution",
                    },
                ],
            }
        ],
    },
]

PREDEFINED_WORKFLOWS: Mapping[str, WorkflowDefinition] = MappingProxyType(
    {
        definition["id"]: WorkflowDefinition.model_validate(definition)
        for definition in _DEFINITIONS
    }
)
