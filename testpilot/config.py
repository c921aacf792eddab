from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_MODEL = "anthropic:claude-sonnet-4-20250514"


class ModelPricing(BaseModel):
    """USD per million tokens."""

    input: float
    output: float


DEFAULT_PRICING: Dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(input=3.0, output=15.0),
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.0, output=15.0),
    "claude-3-5-haiku-20241022": ModelPricing(input=0.80, output=4.0),
    "claude-3-haiku-20240307": ModelPricing(input=0.25, output=1.25),
}


class AgentsConfig(BaseModel):
    """Settings for the LLM-backed agent collaborators."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.3
    max_retries: int = 3


class OrchestratorConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    agents: AgentsConfig = AgentsConfig()
    pricing: Dict[str, ModelPricing] = Field(default_factory=lambda: dict(DEFAULT_PRICING))

    @field_validator("pricing", mode="before")
    @classmethod
    def _extend_default_pricing(cls, value):
        # configured entries add to or override the built-in price table
        return {**DEFAULT_PRICING, **(value or {})}

    def pricing_for(self, model: Optional[str] = None) -> ModelPricing:
        """Price table entry for ``model`` (provider prefix optional).

        Unknown models fall back to the configured default model's prices.
        """
        name = (model or self.agents.model).split(":", 1)[-1]
        if name in self.pricing:
            return self.pricing[name]
        default = self.agents.model.split(":", 1)[-1]
        return self.pricing.get(default, DEFAULT_PRICING[DEFAULT_MODEL.split(":", 1)[-1]])


def load_config(path: Optional[str] = None) -> OrchestratorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TESTPILOT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TESTPILOT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OrchestratorConfig(**data)
    else:
        config = OrchestratorConfig()

    env_db_url = os.getenv("TESTPILOT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("TESTPILOT_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
