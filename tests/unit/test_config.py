"""Tests for configuration loading."""

from testpilot.config import DEFAULT_PRICING, load_config


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/testpilot.db
log_level: DEBUG
agents:
  model: anthropic:claude-3-5-haiku-20241022
  max_retries: 1
pricing:
  custom-model:
    input: 1.5
    output: 6.0
"""
    )
    monkeypatch.setenv("TESTPILOT_CONFIG", str(config_path))
    monkeypatch.delenv("TESTPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TESTPILOT_LOG_LEVEL", raising=False)

    config = load_config()
    assert config.database_url == "sqlite:///tmp/testpilot.db"
    assert config.log_level == "DEBUG"
    assert config.agents.max_retries == 1
    assert config.agents.temperature == 0.3
    assert config.pricing_for("custom-model").output == 6.0
    assert config.pricing_for("claude-3-haiku-20240307").input == 0.25
    # the configured default model prices unknown models
    assert config.pricing_for("mystery").input == 0.80


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("TESTPILOT_DATABASE_URL", "postgresql://db/testpilot")
    monkeypatch.setenv("TESTPILOT_LOG_LEVEL", "WARNING")

    config = load_config(str(config_path))
    assert config.database_url == "postgresql://db/testpilot"
    assert config.log_level == "WARNING"


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TESTPILOT_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("TESTPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.database_url is None
    assert config.pricing == DEFAULT_PRICING
    assert config.pricing_for("anthropic:claude-3-haiku-20240307").input == 0.25
    assert config.pricing_for().output == 15.0
