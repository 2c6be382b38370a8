"""
tests/unit/test_config.py — Settings Tests

Covers:
  - Defaults load cleanly without a YAML file
  - Out-of-range values are rejected at parse time
  - validate_all() raises ConfigError with a numbered list
  - validate_all() catches a missing key, duplicate agent ids and
    handoffs to unknown agents
  - TALLY_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
  - Engine / StreamingClient can be built from Settings
"""

from __future__ import annotations

import textwrap

import pytest
from pydantic import ValidationError

from tally.agent.registry import HandoffPolicy
from tally.config.settings import (
    ConfigError,
    EngineConfig,
    LLMConfig,
    LoggingConfig,
    Settings,
    get_settings,
    load_settings,
)
from tally.exceptions import ConfigurationError


_YAML = textwrap.dedent("""
    llm:
      default_model: test-model
      history_window: 4
      retry:
        max_attempts: 5
    engine:
      max_steps: 7
      handoff_policy: delegate
    logging:
      level: debug
    agents:
      - id: assistant
        name: Tally Assistant
        handoffs: [analyst]
      - id: analyst
        name: Analyst
        tools: [query_transactions]
    unknown_section:
      ignored: true
""")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(_YAML, encoding="utf-8")
    return path


# ── Parsing ───────────────────────────────────────────────────────────────────

class TestDefaults:
    def test_defaults(self):
        s = Settings()
        assert s.llm_api_key is None
        assert s.llm.timeout_seconds == 600.0
        assert s.llm.history_window == 10
        assert s.engine.max_steps == 15
        assert s.engine.handoff_policy == HandoffPolicy.HANDOFF
        assert s.agents == []

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("LLM_API_KEY", "sk-env")
        assert Settings().llm_api_key == "sk-env"


class TestFieldValidation:
    def test_bad_temperature(self):
        with pytest.raises(ValidationError):
            LLMConfig(temperature=3.0)

    def test_bad_history_window(self):
        with pytest.raises(ValidationError):
            LLMConfig(history_window=0)

    def test_bad_max_steps(self):
        with pytest.raises(ValidationError):
            EngineConfig(max_steps=0)

    def test_bad_policy(self):
        with pytest.raises(ValidationError):
            EngineConfig(handoff_policy="broadcast")

    def test_log_level_normalised(self):
        assert LoggingConfig(level="warning").level == "WARNING"

    def test_bad_log_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


# ── validate_all ──────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_passes_with_key_and_sound_graph(self):
        s = Settings(
            llm_api_key="sk-test",
            agents=[
                {"id": "a", "name": "A", "handoffs": ["b"]},
                {"id": "b", "name": "B"},
            ],
        )
        s.validate_all()

    def test_missing_key(self):
        with pytest.raises(ConfigError) as exc_info:
            Settings().validate_all()
        assert "LLM_API_KEY" in str(exc_info.value)

    def test_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            Settings().validate_all()

    def test_reports_every_problem(self):
        s = Settings(agents=[
            {"id": "a", "name": "A", "handoffs": ["ghost"]},
            {"id": "a", "name": "A again"},
        ])
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        message = str(exc_info.value)
        assert "3 configuration problem(s)" in message
        assert "1. LLM_API_KEY" in message
        assert "duplicate agent id 'a'" in message
        assert "unknown agent 'ghost'" in message


# ── Loading ───────────────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_load_from_path(self, config_file):
        s = load_settings(config_file)
        assert s.llm.default_model == "test-model"
        assert s.llm.history_window == 4
        assert s.llm.retry.max_attempts == 5
        assert s.engine.max_steps == 7
        assert s.engine.handoff_policy == HandoffPolicy.DELEGATE
        assert s.logging.level == "DEBUG"
        assert [a.id for a in s.agents] == ["assistant", "analyst"]
        assert s.agents[0].handoffs == ("analyst",)

    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(tmp_path / "nope.yaml")
        assert s.engine.max_steps == 15

    def test_env_var_path(self, config_file, monkeypatch):
        monkeypatch.setenv("TALLY_CONFIG", str(config_file))
        assert load_settings().engine.max_steps == 7

    def test_explicit_path_beats_env_var(self, config_file, tmp_path, monkeypatch):
        other = tmp_path / "other.yaml"
        other.write_text("engine:\n  max_steps: 3\n", encoding="utf-8")
        monkeypatch.setenv("TALLY_CONFIG", str(config_file))
        assert load_settings(other).engine.max_steps == 3

    def test_singleton_follows_last_load(self, config_file):
        loaded = load_settings(config_file)
        assert get_settings() is loaded


# ── Wiring ────────────────────────────────────────────────────────────────────

class TestFromSettings:
    @pytest.mark.asyncio
    async def test_engine_and_client(self, config_file, monkeypatch):
        from tally.agent.engine import Engine
        from tally.brain import client_from_settings
        from tally.interfaces.cli import build_registry

        monkeypatch.setenv("LLM_API_KEY", "sk-test")
        s = load_settings(config_file)

        async with client_from_settings(s) as client:
            assert client.default_model == "test-model"
            assert client.history_window == 4
            assert client.max_attempts == 5
            engine = Engine.from_settings(s, build_registry(s), client)

        assert engine.max_steps == 7
        assert engine.handoff_policy == HandoffPolicy.DELEGATE
        assert len(engine.registry) == 2

    def test_client_requires_key(self):
        from tally.brain import client_from_settings

        with pytest.raises(ConfigurationError):
            client_from_settings(Settings())
