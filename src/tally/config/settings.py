"""
config/settings.py — Tally Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered: all fields are validated and typed.

  - Field validators reject out-of-range values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a human-readable message listing every problem found
  - load_settings() respects the TALLY_CONFIG env var as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tally.agent.registry import HandoffPolicy
from tally.agent.types import AgentDefinition
from tally.exceptions import ConfigurationError


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(ConfigurationError):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class LLMRetryConfig(BaseModel):
    """Exponential backoff config for non-streaming calls."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.retry.max_attempts must be >= 1")
        return v


class LLMConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o-mini"
    temperature: float = 0.5
    max_tokens: Optional[int] = None
    timeout_seconds: float = 600.0
    history_window: int = 10
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")
        return v

    @field_validator("history_window")
    @classmethod
    def _positive_window(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.history_window must be >= 1")
        return v


class EngineConfig(BaseModel):
    max_steps: int = 15
    handoff_policy: HandoffPolicy = HandoffPolicy.HANDOFF
    tool_timeout_seconds: float = 30.0
    max_result_chars: int = 8_000

    @field_validator("max_steps")
    @classmethod
    def _positive_steps(cls, v: int) -> int:
        if v < 1:
            raise ValueError("engine.max_steps must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Tally runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -- Secrets from .env ---------------------------------------------------
    llm_api_key: Optional[str] = Field(default=None, alias="LLM_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    llm: LLMConfig = Field(default_factory=LLMConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    agents: list[AgentDefinition] = Field(default_factory=list)

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level

    @property
    def log_dir(self) -> Optional[Path]:
        return Path(self.logging.log_dir) if self.logging.log_dir else None

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches what they cannot see: credential presence and the agent graph.
        """
        errors: list[str] = []

        # ── API key ──────────────────────────────────────────────────────────
        if not self.llm_api_key:
            errors.append("LLM_API_KEY must be set in your environment or .env file.")

        # ── Agent ids are unique ─────────────────────────────────────────────
        seen: set[str] = set()
        for agent in self.agents:
            if agent.id in seen:
                errors.append(f"agents: duplicate agent id '{agent.id}'.")
            seen.add(agent.id)

        # ── Handoff targets exist ────────────────────────────────────────────
        for agent in self.agents:
            for target in agent.handoffs:
                if target not in seen:
                    errors.append(
                        f"agents: '{agent.id}' hands off to unknown agent '{target}'."
                    )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nTally startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"llm", "engine", "logging", "agents"}

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. TALLY_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("TALLY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build(config_path: str | Path | None) -> Settings:
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    instance = _build(config_path)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build(None)
        return _singleton


def reset_settings() -> None:
    """Drop the cached singleton (tests, config reload)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
