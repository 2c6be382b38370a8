"""
Test conftest — isolate API key and config environment variables so that
settings tests are not affected by real keys in the developer's or CI
environment.
"""
import pytest

_ENV_VARS = [
    "LLM_API_KEY",
    "TALLY_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_api_keys_from_env(monkeypatch):
    """Remove API key env vars for every test so Settings() behaves as if no
    key is present unless the test explicitly provides one.
    Also disables .env file loading so local developer .env files don't
    leak real credentials into tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import tally.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
