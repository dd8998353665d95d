"""Unit tests for tooldesk.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tooldesk.config import (
    FATHOM_API_BASE,
    AppleScriptConfig,
    CalendarConfig,
    FathomConfig,
    LLMConfig,
    Settings,
)

_ENV_VARS = [
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "APPLE_CALENDAR_NAME",
    "FATHOM_API_KEY",
    "TOOLDESK_ANTHROPIC_API_KEY",
    "TOOLDESK_OPENAI_API_KEY",
    "TOOLDESK_CALENDAR_NAME",
    "TOOLDESK_FATHOM_API_KEY",
    "TOOLDESK_LLM_BACKEND",
    "TOOLDESK_MAX_TURNS",
    "TOOLDESK_LLM_CALLS_PER_MINUTE",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _settings() -> Settings:
    return Settings(_env_file=None)


def test_defaults() -> None:
    settings = _settings()
    assert settings.llm_backend == "anthropic"
    assert settings.max_turns == 10
    assert settings.calendar_name == "Calendar"
    assert settings.fathom_api_key is None
    assert settings.fathom_base_url == FATHOM_API_BASE


def test_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLDESK_LLM_BACKEND", "openai")
    monkeypatch.setenv("TOOLDESK_MAX_TURNS", "25")
    settings = _settings()
    assert settings.llm_backend == "openai"
    assert settings.max_turns == 25


@pytest.mark.parametrize(
    ("env_name", "field"),
    [
        ("ANTHROPIC_API_KEY", "anthropic_api_key"),
        ("OPENAI_API_KEY", "openai_api_key"),
        ("APPLE_CALENDAR_NAME", "calendar_name"),
        ("FATHOM_API_KEY", "fathom_api_key"),
    ],
)
def test_well_known_variables_without_prefix(
    monkeypatch: pytest.MonkeyPatch, env_name: str, field: str
) -> None:
    monkeypatch.setenv(env_name, "from-env")
    assert getattr(_settings(), field) == "from-env"


def test_prefixed_alias_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FATHOM_API_KEY", "plain")
    monkeypatch.setenv("TOOLDESK_FATHOM_API_KEY", "prefixed")
    assert _settings().fathom_api_key == "prefixed"


def test_llm_config_for_anthropic(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    config = _settings().llm_config()
    assert config == LLMConfig(
        backend="anthropic",
        api_key="sk-ant",
        base_url="http://localhost:11434/v1",
        max_tokens=1000,
    )


def test_llm_config_for_openai_defaults_key() -> None:
    config = Settings(_env_file=None, llm_backend="openai").llm_config()
    assert config.backend == "openai"
    assert config.api_key == "ollama"


def test_llm_config_carries_call_rate(monkeypatch: pytest.MonkeyPatch) -> None:
    assert _settings().llm_config().calls_per_minute is None
    monkeypatch.setenv("TOOLDESK_LLM_CALLS_PER_MINUTE", "30")
    assert _settings().llm_config().calls_per_minute == 30


def test_non_positive_call_rate_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, llm_calls_per_minute=0)


def test_provider_configs() -> None:
    settings = Settings(
        _env_file=None,
        applescript_timeout=10.0,
        tool_timeout=20.0,
        calendar_name="Work",
        fathom_api_key="fk",
    )
    assert settings.applescript_config() == AppleScriptConfig(script_timeout=10.0, tool_timeout=20.0)
    assert settings.calendar_config() == CalendarConfig(
        script_timeout=10.0, tool_timeout=20.0, default_calendar="Work"
    )
    assert settings.fathom_config() == FathomConfig(
        api_key="fk", base_url=FATHOM_API_BASE, timeout=30.0, tool_timeout=20.0
    )
