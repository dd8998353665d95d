"""
Configuration management for tooldesk.

``Settings`` loads configuration from environment variables (prefix
``TOOLDESK_``) and an optional ``.env`` file. A few well-known variables are
also honoured without the prefix: ``ANTHROPIC_API_KEY``, ``OPENAI_API_KEY``,
``APPLE_CALENDAR_NAME`` and ``FATHOM_API_KEY``.

Settings are read once by the command-line entry points and converted into
the plain config dataclasses below, which is all the rest of the package
sees.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

FATHOM_API_BASE = "https://api.fathom.ai/external/v1"


@dataclass(frozen=True)
class LLMConfig:
    """Model endpoint configuration.

    Attributes:
        backend: ``"anthropic"`` or ``"openai"`` (any OpenAI-compatible server).
        model: Model name; ``None`` selects the backend's default.
        api_key: Endpoint API key.
        base_url: Endpoint URL for the ``openai`` backend.
        temperature: Sampling temperature; ``None`` leaves the endpoint default.
        max_tokens: Output token cap per model call.
        calls_per_minute: Client-side model call cap; ``None`` disables it.
    """

    backend: str = "anthropic"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    temperature: float | None = None
    max_tokens: int = 1000
    calls_per_minute: int | None = None


@dataclass(frozen=True)
class AppleScriptConfig:
    """Timeouts for AppleScript-backed providers."""

    script_timeout: float = 30.0
    tool_timeout: float = 60.0


@dataclass(frozen=True)
class CalendarConfig(AppleScriptConfig):
    default_calendar: str = "Calendar"


@dataclass(frozen=True)
class FathomConfig:
    api_key: str | None = None
    base_url: str = FATHOM_API_BASE
    timeout: float = 30.0
    tool_timeout: float = 60.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Model endpoint
    llm_backend: str = "anthropic"  # anthropic, openai
    llm_model: str | None = None
    llm_base_url: str = "http://localhost:11434/v1"
    llm_temperature: float | None = None
    llm_max_tokens: int = 1000
    llm_calls_per_minute: int | None = Field(default=None, gt=0)
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TOOLDESK_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TOOLDESK_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    # Conversation
    max_turns: int = 10

    # Apple providers
    calendar_name: str = Field(
        default="Calendar",
        validation_alias=AliasChoices("TOOLDESK_CALENDAR_NAME", "APPLE_CALENDAR_NAME"),
    )
    applescript_timeout: float = 30.0
    tool_timeout: float = 60.0

    # Fathom
    fathom_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TOOLDESK_FATHOM_API_KEY", "FATHOM_API_KEY"),
    )
    fathom_base_url: str = FATHOM_API_BASE
    fathom_timeout: float = 30.0

    # Meeting summarizer output
    meetings_output_dir: str = "meetings"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TOOLDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def llm_config(self) -> LLMConfig:
        if self.llm_backend == "openai":
            api_key = self.openai_api_key or "ollama"
        else:
            api_key = self.anthropic_api_key
        return LLMConfig(
            backend=self.llm_backend,
            model=self.llm_model,
            api_key=api_key,
            base_url=self.llm_base_url,
            temperature=self.llm_temperature,
            max_tokens=self.llm_max_tokens,
            calls_per_minute=self.llm_calls_per_minute,
        )

    def applescript_config(self) -> AppleScriptConfig:
        return AppleScriptConfig(
            script_timeout=self.applescript_timeout, tool_timeout=self.tool_timeout
        )

    def calendar_config(self) -> CalendarConfig:
        return CalendarConfig(
            script_timeout=self.applescript_timeout,
            tool_timeout=self.tool_timeout,
            default_calendar=self.calendar_name,
        )

    def fathom_config(self) -> FathomConfig:
        return FathomConfig(
            api_key=self.fathom_api_key,
            base_url=self.fathom_base_url,
            timeout=self.fathom_timeout,
            tool_timeout=self.tool_timeout,
        )


def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()
