"""Shared plumbing for the tooldesk command-line agents."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import AsyncExitStack
from typing import Iterable

from tooldesk.config import LLMConfig, Settings
from tooldesk.conversation.anthropic_client import DEFAULT_ANTHROPIC_MODEL, AnthropicModelClient
from tooldesk.conversation.controller import FinalResult, RunStatus
from tooldesk.conversation.errors import ConfigurationError
from tooldesk.conversation.messages import AssistantMessage, Message
from tooldesk.conversation.providers import ModelClient, OpenAICompatibleModelClient, RateLimiter
from tooldesk.conversation.tools.calendar import create_calendar_provider
from tooldesk.conversation.tools.contacts import create_contacts_provider
from tooldesk.conversation.tools.mcp_provider import McpToolProvider
from tooldesk.conversation.tools.meetings import create_meetings_provider
from tooldesk.conversation.tools.notes import create_notes_provider
from tooldesk.conversation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "llama3.1:8b"


def configure_logging(settings: Settings, debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def create_model_client(config: LLMConfig) -> ModelClient:
    """Build the model client selected by *config*.

    Raises:
        ConfigurationError: For an unknown backend or a missing API key.
    """
    logger.info("Using %s model backend (model=%s)", config.backend, config.model or "default")
    rate_limiter = RateLimiter(config.calls_per_minute) if config.calls_per_minute else None
    if config.backend == "anthropic":
        if not config.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")
        return AnthropicModelClient(
            api_key=config.api_key,
            model=config.model or DEFAULT_ANTHROPIC_MODEL,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            rate_limiter=rate_limiter,
        )
    if config.backend == "openai":
        return OpenAICompatibleModelClient(
            base_url=config.base_url or "http://localhost:11434/v1",
            model=config.model or DEFAULT_OPENAI_MODEL,
            api_key=config.api_key or "ollama",
            temperature=0.7 if config.temperature is None else config.temperature,
            rate_limiter=rate_limiter,
        )
    raise ConfigurationError(f"Unknown LLM backend: {config.backend!r}")


def apple_providers(settings: Settings) -> list[ToolRegistry]:
    return [
        create_notes_provider(settings.applescript_config()),
        create_calendar_provider(settings.calendar_config()),
        create_contacts_provider(settings.applescript_config()),
    ]


def meetings_provider(settings: Settings) -> ToolRegistry:
    return create_meetings_provider(settings.fathom_config())


async def connect_servers(
    stack: AsyncExitStack, scripts: Iterable[str], settings: Settings
) -> list[McpToolProvider]:
    """Start one stdio tool server per script; *stack* owns their lifetimes.

    Raises:
        ConfigurationError: If a server cannot be started.
    """
    providers: list[McpToolProvider] = []
    for script in scripts:
        provider = McpToolProvider.for_script(script, call_timeout=settings.tool_timeout)
        providers.append(await stack.enter_async_context(provider))
    return providers


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------


def print_session(session_id: str) -> None:
    print(f"Session started with ID: {session_id}")


def print_message(message: Message) -> None:
    """Echo each tool request the model makes."""
    if isinstance(message, AssistantMessage):
        for request in message.tool_requests:
            print(f"Using tool: {request.tool_name}")
            print(json.dumps(request.arguments, indent=2))


def report_result(result: FinalResult) -> int:
    """Print the outcome of a run and return the process exit code."""
    if result.status is RunStatus.COMPLETED_SUCCESS:
        print(result.answer)
        return 0
    if result.status is RunStatus.TURN_LIMIT_REACHED:
        print(
            f"Stopped after {result.turns} turn(s) without a final answer.",
            file=sys.stderr,
        )
        if result.answer:
            print(result.answer)
        return 1
    print(f"Error: {result.error}", file=sys.stderr)
    return 1
