"""
Model client abstractions for the tooldesk conversation package.

Defines the `ModelClient` Protocol so the `ConversationController` can work
with any model backend without being tied to a specific vendor or SDK. A
client turns one `ModelRequest` into a lazy sequence of response events (see
``tooldesk.conversation.events``).

The concrete implementation here, `OpenAICompatibleModelClient`, streams from
`openai.AsyncOpenAI`, which supports any OpenAI-compatible base URL. The
Anthropic Messages API client lives in ``anthropic_client``.

Also provides:
- ``ToolDefinition``, the catalog's description of one tool.
- ``RateLimiter`` for client-side call-rate throttling.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, Sequence, runtime_checkable

from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError

from tooldesk.conversation.errors import (
    ModelAPIError,
    ModelConnectionError,
    ModelRateLimitError,
)
from tooldesk.conversation.events import (
    RAW_ARGUMENTS_KEY,
    ResponseEvent,
    SessionInitEvent,
    SuccessEvent,
    TextEvent,
    ToolUseEvent,
)
from tooldesk.conversation.messages import (
    AssistantMessage,
    Message,
    ToolResultMessage,
    UserMessage,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Async client-side rate limiter using a sliding window.

    Enforces a maximum number of calls per minute. Callers ``await
    acquire()`` before making a model request; the method sleeps until
    the window allows another call.

    This is a *client-side* limiter that complements (but does not replace)
    the server-side rate limiting enforced by the API provider.

    Attributes:
        calls_per_minute: Maximum calls allowed in any 60-second window.
    """

    def __init__(self, calls_per_minute: int) -> None:
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be a positive integer.")
        self.calls_per_minute = calls_per_minute
        self._window_seconds = 60.0
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a call slot is available within the current window."""
        async with self._lock:
            self._prune()

            if len(self._timestamps) >= self.calls_per_minute:
                # Oldest call in window determines how long to sleep.
                sleep_secs = self._timestamps[0] + self._window_seconds - time.monotonic()
                if sleep_secs > 0:
                    logger.debug(
                        "RateLimiter: at capacity (%d/%d), sleeping %.2fs",
                        len(self._timestamps),
                        self.calls_per_minute,
                        sleep_secs,
                    )
                    await asyncio.sleep(sleep_secs)
                self._prune()

            self._timestamps.append(time.monotonic())

    def _prune(self) -> None:
        cutoff = time.monotonic() - self._window_seconds
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDefinition:
    """Describes a tool available to the model.

    Attributes:
        name: The tool's unique name (used by the model to invoke it).
        description: Human-readable description shown in the model's tool prompt.
        parameters: JSON Schema dict describing the tool's input shape.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_openai_format(self) -> dict[str, Any]:
        """Serialise to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass(frozen=True)
class ModelRequest:
    """Everything a model client needs for one call.

    Attributes:
        history: The full conversation log, oldest first.
        tools: Tools the model may request.
        turn_limit: The run's turn budget (informational for the endpoint).
        system_prompt: Optional system instruction.
        permission_mode: Optional endpoint-specific permission mode
            (e.g. ``"plan"``); clients that have no such notion ignore it.
        session_id: Session id to resume, when the caller supplied one.
    """

    history: tuple[Message, ...]
    tools: Sequence[ToolDefinition] = ()
    turn_limit: int = 10
    system_prompt: str | None = None
    permission_mode: str | None = None
    session_id: str | None = None


# ---------------------------------------------------------------------------
# ModelClient Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Protocol for model backends used by ConversationController.

    Any object implementing this Protocol can serve as the model backend.
    """

    def stream(self, request: ModelRequest) -> AsyncIterator[ResponseEvent]:
        """Send *request* and return its response as a lazy event sequence.

        The sequence is finite and not restartable. It should end with a
        ``SuccessEvent`` or ``FailureEvent``.

        Raises (while iterating):
            ModelRateLimitError: If the API returns a 429 rate-limit response.
            ModelConnectionError: If the API endpoint cannot be reached.
            ModelAPIError: For other API-level failures.
        """
        ...


# ---------------------------------------------------------------------------
# Concrete client implementation
# ---------------------------------------------------------------------------


def to_openai_messages(
    history: Sequence[Message], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    """Convert a conversation log to OpenAI chat message dicts."""
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for message in history:
        if isinstance(message, UserMessage):
            messages.append({"role": "user", "content": message.text})
        elif isinstance(message, AssistantMessage):
            raw: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            if message.tool_requests:
                raw["tool_calls"] = [
                    {
                        "id": req.id,
                        "type": "function",
                        "function": {
                            "name": req.tool_name,
                            "arguments": json.dumps(req.arguments),
                        },
                    }
                    for req in message.tool_requests
                ]
            messages.append(raw)
        elif isinstance(message, ToolResultMessage):
            content = message.content
            if message.is_error:
                content = json.dumps({"error": message.content})
            messages.append(
                {"role": "tool", "tool_call_id": message.request_id, "content": content}
            )
    return messages


def parse_tool_arguments(tool_name: str, raw: str) -> dict[str, Any]:
    """Decode streamed tool-call arguments.

    Text that is not a JSON object is kept under ``RAW_ARGUMENTS_KEY`` so the
    controller can report it back to the model.
    """
    try:
        args = json.loads(raw or "{}")
    except json.JSONDecodeError:
        args = None
    if not isinstance(args, dict):
        logger.warning("Malformed arguments for tool call %r: %r", tool_name, raw)
        return {RAW_ARGUMENTS_KEY: raw}
    return args


class OpenAICompatibleModelClient:
    """Model client backed by any OpenAI-compatible streaming endpoint.

    Works with:
    - Ollama (``http://localhost:11434/v1``)
    - OpenAI (``https://api.openai.com/v1``)
    - Claude via LiteLLM proxy
    - Any other OpenAI-compatible API

    The id of the first streamed chunk is announced as the session id.

    Attributes:
        base_url: The API base URL.
        model: The model identifier.
        temperature: Sampling temperature (0.0 to 2.0).
        rate_limiter: Optional ``RateLimiter`` for client-side call throttling.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        model: str = "llama3.1:8b",
        api_key: str = "ollama",
        temperature: float = 0.7,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.rate_limiter = rate_limiter
        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    async def stream(self, request: ModelRequest) -> AsyncIterator[ResponseEvent]:
        """Stream one chat completion as response events."""
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        openai_tools = [t.to_openai_format() for t in request.tools]
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(request.history, request.system_prompt),
            "temperature": self.temperature,
            "stream": True,
        }
        if openai_tools:
            kwargs["tools"] = openai_tools

        logger.debug(
            "Model request: model=%s, messages=%d, tools=%d",
            self.model,
            len(kwargs["messages"]),
            len(openai_tools),
        )

        text_parts: list[str] = []
        calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        announced = False

        try:
            response = await self._client.chat.completions.create(**kwargs)
            async for chunk in response:
                if not announced and chunk.id:
                    announced = True
                    yield SessionInitEvent(session_id=chunk.id)
                for choice in chunk.choices:
                    if choice.index != 0:
                        continue
                    delta = choice.delta
                    if delta is not None and delta.content:
                        text_parts.append(delta.content)
                        yield TextEvent(text=delta.content)
                    if delta is not None and delta.tool_calls:
                        self._accumulate_tool_calls(calls, delta.tool_calls)
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
        except RateLimitError as exc:
            logger.warning("Model rate limit exceeded: %s", exc)
            raise ModelRateLimitError(f"Rate limit exceeded: {exc}") from exc
        except APIConnectionError as exc:
            logger.error("Model connection failed: %s", exc)
            raise ModelConnectionError(f"Could not connect to model endpoint: {exc}") from exc
        except APIStatusError as exc:
            logger.error("Model API error %d: %s", exc.status_code, exc)
            raise ModelAPIError(
                f"Model API returned status {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            # Error events inside a stream and unparseable responses.
            logger.error("Model API error: %s", exc)
            raise ModelAPIError(f"Model API error: {exc}") from exc

        if finish_reason is None:
            logger.warning("Model stream ended without a finish_reason")
            return

        for index in sorted(calls):
            call = calls[index]
            yield ToolUseEvent(
                id=call["id"] or f"call_{uuid.uuid4().hex}",
                name=call["name"],
                arguments=parse_tool_arguments(call["name"], call["arguments"]),
            )

        logger.debug(
            "Model response: finish_reason=%s, tool_calls=%d", finish_reason, len(calls)
        )
        yield SuccessEvent(text="".join(text_parts))

    @staticmethod
    def _accumulate_tool_calls(calls: dict[int, dict[str, str]], fragments: Any) -> None:
        """Merge streamed tool-call fragments into *calls*, keyed by index."""
        for fragment in fragments:
            entry = calls.setdefault(
                fragment.index, {"id": "", "name": "", "arguments": ""}
            )
            if fragment.id:
                entry["id"] = fragment.id
            function = fragment.function
            if function is not None:
                if function.name:
                    entry["name"] += function.name
                if function.arguments:
                    entry["arguments"] += function.arguments
