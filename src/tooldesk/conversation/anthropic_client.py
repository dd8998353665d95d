"""Anthropic Messages API client producing response events."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

from anthropic import APIConnectionError, APIError, APIStatusError, AsyncAnthropic, RateLimitError

from tooldesk.conversation.errors import (
    ModelAPIError,
    ModelConnectionError,
    ModelRateLimitError,
)
from tooldesk.conversation.events import (
    ResponseEvent,
    SessionInitEvent,
    SuccessEvent,
    TextEvent,
    ToolUseEvent,
)
from tooldesk.conversation.messages import (
    AssistantMessage,
    Message,
    TextSegment,
    ToolResultMessage,
    UserMessage,
)
from tooldesk.conversation.providers import ModelRequest, RateLimiter, ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5-20250929"


def to_anthropic_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    """Convert tool definitions to Anthropic tool dicts."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters or {"type": "object", "properties": {}},
        }
        for tool in tools
    ]


def to_anthropic_messages(history: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert a conversation log to Anthropic message dicts.

    Tool results travel as ``tool_result`` blocks in a user turn. Adjacent
    messages with the same role are merged so roles strictly alternate.
    """
    messages: list[dict[str, Any]] = []

    def _append(role: str, blocks: list[dict[str, Any]]) -> None:
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})

    for message in history:
        if isinstance(message, UserMessage):
            _append("user", [{"type": "text", "text": message.text}])
        elif isinstance(message, AssistantMessage):
            blocks: list[dict[str, Any]] = []
            for segment in message.segments:
                if isinstance(segment, TextSegment):
                    if segment.text:
                        blocks.append({"type": "text", "text": segment.text})
                else:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": segment.id,
                            "name": segment.tool_name,
                            "input": segment.arguments,
                        }
                    )
            _append("assistant", blocks)
        elif isinstance(message, ToolResultMessage):
            _append(
                "user",
                [
                    {
                        "type": "tool_result",
                        "tool_use_id": message.request_id,
                        "content": message.content,
                        "is_error": message.is_error,
                    }
                ],
            )
    return messages


class AnthropicModelClient:
    """Model client for the Anthropic Messages API.

    The endpoint returns one structured message per call; this client replays
    its content blocks as events so the controller sees the same shape as a
    streamed response. The message id is announced as the session id.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tokens: int = 1000,
        temperature: float | None = None,
        max_retries: int = 3,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("An Anthropic API key is required")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.rate_limiter = rate_limiter
        self._client = AsyncAnthropic(api_key=api_key, max_retries=max_retries)

    async def stream(self, request: ModelRequest) -> AsyncIterator[ResponseEvent]:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        params: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": to_anthropic_messages(request.history),
        }
        if request.system_prompt:
            params["system"] = request.system_prompt
        if request.tools:
            params["tools"] = to_anthropic_tools(request.tools)
        if self.temperature is not None:
            params["temperature"] = self.temperature
        if request.permission_mode:
            logger.debug("permission_mode=%r has no Messages API equivalent", request.permission_mode)

        logger.debug(
            "Anthropic request: model=%s, messages=%d, tools=%d",
            self.model,
            len(params["messages"]),
            len(request.tools),
        )

        try:
            response = await self._client.messages.create(**params)
        except RateLimitError as exc:
            logger.warning("Anthropic rate limit exceeded: %s", exc)
            raise ModelRateLimitError(f"Rate limit exceeded: {exc}") from exc
        except APIConnectionError as exc:
            logger.error("Anthropic connection failed: %s", exc)
            raise ModelConnectionError(f"Could not connect to model endpoint: {exc}") from exc
        except APIStatusError as exc:
            logger.error("Anthropic API error %d: %s", exc.status_code, exc)
            raise ModelAPIError(
                f"Model API returned status {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            logger.error("Anthropic API error: %s", exc)
            raise ModelAPIError(f"Model API error: {exc}") from exc

        logger.debug(
            "Anthropic response: stop_reason=%s, content_blocks=%d",
            response.stop_reason,
            len(response.content),
        )

        yield SessionInitEvent(session_id=response.id)

        texts: list[str] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
                yield TextEvent(text=block.text)
            elif block.type == "tool_use":
                yield ToolUseEvent(id=block.id, name=block.name, arguments=dict(block.input or {}))
            else:
                logger.warning("Unknown content block type: %s", block.type)

        yield SuccessEvent(text="".join(texts))
