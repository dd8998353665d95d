"""Unit tests for tooldesk.conversation.providers."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from tooldesk.conversation.catalog import ToolCatalog
from tooldesk.conversation.controller import ConversationController, RunStatus
from tooldesk.conversation.errors import (
    ModelAPIError,
    ModelConnectionError,
    ModelEndpointError,
    ModelRateLimitError,
    ProtocolError,
)
from tooldesk.conversation.events import (
    RAW_ARGUMENTS_KEY,
    SessionInitEvent,
    SuccessEvent,
    TextEvent,
    ToolUseEvent,
    classify_response,
)
from tooldesk.conversation.messages import (
    AssistantMessage,
    TextSegment,
    ToolInvocationRequest,
    ToolResultMessage,
    UserMessage,
)
from tooldesk.conversation.providers import (
    ModelClient,
    ModelRequest,
    OpenAICompatibleModelClient,
    RateLimiter,
    ToolDefinition,
    to_openai_messages,
)
from tooldesk.conversation.tools.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunk(
    content: str | None = None,
    tool_calls: list[Any] | None = None,
    finish_reason: str | None = None,
    id_: str = "chatcmpl-1",
) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    choice = SimpleNamespace(index=0, delta=delta, finish_reason=finish_reason)
    return SimpleNamespace(id=id_, choices=[choice])


def _fragment(index: int, id_: str | None = None, name: str | None = None, arguments: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        index=index, id=id_, function=SimpleNamespace(name=name, arguments=arguments)
    )


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


def _make_client(*chunks: SimpleNamespace) -> tuple[OpenAICompatibleModelClient, MagicMock]:
    with patch("tooldesk.conversation.providers.AsyncOpenAI") as mock_cls:
        sdk = MagicMock()
        sdk.chat.completions.create = AsyncMock(return_value=_aiter(list(chunks)))
        mock_cls.return_value = sdk
        client = OpenAICompatibleModelClient(model="llama3.1:8b")
    return client, sdk


def _request(*tools: ToolDefinition) -> ModelRequest:
    return ModelRequest(history=(UserMessage("hi"),), tools=tools, system_prompt="Be brief.")


async def _collect(client: OpenAICompatibleModelClient, request: ModelRequest) -> list[Any]:
    return [event async for event in client.stream(request)]


def _http_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "http://localhost/v1/chat"))


# ---------------------------------------------------------------------------
# ToolDefinition
# ---------------------------------------------------------------------------


def test_tool_definition_to_openai_format() -> None:
    tool = ToolDefinition(
        name="search_notes",
        description="Search notes.",
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string"}},
            "required": ["query"],
        },
    )

    fmt = tool.to_openai_format()

    assert fmt["type"] == "function"
    assert fmt["function"]["name"] == "search_notes"
    assert fmt["function"]["parameters"]["required"] == ["query"]


def test_tool_definition_empty_parameters() -> None:
    fmt = ToolDefinition(name="list_notes", description="List notes.").to_openai_format()
    assert fmt["function"]["parameters"] == {"type": "object", "properties": {}}


# ---------------------------------------------------------------------------
# Message conversion
# ---------------------------------------------------------------------------


def test_to_openai_messages_full_round() -> None:
    history = [
        UserMessage("Find milk"),
        AssistantMessage(
            segments=(
                TextSegment("Searching."),
                ToolInvocationRequest("c1", "search_notes", {"query": "milk"}),
            )
        ),
        ToolResultMessage("c1", '{"notes": []}'),
    ]

    messages = to_openai_messages(history, system_prompt="Be brief.")

    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert messages[1] == {"role": "user", "content": "Find milk"}
    assert messages[2]["content"] == "Searching."
    assert messages[2]["tool_calls"][0]["function"] == {
        "name": "search_notes",
        "arguments": json.dumps({"query": "milk"}),
    }
    assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": '{"notes": []}'}


def test_to_openai_messages_wraps_error_results() -> None:
    history = [
        UserMessage("x"),
        AssistantMessage(segments=(ToolInvocationRequest("c1", "get_contact", {}),)),
        ToolResultMessage("c1", "Contact not found: Bo", is_error=True),
    ]

    messages = to_openai_messages(history)

    assert messages[1]["content"] is None
    assert json.loads(messages[2]["content"]) == {"error": "Contact not found: Bo"}


# ---------------------------------------------------------------------------
# OpenAICompatibleModelClient
# ---------------------------------------------------------------------------


def test_client_stores_config() -> None:
    with patch("tooldesk.conversation.providers.AsyncOpenAI") as mock_cls:
        client = OpenAICompatibleModelClient(
            base_url="http://localhost:11434/v1", model="llama3.1:8b", api_key="ollama", temperature=0.5
        )

    assert client.model == "llama3.1:8b"
    assert client.temperature == 0.5
    mock_cls.assert_called_once_with(base_url="http://localhost:11434/v1", api_key="ollama")
    assert isinstance(client, ModelClient)


@pytest.mark.anyio
async def test_stream_text_response() -> None:
    client, sdk = _make_client(
        _chunk("It is "), _chunk("sunny."), _chunk(finish_reason="stop")
    )

    events = await _collect(client, _request())

    assert events == [
        SessionInitEvent("chatcmpl-1"),
        TextEvent("It is "),
        TextEvent("sunny."),
        SuccessEvent("It is sunny."),
    ]
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert "tools" not in kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}


@pytest.mark.anyio
async def test_stream_reassembles_tool_call_fragments() -> None:
    client, sdk = _make_client(
        _chunk(tool_calls=[_fragment(0, "call_a", "search_", '{"que')]),
        _chunk(tool_calls=[_fragment(0, None, "notes", 'ry": "milk"}'), _fragment(1, "call_b", "list_notes", "")]),
        _chunk(finish_reason="tool_calls"),
    )
    tool = ToolDefinition(name="search_notes", description="Search notes.")

    events = await _collect(client, _request(tool))

    assert events[1:] == [
        ToolUseEvent("call_a", "search_notes", {"query": "milk"}),
        ToolUseEvent("call_b", "list_notes", {}),
        SuccessEvent(""),
    ]
    assert sdk.chat.completions.create.call_args.kwargs["tools"] == [tool.to_openai_format()]


@pytest.mark.anyio
async def test_stream_malformed_arguments_keep_raw_text() -> None:
    client, _sdk = _make_client(
        _chunk(tool_calls=[_fragment(0, "c1", "list_notes", "{not json")]),
        _chunk(tool_calls=[_fragment(1, "c2", "list_notes", "[1, 2]")]),
        _chunk(finish_reason="tool_calls"),
    )

    events = await _collect(client, _request())

    assert events[1] == ToolUseEvent("c1", "list_notes", {RAW_ARGUMENTS_KEY: "{not json"})
    assert events[2] == ToolUseEvent("c2", "list_notes", {RAW_ARGUMENTS_KEY: "[1, 2]"})


@pytest.mark.anyio
async def test_stream_generates_ids_for_id_less_tool_calls() -> None:
    client, _sdk = _make_client(
        _chunk(tool_calls=[_fragment(0, None, "list_notes", "{}"), _fragment(1, None, "list_notes", "{}")]),
        _chunk(finish_reason="tool_calls"),
    )

    events = await _collect(client, _request())

    first, second = events[1], events[2]
    assert first.id.startswith("call_")
    assert second.id.startswith("call_")
    assert first.id != second.id


@pytest.mark.anyio
async def test_id_less_tool_calls_stay_unique_across_turns() -> None:
    client, sdk = _make_client()
    sdk.chat.completions.create.side_effect = [
        _aiter([_chunk(tool_calls=[_fragment(0, None, "list_notes", "{}")], id_="r1"), _chunk(finish_reason="tool_calls", id_="r1")]),
        _aiter([_chunk(tool_calls=[_fragment(0, None, "list_notes", "{}")], id_="r2"), _chunk(finish_reason="tool_calls", id_="r2")]),
        _aiter([_chunk("Two notes.", id_="r3"), _chunk(finish_reason="stop", id_="r3")]),
    ]
    registry = ToolRegistry("notes")
    registry.register(ToolDefinition(name="list_notes", description="List notes."), AsyncMock(return_value="[]"))
    controller = ConversationController(model_client=client)

    result = await controller.run("How many notes?", await ToolCatalog.build([registry]))

    assert result.status is RunStatus.COMPLETED_SUCCESS
    assert result.answer == "Two notes."
    result_ids = [r.request_id for r in result.tool_results]
    assert len(result_ids) == 2
    assert len(set(result_ids)) == 2
    sent = sdk.chat.completions.create.call_args_list[2].kwargs["messages"]
    tool_call_ids = [call["id"] for m in sent if m.get("tool_calls") for call in m["tool_calls"]]
    assert tool_call_ids == result_ids


@pytest.mark.anyio
async def test_stream_without_finish_reason_is_protocol_error() -> None:
    client, _sdk = _make_client(_chunk("partial"))

    with pytest.raises(ProtocolError):
        await classify_response(client.stream(_request()))


@pytest.mark.anyio
async def test_stream_classifies_into_assistant_message() -> None:
    client, _sdk = _make_client(
        _chunk("Let me look."),
        _chunk(tool_calls=[_fragment(0, "c1", "search_notes", '{"query": "x"}')]),
        _chunk(finish_reason="tool_calls"),
    )

    response = await classify_response(client.stream(_request()))

    assert response.session_id == "chatcmpl-1"
    assert response.message.segments == (
        TextSegment("Let me look."),
        ToolInvocationRequest("c1", "search_notes", {"query": "x"}),
    )


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("sdk_error", "expected"),
    [
        (openai.RateLimitError("slow down", response=_http_response(429), body=None), ModelRateLimitError),
        (openai.APIConnectionError(request=httpx.Request("POST", "http://localhost")), ModelConnectionError),
        (openai.APIStatusError("boom", response=_http_response(500), body=None), ModelAPIError),
    ],
)
async def test_stream_maps_sdk_errors(sdk_error: Exception, expected: type[ModelEndpointError]) -> None:
    client, sdk = _make_client()
    sdk.chat.completions.create.side_effect = sdk_error

    with pytest.raises(expected):
        await _collect(client, _request())


@pytest.mark.anyio
async def test_api_error_keeps_status_code() -> None:
    client, sdk = _make_client()
    sdk.chat.completions.create.side_effect = openai.APIStatusError(
        "bad gateway", response=_http_response(502), body=None
    )

    with pytest.raises(ModelAPIError) as exc_info:
        await _collect(client, _request())
    assert exc_info.value.status_code == 502


async def _failing_stream(error: Exception) -> AsyncIterator[Any]:
    yield _chunk("Let me ")
    raise error


@pytest.mark.anyio
async def test_mid_stream_api_error_becomes_model_api_error() -> None:
    client, sdk = _make_client()
    sdk.chat.completions.create.return_value = _failing_stream(
        openai.APIError("server overloaded", httpx.Request("POST", "http://localhost"), body=None)
    )

    with pytest.raises(ModelAPIError, match="server overloaded"):
        await _collect(client, _request())


@pytest.mark.anyio
async def test_mid_stream_api_error_ends_run_with_error() -> None:
    client, sdk = _make_client()
    sdk.chat.completions.create.return_value = _failing_stream(
        openai.APIError("server overloaded", httpx.Request("POST", "http://localhost"), body=None)
    )
    controller = ConversationController(model_client=client)

    result = await controller.run("hi", await ToolCatalog.build([]))

    assert result.status is RunStatus.COMPLETED_ERROR
    assert isinstance(result.error, ModelAPIError)


@pytest.mark.anyio
async def test_stream_acquires_rate_limiter() -> None:
    client, _sdk = _make_client(_chunk("ok"), _chunk(finish_reason="stop"))
    client.rate_limiter = MagicMock()
    client.rate_limiter.acquire = AsyncMock()

    await _collect(client, _request())

    client.rate_limiter.acquire.assert_awaited_once()


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------


def test_rate_limiter_rejects_zero_calls_per_minute() -> None:
    with pytest.raises(ValueError, match="positive integer"):
        RateLimiter(calls_per_minute=0)


@pytest.mark.anyio
async def test_rate_limiter_allows_calls_within_limit() -> None:
    rl = RateLimiter(calls_per_minute=10)
    for _ in range(5):
        await rl.acquire()
    assert len(rl._timestamps) == 5
