"""Unit tests for tooldesk.conversation.tools.mcp_provider."""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest
from mcp import McpError, types

from tooldesk.conversation.errors import ConfigurationError, ToolInvocationError
from tooldesk.conversation.providers import ToolDefinition
from tooldesk.conversation.tools.mcp_provider import (
    McpToolProvider,
    pluck_content,
    server_parameters_for_script,
)


def _connected_provider(session: MagicMock) -> McpToolProvider:
    provider = McpToolProvider("notes", "python", ["notes.py"], call_timeout=5.0)
    provider._session = session
    return provider


def _text_result(text: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


# ---------------------------------------------------------------------------
# Launch parameters
# ---------------------------------------------------------------------------


def test_python_script_uses_current_interpreter() -> None:
    params = server_parameters_for_script("servers/notes.py")
    assert params.command == sys.executable
    assert params.args == ["servers/notes.py"]


def test_js_script_uses_node() -> None:
    assert server_parameters_for_script("build/index.js").command == "node"


def test_other_script_type_rejected() -> None:
    with pytest.raises(ConfigurationError, match=".js or .py"):
        server_parameters_for_script("server.sh")


def test_for_script_names_provider_after_file() -> None:
    provider = McpToolProvider.for_script("servers/calendar.py", call_timeout=3.0)
    assert provider.name == "calendar"
    assert provider.params.args == ["servers/calendar.py"]
    assert provider.call_timeout == 3.0


# ---------------------------------------------------------------------------
# pluck_content
# ---------------------------------------------------------------------------


def test_pluck_content_joins_text_items() -> None:
    result = types.CallToolResult(
        content=[
            types.TextContent(type="text", text="first"),
            types.TextContent(type="text", text="second"),
        ]
    )
    assert pluck_content(result) == "first\nsecond"


def test_pluck_content_prefers_structured_content() -> None:
    result = types.CallToolResult(
        content=[types.TextContent(type="text", text="ignored")],
        structuredContent={"notes": []},
    )
    assert pluck_content(result) == '{"notes": []}'


def test_pluck_content_describes_images_and_resources() -> None:
    result = types.CallToolResult(
        content=[
            types.ImageContent(type="image", data="aGVsbG8=", mimeType="image/png"),
            types.EmbeddedResource(
                type="resource",
                resource=types.TextResourceContents(uri="file:///notes.txt", text="note body"),
            ),
        ]
    )
    assert pluck_content(result) == "[Image: image/png, 8 bytes]\nnote body"


def test_pluck_content_empty() -> None:
    assert pluck_content(types.CallToolResult(content=[])) == ""


# ---------------------------------------------------------------------------
# ToolProvider behaviour
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_list_tools_maps_definitions() -> None:
    session = MagicMock()
    session.list_tools = AsyncMock(
        return_value=types.ListToolsResult(
            tools=[
                types.Tool(
                    name="search_notes",
                    description="Search notes",
                    inputSchema={"type": "object", "properties": {"query": {"type": "string"}}},
                )
            ]
        )
    )

    tools = await _connected_provider(session).list_tools()

    assert tools == [
        ToolDefinition(
            name="search_notes",
            description="Search notes",
            parameters={"type": "object", "properties": {"query": {"type": "string"}}},
        )
    ]


@pytest.mark.anyio
async def test_call_tool_returns_text() -> None:
    session = MagicMock()
    session.call_tool = AsyncMock(return_value=_text_result('{"notes": []}'))

    result = await _connected_provider(session).call_tool("search_notes", {"query": "milk"})

    assert result == '{"notes": []}'
    args = session.call_tool.call_args
    assert args.args == ("search_notes", {"query": "milk"})
    assert args.kwargs["read_timeout_seconds"].total_seconds() == 5.0


@pytest.mark.anyio
async def test_call_tool_error_result_raises() -> None:
    session = MagicMock()
    session.call_tool = AsyncMock(return_value=_text_result("Note not found: x", is_error=True))

    with pytest.raises(ToolInvocationError, match="Note not found: x"):
        await _connected_provider(session).call_tool("get_note_content", {"noteTitle": "x"})


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error",
    [
        McpError(types.ErrorData(code=-32001, message="Request timed out")),
        anyio.BrokenResourceError(),
        anyio.ClosedResourceError(),
    ],
)
async def test_channel_failures_become_invocation_errors(error: Exception) -> None:
    session = MagicMock()
    session.call_tool = AsyncMock(side_effect=error)

    with pytest.raises(ToolInvocationError, match="Tool server 'notes' failed"):
        await _connected_provider(session).call_tool("list_notes", {})


@pytest.mark.anyio
async def test_calls_before_connect_fail() -> None:
    provider = McpToolProvider("notes", "python")
    with pytest.raises(ToolInvocationError, match="not connected"):
        await provider.call_tool("list_notes", {})
    with pytest.raises(ToolInvocationError, match="not connected"):
        await provider.list_tools()


@pytest.mark.anyio
async def test_close_without_connect_is_noop() -> None:
    await McpToolProvider("notes", "python").close()
