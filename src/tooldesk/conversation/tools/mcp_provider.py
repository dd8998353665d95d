"""
Out-of-process tool provider speaking the Model Context Protocol over stdio.

``McpToolProvider`` launches a tool server as a child process, lists its
tools once and forwards calls to it. Any failure while talking to the server
(protocol error, timeout, the server exiting mid-run) surfaces as
``ToolInvocationError`` so the conversation loop can report it to the model.

Typical usage::

    params = server_parameters_for_script("servers/notes.py")
    async with McpToolProvider("notes", params.command, params.args) as notes:
        catalog = await ToolCatalog.build([notes])
        ...
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import AsyncExitStack
from datetime import timedelta
from pathlib import Path
from typing import Any

import anyio
from mcp import ClientSession, McpError, StdioServerParameters, types
from mcp.client.stdio import stdio_client

from tooldesk.conversation.errors import ConfigurationError, ToolInvocationError
from tooldesk.conversation.providers import ToolDefinition

logger = logging.getLogger(__name__)

_CHANNEL_ERRORS = (McpError, anyio.BrokenResourceError, anyio.ClosedResourceError, OSError)


def server_parameters_for_script(path: str | Path) -> StdioServerParameters:
    """Return launch parameters for a ``.py`` or ``.js`` tool server script.

    Raises:
        ConfigurationError: For any other file type.
    """
    script = str(path)
    if script.endswith(".py"):
        command = sys.executable
    elif script.endswith(".js"):
        command = "node"
    else:
        raise ConfigurationError(f"Server script must be a .js or .py file: {script}")
    return StdioServerParameters(command=command, args=[script])


def pluck_content(result: types.CallToolResult) -> str:
    """Flatten a ``CallToolResult`` into text for the conversation."""
    if result.structuredContent:
        return json.dumps(result.structuredContent)
    if not result.content:
        return ""

    out: list[str] = []
    for item in result.content:
        if isinstance(item, types.TextContent):
            out.append(item.text)
        elif isinstance(item, types.ImageContent):
            out.append(f"[Image: {item.mimeType}, {len(item.data)} bytes]")
        elif isinstance(item, types.EmbeddedResource):
            if isinstance(item.resource, types.TextResourceContents):
                out.append(item.resource.text)
            else:
                out.append(f"[Embedded resource: {item.resource.uri}]")
        else:
            out.append(f"[{type(item).__name__}]")
    return "\n".join(out)


class McpToolProvider:
    """A ``ToolProvider`` backed by an MCP stdio server.

    Args:
        name: Provider name used in logs and catalog errors.
        command: Executable that starts the server.
        args: Command-line arguments for *command*.
        env: Extra environment for the child process.
        call_timeout: Seconds to wait for each tool call.
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        call_timeout: float = 60.0,
    ) -> None:
        self.name = name
        self.params = StdioServerParameters(command=command, args=list(args or []), env=env)
        self.call_timeout = call_timeout
        self._session: ClientSession | None = None
        self._exit_stack: AsyncExitStack | None = None

    @classmethod
    def for_script(cls, path: str | Path, name: str | None = None, **kwargs: Any) -> McpToolProvider:
        params = server_parameters_for_script(path)
        return cls(name or Path(path).stem, params.command, params.args, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the server process and perform the MCP handshake.

        Raises:
            ConfigurationError: If the server cannot be started or initialised.
        """
        if self._session is not None:
            return
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self.params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except Exception as exc:
            await stack.aclose()
            raise ConfigurationError(
                f"Failed to connect to tool server {self.name!r}: {exc}"
            ) from exc
        self._exit_stack = stack
        self._session = session
        logger.info("Connected to tool server %r (%s)", self.name, self.params.command)

    async def close(self) -> None:
        if self._exit_stack is None:
            return
        stack, self._exit_stack, self._session = self._exit_stack, None, None
        await stack.aclose()
        logger.debug("Disconnected from tool server %r", self.name)

    async def __aenter__(self) -> McpToolProvider:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # ToolProvider
    # ------------------------------------------------------------------

    async def list_tools(self) -> list[ToolDefinition]:
        session = self._require_session()
        result = await session.list_tools()
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description or "",
                parameters=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Forward a call to the server.

        Raises:
            ToolInvocationError: If the server reports an error, the call times
                out, or the channel to the server is broken.
        """
        session = self._require_session()
        try:
            result = await session.call_tool(
                name,
                arguments,
                read_timeout_seconds=timedelta(seconds=self.call_timeout),
            )
        except _CHANNEL_ERRORS as exc:
            logger.error("Tool server %r failed on %r: %s", self.name, name, exc)
            raise ToolInvocationError(
                f"Tool server {self.name!r} failed: {exc or type(exc).__name__}"
            ) from exc

        content = pluck_content(result)
        if result.isError:
            raise ToolInvocationError(content or f"Tool {name!r} failed")
        return content

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ToolInvocationError(f"Tool server {self.name!r} is not connected")
        return self._session
