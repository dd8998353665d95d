"""tooldesk-server: expose an in-process tool provider over MCP stdio."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Callable

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from tooldesk.config import Settings, get_settings
from tooldesk.conversation.tools.calendar import create_calendar_provider
from tooldesk.conversation.tools.contacts import create_contacts_provider
from tooldesk.conversation.tools.meetings import create_meetings_provider
from tooldesk.conversation.tools.notes import create_notes_provider
from tooldesk.conversation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

PROVIDER_FACTORIES: dict[str, Callable[[Settings], ToolRegistry]] = {
    "calendar": lambda s: create_calendar_provider(s.calendar_config()),
    "contacts": lambda s: create_contacts_provider(s.applescript_config()),
    "notes": lambda s: create_notes_provider(s.applescript_config()),
    "meetings": lambda s: create_meetings_provider(s.fathom_config()),
}


def build_server(registry: ToolRegistry) -> Server:
    """Wrap *registry* in an MCP server.

    Exceptions raised by the registry are turned into ``isError`` results by
    the MCP server framework.
    """
    server: Server = Server(f"tooldesk-{registry.name}")

    @server.list_tools()
    async def _list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=definition.name,
                description=definition.description,
                inputSchema=definition.parameters or {"type": "object", "properties": {}},
            )
            for definition in await registry.list_tools()
        ]

    @server.call_tool()
    async def _call_tool(name: str, arguments: dict[str, Any] | None) -> list[types.TextContent]:
        logger.info("Tool call: %s(%s)", name, arguments)
        text = await registry.call_tool(name, arguments or {})
        return [types.TextContent(type="text", text=text)]

    return server


async def serve(registry: ToolRegistry) -> None:
    """Serve *registry* on stdin/stdout until the client disconnects."""
    server = build_server(registry)
    async with stdio_server() as (read_stream, write_stream):
        logger.info("tooldesk %s server running on stdio", registry.name)
        if registry.disabled_reason:
            logger.warning("Provider degraded: %s", registry.disabled_reason)
        await server.run(read_stream, write_stream, server.create_initialization_options())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tooldesk-server",
        description="Serve a tooldesk tool provider over MCP stdio",
    )
    parser.add_argument("provider", choices=sorted(PROVIDER_FACTORIES), help="Provider to serve")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main() -> None:
    """Entry point for the tooldesk-server CLI."""
    args = _build_parser().parse_args()
    settings = get_settings()

    # stdout carries the protocol; logs go to stderr.
    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    registry = PROVIDER_FACTORIES[args.provider](settings)
    try:
        asyncio.run(serve(registry))
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
