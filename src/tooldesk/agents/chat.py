"""tooldesk-chat: interactive tool-using chat in the terminal.

Tools come from the built-in providers, or from one or more stdio tool
servers given with ``--server``. Each query starts a fresh run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from datetime import date

from tooldesk.agents.common import (
    apple_providers,
    configure_logging,
    connect_servers,
    create_model_client,
    meetings_provider,
    print_message,
    report_result,
)
from tooldesk.config import Settings, get_settings
from tooldesk.conversation.catalog import ToolCatalog, ToolProvider
from tooldesk.conversation.controller import ConversationController
from tooldesk.conversation.errors import ConfigurationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI assistant that can use tools to answer user queries. "
    "Use the provided tools when necessary. Today's date is {today}."
)

QUIT_COMMANDS = {"quit", "exit"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tooldesk-chat",
        description="Chat with a model that can use tooldesk tools",
    )
    parser.add_argument(
        "--server",
        action="append",
        default=[],
        metavar="SCRIPT",
        help="Tool server script (.py or .js) to connect to; may be repeated",
    )
    parser.add_argument("--max-turns", type=int, default=None, help="Maximum model calls per query")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


async def _read_query() -> str | None:
    try:
        return await asyncio.to_thread(input, "\nQuery: ")
    except EOFError:
        return None


async def chat_loop(controller: ConversationController, catalog: ToolCatalog) -> None:
    print("\ntooldesk chat started!")
    print("Type your queries or 'quit' to exit.")
    while True:
        query = await _read_query()
        if query is None or query.strip().lower() in QUIT_COMMANDS:
            break
        if not query.strip():
            continue
        result = await controller.run(query, catalog)
        print()
        report_result(result)


async def run_chat(args: argparse.Namespace, settings: Settings) -> int:
    async with AsyncExitStack() as stack:
        try:
            model_client = create_model_client(settings.llm_config())
            providers: list[ToolProvider] = []
            if args.server:
                providers.extend(await connect_servers(stack, args.server, settings))
            else:
                providers.extend(apple_providers(settings))
                providers.append(meetings_provider(settings))
            catalog = await ToolCatalog.build(providers)
        except ConfigurationError as exc:
            print(f"Failed to start: {exc}", file=sys.stderr)
            return 1

        print(f"Connected with tools: {catalog.names()}")
        controller = ConversationController(
            model_client=model_client,
            system_prompt=SYSTEM_PROMPT.format(today=date.today().isoformat()),
            max_turns=args.max_turns or settings.max_turns,
            on_message=print_message,
        )
        await chat_loop(controller, catalog)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the tooldesk-chat CLI."""
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings, debug=args.debug)
    try:
        sys.exit(asyncio.run(run_chat(args, settings)))
    except KeyboardInterrupt:
        logger.info("Chat interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
