"""tooldesk-assistant: an executive assistant over Apple Calendar, Contacts and Notes."""

from __future__ import annotations

import argparse
import asyncio
import sys

from tooldesk.agents.common import (
    apple_providers,
    configure_logging,
    create_model_client,
    print_message,
    print_session,
    report_result,
)
from tooldesk.config import Settings, get_settings
from tooldesk.conversation.catalog import ToolCatalog
from tooldesk.conversation.controller import ConversationController
from tooldesk.conversation.errors import ConfigurationError

SYSTEM_PROMPT = """
You are an executive assistant AI agent with access to Apple Applications (Calendar, Notes) on the user's Mac.
Use the provided tools to manage and retrieve information as needed to assist with the user's requests.

# Key Information

- Personal Information: Use Apple Note titled "Personal Information" for relevant personal details.
- Professional Information: Use Apple Note titled "Professional Information" for relevant professional details.
"""

ALLOWED_TOOLS = [
    "get_note_content",
    "search_notes",
    "create_note",
    "create_event",
    "search_contacts",
    "get_contact",
]

MAX_TURNS = 10


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tooldesk-assistant",
        description="Ask the executive assistant to work with your calendar, contacts and notes",
    )
    parser.add_argument("prompt", help="What you want the assistant to do")
    parser.add_argument(
        "--max-turns",
        type=int,
        default=MAX_TURNS,
        help=f"Maximum model calls (default: {MAX_TURNS})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


async def run_assistant(args: argparse.Namespace, settings: Settings) -> int:
    try:
        model_client = create_model_client(settings.llm_config())
        catalog = await ToolCatalog.build(apple_providers(settings), allowed_tools=ALLOWED_TOOLS)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    controller = ConversationController(
        model_client=model_client,
        system_prompt=SYSTEM_PROMPT,
        max_turns=args.max_turns,
        on_message=print_message,
        on_session=print_session,
    )
    result = await controller.run(args.prompt, catalog)
    return report_result(result)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the tooldesk-assistant CLI."""
    args = _build_parser().parse_args(argv)
    if not args.prompt.strip():
        print("Error: Please provide a prompt as the first argument", file=sys.stderr)
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings, debug=args.debug)
    sys.exit(asyncio.run(run_assistant(args, settings)))


if __name__ == "__main__":
    main()
