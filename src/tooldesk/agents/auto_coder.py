"""tooldesk-coder: a coding agent that acts without asking for permission.

Tools come from stdio tool servers given with ``--server``. Instructions in
the project's ``CLAUDE.md`` (when present) are appended to the system prompt.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path

from tooldesk.agents.common import (
    configure_logging,
    connect_servers,
    create_model_client,
    print_message,
    print_session,
    report_result,
)
from tooldesk.config import LLMConfig, Settings, get_settings
from tooldesk.conversation.catalog import ToolCatalog
from tooldesk.conversation.controller import ConversationController
from tooldesk.conversation.errors import ConfigurationError

logger = logging.getLogger(__name__)

CODER_MODEL = "claude-sonnet-4-5-20250929"
PERMISSION_MODE = "bypassPermissions"
PROJECT_INSTRUCTIONS_FILE = "CLAUDE.md"
MAX_TURNS = 25

SYSTEM_PROMPT = """
You are an expert software engineer working in the user's project directory.
Use the provided tools to read, change and verify code as needed to complete the user's request.
Act without asking for confirmation, and finish with a short summary of what you changed.
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tooldesk-coder",
        description="Let a coding agent work on your project",
    )
    parser.add_argument("prompt", help="What you want the agent to do")
    parser.add_argument(
        "--server",
        action="append",
        default=[],
        metavar="SCRIPT",
        help="Tool server script (.py or .js) to connect to; may be repeated",
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory whose CLAUDE.md is loaded (default: current directory)",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=MAX_TURNS,
        help=f"Maximum model calls (default: {MAX_TURNS})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def load_project_instructions(project_dir: Path) -> str | None:
    """Return the project's CLAUDE.md text, or ``None`` if it has none."""
    path = project_dir / PROJECT_INSTRUCTIONS_FILE
    if not path.is_file():
        return None
    logger.info("Loading project instructions from %s", path)
    return path.read_text(encoding="utf-8").strip() or None


def build_system_prompt(project_dir: Path) -> str:
    instructions = load_project_instructions(project_dir)
    if instructions is None:
        return SYSTEM_PROMPT
    return f"{SYSTEM_PROMPT}\n# Project Instructions\n\n{instructions}\n"


def coder_llm_config(settings: Settings) -> LLMConfig:
    """The configured endpoint, pinned to the coding model on Anthropic."""
    config = settings.llm_config()
    if config.backend == "anthropic" and config.model is None:
        config = dataclasses.replace(config, model=CODER_MODEL)
    return config


async def run_coder(args: argparse.Namespace, settings: Settings) -> int:
    async with AsyncExitStack() as stack:
        try:
            model_client = create_model_client(coder_llm_config(settings))
            providers = await connect_servers(stack, args.server, settings)
            catalog = await ToolCatalog.build(providers)
        except ConfigurationError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

        if not catalog.tools:
            logger.warning("No tool servers given; the agent can only answer in text")

        controller = ConversationController(
            model_client=model_client,
            system_prompt=build_system_prompt(args.project_dir),
            permission_mode=PERMISSION_MODE,
            max_turns=args.max_turns,
            on_message=print_message,
            on_session=print_session,
        )
        result = await controller.run(args.prompt, catalog)
    return report_result(result)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the tooldesk-coder CLI."""
    args = _build_parser().parse_args(argv)
    if not args.prompt.strip():
        print("Error: Please provide a prompt as the first argument", file=sys.stderr)
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings, debug=args.debug)
    sys.exit(asyncio.run(run_coder(args, settings)))


if __name__ == "__main__":
    main()
