"""tooldesk-meetings: download and organise recent Fathom meeting transcripts.

Runs in two steps. A planning run, restricted to listing meetings, returns a
plan without acting on it. The plan then seeds a workflow run that may
download transcripts and summaries.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

from tooldesk.agents.common import (
    configure_logging,
    create_model_client,
    meetings_provider,
    print_message,
    print_session,
)
from tooldesk.config import Settings, get_settings
from tooldesk.conversation.catalog import ToolCatalog
from tooldesk.conversation.controller import ConversationController, FinalResult
from tooldesk.conversation.errors import ConfigurationError
from tooldesk.conversation.providers import ModelClient
from tooldesk.conversation.tools.registry import ToolRegistry

SYSTEM_PROMPT = """
You are an AI assistant that helps users analyze and extract insights from meeting transcripts using the Fathom tool.
Use Fathom transcript tools to read, summarize, and extract action items from meeting transcripts following
the workflow described by the user.

Make sure to reference the meeting transcript content when providing summaries or action items.

Today's date is {today}.
"""

PLANNING_PROMPT = """
Build a plan to download the transcripts for the meetings of the last {days} days into the {output} folder
and organize them into folders based on each person's name I met with.

For every downloaded transcript, also download the meeting summary into a summary markdown file
next to the transcript.

Do not take action on the plan, just return it.
"""

WORKFLOW_PROMPT = """
Follow the plan below by executing the implementation steps in order using only the tools available to you.
Do not write code to complete the plan.

Here is the plan you must follow:
"""

PLAN_TOOLS = ["list_meetings"]
WORKFLOW_TOOLS = ["list_meetings", "get_summary", "download_transcript", "download_summary"]

PLAN_MAX_TURNS = 10
WORKFLOW_MAX_TURNS = 50


class NoResultError(RuntimeError):
    """A run finished without producing an answer."""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tooldesk-meetings",
        description="Download and organise recent Fathom meeting transcripts",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=7,
        help="How many days back to look for meetings (default: 7)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Folder to download into (default: TOOLDESK_MEETINGS_OUTPUT_DIR or ./meetings)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _answer_or_raise(result: FinalResult) -> str:
    if not result.succeeded or not result.answer:
        if result.error is not None:
            raise NoResultError(f"No result received from the query: {result.error}")
        raise NoResultError("No result received from the query.")
    return result.answer


async def run_workflow(
    model_client: ModelClient,
    provider: ToolRegistry,
    days: int,
    output: Path,
) -> str:
    """Run the planning step, then the workflow step; return the final answer.

    Raises:
        NoResultError: If either step yields no answer.
        ConfigurationError: If the tool catalog cannot be built.
    """
    system_prompt = SYSTEM_PROMPT.format(today=date.today().isoformat())

    plan_catalog = await ToolCatalog.build([provider], allowed_tools=PLAN_TOOLS)
    planner = ConversationController(
        model_client=model_client,
        system_prompt=system_prompt,
        permission_mode="plan",
        max_turns=PLAN_MAX_TURNS,
        on_message=print_message,
        on_session=print_session,
    )
    plan = _answer_or_raise(
        await planner.run(PLANNING_PROMPT.format(days=days, output=output), plan_catalog)
    )
    print(plan)

    workflow_catalog = await ToolCatalog.build([provider], allowed_tools=WORKFLOW_TOOLS)
    worker = ConversationController(
        model_client=model_client,
        system_prompt=system_prompt,
        permission_mode="acceptEdits",
        max_turns=WORKFLOW_MAX_TURNS,
        on_message=print_message,
        on_session=print_session,
    )
    return _answer_or_raise(await worker.run(WORKFLOW_PROMPT + plan, workflow_catalog))


async def run_summarizer(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.fathom_api_key:
        print("Error: FATHOM_API_KEY environment variable is not set.", file=sys.stderr)
        return 1

    output = args.output or Path(settings.meetings_output_dir)
    try:
        model_client = create_model_client(settings.llm_config())
        final = await run_workflow(model_client, meetings_provider(settings), args.days, output)
    except (ConfigurationError, NoResultError) as exc:
        print(f"Error during processing: {exc}", file=sys.stderr)
        return 1

    print("Workflow completed. Final result:")
    print(final)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the tooldesk-meetings CLI."""
    args = _build_parser().parse_args(argv)
    if args.days < 1:
        print("Error: --days must be at least 1", file=sys.stderr)
        sys.exit(2)

    settings = get_settings()
    configure_logging(settings, debug=args.debug)
    sys.exit(asyncio.run(run_summarizer(args, settings)))


if __name__ == "__main__":
    main()
