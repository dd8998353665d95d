"""
ConversationController: the tool-augmented conversation loop for tooldesk.

This module implements the core "agentic" behaviour: calling the model,
dispatching the tool calls it requests, feeding results back, and repeating
until the model produces a text-only answer or the turn budget runs out.

Tool requests within one assistant turn are executed sequentially and in the
order received. A later request may assume the earlier ones already ran, and
some providers (AppleScript automation in particular) must not be invoked
concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from tooldesk.conversation.catalog import ToolCatalog, ToolProvider
from tooldesk.conversation.errors import (
    ConversationError,
    ConversationStateError,
    ModelEndpointError,
    ProtocolError,
    RunCancelled,
    ToolError,
    UnknownToolError,
)
from tooldesk.conversation.events import RAW_ARGUMENTS_KEY, ClassifiedResponse, classify_response
from tooldesk.conversation.messages import (
    ConversationState,
    Message,
    ToolInvocationRequest,
    ToolResultMessage,
    UserMessage,
)
from tooldesk.conversation.providers import ModelClient, ModelRequest

logger = logging.getLogger(__name__)

# Receives every message right after it is appended to the conversation.
MessageObserver = Callable[[Message], Any]


class RunStatus(str, Enum):
    """Terminal (or current) status of a run."""

    RUNNING = "running"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_ERROR = "completed_error"
    TURN_LIMIT_REACHED = "turn_limit_reached"


@dataclass
class Session:
    """Per-run bookkeeping.

    Attributes:
        id: Session id assigned by the model endpoint on its first response.
        turn_count: Model calls completed so far.
        status: Current run status.
    """

    id: str | None = None
    turn_count: int = 0
    status: RunStatus = RunStatus.RUNNING


@dataclass
class FinalResult:
    """Outcome of one run.

    Attributes:
        status: Terminal status.
        session_id: Session id learned from the first response, if any.
        messages: The full conversation log.
        answer: The answer text on success; the latest assistant text when
            the turn limit was reached; ``None`` on error.
        error: The fatal error when ``status`` is ``COMPLETED_ERROR``.
        turns: Number of model calls made.
    """

    status: RunStatus
    session_id: str | None
    messages: tuple[Message, ...]
    answer: str | None = None
    error: ConversationError | None = None
    turns: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED_SUCCESS

    @property
    def tool_results(self) -> list[ToolResultMessage]:
        return [m for m in self.messages if isinstance(m, ToolResultMessage)]

    def raise_for_status(self) -> None:
        """Re-raise the fatal error of a failed run; no-op otherwise."""
        if self.error is not None:
            raise self.error


class ConversationController:
    """Drives one run from a user query to a final answer.

    Typical usage::

        catalog = await ToolCatalog.build([calendar_provider, notes_provider])
        controller = ConversationController(model_client=client, system_prompt=PROMPT)
        result = await controller.run("What's on my calendar today?", catalog, max_turns=10)
        if result.succeeded:
            print(result.answer)

    Attributes:
        model_client: The model backend (any `ModelClient` implementation).
        system_prompt: Optional system instruction sent with every model call.
        permission_mode: Optional endpoint permission mode forwarded verbatim.
        max_turns: Default turn budget when ``run()`` is not given one.
        on_message: Optional observer called after every append.
        on_session: Optional callback receiving the session id once known.
    """

    def __init__(
        self,
        model_client: ModelClient,
        system_prompt: str | None = None,
        permission_mode: str | None = None,
        max_turns: int = 10,
        on_message: MessageObserver | None = None,
        on_session: Callable[[str], Any] | None = None,
    ) -> None:
        self.model_client = model_client
        self.system_prompt = system_prompt
        self.permission_mode = permission_mode
        self.max_turns = max_turns
        self.on_message = on_message
        self.on_session = on_session

    async def run(
        self,
        query: str,
        catalog: ToolCatalog,
        max_turns: int | None = None,
        providers: Mapping[str, ToolProvider] | None = None,
        *,
        history: Iterable[Message] | None = None,
        session_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> FinalResult:
        """Run one conversation from *query* to a terminal status.

        Args:
            query: The user's request. Must be non-empty.
            catalog: Tools offered to the model.
            max_turns: Maximum model calls for this run (>= 1). Defaults to
                ``self.max_turns``.
            providers: Tool name to owning provider. Defaults to the
                catalog's own routing.
            history: Prior conversation re-supplied by the caller to resume.
            session_id: Session id to resume, forwarded to the model client.
            cancel_event: When set, the run stops at the next checkpoint
                (before a model call or a tool call).

        Returns:
            A `FinalResult`. Tool-level failures never raise; fatal model
            failures are reported as ``COMPLETED_ERROR`` with ``error`` set.

        Raises:
            ValueError: If *query* is empty or *max_turns* < 1.
            ConversationStateError: If *history* breaks request/result
                correlation.
            RunCancelled: If *cancel_event* was set during the run.
        """
        if not query or not query.strip():
            raise ValueError("query must be a non-empty string")
        turn_budget = self.max_turns if max_turns is None else max_turns
        if turn_budget < 1:
            raise ValueError("max_turns must be >= 1")

        routes = catalog.routes if providers is None else providers
        state = ConversationState(history or ())
        session = Session()

        run_start = time.monotonic()
        try:
            self._append(state, UserMessage(text=query))

            while session.turn_count < turn_budget:
                self._checkpoint(cancel_event)
                turn = session.turn_count + 1
                logger.debug("Conversation turn %d/%d", turn, turn_budget)

                model_t0 = time.monotonic()
                response = await self._call_model(
                    state, catalog, turn_budget, session_id or session.id
                )
                session.turn_count = turn
                logger.debug(
                    "Model call %d took %.3fs (tool_requests=%d)",
                    turn,
                    time.monotonic() - model_t0,
                    len(response.message.tool_requests),
                )

                if session.id is None and response.session_id:
                    session.id = response.session_id
                    logger.info("Session started with ID: %s", session.id)
                    if self.on_session is not None:
                        self.on_session(session.id)

                self._append(state, response.message)

                if response.message.is_final:
                    session.status = RunStatus.COMPLETED_SUCCESS
                    logger.info(
                        "Run complete after %d turn(s) in %.3fs",
                        turn,
                        time.monotonic() - run_start,
                    )
                    return self._result(session, state, answer=response.answer)

                for request in response.message.tool_requests:
                    self._checkpoint(cancel_event)
                    result = await self._dispatch(request, catalog, routes)
                    self._append(state, result)

        except (ModelEndpointError, ProtocolError, ConversationStateError) as exc:
            logger.error("Run aborted after %d turn(s): %s", session.turn_count, exc)
            session.status = RunStatus.COMPLETED_ERROR
            return self._result(session, state, error=exc)

        session.status = RunStatus.TURN_LIMIT_REACHED
        logger.warning(
            "Run reached max_turns=%d without a final answer", turn_budget
        )
        return self._result(session, state, answer=state.last_assistant_text)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _call_model(
        self,
        state: ConversationState,
        catalog: ToolCatalog,
        turn_budget: int,
        session_id: str | None,
    ) -> ClassifiedResponse:
        request = ModelRequest(
            history=state.messages,
            tools=catalog.tools,
            turn_limit=turn_budget,
            system_prompt=self.system_prompt,
            permission_mode=self.permission_mode,
            session_id=session_id,
        )
        try:
            return await classify_response(self.model_client.stream(request))
        except ConversationError:
            raise
        except Exception as exc:
            logger.error("Model client raised unexpectedly: %s", exc, exc_info=True)
            raise ModelEndpointError(f"{type(exc).__name__}: {exc}") from exc

    async def _dispatch(
        self,
        request: ToolInvocationRequest,
        catalog: ToolCatalog,
        routes: Mapping[str, ToolProvider],
    ) -> ToolResultMessage:
        """Execute one tool request; failures become error-flagged results."""
        logger.info("Using tool: %s(%s)", request.tool_name, request.arguments)
        if RAW_ARGUMENTS_KEY in request.arguments:
            return ToolResultMessage(
                request_id=request.id,
                content=(
                    f"Malformed JSON arguments for tool {request.tool_name!r}: "
                    f"{request.arguments[RAW_ARGUMENTS_KEY]}"
                ),
                is_error=True,
            )
        tool_t0 = time.monotonic()
        try:
            provider = routes.get(request.tool_name) if request.tool_name in catalog else None
            if provider is None:
                raise UnknownToolError(request.tool_name)
            content = await provider.call_tool(request.tool_name, request.arguments)
        except ToolError as exc:
            logger.warning("Tool %r failed: %s", request.tool_name, exc)
            return ToolResultMessage(request_id=request.id, content=str(exc), is_error=True)
        except Exception as exc:
            logger.error("Tool %r raised unexpectedly: %s", request.tool_name, exc, exc_info=True)
            return ToolResultMessage(
                request_id=request.id,
                content=f"{type(exc).__name__}: {exc}",
                is_error=True,
            )

        logger.debug(
            "Tool %r took %.3fs", request.tool_name, time.monotonic() - tool_t0
        )
        return ToolResultMessage(request_id=request.id, content=content)

    def _append(self, state: ConversationState, message: Message) -> None:
        state.append(message)
        if self.on_message is not None:
            self.on_message(message)

    @staticmethod
    def _checkpoint(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("run cancelled")

    @staticmethod
    def _result(
        session: Session,
        state: ConversationState,
        answer: str | None = None,
        error: ConversationError | None = None,
    ) -> FinalResult:
        return FinalResult(
            status=session.status,
            session_id=session.id,
            messages=state.messages,
            answer=answer,
            error=error,
            turns=session.turn_count,
        )
