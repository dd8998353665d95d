"""
Response events and their classification into an ``AssistantMessage``.

Model clients normalise whatever their endpoint returns (a single structured
object or an incremental stream) into a finite, non-restartable sequence of
the events defined here. ``ResponseAccumulator`` folds that sequence into one
``AssistantMessage`` plus the session id and final answer text.

A well-formed sequence is::

    [SessionInitEvent] (TextEvent | ToolUseEvent)* (SuccessEvent | FailureEvent)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Iterable, Union

from tooldesk.conversation.errors import ModelEndpointError, ProtocolError
from tooldesk.conversation.messages import (
    AssistantMessage,
    Segment,
    TextSegment,
    ToolInvocationRequest,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionInitEvent:
    """The endpoint assigned a session id to this run."""

    session_id: str


@dataclass(frozen=True)
class TextEvent:
    """A piece of assistant text (a full block or a streamed delta)."""

    text: str


# Argument key carrying the raw text of tool arguments that were not valid JSON.
RAW_ARGUMENTS_KEY = "_raw_arguments"


@dataclass(frozen=True)
class ToolUseEvent:
    """The model is about to use tool *name* with *arguments*.

    When the endpoint sent arguments that do not parse as a JSON object,
    *arguments* is ``{RAW_ARGUMENTS_KEY: <raw text>}``.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SuccessEvent:
    """Terminal event: the response completed; *text* is the final answer."""

    text: str = ""


@dataclass(frozen=True)
class FailureEvent:
    """Terminal event: the endpoint reported a failure."""

    reason: str


ResponseEvent = Union[SessionInitEvent, TextEvent, ToolUseEvent, SuccessEvent, FailureEvent]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifiedResponse:
    """One model response, normalised.

    Attributes:
        message: The assistant turn, segments in arrival order.
        session_id: Session id from the first session-init event, if any.
        answer: Final answer text (the success text, or the accumulated text
            when the success event carried none).
    """

    message: AssistantMessage
    session_id: str | None
    answer: str


class ResponseAccumulator:
    """Folds response events into a ``ClassifiedResponse``.

    Call ``feed()`` for each event until it returns ``True`` (terminal), then
    ``result()``. Consecutive text events merge into one text segment.
    """

    def __init__(self) -> None:
        self._segments: list[Segment] = []
        self._pending_text: list[str] = []
        self._saw_text = False
        self._session_id: str | None = None
        self._success: SuccessEvent | None = None

    def feed(self, event: ResponseEvent) -> bool:
        """Consume one event; return True if it was terminal.

        Raises:
            ModelEndpointError: On a ``FailureEvent`` (reason kept verbatim).
        """
        if self._success is not None:
            raise RuntimeError("ResponseAccumulator already received a terminal event")

        if isinstance(event, SessionInitEvent):
            if self._session_id is None:
                self._session_id = event.session_id
            return False
        if isinstance(event, TextEvent):
            if event.text:
                self._pending_text.append(event.text)
                self._saw_text = True
            return False
        if isinstance(event, ToolUseEvent):
            self._flush_text()
            self._segments.append(
                ToolInvocationRequest(
                    id=event.id, tool_name=event.name, arguments=dict(event.arguments)
                )
            )
            return False
        if isinstance(event, SuccessEvent):
            self._flush_text()
            self._success = event
            return True
        if isinstance(event, FailureEvent):
            raise ModelEndpointError(event.reason)

        logger.warning("Ignoring unknown response event: %r", event)
        return False

    def result(self) -> ClassifiedResponse:
        """Return the classified response.

        Raises:
            ProtocolError: If no terminal event was fed.
        """
        if self._success is None:
            raise ProtocolError("no result received")

        segments = list(self._segments)
        if not self._saw_text and self._success.text:
            segments.insert(0, TextSegment(self._success.text))

        message = AssistantMessage(segments=tuple(segments))
        return ClassifiedResponse(
            message=message,
            session_id=self._session_id,
            answer=self._success.text or message.text,
        )

    def _flush_text(self) -> None:
        if self._pending_text:
            self._segments.append(TextSegment("".join(self._pending_text)))
            self._pending_text = []


async def classify_response(events: AsyncIterable[ResponseEvent]) -> ClassifiedResponse:
    """Consume an async event stream up to its terminal event and classify it.

    Raises:
        ModelEndpointError: The stream carried a failure event.
        ProtocolError: The stream ended without a terminal event.
    """
    accumulator = ResponseAccumulator()
    try:
        async for event in events:
            if accumulator.feed(event):
                break
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
    return accumulator.result()


def classify_events(events: Iterable[ResponseEvent]) -> ClassifiedResponse:
    """Synchronous counterpart of :func:`classify_response`."""
    accumulator = ResponseAccumulator()
    for event in events:
        if accumulator.feed(event):
            break
    return accumulator.result()
