"""
Message model and append-only conversation log.

A run's history is a sequence of three message kinds: the user's query, the
model's turns (text and/or tool-invocation requests) and tool results
correlated to a request by its opaque id. ``ConversationState`` owns that
sequence and refuses any append that would break the correlation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Union

from tooldesk.conversation.errors import ConversationStateError


@dataclass(frozen=True)
class UserMessage:
    """A user query."""

    text: str


@dataclass(frozen=True)
class TextSegment:
    """Plain text emitted by the model."""

    text: str


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A request, embedded in a model turn, to execute a named tool.

    Attributes:
        id: Opaque identifier used to correlate the result.
        tool_name: Name of the tool to invoke.
        arguments: Argument payload (should match the tool's input shape).
    """

    id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


Segment = Union[TextSegment, ToolInvocationRequest]


@dataclass(frozen=True)
class AssistantMessage:
    """One model turn: an ordered sequence of text and tool-request segments."""

    segments: tuple[Segment, ...] = ()

    @property
    def text(self) -> str:
        """Concatenated text of all text segments."""
        return "".join(s.text for s in self.segments if isinstance(s, TextSegment))

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        """Tool-invocation requests in the order the model emitted them."""
        return [s for s in self.segments if isinstance(s, ToolInvocationRequest)]

    @property
    def is_final(self) -> bool:
        """True when the turn contains only text segments."""
        return not self.tool_requests


@dataclass(frozen=True)
class ToolResultMessage:
    """The outcome of one tool invocation.

    Attributes:
        request_id: Id of the ``ToolInvocationRequest`` this answers.
        content: Tool output, or an error description when ``is_error``.
        is_error: True when the tool was unknown or its provider failed.
    """

    request_id: str
    content: str
    is_error: bool = False


Message = Union[UserMessage, AssistantMessage, ToolResultMessage]


class ConversationState:
    """Ordered, append-only log of the messages of one run.

    Invariants enforced on every append:

    - request ids are unique across the log;
    - a ``ToolResultMessage`` must reference a request that appears earlier;
    - at most one result exists per request id.
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = []
        self._requested: set[str] = set()
        self._answered: set[str] = set()
        for message in messages:
            self.append(message)

    def append(self, message: Message) -> None:
        """Append *message* to the log.

        Raises:
            ConversationStateError: If the append would violate the
                request/result correlation.
        """
        if isinstance(message, AssistantMessage):
            ids = [r.id for r in message.tool_requests]
            duplicates = {i for i in ids if i in self._requested or ids.count(i) > 1}
            if duplicates:
                raise ConversationStateError(
                    f"Duplicate tool request id(s): {sorted(duplicates)}"
                )
            self._requested.update(ids)
        elif isinstance(message, ToolResultMessage):
            if message.request_id not in self._requested:
                raise ConversationStateError(
                    f"Tool result for unknown request id {message.request_id!r}"
                )
            if message.request_id in self._answered:
                raise ConversationStateError(
                    f"Request {message.request_id!r} already has a result"
                )
            self._answered.add(message.request_id)
        elif not isinstance(message, UserMessage):
            raise TypeError(f"Not a conversation message: {message!r}")

        self._messages.append(message)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        """Snapshot of the log."""
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    @property
    def pending_request_ids(self) -> set[str]:
        """Request ids that do not have a result yet."""
        return self._requested - self._answered

    @property
    def last_assistant_text(self) -> str:
        """Text of the most recent assistant turn, or ``""``."""
        for message in reversed(self._messages):
            if isinstance(message, AssistantMessage):
                return message.text
        return ""

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))
