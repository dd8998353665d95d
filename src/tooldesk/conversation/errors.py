"""
Exception hierarchy for the tooldesk conversation package.

Only three categories are fatal to a run: ``ProtocolError``,
``ModelEndpointError`` (and its subclasses) and ``ConfigurationError``.
``ToolError`` subclasses are recoverable; the controller folds them into the
conversation as error-flagged tool results so the model can adapt.
"""

from __future__ import annotations


class ConversationError(Exception):
    """Base exception for all tooldesk conversation errors."""


# ---------------------------------------------------------------------------
# Model endpoint
# ---------------------------------------------------------------------------


class ProtocolError(ConversationError):
    """Raised when a model response stream ends without a terminal event."""


class ModelEndpointError(ConversationError):
    """Raised when the model call itself fails.

    Attributes:
        reason: The failure reason, preserved verbatim for the caller.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ModelRateLimitError(ModelEndpointError):
    """Raised when the model API returns a rate-limit (429) response."""


class ModelConnectionError(ModelEndpointError):
    """Raised when the model API endpoint cannot be reached."""


class ModelAPIError(ModelEndpointError):
    """Raised for other model API errors (e.g., 5xx, authentication failures).

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if unavailable.
    """

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolError(ConversationError):
    """Base exception for recoverable tool-level failures."""


class UnknownToolError(ToolError):
    """Raised when a requested tool is not in the catalog."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name!r}")
        self.tool_name = tool_name


class ToolInvocationError(ToolError):
    """Raised when a known tool's provider call fails."""


class ToolConfigurationError(ToolInvocationError):
    """Raised by a degraded provider that is missing required configuration."""


# ---------------------------------------------------------------------------
# Setup and controller faults
# ---------------------------------------------------------------------------


class ConfigurationError(ConversationError):
    """Raised before a run starts: tool name collisions, bad provider setup."""


class ConversationStateError(ConversationError):
    """Raised when an append would break the request/result correlation."""


class RunCancelled(ConversationError):
    """Raised at a cooperative checkpoint once a run has been cancelled."""
