"""
tooldesk conversation package.

Implements the tool-augmented conversation loop: a model client streams
response events, the controller classifies them, dispatches requested tool
calls through a ``ToolCatalog`` and feeds the results back until the model
answers in plain text or the turn budget runs out.
"""

from tooldesk.conversation.catalog import ToolCatalog, ToolProvider
from tooldesk.conversation.controller import (
    ConversationController,
    FinalResult,
    RunStatus,
    Session,
)
from tooldesk.conversation.errors import (
    ConfigurationError,
    ConversationError,
    ConversationStateError,
    ModelEndpointError,
    ProtocolError,
    RunCancelled,
    ToolConfigurationError,
    ToolError,
    ToolInvocationError,
    UnknownToolError,
)
from tooldesk.conversation.events import ClassifiedResponse, classify_response
from tooldesk.conversation.messages import (
    AssistantMessage,
    ConversationState,
    Message,
    TextSegment,
    ToolInvocationRequest,
    ToolResultMessage,
    UserMessage,
)
from tooldesk.conversation.providers import (
    ModelClient,
    ModelRequest,
    OpenAICompatibleModelClient,
    ToolDefinition,
)

__all__ = [
    "AssistantMessage",
    "ClassifiedResponse",
    "ConfigurationError",
    "ConversationController",
    "ConversationError",
    "ConversationState",
    "ConversationStateError",
    "FinalResult",
    "Message",
    "ModelClient",
    "ModelEndpointError",
    "ModelRequest",
    "OpenAICompatibleModelClient",
    "ProtocolError",
    "RunCancelled",
    "RunStatus",
    "Session",
    "TextSegment",
    "ToolCatalog",
    "ToolConfigurationError",
    "ToolDefinition",
    "ToolError",
    "ToolInvocationError",
    "ToolInvocationRequest",
    "ToolProvider",
    "ToolResultMessage",
    "UnknownToolError",
    "UserMessage",
    "classify_response",
]
