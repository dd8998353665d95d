"""
Tool providers for the tooldesk conversation loop.

In-process providers are ``ToolRegistry`` instances populated by a tools
class (``CalendarTools``, ``ContactsTools``, ``NotesTools``,
``MeetingTools``) through its ``register_with()`` method. Each tools class
carries a ``TOOL_DEFINITIONS`` list and returns JSON strings from its
handlers. ``McpToolProvider`` reaches tools hosted by a separate stdio
server process.

Quick-start example::

    from tooldesk.conversation import ToolCatalog
    from tooldesk.conversation.tools import (
        create_calendar_provider,
        create_notes_provider,
    )

    catalog = await ToolCatalog.build(
        [create_calendar_provider(), create_notes_provider()]
    )
"""

from tooldesk.conversation.tools.calendar import CalendarTools, create_calendar_provider
from tooldesk.conversation.tools.contacts import ContactsTools, create_contacts_provider
from tooldesk.conversation.tools.mcp_provider import McpToolProvider, server_parameters_for_script
from tooldesk.conversation.tools.meetings import (
    FathomClient,
    MeetingTools,
    create_meetings_provider,
)
from tooldesk.conversation.tools.notes import NotesTools, create_notes_provider
from tooldesk.conversation.tools.registry import ToolRegistry

__all__ = [
    "CalendarTools",
    "ContactsTools",
    "FathomClient",
    "McpToolProvider",
    "MeetingTools",
    "NotesTools",
    "ToolRegistry",
    "create_calendar_provider",
    "create_contacts_provider",
    "create_meetings_provider",
    "create_notes_provider",
    "server_parameters_for_script",
]
