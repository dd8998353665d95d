"""
tooldesk - a tool-augmented assistant for calendars, contacts, notes and
meeting transcripts.

The core is ``ConversationController``: it runs a model in a loop, lets it
call tools from a ``ToolCatalog`` and stops once the model answers in plain
text or the turn budget is spent.

Quick Start:
    >>> from tooldesk.conversation import ConversationController, ToolCatalog
    >>> from tooldesk.conversation.tools import create_notes_provider
    >>> catalog = await ToolCatalog.build([create_notes_provider()])
    >>> controller = ConversationController(model_client=client)
    >>> result = await controller.run("What's in my shopping list note?", catalog)
"""

from tooldesk.config import Settings, get_settings

__version__ = "0.1.0"
__all__ = ["Settings", "get_settings"]
