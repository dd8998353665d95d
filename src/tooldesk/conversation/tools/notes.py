"""
Apple Notes tools.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from tooldesk.config import AppleScriptConfig
from tooldesk.conversation.errors import ToolInvocationError
from tooldesk.conversation.providers import ToolDefinition
from tooldesk.conversation.tools.applescript import (
    NOT_FOUND,
    parse_records,
    quote,
    run_applescript,
)
from tooldesk.conversation.tools.registry import ToolRegistry, require_argument

logger = logging.getLogger(__name__)

_NOTE_FIELDS = ["id", "name", "body"]


class NotesTools:
    """Apple Notes operations exposed as tools."""

    TOOL_DEFINITIONS: list[ToolDefinition] = [
        ToolDefinition(
            name="search_notes",
            description="Search for notes by title or content",
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query to match against note title or body",
                    },
                },
                "required": ["query"],
            },
        ),
        ToolDefinition(
            name="create_note",
            description="Create a new note in Apple Notes",
            parameters={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Title of the note"},
                    "body": {
                        "type": "string",
                        "description": "Body content of the note (optional)",
                    },
                },
                "required": ["title"],
            },
        ),
        ToolDefinition(
            name="edit_note",
            description="Replace the body of an existing note",
            parameters={
                "type": "object",
                "properties": {
                    "noteTitle": {"type": "string", "description": "Title of the note to edit"},
                    "newBody": {"type": "string", "description": "New body content"},
                },
                "required": ["noteTitle", "newBody"],
            },
        ),
        ToolDefinition(
            name="list_notes",
            description="List all notes in Apple Notes",
            parameters={"type": "object", "properties": {}, "required": []},
        ),
        ToolDefinition(
            name="get_note_content",
            description="Get the body of a note by its title",
            parameters={
                "type": "object",
                "properties": {
                    "noteTitle": {"type": "string", "description": "Title of the note"},
                },
                "required": ["noteTitle"],
            },
        ),
    ]

    def __init__(self, config: AppleScriptConfig | None = None) -> None:
        self.config = config or AppleScriptConfig()

    async def search_notes(self, query: str) -> list[dict[str, str]]:
        script = f"""
tell application "Notes"
  set searchResults to ""
  repeat with n in notes
    if (name of n contains {quote(query)}) or (body of n contains {quote(query)}) then
      if searchResults is not "" then
        set searchResults to searchResults & ":::"
      end if
      set searchResults to searchResults & (id of n) & "|||" & (name of n) & "|||" & (body of n)
    end if
  end repeat
  return searchResults
end tell
"""
        return parse_records(await self._run(script), _NOTE_FIELDS)

    async def create_note(self, title: str, body: str = "") -> str:
        script = f"""
tell application "Notes"
  make new note with properties {{name:{quote(title)}, body:{quote(body)}}}
  return "Note created: " & {quote(title)}
end tell
"""
        return await self._run(script)

    async def edit_note(self, note_title: str, new_body: str) -> str:
        script = f"""
tell application "Notes"
  repeat with n in notes
    if name of n is {quote(note_title)} then
      set body of n to {quote(new_body)}
      return "Note updated: " & {quote(note_title)}
    end if
  end repeat
  return {quote(NOT_FOUND)}
end tell
"""
        output = await self._run(script)
        if output == NOT_FOUND:
            raise ToolInvocationError(f"Note not found: {note_title}")
        return output

    async def list_notes(self) -> list[dict[str, str]]:
        script = """
tell application "Notes"
  set noteList to ""
  repeat with n in notes
    if noteList is not "" then
      set noteList to noteList & ":::"
    end if
    set noteList to noteList & (id of n) & "|||" & (name of n) & "|||" & (body of n)
  end repeat
  return noteList
end tell
"""
        notes = parse_records(await self._run(script), _NOTE_FIELDS)
        logger.debug("Listed %d note(s)", len(notes))
        return notes

    async def get_note_content(self, note_title: str) -> str:
        script = f"""
tell application "Notes"
  repeat with n in notes
    if name of n is {quote(note_title)} then
      return body of n
    end if
  end repeat
  return {quote(NOT_FOUND)}
end tell
"""
        output = await self._run(script)
        if output == NOT_FOUND:
            raise ToolInvocationError(f"Note not found: {note_title}")
        return output

    def register_with(self, registry: ToolRegistry) -> None:
        """Register every notes tool on *registry*."""
        handlers = {
            "search_notes": self._handle_search,
            "create_note": self._handle_create,
            "edit_note": self._handle_edit,
            "list_notes": self._handle_list,
            "get_note_content": self._handle_get_content,
        }
        for definition in self.TOOL_DEFINITIONS:
            registry.register(definition, handlers[definition.name])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_search(self, args: dict[str, Any]) -> str:
        return json.dumps({"notes": await self.search_notes(require_argument(args, "query"))})

    async def _handle_create(self, args: dict[str, Any]) -> str:
        result = await self.create_note(require_argument(args, "title"), args.get("body") or "")
        return json.dumps({"result": result})

    async def _handle_edit(self, args: dict[str, Any]) -> str:
        new_body = args.get("newBody")
        if new_body is None:
            raise ToolInvocationError("Missing required argument: newBody")
        result = await self.edit_note(require_argument(args, "noteTitle"), new_body)
        return json.dumps({"result": result})

    async def _handle_list(self, args: dict[str, Any]) -> str:
        return json.dumps({"notes": await self.list_notes()})

    async def _handle_get_content(self, args: dict[str, Any]) -> str:
        title = require_argument(args, "noteTitle")
        body = await self.get_note_content(title)
        return json.dumps({"title": title, "body": body})

    async def _run(self, script: str) -> str:
        return await run_applescript(script, timeout=self.config.script_timeout)


def create_notes_provider(config: AppleScriptConfig | None = None) -> ToolRegistry:
    """Build an in-process provider exposing the notes tools."""
    config = config or AppleScriptConfig()
    registry = ToolRegistry("notes", timeout=config.tool_timeout)
    NotesTools(config).register_with(registry)
    return registry
