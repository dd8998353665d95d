"""
Apple Calendar tools.

Reads and edits Calendar.app through AppleScript. Dates handed to
``create_event`` must be in AppleScript date format, e.g.
``"January 1, 2025 10:00:00 AM"``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from tooldesk.config import CalendarConfig
from tooldesk.conversation.errors import ToolInvocationError
from tooldesk.conversation.providers import ToolDefinition
from tooldesk.conversation.tools.applescript import parse_records, quote, run_applescript
from tooldesk.conversation.tools.registry import ToolRegistry, require_argument

logger = logging.getLogger(__name__)

_EVENT_FIELDS = ["summary", "startDate", "endDate", "calendar"]
_DETAIL_FIELDS = _EVENT_FIELDS + ["description", "location", "url"]

_CALENDAR_NAME = {
    "type": "string",
    "description": "Name of the calendar (defaults to the configured calendar)",
}


class CalendarTools:
    """Apple Calendar operations exposed as tools.

    Attributes:
        TOOL_DEFINITIONS: Definitions for every calendar tool.
        config: Default calendar and script timeout.
    """

    TOOL_DEFINITIONS: list[ToolDefinition] = [
        ToolDefinition(
            name="list_calendars",
            description="List all available calendars in Apple Calendar",
            parameters={"type": "object", "properties": {}, "required": []},
        ),
        ToolDefinition(
            name="list_events",
            description="List events from a specific calendar within a date range",
            parameters={
                "type": "object",
                "properties": {
                    "calendarName": _CALENDAR_NAME,
                    "days": {
                        "type": "number",
                        "description": "Number of days ahead to list events for (default: 7)",
                    },
                },
                "required": [],
            },
        ),
        ToolDefinition(
            name="search_events",
            description="Search for events by query string in summary or description",
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query to match against event summary or description",
                    },
                    "calendarName": _CALENDAR_NAME,
                    "days": {
                        "type": "number",
                        "description": "Number of days ahead to search within (default: 90)",
                    },
                },
                "required": ["query"],
            },
        ),
        ToolDefinition(
            name="create_event",
            description="Create a new event in Apple Calendar",
            parameters={
                "type": "object",
                "properties": {
                    "calendarName": {
                        "type": "string",
                        "description": "Name of the calendar to create the event in",
                    },
                    "title": {"type": "string", "description": "Title/summary of the event"},
                    "startDate": {
                        "type": "string",
                        "description": (
                            "Start date in AppleScript date format "
                            "(e.g., 'January 1, 2025 10:00:00 AM')"
                        ),
                    },
                    "endDate": {
                        "type": "string",
                        "description": (
                            "End date in AppleScript date format "
                            "(e.g., 'January 1, 2025 11:00:00 AM')"
                        ),
                    },
                    "description": {
                        "type": "string",
                        "description": "Optional description for the event",
                    },
                },
                "required": ["calendarName", "title", "startDate", "endDate"],
            },
        ),
        ToolDefinition(
            name="delete_event",
            description="Delete an event from Apple Calendar by title",
            parameters={
                "type": "object",
                "properties": {
                    "calendarName": {
                        "type": "string",
                        "description": "Name of the calendar containing the event",
                    },
                    "eventTitle": {"type": "string", "description": "Title of the event to delete"},
                },
                "required": ["calendarName", "eventTitle"],
            },
        ),
        ToolDefinition(
            name="get_today_events",
            description="Get all events scheduled for today from the default calendar",
            parameters={"type": "object", "properties": {}, "required": []},
        ),
        ToolDefinition(
            name="get_event_details",
            description="Get detailed information about a specific event",
            parameters={
                "type": "object",
                "properties": {
                    "calendarName": {
                        "type": "string",
                        "description": "Name of the calendar containing the event",
                    },
                    "eventTitle": {
                        "type": "string",
                        "description": "Title of the event to get details for",
                    },
                },
                "required": ["calendarName", "eventTitle"],
            },
        ),
    ]

    def __init__(self, config: CalendarConfig | None = None) -> None:
        self.config = config or CalendarConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[str]:
        script = """
tell application "Calendar"
  set calendarList to {}
  repeat with c in calendars
    set end of calendarList to name of c
  end repeat
  return calendarList
end tell
"""
        output = await self._run(script)
        if not output:
            raise ToolInvocationError("Failed to list calendars")
        names = output.split(", ")
        logger.debug("Found %d calendar(s)", len(names))
        return names

    async def list_events(self, calendar_name: str | None = None, days: int = 7) -> list[dict[str, str]]:
        name = calendar_name or self.config.default_calendar
        script = f"""
tell application "Calendar"
  set startDate to (current date)
  set targetDate to startDate + ({int(days)} * days)
  set eventList to ""
  tell calendar {quote(name)}
    set filteredEvents to (events whose start date ≥ startDate and start date ≤ targetDate)
    repeat with e in filteredEvents
      if eventList is not "" then
        set eventList to eventList & ":::"
      end if
      set eventList to eventList & (summary of e) & "|||" & (start date of e as string) & "|||" & (end date of e as string) & "|||" & {quote(name)}
    end repeat
  end tell
  return eventList
end tell
"""
        return parse_records(await self._run(script), _EVENT_FIELDS)

    async def search_events(
        self, query: str, calendar_name: str | None = None, days: int = 90
    ) -> list[dict[str, str]]:
        name = calendar_name or self.config.default_calendar
        script = f"""
tell application "Calendar"
  set searchResults to ""
  set startDate to (current date)
  set endDate to startDate + ({int(days)} * days)
  tell calendar {quote(name)}
    set filteredEvents to (events whose start date ≥ startDate and start date ≤ endDate)
    repeat with e in filteredEvents
      if (summary of e contains {quote(query)}) or (description of e contains {quote(query)}) then
        if searchResults is not "" then
          set searchResults to searchResults & ":::"
        end if
        set searchResults to searchResults & (summary of e) & "|||" & (start date of e as string) & "|||" & (end date of e as string) & "|||" & {quote(name)}
      end if
    end repeat
  end tell
  return searchResults
end tell
"""
        return parse_records(await self._run(script), _EVENT_FIELDS)

    async def create_event(
        self,
        calendar_name: str,
        title: str,
        start_date: str,
        end_date: str,
        description: str = "",
    ) -> str:
        script = f"""
tell application "Calendar"
  tell calendar {quote(calendar_name)}
    make new event with properties {{summary:{quote(title)}, start date:date {quote(start_date)}, end date:date {quote(end_date)}, description:{quote(description)}}}
    return "Event created: " & {quote(title)}
  end tell
end tell
"""
        return await self._run(script)

    async def delete_event(self, calendar_name: str, event_title: str) -> str:
        script = f"""
tell application "Calendar"
  tell calendar {quote(calendar_name)}
    repeat with e in events
      if summary of e is {quote(event_title)} then
        delete e
        return "Event deleted: " & {quote(event_title)}
      end if
    end repeat
    return ""
  end tell
end tell
"""
        output = await self._run(script)
        if not output:
            raise ToolInvocationError(f"Event not found: {event_title}")
        return output

    async def get_today_events(self) -> list[dict[str, str]]:
        return await self.list_events(self.config.default_calendar, days=1)

    async def get_event_details(self, calendar_name: str, event_title: str) -> dict[str, str]:
        script = f"""
tell application "Calendar"
  tell calendar {quote(calendar_name)}
    repeat with e in events
      if summary of e is {quote(event_title)} then
        return (summary of e) & "|||" & (start date of e as string) & "|||" & (end date of e as string) & "|||" & {quote(calendar_name)} & "|||" & (description of e) & "|||" & (location of e) & "|||" & (url of e)
      end if
    end repeat
    return ""
  end tell
end tell
"""
        records = parse_records(await self._run(script), _DETAIL_FIELDS)
        if not records:
            raise ToolInvocationError(f"Event not found: {event_title}")
        return records[0]

    def register_with(self, registry: ToolRegistry) -> None:
        """Register every calendar tool on *registry*."""
        handlers = {
            "list_calendars": self._handle_list_calendars,
            "list_events": self._handle_list_events,
            "search_events": self._handle_search_events,
            "create_event": self._handle_create_event,
            "delete_event": self._handle_delete_event,
            "get_today_events": self._handle_get_today_events,
            "get_event_details": self._handle_get_event_details,
        }
        for definition in self.TOOL_DEFINITIONS:
            registry.register(definition, handlers[definition.name])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_list_calendars(self, args: dict[str, Any]) -> str:
        return json.dumps({"calendars": await self.list_calendars()})

    async def _handle_list_events(self, args: dict[str, Any]) -> str:
        events = await self.list_events(args.get("calendarName"), int(args.get("days") or 7))
        return json.dumps({"events": events})

    async def _handle_search_events(self, args: dict[str, Any]) -> str:
        events = await self.search_events(
            require_argument(args, "query"),
            args.get("calendarName"),
            int(args.get("days") or 90),
        )
        return json.dumps({"events": events})

    async def _handle_create_event(self, args: dict[str, Any]) -> str:
        result = await self.create_event(
            require_argument(args, "calendarName"),
            require_argument(args, "title"),
            require_argument(args, "startDate"),
            require_argument(args, "endDate"),
            args.get("description") or "",
        )
        return json.dumps({"result": result})

    async def _handle_delete_event(self, args: dict[str, Any]) -> str:
        result = await self.delete_event(
            require_argument(args, "calendarName"), require_argument(args, "eventTitle")
        )
        return json.dumps({"result": result})

    async def _handle_get_today_events(self, args: dict[str, Any]) -> str:
        return json.dumps({"events": await self.get_today_events()})

    async def _handle_get_event_details(self, args: dict[str, Any]) -> str:
        event = await self.get_event_details(
            require_argument(args, "calendarName"), require_argument(args, "eventTitle")
        )
        return json.dumps({"event": event})

    async def _run(self, script: str) -> str:
        return await run_applescript(script, timeout=self.config.script_timeout)


def create_calendar_provider(config: CalendarConfig | None = None) -> ToolRegistry:
    """Build an in-process provider exposing the calendar tools."""
    config = config or CalendarConfig()
    registry = ToolRegistry("calendar", timeout=config.tool_timeout)
    CalendarTools(config).register_with(registry)
    return registry
