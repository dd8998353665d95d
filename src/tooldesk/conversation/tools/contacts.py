"""
Apple Contacts tools.

Each contact is returned as a dict with ``id``, ``name``, ``emails``,
``phones``, ``organization`` and ``birthday``; the last two are ``None``
when unset.
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

_CONTACT_FIELDS = ["id", "name", "emails", "phones", "organization", "birthday"]

# Builds ``contactInfo`` for the person bound to ``p``.
_CONTACT_INFO = """
    set contactInfo to (id of p) & "|||" & (name of p) & "|||"
    set emailList to ""
    repeat with e in emails of p
      if emailList is not "" then
        set emailList to emailList & ","
      end if
      set emailList to emailList & (value of e)
    end repeat
    set contactInfo to contactInfo & emailList & "|||"
    set phoneList to ""
    repeat with ph in phones of p
      if phoneList is not "" then
        set phoneList to phoneList & ","
      end if
      set phoneList to phoneList & (value of ph)
    end repeat
    set orgValue to ""
    try
      set orgValue to (organization of p) as string
      if orgValue is "missing value" then set orgValue to ""
    end try
    set contactInfo to contactInfo & phoneList & "|||" & orgValue & "|||"
    try
      set contactInfo to contactInfo & ((birth date of p) as string)
    end try
"""


def _to_contact(record: dict[str, str]) -> dict[str, Any]:
    return {
        "id": record["id"],
        "name": record["name"],
        "emails": record["emails"].split(",") if record["emails"] else [],
        "phones": record["phones"].split(",") if record["phones"] else [],
        "organization": record["organization"] or None,
        "birthday": record["birthday"] or None,
    }


class ContactsTools:
    """Apple Contacts operations exposed as tools."""

    TOOL_DEFINITIONS: list[ToolDefinition] = [
        ToolDefinition(
            name="search_contacts",
            description="Search for contacts by name or organization",
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query to match against contact name or organization",
                    },
                },
                "required": ["query"],
            },
        ),
        ToolDefinition(
            name="create_contact",
            description="Create a new contact in Apple Contacts",
            parameters={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Full name of the contact"},
                    "email": {"type": "string", "description": "Email address (optional)"},
                    "phone": {"type": "string", "description": "Phone number (optional)"},
                    "organization": {
                        "type": "string",
                        "description": "Organization/company name (optional)",
                    },
                    "birthday": {
                        "type": "string",
                        "description": (
                            "Birthday in AppleScript date format, e.g., "
                            "'January 1, 1990' (optional)"
                        ),
                    },
                },
                "required": ["name"],
            },
        ),
        ToolDefinition(
            name="list_contacts",
            description="List all contacts in Apple Contacts",
            parameters={"type": "object", "properties": {}, "required": []},
        ),
        ToolDefinition(
            name="get_contact",
            description="Get detailed information about a specific contact by name",
            parameters={
                "type": "object",
                "properties": {
                    "contactName": {
                        "type": "string",
                        "description": "Full name of the contact to retrieve",
                    },
                },
                "required": ["contactName"],
            },
        ),
        ToolDefinition(
            name="delete_contact",
            description="Delete a contact from Apple Contacts by name",
            parameters={
                "type": "object",
                "properties": {
                    "contactName": {
                        "type": "string",
                        "description": "Full name of the contact to delete",
                    },
                },
                "required": ["contactName"],
            },
        ),
    ]

    def __init__(self, config: AppleScriptConfig | None = None) -> None:
        self.config = config or AppleScriptConfig()

    async def search_contacts(self, query: str) -> list[dict[str, Any]]:
        script = f"""
tell application "Contacts"
  set searchResults to ""
  repeat with p in people
    if (name of p contains {quote(query)}) or (organization of p contains {quote(query)}) then
      if searchResults is not "" then
        set searchResults to searchResults & ":::"
      end if
{_CONTACT_INFO}
      set searchResults to searchResults & contactInfo
    end if
  end repeat
  return searchResults
end tell
"""
        records = parse_records(await self._run(script), _CONTACT_FIELDS)
        return [_to_contact(r) for r in records]

    async def create_contact(
        self,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        organization: str | None = None,
        birthday: str | None = None,
    ) -> str:
        properties = f"name:{quote(name)}"
        if organization:
            properties += f", organization:{quote(organization)}"
        lines = [f"set newPerson to make new person with properties {{{properties}}}"]
        if email:
            lines.append(
                f"make new email at end of emails of newPerson with properties {{value:{quote(email)}}}"
            )
        if phone:
            lines.append(
                f"make new phone at end of phones of newPerson with properties {{value:{quote(phone)}}}"
            )
        if birthday:
            lines.append(f"set birth date of newPerson to date {quote(birthday)}")
        body = "\n  ".join(lines)
        script = f"""
tell application "Contacts"
  {body}
  save
  return "Contact created: " & {quote(name)}
end tell
"""
        return await self._run(script)

    async def list_contacts(self) -> list[dict[str, Any]]:
        script = f"""
tell application "Contacts"
  set contactList to ""
  repeat with p in people
    if contactList is not "" then
      set contactList to contactList & ":::"
    end if
{_CONTACT_INFO}
    set contactList to contactList & contactInfo
  end repeat
  return contactList
end tell
"""
        records = parse_records(await self._run(script), _CONTACT_FIELDS)
        logger.debug("Listed %d contact(s)", len(records))
        return [_to_contact(r) for r in records]

    async def get_contact(self, contact_name: str) -> dict[str, Any]:
        script = f"""
tell application "Contacts"
  repeat with p in people
    if name of p is {quote(contact_name)} then
{_CONTACT_INFO}
      return contactInfo
    end if
  end repeat
  return {quote(NOT_FOUND)}
end tell
"""
        output = await self._run(script)
        if output == NOT_FOUND:
            raise ToolInvocationError(f"Contact not found: {contact_name}")
        return _to_contact(parse_records(output, _CONTACT_FIELDS)[0])

    async def delete_contact(self, contact_name: str) -> str:
        script = f"""
tell application "Contacts"
  repeat with p in people
    if name of p is {quote(contact_name)} then
      delete p
      save
      return "Contact deleted: " & {quote(contact_name)}
    end if
  end repeat
  return {quote(NOT_FOUND)}
end tell
"""
        output = await self._run(script)
        if output == NOT_FOUND:
            raise ToolInvocationError(f"Contact not found: {contact_name}")
        return output

    def register_with(self, registry: ToolRegistry) -> None:
        """Register every contacts tool on *registry*."""
        handlers = {
            "search_contacts": self._handle_search,
            "create_contact": self._handle_create,
            "list_contacts": self._handle_list,
            "get_contact": self._handle_get,
            "delete_contact": self._handle_delete,
        }
        for definition in self.TOOL_DEFINITIONS:
            registry.register(definition, handlers[definition.name])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_search(self, args: dict[str, Any]) -> str:
        contacts = await self.search_contacts(require_argument(args, "query"))
        return json.dumps({"contacts": contacts})

    async def _handle_create(self, args: dict[str, Any]) -> str:
        result = await self.create_contact(
            require_argument(args, "name"),
            email=args.get("email"),
            phone=args.get("phone"),
            organization=args.get("organization"),
            birthday=args.get("birthday"),
        )
        return json.dumps({"result": result})

    async def _handle_list(self, args: dict[str, Any]) -> str:
        return json.dumps({"contacts": await self.list_contacts()})

    async def _handle_get(self, args: dict[str, Any]) -> str:
        contact = await self.get_contact(require_argument(args, "contactName"))
        return json.dumps({"contact": contact})

    async def _handle_delete(self, args: dict[str, Any]) -> str:
        result = await self.delete_contact(require_argument(args, "contactName"))
        return json.dumps({"result": result})

    async def _run(self, script: str) -> str:
        return await run_applescript(script, timeout=self.config.script_timeout)


def create_contacts_provider(config: AppleScriptConfig | None = None) -> ToolRegistry:
    """Build an in-process provider exposing the contacts tools."""
    config = config or AppleScriptConfig()
    registry = ToolRegistry("contacts", timeout=config.tool_timeout)
    ContactsTools(config).register_with(registry)
    return registry
