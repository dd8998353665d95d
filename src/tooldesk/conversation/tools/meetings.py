"""
Fathom meeting tools.

Talks to the Fathom external REST API (``https://api.fathom.ai/external/v1``)
with an ``X-Api-Key`` header. Responses are validated with pydantic models
before anything is handed to the model.

The ``MeetingTools`` class exposes:

- ``list_meetings``: meetings with optional date, participant and cursor
  filters.
- ``get_summary`` / ``get_transcript``: content of one recording.
- ``download_summary`` / ``download_transcript``: the same content written
  to a local file. Transcripts are written one line per utterance as
  ``[HH:MM:SS] Speaker: text``.

Without an API key the provider starts degraded: tools are listed, every call
fails with a configuration message.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field, ValidationError

from tooldesk.config import FathomConfig
from tooldesk.conversation.errors import ToolInvocationError
from tooldesk.conversation.providers import ToolDefinition
from tooldesk.conversation.tools.registry import ToolRegistry, require_argument

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = (
    "Fathom API key not configured. Please set FATHOM_API_KEY environment variable."
)

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TranscriptSpeaker(BaseModel):
    display_name: str
    matched_calendar_invitee_email: str | None = None


class TranscriptItem(BaseModel):
    speaker: TranscriptSpeaker
    text: str
    timestamp: str = Field(pattern=r"^\d{2}:\d{2}:\d{2}$")

    def format_line(self) -> str:
        return f"[{self.timestamp}] {self.speaker.display_name}: {self.text}"


class MeetingSummary(BaseModel):
    template_name: str | None = None
    markdown_formatted: str | None = None


class CalendarInvitee(BaseModel):
    name: str | None = None
    email: str
    email_domain: str | None = None
    is_external: bool = False
    matched_speaker_display_name: str | None = None


class FathomUser(BaseModel):
    name: str
    email: str
    email_domain: str | None = None
    team: str | None = None


class Assignee(BaseModel):
    name: str | None = None
    email: str | None = None
    team: str | None = None


class ActionItem(BaseModel):
    description: str
    user_generated: bool = False
    completed: bool = False
    recording_timestamp: str | None = None
    recording_playback_url: str | None = None
    assignee: Assignee | None = None


class CRMMatches(BaseModel):
    contacts: list[Any] = Field(default_factory=list)
    companies: list[Any] = Field(default_factory=list)
    deals: list[Any] = Field(default_factory=list)
    error: str | None = None


class Meeting(BaseModel):
    title: str
    meeting_title: str | None = None
    recording_id: int
    url: str
    share_url: str
    created_at: datetime
    scheduled_start_time: datetime | None = None
    scheduled_end_time: datetime | None = None
    recording_start_time: datetime | None = None
    recording_end_time: datetime | None = None
    calendar_invitees_domains_type: Literal["only_internal", "one_or_more_external"] | None = None
    transcript_language: str | None = None
    transcript: list[TranscriptItem] | None = None
    default_summary: MeetingSummary | None = None
    action_items: list[ActionItem] | None = None
    calendar_invitees: list[CalendarInvitee] = Field(default_factory=list)
    recorded_by: FathomUser | None = None
    crm_matches: CRMMatches | None = None


class ListMeetingsResponse(BaseModel):
    limit: int | None = None
    next_cursor: str | None = None
    items: list[Meeting]


class GetSummaryResponse(BaseModel):
    summary: MeetingSummary


class GetTranscriptResponse(BaseModel):
    transcript: list[TranscriptItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# REST client
# ---------------------------------------------------------------------------


class FathomClient:
    """Async client for the Fathom external API.

    Args:
        config: API key, base URL and request timeout.

    Raises:
        ValueError: If *config* carries no API key.
    """

    def __init__(self, config: FathomConfig) -> None:
        if not config.api_key:
            raise ValueError("API key is required for FathomClient")
        self.config = config

    async def list_meetings(
        self,
        created_after: str | None = None,
        created_before: str | None = None,
        include_summary: bool = False,
        include_transcript: bool = False,
        include_action_items: bool = False,
        calendar_invitees: list[str] | None = None,
        recorded_by: list[str] | None = None,
        cursor: str | None = None,
    ) -> ListMeetingsResponse:
        """List meetings, optionally filtered.

        Args:
            created_after: ISO 8601 lower bound on creation time.
            created_before: ISO 8601 upper bound on creation time.
            include_summary: Embed each meeting's default summary.
            include_transcript: Embed each meeting's transcript.
            include_action_items: Embed each meeting's action items.
            calendar_invitees: Only meetings with these invitee emails.
            recorded_by: Only meetings recorded by these emails.
            cursor: Pagination cursor from a previous ``next_cursor``.
        """
        params: list[tuple[str, str]] = []
        if created_after:
            params.append(("created_after", created_after))
        if created_before:
            params.append(("created_before", created_before))
        if include_summary:
            params.append(("include_summary", "true"))
        if include_transcript:
            params.append(("include_transcript", "true"))
        if include_action_items:
            params.append(("include_action_items", "true"))
        for email in calendar_invitees or []:
            params.append(("calendar_invitees[]", email))
        for email in recorded_by or []:
            params.append(("recorded_by[]", email))
        if cursor:
            params.append(("cursor", cursor))

        data = await self._get("/meetings", params)
        return self._validate(ListMeetingsResponse, data)

    async def get_summary(self, recording_id: int) -> GetSummaryResponse:
        data = await self._get(f"/recordings/{recording_id}/summary")
        return self._validate(GetSummaryResponse, data)

    async def get_transcript(self, recording_id: int) -> GetTranscriptResponse:
        data = await self._get(f"/recordings/{recording_id}/transcript")
        return self._validate(GetTranscriptResponse, data)

    async def download_summary(self, recording_id: int, file_path: str | Path) -> str:
        """Write the recording's markdown summary to *file_path*."""
        response = await self.get_summary(recording_id)
        content = response.summary.markdown_formatted or ""
        path = await _write_text(file_path, content)
        return f"Summary downloaded to {path}"

    async def download_transcript(self, recording_id: int, file_path: str | Path) -> str:
        """Write the recording's transcript to *file_path*, one utterance per line."""
        response = await self.get_transcript(recording_id)
        content = format_transcript(response.transcript)
        path = await _write_text(file_path, content)
        return f"Transcript downloaded to {path}"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get(self, endpoint: str, params: list[tuple[str, str]] | None = None) -> Any:
        headers = {"X-Api-Key": self.config.api_key, "Content-Type": "application/json"}
        url = f"{self.config.base_url}{endpoint}"
        logger.debug("GET %s params=%s", url, params)
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                response = await client.get(url, params=params, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Fathom API HTTP error for %s: %s", url, exc)
            raise ToolInvocationError(
                f"Fathom API error {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.TimeoutException as exc:
            logger.error("Fathom API timed out for %s", url)
            raise ToolInvocationError("Fathom API request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Fathom API request failed for %s: %s", url, exc)
            raise ToolInvocationError(f"Fathom API request failed: {exc}") from exc

    @staticmethod
    def _validate(model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ToolInvocationError(
                f"Unexpected Fathom API response: {exc.error_count()} validation error(s)"
            ) from exc


def format_transcript(items: list[TranscriptItem]) -> str:
    """Render transcript items as ``[HH:MM:SS] Speaker: text`` lines."""
    return "\n".join(item.format_line() for item in items)


async def _write_text(file_path: str | Path, content: str) -> Path:
    path = Path(file_path).expanduser()

    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    try:
        await asyncio.to_thread(_write)
    except OSError as exc:
        raise ToolInvocationError(f"Cannot write {path}: {exc}") from exc
    return path


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

_RECORDING_ID = {"type": "number", "description": "The ID of the recording"}
_FILE_PATH = {"type": "string", "description": "Path of the file to write"}


class MeetingTools:
    """Fathom operations exposed as tools."""

    TOOL_DEFINITIONS: list[ToolDefinition] = [
        ToolDefinition(
            name="list_meetings",
            description=(
                "List all meetings from Fathom with optional filtering by date "
                "range, participants, and pagination"
            ),
            parameters={
                "type": "object",
                "properties": {
                    "createdAfter": {
                        "type": "string",
                        "description": "ISO 8601 timestamp to filter meetings created after this date",
                    },
                    "createdBefore": {
                        "type": "string",
                        "description": "ISO 8601 timestamp to filter meetings created before this date",
                    },
                    "includeSummary": {
                        "type": "boolean",
                        "description": "Include meeting summaries in the response",
                    },
                    "includeTranscript": {
                        "type": "boolean",
                        "description": "Include transcripts in the response",
                    },
                    "includeActionItems": {
                        "type": "boolean",
                        "description": "Include action items in the response",
                    },
                    "calendarInvitees": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Filter by calendar invitee email addresses",
                    },
                    "recordedBy": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Filter by recorder email addresses",
                    },
                    "cursor": {
                        "type": "string",
                        "description": "Pagination cursor for fetching next page of results",
                    },
                },
                "required": [],
            },
        ),
        ToolDefinition(
            name="get_summary",
            description="Get the summary for a specific Fathom meeting recording",
            parameters={
                "type": "object",
                "properties": {"recordingId": _RECORDING_ID},
                "required": ["recordingId"],
            },
        ),
        ToolDefinition(
            name="get_transcript",
            description="Get the transcript for a specific Fathom meeting recording",
            parameters={
                "type": "object",
                "properties": {"recordingId": _RECORDING_ID},
                "required": ["recordingId"],
            },
        ),
        ToolDefinition(
            name="download_summary",
            description="Download the summary of a Fathom recording to a markdown file",
            parameters={
                "type": "object",
                "properties": {"recordingId": _RECORDING_ID, "filePath": _FILE_PATH},
                "required": ["recordingId", "filePath"],
            },
        ),
        ToolDefinition(
            name="download_transcript",
            description="Download the transcript of a Fathom recording to a text file",
            parameters={
                "type": "object",
                "properties": {"recordingId": _RECORDING_ID, "filePath": _FILE_PATH},
                "required": ["recordingId", "filePath"],
            },
        ),
    ]

    def __init__(self, client: FathomClient | None) -> None:
        self.client = client

    def register_with(self, registry: ToolRegistry) -> None:
        """Register every meeting tool on *registry*."""
        handlers = {
            "list_meetings": self._handle_list_meetings,
            "get_summary": self._handle_get_summary,
            "get_transcript": self._handle_get_transcript,
            "download_summary": self._handle_download_summary,
            "download_transcript": self._handle_download_transcript,
        }
        for definition in self.TOOL_DEFINITIONS:
            registry.register(definition, handlers[definition.name])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_list_meetings(self, args: dict[str, Any]) -> str:
        response = await self._client().list_meetings(
            created_after=args.get("createdAfter"),
            created_before=args.get("createdBefore"),
            include_summary=bool(args.get("includeSummary")),
            include_transcript=bool(args.get("includeTranscript")),
            include_action_items=bool(args.get("includeActionItems")),
            calendar_invitees=args.get("calendarInvitees"),
            recorded_by=args.get("recordedBy"),
            cursor=args.get("cursor"),
        )
        return response.model_dump_json()

    async def _handle_get_summary(self, args: dict[str, Any]) -> str:
        response = await self._client().get_summary(_recording_id(args))
        return response.model_dump_json()

    async def _handle_get_transcript(self, args: dict[str, Any]) -> str:
        response = await self._client().get_transcript(_recording_id(args))
        return response.model_dump_json()

    async def _handle_download_summary(self, args: dict[str, Any]) -> str:
        result = await self._client().download_summary(
            _recording_id(args), require_argument(args, "filePath")
        )
        return json.dumps({"result": result})

    async def _handle_download_transcript(self, args: dict[str, Any]) -> str:
        result = await self._client().download_transcript(
            _recording_id(args), require_argument(args, "filePath")
        )
        return json.dumps({"result": result})

    def _client(self) -> FathomClient:
        if self.client is None:
            raise ToolInvocationError(MISSING_API_KEY_MESSAGE)
        return self.client


def _recording_id(args: dict[str, Any]) -> int:
    value = require_argument(args, "recordingId")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ToolInvocationError(f"Invalid recordingId: {value!r}") from exc


def create_meetings_provider(config: FathomConfig | None = None) -> ToolRegistry:
    """Build an in-process provider exposing the meeting tools.

    Without an API key the provider is returned degraded.
    """
    config = config or FathomConfig()
    registry = ToolRegistry("meetings", timeout=config.tool_timeout)
    client = FathomClient(config) if config.api_key else None
    MeetingTools(client).register_with(registry)
    if client is None:
        registry.disable(MISSING_API_KEY_MESSAGE)
    return registry
