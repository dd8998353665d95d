"""
AppleScript execution helpers shared by the Calendar, Contacts and Notes tools.

Scripts run through ``osascript -e`` as a subprocess argument (no shell), and
return their data as delimited text: records separated by ``:::`` and fields
by ``|||``.
"""

from __future__ import annotations

import asyncio
import logging

from tooldesk.conversation.errors import ToolInvocationError

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = ":::"
FIELD_SEPARATOR = "|||"
# Returned by lookup scripts when no item matches.
NOT_FOUND = "__NOT_FOUND__"


class AppleScriptError(ToolInvocationError):
    """Raised when ``osascript`` fails, times out, or is unavailable."""


def quote(value: object) -> str:
    """Return *value* as an AppleScript string literal (with quotes)."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def parse_records(output: str, fields: list[str]) -> list[dict[str, str]]:
    """Split delimited ``osascript`` output into dicts keyed by *fields*.

    Missing trailing fields become empty strings.
    """
    if not output:
        return []
    records = []
    for chunk in output.split(RECORD_SEPARATOR):
        values = chunk.split(FIELD_SEPARATOR)
        values += [""] * (len(fields) - len(values))
        records.append(dict(zip(fields, values)))
    return records


async def run_applescript(script: str, timeout: float | None = 30.0) -> str:
    """Run *script* with ``osascript`` and return its trimmed stdout.

    Raises:
        AppleScriptError: On a non-zero exit status, a timeout, or when
            ``osascript`` is not installed.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "osascript",
            "-e",
            script,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise AppleScriptError("osascript is not available on this system") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise AppleScriptError(f"AppleScript timed out after {timeout}s") from exc

    error_text = stderr.decode("utf-8", errors="replace").strip()
    if process.returncode != 0:
        logger.error("AppleScript failed (exit %s): %s", process.returncode, error_text)
        raise AppleScriptError(f"AppleScript error: {error_text or 'exit status ' + str(process.returncode)}")
    if error_text:
        logger.warning("AppleScript stderr: %s", error_text)

    return stdout.decode("utf-8", errors="replace").strip()
