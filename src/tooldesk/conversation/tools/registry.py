"""
In-process tool provider for the tooldesk conversation loop.

Provides ``ToolRegistry``, a ``ToolProvider`` that maps tool names to async
handlers and invokes them with a per-call timeout and optional retries.

Typical usage::

    from tooldesk.conversation.tools.registry import ToolRegistry
    from tooldesk.conversation.tools.notes import NotesTools

    registry = ToolRegistry("notes", timeout=30.0, max_retries=1)
    NotesTools().register_with(registry)

    catalog = await ToolCatalog.build([registry])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from tooldesk.conversation.errors import (
    ToolConfigurationError,
    ToolInvocationError,
    UnknownToolError,
)
from tooldesk.conversation.providers import ToolDefinition

logger = logging.getLogger(__name__)

# Type alias for a single tool handler: async (args_dict) -> result_str
AsyncToolHandler = Callable[[dict[str, Any]], Awaitable[str]]


def require_argument(arguments: dict[str, Any], key: str) -> Any:
    """Return ``arguments[key]``, raising ``ToolInvocationError`` if absent or empty."""
    value = arguments.get(key)
    if value is None or value == "":
        raise ToolInvocationError(f"Missing required argument: {key}")
    return value


class ToolRegistry:
    """Registry mapping tool names to their definitions and async handlers.

    Each ``call_tool`` is wrapped with:

    - **Timeout**: ``asyncio.wait_for(handler(...), timeout=timeout)`` if
      *timeout* is set.
    - **Retry**: re-attempts the call up to *max_retries* additional times
      when the exception is an instance of *retry_exceptions*.

    Any failure that survives the retries surfaces as ``ToolInvocationError``.

    Args:
        name: Provider name used in logs and catalog errors.
        timeout: Maximum seconds per tool call. ``None`` disables the timeout.
        max_retries: Number of *additional* attempts on retryable failures.
        retry_exceptions: Exception types that trigger a retry.
    """

    def __init__(
        self,
        name: str,
        timeout: float | None = 30.0,
        max_retries: int = 0,
        retry_exceptions: tuple[type[BaseException], ...] = (asyncio.TimeoutError,),
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_exceptions = retry_exceptions
        self._tools: dict[str, tuple[ToolDefinition, AsyncToolHandler]] = {}
        self._disabled_reason: str | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, definition: ToolDefinition, handler: AsyncToolHandler) -> None:
        """Register a tool with its async handler.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if definition.name in self._tools:
            raise ValueError(
                f"Tool {definition.name!r} is already registered. "
                "Deregister it first before re-registering."
            )
        self._tools[definition.name] = (definition, handler)
        logger.debug("Registered tool %r on provider %r", definition.name, self.name)

    def deregister(self, name: str) -> None:
        """Remove a registered tool by name.

        Raises:
            KeyError: If the tool is not registered.
        """
        if name not in self._tools:
            raise KeyError(f"Tool {name!r} is not registered.")
        del self._tools[name]
        logger.debug("Deregistered tool %r from provider %r", name, self.name)

    def disable(self, reason: str) -> None:
        """Switch to degraded mode: tools stay listed, every call fails."""
        self._disabled_reason = reason
        logger.warning("Provider %r running degraded: %s", self.name, reason)

    @property
    def disabled_reason(self) -> str | None:
        return self._disabled_reason

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_definitions(self) -> list[ToolDefinition]:
        """Return all registered ``ToolDefinition`` objects (insertion order)."""
        return [defn for defn, _handler in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    # ------------------------------------------------------------------
    # ToolProvider
    # ------------------------------------------------------------------

    async def list_tools(self) -> list[ToolDefinition]:
        return self.get_definitions()

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Invoke tool *name* with *arguments*.

        Raises:
            UnknownToolError: If *name* is not registered here.
            ToolConfigurationError: If the provider is degraded.
            ToolInvocationError: On handler failure or timeout.
        """
        entry = self._tools.get(name)
        if entry is None:
            raise UnknownToolError(name)
        if self._disabled_reason is not None:
            raise ToolConfigurationError(self._disabled_reason)

        _definition, handler = entry
        total_attempts = self.max_retries + 1

        for attempt in range(1, total_attempts + 1):
            try:
                if self.timeout is not None:
                    return await asyncio.wait_for(handler(arguments), timeout=self.timeout)
                return await handler(arguments)
            except ToolInvocationError:
                raise
            except Exception as exc:
                is_retryable = bool(self.retry_exceptions) and isinstance(exc, self.retry_exceptions)
                if is_retryable and attempt < total_attempts:
                    logger.warning(
                        "Tool %r attempt %d/%d failed (%s: %s); retrying…",
                        name,
                        attempt,
                        total_attempts,
                        type(exc).__name__,
                        exc,
                    )
                    continue
                if isinstance(exc, asyncio.TimeoutError):
                    raise ToolInvocationError(
                        f"Tool {name!r} timed out after {self.timeout}s"
                    ) from exc
                raise ToolInvocationError(f"{type(exc).__name__}: {exc}") from exc

        # Unreachable, but keeps type checkers happy.
        raise RuntimeError("ToolRegistry: retry loop exited unexpectedly")  # pragma: no cover
