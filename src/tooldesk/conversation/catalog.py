"""
Tool catalog: one name-deduplicated view over several tool providers.

``ToolCatalog.build()`` asks every provider for its tools once, at startup,
and fails fast on name collisions. Afterwards the catalog is read-only and
may be shared between runs.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from tooldesk.conversation.errors import ConfigurationError, UnknownToolError
from tooldesk.conversation.providers import ToolDefinition

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolProvider(Protocol):
    """An addressable source of tools (in-process or out-of-process).

    Attributes:
        name: Provider name, used in logs and error messages.
    """

    name: str

    async def list_tools(self) -> list[ToolDefinition]:
        """Return the tools this provider exposes."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Invoke tool *name* and return its text content.

        Raises:
            ToolInvocationError: If the tool call fails.
        """
        ...


class ToolCatalog:
    """Immutable mapping of tool name to definition and owning provider."""

    def __init__(self, entries: Mapping[str, tuple[ToolDefinition, ToolProvider]]) -> None:
        self._entries: dict[str, tuple[ToolDefinition, ToolProvider]] = dict(entries)
        self._routes = MappingProxyType(
            {name: provider for name, (_defn, provider) in self._entries.items()}
        )

    @classmethod
    async def build(
        cls,
        providers: Iterable[ToolProvider],
        allowed_tools: Iterable[str] | None = None,
    ) -> ToolCatalog:
        """List every provider's tools and merge them by name.

        Args:
            providers: The connected tool providers.
            allowed_tools: Optional allow-list; when given, only these tools
                are exposed.

        Raises:
            ConfigurationError: If two providers expose the same tool name or
                a provider cannot list its tools.
        """
        allowed = set(allowed_tools) if allowed_tools is not None else None
        entries: dict[str, tuple[ToolDefinition, ToolProvider]] = {}

        for provider in providers:
            try:
                definitions = await provider.list_tools()
            except Exception as exc:
                raise ConfigurationError(
                    f"Provider {provider.name!r} failed to list its tools: {exc}"
                ) from exc

            for definition in definitions:
                if allowed is not None and definition.name not in allowed:
                    continue
                existing = entries.get(definition.name)
                if existing is not None:
                    raise ConfigurationError(
                        f"Tool {definition.name!r} is provided by both "
                        f"{existing[1].name!r} and {provider.name!r}"
                    )
                entries[definition.name] = (definition, provider)

        if allowed is not None:
            missing = allowed - entries.keys()
            if missing:
                logger.warning("Allowed tools not offered by any provider: %s", sorted(missing))

        logger.info("Tool catalog built with %d tool(s): %s", len(entries), list(entries))
        return cls(entries)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def tools(self) -> list[ToolDefinition]:
        """All tool definitions (insertion order)."""
        return [defn for defn, _provider in self._entries.values()]

    @property
    def routes(self) -> Mapping[str, ToolProvider]:
        """Read-only mapping of tool name to owning provider."""
        return self._routes

    def names(self) -> list[str]:
        return list(self._entries)

    def get(self, name: str) -> ToolDefinition | None:
        entry = self._entries.get(name)
        return entry[0] if entry else None

    def provider_for(self, name: str) -> ToolProvider:
        """Return the provider owning *name*.

        Raises:
            UnknownToolError: If *name* is not in the catalog.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise UnknownToolError(name)
        return entry[1]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Route a tool call to its provider.

        Raises:
            UnknownToolError: If *name* is not in the catalog.
            ToolInvocationError: Propagated from the provider.
        """
        provider = self.provider_for(name)
        return await provider.call_tool(name, arguments)
