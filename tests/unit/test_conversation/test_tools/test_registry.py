"""Unit tests for tooldesk.conversation.tools.registry.ToolRegistry."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from tooldesk.conversation.errors import (
    ToolConfigurationError,
    ToolInvocationError,
    UnknownToolError,
)
from tooldesk.conversation.providers import ToolDefinition
from tooldesk.conversation.tools.registry import ToolRegistry, require_argument

# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

_DEF_A = ToolDefinition(name="tool_a", description="First test tool.")
_DEF_B = ToolDefinition(name="tool_b", description="Second test tool.")


async def _ok_handler(args: dict[str, Any]) -> str:
    return json.dumps({"status": "ok", "args": args})


async def _raise_handler(args: dict[str, Any]) -> str:
    raise ValueError("handler error")


async def _slow_handler(args: dict[str, Any]) -> str:
    await asyncio.sleep(999)
    return "never"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestToolRegistryRegistration:
    def test_register_tools(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_A, _ok_handler)
        registry.register(_DEF_B, _ok_handler)
        assert "tool_a" in registry
        assert len(registry) == 2
        assert registry.name == "test"

    def test_duplicate_registration_raises(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_A, _ok_handler)
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_DEF_A, _ok_handler)

    def test_deregister_then_reregister(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_A, _ok_handler)
        registry.deregister("tool_a")
        assert "tool_a" not in registry
        registry.register(_DEF_A, _raise_handler)
        assert len(registry) == 1

    def test_deregister_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            ToolRegistry("test").deregister("nonexistent")

    @pytest.mark.anyio
    async def test_list_tools_preserves_insertion_order(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_B, _ok_handler)
        registry.register(_DEF_A, _ok_handler)
        assert [d.name for d in await registry.list_tools()] == ["tool_b", "tool_a"]


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


class TestToolRegistryCall:
    @pytest.mark.anyio
    async def test_successful_call(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_A, _ok_handler)

        result = await registry.call_tool("tool_a", {"x": 1})

        assert json.loads(result) == {"status": "ok", "args": {"x": 1}}

    @pytest.mark.anyio
    async def test_unknown_tool_raises(self) -> None:
        with pytest.raises(UnknownToolError):
            await ToolRegistry("test").call_tool("missing", {})

    @pytest.mark.anyio
    async def test_handler_exception_wrapped(self) -> None:
        registry = ToolRegistry("test")
        registry.register(_DEF_A, _raise_handler)

        with pytest.raises(ToolInvocationError, match="ValueError: handler error"):
            await registry.call_tool("tool_a", {})

    @pytest.mark.anyio
    async def test_tool_invocation_error_passes_through(self) -> None:
        registry = ToolRegistry("test", max_retries=3)
        handler = AsyncMock(side_effect=ToolInvocationError("Note not found: x"))
        registry.register(_DEF_A, handler)

        with pytest.raises(ToolInvocationError, match="^Note not found: x$"):
            await registry.call_tool("tool_a", {})
        assert handler.await_count == 1

    @pytest.mark.anyio
    async def test_timeout_becomes_invocation_error(self) -> None:
        registry = ToolRegistry("test", timeout=0.01)
        registry.register(_DEF_A, _slow_handler)

        with pytest.raises(ToolInvocationError, match="timed out"):
            await registry.call_tool("tool_a", {})

    @pytest.mark.anyio
    async def test_no_timeout_allows_handler(self) -> None:
        registry = ToolRegistry("test", timeout=None)
        registry.register(_DEF_A, _ok_handler)
        assert "ok" in await registry.call_tool("tool_a", {})


class TestToolRegistryRetry:
    @pytest.mark.anyio
    async def test_retry_on_matching_exception(self) -> None:
        handler = AsyncMock(side_effect=[ConnectionError("flaky"), "recovered"])
        registry = ToolRegistry("test", max_retries=1, retry_exceptions=(ConnectionError,))
        registry.register(_DEF_A, handler)

        assert await registry.call_tool("tool_a", {}) == "recovered"
        assert handler.await_count == 2

    @pytest.mark.anyio
    async def test_retry_exhausted_raises(self) -> None:
        handler = AsyncMock(side_effect=ConnectionError("down"))
        registry = ToolRegistry("test", max_retries=2, retry_exceptions=(ConnectionError,))
        registry.register(_DEF_A, handler)

        with pytest.raises(ToolInvocationError, match="down"):
            await registry.call_tool("tool_a", {})
        assert handler.await_count == 3

    @pytest.mark.anyio
    async def test_non_matching_exception_not_retried(self) -> None:
        handler = AsyncMock(side_effect=ValueError("bad"))
        registry = ToolRegistry("test", max_retries=2, retry_exceptions=(ConnectionError,))
        registry.register(_DEF_A, handler)

        with pytest.raises(ToolInvocationError):
            await registry.call_tool("tool_a", {})
        assert handler.await_count == 1


# ---------------------------------------------------------------------------
# Degraded mode
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_disabled_registry_lists_tools_but_fails_calls() -> None:
    handler = AsyncMock(return_value="ok")
    registry = ToolRegistry("meetings")
    registry.register(_DEF_A, handler)
    registry.disable("API key not configured")

    assert [d.name for d in await registry.list_tools()] == ["tool_a"]
    with pytest.raises(ToolConfigurationError, match="API key not configured"):
        await registry.call_tool("tool_a", {})
    handler.assert_not_awaited()
    assert registry.disabled_reason == "API key not configured"


@pytest.mark.anyio
async def test_disabled_registry_still_rejects_unknown_tools() -> None:
    registry = ToolRegistry("meetings")
    registry.disable("off")
    with pytest.raises(UnknownToolError):
        await registry.call_tool("missing", {})


# ---------------------------------------------------------------------------
# require_argument
# ---------------------------------------------------------------------------


def test_require_argument_returns_value() -> None:
    assert require_argument({"query": "milk", "n": 0}, "query") == "milk"
    assert require_argument({"n": 0}, "n") == 0


@pytest.mark.parametrize("args", [{}, {"query": None}, {"query": ""}])
def test_require_argument_missing(args: dict[str, Any]) -> None:
    with pytest.raises(ToolInvocationError, match="Missing required argument: query"):
        require_argument(args, "query")
