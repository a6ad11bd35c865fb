"""Tool execution orchestration.

Takes a tool call from the agent loop, looks the tool up in the task's
toolset, validates the arguments and runs it under the hard tool timeout.
Lookup and validation problems come back as structured error objects so
the model can adapt; exceptions and timeouts from the tool itself
propagate to the loop, which turns them into ``{error, hint}`` results.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from core.registry import ToolRegistry
from core.retry import TaskCancelledError, with_timeout
from core.task import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def race_cancel(awaitable: Awaitable[T], cancel_token: CancelToken | None) -> T:
    """Await *awaitable* unless the token fires first, in which case cancel it."""
    if cancel_token is None:
        return await awaitable
    if cancel_token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TaskCancelledError("cancelled before start")

    op = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        done, _ = await asyncio.wait(
            {op, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if op in done:
            return op.result()
        raise TaskCancelledError("cancelled while running")
    finally:
        for fut in (op, waiter):
            if not fut.done():
                fut.cancel()


class ToolExecutor:
    """Runs generic (non-control) tool calls for the agent loop."""

    def __init__(self, tool_timeout_seconds: float = 60) -> None:
        self._timeout = tool_timeout_seconds

    async def execute(
        self,
        name: str,
        args: dict[str, Any],
        tools: ToolRegistry,
        cancel_token: CancelToken | None = None,
    ) -> Any:
        """Execute one tool call. Returns the tool's result or an error dict."""
        tool = tools.get(name)
        if tool is None:
            return {"error": f'Tool "{name}" not found'}
        if not tool.has_implementation:
            return {"error": f'Tool "{name}" has no implementation'}

        errors = tool.validate_input(args)
        if errors:
            return {"error": f"Invalid parameters: {'; '.join(errors)}"}

        logger.info(
            "Executing tool '%s' with params: %s",
            name,
            json.dumps(args, default=str)[:200],
        )
        result = await with_timeout(
            race_cancel(tool.execute(args), cancel_token),
            self._timeout,
            f"Tool {name}",
        )
        logger.debug("Tool '%s' result: %s", name, str(result)[:300])
        return result
