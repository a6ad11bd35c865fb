"""conversation_history_* -- explicit retrieval of earlier conversation turns.

The agent does not see prior turns of its conversation unless it asks for
them. Both tools are bound to one conversation when the task starts.
"""

from __future__ import annotations

from typing import Any

from core.conversation import ConversationStore
from tools.base import BaseTool, ToolResult

_MAX_LIMIT = 50
_MAX_CONTENT_CHARS = 2000


def _clamp(limit: Any, default: int = 10) -> int:
    if not isinstance(limit, int) or limit < 1:
        return default
    return min(limit, _MAX_LIMIT)


def _render(messages: list[Any]) -> list[dict[str, Any]]:
    rendered = []
    for m in messages:
        item = m.to_dict()
        if len(item["content"]) > _MAX_CONTENT_CHARS:
            item["content"] = item["content"][:_MAX_CONTENT_CHARS] + "…"
        rendered.append(item)
    return rendered


class ConversationHistoryRecentTool(BaseTool):
    """Most recent messages of the current conversation."""

    name = "conversation_history_recent"
    description = (
        "Retrieve the most recent messages of this conversation, oldest first. "
        "Use this when the request refers to something said earlier."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "limit": {
                "type": "integer",
                "description": f"Number of messages (default 10, max {_MAX_LIMIT})",
            },
        },
    }

    def __init__(self, store: ConversationStore, conversation_id: str) -> None:
        self._store = store
        self._conversation_id = conversation_id

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        messages = await self._store.recent(
            self._conversation_id, _clamp(params.get("limit"))
        )
        return ToolResult(
            success=True,
            data={"messages": _render(messages), "count": len(messages)},
        )


class ConversationHistorySearchTool(BaseTool):
    """Keyword search over the current conversation."""

    name = "conversation_history_search"
    description = (
        "Search earlier messages of this conversation for a keyword or phrase. "
        "Returns the newest matches first."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Text to look for (case-insensitive)",
            },
            "limit": {
                "type": "integer",
                "description": f"Maximum matches (default 10, max {_MAX_LIMIT})",
            },
        },
        "required": ["query"],
    }

    def __init__(self, store: ConversationStore, conversation_id: str) -> None:
        self._store = store
        self._conversation_id = conversation_id

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        query = params["query"].strip()
        if not query:
            return ToolResult(success=False, error="query must not be empty")
        messages = await self._store.search(
            self._conversation_id, query, _clamp(params.get("limit"))
        )
        return ToolResult(
            success=True,
            data={"query": query, "messages": _render(messages), "count": len(messages)},
        )


def build_history_tools(store: ConversationStore, conversation_id: str) -> list[BaseTool]:
    return [
        ConversationHistoryRecentTool(store, conversation_id),
        ConversationHistorySearchTool(store, conversation_id),
    ]
