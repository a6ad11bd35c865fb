"""Conversation message storage.

The runner appends every message the agent sends to the conversation
store; the history tools read from it. Only an in-memory store ships
here; anything implementing ``ConversationStore`` can replace it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class ConversationMessage:
    """One stored conversation message."""

    conversation_id: str
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


class ConversationStore(Protocol):
    async def append(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationMessage: ...

    async def recent(self, conversation_id: str, limit: int = 10) -> list[ConversationMessage]: ...

    async def search(
        self, conversation_id: str, query: str, limit: int = 10
    ) -> list[ConversationMessage]: ...


class InMemoryConversationStore:
    """Process-local conversation store."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ConversationMessage]] = {}
        self._lock = asyncio.Lock()

    async def append(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=dict(metadata or {}),
        )
        async with self._lock:
            self._messages.setdefault(conversation_id, []).append(message)
        return message

    async def recent(self, conversation_id: str, limit: int = 10) -> list[ConversationMessage]:
        """Last *limit* messages, oldest first."""
        async with self._lock:
            messages = list(self._messages.get(conversation_id, []))
        if limit <= 0:
            return []
        return messages[-limit:]

    async def search(
        self, conversation_id: str, query: str, limit: int = 10
    ) -> list[ConversationMessage]:
        """Case-insensitive substring search, newest matches first."""
        needle = query.lower().strip()
        if not needle:
            return []
        async with self._lock:
            messages = list(self._messages.get(conversation_id, []))
        hits = [m for m in reversed(messages) if needle in m.content.lower()]
        return hits[:limit]

    async def all(self, conversation_id: str) -> list[ConversationMessage]:
        async with self._lock:
            return list(self._messages.get(conversation_id, []))
