"""Task events -- status broadcasts and outgoing messages.

The TaskRunner publishes a ``task_update`` event (carrying a detached
snapshot of the task) on every status change and a ``task_message`` event
for every message the loop sends to a conversation. Subscribers are plain
callables; a failing subscriber never affects the task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Event kinds emitted by the task runner."""

    TASK_UPDATE = "task_update"
    TASK_MESSAGE = "task_message"


@dataclass
class TaskEvent:
    """One event published on the bus."""

    type: str
    task_id: str
    conversation_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, raw: str) -> TaskEvent:
        d = json.loads(raw)
        return cls(**d)


def update_event(snapshot: dict[str, Any]) -> TaskEvent:
    """Create a status broadcast from a task snapshot."""
    return TaskEvent(
        type=EventType.TASK_UPDATE,
        task_id=snapshot["task_id"],
        conversation_id=snapshot.get("conversation_id", ""),
        data=snapshot,
    )


def message_event(
    task_id: str, conversation_id: str, content: str, metadata: dict[str, Any]
) -> TaskEvent:
    """Create an outgoing-message event."""
    return TaskEvent(
        type=EventType.TASK_MESSAGE,
        task_id=task_id,
        conversation_id=conversation_id,
        data={"content": content, "metadata": metadata},
    )


Subscriber = Callable[[TaskEvent], Any]


def _log_subscriber_failure(task: asyncio.Task[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Async event subscriber failed: %s", task.exception())


class EventBus:
    """Synchronous fan-out of task events to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        # Holds coroutine subscriber tasks until they finish
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: TaskEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    task = asyncio.get_running_loop().create_task(result)
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                    task.add_done_callback(_log_subscriber_failure)
            except Exception as e:
                logger.warning("Event subscriber failed for %s: %s", event.type, e)

    @property
    def pending(self) -> int:
        """Coroutine subscriber calls still running."""
        return len(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
