"""Task records and the per-task synchronization primitives.

A Task is mutated in place by its agent loop; the TaskRunner keeps a
shared reference for status queries. The CancelToken and ResponseSlot are
the only objects the outside world uses to influence a running loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class TaskStatus(StrEnum):
    RUNNING = "running"
    THINKING = "thinking"
    TOOL_EXECUTING = "tool_executing"
    WAITING_USER = "waiting_user"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.ERROR}
)

_ENDINGS = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.ERROR})

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    # running -> tool_executing / waiting_user happens for the 2nd+ tool
    # call within one step.
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.THINKING, TaskStatus.TOOL_EXECUTING, TaskStatus.WAITING_USER}
    )
    | _ENDINGS,
    TaskStatus.THINKING: frozenset(
        {TaskStatus.RUNNING, TaskStatus.TOOL_EXECUTING, TaskStatus.WAITING_USER}
    )
    | _ENDINGS,
    TaskStatus.TOOL_EXECUTING: frozenset(
        {TaskStatus.RUNNING, TaskStatus.CANCELLED, TaskStatus.ERROR}
    ),
    TaskStatus.WAITING_USER: frozenset(
        {TaskStatus.RUNNING, TaskStatus.CANCELLED, TaskStatus.ERROR}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
    TaskStatus.ERROR: frozenset(),
}


def is_terminal(status: TaskStatus | str) -> bool:
    """Check if a task status is terminal (no more transitions possible)."""
    return status in TERMINAL_STATUSES


class InvalidTransitionError(Exception):
    """A status change that the lifecycle does not allow."""


@dataclass
class Task:
    """One run of the agent loop for a single user request."""

    conversation_id: str
    original_prompt: str
    task_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.RUNNING
    scratchpad: list[str] = field(default_factory=list)
    step_count: int = 0
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    pending_question: str | None = None
    error_message: str | None = None
    current_tool: str | None = None
    immediate_memory: str | None = None
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def set_status(self, new_status: TaskStatus) -> bool:
        """Move to *new_status*. Returns False if the task was already terminal.

        Terminal states are sticky: a loop that notices cancellation late
        must not resurrect the task, so those attempts are ignored.
        """
        with self._lock:
            if self.is_terminal:
                if new_status != self.status:
                    logger.debug(
                        "Task %s already %s, ignoring -> %s",
                        self.task_id[:8],
                        self.status,
                        new_status,
                    )
                return False
            if new_status == self.status:
                return True
            if new_status not in ALLOWED_TRANSITIONS[self.status]:
                raise InvalidTransitionError(
                    f"Task {self.task_id}: {self.status} -> {new_status} not allowed"
                )

            previous = self.status
            self.status = new_status
            if previous == TaskStatus.WAITING_USER:
                self.pending_question = None
            if previous == TaskStatus.TOOL_EXECUTING:
                self.current_tool = None
            if new_status in TERMINAL_STATUSES:
                self.ended_at = time.time()
                self.pending_question = None
                self.current_tool = None
            return True

    def fail(self, message: str) -> bool:
        """Terminate with status=error and record why."""
        with self._lock:
            if self.is_terminal:
                return False
            self.error_message = message
            return self.set_status(TaskStatus.ERROR)

    def note(self, text: str) -> None:
        """Append a human-readable progress note to the scratchpad."""
        self.scratchpad.append(text)

    def snapshot(self) -> dict[str, Any]:
        """Detached copy of the task state for status broadcasts."""
        return {
            "task_id": self.task_id,
            "conversation_id": self.conversation_id,
            "status": str(self.status),
            "original_prompt": self.original_prompt,
            "scratchpad": list(self.scratchpad),
            "step_count": self.step_count,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "pending_question": self.pending_question,
            "error_message": self.error_message,
            "current_tool": self.current_tool,
        }


class CancelToken:
    """One-way cancellation flag shared between the runner and a loop."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Idempotent and irreversible."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None and self._loop is not None:
            if self._loop.is_closed():
                return
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is self._loop:
                self._event.set()
            else:
                self._loop.call_soon_threadsafe(self._event.set)

    async def wait(self) -> None:
        """Block until the token is signalled."""
        if self._cancelled:
            return
        if self._event is None:
            self._loop = asyncio.get_running_loop()
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


class ResponseSlot:
    """Single-use rendezvous for a task suspended on ask_user.

    The first ``resolve`` wins; later calls are no-ops that return False.
    Safe to resolve from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[str] = self._loop.create_future()
        self._lock = threading.Lock()
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def resolve(self, answer: str) -> bool:
        with self._lock:
            if self._consumed:
                return False
            self._consumed = True

        if self._loop.is_closed():
            return True
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._set(answer)
        else:
            self._loop.call_soon_threadsafe(self._set, answer)
        return True

    def _set(self, answer: str) -> None:
        if not self._future.done():
            self._future.set_result(answer)

    async def wait(self) -> str:
        return await self._future


class TaskRegistry:
    """The three shared maps (tasks, cancel tokens, response slots).

    Every access goes through one lock so the control surface can be
    driven from threads other than the event loop's.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._tokens: dict[str, CancelToken] = {}
        self._slots: dict[str, ResponseSlot] = {}

    def add(self, task: Task, token: CancelToken) -> None:
        with self._lock:
            self._tasks[task.task_id] = task
            self._tokens[task.task_id] = token

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def token(self, task_id: str) -> CancelToken | None:
        with self._lock:
            return self._tokens.get(task_id)

    def tasks(self) -> list[Task]:
        with self._lock:
            return list(self._tasks.values())

    def find_active(self, conversation_id: str) -> Task | None:
        with self._lock:
            for task in self._tasks.values():
                if task.conversation_id == conversation_id and not task.is_terminal:
                    return task
        return None

    def open_slot(self, task_id: str) -> ResponseSlot:
        """Create the task's response slot, replacing a stale one if present."""
        slot = ResponseSlot()
        with self._lock:
            stale = self._slots.get(task_id)
            self._slots[task_id] = slot
        if stale is not None:
            logger.warning("Replacing unconsumed response slot for %s", task_id[:8])
            stale.resolve("")
        return slot

    def take_slot(self, task_id: str) -> ResponseSlot | None:
        """Remove and return the open slot, if any. Consuming removes it."""
        with self._lock:
            return self._slots.pop(task_id, None)

    def has_slot(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._slots

    def release(self, task_id: str) -> ResponseSlot | None:
        """Drop the token and slot of a finished task; the record stays."""
        with self._lock:
            self._tokens.pop(task_id, None)
            return self._slots.pop(task_id, None)

    def discard(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)
            self._tokens.pop(task_id, None)
            self._slots.pop(task_id, None)
