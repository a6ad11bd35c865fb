"""Event bus and event serialization tests."""

from __future__ import annotations

import asyncio
import logging

import pytest

from core.events import EventBus, EventType, TaskEvent, message_event, update_event
from core.task import Task


class TestTaskEvent:
    def test_json_round_trip(self) -> None:
        event = message_event("t1", "conv-1", "hello", {"is_update": True})
        restored = TaskEvent.from_json(event.to_json())

        assert restored.type == EventType.TASK_MESSAGE
        assert restored.id == event.id
        assert restored.data == {"content": "hello", "metadata": {"is_update": True}}

    def test_update_event_from_snapshot(self) -> None:
        task = Task(conversation_id="conv-1", original_prompt="hi")
        event = update_event(task.snapshot())

        assert event.type == EventType.TASK_UPDATE
        assert event.task_id == task.task_id
        assert event.conversation_id == "conv-1"
        assert event.data["status"] == "running"


class TestEventBus:
    def test_fan_out_and_unsubscribe(self) -> None:
        bus = EventBus()
        first: list[TaskEvent] = []
        second: list[TaskEvent] = []
        unsubscribe = bus.subscribe(first.append)
        bus.subscribe(second.append)
        assert len(bus) == 2

        bus.publish(message_event("t1", "c", "one", {}))
        unsubscribe()
        unsubscribe()
        bus.publish(message_event("t1", "c", "two", {}))

        assert [e.data["content"] for e in first] == ["one"]
        assert [e.data["content"] for e in second] == ["one", "two"]
        assert len(bus) == 1

    def test_failing_subscriber_is_isolated(self, caplog) -> None:
        bus = EventBus()
        received: list[TaskEvent] = []

        def broken(event: TaskEvent) -> None:
            raise RuntimeError("subscriber down")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.WARNING, logger="core.events"):
            bus.publish(message_event("t1", "c", "hi", {}))

        assert len(received) == 1
        assert "subscriber down" in caplog.text

    @pytest.mark.asyncio
    async def test_async_subscriber_is_scheduled(self) -> None:
        bus = EventBus()
        seen = asyncio.Event()

        async def handler(event: TaskEvent) -> None:
            seen.set()

        bus.subscribe(handler)
        bus.publish(message_event("t1", "c", "hi", {}))

        await asyncio.wait_for(seen.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_async_subscriber_task_is_held_until_done(self) -> None:
        bus = EventBus()
        release = asyncio.Event()
        finished: list[str] = []

        async def handler(event: TaskEvent) -> None:
            await release.wait()
            finished.append(event.data["content"])

        bus.subscribe(handler)
        bus.publish(message_event("t1", "c", "hi", {}))
        assert bus.pending == 1

        release.set()
        for _ in range(10):
            await asyncio.sleep(0)
            if not bus.pending:
                break

        assert finished == ["hi"]
        assert bus.pending == 0
