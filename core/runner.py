"""Task runner -- owns task lifecycles and wires the agent loop to the world.

One ``TaskRunner`` serves a whole process. ``start`` creates a Task and a
CancelToken, then launches the agent loop as a background asyncio task
and returns immediately. The rest of the public surface (``stop``,
``respond``, ``get``, ``active_task_for``, ``has_active``) only touches
the shared TaskRegistry and may be called from any thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import Any, Protocol

from core.agent import LoopDeps, StepResult, run_agent_loop
from core.config import AgentConfig, Config
from core.conversation import ConversationStore, InMemoryConversationStore
from core.events import EventBus, message_event, update_event
from core.executor import ToolExecutor, race_cancel
from core.planner import (
    DEFAULT_PERSONA,
    PLAN_FALLBACK,
    build_agentic_system_prompt,
    build_plan_messages,
)
from core.registry import ToolRegistry, build_full_toolkit
from core.retry import TaskCancelledError, with_retry, with_timeout
from core.task import CancelToken, Task, TaskRegistry, TaskStatus
from core.transcript import build_initial_transcript, enrich_with_attachments
from tools.base import BaseTool
from tools.history.conversation import build_history_tools
from tools.memory.immediate import SetImmediateMemoryTool

logger = logging.getLogger(__name__)

_PLAN_MAX_TOKENS = 500
_PLAN_TEMPERATURE = 0.7


class PersonaResolver(Protocol):
    async def resolve(self, task: Task, metadata: dict[str, Any]) -> str: ...


class ContextProvider(Protocol):
    async def situational_context(self, conversation_id: str, query: str) -> str: ...


class DefaultPersonaResolver:
    """Persona from request metadata, then config, then the stock persona."""

    def __init__(self, config: AgentConfig) -> None:
        self._config = config

    async def resolve(self, task: Task, metadata: dict[str, Any]) -> str:
        prompt = metadata.get("system_prompt")
        if isinstance(prompt, str) and prompt.strip():
            return prompt
        if self._config.persona.strip():
            return self._config.persona
        return DEFAULT_PERSONA


class TaskRunner:
    """Creates, tracks, and controls agent tasks."""

    def __init__(
        self,
        router: Any,
        config: Config,
        *,
        tools: Iterable[BaseTool] = (),
        conversation_store: ConversationStore | None = None,
        persona_resolver: PersonaResolver | None = None,
        context_provider: ContextProvider | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._router = router
        self._config = config
        self._tools = list(tools)
        self._store: ConversationStore = conversation_store or InMemoryConversationStore()
        self._persona_resolver = persona_resolver or DefaultPersonaResolver(config.agent)
        self._context_provider = context_provider
        self._events = events or EventBus()
        self._executor = ToolExecutor(config.loop.tool_timeout_seconds)
        self._registry = TaskRegistry()
        self._units: dict[str, asyncio.Task[None]] = {}
        self._cleanup_handles: dict[str, asyncio.TimerHandle] = {}

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def conversation_store(self) -> ConversationStore:
        return self._store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        conversation_id: str,
        message: str,
        metadata: dict[str, Any] | None = None,
        *,
        extra_tools: Iterable[BaseTool] = (),
    ) -> str:
        """Launch a task in the background and return its id."""
        metadata = dict(metadata or {})
        if self.has_active(conversation_id):
            logger.warning(
                "Conversation %s already has an active task; starting another",
                conversation_id,
            )

        task = Task(conversation_id=conversation_id, original_prompt=message)
        token = CancelToken()
        self._registry.add(task, token)
        logger.info("Starting task %s for conversation %s", task.task_id[:8], conversation_id)
        self._emit(task)

        self._units[task.task_id] = asyncio.create_task(
            self._run(task, token, metadata, list(extra_tools)),
            name=f"agent-task-{task.task_id[:8]}",
        )
        return task.task_id

    def stop(self, task_id: str) -> bool:
        """Cancel a task. The status is terminal before this returns."""
        token = self._registry.token(task_id)
        if token is not None:
            token.cancel()

        task = self._registry.get(task_id)
        if task is None:
            logger.warning("stop: unknown task %s", task_id)
            return False

        changed = task.set_status(TaskStatus.CANCELLED)
        if changed:
            logger.info("Task %s cancelled", task_id[:8])
            self._emit(task)

        slot = self._registry.take_slot(task_id)
        if slot is not None:
            slot.resolve("")
        return changed

    def respond(self, task_id: str, answer: str) -> bool:
        """Answer the question a waiting task asked. False if nothing is waiting."""
        slot = self._registry.take_slot(task_id)
        if slot is None:
            logger.warning("No pending response slot for task %s", task_id)
            return False
        return slot.resolve(answer)

    def get(self, task_id: str) -> Task | None:
        return self._registry.get(task_id)

    def active_task_for(self, conversation_id: str) -> Task | None:
        return self._registry.find_active(conversation_id)

    def has_active(self, conversation_id: str) -> bool:
        return self._registry.find_active(conversation_id) is not None

    def list_tasks(self) -> list[Task]:
        return self._registry.tasks()

    async def wait(self, task_id: str, timeout: float | None = None) -> Task | None:
        """Wait for a task's loop to finish and return the task record."""
        unit = self._units.get(task_id)
        if unit is not None and not unit.done():
            await asyncio.wait_for(asyncio.shield(unit), timeout)
        return self._registry.get(task_id)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every tracked task and wait (bounded) for their loops to exit."""
        for task in self._registry.tasks():
            if not task.is_terminal:
                self.stop(task.task_id)

        units = [u for u in self._units.values() if not u.done()]
        if units:
            _, pending = await asyncio.wait(units, timeout=timeout)
            for unit in pending:
                unit.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()
        logger.info("Task runner shut down")

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        task: Task,
        token: CancelToken,
        metadata: dict[str, Any],
        extra_tools: list[BaseTool],
    ) -> None:
        try:
            await self._execute(task, token, metadata, extra_tools)
        except asyncio.CancelledError:
            if task.set_status(TaskStatus.CANCELLED):
                self._emit(task)
            raise
        except Exception as e:
            logger.error("Unhandled error in task %s", task.task_id[:8], exc_info=True)
            if task.fail(str(e) or type(e).__name__):
                self._emit(task)
        finally:
            self._cleanup(task.task_id)

    async def _execute(
        self,
        task: Task,
        token: CancelToken,
        metadata: dict[str, Any],
        extra_tools: list[BaseTool],
    ) -> None:
        persona = await self._resolve_persona(task, metadata, token)
        request = enrich_with_attachments(task.original_prompt, metadata.get("attachments"))
        context = await self._situational_context(task)

        transcript = build_initial_transcript(
            build_agentic_system_prompt(persona), request, context
        )
        tools = build_full_toolkit(
            domain_tools=self._tools,
            memory_tools=self._memory_tools(task.conversation_id),
            extra_tools=extra_tools,
        )

        if self._config.runner.plan_enabled:
            plan = await self._generate_plan(task, persona, request, metadata, token)
            if plan:
                transcript.append_assistant(plan)

        deps = LoopDeps(
            call_ai=self._call_ai,
            execute_tool=self._executor.execute,
            send_message=self._send_message,
            emit_update=self._emit,
        )
        await run_agent_loop(
            task,
            transcript,
            tools,
            metadata,
            token,
            deps,
            self._config.loop,
            self._wait_for_user,
            retry=self._config.runner.model_retry,
        )
        logger.info(
            "Task %s finished: %s after %d steps",
            task.task_id[:8],
            task.status,
            task.step_count,
        )

    async def _resolve_persona(
        self, task: Task, metadata: dict[str, Any], token: CancelToken
    ) -> str:
        try:
            persona = await with_retry(
                lambda: self._persona_resolver.resolve(task, metadata),
                self._config.runner.prep_retry,
                operation_name="Persona resolution",
                cancel_token=token,
            )
        except Exception as e:
            logger.warning("Persona resolution failed, using default: %s", e)
            return DEFAULT_PERSONA
        return persona or DEFAULT_PERSONA

    async def _situational_context(self, task: Task) -> str | None:
        if self._context_provider is None:
            return None
        try:
            return await self._context_provider.situational_context(
                task.conversation_id, task.original_prompt
            )
        except Exception as e:
            logger.warning("Situational context unavailable: %s", e)
            return None

    async def _generate_plan(
        self,
        task: Task,
        persona: str,
        request: str,
        metadata: dict[str, Any],
        token: CancelToken,
    ) -> str | None:
        """Send a short acknowledgment before the first real step. Never fatal."""
        runner_cfg = self._config.runner
        messages = build_plan_messages(persona, request)

        async def _attempt() -> Any:
            return await with_timeout(
                race_cancel(
                    self._router.complete(
                        messages,
                        temperature=_PLAN_TEMPERATURE,
                        max_tokens=_PLAN_MAX_TOKENS,
                        model_override=metadata.get("model"),
                    ),
                    token,
                ),
                runner_cfg.plan_timeout_seconds,
                "Plan generation",
            )

        try:
            response = await with_retry(
                _attempt,
                runner_cfg.prep_retry.with_attempts(runner_cfg.plan_max_attempts),
                operation_name="Plan generation",
                cancel_token=token,
            )
        except TaskCancelledError:
            return None
        except Exception as e:
            logger.warning("Plan generation failed, continuing without it: %s", e)
            return None

        plan = (response.content or "").strip() or PLAN_FALLBACK
        task.note(f"Initial Plan: {plan}")
        await self._send_message(
            task.conversation_id,
            plan,
            {"agent_task_id": task.task_id, "step_number": 0, "is_plan": True},
        )
        return plan

    def _memory_tools(self, conversation_id: str) -> list[BaseTool]:
        return [SetImmediateMemoryTool(), *build_history_tools(self._store, conversation_id)]

    # ------------------------------------------------------------------
    # Loop capabilities
    # ------------------------------------------------------------------

    async def _call_ai(
        self,
        messages: list[dict[str, Any]],
        tools: ToolRegistry,
        metadata: dict[str, Any],
        cancel_token: CancelToken,
    ) -> StepResult:
        response = await with_timeout(
            self._router.complete(
                messages,
                tools=tools.list_tools(),
                model_override=metadata.get("model"),
            ),
            self._config.loop.ai_timeout_seconds,
            "AI call",
        )
        return response.to_step_result()

    async def _send_message(
        self, conversation_id: str, content: str, metadata: dict[str, Any]
    ) -> None:
        try:
            await self._store.append(conversation_id, "assistant", content, metadata)
        except Exception as e:
            logger.error("Failed to persist message for %s: %s", conversation_id, e)
        self._events.publish(
            message_event(
                metadata.get("agent_task_id", ""), conversation_id, content, metadata
            )
        )

    def _emit(self, task: Task) -> None:
        self._events.publish(update_event(task.snapshot()))

    def _wait_for_user(self, task_id: str) -> Awaitable[str]:
        return self._registry.open_slot(task_id).wait()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _cleanup(self, task_id: str) -> None:
        slot = self._registry.release(task_id)
        if slot is not None:
            slot.resolve("")
        loop = asyncio.get_running_loop()
        self._cleanup_handles[task_id] = loop.call_later(
            self._config.runner.task_retention_seconds, self._discard, task_id
        )

    def _discard(self, task_id: str) -> None:
        self._registry.discard(task_id)
        self._units.pop(task_id, None)
        self._cleanup_handles.pop(task_id, None)
        logger.debug("Discarded task record %s", task_id[:8])
