"""The agent loop -- drives the model through a multi-step, tool-using task.

Each iteration:
1. Check cancellation and the wall-clock budget
2. THINK: call the model (retry-wrapped) with the transcript and toolset
3. ACT: interpret control tools (task_complete / ask_user / send_update)
   and execute everything else through the injected tool capability
4. REPORT: send the step's text and tool-call records to the conversation
5. Repeat until task_complete, cancellation, an unrecoverable model
   failure, the time limit, or max_steps

The loop owns no storage or transport. Everything with a side effect
outside the Task and Transcript comes in through LoopDeps.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from core.config import LoopConfig
from core.executor import race_cancel
from core.registry import ToolRegistry
from core.retry import AGENT_RETRY, RetryConfig, TaskCancelledError, with_retry
from core.task import CancelToken, Task, TaskStatus
from core.transcript import Transcript
from tools.base import MemoryDirective, ToolResult
from tools.control import ASK_USER, SEND_UPDATE, TASK_COMPLETE

logger = logging.getLogger(__name__)

TIME_LIMIT_MESSAGE = (
    "I have reached the maximum time limit for this task. Here is where I stopped."
)
STEP_LIMIT_MESSAGE = (
    "I have reached the maximum number of steps for this task. "
    "Here is where I stopped."
)
EMPTY_RESPONSE_NUDGE = (
    "(No response produced. Continue working on the task or call "
    f"{TASK_COMPLETE} if done.)"
)
TOOL_FAILURE_HINT = (
    "The tool execution failed. Please check the error message and try a "
    "different approach or parameters."
)
MEMORY_CONFIRMATION = "Immediate memory set for next step."

_RECORD_PREVIEW_CHARS = 300
_SCRATCHPAD_PREVIEW_CHARS = 500


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.args, default=str),
            },
        }


@dataclass
class StepResult:
    """Normalized output of one model call."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw: Any = None


class CallAI(Protocol):
    def __call__(
        self,
        messages: list[dict[str, Any]],
        tools: ToolRegistry,
        metadata: dict[str, Any],
        cancel_token: CancelToken,
    ) -> Awaitable[StepResult]: ...


class ExecuteTool(Protocol):
    def __call__(
        self,
        name: str,
        args: dict[str, Any],
        tools: ToolRegistry,
        cancel_token: CancelToken,
    ) -> Awaitable[Any]: ...


class SendMessage(Protocol):
    def __call__(
        self, conversation_id: str, content: str, metadata: dict[str, Any]
    ) -> Awaitable[None]: ...


class EmitUpdate(Protocol):
    def __call__(self, task: Task) -> None: ...


# Opens the task's response slot synchronously and returns its awaitable
WaitForUser = Callable[[str], Awaitable[str]]


@dataclass
class LoopDeps:
    """Capabilities injected into the loop."""

    call_ai: CallAI
    execute_tool: ExecuteTool
    send_message: SendMessage
    emit_update: EmitUpdate


def render_tool_record(record: dict[str, Any]) -> str:
    """One-line human-readable record of a tool call."""
    args = json.dumps(record.get("args", {}), default=str)
    status = "ok" if record.get("success") else "failed"
    return f"`{record['name']}`({args}) → {status}: {record.get('result', '')}"


def _preview(value: Any, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) > limit:
        return text[:limit] + "…"
    return text


class _Outgoing:
    """Assistant text and tool-call records accumulated during one step."""

    def __init__(self, text: str = "") -> None:
        self.text = text
        self.records: list[dict[str, Any]] = []

    def __bool__(self) -> bool:
        return bool(self.text or self.records)

    def render(self) -> str:
        parts = [self.text] if self.text else []
        parts.extend(render_tool_record(r) for r in self.records)
        return "\n\n".join(parts)

    def clear(self) -> None:
        self.text = ""
        self.records = []


class AgentLoop:
    """One run of the step executor over a single task."""

    def __init__(
        self,
        task: Task,
        transcript: Transcript,
        tools: ToolRegistry,
        metadata: dict[str, Any],
        cancel_token: CancelToken,
        deps: LoopDeps,
        config: LoopConfig,
        wait_for_user: WaitForUser,
        retry: RetryConfig = AGENT_RETRY,
    ) -> None:
        self._task = task
        self._transcript = transcript
        self._tools = tools
        self._metadata = metadata
        self._token = cancel_token
        self._deps = deps
        self._config = config
        self._wait_for_user = wait_for_user
        self._retry = retry

    async def run(self) -> None:
        task = self._task
        config = self._config
        start_time = time.monotonic()

        while task.step_count < config.max_steps:
            if self._token.cancelled:
                self._finish(TaskStatus.CANCELLED)
                return

            if (
                config.max_duration_seconds > 0
                and time.monotonic() - start_time > config.max_duration_seconds
            ):
                logger.info("Task %s hit the time limit", task.task_id[:8])
                await self._send(TIME_LIMIT_MESSAGE, is_completion=True)
                self._finish(TaskStatus.COMPLETED)
                return

            # === THINK ===
            if not task.set_status(TaskStatus.THINKING):
                return
            task.step_count += 1
            self._emit()
            logger.info("Task %s step %d", task.task_id[:8], task.step_count)

            memory = task.immediate_memory
            task.immediate_memory = None
            messages = self._transcript.for_model(memory)

            try:
                result = await with_retry(
                    lambda: race_cancel(
                        self._deps.call_ai(
                            messages, self._tools, self._metadata, self._token
                        ),
                        self._token,
                    ),
                    self._retry,
                    operation_name="call_ai",
                    on_retry=self._on_retry,
                    cancel_token=self._token,
                )
            except Exception as e:
                if self._token.cancelled or isinstance(e, TaskCancelledError):
                    self._finish(TaskStatus.CANCELLED)
                    return
                logger.error("Model call failed for task %s: %s", task.task_id[:8], e)
                if task.fail(str(e) or type(e).__name__):
                    self._emit()
                await self._send(
                    f"I encountered an error: {task.error_message}", is_error=True
                )
                return

            if self._token.cancelled:
                self._finish(TaskStatus.CANCELLED)
                return

            # === ACT ===
            if result.tool_calls:
                if await self._process_tool_calls(result):
                    return
                await self._delay()
                continue

            text = result.text or ""
            if text.strip():
                await self._send(text)
                self._transcript.append_assistant(text)
            else:
                logger.warning(
                    "Task %s: model returned neither text nor tool calls",
                    task.task_id[:8],
                )
                self._transcript.append_system(EMPTY_RESPONSE_NUDGE)

            await self._delay()

        if self._token.cancelled:
            self._finish(TaskStatus.CANCELLED)
            return
        if task.is_terminal:
            return
        logger.info("Task %s reached max_steps=%d", task.task_id[:8], config.max_steps)
        await self._send(STEP_LIMIT_MESSAGE, is_completion=True)
        self._finish(TaskStatus.COMPLETED)

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _process_tool_calls(self, result: StepResult) -> bool:
        """Handle every tool call of one step. Returns True to end the loop."""
        self._transcript.append_assistant(
            result.text, [call.to_openai() for call in result.tool_calls]
        )
        outgoing = _Outgoing((result.text or "").strip())
        # Question/answer turns go after every tool result of this step
        exchanges: list[tuple[str, str]] = []

        for call in result.tool_calls:
            if self._token.cancelled:
                await self._flush(outgoing)
                self._finish(TaskStatus.CANCELLED)
                return True

            if call.name == TASK_COMPLETE:
                summary = call.args.get("summary") or "Task completed."
                self._transcript.append_tool_result(call.id, call.name, {"done": True})
                await self._send(summary, is_completion=True)
                self._finish(TaskStatus.COMPLETED)
                return True

            if call.name == ASK_USER:
                await self._flush(outgoing)
                exchange = await self._ask_user(call)
                if exchange is None:
                    return True
                exchanges.append(exchange)
                continue

            if call.name == SEND_UPDATE:
                await self._flush(outgoing)
                message = call.args.get("message") or "Working..."
                await self._send(message, is_update=True)
                self._transcript.append_tool_result(call.id, call.name, {"sent": True})
                continue

            try:
                record = await self._execute_tool(call)
            except TaskCancelledError:
                await self._flush(outgoing)
                self._finish(TaskStatus.CANCELLED)
                return True
            outgoing.records.append(record)

        for question, answer in exchanges:
            self._transcript.append_assistant(question)
            self._transcript.append_user(answer)
        await self._flush(outgoing)
        return False

    async def _ask_user(self, call: ToolCall) -> tuple[str, str] | None:
        """Suspend on the response slot.

        Returns the (question, answer) pair, or None if the task ended
        while waiting.
        """
        task = self._task
        question = call.args.get("question") or "Could you provide more information?"

        # The slot must exist before anyone can see the question
        answer_waiter = self._wait_for_user(task.task_id)
        await self._send(question, is_question=True)
        self._transcript.append_tool_result(call.id, call.name, {"asked": True})

        if not task.set_status(TaskStatus.WAITING_USER):
            _discard(answer_waiter)
            return None
        task.pending_question = question
        self._emit()

        answer = await answer_waiter

        if self._token.cancelled or task.is_terminal:
            self._finish(TaskStatus.CANCELLED)
            return None

        task.set_status(TaskStatus.RUNNING)
        task.note(f"User answered: {answer}")
        self._emit()
        return question, answer

    async def _execute_tool(self, call: ToolCall) -> dict[str, Any]:
        """Run a generic tool. Failures become structured results, never errors."""
        task = self._task
        task.set_status(TaskStatus.TOOL_EXECUTING)
        task.current_tool = call.name
        self._emit()

        success = True
        try:
            result = await self._deps.execute_tool(
                call.name, call.args, self._tools, self._token
            )
        except TaskCancelledError:
            if self._token.cancelled:
                raise
            result, success = self._failure(call, "cancelled"), False
        except Exception as e:
            logger.warning("Tool '%s' failed: %s", call.name, e)
            result, success = self._failure(call, str(e) or type(e).__name__), False
        else:
            if isinstance(result, MemoryDirective):
                task.immediate_memory = result.content
                result = MEMORY_CONFIRMATION
                task.note(f"Tool {call.name}: {MEMORY_CONFIRMATION}")
            else:
                if isinstance(result, ToolResult):
                    success = result.success
                    result = result.to_dict()
                elif isinstance(result, dict) and "error" in result:
                    success = False
                task.note(
                    f"Tool {call.name}: {_preview(result, _SCRATCHPAD_PREVIEW_CHARS)}"
                )

        self._transcript.append_tool_result(call.id, call.name, result)
        task.set_status(TaskStatus.RUNNING)
        self._emit()

        return {
            "name": call.name,
            "args": call.args,
            "result": _preview(result, _RECORD_PREVIEW_CHARS),
            "success": success,
        }

    def _failure(self, call: ToolCall, message: str) -> dict[str, str]:
        self._task.note(f"Tool {call.name} FAILED: {message}")
        return {"error": message, "hint": TOOL_FAILURE_HINT}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _on_retry(self, attempt: int, error: BaseException) -> None:
        logger.warning(
            "call_ai failed (attempt %d/%d), retrying: %s",
            attempt,
            self._retry.max_attempts,
            error,
        )
        self._emit()

    async def _flush(self, outgoing: _Outgoing) -> None:
        if not outgoing:
            return
        await self._send(
            outgoing.render(), tool_calls=[dict(r) for r in outgoing.records]
        )
        outgoing.clear()

    async def _send(self, content: str, **extra: Any) -> None:
        metadata = {
            "agent_task_id": self._task.task_id,
            "step_number": self._task.step_count,
            **extra,
        }
        try:
            await self._deps.send_message(self._task.conversation_id, content, metadata)
        except Exception as e:
            logger.error("Failed to send message for task %s: %s", self._task.task_id[:8], e)

    def _emit(self) -> None:
        try:
            self._deps.emit_update(self._task)
        except Exception:
            logger.debug("emit_update failed", exc_info=True)

    def _finish(self, status: TaskStatus) -> None:
        if self._task.set_status(status):
            self._emit()

    async def _delay(self) -> None:
        if self._config.step_delay_seconds > 0:
            await asyncio.sleep(self._config.step_delay_seconds)


def _discard(awaitable: Awaitable[Any]) -> None:
    if asyncio.iscoroutine(awaitable):
        awaitable.close()


async def run_agent_loop(
    task: Task,
    transcript: Transcript,
    tools: ToolRegistry,
    metadata: dict[str, Any],
    cancel_token: CancelToken,
    deps: LoopDeps,
    config: LoopConfig,
    wait_for_user: WaitForUser,
    retry: RetryConfig = AGENT_RETRY,
) -> None:
    """Run the agent loop to completion. The task is mutated in place."""
    await AgentLoop(
        task,
        transcript,
        tools,
        metadata,
        cancel_token,
        deps,
        config,
        wait_for_user,
        retry,
    ).run()
