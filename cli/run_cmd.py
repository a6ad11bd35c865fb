"""taskrunner run -- execute one agent task in the terminal.

Messages from the task are rendered as they arrive; when the agent asks a
question the user is prompted for an answer. Ctrl+C stops the task.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

from core.config import Config, ConfigError, load_config
from core.events import EventType, TaskEvent
from core.log_setup import setup_logging
from core.registry import load_builtin_tools
from core.router import LLMRouter
from core.runner import TaskRunner
from core.task import TaskStatus

console = Console()
logger = logging.getLogger(__name__)

_C_PRIMARY = "bright_cyan"
_C_SUCCESS = "bright_green"
_C_WARN = "bright_yellow"
_C_DIM = "dim"
_C_USER = "bold bright_blue"


class _Renderer:
    """Turns task events into terminal output."""

    def __init__(self, con: Console) -> None:
        self._console = con
        self.questions: asyncio.Queue[str] = asyncio.Queue()
        self._last_status = ""

    def handle(self, event: TaskEvent) -> None:
        if event.type == EventType.TASK_MESSAGE:
            self._message(event.data["content"], event.data.get("metadata") or {})
        elif event.type == EventType.TASK_UPDATE:
            self._update(event.data)

    def _message(self, content: str, meta: dict[str, Any]) -> None:
        if meta.get("is_plan"):
            self._console.print(f"  [{_C_DIM}]{content}[/]")
        elif meta.get("is_question"):
            self._console.print(
                Panel(content, title="Question", border_style=_C_WARN, expand=False)
            )
            self.questions.put_nowait(content)
        elif meta.get("is_update"):
            self._console.print(f"  [{_C_PRIMARY}]↻[/] {content}")
        elif meta.get("is_error"):
            self._console.print(f"  [bold red]{content}[/]")
        elif meta.get("is_completion"):
            self._console.print(
                Panel(Markdown(content), title="Done", border_style=_C_SUCCESS)
            )
        else:
            self._console.print(Markdown(content))

    def _update(self, snapshot: dict[str, Any]) -> None:
        status = snapshot.get("status", "")
        if status == TaskStatus.TOOL_EXECUTING and snapshot.get("current_tool"):
            self._console.print(
                f"  [{_C_DIM}]step {snapshot['step_count']}[/] "
                f"[{_C_PRIMARY}]{snapshot['current_tool']}[/]"
            )
        elif status != self._last_status and status in (
            TaskStatus.CANCELLED,
            TaskStatus.ERROR,
        ):
            detail = snapshot.get("error_message") or ""
            self._console.print(f"  [{_C_WARN}]Task {status}[/] {detail}")
        self._last_status = status


@click.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=None,
    help="Path to config.yaml",
)
@click.option(
    "--conversation",
    "conversation_id",
    default="cli",
    show_default=True,
    help="Conversation id the task belongs to",
)
@click.option("--max-steps", type=click.IntRange(min=1), default=None, help="Override loop.max_steps")
@click.option("--no-plan", is_flag=True, default=False, help="Skip the plan acknowledgment")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging")
def run_cmd(
    prompt: tuple[str, ...],
    config_path: str | None,
    conversation_id: str,
    max_steps: int | None,
    no_plan: bool,
    debug: bool,
) -> None:
    """Run PROMPT as an autonomous agent task."""
    setup_logging(debug=debug)
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if max_steps is not None:
        cfg.loop.max_steps = max_steps
    if no_plan:
        cfg.runner.plan_enabled = False

    try:
        status = asyncio.run(_run_task(cfg, " ".join(prompt), conversation_id))
    except KeyboardInterrupt:
        console.print(f"\n  [{_C_WARN}]Interrupted, task stopped.[/]")
        raise SystemExit(130) from None

    if status == TaskStatus.ERROR:
        raise SystemExit(1)


async def _run_task(cfg: Config, prompt: str, conversation_id: str) -> TaskStatus | None:
    router = LLMRouter(cfg)
    runner = TaskRunner(router, cfg, tools=load_builtin_tools(cfg))
    renderer = _Renderer(console)
    unsubscribe = runner.events.subscribe(renderer.handle)

    console.print(f"  [{_C_USER}]You:[/] {prompt}")
    await runner.conversation_store.append(conversation_id, "user", prompt)
    task_id = await runner.start(conversation_id, prompt)

    finished = asyncio.create_task(runner.wait(task_id))
    try:
        while not finished.done():
            question = asyncio.create_task(renderer.questions.get())
            done, _ = await asyncio.wait(
                {finished, question}, return_when=asyncio.FIRST_COMPLETED
            )
            if question not in done:
                question.cancel()
                break
            answer = await asyncio.to_thread(
                Prompt.ask, f"  [{_C_USER}]Your answer[/]", console=console
            )
            await runner.conversation_store.append(conversation_id, "user", answer)
            runner.respond(task_id, answer)
    finally:
        runner.stop(task_id)
        await runner.shutdown()
        unsubscribe()

    task = runner.get(task_id)
    cost = router.cost_tracker
    console.print(
        f"  [{_C_DIM}]{task.step_count if task else 0} steps, "
        f"{cost.total_tokens} tokens, ${cost.total:.4f}[/]"
    )
    return task.status if task else None
