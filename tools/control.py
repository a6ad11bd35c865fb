"""Control tools -- task_complete, ask_user, send_update.

These are schema-only: the agent loop recognises them by name and handles
them itself instead of executing anything.
"""

from __future__ import annotations

from typing import Any

from tools.base import BaseTool

TASK_COMPLETE = "task_complete"
ASK_USER = "ask_user"
SEND_UPDATE = "send_update"

CONTROL_TOOL_NAMES = frozenset({TASK_COMPLETE, ASK_USER, SEND_UPDATE})


class ControlTool(BaseTool):
    """A loop-interpreted action exposed to the model as a tool."""

    def __init__(
        self, name: str, description: str, arg_name: str, arg_description: str
    ) -> None:
        self._name = name
        self._description = description
        self.arg_name = arg_name
        self._arg_description = arg_description

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                self.arg_name: {
                    "type": "string",
                    "description": self._arg_description,
                },
            },
            "required": [self.arg_name],
        }

    @property
    def has_implementation(self) -> bool:
        return False

    async def execute(self, params: dict[str, Any]) -> Any:
        raise RuntimeError(f"Control tool '{self._name}' is handled by the agent loop")


def build_control_tools() -> list[ControlTool]:
    return [
        ControlTool(
            TASK_COMPLETE,
            "Call this when the task is finished. Include a summary of what "
            "was accomplished. This ends the task.",
            "summary",
            "Summary of what was accomplished",
        ),
        ControlTool(
            ASK_USER,
            "Call this when you need input from the user. The task pauses "
            "until they answer.",
            "question",
            "A clear question for the user",
        ),
        ControlTool(
            SEND_UPDATE,
            "Send a short progress message to the user without stopping work.",
            "message",
            "The progress message",
        ),
    ]
