"""set_immediate_memory -- carry a note into the very next step only."""

from __future__ import annotations

from typing import Any

from tools.base import BaseTool, MemoryDirective


class SetImmediateMemoryTool(BaseTool):
    """Queue a one-shot note for the next model call.

    The note is never added to the transcript, so it costs context for
    exactly one step.
    """

    name = "set_immediate_memory"
    description = (
        "Set a thought or critical detail to remember for the very next step "
        "only. It is shown to you once and then discarded."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "content": {
                "type": "string",
                "description": "What to remember for the next step",
            },
        },
        "required": ["content"],
    }

    async def execute(self, params: dict[str, Any]) -> MemoryDirective:
        return MemoryDirective(content=params["content"])
