"""Role-tagged message history replayed to the model on every step.

Entries use the OpenAI chat format (``role``/``content`` plus
``tool_calls`` on assistant turns and ``tool_call_id``/``name`` on tool
results) so the router can pass them through with little conversion.
"""

from __future__ import annotations

import json
from typing import Any

IMMEDIATE_MEMORY_PREFIX = "IMMEDIATE MEMORY (for this step only): "


class Transcript:
    """Append-only transcript for one task run."""

    def __init__(self, entries: list[dict[str, Any]] | None = None) -> None:
        self._entries: list[dict[str, Any]] = list(entries or [])

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def append_system(self, content: str) -> None:
        self._entries.append({"role": "system", "content": content})

    def append_user(self, content: str) -> None:
        self._entries.append({"role": "user", "content": content})

    def append_assistant(
        self, content: str | None, tool_calls: list[dict[str, Any]] | None = None
    ) -> None:
        entry: dict[str, Any] = {"role": "assistant", "content": content or ""}
        if tool_calls:
            entry["tool_calls"] = tool_calls
        self._entries.append(entry)

    def append_tool_result(self, tool_call_id: str, tool_name: str, result: Any) -> None:
        content = (
            result
            if isinstance(result, str)
            else json.dumps(result, indent=2, default=str)
        )
        self._entries.append(
            {
                "role": "tool",
                "tool_call_id": tool_call_id,
                "name": tool_name,
                "content": content,
            }
        )

    def for_model(self, immediate_memory: str | None = None) -> list[dict[str, Any]]:
        """Messages for one model call.

        The immediate-memory entry is added to the returned copy only; the
        stored transcript never contains it.
        """
        messages = [dict(e) for e in self._entries]
        if immediate_memory:
            messages.append(
                {"role": "system", "content": IMMEDIATE_MEMORY_PREFIX + immediate_memory}
            )
        return messages


def build_initial_transcript(
    system_prompt: str,
    user_message: str,
    situational_context: str | None = None,
) -> Transcript:
    """Seed a transcript with the system prompt, optional context and the request."""
    transcript = Transcript()
    transcript.append_system(system_prompt)
    if situational_context and situational_context.strip():
        transcript.append_system(
            f"Relevant context from previous interactions:\n{situational_context}"
        )
    transcript.append_user(user_message)
    return transcript


def enrich_with_attachments(message: str, attachments: Any) -> str:
    """Inline text attachments into the user request and note images."""
    if not attachments or not isinstance(attachments, list):
        return message

    parts: list[str] = []
    for att in attachments:
        if not isinstance(att, dict):
            continue
        name = att.get("name", "attachment")
        if att.get("content"):
            parts.append(
                f"--- Attached file: {name} ---\n{att['content']}\n--- End of {name} ---"
            )
        elif att.get("type") == "image":
            parts.append(f"[Image attached: {name}]")

    if not parts:
        return message
    return message + "\n\n" + "\n\n".join(parts)
