"""Transcript construction and prompt assembly tests."""

from __future__ import annotations

import json

from core.planner import (
    DEFAULT_PERSONA,
    build_agentic_system_prompt,
    build_plan_messages,
)
from core.transcript import (
    IMMEDIATE_MEMORY_PREFIX,
    Transcript,
    build_initial_transcript,
    enrich_with_attachments,
)


class TestInitialTranscript:
    def test_system_then_user(self) -> None:
        transcript = build_initial_transcript("SYS", "hello")
        assert transcript.entries == [
            {"role": "system", "content": "SYS"},
            {"role": "user", "content": "hello"},
        ]

    def test_context_goes_between_system_and_user(self) -> None:
        transcript = build_initial_transcript("SYS", "hello", "User likes brevity.")
        entries = transcript.entries
        assert len(entries) == 3
        assert entries[1]["role"] == "system"
        assert entries[1]["content"].endswith("User likes brevity.")
        assert entries[2] == {"role": "user", "content": "hello"}

    def test_blank_context_is_skipped(self) -> None:
        assert len(build_initial_transcript("SYS", "hello", "   ")) == 2


class TestTranscript:
    def test_tool_round_trip_shape(self) -> None:
        transcript = Transcript()
        call = {
            "id": "call_1",
            "type": "function",
            "function": {"name": "shell_execute", "arguments": "{}"},
        }
        transcript.append_assistant(None, [call])
        transcript.append_tool_result("call_1", "shell_execute", {"exit_code": 0})
        transcript.append_tool_result("call_2", "notes", "plain text")

        assistant, tool, text_tool = transcript.entries
        assert assistant == {"role": "assistant", "content": "", "tool_calls": [call]}
        assert tool["tool_call_id"] == "call_1"
        assert tool["name"] == "shell_execute"
        assert json.loads(tool["content"]) == {"exit_code": 0}
        assert text_tool["content"] == "plain text"

    def test_assistant_without_tools_has_no_tool_calls_key(self) -> None:
        transcript = Transcript()
        transcript.append_assistant("thinking out loud")
        assert transcript.entries == [{"role": "assistant", "content": "thinking out loud"}]

    def test_immediate_memory_is_not_stored(self) -> None:
        transcript = build_initial_transcript("SYS", "hello")
        messages = transcript.for_model("remember the port is 8080")

        assert messages[-1] == {
            "role": "system",
            "content": IMMEDIATE_MEMORY_PREFIX + "remember the port is 8080",
        }
        assert len(transcript) == 2
        assert transcript.for_model() == transcript.entries

    def test_entries_are_copies(self) -> None:
        transcript = Transcript()
        transcript.append_user("hi")
        transcript.entries.append({"role": "user", "content": "injected"})
        transcript.for_model()[0]["content"] = "mutated"
        assert transcript.entries == [{"role": "user", "content": "hi"}]


class TestAttachments:
    def test_text_and_image(self) -> None:
        message = enrich_with_attachments(
            "look at these",
            [
                {"name": "a.txt", "content": "alpha"},
                {"name": "pic.png", "type": "image"},
                "not a dict",
            ],
        )
        assert message.startswith("look at these\n\n")
        assert "--- Attached file: a.txt ---\nalpha\n--- End of a.txt ---" in message
        assert "[Image attached: pic.png]" in message

    def test_nothing_usable_leaves_message(self) -> None:
        assert enrich_with_attachments("hi", None) == "hi"
        assert enrich_with_attachments("hi", "oops") == "hi"
        assert enrich_with_attachments("hi", [{"name": "empty"}]) == "hi"


class TestPrompts:
    def test_agentic_prompt_names_control_tools(self) -> None:
        prompt = build_agentic_system_prompt("You are terse.")
        assert prompt.startswith("You are terse.")
        for name in ("task_complete", "ask_user", "send_update", "set_immediate_memory"):
            assert name in prompt

    def test_blank_persona_uses_default(self) -> None:
        assert build_agentic_system_prompt("  ").startswith(DEFAULT_PERSONA)
        assert build_plan_messages("", "x")[0]["content"] == DEFAULT_PERSONA

    def test_plan_messages_quote_request(self) -> None:
        messages = build_plan_messages("You are terse.", "fix the build")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert 'User Request: "fix the build"' in messages[1]["content"]
