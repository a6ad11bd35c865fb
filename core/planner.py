"""System prompt assembly and the up-front plan acknowledgment prompt.

The persona prompt comes from the PersonaResolver; this module appends the
fixed agentic operating instructions and builds the short no-tools prompt
used to acknowledge a request before the loop starts.
"""

from __future__ import annotations

from typing import Any

from tools.control import ASK_USER, SEND_UPDATE, TASK_COMPLETE

DEFAULT_PERSONA = "You are a helpful AI assistant."

# ---------------------------------------------------------------------------
# Section: Agentic operating instructions
# ---------------------------------------------------------------------------

_AGENTIC_INSTRUCTIONS = f"""

## Agentic Mode

You are operating in agentic mode. You have the autonomy to work through \
multi-step tasks independently.

### Behavior Rules
- **Communicate Frequently**: Keep the user informed about your actions. Do \
not stay silent for multiple steps.
- **Plan First**: Before a complex tool call or operation, briefly explain \
what you are about to do.
- **Report Progress**: After each meaningful step, report the result using \
text or `{SEND_UPDATE}`.
- **Use Tools**: Execute tools as needed without asking for permission unless \
the action is destructive or irreversible.
- **Ask When Stuck**: If you need information from the user, use the \
`{ASK_USER}` tool. Do not guess.
- **Completion**: When the task is fully complete, you MUST call the \
`{TASK_COMPLETE}` tool with a summary. Plain text replies do not end the task.
- **Error Handling**: If a tool fails, read the error, explain it and try \
another approach. Only give up if the error is truly unrecoverable.

### Available Control Tools
- **{TASK_COMPLETE}**: The task is finished. Include a summary of what was \
accomplished.
- **{ASK_USER}**: You need input from the user. Include a clear question. The \
task pauses until they respond.
- **{SEND_UPDATE}**: Send a progress message without stopping your work.

### Memory
- You do NOT see earlier turns of this conversation. If you need them, \
retrieve them explicitly with the `conversation_history_*` tools.
- **Immediate Memory**: Use `set_immediate_memory` to carry a thought or \
critical detail into the *very next step only*, without adding it to the \
permanent history.
"""

# ---------------------------------------------------------------------------
# Section: Plan acknowledgment
# ---------------------------------------------------------------------------

_PLANNING_PROMPT = """\
You are an AI assistant about to start a task.
User Request: "{request}"

Briefly acknowledge the request and outline your plan in 1-2 sentences.
Do NOT execute tools yet. Just state what you are going to do.
"""

PLAN_FALLBACK = "I will start working on your request immediately."


def build_agentic_system_prompt(persona: str) -> str:
    """Combine the persona prompt with the agentic operating instructions."""
    return (persona.strip() or DEFAULT_PERSONA) + _AGENTIC_INSTRUCTIONS


def build_plan_messages(persona: str, request: str) -> list[dict[str, Any]]:
    """Messages for the low-token plan acknowledgment call (no tools)."""
    return [
        {"role": "system", "content": persona.strip() or DEFAULT_PERSONA},
        {"role": "user", "content": _PLANNING_PROMPT.format(request=request)},
    ]
