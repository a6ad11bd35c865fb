"""Tool base class and interface definition.

Every tool the agent loop can see -- control, memory, history or domain --
inherits from BaseTool. Control tools are schema-only: the loop interprets
them by name and never calls ``execute``.
"""

from __future__ import annotations

import abc
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolResult:
    """Standardized result from tool execution."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        result.update(self.data)
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class MemoryDirective:
    """Tool result variant asking the loop to set immediate memory.

    The payload is shown to the model on the next step only and is never
    written to the transcript.
    """

    content: str


class BaseTool(abc.ABC):
    """Abstract base class for all tools."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique snake_case identifier."""
        ...

    @property
    @abc.abstractmethod
    def description(self) -> str:
        """Natural language description for LLM tool selection."""
        ...

    @property
    @abc.abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema for input parameters."""
        ...

    @property
    def has_implementation(self) -> bool:
        return True

    @abc.abstractmethod
    async def execute(self, params: dict[str, Any]) -> Any:
        """Execute the tool with validated parameters."""
        ...

    def validate_input(self, params: dict[str, Any]) -> list[str]:
        """Validate input against schema. Returns list of errors (empty = valid)."""
        errors: list[str] = []
        schema = self.input_schema
        required = schema.get("required", [])
        properties = schema.get("properties", {})

        for req_field in required:
            if req_field not in params:
                errors.append(f"Missing required field: {req_field}")

        for param_name, value in params.items():
            if param_name in properties:
                expected_type = properties[param_name].get("type")
                if expected_type and not _check_type(value, expected_type):
                    errors.append(
                        f"Field '{param_name}' expected type '{expected_type}', "
                        f"got '{type(value).__name__}'"
                    )

        return errors

    def to_llm_schema(self) -> dict[str, Any]:
        """Return OpenAI function-calling compatible schema for LLM."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class FunctionTool(BaseTool):
    """Tool built from a plain callable (sync or async) and a schema.

    Built without a handler it is schema-only, which the dispatcher reports
    back to the model as a structured error.
    """

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any] | None = None,
        handler: Callable[..., Any] | None = None,
    ) -> None:
        self._name = name
        self._description = description
        self._input_schema = input_schema or {"type": "object", "properties": {}}
        self._handler = handler

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._input_schema

    @property
    def has_implementation(self) -> bool:
        return self._handler is not None

    async def execute(self, params: dict[str, Any]) -> Any:
        if self._handler is None:
            raise NotImplementedError(f"Tool '{self._name}' has no implementation")
        result = self._handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result


def _check_type(value: Any, expected: str) -> bool:
    """Check if a value matches the expected JSON Schema type."""
    type_map: dict[str, type | tuple[type, ...]] = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }
    expected_types = type_map.get(expected)
    if expected_types is None:
        return True
    return isinstance(value, expected_types)
