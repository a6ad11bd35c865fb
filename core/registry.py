"""Tool registry: ordered lookup by name and LLM-compatible schemas."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from tools.base import BaseTool
from tools.control import build_control_tools

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Ordered registry for the tools one task can see."""

    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> bool:
        """Register a tool instance. The first tool with a given name wins."""
        if tool.name in self._tools:
            logger.warning("Tool '%s' already registered, skipping duplicate", tool.name)
            return False
        self._tools[tool.name] = tool
        return True

    def unregister(self, name: str) -> bool:
        """Remove a tool by name. Returns True if found and removed."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> BaseTool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[dict[str, Any]]:
        """Return tool schemas in OpenAI function-calling format for LLM."""
        return [tool.to_llm_schema() for tool in self._tools.values()]

    def all_tools(self) -> list[BaseTool]:
        """Return all registered tool instances."""
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_full_toolkit(
    domain_tools: Iterable[BaseTool] = (),
    memory_tools: Iterable[BaseTool] = (),
    extra_tools: Iterable[BaseTool] = (),
) -> ToolRegistry:
    """Merge the toolset: control tools first, then memory/history, then domain.

    Registering control tools first means no caller-supplied tool can
    shadow them.
    """
    registry = ToolRegistry(build_control_tools())
    for group in (memory_tools, domain_tools, extra_tools):
        for tool in group:
            registry.register(tool)
    return registry


def load_builtin_tools(config: Any) -> list[BaseTool]:
    """Instantiate the built-in domain tools (shell and file I/O)."""
    from tools.system.filesystem import FileListTool, FileReadTool, FileWriteTool
    from tools.system.shell import ShellExecuteTool

    return [
        ShellExecuteTool(config.shell),
        FileReadTool(config.project_root),
        FileWriteTool(config.project_root),
        FileListTool(config.project_root),
    ]
