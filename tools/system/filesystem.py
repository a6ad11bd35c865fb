"""File system tools -- read, write and list files under a workspace root.

Relative paths resolve against the workspace root handed in by the
caller (``Config.project_root`` for the console front-end).
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tools.base import BaseTool, ToolResult

_MAX_LIST_ENTRIES = 500


class _WorkspaceTool(BaseTool):
    def __init__(self, root: Path | str | None = None) -> None:
        self._root = Path(root).expanduser() if root else Path.cwd()

    def _resolve(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        return path if path.is_absolute() else self._root / path


class FileReadTool(_WorkspaceTool):
    """Reads file contents."""

    @property
    def name(self) -> str:
        return "file_read"

    @property
    def description(self) -> str:
        return (
            "Reads the contents of a text file. Supports reading specific "
            "line ranges. Use this for inspecting files, configuration or code."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Absolute path, or path relative to the workspace",
                },
                "start_line": {
                    "type": "integer",
                    "description": "First line to read (1-based, optional)",
                },
                "end_line": {
                    "type": "integer",
                    "description": "Last line to read (1-based, inclusive, optional)",
                },
            },
            "required": ["path"],
        }

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        file_path = self._resolve(params["path"])
        start_line = params.get("start_line")
        end_line = params.get("end_line")

        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {file_path}")
        if not file_path.is_file():
            return ToolResult(success=False, error=f"Not a file: {file_path}")

        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return ToolResult(success=False, error=f"Failed to read file: {e}")

        lines = content.splitlines()
        if start_line is not None or end_line is not None:
            content = "\n".join(lines[(start_line or 1) - 1 : end_line or len(lines)])

        return ToolResult(
            success=True,
            data={"content": content, "line_count": len(lines)},
        )


class FileWriteTool(_WorkspaceTool):
    """Creates or overwrites files."""

    @property
    def name(self) -> str:
        return "file_write"

    @property
    def description(self) -> str:
        return (
            "Creates or overwrites a file with the given content, creating "
            "parent directories as needed. Set append=true to add to the end."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Absolute path, or path relative to the workspace",
                },
                "content": {
                    "type": "string",
                    "description": "Content to write to the file",
                },
                "append": {
                    "type": "boolean",
                    "description": "Append instead of overwrite (default: false)",
                },
            },
            "required": ["path", "content"],
        }

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        file_path = self._resolve(params["path"])
        content = params["content"]
        mode = "a" if params.get("append") else "w"

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, mode, encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to write file: {e}")

        return ToolResult(
            success=True,
            data={"path": str(file_path), "size_bytes": file_path.stat().st_size},
        )


class FileListTool(_WorkspaceTool):
    """Lists files and directories."""

    @property
    def name(self) -> str:
        return "file_list"

    @property
    def description(self) -> str:
        return (
            "Lists files and directories at a path. Supports recursive listing "
            "and glob filtering (e.g. '*.py')."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list (default: the workspace)",
                },
                "recursive": {
                    "type": "boolean",
                    "description": "List recursively (default: false)",
                },
                "pattern": {
                    "type": "string",
                    "description": "Glob pattern to filter results",
                },
            },
        }

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        dir_path = self._resolve(params.get("path") or ".")
        recursive = params.get("recursive", False)
        pattern = params.get("pattern") or "*"

        if not dir_path.exists():
            return ToolResult(success=False, error=f"Path not found: {dir_path}")
        if not dir_path.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {dir_path}")

        items = dir_path.rglob(pattern) if recursive else dir_path.glob(pattern)
        entries: list[dict[str, Any]] = []
        for item in sorted(items):
            if any(part.startswith(".") for part in item.relative_to(dir_path).parts):
                continue
            try:
                stat = item.stat()
            except OSError:
                continue
            entries.append(
                {
                    "path": str(item.relative_to(dir_path)),
                    "type": "directory" if item.is_dir() else "file",
                    "size_bytes": stat.st_size if item.is_file() else 0,
                    "modified_at": datetime.fromtimestamp(stat.st_mtime, tz=UTC).isoformat(),
                }
            )
            if len(entries) >= _MAX_LIST_ENTRIES:
                break

        return ToolResult(
            success=True,
            data={
                "entries": entries,
                "count": len(entries),
                "truncated": len(entries) >= _MAX_LIST_ENTRIES,
            },
        )
