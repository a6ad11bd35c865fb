"""Tests for the shell_execute tool."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import Config
from tools.system.shell import ShellExecuteTool


class TestShellExecute:
    @pytest.fixture
    def shell_tool(self, test_config: Config) -> ShellExecuteTool:
        return ShellExecuteTool(test_config.shell)

    @pytest.mark.asyncio
    async def test_simple_command(self, shell_tool: ShellExecuteTool) -> None:
        result = await shell_tool.execute({"command": "echo hello"})
        assert result.success
        assert "hello" in result.data["stdout"]
        assert result.data["exit_code"] == 0
        assert result.data["timed_out"] is False

    @pytest.mark.asyncio
    async def test_command_with_stderr(self, shell_tool: ShellExecuteTool) -> None:
        result = await shell_tool.execute({"command": "echo error >&2"})
        assert result.success
        assert "error" in result.data["stderr"]

    @pytest.mark.asyncio
    async def test_nonexistent_command(self, shell_tool: ShellExecuteTool) -> None:
        result = await shell_tool.execute({"command": "nonexistent_cmd_xyz_123"})
        assert result.success  # Process ran, just with non-zero exit
        assert result.data["exit_code"] != 0

    @pytest.mark.asyncio
    async def test_working_directory(
        self, shell_tool: ShellExecuteTool, tmp_path: Path
    ) -> None:
        (tmp_path / "marker.txt").write_text("x")
        result = await shell_tool.execute(
            {"command": "ls", "working_directory": str(tmp_path)}
        )
        assert "marker.txt" in result.data["stdout"]

    @pytest.mark.asyncio
    async def test_blacklisted_command_blocked(
        self, shell_tool: ShellExecuteTool
    ) -> None:
        result = await shell_tool.execute({"command": "sudo rm -rf / --no-preserve-root"})
        assert not result.success
        assert "blocked" in result.error.lower()

    @pytest.mark.asyncio
    async def test_timeout(self, test_config: Config) -> None:
        tool = ShellExecuteTool(test_config.shell)
        result = await tool.execute({"command": "sleep 10", "timeout": 1})
        assert result.success
        assert result.data["timed_out"] is True
        assert result.data["exit_code"] == -1

    def test_is_blacklisted(self, shell_tool: ShellExecuteTool) -> None:
        assert shell_tool.is_blacklisted("rm -rf /")
        assert shell_tool.is_blacklisted("sudo MKFS.ext4 /dev/sda1")
        assert not shell_tool.is_blacklisted("rm file.txt")
        assert not shell_tool.is_blacklisted("ls -la")

    def test_result_dict_shape(self) -> None:
        from tools.base import ToolResult

        assert ToolResult(success=False, error="nope").to_dict() == {
            "success": False,
            "error": "nope",
        }
        assert ToolResult(success=True, data={"exit_code": 0}).to_dict() == {
            "success": True,
            "exit_code": 0,
        }
