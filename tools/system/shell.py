"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from typing import Any

from core.config import ShellConfig
from tools.base import BaseTool, ToolResult

logger = logging.getLogger(__name__)


class ShellExecuteTool(BaseTool):
    """Runs shell commands on the host system."""

    def __init__(self, config: ShellConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        return "shell_execute"

    @property
    def description(self) -> str:
        return (
            "Runs a shell command and returns stdout, stderr, and exit code. "
            "Use this for running scripts, checking system state, or any "
            "command-line task."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute",
                },
                "working_directory": {
                    "type": "string",
                    "description": "Working directory for the command (optional)",
                },
                "timeout": {
                    "type": "integer",
                    "description": "Timeout in seconds (default: from config)",
                },
            },
            "required": ["command"],
        }

    def is_blacklisted(self, command: str) -> bool:
        """Check if a command matches any blacklist pattern."""
        cmd_lower = command.lower().strip()
        return any(p.lower() in cmd_lower for p in self._config.blacklist_patterns)

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        command = params["command"]
        working_dir = params.get("working_directory")
        timeout = params.get("timeout") or self._config.timeout

        if self.is_blacklisted(command):
            return ToolResult(
                success=False,
                error=(
                    "Command blocked: matches a blacklisted pattern. "
                    "This command is considered dangerous and cannot be executed."
                ),
            )

        cmd_short = command[:120] + ("…" if len(command) > 120 else "")
        logger.info("[shell] START: %s (timeout=%ss, cwd=%s)", cmd_short, timeout, working_dir or ".")
        t0 = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=working_dir,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("[shell] FAILED to start: %s (%s)", cmd_short, e)
            return ToolResult(success=False, error=f"Failed to execute command: {e}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except (TimeoutError, asyncio.CancelledError) as e:
            # Kill the whole process group (shell + children)
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except (ProcessLookupError, OSError):
                process.kill()
            if isinstance(e, asyncio.CancelledError):
                raise
            await process.communicate()
            logger.warning(
                "[shell] TIMEOUT after %.1fs: %s (pid=%s)",
                time.monotonic() - t0,
                cmd_short,
                process.pid,
            )
            return ToolResult(
                success=True,
                data={
                    "stdout": "",
                    "stderr": f"Command timed out after {timeout} seconds",
                    "exit_code": -1,
                    "timed_out": True,
                },
            )

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        exit_code = process.returncode or 0

        logger.info(
            "[shell] DONE in %.1fs: exit_code=%d | %s",
            time.monotonic() - t0,
            exit_code,
            cmd_short,
        )
        if exit_code != 0 or stderr.strip():
            logger.info("[shell] stderr: %s", stderr.strip()[-200:] or "(empty)")

        return ToolResult(
            success=True,
            data={
                "stdout": stdout,
                "stderr": stderr,
                "exit_code": exit_code,
                "timed_out": False,
            },
        )
