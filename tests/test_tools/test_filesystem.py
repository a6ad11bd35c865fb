"""Tests for file system tools."""

from __future__ import annotations

from pathlib import Path

import pytest

from tools.system.filesystem import FileListTool, FileReadTool, FileWriteTool


class TestFileRead:
    @pytest.fixture
    def read_tool(self, tmp_path: Path) -> FileReadTool:
        return FileReadTool(tmp_path)

    @pytest.mark.asyncio
    async def test_read_existing_file(
        self, read_tool: FileReadTool, tmp_path: Path
    ) -> None:
        test_file = tmp_path / "test.txt"
        test_file.write_text("hello world\nline two\n")

        result = await read_tool.execute({"path": str(test_file)})
        assert result.success
        assert "hello world" in result.data["content"]
        assert result.data["line_count"] == 2

    @pytest.mark.asyncio
    async def test_relative_path_resolves_against_root(
        self, read_tool: FileReadTool, tmp_path: Path
    ) -> None:
        (tmp_path / "notes.md").write_text("# Notes")
        result = await read_tool.execute({"path": "notes.md"})
        assert result.data["content"] == "# Notes"

    @pytest.mark.asyncio
    async def test_read_nonexistent_file(self, read_tool: FileReadTool) -> None:
        result = await read_tool.execute({"path": "/nonexistent/file.txt"})
        assert not result.success
        assert "not found" in result.error.lower()

    @pytest.mark.asyncio
    async def test_read_line_range(
        self, read_tool: FileReadTool, tmp_path: Path
    ) -> None:
        test_file = tmp_path / "lines.txt"
        test_file.write_text("line1\nline2\nline3\nline4\nline5\n")

        result = await read_tool.execute(
            {
                "path": str(test_file),
                "start_line": 2,
                "end_line": 4,
            }
        )
        assert result.success
        assert result.data["content"] == "line2\nline3\nline4"
        assert result.data["line_count"] == 5

    @pytest.mark.asyncio
    async def test_read_directory_fails(
        self, read_tool: FileReadTool, tmp_path: Path
    ) -> None:
        result = await read_tool.execute({"path": str(tmp_path)})
        assert not result.success
        assert "not a file" in result.error.lower()


class TestFileWrite:
    @pytest.fixture
    def write_tool(self, tmp_path: Path) -> FileWriteTool:
        return FileWriteTool(tmp_path)

    @pytest.mark.asyncio
    async def test_write_new_file(
        self, write_tool: FileWriteTool, tmp_path: Path
    ) -> None:
        file_path = tmp_path / "new_file.txt"
        result = await write_tool.execute(
            {
                "path": str(file_path),
                "content": "hello world",
            }
        )
        assert result.success
        assert file_path.read_text() == "hello world"
        assert result.data["size_bytes"] == 11

    @pytest.mark.asyncio
    async def test_write_creates_directories(
        self, write_tool: FileWriteTool, tmp_path: Path
    ) -> None:
        result = await write_tool.execute(
            {
                "path": "deep/nested/dir/file.txt",
                "content": "nested content",
            }
        )
        assert result.success
        assert (tmp_path / "deep" / "nested" / "dir" / "file.txt").exists()

    @pytest.mark.asyncio
    async def test_append(self, write_tool: FileWriteTool, tmp_path: Path) -> None:
        file_path = tmp_path / "log.txt"
        file_path.write_text("first\n")

        await write_tool.execute(
            {"path": str(file_path), "content": "second\n", "append": True}
        )
        assert file_path.read_text() == "first\nsecond\n"


class TestFileList:
    @pytest.fixture
    def list_tool(self, tmp_path: Path) -> FileListTool:
        return FileListTool(tmp_path)

    @pytest.mark.asyncio
    async def test_list_directory(
        self, list_tool: FileListTool, tmp_path: Path
    ) -> None:
        (tmp_path / "file1.txt").write_text("a")
        (tmp_path / "file2.py").write_text("b")
        (tmp_path / "subdir").mkdir()

        result = await list_tool.execute({})
        assert result.success
        by_path = {e["path"]: e for e in result.data["entries"]}
        assert by_path["file1.txt"]["type"] == "file"
        assert by_path["subdir"]["type"] == "directory"
        assert "file2.py" in by_path
        assert result.data["truncated"] is False

    @pytest.mark.asyncio
    async def test_list_with_pattern(
        self, list_tool: FileListTool, tmp_path: Path
    ) -> None:
        (tmp_path / "file1.txt").write_text("a")
        (tmp_path / "file2.py").write_text("b")

        result = await list_tool.execute({"path": str(tmp_path), "pattern": "*.py"})
        assert [e["path"] for e in result.data["entries"]] == ["file2.py"]

    @pytest.mark.asyncio
    async def test_list_recursive(
        self, list_tool: FileListTool, tmp_path: Path
    ) -> None:
        sub = tmp_path / "sub"
        sub.mkdir()
        (sub / "deep.txt").write_text("deep")
        (tmp_path / "top.txt").write_text("top")

        result = await list_tool.execute({"recursive": True})
        paths = [e["path"] for e in result.data["entries"]]
        assert str(Path("sub") / "deep.txt") in paths
        assert "top.txt" in paths

    @pytest.mark.asyncio
    async def test_list_nonexistent_path(self, list_tool: FileListTool) -> None:
        result = await list_tool.execute({"path": "/nonexistent/dir"})
        assert not result.success

    @pytest.mark.asyncio
    async def test_list_excludes_hidden(
        self, list_tool: FileListTool, tmp_path: Path
    ) -> None:
        (tmp_path / ".hidden").write_text("hidden")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("ref")
        (tmp_path / "visible.txt").write_text("visible")

        result = await list_tool.execute({"recursive": True})
        assert [e["path"] for e in result.data["entries"]] == ["visible.txt"]
