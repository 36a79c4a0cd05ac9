from pathlib import Path

import pytest

from sheen.config import Config
from sheen.tools.glob import ListFilesTool, is_excluded
from sheen.tools.read import ReadTool
from sheen.tools.registry import ToolContext
from sheen.tools.write import WriteTool


@pytest.fixture
def context(tmp_path: Path) -> ToolContext:
    return ToolContext(working_dir=tmp_path)


@pytest.mark.asyncio
async def test_read_tool_returns_whole_file(tmp_path: Path, context: ToolContext):
    (tmp_path / "sample.txt").write_text("line1\nline2\nline3\n", encoding="utf-8")

    result = await ReadTool().execute(path="sample.txt", _context=context)

    assert result.success is True
    assert result.output == "line1\nline2\nline3\n"


@pytest.mark.asyncio
async def test_read_tool_limit_and_offset(tmp_path: Path, context: ToolContext):
    (tmp_path / "sample.txt").write_text("line1\nline2\nline3\nline4\n", encoding="utf-8")

    result = await ReadTool().execute(path="sample.txt", offset=2, limit=2, _context=context)

    assert result.output == "line2\nline3"


@pytest.mark.asyncio
async def test_read_tool_missing_file(context: ToolContext):
    result = await ReadTool().execute(path="absent.txt", _context=context)

    assert result.success is False
    assert result.error == "File not found: absent.txt"


@pytest.mark.asyncio
async def test_read_tool_rejects_binary(tmp_path: Path, context: ToolContext):
    (tmp_path / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")

    result = await ReadTool().execute(path="blob.bin", _context=context)

    assert result.success is False
    assert "Not a UTF-8 text file" in result.error


@pytest.mark.asyncio
async def test_write_tool_creates_parents_and_reports_change(tmp_path: Path, context: ToolContext):
    result = await WriteTool().execute(path="src/pkg/mod.py", content="x = 1\n", _context=context)

    assert result.success is True
    assert (tmp_path / "src" / "pkg" / "mod.py").read_text(encoding="utf-8") == "x = 1\n"
    assert result.files_changed == ["src/pkg/mod.py"]
    assert result.output == "Written 6 chars to src/pkg/mod.py"


@pytest.mark.asyncio
async def test_write_tool_append(tmp_path: Path, context: ToolContext):
    target = tmp_path / "log.txt"
    target.write_text("a\n", encoding="utf-8")

    await WriteTool().execute(path="log.txt", content="b\n", append=True, _context=context)

    assert target.read_text(encoding="utf-8") == "a\nb\n"


def test_is_excluded_matches_any_path_part():
    patterns = ["node_modules", "*.pyc"]

    assert is_excluded("web/node_modules/react/index.js", patterns)
    assert is_excluded("pkg/mod.pyc", patterns)
    assert not is_excluded("pkg/mod.py", patterns)


@pytest.mark.asyncio
async def test_list_files_skips_excluded_and_recurses(tmp_path: Path, context: ToolContext):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("", encoding="utf-8")
    (tmp_path / "README.md").write_text("", encoding="utf-8")

    flat = await ListFilesTool().execute(_context=context)
    deep = await ListFilesTool().execute(recursive=True, _context=context)

    assert flat.output.splitlines() == ["README.md", "src/"]
    assert deep.output.splitlines() == ["README.md", "src/", "src/app.py"]


@pytest.mark.asyncio
async def test_list_files_limit_and_custom_excludes(tmp_path: Path):
    for name in ("a.txt", "b.txt", "c.txt", "skip.log"):
        (tmp_path / name).write_text("", encoding="utf-8")
    config = Config()
    config.tools.exclude_patterns = ["*.log"]
    context = ToolContext(working_dir=tmp_path, config=config)

    result = await ListFilesTool().execute(limit=2, _context=context)

    assert result.output.splitlines() == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_list_files_missing_directory(context: ToolContext):
    result = await ListFilesTool().execute(path="nowhere", _context=context)

    assert result.success is False
    assert "Directory not found" in result.error
