"""Tests for file reading, writing and editing."""

import pytest

from crewgate.tools.read_write import ReadWrite, apply_replacement


@pytest.fixture
def rw(guard):
    return ReadWrite(guard)


@pytest.mark.asyncio
async def test_read_file(rw, context):
    """Test reading a file."""
    result = await rw.read({"file_path": "src/main.py"}, context)

    assert not result.is_error
    assert "def hello()" in result.content


@pytest.mark.asyncio
async def test_read_line_range(rw, context, test_project):
    """Test that start/end lines are 1-based and inclusive."""
    (test_project / "lines.txt").write_text("one\ntwo\nthree\nfour\n")

    result = await rw.read({"file_path": "lines.txt", "start_line": 2, "end_line": 3}, context)

    assert result.content == "two\nthree"


@pytest.mark.asyncio
async def test_read_nonexistent_file(rw, context):
    """Test reading a nonexistent file."""
    result = await rw.read({"file_path": "nonexistent.py"}, context)

    assert result.is_error
    assert "file not found" in result.content


@pytest.mark.asyncio
async def test_read_outside_root(rw, context):
    result = await rw.read({"file_path": "/etc/passwd"}, context)

    assert result.is_error
    assert result.content == "Path not allowed: /etc/passwd"


@pytest.mark.asyncio
async def test_read_too_large(guard, context, test_project):
    (test_project / "big.txt").write_text("x" * (1024 * 1024 + 1))
    rw = ReadWrite(guard, max_read_mb=1)

    result = await rw.read({"file_path": "big.txt"}, context)

    assert result.is_error
    assert "File too large" in result.content


@pytest.mark.asyncio
async def test_write_creates_directories(rw, context, test_project):
    """Test that write creates parent directories."""
    result = await rw.write({"file_path": "deep/nested/file.txt", "content": "content"}, context)

    assert not result.is_error
    assert (test_project / "deep" / "nested" / "file.txt").read_text() == "content"


@pytest.mark.asyncio
async def test_write_requires_content(rw, context):
    result = await rw.write({"file_path": "a.txt"}, context)

    assert result.is_error
    assert result.content == "Write tool requires file_path and content."


@pytest.mark.asyncio
async def test_edit_replace_all(rw, context, test_project):
    """Test that replace_all replaces every occurrence."""
    target = test_project / "sample.txt"
    target.write_text("foo bar foo baz")

    result = await rw.edit(
        {"file_path": "sample.txt", "old_string": "foo", "new_string": "qux", "replace_all": True},
        context,
    )

    assert not result.is_error
    assert "(2 replacements)" in result.content
    assert target.read_text() == "qux bar qux baz"


@pytest.mark.asyncio
async def test_edit_replaces_first_occurrence_only(rw, context, test_project):
    target = test_project / "sample.txt"
    target.write_text("foo bar foo baz")

    result = await rw.edit(
        {"file_path": "sample.txt", "old_string": "foo", "new_string": "qux"},
        context,
    )

    assert "(1 replacements)" in result.content
    assert target.read_text() == "qux bar foo baz"


@pytest.mark.asyncio
async def test_edit_batch_applies_in_order(rw, context, test_project):
    target = test_project / "sample.txt"
    target.write_text("alpha beta")

    result = await rw.edit(
        {
            "file_path": "sample.txt",
            "edits": [
                {"old_string": "alpha", "new_string": "gamma"},
                {"old_string": "gamma beta", "new_string": "done"},
            ],
        },
        context,
    )

    assert not result.is_error
    assert target.read_text() == "done"


@pytest.mark.asyncio
async def test_edit_not_found_leaves_file(rw, context, test_project):
    target = test_project / "sample.txt"
    target.write_text("foo bar")

    result = await rw.edit(
        {"file_path": "sample.txt", "old_string": "nope", "new_string": "x"},
        context,
    )

    assert result.is_error
    assert 'Edit failed: "nope" not found' in result.content
    assert target.read_text() == "foo bar"


@pytest.mark.asyncio
async def test_edit_without_change(rw, context, test_project):
    target = test_project / "sample.txt"
    target.write_text("foo bar")

    result = await rw.edit(
        {"file_path": "sample.txt", "old_string": "foo", "new_string": "foo"},
        context,
    )

    assert not result.is_error
    assert "made no changes" in result.content


def test_apply_replacement_counts():
    assert apply_replacement("aaa", "a", "b", True) == ("bbb", 3)
    assert apply_replacement("aaa", "a", "b", False) == ("baa", 1)
    assert apply_replacement("aaa", "x", "b", True) == ("aaa", 0)
