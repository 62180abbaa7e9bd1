"""Tests for Glob and Grep."""

import pytest

from crewgate.tools.search import Search, glob_to_regex


@pytest.fixture
def search(guard):
    return Search(guard)


def test_glob_to_regex_star_stays_in_segment():
    matcher = glob_to_regex("src/*.py")

    assert matcher.match("src/main.py")
    assert not matcher.match("src/pkg/main.py")


def test_glob_to_regex_double_star_and_braces():
    matcher = glob_to_regex("**/*.{py,md}")

    assert matcher.match("README.md")
    assert matcher.match("src/deep/main.py")
    assert not matcher.match("src/main.js")


def test_glob_to_regex_double_star_matches_whole_names():
    matcher = glob_to_regex("**/main.py")

    assert matcher.match("main.py")
    assert matcher.match("src/main.py")
    assert not matcher.match("src/notmain.py")
    assert not matcher.match("tests/test_main.py")
    assert glob_to_regex("src/**/main.py").match("src/main.py")
    assert glob_to_regex("src/**").match("src/a/b.py")


def test_glob_to_regex_unbalanced_braces_are_literal():
    matcher = glob_to_regex("{a.txt")

    assert matcher.match("{a.txt")
    assert not matcher.match("a.txt")


@pytest.mark.asyncio
async def test_glob_top_level(search, context):
    result = await search.glob({"pattern": "*.md"}, context)

    assert result.content.split("\n") == ["CHANGELOG.md", "README.md"]


@pytest.mark.asyncio
async def test_glob_skips_ignored_dirs(search, context):
    """Test that node_modules is never walked."""
    result = await search.glob({"pattern": "**/*.md"}, context)

    assert "node_modules" not in result.content
    assert "README.md" in result.content


@pytest.mark.asyncio
async def test_glob_double_star_file_name(search, context, test_project):
    (test_project / "src" / "notmain.py").write_text("")

    result = await search.glob({"pattern": "**/main.py"}, context)

    assert result.content.split("\n") == ["src/main.py"]


@pytest.mark.asyncio
async def test_glob_no_matches(search, context):
    result = await search.glob({"pattern": "*.rs"}, context)

    assert result.content == "No files matched."


@pytest.mark.asyncio
async def test_glob_outside_root(search, context):
    result = await search.glob({"pattern": "*", "path": "/etc"}, context)

    assert result.is_error


@pytest.mark.asyncio
async def test_grep_literal(search, context):
    result = await search.grep({"pattern": "return a + b"}, context)

    assert result.content == "src/utils.py:2:     return a + b"


@pytest.mark.asyncio
async def test_grep_case_insensitive_with_glob(search, context):
    result = await search.grep(
        {"pattern": "DEF", "case_sensitive": False, "glob": "src/*.py"},
        context,
    )

    lines = result.content.split("\n")
    assert lines == ["src/main.py:1: def hello():", "src/utils.py:1: def add(a, b):"]


@pytest.mark.asyncio
async def test_grep_regex(search, context):
    result = await search.grep({"pattern": r"def \w+\(\)", "regex": True}, context)

    assert "src/main.py:1:" in result.content
    assert "utils.py" not in result.content


@pytest.mark.asyncio
async def test_grep_invalid_regex(search, context):
    result = await search.grep({"pattern": "(", "regex": True}, context)

    assert result.is_error
    assert result.content.startswith("Invalid regex pattern")


@pytest.mark.asyncio
async def test_grep_max_results(search, context):
    result = await search.grep({"pattern": "def", "max_results": 1}, context)

    assert len(result.content.split("\n")) == 1


@pytest.mark.asyncio
async def test_grep_no_matches(search, context):
    result = await search.grep({"pattern": "zzz-not-there"}, context)

    assert result.content == "No matches found."
