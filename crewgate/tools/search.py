"""Glob and Grep tools."""

import asyncio
import os
import re
from typing import Iterator

from crewgate.constants import (
    DEFAULT_GLOB_MAX_RESULTS,
    DEFAULT_GREP_MAX_MATCHES,
    IGNORED_DIRS,
)
from crewgate.errors import PathNotAllowedError
from crewgate.tools.base import (
    ToolContext,
    ToolExecutionResult,
    error,
    get_bool,
    get_int,
    get_string,
)
from crewgate.utils.paths import PathGuard

_LINE_SPLIT = re.compile(r"\r?\n")


def _braces_balanced(pattern: str) -> bool:
    depth = 0
    for char in pattern:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a glob pattern to an anchored regex over '/'-separated paths.

    Supports ``*`` (within one segment), ``**`` (across segments), ``?`` and
    ``{a,b}`` alternation. Unbalanced braces are matched literally.
    """
    normalized = pattern.replace("\\", "/")
    expand_braces = _braces_balanced(normalized)
    regex = []
    depth = 0
    index = 0

    while index < len(normalized):
        char = normalized[index]
        if char == "*":
            if normalized[index + 1:index + 3] == "*/":
                # Zero or more whole directories
                regex.append("(?:.*/)?")
                index += 3
            elif normalized[index + 1:index + 2] == "*":
                regex.append(".*")
                index += 2
            else:
                regex.append("[^/]*")
                index += 1
            continue
        if char == "?":
            regex.append("[^/]")
        elif char == "{" and expand_braces:
            regex.append("(?:")
            depth += 1
        elif char == "}" and expand_braces and depth:
            regex.append(")")
            depth -= 1
        elif char == "," and depth:
            regex.append("|")
        else:
            regex.append(re.escape(char))
        index += 1

    return re.compile("^" + "".join(regex) + "$")


def walk_files(root: str) -> Iterator[str]:
    """Yield '/'-separated paths relative to root, skipping ignored directories."""
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in IGNORED_DIRS)
        for name in sorted(files):
            full_path = os.path.join(current, name)
            yield os.path.relpath(full_path, root).replace(os.sep, "/")


class Search:
    """File discovery and content search rooted inside the allowed scope."""

    def __init__(self, guard: PathGuard):
        self.guard = guard

    async def glob(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        pattern = get_string(params.get("pattern")) or "**/*"
        base_dir = get_string(params.get("path")) or "."
        max_results = get_int(
            params, "max_results", "maxResults", default=DEFAULT_GLOB_MAX_RESULTS
        )

        try:
            root = self.guard.resolve(context.cwd, base_dir)
        except PathNotAllowedError as e:
            return error(str(e))
        if not os.path.isdir(root):
            return error(f"Glob failed in {root}: not a directory")

        matcher = glob_to_regex(pattern)
        matches = []
        try:
            for count, relative in enumerate(walk_files(root)):
                if count % 500 == 0:
                    context.cancel.raise_if_cancelled()
                    await asyncio.sleep(0)
                if matcher.match(relative):
                    matches.append(relative)
                    if len(matches) >= max_results:
                        break
        except OSError as e:
            return error(f"Glob failed in {root}: {e}")

        if not matches:
            return ToolExecutionResult(content="No files matched.")
        return ToolExecutionResult(content="\n".join(matches))

    async def grep(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        pattern = get_string(params.get("pattern"))
        if not pattern:
            return error("Grep tool requires pattern.")

        base_dir = get_string(params.get("path")) or "."
        glob_pattern = get_string(params.get("glob")) or "**/*"
        regex_mode = get_bool(params, "regex")
        case_sensitive = get_bool(params, "case_sensitive", "caseSensitive", default=True)
        max_results = get_int(
            params, "max_results", "maxResults", default=DEFAULT_GREP_MAX_MATCHES
        )

        try:
            root = self.guard.resolve(context.cwd, base_dir)
        except PathNotAllowedError as e:
            return error(str(e))
        if not os.path.isdir(root):
            return error(f"Grep failed in {root}: not a directory")

        if regex_mode:
            try:
                search = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
            except re.error as e:
                return error(f"Invalid regex pattern: {e}")
            hit = search.search
        elif case_sensitive:
            hit = lambda line: pattern in line  # noqa: E731
        else:
            lowered = pattern.lower()
            hit = lambda line: lowered in line.lower()  # noqa: E731

        matcher = glob_to_regex(glob_pattern)
        matches: list[str] = []
        for relative in walk_files(root):
            if not matcher.match(relative):
                continue
            context.cancel.raise_if_cancelled()
            await asyncio.sleep(0)

            full_path = os.path.join(root, relative)
            if os.path.islink(full_path):
                continue
            try:
                with open(full_path, "r", encoding="utf-8") as f:
                    content = f.read()
            except (OSError, UnicodeDecodeError):
                continue

            for line_number, line in enumerate(_LINE_SPLIT.split(content), start=1):
                if hit(line):
                    matches.append(f"{relative}:{line_number}: {line}")
                    if len(matches) >= max_results:
                        return ToolExecutionResult(content="\n".join(matches))

        if not matches:
            return ToolExecutionResult(content="No matches found.")
        return ToolExecutionResult(content="\n".join(matches))
