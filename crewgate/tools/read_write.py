"""Read, Write and Edit tools."""

import os
import re
from pathlib import Path

from crewgate.errors import PathNotAllowedError
from crewgate.tools.base import (
    ToolContext,
    ToolExecutionResult,
    coerce_file_path,
    coerce_text,
    error,
    get_bool,
    get_int,
)
from crewgate.utils.paths import PathGuard

_LINE_SPLIT = re.compile(r"\r?\n")


class ReadWrite:
    """Handles file I/O tools with path and size checks."""

    def __init__(
        self,
        guard: PathGuard,
        max_read_mb: int = 8,
        max_write_mb: int = 2,
    ):
        """Initialize ReadWrite tools.

        Args:
            guard: Path guard consulted before every filesystem access
            max_read_mb: Maximum file size to read (MB)
            max_write_mb: Maximum content size to write (MB)
        """
        self.guard = guard
        self.max_read_bytes = max_read_mb * 1024 * 1024
        self.max_write_bytes = max_write_mb * 1024 * 1024

    async def read(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        """Read a file, optionally restricted to a 1-based inclusive line range."""
        file_path = coerce_file_path(params)
        if not file_path:
            return error("Read tool requires file_path.")

        try:
            resolved = self.guard.resolve(context.cwd, file_path)
        except PathNotAllowedError as e:
            return error(str(e))

        path = Path(resolved)
        if not path.is_file():
            return error(f"Read failed for {resolved}: file not found")

        try:
            size = path.stat().st_size
            if size > self.max_read_bytes:
                size_mb = size / (1024 * 1024)
                max_mb = self.max_read_bytes / (1024 * 1024)
                return error(f"File too large: {size_mb:.2f} MB (max: {max_mb} MB)")
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return error(f"Read failed for {resolved}: file is not valid UTF-8 text")
        except OSError as e:
            return error(f"Read failed for {resolved}: {e}")

        start_line = get_int(params, "start_line", "startLine")
        end_line = get_int(params, "end_line", "endLine")
        if start_line or end_line:
            lines = _LINE_SPLIT.split(content)
            start_index = max(start_line - 1, 0)
            end_index = min(end_line, len(lines)) if end_line else len(lines)
            return ToolExecutionResult(content="\n".join(lines[start_index:end_index]))

        return ToolExecutionResult(content=content)

    async def write(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        """Write content to a file, creating parent directories."""
        file_path = coerce_file_path(params)
        content = coerce_text(params)
        if not file_path or content is None:
            return error("Write tool requires file_path and content.")

        try:
            resolved = self.guard.resolve(context.cwd, file_path)
        except PathNotAllowedError as e:
            return error(str(e))

        content_bytes = len(content.encode("utf-8"))
        if content_bytes > self.max_write_bytes:
            size_mb = content_bytes / (1024 * 1024)
            max_mb = self.max_write_bytes / (1024 * 1024)
            return error(f"Content too large: {size_mb:.2f} MB (max: {max_mb} MB)")

        try:
            self._write_atomic(Path(resolved), content)
        except OSError as e:
            return error(f"Write failed for {resolved}: {e}")

        return ToolExecutionResult(content=f"Wrote {len(content)} characters to {resolved}.")

    async def edit(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        """Apply ordered text replacements to a file."""
        file_path = coerce_file_path(params)
        if not file_path:
            return error("Edit tool requires file_path.")

        try:
            resolved = self.guard.resolve(context.cwd, file_path)
        except PathNotAllowedError as e:
            return error(str(e))

        edits = params.get("edits")
        if not isinstance(edits, list) or not edits:
            edits = [{
                "old_string": params.get("old_string", params.get("oldString")),
                "new_string": params.get("new_string", params.get("newString")),
                "replace_all": params.get("replace_all", params.get("replaceAll")),
            }]

        path = Path(resolved)
        try:
            original = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return error(f"Edit failed for {resolved}: {e}")

        updated = original
        total_replacements = 0
        for edit in edits:
            if not isinstance(edit, dict):
                return error("Edit entries must be objects.")
            old_string = edit.get("old_string", edit.get("oldString"))
            new_string = edit.get("new_string", edit.get("newString"))
            new_string = "" if new_string is None else str(new_string)
            replace_all = get_bool(edit, "replace_all", "replaceAll")

            if not isinstance(old_string, str) or not old_string:
                return error("Edit entries must include old_string.")

            updated, count = apply_replacement(updated, old_string, new_string, replace_all)
            if count == 0:
                return error(f'Edit failed: "{old_string}" not found in {resolved}.')
            total_replacements += count

        if updated == original:
            return ToolExecutionResult(content=f"Edit made no changes to {resolved}.")

        try:
            self._write_atomic(path, updated)
        except OSError as e:
            return error(f"Edit failed for {resolved}: {e}")

        return ToolExecutionResult(
            content=f"Updated {resolved} ({total_replacements} replacements)."
        )

    def _write_atomic(self, file_path: Path, content: str) -> None:
        """Write via temp file + rename so readers never see a partial file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = file_path.with_name(f".{file_path.name}.{os.getpid()}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
            temp_path.replace(file_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise


def apply_replacement(
    content: str, old: str, new: str, replace_all: bool
) -> tuple[str, int]:
    """Replace the first (or every) occurrence of ``old``.

    Returns:
        Tuple of (updated content, number of replacements)
    """
    if replace_all:
        count = content.count(old)
        return (content.replace(old, new), count) if count else (content, 0)

    index = content.find(old)
    if index == -1:
        return content, 0
    return content[:index] + new + content[index + len(old):], 1
