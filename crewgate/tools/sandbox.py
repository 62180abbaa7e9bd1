"""Tool catalog and sequential executor for locally run tool calls."""

import json
import logging
from typing import Iterable, Optional

from crewgate.config import Config
from crewgate.constants import DEFAULT_TOOL_NAMES
from crewgate.errors import TurnAborted
from crewgate.models import ToolCall, ToolResult
from crewgate.tools.base import ToolContext, ToolDefinition
from crewgate.tools.executor import Executor
from crewgate.tools.fetch import WebFetch
from crewgate.tools.read_write import ReadWrite
from crewgate.tools.search import Search
from crewgate.utils.paths import PathGuard

logger = logging.getLogger(__name__)


class ToolSandbox:
    """Owns the tool implementations and dispatches model tool calls to them."""

    def __init__(self, guard: PathGuard, config: Optional[Config] = None, fetcher: Optional[WebFetch] = None):
        """Initialize the sandbox.

        Args:
            guard: Path guard shared by every filesystem-touching tool
            config: Limits for reads, writes, shell and fetch (defaults if None)
            fetcher: Optional WebFetch override (tests inject a mock transport)
        """
        config = config or Config(allowed_roots=guard.allowed_roots)
        self.guard = guard
        self.read_write = ReadWrite(guard, config.max_read_mb, config.max_write_mb)
        self.search = Search(guard)
        self.executor = Executor(guard, timeout_ms=config.bash_timeout_ms)
        self.fetcher = fetcher or WebFetch(config.fetch_timeout_ms, config.fetch_max_bytes)
        self._tools = {tool.name: tool for tool in self._build_definitions()}

    def definitions(self, allowed: Optional[Iterable[str]] = None) -> list[ToolDefinition]:
        """Tool definitions filtered to ``allowed`` (all tools when None), in catalog order."""
        names = set(DEFAULT_TOOL_NAMES if allowed is None else allowed)
        return [tool for name, tool in self._tools.items() if name in names]

    async def execute(
        self,
        calls: list[ToolCall],
        context: ToolContext,
        allowed: Optional[Iterable[str]] = None,
    ) -> list[ToolResult]:
        """Run tool calls sequentially, in call order.

        Every failure becomes an error-flagged result except cancellation.

        Raises:
            TurnAborted: If the turn is cancelled before or during a call
        """
        registry = {tool.name: tool for tool in self.definitions(allowed)}
        results = []

        for call in calls:
            context.cancel.raise_if_cancelled()
            tool = registry.get(call.name)
            if tool is None:
                results.append(_failed(call, f'Tool "{call.name}" is not available.'))
                continue

            try:
                params = json.loads(call.arguments) if call.arguments else {}
            except json.JSONDecodeError as e:
                results.append(_failed(call, f"Failed to parse tool arguments: {e}"))
                continue
            if not isinstance(params, dict):
                results.append(_failed(call, f"{call.name} tool input must be an object."))
                continue

            logger.debug("Running tool %s (%s)", call.name, call.id)
            try:
                outcome = await tool.execute(params, context)
            except TurnAborted:
                raise
            except Exception as e:
                logger.exception("Tool %s raised", call.name)
                results.append(_failed(call, f'Tool "{call.name}" failed: {e}'))
                continue

            results.append(
                ToolResult(
                    id=call.id,
                    name=call.name,
                    content=outcome.content,
                    is_error=outcome.is_error,
                )
            )

        return results

    def _build_definitions(self) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name="Read",
                description="Read a file from the local filesystem.",
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {"type": "string", "description": "Path to the file."},
                        "start_line": {"type": "integer", "description": "Optional start line (1-based)."},
                        "end_line": {"type": "integer", "description": "Optional end line (1-based)."},
                    },
                    "required": ["file_path"],
                },
                execute=self.read_write.read,
            ),
            ToolDefinition(
                name="Write",
                description="Write content to a file, creating directories if needed.",
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {"type": "string", "description": "Path to the file."},
                        "content": {"type": "string", "description": "Content to write."},
                    },
                    "required": ["file_path", "content"],
                },
                execute=self.read_write.write,
            ),
            ToolDefinition(
                name="Edit",
                description="Edit a file by replacing text. Provide old_string/new_string or an edits array.",
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {"type": "string", "description": "Path to the file."},
                        "old_string": {"type": "string", "description": "Text to replace."},
                        "new_string": {"type": "string", "description": "Replacement text."},
                        "replace_all": {"type": "boolean", "description": "Replace all occurrences."},
                        "edits": {
                            "type": "array",
                            "description": "Batch edits to apply in order.",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "old_string": {"type": "string"},
                                    "new_string": {"type": "string"},
                                    "replace_all": {"type": "boolean"},
                                },
                                "required": ["old_string", "new_string"],
                            },
                        },
                    },
                    "required": ["file_path"],
                },
                execute=self.read_write.edit,
            ),
            ToolDefinition(
                name="Glob",
                description="List files matching a glob pattern.",
                parameters={
                    "type": "object",
                    "properties": {
                        "pattern": {"type": "string", "description": "Glob pattern (e.g., **/*.py)."},
                        "path": {"type": "string", "description": "Base directory (defaults to cwd)."},
                        "max_results": {"type": "integer", "description": "Maximum results."},
                    },
                },
                execute=self.search.glob,
            ),
            ToolDefinition(
                name="Grep",
                description="Search files for a pattern.",
                parameters={
                    "type": "object",
                    "properties": {
                        "pattern": {"type": "string", "description": "Search pattern."},
                        "path": {"type": "string", "description": "Base directory (defaults to cwd)."},
                        "glob": {"type": "string", "description": "Glob filter for files."},
                        "regex": {"type": "boolean", "description": "Interpret pattern as regex."},
                        "case_sensitive": {"type": "boolean", "description": "Case sensitive search."},
                        "max_results": {"type": "integer", "description": "Maximum matches."},
                    },
                    "required": ["pattern"],
                },
                execute=self.search.grep,
            ),
            ToolDefinition(
                name="Bash",
                description="Execute a shell command.",
                parameters={
                    "type": "object",
                    "properties": {
                        "command": {"type": "string", "description": "Command to execute."},
                        "cwd": {"type": "string", "description": "Optional working directory."},
                        "timeout_ms": {"type": "integer", "description": "Timeout in milliseconds."},
                    },
                    "required": ["command"],
                },
                execute=self.executor.bash,
            ),
            ToolDefinition(
                name="WebFetch",
                description="Fetch a URL and return the response body.",
                parameters={
                    "type": "object",
                    "properties": {
                        "url": {"type": "string", "description": "URL to fetch."},
                        "method": {"type": "string", "description": "HTTP method (default GET)."},
                        "headers": {"type": "object", "description": "HTTP headers."},
                        "body": {"type": "string", "description": "Optional request body."},
                        "max_bytes": {"type": "integer", "description": "Max response size."},
                        "timeout_ms": {"type": "integer", "description": "Timeout in milliseconds."},
                    },
                    "required": ["url"],
                },
                execute=self.fetcher.fetch,
            ),
        ]


def _failed(call: ToolCall, content: str) -> ToolResult:
    return ToolResult(id=call.id, name=call.name, content=content, is_error=True)
