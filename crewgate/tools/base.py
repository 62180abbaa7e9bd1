"""Shared types and argument helpers for sandboxed tools."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from crewgate.utils.cancel import CancellationToken


@dataclass
class ToolContext:
    """Per-call execution context."""

    cwd: str
    cancel: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class ToolExecutionResult:
    """What every tool returns. Failures are data, not exceptions."""

    content: str
    is_error: bool = False


ToolHandler = Callable[[dict, ToolContext], Awaitable[ToolExecutionResult]]


@dataclass
class ToolDefinition:
    """A named tool with its JSON schema and handler."""

    name: str
    description: str
    parameters: dict
    execute: ToolHandler

    def to_openai(self) -> dict:
        """Render as an OpenAI function-calling tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def error(content: str) -> ToolExecutionResult:
    return ToolExecutionResult(content=content, is_error=True)


def get_string(value: Any) -> Optional[str]:
    """Return value if it is a non-blank string."""
    return value if isinstance(value, str) and value.strip() else None


def get_int(params: dict, *names: str, default: int = 0) -> int:
    """First integer-coercible value among ``names``, else ``default``."""
    for name in names:
        value = params.get(name)
        if value is None or isinstance(value, bool):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number:
            return number
    return default


def get_bool(params: dict, *names: str, default: bool = False) -> bool:
    for name in names:
        if name in params and params[name] is not None:
            return bool(params[name])
    return default


def coerce_file_path(params: dict) -> Optional[str]:
    return (
        get_string(params.get("file_path"))
        or get_string(params.get("filePath"))
        or get_string(params.get("path"))
        or get_string(params.get("filename"))
    )


def coerce_text(params: dict) -> Optional[str]:
    if isinstance(params.get("content"), str):
        return params["content"]
    if isinstance(params.get("text"), str):
        return params["text"]
    return None


def coerce_command(params: dict) -> Optional[str]:
    return get_string(params.get("command")) or get_string(params.get("cmd"))
