"""Data models for conversations, queued prompts, and stream events."""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id(prefix: str = "msg") -> str:
    """Generate a unique, filename-safe identifier."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class ImageAttachment(BaseModel):
    """An image attached to a user message, inlined as base64."""

    data: str
    mime_type: str
    filename: str


class Message(BaseModel):
    """One entry in a conversation transcript."""

    id: str = Field(default_factory=generate_id)
    role: Literal["user", "assistant"]
    content: str = ""
    images: Optional[list[ImageAttachment]] = None
    timestamp: str = Field(default_factory=utc_now)
    is_error: bool = False


class QueuedPrompt(BaseModel):
    """A follow-up prompt waiting for the active turn to finish."""

    id: str = Field(default_factory=lambda: generate_id("prompt"))
    message: str
    image_paths: Optional[list[str]] = None
    model: Optional[str] = None
    added_at: str = Field(default_factory=utc_now)


class SessionMetadata(BaseModel):
    """Listing record for a conversation, stored apart from its transcript."""

    id: str
    name: str
    project_path: Optional[str] = None
    working_directory: str
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    archived: bool = False
    tags: list[str] = Field(default_factory=list)
    model: Optional[str] = None
    continuation_token: Optional[str] = None


class ToolUse(BaseModel):
    """A tool invocation as reported on turn completion."""

    name: str
    input: Any = None


class ToolCall(BaseModel, frozen=True):
    """A complete tool call finalized from streaming fragments."""

    id: str
    name: str
    arguments: str = ""


class ToolResult(BaseModel):
    """Outcome of one executed tool call."""

    id: str
    name: str
    content: str
    is_error: bool = False


class EditIntent(BaseModel):
    """A model-declared scope of files it intends to modify this turn."""

    summary: str
    files: list[str] = Field(default_factory=list)


class InstallationStatus(BaseModel):
    """Whether a provider is usable in this environment."""

    installed: bool
    method: str
    has_api_key: bool
    authenticated: bool


class ModelDefinition(BaseModel):
    """Catalog entry for a selectable model."""

    id: str
    name: str
    provider: str
    description: str = ""
    context_window: Optional[int] = None
    max_output_tokens: Optional[int] = None
    supports_vision: bool = False
    supports_tools: bool = True
    tier: str = "standard"


# Canonical stream events


class _Event(BaseModel):
    continuation_token: Optional[str] = None


class StartedEvent(_Event):
    type: Literal["started"] = "started"


class TextDeltaEvent(_Event):
    type: Literal["text-delta"] = "text-delta"
    message_id: Optional[str] = None
    delta: str = ""
    content: str = ""


class ToolCallEvent(_Event):
    type: Literal["tool-call"] = "tool-call"
    call_id: Optional[str] = None
    name: str
    input: Any = None


class ToolResultEvent(_Event):
    type: Literal["tool-result"] = "tool-result"
    call_id: Optional[str] = None
    content: str = ""
    is_error: bool = False


class TurnCompleteEvent(_Event):
    type: Literal["turn-complete"] = "turn-complete"
    message_id: Optional[str] = None
    content: str = ""
    tool_uses: list[ToolUse] = Field(default_factory=list)


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str
    message: Optional[Message] = None


StreamEvent = Annotated[
    Union[
        StartedEvent,
        TextDeltaEvent,
        ToolCallEvent,
        ToolResultEvent,
        TurnCompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]


# Registry events, published next to the canonical stream


class MessageEvent(BaseModel):
    type: Literal["message"] = "message"
    message: Message


class QueueUpdatedEvent(BaseModel):
    type: Literal["queue-updated"] = "queue-updated"
    queue: list[QueuedPrompt]


class QueueErrorEvent(BaseModel):
    type: Literal["queue-error"] = "queue-error"
    error: str
    prompt_id: str


MESSAGES_ADAPTER = TypeAdapter(list[Message])
QUEUE_ADAPTER = TypeAdapter(list[QueuedPrompt])
METADATA_ADAPTER = TypeAdapter(dict[str, SessionMetadata])
