"""Claude backend via the Claude Agent SDK. Tools run server-side."""

import asyncio
import logging
import os
import shutil
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKError, query
from claude_agent_sdk.types import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from crewgate.constants import CLAUDE_MODEL_MAP, DEFAULT_TOOL_NAMES
from crewgate.errors import ProviderError
from crewgate.models import (
    InstallationStatus,
    Message,
    ModelDefinition,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    ToolUse,
    TurnCompleteEvent,
)
from crewgate.providers.base import BaseProvider, ExecuteOptions, Prompt
from crewgate.providers.routing import list_models

logger = logging.getLogger(__name__)

_DONE = object()


def resolve_model(model: str) -> str:
    """Expand aliases like "sonnet" to full model names."""
    return CLAUDE_MODEL_MAP.get(model.lower(), model)


def fold_history(history: list[Message], prompt: Prompt) -> Prompt:
    """Prefix the prompt with a transcript of earlier messages."""
    if not history:
        return prompt

    lines = ["Previous conversation:", ""]
    for entry in history:
        speaker = "User" if entry.role == "user" else "Assistant"
        lines.append(f"{speaker}: {entry.content}")
        lines.append("")
    preamble = "\n".join(lines) + "---\n\n"

    if isinstance(prompt, str):
        return preamble + prompt
    return [{"type": "text", "text": preamble}, *prompt]


def _tool_result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text":
            parts.append(item.get("text", ""))
    return "\n".join(parts)


class ClaudeProvider(BaseProvider):
    """Native-session backend: the SDK runs the agent loop and keeps context."""

    name = "claude"

    def get_api_key(self) -> Optional[str]:
        return self.config.api_key or os.getenv("ANTHROPIC_API_KEY")

    def build_options(self, options: ExecuteOptions) -> ClaudeAgentOptions:
        env = {}
        api_key = self.get_api_key()
        if api_key:
            env["ANTHROPIC_API_KEY"] = api_key

        allowed = options.allowed_tools if options.allowed_tools is not None else DEFAULT_TOOL_NAMES
        return ClaudeAgentOptions(
            cwd=options.cwd,
            model=resolve_model(options.model),
            system_prompt=options.system_prompt,
            max_turns=options.max_turns,
            allowed_tools=list(allowed),
            resume=options.continuation_token,
            env=env,
            permission_mode="acceptEdits",
        )

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[StreamEvent]:
        prompt = options.prompt
        if not options.continuation_token:
            prompt = fold_history(options.conversation_history, prompt)

        sdk_options = self.build_options(options)
        session_id = options.continuation_token
        turn_text = ""
        tool_uses: list[ToolUse] = []

        # The SDK stream must be driven and closed by one task
        queue: asyncio.Queue = asyncio.Queue()

        async def pump() -> None:
            try:
                async with aclosing(query(prompt=self._sdk_prompt(prompt), options=sdk_options)) as stream:
                    async for message in stream:
                        queue.put_nowait(message)
            except Exception as e:
                queue.put_nowait(e)
            finally:
                queue.put_nowait(_DONE)

        pump_task = asyncio.create_task(pump())
        try:
            while True:
                message = await options.cancel.run(queue.get())
                if message is _DONE:
                    break
                if isinstance(message, ClaudeSDKError):
                    raise ProviderError(f"Claude request failed: {message}") from message
                if isinstance(message, Exception):
                    raise message

                if isinstance(message, SystemMessage):
                    if message.subtype == "init":
                        session_id = message.data.get("session_id") or session_id
                        logger.debug("Claude session %s (model %s)", session_id, sdk_options.model)
                    continue

                if isinstance(message, ResultMessage):
                    session_id = message.session_id or session_id
                    if message.is_error or message.subtype != "success":
                        raise ProviderError(
                            message.result or f"Claude run ended with {message.subtype}"
                        )
                    yield TurnCompleteEvent(
                        content=message.result or turn_text,
                        tool_uses=tool_uses,
                        continuation_token=session_id,
                    )
                    return

                if not isinstance(message, (AssistantMessage, UserMessage)):
                    continue
                if isinstance(message.content, str):
                    continue

                for block in message.content:
                    if isinstance(block, TextBlock) and isinstance(message, AssistantMessage):
                        turn_text += block.text
                        yield TextDeltaEvent(
                            delta=block.text, content=turn_text, continuation_token=session_id
                        )
                    elif isinstance(block, ToolUseBlock):
                        tool_uses.append(ToolUse(name=block.name, input=block.input))
                        yield ToolCallEvent(
                            call_id=block.id,
                            name=block.name,
                            input=block.input,
                            continuation_token=session_id,
                        )
                    elif isinstance(block, ToolResultBlock):
                        yield ToolResultEvent(
                            call_id=block.tool_use_id,
                            content=_tool_result_text(block.content),
                            is_error=bool(block.is_error),
                            continuation_token=session_id,
                        )
        finally:
            if not pump_task.done():
                pump_task.cancel()
            await asyncio.wait({pump_task})

        raise ProviderError("Claude stream ended without a result")

    async def detect_installation(self) -> InstallationStatus:
        has_api_key = bool(self.get_api_key())
        has_cli = shutil.which("claude") is not None
        return InstallationStatus(
            installed=True,
            method="cli" if has_cli else "sdk",
            has_api_key=has_api_key,
            authenticated=has_api_key or has_cli,
        )

    def available_models(self) -> list[ModelDefinition]:
        return list_models(self.name)

    def _sdk_prompt(self, prompt: Prompt) -> Any:
        if isinstance(prompt, str):
            return prompt

        # Content blocks (images) need the streaming-input form
        async def stream():
            yield {
                "type": "user",
                "message": {"role": "user", "content": prompt},
                "parent_tool_use_id": None,
            }

        return stream()
