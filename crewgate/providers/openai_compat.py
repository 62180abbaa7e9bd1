"""OpenAI-compatible chat-completions backends with a local tool loop."""

import asyncio
import json
import logging
import os
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx

from crewgate.config import ProviderConfig
from crewgate.constants import DEFAULT_REQUEST_TIMEOUT_MS, OPENAI_BASE_URL, OPENROUTER_BASE_URL
from crewgate.errors import ConfigurationError, ProviderError, TurnBudgetExceeded
from crewgate.models import (
    InstallationStatus,
    ModelDefinition,
    StreamEvent,
    TextDeltaEvent,
    ToolCall,
    ToolCallEvent,
    ToolResult,
    ToolResultEvent,
    ToolUse,
    TurnCompleteEvent,
)
from crewgate.providers.base import BaseProvider, ExecuteOptions, Prompt
from crewgate.providers.routing import list_models
from crewgate.tools.base import ToolContext
from crewgate.utils.cancel import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class _PendingCall:
    """Partial state for one tool-call slot while the stream is open."""

    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Collects tool-call fragments by slot index.

    Fragments for different slots may interleave in any order. Nothing is
    exposed until :meth:`finalize`, which yields immutable calls.
    """

    def __init__(self) -> None:
        self._slots: dict[int, _PendingCall] = {}

    def add(self, fragment: dict) -> None:
        index = fragment.get("index") or 0
        pending = self._slots.setdefault(index, _PendingCall())
        if fragment.get("id"):
            pending.id = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            pending.name = function["name"]
        if function.get("arguments"):
            pending.arguments += function["arguments"]

    def finalize(self) -> list[ToolCall]:
        """Complete calls ordered by slot index; slots missing an id or name are dropped."""
        return [
            ToolCall(id=pending.id, name=pending.name, arguments=pending.arguments)
            for _, pending in sorted(self._slots.items())
            if pending.id and pending.name
        ]


def safe_parse_tool_arguments(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}


class OpenAIProvider(BaseProvider):
    """Chat-completions backend. Tools run locally through the sandbox."""

    name = "openai"
    label = "OpenAI"
    default_base_url = OPENAI_BASE_URL

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the provider.

        Args:
            config: Key, base URL, headers and timeout overrides
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        super().__init__(config)
        self.transport = transport

    def get_api_key(self) -> Optional[str]:
        return self.config.api_key or os.getenv("OPENAI_API_KEY")

    def get_base_url(self) -> str:
        return self.config.base_url or os.getenv("OPENAI_BASE_URL") or self.default_base_url

    def get_headers(self) -> dict[str, str]:
        return dict(self.config.headers)

    def get_request_timeout_ms(self) -> int:
        return self.config.timeout_ms or DEFAULT_REQUEST_TIMEOUT_MS

    def resolve_model(self, model: str) -> str:
        return model

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[StreamEvent]:
        api_key = self.get_api_key()
        if not api_key:
            raise ConfigurationError(f"{self.label} API key not configured.")

        messages: list[dict] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        for entry in options.conversation_history:
            messages.append({"role": entry.role, "content": entry.content})
        messages.append({"role": "user", "content": self._build_user_content(options.prompt)})

        sandbox = options.sandbox
        tools = (
            [tool.to_openai() for tool in sandbox.definitions(options.allowed_tools)]
            if sandbox is not None
            else []
        )
        context = ToolContext(cwd=options.cwd, cancel=options.cancel)
        model = self.resolve_model(options.model)
        turn_text = ""
        tool_uses: list[ToolUse] = []

        for _ in range(options.max_turns):
            accumulator = ToolCallAccumulator()
            finish_reason = None
            assistant_text = ""

            chunks = self._chat_completion_chunks(api_key, model, messages, tools, options.cancel)
            async with aclosing(chunks):
                async for chunk in chunks:
                    choices = chunk.get("choices") or []
                    choice = choices[0] if choices else None
                    if not isinstance(choice, dict) or not isinstance(choice.get("delta"), dict):
                        continue
                    delta = choice["delta"]

                    if delta.get("content"):
                        assistant_text += delta["content"]
                        turn_text += delta["content"]
                        yield TextDeltaEvent(delta=delta["content"], content=turn_text)

                    for fragment in delta.get("tool_calls") or []:
                        accumulator.add(fragment)

                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

            calls = accumulator.finalize()
            if not calls:
                if finish_reason and finish_reason != "stop":
                    logger.warning("%s stream finished with reason: %s", self.label, finish_reason)
                yield TurnCompleteEvent(content=assistant_text, tool_uses=tool_uses)
                return

            for call in calls:
                tool_input = safe_parse_tool_arguments(call.arguments)
                tool_uses.append(ToolUse(name=call.name, input=tool_input))
                yield ToolCallEvent(call_id=call.id, name=call.name, input=tool_input)

            messages.append({
                "role": "assistant",
                "content": assistant_text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in calls
                ],
            })

            if sandbox is not None:
                results = await sandbox.execute(calls, context, options.allowed_tools)
            else:
                results = [
                    ToolResult(
                        id=call.id,
                        name=call.name,
                        content=f'Tool "{call.name}" is not available.',
                        is_error=True,
                    )
                    for call in calls
                ]

            for result in results:
                messages.append({"role": "tool", "tool_call_id": result.id, "content": result.content})
                yield ToolResultEvent(call_id=result.id, content=result.content, is_error=result.is_error)

        raise TurnBudgetExceeded(options.max_turns)

    async def detect_installation(self) -> InstallationStatus:
        has_api_key = bool(self.get_api_key())
        return InstallationStatus(
            installed=True, method="sdk", has_api_key=has_api_key, authenticated=has_api_key
        )

    def available_models(self) -> list[ModelDefinition]:
        return list_models(self.name)

    def _build_user_content(self, prompt: Prompt) -> Any:
        if isinstance(prompt, str):
            return prompt

        parts = []
        for block in prompt:
            if block.get("type") == "text" and block.get("text"):
                parts.append({"type": "text", "text": block["text"]})
            elif block.get("type") == "image":
                source = block.get("source") or {}
                if source.get("type") == "base64" and source.get("media_type") and source.get("data"):
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": f"data:{source['media_type']};base64,{source['data']}"},
                    })
        return parts or ""

    async def _chat_completion_chunks(
        self,
        api_key: str,
        model: str,
        messages: list[dict],
        tools: list[dict],
        cancel: CancellationToken,
    ) -> AsyncIterator[dict]:
        """POST one streaming request and yield parsed SSE chunks.

        Raises:
            ProviderError: On timeout or a non-2xx response
            TurnAborted: If cancelled while waiting on the backend
        """
        url = f"{self.get_base_url().rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **self.get_headers(),
        }
        payload: dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        if tools:
            payload["tools"] = tools
        timeout_ms = self.get_request_timeout_ms()

        async with httpx.AsyncClient(transport=self.transport, timeout=None) as client:
            request = client.build_request("POST", url, headers=headers, json=payload)
            try:
                response = await cancel.run(client.send(request, stream=True), timeout=timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise ProviderError(f"{self.label} request timed out after {timeout_ms}ms") from None
            except httpx.HTTPError as e:
                raise ProviderError(f"{self.label} request failed: {e}") from e

            try:
                if not response.is_success:
                    detail = f"{response.status_code} {response.reason_phrase}"
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    if body:
                        detail += f" - {body}"
                    raise ProviderError(
                        f"{self.label} request failed: {detail}", status_code=response.status_code
                    )

                async for line in cancel.iterate(response.aiter_lines()):
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        return
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed stream chunk: %s", data[:200])
                        continue
                    if isinstance(chunk, dict):
                        yield chunk
            finally:
                await response.aclose()


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter: the OpenAI protocol with its own key, URL and attribution headers."""

    name = "openrouter"
    label = "OpenRouter"
    default_base_url = OPENROUTER_BASE_URL

    def get_api_key(self) -> Optional[str]:
        return self.config.api_key or os.getenv("OPENROUTER_API_KEY")

    def get_base_url(self) -> str:
        return self.config.base_url or os.getenv("OPENROUTER_BASE_URL") or self.default_base_url

    def get_headers(self) -> dict[str, str]:
        headers = dict(self.config.headers)
        referer = os.getenv("OPENROUTER_REFERER")
        title = os.getenv("OPENROUTER_TITLE")
        if referer and "HTTP-Referer" not in headers:
            headers["HTTP-Referer"] = referer
        if title and "X-Title" not in headers:
            headers["X-Title"] = title
        return headers

    def resolve_model(self, model: str) -> str:
        # "openrouter/auto" is itself an OpenRouter model id
        if model.startswith("openrouter/") and model != "openrouter/auto":
            return model[len("openrouter/"):]
        return model
