"""Tests for the chat-completions backends and their local tool loop."""

import json

import pytest

from crewgate.config import ProviderConfig
from crewgate.errors import ConfigurationError, ProviderError, TurnAborted, TurnBudgetExceeded
from crewgate.models import (
    Message,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    TurnCompleteEvent,
)
from crewgate.providers.base import ExecuteOptions
from crewgate.providers.openai_compat import (
    OpenAIProvider,
    OpenRouterProvider,
    ToolCallAccumulator,
    safe_parse_tool_arguments,
)


def _options(test_project, sandbox=None, **overrides) -> ExecuteOptions:
    values = {"prompt": "list files", "model": "gpt-4o", "cwd": str(test_project), "sandbox": sandbox}
    values.update(overrides)
    return ExecuteOptions(**values)


async def _collect(provider, options) -> list:
    return [event async for event in provider.execute_query(options)]


def test_accumulator_joins_interleaved_fragments():
    accumulator = ToolCallAccumulator()
    accumulator.add({"index": 1, "id": "b", "function": {"name": "Grep", "arguments": '{"pat'}})
    accumulator.add({"index": 0, "id": "a", "function": {"name": "Glob"}})
    accumulator.add({"index": 1, "function": {"arguments": 'tern": "x"}'}})
    accumulator.add({"index": 2, "function": {"arguments": "{}"}})

    calls = accumulator.finalize()

    assert [(call.id, call.name, call.arguments) for call in calls] == [
        ("a", "Glob", ""),
        ("b", "Grep", '{"pattern": "x"}'),
    ]


def test_safe_parse_tool_arguments():
    assert safe_parse_tool_arguments("") == {}
    assert safe_parse_tool_arguments('{"a": 1}') == {"a": 1}
    assert safe_parse_tool_arguments("{broken") == {"raw": "{broken"}


@pytest.mark.asyncio
async def test_text_only_turn(backend, test_project):
    backend.reply(backend.text("Hel"), backend.text("lo"), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    events = await _collect(provider, _options(test_project))

    assert [event.type for event in events] == ["text-delta", "text-delta", "turn-complete"]
    assert [event.content for event in events[:2]] == ["Hel", "Hello"]
    assert events[-1].content == "Hello"
    assert events[-1].tool_uses == []


@pytest.mark.asyncio
async def test_request_shape(backend, test_project, monkeypatch):
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
    backend.reply(backend.text("ok"), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="secret"), transport=backend.transport)
    history = [Message(role="user", content="earlier"), Message(role="assistant", content="reply")]

    await _collect(
        provider,
        _options(test_project, system_prompt="be brief", conversation_history=history),
    )

    request = backend.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    payload = backend.payload(0)
    assert payload["stream"] is True
    assert "tools" not in payload
    assert [(m["role"], m["content"]) for m in payload["messages"]] == [
        ("system", "be brief"),
        ("user", "earlier"),
        ("assistant", "reply"),
        ("user", "list files"),
    ]


@pytest.mark.asyncio
async def test_image_prompt_becomes_data_url(backend, test_project):
    backend.reply(backend.text("a cat"), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)
    prompt = [
        {"type": "text", "text": "what is this"},
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}},
    ]

    await _collect(provider, _options(test_project, prompt=prompt))

    content = backend.payload(0)["messages"][-1]["content"]
    assert content == [
        {"type": "text", "text": "what is this"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
    ]


@pytest.mark.asyncio
async def test_tool_loop_with_out_of_order_fragments(backend, sandbox, test_project):
    """Test that interleaved fragments become calls ordered by slot index."""
    backend.reply(
        backend.tool(1, "call_b", "Grep", '{"pattern":'),
        backend.tool(0, "call_a", "Glob", '{"pattern": "*.md"}'),
        backend.tool(1, arguments=' "hello"}'),
        backend.finish("tool_calls"),
    )
    backend.reply(backend.text("Found 2 files."), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    events = await _collect(provider, _options(test_project, sandbox=sandbox))

    assert [event.type for event in events] == [
        "tool-call",
        "tool-call",
        "tool-result",
        "tool-result",
        "text-delta",
        "turn-complete",
    ]
    assert [(event.call_id, event.name) for event in events[:2]] == [
        ("call_a", "Glob"),
        ("call_b", "Grep"),
    ]
    assert events[1].input == {"pattern": "hello"}
    assert events[2].content == "CHANGELOG.md\nREADME.md"
    assert events[-1].content == "Found 2 files."
    assert [use.name for use in events[-1].tool_uses] == ["Glob", "Grep"]

    followup = backend.payload(1)["messages"]
    assistant, first_result, second_result = followup[-3:]
    assert [call["id"] for call in assistant["tool_calls"]] == ["call_a", "call_b"]
    assert assistant["tool_calls"][1]["function"]["arguments"] == '{"pattern": "hello"}'
    assert first_result == {"role": "tool", "tool_call_id": "call_a", "content": "CHANGELOG.md\nREADME.md"}
    assert second_result["tool_call_id"] == "call_b"
    assert [tool["function"]["name"] for tool in backend.payload(0)["tools"]] == [
        "Read", "Write", "Edit", "Glob", "Grep", "Bash", "WebFetch",
    ]


@pytest.mark.asyncio
async def test_turn_complete_is_final_and_unique(backend, sandbox, test_project):
    backend.reply(backend.text("Let me look. "), backend.tool(0, "c1", "Glob", "{}"), backend.finish("tool_calls"))
    backend.reply(backend.text("Done."), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    events = await _collect(provider, _options(test_project, sandbox=sandbox))

    completes = [event for event in events if isinstance(event, TurnCompleteEvent)]
    assert len(completes) == 1
    assert events[-1] is completes[0]
    assert completes[0].content == "Done."
    deltas = [event for event in events if isinstance(event, TextDeltaEvent)]
    assert deltas[-1].content == "Let me look. Done."


@pytest.mark.asyncio
async def test_without_sandbox_tools_are_unavailable(backend, test_project):
    backend.reply(backend.tool(0, "c1", "Bash", '{"command": "ls"}'), backend.finish("tool_calls"))
    backend.reply(backend.text("ok"), backend.finish())
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    events = await _collect(provider, _options(test_project))

    result = next(event for event in events if isinstance(event, ToolResultEvent))
    assert result.is_error
    assert result.content == 'Tool "Bash" is not available.'


@pytest.mark.asyncio
async def test_turn_budget_exceeded(backend, sandbox, test_project):
    backend.reply(backend.tool(0, "c1", "Glob", "{}"), backend.finish("tool_calls"))
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    with pytest.raises(TurnBudgetExceeded) as exc_info:
        await _collect(provider, _options(test_project, sandbox=sandbox, max_turns=1))

    assert str(exc_info.value) == "Tool loop exceeded max_turns (1)."


@pytest.mark.asyncio
async def test_error_status_raises(backend, test_project):
    backend.fail(401, '{"error": "bad key"}')
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    with pytest.raises(ProviderError) as exc_info:
        await _collect(provider, _options(test_project))

    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == 'OpenAI request failed: 401 Unauthorized - {"error": "bad key"}'


@pytest.mark.asyncio
async def test_missing_api_key(backend, test_project, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIProvider(ProviderConfig(), transport=backend.transport)

    with pytest.raises(ConfigurationError, match="OpenAI API key not configured."):
        await _collect(provider, _options(test_project))
    assert backend.requests == []


@pytest.mark.asyncio
async def test_malformed_chunks_are_skipped(backend, test_project):
    backend.responses.append(
        (200, b'data: {not json}\n\n: keep-alive\n\ndata: ' + json.dumps(backend.text("ok")).encode() + b"\n\ndata: [DONE]\n\n")
    )
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    events = await _collect(provider, _options(test_project))

    assert events[-1].content == "ok"


@pytest.mark.asyncio
async def test_cancelled_before_request(backend, test_project):
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)
    options = _options(test_project)
    options.cancel.cancel()

    with pytest.raises(TurnAborted):
        await _collect(provider, options)


@pytest.mark.asyncio
async def test_openrouter_request(backend, test_project, monkeypatch):
    monkeypatch.delenv("OPENROUTER_BASE_URL", raising=False)
    monkeypatch.setenv("OPENROUTER_TITLE", "crewgate tests")
    backend.reply(backend.text("hi"), backend.finish())
    provider = OpenRouterProvider(ProviderConfig(api_key="router-key"), transport=backend.transport)

    await _collect(provider, _options(test_project, model="openrouter/anthropic/claude-3.5-sonnet"))

    request = backend.requests[0]
    assert str(request.url) == "https://openrouter.ai/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer router-key"
    assert request.headers["X-Title"] == "crewgate tests"
    assert backend.payload(0)["model"] == "anthropic/claude-3.5-sonnet"


@pytest.mark.asyncio
async def test_tool_call_event_precedes_execution(backend, sandbox, test_project):
    """Test that closing the stream at a tool-call event prevents the tool from running."""
    backend.reply(
        backend.tool(0, "c1", "Write", '{"file_path": "blocked.txt", "content": "x"}'),
        backend.finish("tool_calls"),
    )
    provider = OpenAIProvider(ProviderConfig(api_key="k"), transport=backend.transport)

    stream = provider.execute_query(_options(test_project, sandbox=sandbox))
    event = await stream.__anext__()
    await stream.aclose()

    assert isinstance(event, ToolCallEvent)
    assert not (test_project / "blocked.txt").exists()
