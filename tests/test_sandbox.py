"""Tests for the tool catalog and dispatcher."""

import json

import pytest

from crewgate.errors import TurnAborted
from crewgate.models import ToolCall


def _call(call_id: str, name: str, arguments) -> ToolCall:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCall(id=call_id, name=name, arguments=raw)


def test_definitions_in_catalog_order(sandbox):
    names = [tool.name for tool in sandbox.definitions()]

    assert names == ["Read", "Write", "Edit", "Glob", "Grep", "Bash", "WebFetch"]


def test_definitions_filtered(sandbox):
    names = [tool.name for tool in sandbox.definitions(["Grep", "Read"])]

    assert names == ["Read", "Grep"]


def test_openai_rendering(sandbox):
    rendered = sandbox.definitions(["Glob"])[0].to_openai()

    assert rendered["type"] == "function"
    assert rendered["function"]["name"] == "Glob"
    assert rendered["function"]["parameters"]["type"] == "object"


@pytest.mark.asyncio
async def test_unknown_tool(sandbox, context):
    results = await sandbox.execute([_call("c1", "Nope", {})], context)

    assert results[0].is_error
    assert results[0].content == 'Tool "Nope" is not available.'


@pytest.mark.asyncio
async def test_tool_not_in_allowed_set(sandbox, context):
    results = await sandbox.execute([_call("c1", "Bash", {"command": "ls"})], context, allowed=["Read"])

    assert results[0].content == 'Tool "Bash" is not available.'


@pytest.mark.asyncio
async def test_malformed_arguments(sandbox, context):
    results = await sandbox.execute([_call("c1", "Glob", '{"pattern": ')], context)

    assert results[0].is_error
    assert results[0].content.startswith("Failed to parse tool arguments:")


@pytest.mark.asyncio
async def test_non_object_arguments(sandbox, context):
    results = await sandbox.execute([_call("c1", "Glob", "[1, 2]")], context)

    assert results[0].content == "Glob tool input must be an object."


@pytest.mark.asyncio
async def test_calls_run_sequentially_in_order(sandbox, context, test_project):
    """Test that a later call observes the effect of an earlier one."""
    calls = [
        _call("c1", "Write", {"file_path": "notes.txt", "content": "first"}),
        _call("c2", "Read", {"file_path": "notes.txt"}),
        _call("c3", "Nope", {}),
    ]

    results = await sandbox.execute(calls, context)

    assert [result.id for result in results] == ["c1", "c2", "c3"]
    assert results[1].content == "first"
    assert [result.is_error for result in results] == [False, False, True]


@pytest.mark.asyncio
async def test_cancelled_turn_runs_nothing(sandbox, context, test_project):
    context.cancel.cancel()

    with pytest.raises(TurnAborted):
        await sandbox.execute(
            [_call("c1", "Write", {"file_path": "never.txt", "content": "x"})], context
        )

    assert not (test_project / "never.txt").exists()


@pytest.mark.asyncio
async def test_tool_exception_becomes_result(sandbox, context, monkeypatch):
    async def explode(params, context):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(sandbox._tools["Read"], "execute", explode)

    results = await sandbox.execute([_call("c1", "Read", {"file_path": "x"})], context)

    assert results[0].is_error
    assert results[0].content == 'Tool "Read" failed: disk on fire'
