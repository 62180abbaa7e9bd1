"""Pytest configuration and fixtures."""

import json
import tempfile
from pathlib import Path

import httpx
import pytest

from crewgate.config import Config
from crewgate.tools.base import ToolContext
from crewgate.tools.sandbox import ToolSandbox
from crewgate.utils.paths import PathGuard


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_project(temp_dir):
    """Create a test project structure."""
    project = temp_dir / "project"
    project.mkdir()

    (project / "src").mkdir()
    (project / "src" / "main.py").write_text("def hello():\n    return 'world'\n")
    (project / "src" / "utils.py").write_text("def add(a, b):\n    return a + b\n")

    (project / "tests").mkdir()
    (project / "tests" / "test_main.py").write_text(
        "def test_hello():\n    from src.main import hello\n    assert hello() == 'world'\n"
    )

    (project / "node_modules" / "dep").mkdir(parents=True)
    (project / "node_modules" / "dep" / "index.md").write_text("# ignored\n")

    (project / "README.md").write_text("# Test Project\n")
    (project / "CHANGELOG.md").write_text("## 0.1.0\n")

    yield project


@pytest.fixture
def data_dir(temp_dir):
    return temp_dir / "data"


@pytest.fixture
def guard(test_project, data_dir):
    return PathGuard([test_project], data_dir)


@pytest.fixture
def config(test_project, data_dir):
    """Configuration pinned to the test project."""
    return Config(
        openai_api_key="test-key",
        openrouter_api_key="test-router-key",
        allowed_roots=[str(test_project)],
        data_dir=str(data_dir),
        default_model="gpt-4o",
        bash_timeout_ms=10_000,
    )


@pytest.fixture
def sandbox(guard, config):
    return ToolSandbox(guard, config)


@pytest.fixture
def context(test_project):
    return ToolContext(cwd=str(test_project))


class ScriptedBackend:
    """Chat-completions endpoint that replays scripted SSE responses."""

    def __init__(self):
        self.responses: list[tuple[int, bytes]] = []
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def reply(self, *chunks: dict) -> None:
        body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
        self.responses.append((200, (body + "data: [DONE]\n\n").encode()))

    def fail(self, status: int, body: str) -> None:
        self.responses.append((status, body.encode()))

    def payload(self, index: int) -> dict:
        return json.loads(self.requests[index].content)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(500, text="no scripted response")
        status, body = self.responses.pop(0)
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})

    @staticmethod
    def text(content: str) -> dict:
        return {"choices": [{"index": 0, "delta": {"content": content}}]}

    @staticmethod
    def tool(index: int, call_id: str = None, name: str = None, arguments: str = None) -> dict:
        function = {}
        if name:
            function["name"] = name
        if arguments:
            function["arguments"] = arguments
        fragment = {"index": index, "function": function}
        if call_id:
            fragment["id"] = call_id
        return {"choices": [{"index": 0, "delta": {"tool_calls": [fragment]}}]}

    @staticmethod
    def finish(reason: str = "stop") -> dict:
        return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


@pytest.fixture
def backend():
    """Scripted OpenAI-compatible backend served through httpx.MockTransport."""
    return ScriptedBackend()
