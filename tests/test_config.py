"""Tests for configuration, events and the system prompt."""

import json

from crewgate.config import Config
from crewgate.events import EventBus
from crewgate.models import StartedEvent
from crewgate.system_prompt import SystemPromptBuilder


def test_load_pins_project_as_root(test_project, monkeypatch):
    """Test that an unset allow-list never fails open."""
    monkeypatch.delenv("CREWGATE_ALLOWED_ROOTS", raising=False)
    monkeypatch.setenv("CREWGATE_ENFORCE_EDIT_SCOPE", "true")

    config = Config.load(test_project)

    assert config.allowed_roots == [str(test_project)]
    assert config.enforce_edit_scope


def test_project_config_overrides(test_project):
    config_dir = test_project / ".crewgate"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({
        "allowed_tools": ["Read", "Grep"],
        "providers": {"openai": {"base_url": "http://localhost:8000/v1", "headers": {"X-A": "1"}}},
    }))

    config = Config.load(test_project)
    providers = config.provider_configs()

    assert config.allowed_tools == ["Read", "Grep"]
    assert providers.openai.base_url == "http://localhost:8000/v1"
    assert providers.openai.headers == {"X-A": "1"}


def test_invalid_project_config_is_ignored(test_project):
    config_dir = test_project / ".crewgate"
    config_dir.mkdir()
    (config_dir / "config.json").write_text("{oops")

    config = Config.load(test_project)

    assert "Bash" in config.allowed_tools


def test_validate(config):
    assert config.validate() == []

    config.max_turns = 0
    config.allowed_roots = []

    errors = config.validate()
    assert "max_turns must be positive" in errors
    assert "At least one allowed root is required" in errors


def test_event_bus_isolates_broken_subscribers():
    bus = EventBus()
    received = []

    def broken(session_id, event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(lambda session_id, event: received.append((session_id, event.type)))

    bus.emit("s1", StartedEvent())
    unsubscribe()
    bus.emit("s1", StartedEvent())

    assert received == [("s1", "started")]


def test_system_prompt_without_context(test_project):
    prompt = SystemPromptBuilder(test_project).build()

    assert prompt.startswith("You are an AI assistant")
    assert "[EDIT_INTENT]" in prompt
    assert "no more than 25 entries" in prompt


def test_system_prompt_prepends_context_files(test_project):
    (test_project / "CLAUDE.md").write_text("Use tabs.\n")
    (test_project / "AGENTS.md").write_text("Run make test.\n")

    prompt = SystemPromptBuilder(test_project).build()

    assert prompt.startswith(
        "# Project Context\n\n## CLAUDE.md\n\nUse tabs.\n\n---\n\n## AGENTS.md\n\nRun make test."
    )
    assert SystemPromptBuilder(test_project, auto_load_context=False).build().startswith("You are")
