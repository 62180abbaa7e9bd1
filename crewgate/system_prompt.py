"""System prompt builder for delegated coding turns."""

import logging
from pathlib import Path
from typing import Optional, Union

from crewgate.constants import CONTEXT_FILES, MAX_APPROVED_FILES

logger = logging.getLogger(__name__)


class SystemPromptBuilder:
    """Builds the system prompt: project context files, then the base prompt."""

    def __init__(self, project_root: Union[str, Path], auto_load_context: bool = True):
        """Initialize system prompt builder.

        Args:
            project_root: Working directory of the conversation
            auto_load_context: Prepend CLAUDE.md / AGENTS.md / CODE_QUALITY.md if present
        """
        self.project_root = Path(project_root)
        self.auto_load_context = auto_load_context

    def build(self) -> str:
        base = self.build_base_prompt()
        context = self.load_context_files() if self.auto_load_context else None
        return f"{context}\n\n{base}" if context else base

    def build_base_prompt(self) -> str:
        """Build core identity, capabilities and edit protocol."""
        return "\n\n".join([self._build_core_identity(), self._build_edit_protocol()])

    def load_context_files(self) -> Optional[str]:
        """Concatenate project context files that exist.

        Returns:
            Combined context section, or None if there are none
        """
        sections = []
        for name in CONTEXT_FILES:
            path = self.project_root / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping context file %s: %s", path, e)
                continue
            if content:
                sections.append(f"## {name}\n\n{content}")

        if not sections:
            return None

        return "# Project Context\n\n" + "\n\n---\n\n".join(sections)

    def _build_core_identity(self) -> str:
        return """You are an AI assistant helping users build software. You work inside the
user's project directory and can read, write and edit files, search the codebase,
run shell commands and fetch URLs through the tools you are given.

Your role is to:
- Help users define requirements and suggest technical approaches
- Write, edit, and modify code files as requested
- Execute commands and tests
- Search and analyze the codebase

Only operate on files inside the project. Keep answers concise and technical."""

    def _build_edit_protocol(self) -> str:
        return f"""Edit guardrails:
Before making any file edits, output an intent summary in this exact format:

[EDIT_INTENT]
Summary: <1-2 sentences>
Files:
- path/to/file-1
- path/to/file-2
[/EDIT_INTENT]

Rules:
- The Files list must be bounded (no more than {MAX_APPROVED_FILES} entries).
- Only edit files listed in the intent summary.
- If you need to change the file list, emit a new [EDIT_INTENT] block first."""
