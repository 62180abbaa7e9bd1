"""Edit-intent declarations and hot-spot protection."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import pathspec

from crewgate.constants import DEFAULT_HOT_SPOT_PATTERNS, HOT_SPOTS_FILE
from crewgate.errors import EditScopeError
from crewgate.models import EditIntent
from crewgate.tools.base import coerce_command, coerce_file_path
from crewgate.utils.paths import PathGuard, is_within, normalize

logger = logging.getLogger(__name__)

_INTENT_BLOCK = re.compile(r"\[EDIT_INTENT\](.*?)\[/EDIT_INTENT\]", re.DOTALL)
_SUMMARY_PREFIX = re.compile(r"^summary:\s*", re.IGNORECASE)

EDIT_TOOLS = frozenset({"Write", "Edit", "Bash"})


def extract_edit_intent(text: str) -> Optional[EditIntent]:
    """Parse the last complete [EDIT_INTENT] block in ``text``.

    Expected shape::

        [EDIT_INTENT]
        Summary: <1-2 sentences>
        Files:
        - path/to/file
        [/EDIT_INTENT]

    Returns:
        The intent, or None if there is no block or it lacks a summary
    """
    blocks = _INTENT_BLOCK.findall(text)
    if not blocks:
        return None

    lines = [line.strip() for line in blocks[-1].strip().split("\n")]
    lines = [line for line in lines if line]

    summary = ""
    for line in lines:
        if line.lower().startswith("summary:"):
            summary = _SUMMARY_PREFIX.sub("", line).strip()
            break
    if not summary:
        return None

    files = []
    lowered = [line.lower() for line in lines]
    if "files:" in lowered:
        start = lowered.index("files:") + 1
        files = [
            re.sub(r"^-+\s*", "", line).strip()
            for line in lines[start:]
            if line.startswith("-")
        ]

    return EditIntent(summary=summary, files=files)


def load_hot_spot_patterns(project_root: Union[str, Path]) -> list[str]:
    """Read ``- path: <glob>`` entries from the project's hot-spots file.

    Falls back to the built-in list when the file is missing or has no entries.
    """
    hot_spots_path = Path(project_root) / HOT_SPOTS_FILE
    try:
        with open(hot_spots_path, encoding="utf-8") as f:
            data = f.read()
    except OSError:
        return list(DEFAULT_HOT_SPOT_PATTERNS)

    patterns = []
    for line in data.split("\n"):
        line = line.strip()
        if line.startswith("- path:"):
            pattern = line[len("- path:"):].strip().strip("'\"")
            if pattern:
                patterns.append(pattern)
    return patterns or list(DEFAULT_HOT_SPOT_PATTERNS)


class HotSpots:
    """Hot-spot patterns, anchored at the project root.

    Patterns ending in ``**`` cover a subtree; any other pattern names
    exactly one path.
    """

    def __init__(self, project_root: Union[str, Path], patterns: Iterable[str]):
        self.project_root = normalize(project_root)
        subtrees = []
        self.exact = set()
        for pattern in patterns:
            pattern = pattern.replace("\\", "/").lstrip("/")
            if pattern.endswith("**"):
                subtrees.append("/" + pattern)
            else:
                self.exact.add(normalize(os.path.join(self.project_root, pattern)))
        self.spec = pathspec.PathSpec.from_lines("gitwildmatch", subtrees)

    @classmethod
    def load(cls, project_root: Union[str, Path]) -> "HotSpots":
        return cls(project_root, load_hot_spot_patterns(project_root))

    def matches(self, file_path: Union[str, Path]) -> bool:
        resolved = normalize(file_path)
        if not is_within(resolved, self.project_root):
            return False
        if resolved in self.exact:
            return True
        relative = os.path.relpath(resolved, self.project_root).replace(os.sep, "/")
        return self.spec.match_file(relative)


class EditScope:
    """Tracks the file scope a model declared for the current turn.

    Declarations are always validated. Tool calls are only held to the
    declared scope when ``enforce`` is set.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        guard: PathGuard,
        hot_spots: Optional[HotSpots] = None,
        enforce: bool = False,
    ):
        """Initialize the scope.

        Args:
            project_root: Directory relative intent paths resolve against
            guard: Path guard every declared file must pass
            hot_spots: Protected patterns (loaded from the project if None)
            enforce: Hold Write/Edit/Bash calls to the declared files
        """
        self.project_root = normalize(project_root)
        self.guard = guard
        self.hot_spots = hot_spots or HotSpots.load(self.project_root)
        self.enforce_enabled = enforce
        self.summary: Optional[str] = None
        self.approved: Optional[set[str]] = None
        self.touched: set[str] = set()
        self._last_block: Optional[EditIntent] = None

    def observe(self, text: str) -> None:
        """Check the latest intent block in the accumulated assistant text."""
        intent = extract_edit_intent(text)
        if intent is None or intent == self._last_block:
            return
        self.declare(intent)
        self._last_block = intent

    def declare(self, intent: EditIntent) -> None:
        """Validate an intent and make it the current scope.

        Raises:
            EditScopeError: If the intent is empty, leaves the allowed roots,
                or names a hot-spot
        """
        files = [name.strip() for name in intent.files if name.strip()]
        if not files:
            raise EditScopeError("Edit intent must include at least one file")

        resolved = list(dict.fromkeys(self._resolve(name) for name in files))
        for file_path in resolved:
            if not self.guard.is_path_allowed(file_path):
                raise EditScopeError(f"Edit intent includes path outside allowed roots: {file_path}")

        hot = [file_path for file_path in resolved if self.hot_spots.matches(file_path)]
        if hot:
            relative = ", ".join(os.path.relpath(path, self.project_root) for path in hot)
            raise EditScopeError(f"Hot-spot edits require explicit approval: {relative}")

        logger.debug("Edit intent accepted (%d files): %s", len(resolved), intent.summary)
        self.summary = intent.summary
        self.approved = set(resolved)

    def enforce(self, tool_name: str, tool_input: Any) -> None:
        """Hold an edit tool call to the declared scope.

        A no-op unless enforcement is on, and for calls made before any
        declaration.

        Raises:
            EditScopeError: If the call reaches outside the declared files
        """
        if not self.enforce_enabled or tool_name not in EDIT_TOOLS:
            return
        if self.approved is None:
            return

        params = tool_input if isinstance(tool_input, dict) else {}
        if tool_name == "Bash":
            command = coerce_command(params)
            if not command:
                raise EditScopeError("Bash tool invoked without a command")
            if not any(
                path in command or os.path.basename(path) in command for path in self.approved
            ):
                raise EditScopeError("Bash command does not reference approved file scope")
            return

        file_path = coerce_file_path(params)
        if not file_path:
            raise EditScopeError(f"{tool_name} tool invoked without a file path")
        resolved = self._resolve(file_path)
        if resolved not in self.approved:
            raise EditScopeError(f"Edit outside approved scope: {resolved}")
        self.touched.add(resolved)

    def verify(self) -> None:
        """Post-turn check that every touched file was in scope."""
        if not self.enforce_enabled or not self.touched:
            return
        if self.approved is None:
            raise EditScopeError("Edits were made without an approved file scope")
        for file_path in sorted(self.touched):
            if file_path not in self.approved:
                raise EditScopeError(f"Edit scope verification failed for {file_path}")

    def _resolve(self, file_path: str) -> str:
        if os.path.isabs(file_path):
            return normalize(file_path)
        return normalize(os.path.join(self.project_root, file_path))
