"""Path validation against the configured allowed roots."""

import os
from pathlib import Path
from typing import Iterable, Union

from crewgate.errors import PathNotAllowedError

PathLike = Union[str, Path]


def normalize(path: PathLike) -> str:
    """Lexically normalize a path to absolute form.

    Resolves ``.`` and ``..`` without touching the filesystem, so symlinks
    are never followed.
    """
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def is_within(path: PathLike, root: PathLike) -> bool:
    """Check whether ``path`` equals or descends from ``root`` (both normalized)."""
    target = normalize(path)
    base = normalize(root)
    try:
        return os.path.commonpath([target, base]) == base
    except ValueError:
        # Different drives on Windows
        return False


class PathGuard:
    """Validates candidate paths against allowed roots and the data directory."""

    def __init__(self, allowed_roots: Iterable[PathLike], data_dir: PathLike | None = None):
        """Initialize the guard.

        Args:
            allowed_roots: Directory trees the tools may operate in
            data_dir: Application data directory, always allowed
        """
        self.allowed_roots = [normalize(root) for root in allowed_roots]
        self.data_dir = normalize(data_dir) if data_dir is not None else None

    def validate(self, path: PathLike) -> str:
        """Validate a path.

        Args:
            path: Absolute or cwd-relative path

        Returns:
            The normalized absolute path

        Raises:
            PathNotAllowedError: If the path is outside every allowed root
        """
        if not self.is_path_allowed(path):
            raise PathNotAllowedError(str(path))
        return normalize(path)

    def is_path_allowed(self, path: PathLike) -> bool:
        """Non-raising variant of validate()."""
        if not os.fspath(path):
            return False
        roots = list(self.allowed_roots)
        if self.data_dir:
            roots.append(self.data_dir)
        return any(is_within(path, root) for root in roots)

    def resolve(self, cwd: PathLike, path: PathLike) -> str:
        """Resolve a possibly relative path against cwd, then validate it."""
        candidate = path if os.path.isabs(path) else os.path.join(cwd, path)
        return self.validate(candidate)
