"""Error taxonomy shared by the CLI, workspace and runner layers."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class MonorepoRunnerError(RuntimeError):
    """Base class for errors that abort a command before or outside scheduling."""


class InvalidArgumentError(MonorepoRunnerError, ValueError):
    """Malformed user input, for example a non-positive concurrency limit."""


class InvalidPatternError(InvalidArgumentError):
    """Include/exclude filter that is not a valid regular expression."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid package filter {pattern!r}: {reason}")
        self.pattern = pattern


class PathNotFoundError(MonorepoRunnerError):
    """Packages root directory does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Packages root not found: {path}")
        self.path = path


class ManifestIOError(MonorepoRunnerError):
    """Package manifest could not be read, parsed or written."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class InvalidGraphError(MonorepoRunnerError):
    """Local dependency graph cannot be scheduled (cycles, duplicate names)."""

    def __init__(self, message: str, names: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.names = tuple(sorted(names))
