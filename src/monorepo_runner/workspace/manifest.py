"""Package manifest IO and the reversible hiding of local dependencies.

A package manager asked to install a package whose manifest names another
monorepo package would try to fetch that name from the registry instead of
using the linked local copy. ``mangle`` removes such entries from
``dependencies`` and ``devDependencies`` for the duration of the external
command and returns a record of exactly what it removed; ``unmangle`` puts the
removed entries back and leaves both fields sorted by name.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from monorepo_runner.errors import ManifestIOError

logger = logging.getLogger(__name__)

DEPENDENCY_FIELDS = ("dependencies", "devDependencies")


@dataclass(slots=True)
class MangleRecord:
    """Entries removed from one manifest, keyed by the field they came from."""

    removed: dict[str, dict[str, str]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(self.removed.values())

    def names(self) -> set[str]:
        return {name for entries in self.removed.values() for name in entries}


def read_manifest(path: Path) -> dict[str, Any]:
    """Load a manifest and validate the top-level object type."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except OSError as error:
        raise ManifestIOError(path, f"cannot read manifest: {error}") from error
    except ValueError as error:
        raise ManifestIOError(path, f"invalid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ManifestIOError(path, "expected a JSON object")
    return payload


def write_manifest(path: Path, payload: dict[str, Any]) -> None:
    """Write a manifest pretty-printed, replacing the file atomically."""

    text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
    try:
        fd, temp_path = tempfile.mkstemp(prefix=".package-json-", dir=str(path.parent))
    except OSError as error:
        raise ManifestIOError(path, f"cannot write manifest: {error}") from error
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        _copy_mode(path, Path(temp_path))
        os.replace(temp_path, path)
    except OSError as error:
        raise ManifestIOError(path, f"cannot write manifest: {error}") from error
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)


def mangle(manifest_path: Path, excluded_names: Collection[str]) -> MangleRecord:
    """Remove dependency entries naming local packages and persist the result."""

    manifest = read_manifest(manifest_path)
    record = MangleRecord()
    for key in DEPENDENCY_FIELDS:
        entries = manifest.get(key)
        if not isinstance(entries, dict):
            continue
        removed: dict[str, str] = {}
        for name in list(entries):
            if name in excluded_names:
                removed[name] = entries.pop(name)
        record.removed[key] = removed

    write_manifest(manifest_path, manifest)
    if not record.is_empty():
        logger.debug(
            "Hid local dependencies in %s: %s",
            manifest_path,
            ", ".join(sorted(record.names())),
        )
    return record


def unmangle(manifest_path: Path, record: MangleRecord) -> None:
    """Restore removed entries and alphabetize both dependency fields.

    The manifest is re-read from disk because the external command may have
    rewritten it. Removed entries only fill in keys that are missing, so a
    value the package manager wrote for the same key is kept.
    """

    manifest = read_manifest(manifest_path)
    for key, removed in record.removed.items():
        if not removed:
            continue
        entries = manifest.get(key)
        if not isinstance(entries, dict):
            entries = {}
            manifest[key] = entries
        for name, version in removed.items():
            entries.setdefault(name, version)

    for key in DEPENDENCY_FIELDS:
        entries = manifest.get(key)
        if isinstance(entries, dict):
            manifest[key] = {name: entries[name] for name in sorted(entries)}

    write_manifest(manifest_path, manifest)


@contextmanager
def manifest_guard(manifest_path: Path, excluded_names: Collection[str]) -> Iterator[MangleRecord]:
    """Hide local dependencies for the duration of the block."""

    record = mangle(manifest_path, excluded_names)
    try:
        yield record
    finally:
        unmangle(manifest_path, record)


def _copy_mode(source: Path, target: Path) -> None:
    try:
        mode = source.stat().st_mode & 0o777
    except FileNotFoundError:
        return
    os.chmod(target, mode)
