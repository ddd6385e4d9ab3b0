"""Discover local packages under the packages root."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from monorepo_runner.errors import ManifestIOError, PathNotFoundError
from monorepo_runner.workspace.manifest import DEPENDENCY_FIELDS, read_manifest
from monorepo_runner.workspace.models import MANIFEST_FILENAME, Package, PackageGraph

logger = logging.getLogger(__name__)


def discover_packages(root: Path) -> PackageGraph:
    """Load every package directly under ``root`` (and under ``@scope`` folders)."""

    if not root.is_dir():
        raise PathNotFoundError(root)

    manifests: list[tuple[Path, dict[str, Any]]] = []
    for directory in _package_directories(root):
        manifests.append((directory, read_manifest(directory / MANIFEST_FILENAME)))

    names = {_package_name(directory, manifest) for directory, manifest in manifests}
    packages = [
        _build_package(directory=directory, manifest=manifest, known_names=names)
        for directory, manifest in manifests
    ]
    graph = PackageGraph(packages)
    logger.debug("Discovered %d packages under %s", len(graph), root)
    return graph


def _package_directories(root: Path) -> list[Path]:
    found: list[Path] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        if (entry / MANIFEST_FILENAME).is_file():
            found.append(entry)
        elif entry.name.startswith("@"):
            found.extend(
                scoped
                for scoped in sorted(entry.iterdir())
                if scoped.is_dir() and (scoped / MANIFEST_FILENAME).is_file()
            )
    return found


def _package_name(directory: Path, manifest: dict[str, Any]) -> str:
    name = manifest.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    if directory.parent.name.startswith("@"):
        return f"{directory.parent.name}/{directory.name}"
    return directory.name


def _build_package(
    *,
    directory: Path,
    manifest: dict[str, Any],
    known_names: set[str],
) -> Package:
    name = _package_name(directory, manifest)
    scripts = manifest.get("scripts") or {}
    if not isinstance(scripts, dict):
        raise ManifestIOError(directory / MANIFEST_FILENAME, "'scripts' must be an object")

    local_dependencies: set[str] = set()
    for key in DEPENDENCY_FIELDS:
        entries = manifest.get(key) or {}
        if not isinstance(entries, dict):
            raise ManifestIOError(directory / MANIFEST_FILENAME, f"{key!r} must be an object")
        local_dependencies.update(dep for dep in entries if dep in known_names and dep != name)

    version = manifest.get("version")
    return Package(
        name=name,
        path=directory,
        version=version if isinstance(version, str) else None,
        scripts={str(key): str(value) for key, value in scripts.items()},
        local_dependencies=frozenset(local_dependencies),
    )
