"""Symlink local packages into each other's ``node_modules``."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from monorepo_runner.workspace.models import Package, PackageGraph

logger = logging.getLogger(__name__)

NODE_MODULES = "node_modules"


def link_package(package: Package, graph: PackageGraph) -> list[Path]:
    """Point ``node_modules/<dep>`` at each local dependency's directory."""

    links: list[Path] = []
    for dependency_name in sorted(package.local_dependencies):
        dependency = graph[dependency_name]
        link_path = package.path / NODE_MODULES / Path(*dependency_name.split("/"))
        link_path.parent.mkdir(parents=True, exist_ok=True)
        _remove_existing(link_path)
        target = os.path.relpath(dependency.path.resolve(), link_path.parent.resolve())
        link_path.symlink_to(target, target_is_directory=True)
        logger.debug("Linked %s -> %s", link_path, target)
        links.append(link_path)
    return links


def _remove_existing(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
