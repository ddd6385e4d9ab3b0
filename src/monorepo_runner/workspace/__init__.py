"""Monorepo package model, discovery, selection and manifest handling."""

from monorepo_runner.workspace.models import Package, PackageGraph
from monorepo_runner.workspace.selection import SelectionCriteria, select_packages

__all__ = [
    "Package",
    "PackageGraph",
    "SelectionCriteria",
    "select_packages",
]
