"""Domain models for monorepo packages and their local dependency edges."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from monorepo_runner.errors import InvalidGraphError

MANIFEST_FILENAME = "package.json"


@dataclass(frozen=True, slots=True)
class Package:
    """One local package discovered under the packages root."""

    name: str
    path: Path
    version: str | None = None
    scripts: Mapping[str, str] = field(default_factory=dict)
    local_dependencies: frozenset[str] = frozenset()
    local_dependents: frozenset[str] = frozenset()

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILENAME

    def has_script(self, script: str) -> bool:
        return script in self.scripts


class PackageGraph:
    """All discovered packages keyed by name, with reverse edges filled in."""

    def __init__(self, packages: Iterable[Package]) -> None:
        by_name: dict[str, Package] = {}
        for package in packages:
            if package.name in by_name:
                raise InvalidGraphError(
                    f"Duplicate package name {package.name!r}: "
                    f"{by_name[package.name].path} and {package.path}",
                    names=(package.name,),
                )
            by_name[package.name] = package

        dependents: dict[str, set[str]] = {name: set() for name in by_name}
        for package in by_name.values():
            for dependency in package.local_dependencies:
                if dependency in dependents and dependency != package.name:
                    dependents[dependency].add(package.name)

        self._packages = {
            name: Package(
                name=package.name,
                path=package.path,
                version=package.version,
                scripts=package.scripts,
                local_dependencies=frozenset(
                    dep for dep in package.local_dependencies if dep in by_name and dep != name
                ),
                local_dependents=frozenset(dependents[name]),
            )
            for name, package in sorted(by_name.items())
        }

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __iter__(self) -> Iterator[Package]:
        return iter(self._packages.values())

    def __len__(self) -> int:
        return len(self._packages)

    def __getitem__(self, name: str) -> Package:
        return self._packages[name]

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._packages)
