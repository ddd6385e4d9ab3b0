"""Compute the working set of packages for one run."""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from monorepo_runner.errors import InvalidPatternError

if TYPE_CHECKING:
    from monorepo_runner.workspace.models import Package, PackageGraph

PackagePredicate = Callable[["Package"], bool]


@dataclass(frozen=True, slots=True)
class SelectionCriteria:
    """Include/exclude filters plus optional transitive expansion."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    expand_dependents: bool = False
    expand_dependencies: bool = False
    predicate: PackagePredicate | None = None

    def with_predicate(self, predicate: PackagePredicate) -> SelectionCriteria:
        return SelectionCriteria(
            include=self.include,
            exclude=self.exclude,
            expand_dependents=self.expand_dependents,
            expand_dependencies=self.expand_dependencies,
            predicate=predicate,
        )


def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    """Compile filter regexes, reporting the first invalid one."""

    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as error:
            raise InvalidPatternError(pattern, str(error)) from error
    return tuple(compiled)


def select_packages(graph: PackageGraph, criteria: SelectionCriteria) -> tuple[Package, ...]:
    """Return the working set: filtered, expanded, deduplicated and sorted by name.

    Packages pulled in by expansion are not re-checked against the exclude
    filters. The optional predicate is applied last, after expansion.
    """

    include = compile_patterns(criteria.include)
    exclude = compile_patterns(criteria.exclude)

    matched = {
        package.name
        for package in graph
        if (not include or any(p.search(package.name) for p in include))
        and not any(p.search(package.name) for p in exclude)
    }

    selected = set(matched)
    if criteria.expand_dependents:
        selected |= _reachable(graph, matched, lambda package: package.local_dependents)
    if criteria.expand_dependencies:
        selected |= _reachable(graph, matched, lambda package: package.local_dependencies)

    working_set = [graph[name] for name in sorted(selected)]
    if criteria.predicate is not None:
        working_set = [package for package in working_set if criteria.predicate(package)]
    return tuple(working_set)


def _reachable(
    graph: PackageGraph,
    start: Iterable[str],
    edges: Callable[[Package], Iterable[str]],
) -> set[str]:
    seen: set[str] = set()
    queue = deque(start)
    while queue:
        name = queue.popleft()
        for neighbour in edges(graph[name]):
            if neighbour in seen or neighbour not in graph:
                continue
            seen.add(neighbour)
            queue.append(neighbour)
    return seen
