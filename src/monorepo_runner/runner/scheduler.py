"""Dependency-ordered scheduler with a bounded number of concurrent tasks.

A package starts as soon as every dependency inside the working set has
succeeded, rather than waiting for a whole topological level. Tasks run in
worker threads; their completions are posted to a single queue and handled
one at a time on the thread that called :meth:`Scheduler.run`, so the run
state is never touched concurrently.
"""

from __future__ import annotations

import heapq
import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from monorepo_runner.config import validate_concurrency
from monorepo_runner.errors import InvalidGraphError
from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import PackageRun, PackageStatus, RunOutcome, TaskResult
from monorepo_runner.workspace.models import Package

logger = logging.getLogger(__name__)

TaskFn = Callable[[Package, CancellationToken], TaskResult]
StartCallback = Callable[[Package], None]
FinishCallback = Callable[[PackageRun], None]


@dataclass(slots=True)
class _Completion:
    name: str
    result: TaskResult
    finished_at: float


class Scheduler:
    """Run one task per package in dependency order."""

    def __init__(
        self,
        concurrency: int,
        *,
        on_start: StartCallback | None = None,
        on_finish: FinishCallback | None = None,
    ) -> None:
        self.concurrency = validate_concurrency(concurrency)
        self._on_start = on_start or (lambda _package: None)
        self._on_finish = on_finish or (lambda _run: None)

    def run(
        self,
        working_set: Iterable[Package],
        task: TaskFn,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Execute ``task`` for every package and return the aggregated outcome.

        Task failures and task exceptions are recorded as package status and
        never raised. Raises :class:`InvalidGraphError` before starting
        anything if the working set contains a dependency cycle.
        """

        token = token or CancellationToken()
        packages = {package.name: package for package in working_set}
        dependencies = {
            name: {dep for dep in package.local_dependencies if dep in packages and dep != name}
            for name, package in packages.items()
        }
        dependents: dict[str, set[str]] = {name: set() for name in packages}
        for name, deps in dependencies.items():
            for dep in deps:
                dependents[dep].add(name)
        _check_acyclic(dependencies, dependents)

        outcome = RunOutcome(
            runs={name: PackageRun(package=packages[name]) for name in sorted(packages)},
        )
        remaining = {name: len(deps) for name, deps in dependencies.items()}
        ready: list[str] = []
        for name, count in remaining.items():
            if count == 0:
                outcome.runs[name].status = PackageStatus.READY
                heapq.heappush(ready, name)

        events: queue.Queue[_Completion] = queue.Queue()
        running = 0
        run_started = time.monotonic()
        logger.info(
            "Scheduling %d package(s) with concurrency %d",
            len(packages),
            self.concurrency,
        )

        while True:
            while ready and running < self.concurrency and not token.aborted:
                name = heapq.heappop(ready)
                self._start(outcome.runs[name], task, token, events)
                running += 1

            if running == 0:
                break

            completion = events.get()
            running -= 1
            run = outcome.runs[completion.name]
            run.result = completion.result
            run.finished_at = completion.finished_at

            if completion.result.success:
                run.status = PackageStatus.SUCCEEDED
                logger.debug("%s succeeded", run.name)
                for dependent in sorted(dependents[run.name]):
                    remaining[dependent] -= 1
                    dependent_run = outcome.runs[dependent]
                    if remaining[dependent] == 0 and dependent_run.status is PackageStatus.PENDING:
                        dependent_run.status = PackageStatus.READY
                        heapq.heappush(ready, dependent)
            elif completion.result.skipped:
                run.status = PackageStatus.SKIPPED
                run.skip_reason = completion.result.detail
                logger.warning("%s skipped: %s", run.name, run.skip_reason)
                _skip_dependents(outcome, dependents, run.name)
            else:
                run.status = PackageStatus.FAILED
                logger.error("%s failed: %s", run.name, completion.result.detail)
                _skip_dependents(outcome, dependents, run.name)
            self._on_finish(run)

        if token.aborted:
            outcome.aborted = True
            for run in outcome.runs.values():
                if run.status in {PackageStatus.PENDING, PackageStatus.READY}:
                    run.status = PackageStatus.SKIPPED
                    run.skip_reason = token.reason or "aborted"

        outcome.elapsed_seconds = time.monotonic() - run_started
        return outcome

    def _start(
        self,
        run: PackageRun,
        task: TaskFn,
        token: CancellationToken,
        events: queue.Queue[_Completion],
    ) -> None:
        run.status = PackageStatus.RUNNING
        run.started_at = time.monotonic()
        logger.debug("Starting %s", run.name)
        self._on_start(run.package)
        worker = threading.Thread(
            target=_execute,
            args=(run.package, task, token, events),
            daemon=True,
            name=f"task-{run.name}",
        )
        worker.start()


def _execute(
    package: Package,
    task: TaskFn,
    token: CancellationToken,
    events: queue.Queue[_Completion],
) -> None:
    try:
        result = task(package, token)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Task for %s raised", package.name)
        result = TaskResult.failure(f"{type(exc).__name__}: {exc}")
    events.put(_Completion(name=package.name, result=result, finished_at=time.monotonic()))


def _skip_dependents(outcome: RunOutcome, dependents: dict[str, set[str]], failed: str) -> None:
    queue_ = deque([failed])
    while queue_:
        name = queue_.popleft()
        for dependent in sorted(dependents[name]):
            run = outcome.runs[dependent]
            if run.status is not PackageStatus.PENDING:
                continue
            run.status = PackageStatus.SKIPPED
            run.skip_reason = f"dependency {name} did not succeed"
            logger.warning("Skipping %s: %s", dependent, run.skip_reason)
            queue_.append(dependent)


def _check_acyclic(dependencies: dict[str, set[str]], dependents: dict[str, set[str]]) -> None:
    remaining = {name: len(deps) for name, deps in dependencies.items()}
    frontier = deque(name for name, count in remaining.items() if count == 0)
    visited = 0
    while frontier:
        name = frontier.popleft()
        visited += 1
        for dependent in dependents[name]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                frontier.append(dependent)
    if visited != len(dependencies):
        cyclic = [name for name, count in remaining.items() if count > 0]
        raise InvalidGraphError(
            "Local dependency cycle involving: " + ", ".join(sorted(cyclic)),
            names=cyclic,
        )
