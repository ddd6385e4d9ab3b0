from __future__ import annotations

import threading
import time

import allure
import pytest
from conftest import make_graph

from monorepo_runner.errors import InvalidArgumentError, InvalidGraphError
from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import PackageStatus, TaskResult
from monorepo_runner.runner.scheduler import Scheduler
from monorepo_runner.workspace.models import Package

pytestmark = [
    allure.epic("Task Scheduling"),
    allure.feature("Dependency Order & Concurrency"),
]


class _Recorder:
    """Task stub that records start/success events and fails selected packages."""

    def __init__(self, *, fail: set[str] = frozenset(), delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, package: Package, token: CancellationToken) -> TaskResult:
        with self._lock:
            self.events.append(("start", package.name))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
            if package.name in self.fail:
                self.events.append(("fail", package.name))
                return TaskResult.failure("exited with status 1", exit_code=1)
            self.events.append(("success", package.name))
        return TaskResult.ok()

    def started(self) -> list[str]:
        return [name for kind, name in self.events if kind == "start"]

    def index(self, kind: str, name: str) -> int:
        return self.events.index((kind, name))


def test_chain_runs_in_dependency_order() -> None:
    graph = make_graph({"A": (), "B": ("A",), "C": ("B",)})
    recorder = _Recorder()

    outcome = Scheduler(2).run(list(graph), recorder)

    assert recorder.started() == ["A", "B", "C"]
    assert recorder.index("success", "A") < recorder.index("start", "B")
    assert recorder.index("success", "B") < recorder.index("start", "C")
    assert outcome.succeeded
    assert outcome.exit_code == 0
    assert {run.status for run in outcome.runs.values()} == {PackageStatus.SUCCEEDED}


def test_failure_skips_dependents_and_spares_independent_branches() -> None:
    graph = make_graph({"A": (), "B": ("A",), "C": ()})
    recorder = _Recorder(fail={"A"})

    outcome = Scheduler(4).run(list(graph), recorder)

    assert outcome.status_of("A") is PackageStatus.FAILED
    assert outcome.status_of("B") is PackageStatus.SKIPPED
    assert outcome.status_of("C") is PackageStatus.SUCCEEDED
    assert "B" not in recorder.started()
    assert not outcome.succeeded
    assert outcome.exit_code == 1
    assert outcome.runs["B"].detail == "dependency A did not succeed"


def test_failure_propagates_to_transitive_dependents_only() -> None:
    graph = make_graph(
        {
            "base": (),
            "mid": ("base",),
            "leaf": ("mid",),
            "other": ("base",),
            "island": (),
            "island-child": ("island",),
        },
    )
    recorder = _Recorder(fail={"mid"})

    outcome = Scheduler(3).run(list(graph), recorder)

    assert outcome.names_with(PackageStatus.FAILED) == ["mid"]
    assert outcome.names_with(PackageStatus.SKIPPED) == ["leaf"]
    assert sorted(outcome.names_with(PackageStatus.SUCCEEDED)) == [
        "base",
        "island",
        "island-child",
        "other",
    ]


@pytest.mark.parametrize("limit", [1, 2, 3, 4])
def test_running_tasks_never_exceed_concurrency(limit: int) -> None:
    graph = make_graph({f"pkg-{index}": () for index in range(6)})
    recorder = _Recorder(delay=0.05)

    outcome = Scheduler(limit).run(list(graph), recorder)

    assert outcome.succeeded
    assert 1 <= recorder.max_active <= limit


def test_every_edge_is_respected_in_a_wider_graph() -> None:
    edges = {
        "a": (),
        "b": (),
        "c": ("a",),
        "d": ("a", "b"),
        "e": ("c", "d"),
        "f": ("b",),
        "g": ("e", "f"),
        "h": (),
    }
    graph = make_graph(edges)
    recorder = _Recorder(delay=0.01)

    outcome = Scheduler(3).run(list(graph), recorder)

    assert outcome.succeeded
    for dependent, dependencies in edges.items():
        for dependency in dependencies:
            assert recorder.index("success", dependency) < recorder.index("start", dependent)


def test_ready_packages_start_in_name_order() -> None:
    graph = make_graph({"zeta": (), "alpha": (), "mu": ()})
    recorder = _Recorder()

    Scheduler(1).run(list(graph), recorder)

    assert recorder.started() == ["alpha", "mu", "zeta"]


def test_edges_outside_working_set_are_ignored() -> None:
    graph = make_graph({"lib": (), "app": ("lib",)})
    recorder = _Recorder()

    outcome = Scheduler(1).run([graph["app"]], recorder)

    assert recorder.started() == ["app"]
    assert outcome.succeeded


def test_task_exception_is_recorded_as_failure() -> None:
    graph = make_graph({"a": (), "b": ("a",)})

    def _task(package: Package, token: CancellationToken) -> TaskResult:
        raise RuntimeError("exploded")

    outcome = Scheduler(1).run(list(graph), _task)

    assert outcome.status_of("a") is PackageStatus.FAILED
    assert outcome.runs["a"].detail == "RuntimeError: exploded"
    assert outcome.status_of("b") is PackageStatus.SKIPPED


def test_cycle_is_rejected_before_anything_runs() -> None:
    graph = make_graph({"a": ("c",), "b": ("a",), "c": ("b",), "d": ()})
    recorder = _Recorder()

    with pytest.raises(InvalidGraphError, match="cycle involving: a, b, c") as error:
        Scheduler(2).run(list(graph), recorder)

    assert error.value.names == ("a", "b", "c")
    assert recorder.events == []


@pytest.mark.parametrize("limit", [0, -1, True, 2.5])
def test_invalid_concurrency_is_rejected(limit) -> None:
    with pytest.raises(InvalidArgumentError, match="Concurrency must be a positive integer"):
        Scheduler(limit)


def test_observers_see_each_start_and_finish() -> None:
    graph = make_graph({"a": (), "b": ("a",)})
    started: list[str] = []
    finished: list[tuple[str, PackageStatus]] = []

    Scheduler(
        2,
        on_start=lambda package: started.append(package.name),
        on_finish=lambda run: finished.append((run.name, run.status)),
    ).run(list(graph), _Recorder())

    assert started == ["a", "b"]
    assert finished == [("a", PackageStatus.SUCCEEDED), ("b", PackageStatus.SUCCEEDED)]


def test_abort_kills_running_tasks_and_starts_nothing_new() -> None:
    graph = make_graph({"a": (), "b": (), "c": (), "d": ("a",)})
    token = CancellationToken()
    started: list[str] = []
    both_running = threading.Barrier(2, action=lambda: token.abort("test abort"))

    def _task(package: Package, _token: CancellationToken) -> TaskResult:
        started.append(package.name)
        killed = threading.Event()
        handle = _token.register(killed.set)
        both_running.wait(timeout=5)
        stopped = killed.wait(timeout=10)
        _token.unregister(handle)
        if stopped:
            return TaskResult.failure("terminated by SIGTERM", exit_code=-15)
        return TaskResult.ok()

    began = time.monotonic()
    outcome = Scheduler(2).run(list(graph), _task, token)

    assert time.monotonic() - began < 5
    assert sorted(started) == ["a", "b"]
    assert outcome.aborted
    assert not outcome.succeeded
    assert outcome.status_of("a") is PackageStatus.FAILED
    assert outcome.status_of("b") is PackageStatus.FAILED
    assert outcome.status_of("c") is PackageStatus.SKIPPED
    assert outcome.status_of("d") is PackageStatus.SKIPPED
    assert outcome.runs["c"].detail == "test abort"


def test_already_aborted_token_starts_nothing() -> None:
    graph = make_graph({"a": (), "b": ("a",)})
    token = CancellationToken()
    token.abort()
    recorder = _Recorder()

    outcome = Scheduler(2).run(list(graph), recorder, token)

    assert recorder.events == []
    assert outcome.aborted
    assert outcome.exit_code == 1
    assert outcome.names_with(PackageStatus.SKIPPED) == ["a", "b"]


def test_empty_working_set_succeeds() -> None:
    outcome = Scheduler(4).run([], _Recorder())

    assert outcome.runs == {}
    assert outcome.succeeded


def test_task_that_never_started_is_reported_as_skipped() -> None:
    graph = make_graph({"a": (), "b": ("a",), "c": ()})

    def _task(package: Package, _token: CancellationToken) -> TaskResult:
        if package.name == "a":
            return TaskResult.skip("not started: run aborted")
        return TaskResult.ok()

    outcome = Scheduler(1).run(list(graph), _task)

    assert outcome.status_of("a") is PackageStatus.SKIPPED
    assert outcome.runs["a"].detail == "not started: run aborted"
    assert outcome.status_of("b") is PackageStatus.SKIPPED
    assert outcome.runs["b"].detail == "dependency a did not succeed"
    assert outcome.status_of("c") is PackageStatus.SUCCEEDED
    assert outcome.names_with(PackageStatus.FAILED) == []
