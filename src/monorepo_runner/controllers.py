"""Controllers for monorepo-runner CLI commands."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator, Sequence
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path

import click

from monorepo_runner.config import RunConfig
from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import PackageRun, PackageStatus, RunOutcome
from monorepo_runner.runner.scheduler import Scheduler, TaskFn
from monorepo_runner.runner.tasks import exec_task, link_task, package_manager_task
from monorepo_runner.workspace.discovery import discover_packages
from monorepo_runner.workspace.models import Package, PackageGraph
from monorepo_runner.workspace.selection import SelectionCriteria, select_packages

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    PackageStatus.SUCCEEDED: ("ok", "green"),
    PackageStatus.FAILED: ("FAILED", "red"),
    PackageStatus.SKIPPED: ("skipped", "yellow"),
}


@dataclass(slots=True)
class ListCommand:
    """CLI input for package listing."""

    config: RunConfig


@dataclass(slots=True)
class LinkCommand:
    """CLI input for local package linking."""

    config: RunConfig


@dataclass(slots=True)
class InstallCommand:
    """CLI input for package manager install."""

    config: RunConfig
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class RunScriptCommand:
    """CLI input for running a manifest script in every package that declares it."""

    config: RunConfig
    script: str
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class ExecCommand:
    """CLI input for running an arbitrary program in each package directory."""

    config: RunConfig
    executable: str
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class CommandResult:
    """Report lines to render plus the process exit code."""

    lines: list[str] = field(default_factory=list)
    exit_code: int = 0


class WorkspaceCliController:
    """Coordinates discovery, selection, scheduling and reporting."""

    def list_packages(self, command: ListCommand) -> CommandResult:
        _, working_set = _load_working_set(command.config)
        lines = []
        for package in working_set:
            lines.append(f"{package.name} {package.version or '-'} {package.path}")
        if not lines:
            lines.append("No packages matched.")
        return CommandResult(lines=lines)

    def link(self, command: LinkCommand) -> CommandResult:
        graph, working_set = _load_working_set(command.config)
        return _schedule(command.config, working_set, link_task(graph), label="link")

    def install(self, command: InstallCommand) -> CommandResult:
        graph, working_set = _load_working_set(command.config)
        task = package_manager_task(command.config, graph, ("install", *command.args))
        return _schedule(command.config, working_set, task, label="install")

    def run_script(self, command: RunScriptCommand) -> CommandResult:
        script = command.script
        selection = command.config.selection.with_predicate(
            lambda package: package.has_script(script),
        )
        graph, working_set = _load_working_set(command.config, selection=selection)
        task = package_manager_task(command.config, graph, ("run", script, *command.args))
        return _schedule(command.config, working_set, task, label=f"run {script}")

    def exec_program(self, command: ExecCommand) -> CommandResult:
        _, working_set = _load_working_set(command.config)
        task = exec_task(command.config, command.executable, command.args)
        return _schedule(command.config, working_set, task, label=f"exec {command.executable}")


def render_outcome(outcome: RunOutcome, *, label: str) -> list[str]:
    """Human-readable per-package summary followed by totals and timing."""

    lines: list[str] = []
    for run in outcome.runs.values():
        lines.append(_render_run(run))

    for run in outcome.runs.values():
        if run.status is not PackageStatus.FAILED or run.result is None:
            continue
        output = run.result.output.rstrip()
        if output:
            lines.append(click.style(f"--- output of {run.name} ---", bold=True))
            lines.extend(f"  {line}" for line in output.splitlines())

    succeeded = len(outcome.names_with(PackageStatus.SUCCEEDED))
    failed = len(outcome.names_with(PackageStatus.FAILED))
    skipped = len(outcome.names_with(PackageStatus.SKIPPED))
    summary = (
        f"{label}: {succeeded} succeeded, {failed} failed, {skipped} skipped "
        f"in {outcome.elapsed_seconds:.1f}s"
    )
    if outcome.aborted:
        summary += " (aborted)"
    lines.append(click.style(summary, fg="green" if outcome.succeeded else "red", bold=True))
    return lines


def _render_run(run: PackageRun) -> str:
    text, color = _STATUS_STYLES.get(run.status, (run.status.value, "white"))
    line = f"{click.style(f'{text:>7}', fg=color)} {run.name}"
    duration = run.duration_seconds
    if duration is not None:
        line += f" ({duration:.1f}s)"
    if run.status is not PackageStatus.SUCCEEDED and run.detail:
        line += f": {run.detail}"
    return line


def _load_working_set(
    config: RunConfig,
    *,
    selection: SelectionCriteria | None = None,
) -> tuple[PackageGraph, tuple[Package, ...]]:
    graph = discover_packages(config.packages_root)
    working_set = select_packages(graph, selection or config.selection)
    logger.info("Selected %d of %d packages", len(working_set), len(graph))
    return graph, working_set


def _schedule(
    config: RunConfig,
    working_set: Sequence[Package],
    task: TaskFn,
    *,
    label: str,
) -> CommandResult:
    if not working_set:
        return CommandResult(lines=["No packages matched."])

    scheduler = Scheduler(
        config.concurrency,
        on_start=lambda package: logger.info("[%s] %s started", label, package.name),
        on_finish=lambda run: logger.info("[%s] %s", label, click.unstyle(_render_run(run))),
    )
    token = CancellationToken()
    with _run_log(config.log_path), _abort_on_signals(token):
        outcome = scheduler.run(working_set, task, token)

    if outcome.succeeded:
        _remove_log(config.log_path)
    else:
        logger.warning("Run log kept at %s", config.log_path)
    return CommandResult(lines=render_outcome(outcome, label=label), exit_code=outcome.exit_code)


@contextmanager
def _run_log(path: Path) -> Iterator[None]:
    _remove_log(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8", delay=True)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    try:
        yield
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
        handler.close()


def _remove_log(path: Path) -> None:
    with suppress(FileNotFoundError):
        path.unlink()


@contextmanager
def _abort_on_signals(token: CancellationToken) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        token.abort(reason=f"aborted by {name}")

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
