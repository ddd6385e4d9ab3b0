"""Per-package task functions handed to the scheduler."""

from __future__ import annotations

from collections.abc import Sequence

from monorepo_runner.config import RunConfig
from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import TaskResult
from monorepo_runner.runner.process import PackageProcess
from monorepo_runner.runner.scheduler import TaskFn
from monorepo_runner.workspace.linker import link_package
from monorepo_runner.workspace.models import Package, PackageGraph


def package_manager_task(config: RunConfig, graph: PackageGraph, args: Sequence[str]) -> TaskFn:
    """Run the package manager in each package with local dependencies hidden."""

    local_names = graph.names

    def _task(package: Package, token: CancellationToken) -> TaskResult:
        process = PackageProcess(
            config.package_manager,
            args,
            cwd=package.path,
            manifest_path=package.manifest_path,
            mangle_names=local_names,
            kill_grace_seconds=config.kill_grace_seconds,
        )
        return process.run(token)

    return _task


def exec_task(config: RunConfig, executable: str, args: Sequence[str]) -> TaskFn:
    """Run an arbitrary program in each package directory; manifests are untouched."""

    def _task(package: Package, token: CancellationToken) -> TaskResult:
        process = PackageProcess(
            executable,
            args,
            cwd=package.path,
            kill_grace_seconds=config.kill_grace_seconds,
        )
        return process.run(token)

    return _task


def link_task(graph: PackageGraph) -> TaskFn:
    """Symlink each package's local dependencies into its ``node_modules``."""

    def _task(package: Package, token: CancellationToken) -> TaskResult:
        if token.aborted:
            return TaskResult.skip("not started: run aborted")
        try:
            links = link_package(package, graph)
        except OSError as error:
            return TaskResult.failure(f"linking failed: {error}")
        return TaskResult.ok(f"{len(links)} link(s)")

    return _task
