"""Dependency-ordered task execution."""

from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import PackageRun, PackageStatus, RunOutcome, TaskResult
from monorepo_runner.runner.process import PackageProcess
from monorepo_runner.runner.scheduler import Scheduler

__all__ = [
    "CancellationToken",
    "PackageProcess",
    "PackageRun",
    "PackageStatus",
    "RunOutcome",
    "Scheduler",
    "TaskResult",
]
