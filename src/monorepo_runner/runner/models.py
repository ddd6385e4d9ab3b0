"""Result and status models for scheduled package tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from monorepo_runner.workspace.models import Package


class PackageStatus(str, Enum):
    """Per-package lifecycle within one run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class TaskResult:
    """Completion value returned by a package task."""

    success: bool
    detail: str = ""
    exit_code: int | None = None
    output: str = ""
    skipped: bool = False

    @classmethod
    def ok(cls, detail: str = "", *, output: str = "") -> TaskResult:
        return cls(success=True, detail=detail, exit_code=0, output=output)

    @classmethod
    def failure(
        cls,
        detail: str,
        *,
        exit_code: int | None = None,
        output: str = "",
    ) -> TaskResult:
        return cls(success=False, detail=detail, exit_code=exit_code, output=output)

    @classmethod
    def skip(cls, detail: str) -> TaskResult:
        """Task gave up before doing any work; reported as skipped, not failed."""

        return cls(success=False, detail=detail, skipped=True)


@dataclass(slots=True)
class PackageRun:
    """Scheduler bookkeeping and outcome for one package."""

    package: Package
    status: PackageStatus = PackageStatus.PENDING
    result: TaskResult | None = None
    skip_reason: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def detail(self) -> str:
        if self.status is PackageStatus.SKIPPED:
            return self.skip_reason or ""
        if self.result is None:
            return ""
        return self.result.detail


@dataclass(slots=True)
class RunOutcome:
    """Aggregated statuses for a whole run."""

    runs: dict[str, PackageRun] = field(default_factory=dict)
    aborted: bool = False
    elapsed_seconds: float = 0.0

    def names_with(self, status: PackageStatus) -> list[str]:
        return [name for name, run in self.runs.items() if run.status is status]

    @property
    def succeeded(self) -> bool:
        return not self.aborted and not self.names_with(PackageStatus.FAILED)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def status_of(self, name: str) -> PackageStatus:
        return self.runs[name].status
