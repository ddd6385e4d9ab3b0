"""Runtime configuration for monorepo task runs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from monorepo_runner.errors import InvalidArgumentError
from monorepo_runner.workspace.selection import SelectionCriteria

DEFAULT_CONCURRENCY = 4


@dataclass(slots=True)
class Settings:
    """Environment-backed defaults that CLI options may override."""

    packages_root: Path = Path("packages")
    concurrency: int = DEFAULT_CONCURRENCY
    package_manager: str = "yarn"
    log_path: Path = Path("monorepo-runner.log")
    kill_grace_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for a standard monorepo layout."""

        return cls(
            packages_root=Path(os.getenv("MONOREPO_RUNNER_PACKAGES_ROOT", "packages")),
            concurrency=_env_int("MONOREPO_RUNNER_CONCURRENCY", DEFAULT_CONCURRENCY),
            package_manager=os.getenv("MONOREPO_RUNNER_PACKAGE_MANAGER", "yarn").strip() or "yarn",
            log_path=Path(os.getenv("MONOREPO_RUNNER_LOG_PATH", "monorepo-runner.log")),
            kill_grace_seconds=_env_float("MONOREPO_RUNNER_KILL_GRACE_SECONDS", 5.0),
        )


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Immutable per-invocation configuration passed to selection and scheduling."""

    packages_root: Path
    selection: SelectionCriteria = field(default_factory=SelectionCriteria)
    concurrency: int = DEFAULT_CONCURRENCY
    package_manager: str = "yarn"
    log_path: Path = Path("monorepo-runner.log")
    kill_grace_seconds: float = 5.0
    color: bool | None = None

    def __post_init__(self) -> None:
        validate_concurrency(self.concurrency)
        if self.kill_grace_seconds < 0:
            raise InvalidArgumentError("Kill grace period must be >= 0 seconds.")

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        settings: Settings,
        *,
        packages_root: Path | None = None,
        selection: SelectionCriteria | None = None,
        concurrency: int | None = None,
        color: bool | None = None,
    ) -> RunConfig:
        """Merge CLI overrides over environment settings."""

        return cls(
            packages_root=packages_root or settings.packages_root,
            selection=selection or SelectionCriteria(),
            concurrency=settings.concurrency if concurrency is None else concurrency,
            package_manager=settings.package_manager,
            log_path=settings.log_path,
            kill_grace_seconds=settings.kill_grace_seconds,
            color=color,
        )


def validate_concurrency(value: object) -> int:
    """Return the concurrency limit or raise if it is not a positive integer."""

    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError(f"Concurrency must be a positive integer, got {value!r}.")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise InvalidArgumentError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise InvalidArgumentError(f"Invalid number for {name}: {raw!r}") from error
