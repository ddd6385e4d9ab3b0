"""Spawn one external command per package and tie manifest restoration to its exit."""

from __future__ import annotations

import atexit
import logging
import signal
import subprocess
import threading
from collections.abc import Collection, Sequence
from pathlib import Path

from monorepo_runner.errors import ManifestIOError
from monorepo_runner.runner.cancellation import CancellationToken
from monorepo_runner.runner.models import TaskResult
from monorepo_runner.workspace.manifest import MangleRecord, mangle, unmangle

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT_CODE = 127


class PackageProcess:
    """One external command run inside a package directory.

    When ``mangle_names`` is given, local dependencies are hidden in the
    package manifest before the command starts and restored exactly once
    after it exits, whether it finished, was killed through :meth:`kill`, or
    the parent interpreter exited first.
    """

    def __init__(  # noqa: PLR0913
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Path,
        manifest_path: Path | None = None,
        mangle_names: Collection[str] | None = None,
        kill_grace_seconds: float = 5.0,
    ) -> None:
        self.command = command
        self.args = tuple(args)
        self.cwd = cwd
        self.manifest_path = manifest_path or cwd / "package.json"
        self.mangle_names = mangle_names
        self.kill_grace_seconds = kill_grace_seconds
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._record: MangleRecord | None = None
        self._restored = False
        self._escalation: threading.Timer | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def run(self, token: CancellationToken | None = None) -> TaskResult:
        """Mangle, spawn, wait for exit, restore; never raises for task-level failures."""

        if token is not None and token.aborted:
            return TaskResult.skip("not started: run aborted")

        if self.mangle_names is not None:
            try:
                self._record = mangle(self.manifest_path, self.mangle_names)
            except ManifestIOError as error:
                return TaskResult.failure(str(error))

        atexit.register(self._teardown)
        try:
            result = self._spawn_and_wait(token)
        finally:
            restore_error = self._restore()
            atexit.unregister(self._teardown)
            self._cancel_escalation()

        if restore_error is not None:
            return TaskResult.failure(
                f"manifest not restored: {restore_error}",
                exit_code=result.exit_code,
                output=result.output,
            )
        return result

    def kill(self) -> None:
        """Ask the child to terminate, escalating to SIGKILL after the grace period.

        Does not wait, so it is safe to call from a signal handler.
        """

        with self._lock:
            process = self._process
            if process is None or process.poll() is not None:
                return
            try:
                process.terminate()
            except OSError:
                return
            if self._escalation is None:
                self._escalation = threading.Timer(self.kill_grace_seconds, self._force_kill)
                self._escalation.daemon = True
                self._escalation.start()
        logger.info("Sent termination signal to %s (pid %s)", self.command, process.pid)

    def _spawn_and_wait(self, token: CancellationToken | None) -> TaskResult:
        try:
            process = subprocess.Popen(  # noqa: S603
                self.argv,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            return TaskResult.failure(
                f"command not found: {self.command}",
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            )
        except OSError as error:
            return TaskResult.failure(f"failed to start {self.command}: {error}")

        with self._lock:
            self._process = process
        handle = token.register(self.kill) if token is not None else None
        try:
            output, _ = process.communicate()
        finally:
            if token is not None:
                token.unregister(handle)

        returncode = process.returncode
        if output:
            logger.debug("%s output in %s:\n%s", self.command, self.cwd, output.rstrip())
        if returncode == 0:
            return TaskResult.ok(output=output)
        return TaskResult.failure(_describe_exit(returncode), exit_code=returncode, output=output)

    def _restore(self) -> ManifestIOError | None:
        with self._lock:
            if self._restored or self._record is None:
                return None
            self._restored = True
            record = self._record
        try:
            unmangle(self.manifest_path, record)
        except ManifestIOError as error:
            logger.error("Failed to restore %s: %s", self.manifest_path, error)
            return error
        return None

    def _teardown(self) -> None:
        """Parent-exit hook: stop the child, then restore the manifest."""

        with self._lock:
            process = self._process
        if process is not None and process.poll() is None:
            logger.warning("Parent exiting; killing %s (pid %s)", self.command, process.pid)
            _terminate_process(process, grace_seconds=self.kill_grace_seconds)
        self._restore()

    def _force_kill(self) -> None:
        with self._lock:
            process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.kill()
        except OSError:
            return
        logger.warning(
            "Killed %s (pid %s) after %.1fs grace",
            self.command,
            process.pid,
            self.kill_grace_seconds,
        )

    def _cancel_escalation(self) -> None:
        with self._lock:
            if self._escalation is not None:
                self._escalation.cancel()
                self._escalation = None


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"terminated by {name}"
    return f"exited with status {returncode}"


def _terminate_process(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
