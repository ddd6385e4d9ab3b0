"""CLI entrypoint for monorepo-runner."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from monorepo_runner import __version__
from monorepo_runner.config import RunConfig, Settings
from monorepo_runner.controllers import (
    CommandResult,
    ExecCommand,
    InstallCommand,
    LinkCommand,
    ListCommand,
    RunScriptCommand,
    WorkspaceCliController,
)
from monorepo_runner.errors import InvalidArgumentError, MonorepoRunnerError
from monorepo_runner.workspace.selection import SelectionCriteria, compile_patterns

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkspaceCliController()
EXIT_NO_COMMAND = 3
_PASSTHROUGH = {"ignore_unknown_options": True}
_CONSOLE_HANDLER = logging.StreamHandler()

T = TypeVar("T")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="monorepo-runner")
@click.option(
    "--root",
    "packages_root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding the packages. Defaults to MONOREPO_RUNNER_PACKAGES_ROOT or ./packages.",
)
@click.option(
    "--include",
    "-i",
    "include",
    multiple=True,
    help="Regex; only packages whose name matches one of these are selected. Can be repeated.",
)
@click.option(
    "--exclude",
    "-x",
    "exclude",
    multiple=True,
    help="Regex; packages whose name matches any of these are dropped. Can be repeated.",
)
@click.option(
    "--dependents/--no-dependents",
    default=False,
    show_default=True,
    help="Also select every package that transitively depends on a selected package.",
)
@click.option(
    "--dependencies/--no-dependencies",
    default=False,
    show_default=True,
    help="Also select every package a selected package transitively depends on.",
)
@click.option(
    "--concurrency",
    "-c",
    type=int,
    default=None,
    help="Max packages processed at once. Defaults to MONOREPO_RUNNER_CONCURRENCY or 4.",
)
@click.option("--verbose", "-v", count=True, help="More log output (-vv for debug).")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Only log errors.")
@click.option(
    "--color/--no-color",
    default=None,
    help="Force colored output on or off. Auto-detected by default.",
)
@click.pass_context
def monorepo_runner(  # noqa: PLR0913
    ctx: click.Context,
    packages_root: Path | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    dependents: bool,
    dependencies: bool,
    concurrency: int | None,
    verbose: int,
    quiet: bool,
    color: bool | None,
) -> None:
    """Run package tasks across a monorepo in dependency order."""

    _configure_logging(verbose=verbose, quiet=quiet)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help(), color=color)
        ctx.exit(EXIT_NO_COMMAND)

    def _build() -> RunConfig:
        compile_patterns((*include, *exclude))
        return RunConfig.build(
            Settings.from_env(),
            packages_root=packages_root,
            selection=SelectionCriteria(
                include=include,
                exclude=exclude,
                expand_dependents=dependents,
                expand_dependencies=dependencies,
            ),
            concurrency=concurrency,
            color=color,
        )

    ctx.obj = _invoke(ctx, _build)


@monorepo_runner.command("list")
@click.pass_obj
def list_packages(config: RunConfig) -> None:
    """List the selected packages."""

    _finish(config, lambda: CONTROLLER.list_packages(ListCommand(config=config)))


@monorepo_runner.command("link")
@click.pass_obj
def link(config: RunConfig) -> None:
    """Symlink local dependencies into each selected package's node_modules."""

    _finish(config, lambda: CONTROLLER.link(LinkCommand(config=config)))


@monorepo_runner.command("install", context_settings=_PASSTHROUGH)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def install(config: RunConfig, args: tuple[str, ...]) -> None:
    """Run `<package manager> install` in each selected package.

    Arguments after `--` are passed to the package manager.
    """

    _finish(config, lambda: CONTROLLER.install(InstallCommand(config=config, args=args)))


@monorepo_runner.command("run", context_settings=_PASSTHROUGH)
@click.argument("script")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def run_script(config: RunConfig, script: str, args: tuple[str, ...]) -> None:
    """Run a manifest script in each selected package that declares it."""

    _finish(
        config,
        lambda: CONTROLLER.run_script(RunScriptCommand(config=config, script=script, args=args)),
    )


@monorepo_runner.command("exec", context_settings=_PASSTHROUGH)
@click.argument("executable")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def exec_program(config: RunConfig, executable: str, args: tuple[str, ...]) -> None:
    """Run a program inside each selected package directory."""

    _finish(
        config,
        lambda: CONTROLLER.exec_program(
            ExecCommand(config=config, executable=executable, args=args),
        ),
    )


def _finish(config: RunConfig, action: Callable[[], CommandResult]) -> None:
    ctx = click.get_current_context()
    result = _invoke(ctx, action)
    _emit_lines(result.lines, color=config.color)
    if result.exit_code != 0:
        ctx.exit(result.exit_code)


def _invoke(ctx: click.Context, action: Callable[[], T]) -> T:
    try:
        return action()
    except InvalidArgumentError as error:
        raise click.UsageError(str(error), ctx=ctx) from error
    except MonorepoRunnerError as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(*, verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:  # noqa: PLR2004
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    if _CONSOLE_HANDLER not in root.handlers:
        root.addHandler(_CONSOLE_HANDLER)
    root.setLevel(level)


def _emit_lines(lines: list[str], *, color: bool | None) -> None:
    for line in lines:
        click.echo(line, color=color)


if __name__ == "__main__":  # pragma: no cover
    monorepo_runner()
