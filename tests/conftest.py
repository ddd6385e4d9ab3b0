"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from monorepo_runner.workspace.models import Package, PackageGraph

WritePackage = Callable[..., Path]

_FAKE_PACKAGE_MANAGER = """\
import json
import os
import pathlib
import sys
import time

manifest = json.loads(pathlib.Path("package.json").read_text("utf-8"))
record = {
    "name": manifest["name"],
    "args": sys.argv[1:],
    "dependencies": manifest.get("dependencies", {}),
    "devDependencies": manifest.get("devDependencies", {}),
}
with open(os.environ["FAKE_PM_LOG"], "a", encoding="utf-8") as handle:
    handle.write(json.dumps(record) + "\\n")
print(f"fake package manager in {manifest['name']}")
time.sleep(float(os.environ.get("FAKE_PM_SLEEP", "0")))
sys.exit(1 if manifest["name"] == os.environ.get("FAKE_PM_FAIL") else 0)
"""


@pytest.fixture()
def packages_root(tmp_path: Path) -> Path:
    root = tmp_path / "packages"
    root.mkdir()
    return root


@pytest.fixture()
def write_package(packages_root: Path) -> WritePackage:
    """Create ``<root>/<dir>/package.json`` and return the package directory."""

    def _write(  # noqa: PLR0913
        name: str,
        *,
        dependencies: dict[str, str] | None = None,
        dev_dependencies: dict[str, str] | None = None,
        scripts: dict[str, str] | None = None,
        version: str = "1.0.0",
        directory: str | None = None,
    ) -> Path:
        package_dir = packages_root / (directory or name)
        package_dir.mkdir(parents=True, exist_ok=True)
        manifest: dict[str, object] = {"name": name, "version": version}
        if scripts is not None:
            manifest["scripts"] = scripts
        if dependencies is not None:
            manifest["dependencies"] = dependencies
        if dev_dependencies is not None:
            manifest["devDependencies"] = dev_dependencies
        (package_dir / "package.json").write_text(json.dumps(manifest, indent=2) + "\n", "utf-8")
        return package_dir

    return _write


@pytest.fixture()
def fake_package_manager(tmp_path: Path, monkeypatch) -> Path:
    """Executable standing in for yarn; appends one JSON line per invocation to a log."""

    if os.name == "nt":
        pytest.skip("shebang scripts require a POSIX platform")
    script = tmp_path / "fake-pm"
    script.write_text(f"#!{sys.executable}\n{_FAKE_PACKAGE_MANAGER}", "utf-8")
    script.chmod(0o755)
    log_path = tmp_path / "fake-pm.log"
    monkeypatch.setenv("FAKE_PM_LOG", str(log_path))
    monkeypatch.setenv("MONOREPO_RUNNER_PACKAGE_MANAGER", str(script))
    monkeypatch.setenv("MONOREPO_RUNNER_LOG_PATH", str(tmp_path / "run.log"))
    return log_path


def read_invocations(log_path: Path) -> list[dict[str, object]]:
    if not log_path.exists():
        return []
    return [json.loads(line) for line in log_path.read_text("utf-8").splitlines() if line]


def make_graph(edges: dict[str, tuple[str, ...]], root: Path = Path("/monorepo")) -> PackageGraph:
    """Build a graph from ``{name: (dependency, ...)}`` without touching disk."""

    return PackageGraph(
        Package(name=name, path=root / name, local_dependencies=frozenset(deps))
        for name, deps in edges.items()
    )
