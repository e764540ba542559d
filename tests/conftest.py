"""Shared fixtures for isobuild tests.

External tools are never executed: ``run_command`` and ``capture_command``
are replaced with a fake that records commands and mimics their effect on
the filesystem.
"""

from __future__ import annotations

import stat
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from isobuild.builds.runner import CommandError, CommandResult
from isobuild.config import Settings

FAKE_HEAD = "0123abcd"


def _value_after(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class FakeRunner:
    """Stand-in for the external command runner.

    Attributes:
        calls: Every command run, in order.
        cwds: Working directory of every command.
        failures: Command kinds that exit non-zero (see ``kind``).
        fail_layers: Layer names whose build script exits non-zero.
        interrupt_on: Command kind that raises KeyboardInterrupt.
        repo_files: Files created in the clone destination by git clone.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.cwds: list[Path | None] = []
        self.failures: set[str] = set()
        self.fail_layers: set[str] = set()
        self.interrupt_on: str | None = None
        self.repo_files: list[str] = ["deploy.sh"]

    @staticmethod
    def kind(cmd: list[str]) -> str:
        tool = cmd[0]
        if tool == "./.build.sh":
            return "build-script"
        if tool == "./.pre_image.sh":
            return "pre-image"
        if tool == "tar":
            return "tar-create" if "--create" in cmd else "tar-extract"
        if tool == "git":
            if cmd[1] == "clone":
                return "git-clone"
            if "rev-parse" in cmd:
                return "git-rev-parse"
            return "git-checkout"
        return tool

    def calls_of(self, kind: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if self.kind(cmd) == kind]

    def __call__(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        self.calls.append(list(cmd))
        self.cwds.append(cwd)
        kind = self.kind(cmd)

        if kind == self.interrupt_on:
            raise KeyboardInterrupt

        success = kind not in self.failures
        if kind == "build-script" and cwd is not None and cwd.name in self.fail_layers:
            success = False

        if success:
            self._apply(kind, cmd)

        now = datetime.now(timezone.utc)
        return CommandResult(
            success=success,
            exit_code=0 if success else 1,
            command=" ".join(cmd),
            started_at=now,
            finished_at=now,
            error_message=None if success else f"{cmd[0]} failed",
        )

    def _apply(self, kind: str, cmd: list[str]) -> None:
        if kind == "build-script":
            root = Path(cmd[1])
            (root / "etc").mkdir(parents=True, exist_ok=True)
            (root / "etc" / "hostname").write_text("livecd\n")
        elif kind == "tar-create":
            Path(_value_after(cmd, "--file")).write_bytes(b"fake archive")
        elif kind == "tar-extract":
            dest = Path(_value_after(cmd, "--directory"))
            (dest / "etc").mkdir(parents=True, exist_ok=True)
            (dest / "etc" / "hostname").write_text("livecd\n")
        elif kind == "git-clone":
            dest = Path(cmd[-1])
            dest.mkdir(parents=True, exist_ok=True)
            for name in self.repo_files:
                (dest / name).write_text("#!/bin/sh\n")
        elif kind == "mkisofs":
            Path(_value_after(cmd, "-output")).write_bytes(b"fake iso")

    def capture(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        timeout: int | None = 60,
    ) -> str:
        self.calls.append(list(cmd))
        self.cwds.append(cwd)
        if "rev-parse" in self.failures:
            raise CommandError("git rev-parse failed", exit_code=128, code="command_failed")
        return FAKE_HEAD


@pytest.fixture
def fake_runner() -> Iterator[FakeRunner]:
    """Patch every external command of the build modules."""
    fake = FakeRunner()
    with (
        patch("isobuild.builds.layers.run_command", fake),
        patch("isobuild.builds.pipeline.run_command", fake),
        patch("isobuild.builds.pipeline.capture_command", fake.capture),
    ):
        yield fake


def make_layer(layers_root: Path, name: str, pre_image: bool = False) -> Path:
    """Create a base layer directory with an executable build script."""
    layer_dir = layers_root / name
    (layer_dir / "etc").mkdir(parents=True, exist_ok=True)
    build_script = layer_dir / ".build.sh"
    build_script.write_text("#!/bin/sh\nexit 0\n")
    build_script.chmod(build_script.stat().st_mode | stat.S_IXUSR)
    (layer_dir / "etc" / "hostname").write_text(f"{name}\n")
    if pre_image:
        script = layer_dir / ".pre_image.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return layer_dir


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create base layers, isolinux files and an output directory."""
    make_layer(tmp_path / "base_layers", "minbase")
    loader_dir = tmp_path / "isolinux"
    loader_dir.mkdir()
    (loader_dir / "isolinux.bin").write_bytes(b"isolinux")
    (loader_dir / "ldlinux.c32").write_bytes(b"ldlinux")
    (tmp_path / "out").mkdir()
    (tmp_path / "tmp").mkdir()
    return tmp_path


@pytest.fixture
def settings(workspace: Path) -> Settings:
    """Settings pointing at the workspace, without the root requirement."""
    return Settings(
        config_path=workspace / "isobuild.ini",
        output_dir=workspace / "out",
        tmp_dir=workspace / "tmp",
        require_root=False,
    )


@pytest.fixture
def layer_factory():
    """Return :func:`make_layer` for tests that need extra layers."""
    return make_layer
