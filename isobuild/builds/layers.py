"""Base layer cache.

This module handles:
- Locating base layers and their build/pre-image scripts
- Content hashing of a layer to name its archive
- Building and archiving a layer when no archive matches its content
- Remembering per-run results so a layer is attempted at most once
- Locking archive creation against concurrent invocations

Archives live in the output directory as
``{name}-{tool_version}-{hash}.tar.gz`` and are the durable cache.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from isobuild import __version__
from isobuild.builds.hashing import hash_file_set
from isobuild.builds.runner import CommandError, compose_tar_create, run_command
from isobuild.types import LayerState

logger = logging.getLogger(__name__)

BUILD_SCRIPT = ".build.sh"
PRE_IMAGE_SCRIPT = ".pre_image.sh"
ARCHIVE_SUFFIX = ".tar.gz"


class InternalError(Exception):
    """Raised when an operation that should never fail does."""

    def __init__(self, message: str, code: str = "internal_error") -> None:
        super().__init__(message)
        self.code = code


class LayerError(Exception):
    """Base error for base layer operations."""

    def __init__(self, message: str, code: str = "layer_error") -> None:
        super().__init__(message)
        self.code = code


class LayerMissingError(LayerError):
    """Raised when a layer directory or its build script does not exist."""

    def __init__(self, message: str, code: str = "layer_missing") -> None:
        super().__init__(message, code)


class LayerBuildError(LayerError):
    """Raised when a layer fails to build or archive."""

    def __init__(self, message: str, code: str = "layer_build_failed") -> None:
        super().__init__(message, code)


@dataclass
class LayerRecord:
    """Per-run result for one base layer."""

    name: str
    state: LayerState
    archive_path: Path | None = None
    error: str | None = None


# Pause between attempts while another invocation holds a layer lock
LOCK_POLL_INTERVAL = 0.1


def _acquire(fd: int, deadline: float | None) -> None:
    """Take an exclusive flock on ``fd``, polling until ``deadline``."""
    if deadline is None:
        fcntl.flock(fd, fcntl.LOCK_EX)
        return
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise TimeoutError from None
            time.sleep(LOCK_POLL_INTERVAL)


def _still_linked(fd: int, lock_path: Path) -> bool:
    """Whether ``fd`` is still the file found at ``lock_path``."""
    try:
        on_disk = lock_path.stat()
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


@contextmanager
def layer_lock(lock_path: Path, timeout: float | None = None) -> Iterator[None]:
    """Hold the lock of one layer version while its archive is produced.

    The lock file is deleted on release, so only archives stay in the
    output directory. A waiter that wakes up holding a file the previous
    owner already deleted reopens the path and locks again.

    Args:
        lock_path: Lock file, next to the archive it guards.
        timeout: Seconds to wait for another invocation (None = forever).

    Raises:
        TimeoutError: If the layer is still locked after ``timeout``.
        OSError: If the lock file cannot be created or opened.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            _acquire(fd, deadline)
        except TimeoutError:
            os.close(fd)
            raise TimeoutError(
                f"The '{lock_path.name}' lock is held by another build "
                f"for more than {timeout} seconds"
            ) from None
        except BaseException:
            os.close(fd)
            raise
        if _still_linked(fd, lock_path):
            break
        os.close(fd)

    logger.debug("Locked %s", lock_path)
    try:
        yield
    finally:
        try:
            lock_path.unlink(missing_ok=True)
        finally:
            os.close(fd)
        logger.debug("Unlocked %s", lock_path)


def is_archived(archive_path: Path) -> bool:
    """Whether an archive exists and is non-empty."""
    return archive_path.is_file() and archive_path.stat().st_size > 0


class LayerCache:
    """Resolve base layer names to ready-to-unpack archives.

    One instance lives for one run; its in-memory records guarantee that
    each layer's build script is attempted at most once per run.
    """

    def __init__(
        self,
        layers_root: Path,
        output_dir: Path,
        work_dir: Path,
        tool_version: str = __version__,
        lock_timeout: float | None = 300,
        command_timeout: int | None = None,
    ) -> None:
        self.layers_root = layers_root
        self.output_dir = output_dir.absolute()
        self.work_dir = work_dir.absolute()
        self.tool_version = tool_version
        self.lock_timeout = lock_timeout
        self.command_timeout = command_timeout
        self._records: dict[str, LayerRecord] = {}

    def layer_dir(self, name: str) -> Path:
        return self.layers_root / name

    def pre_image_script(self, name: str) -> Path | None:
        """Return the layer's pre-image script, if it has one."""
        script = self.layer_dir(name) / PRE_IMAGE_SCRIPT
        return script if script.is_file() else None

    def archive_path(self, name: str, layer_hash: str) -> Path:
        return self.output_dir / f"{name}-{self.tool_version}-{layer_hash}{ARCHIVE_SUFFIX}"

    def lock_path(self, name: str, layer_hash: str) -> Path:
        return self.output_dir / f".{name}-{self.tool_version}-{layer_hash}.lock"

    def record(self, name: str) -> LayerRecord | None:
        """Return what happened to a layer so far in this run."""
        return self._records.get(name)

    def resolve(self, name: str) -> Path:
        """Return the archive of a base layer, building it if needed.

        Args:
            name: Base layer name.

        Returns:
            Path to a non-empty archive of the layer's root filesystem.

        Raises:
            LayerMissingError: If the layer or its build script is missing.
            LayerBuildError: If the layer fails to build now or did earlier.
            InternalError: If the scratch build directory cannot be created.
        """
        record = self._records.get(name)
        if record is not None:
            if record.state is LayerState.FAILED:
                raise LayerBuildError(
                    f"The base layer '{name}' failed to build on a previous step: "
                    f"{record.error}",
                    code="previous_failure",
                )
            assert record.archive_path is not None
            return record.archive_path

        layer_dir = self.layer_dir(name)
        if not layer_dir.is_dir():
            raise LayerMissingError(
                f"The base layer '{name}' does not exist in '{self.layers_root}'"
            )
        if not (layer_dir / BUILD_SCRIPT).is_file():
            raise LayerMissingError(
                f"The '{BUILD_SCRIPT}' script does not exist in '{layer_dir}'",
                code="build_script_missing",
            )

        try:
            archive = self._archive_or_build(name, layer_dir)
        except LayerBuildError as e:
            self._records[name] = LayerRecord(name, LayerState.FAILED, error=str(e))
            raise
        return archive

    def _archive_or_build(self, name: str, layer_dir: Path) -> Path:
        logger.info("Checking the hash sum of base layer '%s'", name)
        try:
            layer_hash = hash_file_set(layer_dir, exclude=[PRE_IMAGE_SCRIPT])
        except OSError as e:
            raise LayerBuildError(
                f"Can't get the hash sums of the '{name}' base layer files: {e}",
                code="layer_hash_failed",
            ) from e

        archive = self.archive_path(name, layer_hash)
        if is_archived(archive):
            logger.info(
                "The '%s' base layer with '%s' version already exists, skip building",
                name,
                layer_hash,
            )
            self._records[name] = LayerRecord(name, LayerState.CACHED, archive)
            return archive

        try:
            lock_path = self.lock_path(name, layer_hash)
            with layer_lock(lock_path, timeout=self.lock_timeout):
                # Another invocation may have finished it while we waited
                if is_archived(archive):
                    self._records[name] = LayerRecord(name, LayerState.CACHED, archive)
                    return archive
                self._build(name, layer_dir, layer_hash, archive)
        except TimeoutError as e:
            raise LayerBuildError(str(e), code="lock_timeout") from e
        except OSError as e:
            raise LayerBuildError(
                f"Can't lock the archive of '{name}' base layer: {e}",
                code="lock_failed",
            ) from e

        self._records[name] = LayerRecord(name, LayerState.ARCHIVED, archive)
        return archive

    def _build(self, name: str, layer_dir: Path, layer_hash: str, archive: Path) -> None:
        build_dir = self.work_dir / "layers" / name
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InternalError(
                f"Failed to create the build directory {build_dir}: {e}"
            ) from e

        logger.info(
            "Building the '%s' version of '%s' base layer (%s)",
            layer_hash,
            name,
            BUILD_SCRIPT,
        )
        try:
            result = run_command(
                [f"./{BUILD_SCRIPT}", str(build_dir)],
                cwd=layer_dir,
                timeout=self.command_timeout,
            )
        except CommandError as e:
            raise LayerBuildError(
                f"Failed to run '{BUILD_SCRIPT}' script from '{name}' base layer: {e}",
                code="build_script_failed",
            ) from e
        if not result.success:
            raise LayerBuildError(
                f"Failed to run '{BUILD_SCRIPT}' script from '{name}' base layer",
                code="build_script_failed",
            )

        logger.info("Archiving the '%s' version of '%s' base layer", layer_hash, name)
        partial = archive.with_name(
            archive.name.removesuffix(ARCHIVE_SUFFIX) + ".partial" + ARCHIVE_SUFFIX
        )
        try:
            result = run_command(
                compose_tar_create(build_dir, partial),
                timeout=self.command_timeout,
            )
        except CommandError as e:
            partial.unlink(missing_ok=True)
            raise LayerBuildError(
                f"Failed to create an archive of '{name}' base layer: {e}",
                code="archive_failed",
            ) from e
        if not result.success or not is_archived(partial):
            partial.unlink(missing_ok=True)
            raise LayerBuildError(
                f"Failed to create an archive of '{name}' base layer",
                code="archive_failed",
            )
        try:
            partial.replace(archive)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise LayerBuildError(
                f"Failed to move the archive of '{name}' base layer into place: {e}",
                code="archive_failed",
            ) from e


__all__ = [
    "BUILD_SCRIPT",
    "PRE_IMAGE_SCRIPT",
    "InternalError",
    "LayerBuildError",
    "LayerCache",
    "LayerError",
    "LayerMissingError",
    "LayerRecord",
    "is_archived",
    "layer_lock",
]
