"""Build pipeline.

This module provides the high-level build API:
- scratch_directory(): per-run temporary tree, removed on every exit path
- BuildPipeline.build(): one build, from base layer to ISO image
- run_builds(): main entry point - build every selected template in order

Each stage failure raises BuildSkipped with a reason; the run loop records
it and moves on to the next build. Partial state of a skipped build stays
in the scratch directory until the run ends.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from isobuild.builds.hashing import ImageIdentity, hash_file
from isobuild.builds.layers import (
    PRE_IMAGE_SCRIPT,
    InternalError,
    LayerCache,
    LayerError,
)
from isobuild.builds.runner import (
    CommandError,
    capture_command,
    compose_chroot_command,
    compose_git_checkout,
    compose_git_clone,
    compose_git_rev_parse,
    compose_mkisofs_command,
    compose_tar_extract,
    run_command,
)

if TYPE_CHECKING:
    from isobuild.builds.report import BuildReport
    from isobuild.config import Settings
    from isobuild.templates.models import BuildParameters, TemplateConfig
    from isobuild.templates.selection import Selection

logger = logging.getLogger(__name__)

# Bootloader binaries copied into every image
LOADER_FILES = ("isolinux.bin", "ldlinux.c32")


class BuildSkipped(Exception):
    """Raised when a build stage fails and the build is abandoned."""

    def __init__(self, reason: str, code: str = "build_skipped") -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code


def find_mount_points(root: Path) -> list[Path]:
    """List directories under ``root`` that are mount points."""
    mounts: list[Path] = []
    for dirpath, dirnames, _ in os.walk(root):
        for dirname in list(dirnames):
            path = Path(dirpath) / dirname
            if os.path.ismount(path):
                mounts.append(path)
                dirnames.remove(dirname)
    return mounts


@contextmanager
def scratch_directory(parent: Path | None = None) -> Iterator[Path]:
    """Create the per-run scratch directory and remove it afterwards.

    The tree is left in place, with an error logged, if a filesystem is
    still mounted inside it (e.g. ``proc`` in a chroot).

    Args:
        parent: Directory to create it in (system default if None).

    Yields:
        Path to the scratch directory.
    """
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    work_dir = Path(tempfile.mkdtemp(prefix="isobuild_", dir=parent)).absolute()
    logger.debug("Created scratch directory %s", work_dir)
    try:
        yield work_dir
    finally:
        mounts = find_mount_points(work_dir)
        if mounts:
            logger.error(
                "Not removing scratch directory %s, still mounted: %s",
                work_dir,
                ", ".join(str(m) for m in mounts),
            )
        else:
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.debug("Removed scratch directory %s", work_dir)


@dataclass
class BuildPaths:
    """Scratch directories of one build."""

    chroot_dir: Path
    image_dir: Path

    @property
    def loader_dir(self) -> Path:
        return self.image_dir / "isolinux"


class BuildPipeline:
    """Turn one configured build into an ISO image."""

    def __init__(
        self,
        settings: Settings,
        config: TemplateConfig,
        layers: LayerCache,
        work_dir: Path,
        force: bool = False,
        today: date | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.layers = layers
        self.work_dir = work_dir.absolute()
        self.force = force
        self.today = today or date.today()

    def build(self, build_id: int) -> Path:
        """Build the image of one configured build.

        Args:
            build_id: Build sequence number.

        Returns:
            Path of the created ISO image.

        Raises:
            BuildSkipped: If any stage fails or the image already exists.
            InternalError: If an operation that should never fail does.
        """
        name = self.config.registry.name(build_id)
        params = self.config.resolve(build_id)
        logger.info(
            "Will build a '%s' image (based on '%s' layer)", name, params.base_layer
        )

        archive = self._resolve_layer(params)
        paths = self._unpack(name, params, archive)

        repo_dir: Path | None = None
        git_short_hash: str | None = None
        if params.uses_repo:
            repo_dir = paths.chroot_dir / params.repo_clone_into.lstrip("/")
            git_short_hash = self._integrate_repo(params, repo_dir)

        pre_image = self.layers.pre_image_script(params.base_layer)
        identity = ImageIdentity(
            archive_name=archive.name,
            run_script=params.run_from_repo if params.uses_repo else None,
            pre_image_hash=self._pre_image_hash(pre_image),
            git_short_hash=git_short_hash,
        )
        logger.info("The source image version is '%s'", identity.source)
        logger.info("The calculated version of image is '%s'", identity.version)

        image_path = self.settings.output_dir / identity.image_filename(name, self.today)
        logger.info("The resulting ISO image will be '%s'", image_path)
        if not self.force and image_path.exists():
            raise BuildSkipped(
                f"The image '{image_path}' already exists", code="already_exists"
            )

        if repo_dir is not None:
            self._provision(params, repo_dir, paths)
        if pre_image is not None:
            self._run_pre_image(params, pre_image, paths)
        self._stage_loader(paths)
        self._make_iso(paths, image_path)
        return image_path

    def _run(self, cmd: list[str], reason: str, cwd: Path | None = None) -> None:
        """Run a stage command, turning any failure into BuildSkipped."""
        try:
            result = run_command(cmd, cwd=cwd, timeout=self.settings.command_timeout)
        except CommandError as e:
            raise BuildSkipped(f"{reason}: {e}", code=e.code) from e
        if not result.success:
            raise BuildSkipped(reason, code="command_failed")

    def _resolve_layer(self, params: BuildParameters) -> Path:
        try:
            archive = self.layers.resolve(params.base_layer)
        except LayerError as e:
            raise BuildSkipped(str(e), code=e.code) from e
        record = self.layers.record(params.base_layer)
        if record is not None:
            logger.info("Using %s base layer archive %s", record.state.value, archive)
        return archive

    def _unpack(self, name: str, params: BuildParameters, archive: Path) -> BuildPaths:
        build_root = self.work_dir / "builds" / name
        paths = BuildPaths(
            chroot_dir=build_root / "chroot",
            image_dir=build_root / "image",
        )
        logger.info("Creating 'chroot' and 'image' directories in %s", build_root)
        try:
            paths.chroot_dir.mkdir(parents=True, exist_ok=True)
            paths.loader_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuildSkipped(
                f"Failed to create 'chroot' and 'image' directories: {e}",
                code="mkdir_failed",
            ) from e

        logger.info("Unarchiving the base layer '%s'", params.base_layer)
        self._run(
            compose_tar_extract(archive, paths.chroot_dir),
            f"Failed to unarchive the base layer '{params.base_layer}'",
        )
        return paths

    def _integrate_repo(self, params: BuildParameters, repo_dir: Path) -> str:
        """Clone and check out the repository, returning its short HEAD hash."""
        logger.info(
            "Cloning the git repo from '%s' with depth %d",
            params.repo_url,
            params.repo_depth,
        )
        self._run(
            compose_git_clone(params.repo_url, repo_dir, params.repo_depth),
            f"Failed to clone the git repo from '{params.repo_url}'",
        )

        logger.info("Checking out '%s'", params.repo_checkout)
        self._run(
            compose_git_checkout(repo_dir, params.repo_checkout),
            f"Failed to check out the git repo to '{params.repo_checkout}' "
            "commit/branch/tag",
        )

        try:
            short_hash = capture_command(compose_git_rev_parse(repo_dir))
        except CommandError as e:
            raise BuildSkipped(
                f"Failed to get the hash of 'HEAD' reference of git repo: {e}",
                code=e.code,
            ) from e
        logger.info("The hash of 'HEAD' reference is '%s'", short_hash)
        return short_hash

    def _pre_image_hash(self, pre_image: Path | None) -> str | None:
        if pre_image is None:
            return None
        try:
            digest = hash_file(pre_image)
        except OSError as e:
            raise BuildSkipped(
                f"Failed to get the hash sum of '{pre_image}' script: {e}",
                code="hash_failed",
            ) from e
        logger.info("The hash of '%s' script is '%s'", pre_image, digest)
        return digest

    def _provision(
        self, params: BuildParameters, repo_dir: Path, paths: BuildPaths
    ) -> None:
        script = repo_dir / params.run_from_repo.lstrip("/")
        if not script.is_file():
            logger.info("No '%s' script in the git repo, skip running", params.run_from_repo)
            return

        logger.info("Running the '%s' script in chroot", params.run_from_repo)
        self._run(
            compose_chroot_command(
                paths.chroot_dir,
                params.chroot_script_path,
                path=self.settings.chroot_path,
                lang=self.settings.chroot_lang,
            ),
            f"Failed to run '{params.run_from_repo}' script in chroot from git repo",
            cwd=self.layers.layer_dir(params.base_layer),
        )

    def _run_pre_image(
        self, params: BuildParameters, pre_image: Path, paths: BuildPaths
    ) -> None:
        logger.info(
            "Running the '%s' script from '%s' base layer",
            PRE_IMAGE_SCRIPT,
            params.base_layer,
        )
        self._run(
            [f"./{pre_image.name}", str(paths.chroot_dir), str(paths.image_dir)],
            f"Failed to run '{PRE_IMAGE_SCRIPT}' script from "
            f"'{params.base_layer}' base layer",
            cwd=pre_image.parent,
        )

    def _stage_loader(self, paths: BuildPaths) -> None:
        logger.info("Copying isolinux loader into the image tree")
        try:
            for filename in LOADER_FILES:
                shutil.copy2(self.settings.loader_dir / filename, paths.loader_dir)
        except OSError as e:
            raise BuildSkipped(
                f"Failed to copy isolinux loader into the image tree: {e}",
                code="loader_copy_failed",
            ) from e

    def _make_iso(self, paths: BuildPaths, image_path: Path) -> None:
        logger.info("Making ISO image file %s", image_path)
        try:
            self._run(
                compose_mkisofs_command(
                    paths.image_dir, image_path, self.settings.mkisofs_options
                ),
                "Failed to make ISO image file",
            )
        except BuildSkipped:
            # A truncated image would pass the existence check next time
            image_path.unlink(missing_ok=True)
            raise


def run_builds(
    selection: Selection,
    config: TemplateConfig,
    settings: Settings,
    report: BuildReport,
    today: date | None = None,
) -> BuildReport:
    """Build every selected template, one after another.

    Per-build failures are recorded in the report and do not stop the run.
    On KeyboardInterrupt the in-flight build is marked aborted, the scratch
    directory is removed and the interrupt propagates.

    Args:
        selection: Selected build ids and the force flag.
        config: Parsed configuration.
        settings: Application settings.
        report: Report receiving the outcomes.
        today: Date stamped into image names (defaults to today).

    Returns:
        The updated report.

    Raises:
        InternalError: If an operation that should never fail does.
        KeyboardInterrupt: If the run is interrupted.
    """
    try:
        with scratch_directory(settings.tmp_dir) as work_dir:
            layers = LayerCache(
                layers_root=settings.layers_root,
                output_dir=settings.output_dir,
                work_dir=work_dir,
                lock_timeout=settings.lock_timeout,
                command_timeout=settings.command_timeout,
            )
            pipeline = BuildPipeline(
                settings=settings,
                config=config,
                layers=layers,
                work_dir=work_dir,
                force=selection.force,
                today=today,
            )
            for build_id in selection.build_ids:
                report.start(build_id)
                name = config.registry.name(build_id)
                try:
                    image_path = pipeline.build(build_id)
                except BuildSkipped as e:
                    logger.warning("Skipping '%s': %s", name, e.reason)
                    report.mark_skipped(build_id, e.reason)
                else:
                    logger.info("Built '%s': %s", name, image_path)
                    report.mark_built(build_id, image_path)
    except KeyboardInterrupt:
        report.abort()
        raise

    return report


__all__ = [
    "LOADER_FILES",
    "BuildPaths",
    "BuildPipeline",
    "BuildSkipped",
    "InternalError",
    "find_mount_points",
    "run_builds",
    "scratch_directory",
]
