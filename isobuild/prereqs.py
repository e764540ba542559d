"""Checks performed before any build work starts.

A failed check is fatal for the whole run.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING

from isobuild.builds.pipeline import LOADER_FILES

if TYPE_CHECKING:
    from isobuild.config import Settings

logger = logging.getLogger(__name__)

# External tools invoked by the build pipeline
REQUIRED_TOOLS = ("git", "tar", "chroot", "mkisofs")


class PrerequisiteError(Exception):
    """Raised when the host is not ready to build images."""

    def __init__(
        self,
        message: str,
        hint: str | None = None,
        code: str = "prerequisite_error",
    ) -> None:
        super().__init__(message)
        self.hint = hint
        self.code = code


def check_dependencies(tools: tuple[str, ...] = REQUIRED_TOOLS) -> None:
    """Ensure every external tool is on PATH.

    Raises:
        PrerequisiteError: Naming the missing tools.
    """
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PrerequisiteError(
            f"Required tools are not installed: {', '.join(missing)}",
            hint="Please install them and try again",
            code="missing_tools",
        )


def check_output_dir(settings: Settings) -> None:
    if not settings.output_dir.is_dir():
        raise PrerequisiteError(
            f'The output directory BUILD_OUTPUT_DIR="{settings.output_dir}" does not exist',
            hint="Please create it and try again",
            code="output_dir_missing",
        )


def check_required_files(settings: Settings) -> None:
    """Ensure the bootloader files and the base layers directory exist."""
    for filename in LOADER_FILES:
        path = settings.loader_dir / filename
        if not path.is_file():
            raise PrerequisiteError(
                f"The required file '{path}' does not exist",
                hint="Please check BUILD_ISOLINUX_DIR or the installation",
                code="loader_missing",
            )
    if not settings.layers_root.is_dir():
        raise PrerequisiteError(
            f"The required directory '{settings.layers_root}' with base layers does not exist",
            hint="Please check BUILD_BASE_LAYERS_DIR or the installation",
            code="layers_dir_missing",
        )


def check_root(settings: Settings) -> None:
    if settings.require_root and os.geteuid() != 0:
        raise PrerequisiteError(
            "Building images requires root privileges",
            hint="Please run this command as the root user",
            code="not_root",
        )


def check_build_prerequisites(settings: Settings) -> None:
    """Run every check required before building.

    Args:
        settings: Application settings.

    Raises:
        PrerequisiteError: On the first failed check.
    """
    check_output_dir(settings)
    check_dependencies()
    logger.info("Checking required files")
    check_required_files(settings)
    check_root(settings)


__all__ = [
    "REQUIRED_TOOLS",
    "PrerequisiteError",
    "check_build_prerequisites",
    "check_dependencies",
    "check_output_dir",
    "check_required_files",
    "check_root",
]
