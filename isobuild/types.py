"""Shared type definitions for isobuild.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class BuildStatus(str, Enum):
    """Outcome of one selected build."""

    NOT_PROCESSED = "not processed"
    BUILT = "built"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class LayerState(str, Enum):
    """State of a base layer within one run."""

    ARCHIVED = "archived"
    CACHED = "cached"
    FAILED = "failed"


@dataclass
class BuildOutcome:
    """Outcome of a build, as shown in the final report."""

    build_id: int
    name: str
    status: BuildStatus = BuildStatus.NOT_PROCESSED
    detail: str | None = None
    image_path: Path | None = None


__all__ = [
    "BuildOutcome",
    "BuildStatus",
    "LayerState",
]
