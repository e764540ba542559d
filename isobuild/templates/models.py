"""Data models for build templates.

The parameter table maps ``(build_id, parameter)`` to a string value. Build
id 0 holds the defaults; declared builds are numbered from 1 in file order.
"""

from __future__ import annotations

import posixpath
from collections.abc import Iterator
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from isobuild.templates.schema import DEFAULT_PARAMETERS

DEFAULTS_ID = 0


class BuildParameters(BaseModel):
    """Resolved parameters of one build.

    Attributes:
        base_layer: Name of the base layer directory.
        repo_url: Git remote or local path; empty disables repo integration.
        repo_checkout: Commit, branch or tag to check out.
        repo_clone_into: Clone destination, relative to the chroot root.
        repo_depth: Clone depth (0 clones the full history).
        run_from_repo: Provisioning script, relative to the repository root.
    """

    model_config = ConfigDict(frozen=True)

    base_layer: str
    repo_url: str = ""
    repo_checkout: str = "master"
    repo_clone_into: str = "repo/"
    repo_depth: int = Field(default=1, ge=0)
    run_from_repo: str = "/deploy.sh"

    @property
    def uses_repo(self) -> bool:
        """Whether a git repository is cloned into the chroot."""
        return bool(self.repo_url and self.repo_clone_into)

    @property
    def chroot_script_path(self) -> str:
        """Absolute path of the provisioning script as seen inside the chroot."""
        joined = posixpath.join(
            "/", self.repo_clone_into.strip("/"), self.run_from_repo.lstrip("/")
        )
        return posixpath.normpath(joined)


@dataclass
class BuildRegistry:
    """Ordered mapping of build id to build name."""

    builds: dict[int, str] = field(default_factory=dict)

    def add(self, name: str) -> int:
        """Register a build and return its sequence number."""
        build_id = len(self.builds) + 1
        self.builds[build_id] = name
        return build_id

    def name(self, build_id: int) -> str:
        return self.builds[build_id]

    def find(self, name: str) -> int | None:
        """Return the id of a build by name, or None."""
        for build_id, build_name in self.builds.items():
            if build_name == name:
                return build_id
        return None

    def __contains__(self, name: object) -> bool:
        return name in self.builds.values()

    def __iter__(self) -> Iterator[int]:
        return iter(self.builds)

    def __len__(self) -> int:
        return len(self.builds)


@dataclass
class ParameterTable:
    """Two-level parameter table: defaults plus per-build values."""

    values: dict[tuple[int, str], str] = field(default_factory=dict)

    @classmethod
    def with_defaults(cls) -> ParameterTable:
        """Create a table holding only the default parameter set."""
        return cls(
            values={(DEFAULTS_ID, key): value for key, value in DEFAULT_PARAMETERS.items()}
        )

    def get(self, build_id: int, key: str) -> str | None:
        return self.values.get((build_id, key))

    def set(self, build_id: int, key: str, value: str) -> None:
        self.values[(build_id, key)] = value

    def has(self, build_id: int, key: str) -> bool:
        return (build_id, key) in self.values

    def defaults(self) -> dict[str, str]:
        """Return the default parameter set."""
        return {
            key: value
            for (build_id, key), value in self.values.items()
            if build_id == DEFAULTS_ID
        }

    def params(self, build_id: int) -> dict[str, str]:
        """Return the raw parameters stored for one build."""
        return {
            key: value
            for (owner, key), value in self.values.items()
            if owner == build_id
        }

    def resolve(self, build_id: int) -> BuildParameters:
        """Merge defaults and overrides into concrete build parameters.

        Args:
            build_id: Build sequence number.

        Returns:
            BuildParameters for the build.
        """
        merged = self.defaults()
        merged.update(self.params(build_id))
        return BuildParameters(**merged)


@dataclass
class TemplateConfig:
    """Result of parsing a configuration file."""

    parameters: ParameterTable
    registry: BuildRegistry

    def resolve(self, build_id: int) -> BuildParameters:
        return self.parameters.resolve(build_id)


__all__ = [
    "DEFAULTS_ID",
    "BuildParameters",
    "BuildRegistry",
    "ParameterTable",
    "TemplateConfig",
]
