"""Build selection from command-line tokens."""

from __future__ import annotations

from dataclasses import dataclass, field

from isobuild.templates.models import BuildRegistry

ALL_TOKEN = "all"
FORCE_TOKEN = "-f"


class SelectionError(Exception):
    """Raised when a requested build is not declared in the configuration."""

    def __init__(self, token: str, code: str = "unknown_build") -> None:
        super().__init__(
            f"The specified build '{token}' does not exist in the configuration file"
        )
        self.token = token
        self.code = code


@dataclass
class Selection:
    """Selected build ids (configuration order) and run flags."""

    build_ids: list[int] = field(default_factory=list)
    force: bool = False

    def __bool__(self) -> bool:
        return bool(self.build_ids)


def parse_selection(args: list[str], registry: BuildRegistry) -> Selection:
    """Map command-line tokens to build ids.

    ``all`` selects every build and ``-f`` forces rebuilding of existing
    images; both may appear anywhere. Any other token must name a build.

    Args:
        args: Tokens from the command line.
        registry: Declared builds.

    Returns:
        Selection with build ids in configuration order.

    Raises:
        SelectionError: On the first token that is not a build name.
    """
    selected: set[int] = set()
    force = False

    for token in args:
        if token == FORCE_TOKEN:
            force = True
        elif token == ALL_TOKEN:
            selected.update(registry)
        else:
            build_id = registry.find(token)
            if build_id is None:
                raise SelectionError(token)
            selected.add(build_id)

    return Selection(build_ids=sorted(selected), force=force)


__all__ = ["ALL_TOKEN", "FORCE_TOKEN", "Selection", "SelectionError", "parse_selection"]
