"""Parser for the build configuration INI dialect.

The dialect is line based:

- blank lines and lines starting with ``#`` are ignored;
- ``[name]`` starts a new build;
- ``key = "value"`` or ``key = value`` sets a parameter of the current build,
  optionally followed by a ``# comment``.

Every parameter must be one of the defaults in
:data:`isobuild.templates.schema.DEFAULT_PARAMETERS`. Builds inherit missing
parameters from the defaults once the whole file has been read.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from isobuild.templates.models import (
    DEFAULTS_ID,
    BuildRegistry,
    ParameterTable,
    TemplateConfig,
)
from isobuild.templates.schema import REQUIRED, is_valid_build_name, validate_value

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r"^\[([^\]]*)\]\s*(#.*)?$")
QUOTED_PARAM_RE = re.compile(r'^\s*([^\s=#]+)\s*=\s*"([^"]*)"\s*(#.*)?$')
BARE_PARAM_RE = re.compile(r"^\s*([^\s=#]+)\s*=\s*([^\s=#]+)\s*(#.*)?$")


class ConfigError(Exception):
    """Raised when the configuration file is missing or malformed."""

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        lineno: int | None = None,
        line: str | None = None,
        code: str = "config_error",
    ) -> None:
        self.message = message
        self.path = path
        self.lineno = lineno
        self.line = line
        self.code = code
        super().__init__(self._format())

    def _format(self) -> str:
        if self.lineno is None:
            return self.message
        return (
            f"Configuration file ({self.path}) at line {self.lineno}:\n"
            f"> {self.line}\n\n"
            f"{self.message}"
        )


def parse_config(path: Path) -> TemplateConfig:
    """Parse a build configuration file.

    Args:
        path: Path to the INI file.

    Returns:
        TemplateConfig with the parameter table and build registry.

    Raises:
        ConfigError: If the file is missing or any line is invalid.
    """
    if not path.is_file():
        raise ConfigError(
            f"Can't find a configuration file ({path})",
            path=path,
            code="config_not_found",
        )

    logger.info("Parsing the configuration file %s", path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(
            f"Can't read a configuration file ({path}): {e}",
            path=path,
            code="config_unreadable",
        ) from e
    return parse_config_text(text, path)


def parse_config_text(text: str, path: Path | None = None) -> TemplateConfig:
    """Parse configuration content.

    Args:
        text: INI document.
        path: Source path, used in error messages only.

    Returns:
        TemplateConfig with the parameter table and build registry.

    Raises:
        ConfigError: If any line is invalid or a required parameter is unset.
    """
    table = ParameterTable.with_defaults()
    registry = BuildRegistry()
    build_id = DEFAULTS_ID

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip("\r")
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        try:
            build_id = _parse_line(line, build_id, table, registry)
        except _LineError as e:
            raise ConfigError(
                e.message, path=path, lineno=lineno, line=line, code=e.code
            ) from None

    _inherit_defaults(table, registry, path)
    logger.debug("Parsed %d build(s) from %s", len(registry), path)
    return TemplateConfig(parameters=table, registry=registry)


class _LineError(Exception):
    """Rule violation on a single line, before location info is attached."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


def _parse_line(
    line: str,
    build_id: int,
    table: ParameterTable,
    registry: BuildRegistry,
) -> int:
    """Apply one non-blank, non-comment line.

    Returns:
        The id of the build that subsequent parameters belong to.
    """
    section = SECTION_RE.match(line)
    if section:
        name = section.group(1)
        if not is_valid_build_name(name):
            raise _LineError(
                f"Wrong name '{name}' for INI-section, must consist of "
                "characters (in regex notation): [A-Za-z0-9_.-]",
                "invalid_section",
            )
        if name in registry:
            raise _LineError(
                f"The duplicated build definition '{name}'", "duplicate_section"
            )
        return registry.add(name)

    param = QUOTED_PARAM_RE.match(line) or BARE_PARAM_RE.match(line)
    if param is None:
        raise _LineError("Cannot parse a string", "syntax_error")

    key, value = param.group(1), param.group(2)
    if build_id == DEFAULTS_ID:
        raise _LineError(
            "INI-parameters must be placed in INI-sections only",
            "parameter_outside_section",
        )
    if not table.has(DEFAULTS_ID, key):
        raise _LineError(
            f"The unknown INI-parameter name '{key}'", "unknown_parameter"
        )
    if table.has(build_id, key):
        raise _LineError(
            f"The parameter '{key}' is already defined earlier",
            "duplicate_parameter",
        )
    violation = validate_value(key, value)
    if violation:
        raise _LineError(
            f"The wrong value of '{key}' parameter: {violation}", "invalid_value"
        )
    table.set(build_id, key, value)
    return build_id


def _inherit_defaults(
    table: ParameterTable,
    registry: BuildRegistry,
    path: Path | None,
) -> None:
    """Copy default values into builds lacking an explicit value."""
    for key, default in table.defaults().items():
        for build_id in registry:
            if table.has(build_id, key):
                continue
            if default == REQUIRED:
                raise ConfigError(
                    f"Problem in configuration file ({path}): the required "
                    f"'{key}' parameter is not set in the "
                    f"'{registry.name(build_id)}' build definition",
                    path=path,
                    code="required_parameter",
                )
            table.set(build_id, key, default)


__all__ = ["ConfigError", "parse_config", "parse_config_text"]
