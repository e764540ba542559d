"""Parameter schema for build templates.

Defines the closed set of build parameters, their defaults and the
table-driven validators applied to every value read from the INI file.
"""

import re
from collections.abc import Callable

# Default value meaning "every build must set this parameter explicitly"
REQUIRED = "REQUIRED"

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
REPO_URL_PATTERN = re.compile(
    r"^(([A-Za-z0-9_.\-]+@[A-Za-z0-9_.\-]+:)?[A-Za-z0-9_/.\-]+(\.git)?)?$"
)
DEPTH_PATTERN = re.compile(r"^[0-9]+$")
REPO_PATH_PATTERN = re.compile(r"^[A-Za-z0-9_./\-]*$")

DEFAULT_PARAMETERS: dict[str, str] = {
    "base_layer": REQUIRED,
    "repo_url": "",
    "repo_checkout": "master",
    "repo_clone_into": "repo/",
    "repo_depth": "1",
    "run_from_repo": "/deploy.sh",
}

# A validator returns None for a valid value, or the rule the value breaks
Validator = Callable[[str], str | None]


def validate_name(value: str) -> str | None:
    """Validate a layer name or git ref."""
    if not NAME_PATTERN.match(value):
        return "it must consist of characters (in regex notation): [A-Za-z0-9_.-]"
    return None


def validate_repo_url(value: str) -> str | None:
    """Validate a git remote in scp-like form or a local path."""
    if not REPO_URL_PATTERN.match(value):
        return (
            "it must look like 'git@gitlab.server:path/to/reponame.git' "
            "or 'path/to/reponame'"
        )
    return None


def validate_depth(value: str) -> str | None:
    """Validate a clone depth."""
    if not DEPTH_PATTERN.match(value):
        return "it must be a number"
    return None


def validate_repo_path(value: str) -> str | None:
    """Validate a path relative to the chroot or the repository."""
    if not REPO_PATH_PATTERN.match(value):
        return "it must consist of characters (in regex notation): [A-Za-z0-9_./-]"
    if ".." in value:
        return "the '..' is forbidden to use"
    return None


def validate_not_empty(value: str) -> str | None:
    """Fallback validator for parameters without a dedicated rule."""
    if not value:
        return "it must not be empty"
    return None


VALIDATORS: dict[str, Validator] = {
    "base_layer": validate_name,
    "repo_checkout": validate_name,
    "repo_url": validate_repo_url,
    "repo_depth": validate_depth,
    "repo_clone_into": validate_repo_path,
    "run_from_repo": validate_repo_path,
}


def validate_value(key: str, value: str) -> str | None:
    """Validate a parameter value.

    Args:
        key: Parameter name.
        value: Raw value from the configuration file.

    Returns:
        None if the value is valid, otherwise a description of the violation.
    """
    validator = VALIDATORS.get(key, validate_not_empty)
    return validator(value)


def is_valid_build_name(name: str) -> bool:
    """Check whether a section name is an acceptable build name."""
    return bool(NAME_PATTERN.match(name))


__all__ = [
    "DEFAULT_PARAMETERS",
    "NAME_PATTERN",
    "REQUIRED",
    "VALIDATORS",
    "is_valid_build_name",
    "validate_value",
]
