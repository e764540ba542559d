"""Build templates module.

This module handles:
- Parameter schema and validation
- Parsing the INI configuration file
- Selecting builds from command-line tokens
"""

from isobuild.templates.models import BuildParameters, BuildRegistry, ParameterTable, TemplateConfig
from isobuild.templates.parser import ConfigError, parse_config, parse_config_text
from isobuild.templates.selection import Selection, SelectionError, parse_selection

__all__ = [
    "BuildParameters",
    "BuildRegistry",
    "ConfigError",
    "ParameterTable",
    "Selection",
    "SelectionError",
    "TemplateConfig",
    "parse_config",
    "parse_config_text",
    "parse_selection",
]
