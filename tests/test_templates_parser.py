"""Tests for templates/parser.py module.

Tests the INI dialect, per-line error reporting and default inheritance.
"""

from pathlib import Path

import pytest

from isobuild.templates.models import DEFAULTS_ID
from isobuild.templates.parser import ConfigError, parse_config, parse_config_text

SAMPLE_CONFIG = """\
# Builds of LiveCD images

[xenial-air]
base_layer = "xenial-amd64-minbase"   # trailing comment
repo_url = git@gitlab.example.com:ops/air.git
repo_checkout=develop

[stretch.plain]
  base_layer=stretch-amd64-minbase
repo_depth = "0"
run_from_repo = ""
"""


class TestParseConfigText:
    """Tests for parse_config_text function."""

    def test_registers_builds_in_file_order(self):
        """Should number builds from 1 in declaration order."""
        config = parse_config_text(SAMPLE_CONFIG)

        assert config.registry.builds == {1: "xenial-air", 2: "stretch.plain"}

    def test_explicit_values(self):
        """Should store quoted and bare values without quotes or comments."""
        config = parse_config_text(SAMPLE_CONFIG)
        table = config.parameters

        assert table.get(1, "base_layer") == "xenial-amd64-minbase"
        assert table.get(1, "repo_url") == "git@gitlab.example.com:ops/air.git"
        assert table.get(1, "repo_checkout") == "develop"
        assert table.get(2, "base_layer") == "stretch-amd64-minbase"
        assert table.get(2, "repo_depth") == "0"
        assert table.get(2, "run_from_repo") == ""

    def test_inherits_defaults(self):
        """Should fill unset parameters from the defaults."""
        config = parse_config_text(SAMPLE_CONFIG)
        table = config.parameters

        assert table.get(1, "repo_depth") == "1"
        assert table.get(1, "repo_clone_into") == "repo/"
        assert table.get(1, "run_from_repo") == "/deploy.sh"
        assert table.get(2, "repo_url") == ""
        assert table.get(2, "repo_checkout") == "master"

    def test_defaults_untouched(self):
        """Build values should not leak into the defaults."""
        config = parse_config_text(SAMPLE_CONFIG)

        assert config.parameters.get(DEFAULTS_ID, "repo_checkout") == "master"
        assert config.parameters.get(DEFAULTS_ID, "base_layer") == "REQUIRED"

    def test_deterministic(self):
        """Parsing twice should yield identical tables."""
        first = parse_config_text(SAMPLE_CONFIG)
        second = parse_config_text(SAMPLE_CONFIG)

        assert first.parameters.values == second.parameters.values
        assert first.registry.builds == second.registry.builds

    def test_empty_document(self):
        """An empty file declares no builds."""
        config = parse_config_text("\n# only a comment\n   \n")
        assert len(config.registry) == 0

    def test_section_with_comment(self):
        """A section header may carry a trailing comment."""
        config = parse_config_text("[foo]  # the foo build\nbase_layer = minbase\n")
        assert config.registry.builds == {1: "foo"}

    def test_quoted_path_value(self):
        """Quoted values keep inner characters up to the closing quote."""
        config = parse_config_text(
            '[foo]\nbase_layer = "minbase"\nrepo_url = "repos/foo.git"\n'
        )
        assert config.parameters.get(1, "repo_url") == "repos/foo.git"

    def test_resolve_returns_typed_parameters(self):
        """resolve() should merge defaults into a BuildParameters model."""
        config = parse_config_text(SAMPLE_CONFIG)

        params = config.resolve(2)
        assert params.base_layer == "stretch-amd64-minbase"
        assert params.repo_depth == 0
        assert params.uses_repo is False

        params = config.resolve(1)
        assert params.uses_repo is True
        assert params.chroot_script_path == "/repo/deploy.sh"


class TestParseErrors:
    """Tests for configuration errors."""

    def test_missing_required_parameter(self):
        """A build without base_layer should name the build and parameter."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nrepo_checkout = main\n")

        assert exc_info.value.code == "required_parameter"
        assert "foo" in str(exc_info.value)
        assert "base_layer" in str(exc_info.value)

    def test_section_only_build_fails_required(self):
        """A bare section lacks the required base_layer."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\n")
        assert exc_info.value.code == "required_parameter"

    def test_error_carries_location(self, tmp_path):
        """Line errors should include path, line number and line text."""
        path = tmp_path / "builds.ini"
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nbase_layer = minbase\nthis is garbage\n", path)

        error = exc_info.value
        assert error.code == "syntax_error"
        assert error.path == path
        assert error.lineno == 3
        assert error.line == "this is garbage"
        assert f"Configuration file ({path}) at line 3" in str(error)
        assert "> this is garbage" in str(error)

    def test_parameter_outside_section(self):
        """Parameters before the first section are rejected."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("base_layer = minbase\n[foo]\n")
        assert exc_info.value.code == "parameter_outside_section"
        assert exc_info.value.lineno == 1

    def test_unknown_parameter(self):
        """Only default parameter names are accepted."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nbase_layer = minbase\nhostname = box\n")
        assert exc_info.value.code == "unknown_parameter"
        assert "hostname" in str(exc_info.value)

    def test_duplicate_parameter(self):
        """A parameter may be set once per build."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nbase_layer = a\nbase_layer = b\n")
        assert exc_info.value.code == "duplicate_parameter"
        assert exc_info.value.lineno == 3

    def test_same_parameter_in_two_builds(self):
        """The same parameter may appear once in each build."""
        config = parse_config_text("[foo]\nbase_layer = a\n[bar]\nbase_layer = b\n")
        assert config.parameters.get(1, "base_layer") == "a"
        assert config.parameters.get(2, "base_layer") == "b"

    def test_duplicate_section(self):
        """Build names must be unique."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nbase_layer = a\n[foo]\nbase_layer = b\n")
        assert exc_info.value.code == "duplicate_section"

    @pytest.mark.parametrize("name", ["", "with space", "semi;colon", "slash/name"])
    def test_invalid_section_name(self, name):
        """Section names are limited to [A-Za-z0-9_.-]."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text(f"[{name}]\nbase_layer = a\n")
        assert exc_info.value.code == "invalid_section"

    @pytest.mark.parametrize(
        "line",
        [
            'repo_depth = "deep"',
            'repo_clone_into = "../escape"',
            'run_from_repo = "a b"',
            "repo_checkout = v1;rm",
            'repo_url = "https://example.com/repo.git"',
            'base_layer = ""',
        ],
    )
    def test_invalid_values(self, line):
        """Values failing their validator are rejected with the rule."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text(f"[foo]\n{line}\n")
        assert exc_info.value.code == "invalid_value"
        assert exc_info.value.lineno == 2

    def test_empty_bare_value_is_a_syntax_error(self):
        """An unquoted empty value cannot be parsed."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config_text("[foo]\nbase_layer =\n")
        assert exc_info.value.code == "syntax_error"


class TestParseConfig:
    """Tests for parse_config function."""

    def test_reads_file(self, tmp_path: Path):
        """Should parse a configuration file from disk."""
        path = tmp_path / "builds.ini"
        path.write_text(SAMPLE_CONFIG)

        config = parse_config(path)
        assert config.registry.builds == {1: "xenial-air", 2: "stretch.plain"}

    def test_missing_file(self, tmp_path: Path):
        """A missing file is a configuration error."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config(tmp_path / "absent.ini")
        assert exc_info.value.code == "config_not_found"

    def test_crlf_line_endings(self, tmp_path: Path):
        """Windows line endings should be tolerated."""
        path = tmp_path / "builds.ini"
        path.write_bytes(b"[foo]\r\nbase_layer = minbase\r\n")

        config = parse_config(path)
        assert config.parameters.get(1, "base_layer") == "minbase"
