"""Tests for prereqs.py module."""

from unittest.mock import patch

import pytest

from isobuild.prereqs import (
    PrerequisiteError,
    check_build_prerequisites,
    check_dependencies,
    check_output_dir,
    check_required_files,
    check_root,
)


class TestCheckDependencies:
    """Tests for check_dependencies function."""

    def test_all_present(self):
        with patch("isobuild.prereqs.shutil.which", return_value="/usr/bin/tool"):
            check_dependencies()

    def test_missing_tools_listed(self):
        def which(tool):
            return None if tool in ("mkisofs", "git") else f"/usr/bin/{tool}"

        with patch("isobuild.prereqs.shutil.which", side_effect=which):
            with pytest.raises(PrerequisiteError) as exc_info:
                check_dependencies()

        assert exc_info.value.code == "missing_tools"
        assert "git, mkisofs" in str(exc_info.value)


class TestCheckPaths:
    """Tests for the output directory and required files checks."""

    def test_output_dir_present(self, settings):
        check_output_dir(settings)

    def test_output_dir_missing(self, settings, tmp_path):
        settings.output_dir = tmp_path / "missing"
        with pytest.raises(PrerequisiteError) as exc_info:
            check_output_dir(settings)
        assert exc_info.value.code == "output_dir_missing"

    def test_required_files_present(self, settings):
        check_required_files(settings)

    def test_loader_missing(self, settings, workspace):
        (workspace / "isolinux" / "ldlinux.c32").unlink()
        with pytest.raises(PrerequisiteError) as exc_info:
            check_required_files(settings)
        assert exc_info.value.code == "loader_missing"
        assert "ldlinux.c32" in str(exc_info.value)

    def test_layers_dir_missing(self, settings, tmp_path):
        settings.base_layers_dir = tmp_path / "nowhere"
        with pytest.raises(PrerequisiteError) as exc_info:
            check_required_files(settings)
        assert exc_info.value.code == "layers_dir_missing"


class TestCheckRoot:
    """Tests for check_root function."""

    def test_non_root_rejected(self, settings):
        settings.require_root = True
        with patch("isobuild.prereqs.os.geteuid", return_value=1000):
            with pytest.raises(PrerequisiteError) as exc_info:
                check_root(settings)
        assert exc_info.value.code == "not_root"

    def test_root_accepted(self, settings):
        settings.require_root = True
        with patch("isobuild.prereqs.os.geteuid", return_value=0):
            check_root(settings)

    def test_requirement_disabled(self, settings):
        with patch("isobuild.prereqs.os.geteuid", return_value=1000):
            check_root(settings)


class TestCheckBuildPrerequisites:
    """Tests for check_build_prerequisites function."""

    def test_ready_host(self, settings):
        with patch("isobuild.prereqs.shutil.which", return_value="/usr/bin/tool"):
            check_build_prerequisites(settings)

    def test_output_dir_checked_first(self, settings, tmp_path):
        settings.output_dir = tmp_path / "missing"
        with patch("isobuild.prereqs.shutil.which", return_value=None):
            with pytest.raises(PrerequisiteError) as exc_info:
                check_build_prerequisites(settings)
        assert exc_info.value.code == "output_dir_missing"
