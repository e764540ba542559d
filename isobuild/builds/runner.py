"""Runner for the external tools a build depends on.

This module handles:
- Composing tar, git, chroot and mkisofs command lines
- Executing commands with output passed through to the terminal
- Capturing the output of short query commands
- Enforcing command timeouts
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# Boot options common to every isolinux-based image
MKISOFS_BOOT_OPTIONS = [
    "-boot-load-size",
    "4",
    "-boot-info-table",
    "-eltorito-boot",
    "isolinux/isolinux.bin",
    "-eltorito-catalog",
    "isolinux/boot.cat",
    "-joliet",
    "-no-emul-boot",
]


class CommandError(Exception):
    """Raised when a command cannot be run or a captured command fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "command_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        success: Whether the command exited with status 0.
        exit_code: Process exit code.
        command: The command that was executed.
        started_at: Start time.
        finished_at: Finish time.
        error_message: Error message if the command failed.
    """

    success: bool
    exit_code: int
    command: str
    started_at: datetime
    finished_at: datetime
    error_message: str | None = None

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def compose_tar_create(source_dir: Path, archive_path: Path) -> list[str]:
    """Compose the command archiving a directory tree.

    The compression is chosen by tar from the archive suffix.
    """
    return [
        "tar",
        "--auto-compress",
        "--create",
        "--directory",
        f"{source_dir}/",
        "--file",
        str(archive_path),
        ".",
    ]


def compose_tar_extract(archive_path: Path, dest_dir: Path) -> list[str]:
    """Compose the command unpacking an archive into a directory."""
    return [
        "tar",
        "--auto-compress",
        "--extract",
        "--file",
        str(archive_path),
        "--directory",
        str(dest_dir),
    ]


def compose_git_clone(url: str, dest_dir: Path, depth: int) -> list[str]:
    """Compose a git clone command.

    Args:
        url: Remote URL or local path.
        dest_dir: Clone destination.
        depth: History depth; 0 clones the full history.

    Returns:
        Command as list of strings.
    """
    cmd = ["git", "clone"]
    if depth > 0:
        cmd.append(f"--depth={depth}")
    cmd.extend(["--", url, str(dest_dir)])
    return cmd


def compose_git_checkout(repo_dir: Path, ref: str) -> list[str]:
    return ["git", "-C", str(repo_dir), "checkout", ref]


def compose_git_rev_parse(repo_dir: Path) -> list[str]:
    return ["git", "-C", str(repo_dir), "rev-parse", "--short=8", "HEAD"]


def compose_chroot_command(
    chroot_dir: Path,
    script: str,
    path: str,
    lang: str,
) -> list[str]:
    """Compose a command running a script inside a chroot.

    The script sees an empty environment apart from PATH and LANG.

    Args:
        chroot_dir: Root of the chroot.
        script: Script path as seen inside the chroot.
        path: PATH value inside the chroot.
        lang: LANG value inside the chroot.

    Returns:
        Command as list of strings.
    """
    return [
        "chroot",
        str(chroot_dir),
        "/usr/bin/env",
        "-",
        f"PATH={path}",
        f"LANG={lang}",
        script,
    ]


def compose_mkisofs_command(
    image_dir: Path,
    output_path: Path,
    options: str = "",
) -> list[str]:
    """Compose the mkisofs command for an isolinux-bootable image.

    Args:
        image_dir: Directory tree to put on the image.
        output_path: ISO file to write.
        options: Extra options, shell-quoted.

    Returns:
        Command as list of strings.
    """
    cmd = ["mkisofs"]
    cmd.extend(shlex.split(options))
    cmd.extend(MKISOFS_BOOT_OPTIONS)
    cmd.extend(["-output", str(output_path), "-rational-rock", str(image_dir)])
    return cmd


def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """Execute a command, passing its output through.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        CommandResult with execution details.

    Raises:
        CommandError: If the command cannot be started or times out.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    if cwd is not None:
        logger.debug("Working directory: %s", cwd)

    started_at = datetime.now(timezone.utc)
    error_message: str | None = None

    try:
        result = subprocess.run(cmd, cwd=cwd, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise CommandError(
            f"Command timed out after {timeout} seconds: {cmd_str}",
            exit_code=-1,
            code="command_timeout",
        ) from e
    except OSError as e:
        raise CommandError(
            f"Failed to execute {cmd[0]}: {e}",
            code="execution_error",
        ) from e

    exit_code = result.returncode
    if exit_code != 0:
        error_message = f"{cmd[0]} failed with exit code {exit_code}"
        logger.error(error_message)

    command_result = CommandResult(
        success=exit_code == 0,
        exit_code=exit_code,
        command=cmd_str,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        error_message=error_message,
    )
    logger.debug("%s finished in %.1fs", cmd[0], command_result.duration)
    return command_result


def capture_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: int | None = 60,
) -> str:
    """Execute a query command and return its stripped stdout.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        timeout: Timeout in seconds.

    Returns:
        Standard output without surrounding whitespace.

    Raises:
        CommandError: If the command fails, times out or cannot be started.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Capturing: %s", cmd_str)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(
            f"{cmd_str} timed out after {timeout}s",
            exit_code=-1,
            code="command_timeout",
        ) from e
    except subprocess.CalledProcessError as e:
        raise CommandError(
            f"{cmd_str} failed: {e.stderr.strip()}",
            exit_code=e.returncode,
            code="command_failed",
        ) from e
    except OSError as e:
        raise CommandError(
            f"Failed to execute {cmd[0]}: {e}",
            code="execution_error",
        ) from e
    return result.stdout.strip()


__all__ = [
    "MKISOFS_BOOT_OPTIONS",
    "CommandError",
    "CommandResult",
    "capture_command",
    "compose_chroot_command",
    "compose_git_checkout",
    "compose_git_clone",
    "compose_git_rev_parse",
    "compose_mkisofs_command",
    "compose_tar_create",
    "compose_tar_extract",
    "run_command",
]
