"""Content hashing for base layers and image identities.

This module handles:
- Short (8 hex characters) SHA-1 digests of files and strings
- Deterministic digests over a directory of files
- Image identity assembly and version tokens

Short digests keep file names human-scannable; they are a cache key, not a
security boundary. String digests hash the text followed by a newline, the
same bytes ``sha1sum <<<"$text"`` sees.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from fnmatch import fnmatch
from pathlib import Path

SHORT_HASH_LENGTH = 8

# Chunk size for file reads (bytes)
READ_CHUNK_SIZE = 64 * 1024


def _file_sha1(path: Path) -> str:
    sha1 = hashlib.sha1()
    with path.open("rb") as f:
        while chunk := f.read(READ_CHUNK_SIZE):
            sha1.update(chunk)
    return sha1.hexdigest()


def hash_text(text: str) -> str:
    """Short digest of a string.

    Args:
        text: Text to hash.

    Returns:
        First 8 hex characters of the SHA-1 of ``text + "\\n"``.
    """
    data = (text + "\n").encode("utf-8")
    return hashlib.sha1(data).hexdigest()[:SHORT_HASH_LENGTH]


def hash_file(path: Path) -> str:
    """Short digest of a file's content.

    Args:
        path: File to hash.

    Returns:
        First 8 hex characters of the SHA-1 of the file bytes.
    """
    return _file_sha1(path)[:SHORT_HASH_LENGTH]


def hash_file_or_string(value: str | Path) -> str:
    """Hash a file if ``value`` names one, otherwise hash ``value`` as text."""
    path = Path(value)
    if path.is_file():
        return hash_file(path)
    return hash_text(str(value))


def list_file_digests(root: Path, exclude: Iterable[str] = ()) -> list[str]:
    """List ``"<sha1>  <path>"`` lines for every regular file under ``root``.

    Paths are relative to ``root`` and sorted, so the listing only depends on
    file names and contents. Symlinks are not followed.

    Args:
        root: Directory to walk.
        exclude: Glob patterns matched against file names.

    Returns:
        One line per file, in lexical path order.
    """
    patterns = list(exclude)
    lines: list[str] = []
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        if any(fnmatch(path.name, pattern) for pattern in patterns):
            continue
        rel_path = path.relative_to(root).as_posix()
        lines.append(f"{_file_sha1(path)}  {rel_path}")
    return lines


def hash_file_set(root: Path, exclude: Iterable[str] = ()) -> str:
    """Short digest over all regular files under ``root``.

    Args:
        root: Directory to walk.
        exclude: Glob patterns matched against file names.

    Returns:
        Short digest of the :func:`list_file_digests` listing.
    """
    return hash_text("\n".join(list_file_digests(root, exclude)))


@dataclass(frozen=True)
class ImageIdentity:
    """Everything that determines the content of a built image.

    Attributes:
        archive_name: File name of the base layer archive.
        run_script: Provisioning script path, when a repository is used.
        pre_image_hash: Short digest of the pre-image script, if present.
        git_short_hash: Checked-out commit, when a repository is used.
    """

    archive_name: str
    run_script: str | None = None
    pre_image_hash: str | None = None
    git_short_hash: str | None = None

    @property
    def source(self) -> str:
        """Identity string fed to the version hash."""
        parts = [self.archive_name]
        if self.run_script is not None:
            parts.append(self.run_script)
        parts.append(self.pre_image_hash or "")
        if self.git_short_hash is not None:
            parts.append(self.git_short_hash)
        return "-".join(parts)

    @property
    def version(self) -> str:
        """Short version token of the image."""
        return hash_text(self.source)

    def image_filename(self, build_name: str, day: date) -> str:
        """Render ``{build}-{YYMMDD}[-{git}]-{version}.iso``."""
        parts = [build_name, day.strftime("%y%m%d")]
        if self.git_short_hash is not None:
            parts.append(self.git_short_hash)
        parts.append(self.version)
        return "-".join(parts) + ".iso"


__all__ = [
    "SHORT_HASH_LENGTH",
    "ImageIdentity",
    "hash_file",
    "hash_file_or_string",
    "hash_file_set",
    "hash_text",
    "list_file_digests",
]
