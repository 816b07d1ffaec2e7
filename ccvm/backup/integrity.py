"""
Deterministic hashing over a backup's file tree.

The same digest is stamped into a backup at creation time and recomputed
at verify/restore time, so any byte changed, file added or file removed
after creation shows up as a mismatch.

Walk order:
    Entries are visited sorted by name, recursing into directories. For
    every file its POSIX path relative to the root is fed to SHA-256,
    followed by its contents. Symlinks are not followed; their target
    text is hashed instead. Names in ``exclude`` are skipped at the root
    only, so a watched directory may itself contain a metadata.json.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

# Records written into every backup root; never part of the digest
METADATA_FILE = "metadata.json"
INTEGRITY_FILE = ".integrity"
RECORD_FILES = frozenset({METADATA_FILE, INTEGRITY_FILE})

HASH_ALGORITHM = "sha256"

# Read size for hashing file contents
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TreeDigest:
    """
    Result of hashing a directory tree.

    Attributes:
        checksum: Hex digest over paths and contents
        file_count: Number of files (and symlinks) hashed
        size_bytes: Total size of the hashed files
    """

    checksum: str
    file_count: int
    size_bytes: int


def iter_tree(root: Path, exclude: Iterable[str] = ()) -> Iterator[Path]:
    """
    Yield every non-directory entry under root in deterministic order.

    Args:
        root: Directory to walk
        exclude: Entry names to skip directly under root
    """
    excluded = frozenset(exclude)

    def walk(directory: Path, top: bool) -> Iterator[Path]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if top and entry.name in excluded:
                continue
            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                yield from walk(path, top=False)
            else:
                yield path

    yield from walk(Path(root), top=True)


def digest_tree(root: Path | str, exclude: Iterable[str] = RECORD_FILES) -> TreeDigest:
    """
    Hash a directory tree and count its files.

    Args:
        root: Directory to hash
        exclude: Names skipped at the root (default: backup record files)

    Returns:
        TreeDigest with checksum, file count and total size

    Raises:
        OSError: If the tree cannot be read.
    """
    root = Path(root)
    digest = hashlib.new(HASH_ALGORITHM)
    file_count = 0
    size_bytes = 0

    for path in iter_tree(root, exclude):
        relative = path.relative_to(root).as_posix()
        digest.update(relative.encode("utf-8"))
        digest.update(b"\0")

        if path.is_symlink():
            target = os.readlink(path)
            digest.update(b"link:")
            digest.update(os.fsencode(target))
        else:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                    digest.update(chunk)
                    size_bytes += len(chunk)

        digest.update(b"\0")
        file_count += 1

    return TreeDigest(
        checksum=digest.hexdigest(), file_count=file_count, size_bytes=size_bytes
    )


def hash_tree(root: Path | str, exclude: Iterable[str] = RECORD_FILES) -> str:
    """
    Return the hex checksum of a directory tree.

    Example:
        checksum = hash_tree(backup_dir)
        assert checksum == metadata.checksum
    """
    return digest_tree(root, exclude).checksum
