"""Filesystem helpers: digests, path safety, atomic writes and scoped locks."""

from __future__ import annotations

import base64
import fcntl
import hashlib
import os
import secrets
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

DIGEST_TYPE = "blake2b"


def hash_file(path: Path, digest_size: int = 64) -> str:
    """Compute blake2b content digest of a file.

    Args:
        path: Path to file
        digest_size: Size of digest in bytes

    Returns:
        Hex digest of file content
    """
    hasher = hashlib.blake2b(digest_size=digest_size)
    # Read in chunks to handle large files
    with open(path, "rb") as f:
        while chunk := f.read(8192):
            hasher.update(chunk)
    return hasher.hexdigest()


def random_id_str(nbytes: int = 32) -> str:
    """Random url-safe identifier (base64url, no padding)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).decode("ascii").rstrip("=")


def relative_to_root(path: Path, root: Path) -> str:
    """Resolve `path` and return it relative to `root` in posix form.

    Raises:
        ValueError: If path is outside root
    """
    resolved = path.resolve()
    rel = resolved.relative_to(root.resolve())
    return rel.as_posix()


@contextmanager
def locked(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive flock on `lock_path` for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+b") as lock_fd:
        fcntl.flock(lock_fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text via temp file + fsync + rename; readers see old or new, never partial."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    _fsync_dir(path.parent)


def write_new_text(path: Path, text: str) -> None:
    """Atomically create `path`; FileExistsError if it already exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        # link() refuses to overwrite, unlike replace()
        os.link(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    _fsync_dir(path.parent)


def append_durably(f: IO[bytes], data: bytes) -> None:
    """Write all of `data` to an append-mode file and force it to disk."""
    f.write(data)
    f.flush()
    os.fsync(f.fileno())
