"""Staging area: the set of files a reviewer intends to vouch for next."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from crev.config import CREV_DOT_NAME
from crev.errors import (
    PathOutsideProjectError,
    StagingConsistencyError,
    StagingError,
)
from crev.fsutil import DIGEST_TYPE, atomic_write_text, hash_file, locked, relative_to_root
from crev.proof import FileReviewRecord

logger = logging.getLogger(__name__)

STAGING_FILE_NAME = "staging"
STAGING_VERSION = 1


@dataclass(frozen=True)
class StagingEntry:
    """A staged file and the content state recorded when it was staged."""

    path: str
    digest: str
    size: int
    digest_type: str = DIGEST_TYPE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "digest": self.digest,
            "digest_type": self.digest_type,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict[str, Any]) -> StagingEntry:
        """Create from dictionary.

        Raises:
            ValueError: If path is empty, absolute, or climbs out of the root
        """
        rel = PurePosixPath(path)
        if not path or rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"staged path escapes project root: {path!r}")
        return cls(
            path=path,
            digest=data["digest"],
            size=int(data["size"]),
            digest_type=data.get("digest_type", DIGEST_TYPE),
        )

    @classmethod
    def from_file(cls, file_path: Path, rel_path: str) -> StagingEntry:
        stat = file_path.stat()
        return cls(path=rel_path, digest=hash_file(file_path), size=stat.st_size)

    def to_review_file(self) -> FileReviewRecord:
        return FileReviewRecord(path=self.path, digest=self.digest, digest_type=self.digest_type)


class StagingArea:
    """Persistent set of staged files, keyed by project-relative path.

    Mutations only live in memory until `save()` is called.
    """

    def __init__(self, root_dir: Path, entries: dict[str, StagingEntry] | None = None) -> None:
        self.root_dir = root_dir
        self.file_path = root_dir / CREV_DOT_NAME / STAGING_FILE_NAME
        self.lock_path = self.file_path.with_name(STAGING_FILE_NAME + ".lock")
        self.entries: dict[str, StagingEntry] = dict(entries or {})

    @classmethod
    def open(cls, root_dir: Path) -> StagingArea:
        """Load persisted staging state, or start empty if none exists.

        Raises:
            StagingError: If the staging file is unreadable or malformed
        """
        staging = cls(root_dir)
        if not staging.file_path.exists():
            return staging
        try:
            with open(staging.file_path, encoding="utf-8") as f:
                data = json.load(f)
            raw_entries = data["entries"]
            staging.entries = {
                path: StagingEntry.from_dict(path, entry) for path, entry in raw_entries.items()
            }
        except OSError as e:
            raise StagingError(f"Cannot read staging file {staging.file_path}: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StagingError(f"Corrupt staging file {staging.file_path}: {e}") from e
        logger.debug("Loaded %d staged entries", len(staging.entries))
        return staging

    def _rel_path(self, path: Path) -> str:
        try:
            return relative_to_root(path, self.root_dir)
        except ValueError:
            raise PathOutsideProjectError(
                f"Path is outside the project root {self.root_dir}: {path}"
            ) from None

    def insert(self, path: Path) -> StagingEntry:
        """Stage `path`, recording its current digest. Re-inserting refreshes it.

        Raises:
            PathOutsideProjectError: If path is not inside the project root
            StagingError: If path is not a readable regular file
        """
        rel_path = self._rel_path(path)
        if rel_path == CREV_DOT_NAME or rel_path.startswith(CREV_DOT_NAME + "/"):
            raise StagingError(f"Cannot stage crev internals: {rel_path}")
        file_path = self.root_dir / rel_path
        if not file_path.is_file():
            raise StagingError(f"Not a file: {path}")
        try:
            entry = StagingEntry.from_file(file_path, rel_path)
        except OSError as e:
            raise StagingError(f"Cannot read {path}: {e}") from e
        if rel_path in self.entries:
            logger.info("Refreshed %s", rel_path)
        else:
            logger.info("Staged %s", rel_path)
        self.entries[rel_path] = entry
        return entry

    def remove(self, path: Path) -> bool:
        """Unstage `path`. Returns False (and does nothing) if it was not staged."""
        try:
            rel_path = self._rel_path(path)
        except PathOutsideProjectError:
            logger.info("Not staged (outside project): %s", path)
            return False
        if self.entries.pop(rel_path, None) is None:
            logger.info("Not staged: %s", rel_path)
            return False
        logger.info("Unstaged %s", rel_path)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STAGING_VERSION,
            "entries": {path: self.entries[path].to_dict() for path in sorted(self.entries)},
        }

    def save(self) -> None:
        """Persist current entries atomically.

        Raises:
            StagingError: If the state could not be written
        """
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"
        try:
            with locked(self.lock_path):
                atomic_write_text(self.file_path, text)
        except OSError as e:
            raise StagingError(f"Cannot write staging file {self.file_path}: {e}") from e

    def is_empty(self) -> bool:
        return not self.entries

    def paths(self) -> list[str]:
        """Staged paths in lexicographic order."""
        return sorted(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, rel_path: object) -> bool:
        return rel_path in self.entries

    def __iter__(self) -> Iterator[StagingEntry]:
        for path in self.paths():
            yield self.entries[path]

    def enforce_current(self) -> None:
        """Verify every staged file still has the content recorded at staging time.

        Raises:
            StagingConsistencyError: Naming every changed or missing path
        """
        changed: list[str] = []
        missing: list[str] = []
        for entry in self:
            file_path = self.root_dir / entry.path
            if not file_path.is_file():
                missing.append(entry.path)
                continue
            try:
                current = StagingEntry.from_file(file_path, entry.path)
            except OSError:
                missing.append(entry.path)
                continue
            if current.digest != entry.digest or current.size != entry.size:
                changed.append(entry.path)
        if changed or missing:
            raise StagingConsistencyError(changed=changed, missing=missing)

    def to_review_files(self) -> list[FileReviewRecord]:
        """Review records sorted by path, for reproducible proofs."""
        return [entry.to_review_file() for entry in self]

    def wipe(self) -> None:
        """Clear entries and delete the persisted state.

        Raises:
            StagingError: If the staging file could not be removed
        """
        try:
            with locked(self.lock_path):
                self.file_path.unlink(missing_ok=True)
        except OSError as e:
            raise StagingError(f"Cannot remove staging file {self.file_path}: {e}") from e
        self.entries.clear()
