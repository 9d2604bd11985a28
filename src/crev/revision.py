"""Revision binding: resolve a clean, immutable VCS revision for a project."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from crev.errors import DirtyWorkingTreeError, NoRevisionInfoError

logger = logging.getLogger(__name__)


class RevisionKind(Enum):
    """Version control systems a revision can come from."""

    GIT = "git"


@dataclass(frozen=True)
class RevisionInfo:
    """A revision identifier verified to come from a clean working tree."""

    kind: RevisionKind
    revision: str


class RevisionBackend(ABC):
    """Abstract base class for version control backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return backend name."""
        pass

    @abstractmethod
    def detect(self, root: Path) -> bool:
        """Return True if `root` is managed by this backend."""
        pass

    @abstractmethod
    def read_revision(self, root: Path) -> RevisionInfo:
        """Return the current revision of a clean working tree.

        Raises:
            DirtyWorkingTreeError: If the working tree has non-current tracked entries
            NoRevisionInfoError: If no revision can be determined
        """
        pass


# Marker entries in the git dir that mean an operation is half done
_IN_PROGRESS_MARKERS = {
    "MERGE_HEAD": "merge",
    "rebase-merge": "rebase",
    "rebase-apply": "rebase or am",
    "CHERRY_PICK_HEAD": "cherry-pick",
    "REVERT_HEAD": "revert",
    "BISECT_LOG": "bisect",
}


class GitBackend(RevisionBackend):
    """Git backend driven through the `git` executable."""

    def __init__(self, git_executable: str = "git", timeout: float = 30.0) -> None:
        self.git_executable = git_executable
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "git"

    def detect(self, root: Path) -> bool:
        # `.git` is a directory, or a file for worktrees and submodules
        return (root / ".git").exists()

    def _git(self, root: Path, *args: str) -> subprocess.CompletedProcess[bytes]:
        cmd = [self.git_executable, *args]
        logger.debug("Running %s in %s", " ".join(cmd), root)
        try:
            return subprocess.run(
                cmd,
                cwd=root,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise NoRevisionInfoError(
                f"`{self.git_executable}` executable not found; cannot read revision"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise NoRevisionInfoError(f"`{' '.join(cmd)}` timed out") from e

    def _git_dir(self, root: Path) -> Path:
        result = self._git(root, "rev-parse", "--git-dir")
        if result.returncode != 0:
            raise NoRevisionInfoError(
                f"Not a usable git repository: {root}: {_stderr(result)}"
            )
        git_dir = Path(result.stdout.decode("utf-8").strip())
        if not git_dir.is_absolute():
            git_dir = root / git_dir
        return git_dir

    def check_repository_state(self, root: Path) -> None:
        """Fail if a merge, rebase or similar operation is in progress."""
        git_dir = self._git_dir(root)
        for marker, operation in _IN_PROGRESS_MARKERS.items():
            if (git_dir / marker).exists():
                raise DirtyWorkingTreeError(
                    f"Git repository is not in a clean state ({operation} in progress)"
                )

    def dirty_paths(self, root: Path) -> list[str]:
        """Tracked paths whose status is not current. Untracked files are ignored."""
        result = self._git(
            root, "status", "--porcelain=v1", "-z", "--untracked-files=no"
        )
        if result.returncode != 0:
            raise NoRevisionInfoError(f"`git status` failed: {_stderr(result)}")
        return parse_porcelain_z(result.stdout)

    def head_revision(self, root: Path) -> str:
        """Object id HEAD resolves to, never a symbolic name."""
        result = self._git(root, "rev-parse", "--verify", "--quiet", "HEAD^{commit}")
        if result.returncode != 0:
            raise NoRevisionInfoError("HEAD target does not resolve to a commit")
        return result.stdout.decode("ascii").strip()

    def read_revision(self, root: Path) -> RevisionInfo:
        self.check_repository_state(root)
        dirty = self.dirty_paths(root)
        if dirty:
            for path in dirty:
                logger.warning("Not current: %s", path)
            raise DirtyWorkingTreeError(paths=dirty)
        return RevisionInfo(kind=RevisionKind.GIT, revision=self.head_revision(root))


def parse_porcelain_z(output: bytes) -> list[str]:
    """Parse `git status --porcelain=v1 -z` output into a sorted path list."""
    paths: list[str] = []
    fields = output.decode("utf-8", errors="surrogateescape").split("\0")
    i = 0
    while i < len(fields):
        entry = fields[i]
        i += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        paths.append(path)
        # Renames and copies carry the original path as the next field
        if "R" in status or "C" in status:
            if i < len(fields) and fields[i]:
                paths.append(fields[i])
            i += 1
    return sorted(set(paths))


def _stderr(result: subprocess.CompletedProcess[bytes]) -> str:
    return result.stderr.decode("utf-8", errors="replace").strip()


class RevisionResolver:
    """Probe backends in order and read a clean revision from the first match."""

    def __init__(self, backends: Sequence[RevisionBackend] | None = None) -> None:
        self.backends: tuple[RevisionBackend, ...] = tuple(backends or (GitBackend(),))

    def resolve(self, root: Path) -> RevisionInfo:
        """Resolve the revision of `root`.

        Raises:
            NoRevisionInfoError: If no backend manages `root`
            DirtyWorkingTreeError: If the working tree is not clean
        """
        for backend in self.backends:
            if backend.detect(root):
                info = backend.read_revision(root)
                logger.info("Resolved %s revision %s", info.kind.value, info.revision)
                return info
        raise NoRevisionInfoError(
            f"Couldn't identify revision info for {root}: no supported version control found"
        )
