"""Shared fixtures for crev tests."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from crev.identity import Identity
from crev.local import Local
from crev.repo import Repo
from crev.revision import RevisionBackend, RevisionInfo, RevisionKind, RevisionResolver

PASSPHRASE = "correct horse battery staple"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not installed")


class FixedRevisionBackend(RevisionBackend):
    """Backend that always reports a clean tree at a fixed revision."""

    def __init__(self, revision: str = "deadbeef") -> None:
        self.revision = revision
        self.calls = 0

    @property
    def name(self) -> str:
        return "fixed"

    def detect(self, root: Path) -> bool:
        return True

    def read_revision(self, root: Path) -> RevisionInfo:
        self.calls += 1
        return RevisionInfo(kind=RevisionKind.GIT, revision=self.revision)


def run_git(root: Path, *args: str) -> str:
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test Reviewer",
            "-c", "user.email=reviewer@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "init.defaultBranch=main",
            *args,
        ],
        cwd=root,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture
def backend() -> FixedRevisionBackend:
    return FixedRevisionBackend()


@pytest.fixture
def project(tmp_path: Path, backend: FixedRevisionBackend) -> Repo:
    """Initialized project with two source files and a fixed clean revision."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.rs").write_text("fn a() {}\n")
    (root / "src" / "b.rs").write_text("fn b() {}\n")
    (root / "src" / "c.rs").write_text("fn c() {}\n")
    Repo.init(root, "trust-root-id")
    return Repo.open(root, RevisionResolver([backend]))


@pytest.fixture
def identity() -> Identity:
    return Identity.generate("https://example.com/reviewer/crev-proofs")


@pytest.fixture
def local(tmp_path: Path, identity: Identity) -> Local:
    """User store holding `identity` sealed with PASSPHRASE."""
    store = Local(tmp_path / "user")
    store.save_locked_id(identity, PASSPHRASE)
    return store


@pytest.fixture
def git_root(tmp_path: Path) -> Path:
    """Git repository with one committed file."""
    root = tmp_path / "gitproject"
    root.mkdir()
    run_git(root, "init", "-q")
    (root / "lib.py").write_text("print('hello')\n")
    run_git(root, "add", "lib.py")
    run_git(root, "commit", "-q", "-m", "initial")
    return root
