"""Tests for the project repository and the commit pipeline."""

from __future__ import annotations

import base64
import dataclasses
from pathlib import Path

import pytest
import yaml

from crev.errors import (
    ConfigError,
    ConfigExistsError,
    DirtyWorkingTreeError,
    NothingToCommitError,
    ProjectNotFoundError,
    ProjectNotInitializedError,
    ProofStoreError,
    SigningError,
    StagingConsistencyError,
    StagingError,
    UserAbortedError,
)
from crev.identity import Identity, verify_signature
from crev.interactive import keep_proof_content
from crev.level import Level
from crev.local import Local
from crev.proof import ProofContent
from crev.repo import Repo
from crev.revision import RevisionBackend, RevisionInfo, RevisionResolver
from crev.staging import StagingArea
from crev.store import ProofStore

from conftest import PASSPHRASE, requires_git, run_git


def passphrase() -> str:
    return PASSPHRASE


def snapshot(root: Path) -> dict[str, bytes]:
    """All files under .crev with their content."""
    crev_dir = root / ".crev"
    return {
        p.relative_to(crev_dir).as_posix(): p.read_bytes()
        for p in sorted(crev_dir.rglob("*"))
        if p.is_file()
    }


class DirtyBackend(RevisionBackend):
    @property
    def name(self) -> str:
        return "dirty"

    def detect(self, root: Path) -> bool:
        return True

    def read_revision(self, root: Path) -> RevisionInfo:
        raise DirtyWorkingTreeError(paths=["src/a.rs"])


class RecordingLocal(Local):
    """Local store that records unlock attempts."""

    def __init__(self, root_dir: Path) -> None:
        super().__init__(root_dir)
        self.unlocks = 0

    def read_unlocked_id(self, passphrase: str) -> Identity:
        self.unlocks += 1
        return super().read_unlocked_id(passphrase)


class TestInit:
    """Test project initialization and opening."""

    def test_init_writes_config(self, tmp_path: Path):
        repo = Repo.init(tmp_path, "root-id")
        data = yaml.safe_load(repo.project_config_path.read_text())

        assert data["version"] == 0
        assert data["project-trust-root"] == "root-id"
        assert len(data["project-id"]) >= 32
        assert repo.load_project_config().project_trust_root == "root-id"

    def test_init_twice_fails(self, tmp_path: Path):
        Repo.init(tmp_path, "root-id")
        before = (tmp_path / ".crev" / "config.yaml").read_bytes()

        with pytest.raises(ConfigExistsError):
            Repo.init(tmp_path, "other-id")
        assert (tmp_path / ".crev" / "config.yaml").read_bytes() == before

    def test_project_ids_are_random(self, tmp_path: Path):
        first = Repo.init(tmp_path / "one", "root-id").load_project_config()
        second = Repo.init(tmp_path / "two", "root-id").load_project_config()
        assert first.project_id != second.project_id

    def test_auto_open_walks_up(self, project: Repo, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(project.root_dir / "src")
        assert Repo.auto_open().root_dir == project.root_dir

    def test_auto_open_without_project(self, tmp_path: Path):
        with pytest.raises(ProjectNotFoundError):
            Repo.auto_open(tmp_path)

    def test_open_without_config(self, tmp_path: Path):
        (tmp_path / ".crev").mkdir()
        with pytest.raises(ProjectNotInitializedError):
            Repo.open(tmp_path)

    def test_malformed_config(self, project: Repo):
        project.project_config_path.write_text("version: 0\n")
        with pytest.raises(ConfigError, match="project-id"):
            project.load_project_config()


class TestStagingOperations:
    """Test add, remove and status."""

    def test_staging_opened_once(self, project: Repo):
        assert project.staging() is project.staging()

    def test_add_persists(self, project: Repo):
        project.add([project.root_dir / "src" / "b.rs", project.root_dir / "src" / "a.rs"])

        assert Repo.open(project.root_dir).status() == ["src/a.rs", "src/b.rs"]

    def test_remove_persists_and_tolerates_absent(self, project: Repo):
        project.add([project.root_dir / "src" / "a.rs", project.root_dir / "src" / "b.rs"])
        project.remove([project.root_dir / "src" / "a.rs", project.root_dir / "src" / "c.rs"])

        assert Repo.open(project.root_dir).status() == ["src/b.rs"]


class TestCommit:
    """Test the commit state machine."""

    def test_end_to_end(self, project: Repo, local: Local, identity: Identity):
        """Test init, add two files, commit at a clean revision."""
        project_id = project.load_project_config().project_id
        project.add([project.root_dir / "src" / "b.rs", project.root_dir / "src" / "a.rs"])

        result = project.commit(local, passphrase, keep_proof_content)

        assert project.status() == []
        assert Repo.open(project.root_dir).status() == []
        proofs = project.proof_store.read(result.rel_store_path)
        assert len(proofs) == 1
        content = proofs[0].content()
        assert content.revision == "deadbeef"
        assert content.revision_type == "git"
        assert content.project_id == project_id
        assert [f.path for f in content.files] == ["src/a.rs", "src/b.rs"]
        assert content.from_key == identity.pub_key_as_base64()
        assert verify_signature(proofs[0])
        assert result.store_path == project.dot_crev_path / Path(*result.rel_store_path.parts)
        assert str(result.display_path).startswith(".crev/proofs/reviews/")

    def test_user_store_gets_copy(self, project: Repo, local: Local):
        project.add([project.root_dir / "src" / "a.rs"])
        result = project.commit(local, passphrase, keep_proof_content)

        assert local.proof_store.read(result.rel_store_path) == [result.proof]

    def test_nothing_to_commit(self, project: Repo, local: Local):
        """Test that an empty staging area fails and writes nothing."""
        before = snapshot(project.root_dir)

        with pytest.raises(NothingToCommitError):
            project.commit(local, passphrase, keep_proof_content)
        assert snapshot(project.root_dir) == before

    def test_changed_file_blocks_commit(self, project: Repo, local: Local):
        """Test that a file changed after staging produces no proof."""
        project.add([project.root_dir / "src" / "a.rs"])
        (project.root_dir / "src" / "a.rs").write_text("fn a() { sneaky() }\n")
        before = snapshot(project.root_dir)

        with pytest.raises(StagingConsistencyError):
            project.commit(local, passphrase, keep_proof_content)
        assert snapshot(project.root_dir) == before
        assert project.proof_store.list_files() == []

    def test_dirty_tree_blocks_before_signing(self, project: Repo, tmp_path: Path, identity: Identity):
        """Test that a dirty revision aborts before the identity is unlocked."""
        recording = RecordingLocal(tmp_path / "recording-user")
        recording.save_locked_id(identity, PASSPHRASE)
        repo = Repo.open(project.root_dir, RevisionResolver([DirtyBackend()]))
        repo.add([project.root_dir / "src" / "a.rs"])
        before = snapshot(project.root_dir)

        with pytest.raises(DirtyWorkingTreeError):
            repo.commit(recording, passphrase, keep_proof_content)
        assert recording.unlocks == 0
        assert snapshot(project.root_dir) == before

    def test_wrong_passphrase_preserves_staging(self, project: Repo, local: Local):
        project.add([project.root_dir / "src" / "a.rs"])
        before = snapshot(project.root_dir)

        with pytest.raises(SigningError):
            project.commit(local, lambda: "wrong passphrase", keep_proof_content)
        assert snapshot(project.root_dir) == before
        assert project.status() == ["src/a.rs"]

    def test_editor_abort_preserves_staging(self, project: Repo, local: Local):
        def abort(content: ProofContent) -> ProofContent:
            raise UserAbortedError("aborted")

        project.add([project.root_dir / "src" / "a.rs"])
        before = snapshot(project.root_dir)

        with pytest.raises(UserAbortedError):
            project.commit(local, passphrase, abort)
        assert snapshot(project.root_dir) == before

    def test_edited_content_is_signed_verbatim(self, project: Repo, local: Local):
        def raise_trust(content: ProofContent) -> ProofContent:
            body = content.to_yaml().replace("trust: low", "trust: high")
            return type(content).from_yaml(body.replace("comment: ''", "comment: reviewed"))

        project.add([project.root_dir / "src" / "a.rs"])
        result = project.commit(local, passphrase, raise_trust)

        stored = project.proof_store.read(result.rel_store_path)[0].content()
        assert stored.trust is Level.HIGH
        assert stored.comment == "reviewed"

    def test_append_failure_preserves_staging(
        self, project: Repo, local: Local, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that staging survives when the durable append fails."""
        def fail_append(self, proof, rel_path):
            raise ProofStoreError("disk full")

        project.add([project.root_dir / "src" / "a.rs"])
        monkeypatch.setattr(ProofStore, "append", fail_append)

        with pytest.raises(ProofStoreError):
            project.commit(local, passphrase, keep_proof_content)
        assert project.status() == ["src/a.rs"]
        assert StagingArea.open(project.root_dir).paths() == ["src/a.rs"]

    def test_user_store_failure_still_wipes(self, project: Repo, local: Local, monkeypatch: pytest.MonkeyPatch):
        """Test that the project store is the durability point, not the user copy."""
        def fail_copy(self, proof, content):
            raise ProofStoreError("user store read-only")

        monkeypatch.setattr(Local, "append_proof", fail_copy)
        project.add([project.root_dir / "src" / "a.rs"])
        result = project.commit(local, passphrase, keep_proof_content)

        assert project.status() == []
        assert project.proof_store.read(result.rel_store_path) == [result.proof]

    def test_bad_signature_never_appended(
        self, project: Repo, local: Local, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that a proof failing verification stops the commit before the append."""
        real_sign = Identity.sign

        def corrupt_sign(self, content):
            proof = real_sign(self, content)
            return dataclasses.replace(proof, signature=base64.b64encode(bytes(64)).decode())

        project.add([project.root_dir / "src" / "a.rs"])
        before = snapshot(project.root_dir)
        monkeypatch.setattr(Identity, "sign", corrupt_sign)

        with pytest.raises(SigningError):
            project.commit(local, passphrase, keep_proof_content)
        assert snapshot(project.root_dir) == before
        assert project.proof_store.list_files() == []
        assert project.status() == ["src/a.rs"]

    def test_wipe_failure_reported_with_result(
        self, project: Repo, local: Local, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that an appended proof is returned even when staging cannot be cleared."""
        def fail_wipe(self):
            raise StagingError("staging file locked")

        monkeypatch.setattr(StagingArea, "wipe", fail_wipe)
        project.add([project.root_dir / "src" / "a.rs"])
        result = project.commit(local, passphrase, keep_proof_content)

        assert isinstance(result.wipe_error, StagingError)
        assert project.proof_store.read(result.rel_store_path) == [result.proof]

    def test_two_commits_append(self, project: Repo, local: Local):
        """Test that two commits produce two proofs in order, first unchanged."""
        project.add([project.root_dir / "src" / "a.rs"])
        first = project.commit(local, passphrase, keep_proof_content)
        first_bytes = first.store_path.read_bytes()

        project.add([project.root_dir / "src" / "b.rs"])
        second = project.commit(local, passphrase, keep_proof_content)

        assert second.store_path == first.store_path
        assert second.store_path.read_bytes().startswith(first_bytes)
        assert project.proof_store.read(first.rel_store_path) == [first.proof, second.proof]

    def test_restage_after_commit_can_commit_again(self, project: Repo, local: Local):
        """Test re-committing already proved, unchanged files is allowed."""
        path = project.root_dir / "src" / "a.rs"
        project.add([path])
        first = project.commit(local, passphrase, keep_proof_content)
        project.add([path])
        second = project.commit(local, passphrase, keep_proof_content)

        assert first.content.files == second.content.files


@requires_git
class TestCommitWithGit:
    """Test commit against a real git repository."""

    def test_commit_binds_head(self, git_root: Path, local: Local):
        Repo.init(git_root, "root-id")
        repo = Repo.open(git_root)
        repo.add([git_root / "lib.py"])

        result = repo.commit(local, passphrase, keep_proof_content)

        assert result.content.revision == run_git(git_root, "rev-parse", "HEAD").strip()
        assert result.content.revision_type == "git"

    def test_dirty_git_tree_blocks_commit(self, git_root: Path, local: Local):
        Repo.init(git_root, "root-id")
        repo = Repo.open(git_root)
        (git_root / "lib.py").write_text("print('modified')\n")
        repo.add([git_root / "lib.py"])

        with pytest.raises(DirtyWorkingTreeError):
            repo.commit(local, passphrase, keep_proof_content)
        assert repo.status() == ["lib.py"]
        assert repo.proof_store.list_files() == []
