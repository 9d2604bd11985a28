"""Project repository: the `.crev` directory and the review commit pipeline.

Commit runs as a sequence of stable states:

    Idle/Staged -> Validated -> Signed -> Appended -> Wiped (Idle)

Any failure before Appended leaves the staging area and the proof store
exactly as they were. Staging is wiped only after the proof has been
durably appended to the project store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from crev.config import CONFIG_FILE_NAME, CREV_DOT_NAME, ProjectConfig, find_project_root
from crev.errors import (
    ConfigExistsError,
    CrevError,
    NothingToCommitError,
    ProjectNotInitializedError,
    SigningError,
    StagingError,
)
from crev.identity import verify_signature
from crev.local import Local
from crev.proof import ProofContent, SignedProof, build_review
from crev.revision import RevisionResolver
from crev.staging import StagingArea
from crev.store import ProofStore

logger = logging.getLogger(__name__)

PassphraseProvider = Callable[[], str]
ContentEditor = Callable[[ProofContent], ProofContent]


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a commit whose proof reached the project store."""

    proof: SignedProof
    content: ProofContent
    rel_store_path: PurePosixPath
    store_path: Path
    # Set when the proof was appended but staging could not be cleared
    wipe_error: StagingError | None = None

    @property
    def display_path(self) -> PurePosixPath:
        """Store path relative to the project root."""
        return PurePosixPath(CREV_DOT_NAME) / self.rel_store_path


class Repo:
    """A crev project rooted at the directory holding `.crev`."""

    def __init__(self, root_dir: Path, resolver: RevisionResolver | None = None) -> None:
        self.root_dir = root_dir.resolve()
        self.resolver = resolver or RevisionResolver()
        # None until the first staging() call opens it
        self._staging: StagingArea | None = None

    @classmethod
    def init(
        cls,
        path: Path,
        trust_root_id: str,
        resolver: RevisionResolver | None = None,
    ) -> Repo:
        """Create `.crev/config.yaml` in `path`.

        Raises:
            ConfigExistsError: If the project is already initialized
        """
        repo = cls(path, resolver)
        config_path = repo.project_config_path
        if config_path.exists():
            raise ConfigExistsError(config_path)
        repo.dot_crev_path.mkdir(parents=True, exist_ok=True)
        config = ProjectConfig.create(trust_root_id)
        try:
            config.write_new_yaml(config_path)
        except FileExistsError:
            raise ConfigExistsError(config_path) from None
        logger.info("Initialized crev project %s in %s", config.project_id, repo.root_dir)
        return repo

    @classmethod
    def open(cls, root_dir: Path, resolver: RevisionResolver | None = None) -> Repo:
        """Open an initialized project at an explicit root.

        Raises:
            ProjectNotInitializedError: If `.crev/config.yaml` is missing
        """
        repo = cls(root_dir, resolver)
        if not repo.project_config_path.exists():
            raise ProjectNotInitializedError(repo.project_config_path)
        return repo

    @classmethod
    def auto_open(cls, start: Path | None = None, resolver: RevisionResolver | None = None) -> Repo:
        """Open the project containing `start` (default: cwd)."""
        return cls.open(find_project_root(start), resolver)

    @property
    def dot_crev_path(self) -> Path:
        return self.root_dir / CREV_DOT_NAME

    @property
    def project_config_path(self) -> Path:
        return self.dot_crev_path / CONFIG_FILE_NAME

    @property
    def proof_store(self) -> ProofStore:
        return ProofStore(self.dot_crev_path)

    def load_project_config(self) -> ProjectConfig:
        return ProjectConfig.from_yaml(self.project_config_path)

    def staging(self) -> StagingArea:
        """Open staging on first use and return the same handle afterwards."""
        if self._staging is None:
            self._staging = StagingArea.open(self.root_dir)
        return self._staging

    def add(self, file_paths: Iterable[Path]) -> None:
        staging = self.staging()
        for path in file_paths:
            staging.insert(path)
        staging.save()

    def remove(self, file_paths: Iterable[Path]) -> None:
        staging = self.staging()
        for path in file_paths:
            staging.remove(path)
        staging.save()

    def status(self) -> list[str]:
        """Staged paths in lexicographic order."""
        return self.staging().paths()

    def commit(
        self,
        local: Local,
        passphrase_provider: PassphraseProvider,
        editor: ContentEditor,
    ) -> CommitResult:
        """Sign a review of the staged files and append it to the project store.

        Raises:
            NothingToCommitError: If nothing is staged
            StagingConsistencyError: If staged files changed since staging
            RevisionError: If no clean revision can be resolved
            SigningError, UserAbortedError: If the identity or edit step fails
            ProofStoreError: If the proof could not be durably appended

        A failure to clear staging after the append is reported through
        `CommitResult.wipe_error` since the proof already exists.
        """
        staging = self.staging()

        # Staged -> Validated
        if staging.is_empty():
            raise NothingToCommitError()
        staging.enforce_current()
        project_config = self.load_project_config()
        revision = self.resolver.resolve(self.root_dir)
        files = staging.to_review_files()
        logger.debug("Validated %d staged files at %s", len(files), revision.revision)

        # Validated -> Signed
        identity = local.read_unlocked_id(passphrase_provider())
        review = build_review(
            from_key=identity.pub_key_as_base64(),
            from_url=identity.url(),
            from_type=identity.type_as_string(),
            revision=revision.revision,
            revision_type=revision.kind.value,
            project_id=project_config.project_id,
            files=files,
        )
        review = editor(review)
        proof = identity.sign(review)
        if not verify_signature(proof):
            raise SigningError("Freshly signed proof failed verification; nothing was written")
        logger.debug("Signed proof by %s", identity.to_pubid())

        # Signed -> Appended
        rel_store_path = ProofStore.rel_store_path(review)
        store_path = self.proof_store.append(proof, rel_store_path)

        # Appended -> Wiped
        try:
            local.append_proof(proof, review)
        except CrevError as e:
            logger.warning("Proof not copied to user store %s: %s", local.root_dir, e)
        wipe_error = None
        try:
            staging.wipe()
            logger.debug("Staging wiped after commit")
        except StagingError as e:
            logger.error("Proof appended to %s but staging was not cleared: %s", store_path, e)
            wipe_error = e

        return CommitResult(
            proof=proof,
            content=review,
            rel_store_path=rel_store_path,
            store_path=store_path,
            wipe_error=wipe_error,
        )
