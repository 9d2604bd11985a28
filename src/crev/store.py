"""Append-only, path-addressed store of signed proofs."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from crev.errors import ProofStoreError
from crev.fsutil import append_durably, locked
from crev.proof import ProofContent, SignedProof, parse_signed_proofs

logger = logging.getLogger(__name__)

PROOFS_DIR_NAME = "proofs"


class ProofStore:
    """Proof log files under `<base_dir>/proofs/`.

    Each file holds zero or more self-delimited proofs. Proofs are only
    ever appended; there is no edit or delete operation.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    @staticmethod
    def rel_store_path(content: ProofContent) -> PurePosixPath:
        """Store path of a proof, relative to the store's base dir."""
        return PurePosixPath(PROOFS_DIR_NAME) / content.rel_project_path()

    def _resolve(self, rel_path: PurePosixPath) -> Path:
        if rel_path.is_absolute() or ".." in rel_path.parts:
            raise ProofStoreError(f"Invalid proof store path: {rel_path}")
        return self.base_dir.joinpath(*rel_path.parts)

    def append(self, proof: SignedProof, rel_path: PurePosixPath) -> Path:
        """Durably append `proof` to the file at `rel_path`.

        Returns:
            Absolute path of the store file

        Raises:
            ProofStoreError: If the proof could not be fully written and flushed
        """
        path = self._resolve(rel_path)
        data = proof.to_string().encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with locked(path.with_name(path.name + ".lock")):
                with open(path, "ab") as f:
                    append_durably(f, data)
        except OSError as e:
            raise ProofStoreError(f"Failed to append proof to {path}: {e}") from e
        logger.info("Appended %d bytes to %s", len(data), path)
        return path

    def read(self, rel_path: PurePosixPath) -> list[SignedProof]:
        """All proofs stored at `rel_path`, in append order."""
        path = self._resolve(rel_path)
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ProofStoreError(f"Cannot read proof store {path}: {e}") from e
        return parse_signed_proofs(text)

    def list_files(self) -> list[PurePosixPath]:
        """Relative paths of every proof file in the store."""
        proofs_dir = self.base_dir / PROOFS_DIR_NAME
        if not proofs_dir.is_dir():
            return []
        return [
            PurePosixPath(p.relative_to(self.base_dir).as_posix())
            for p in sorted(proofs_dir.rglob("*"))
            if p.is_file() and not p.name.endswith(".lock")
        ]
