"""Proof content, construction and armored serialization.

A proof body is YAML. A signed proof wraps the body and its signature in
armor lines, which makes every proof self-delimiting:

    -----BEGIN CODE REVIEW-----
    <yaml body>
    -----BEGIN CODE REVIEW SIGNATURE-----
    <base64 signature>
    -----END CODE REVIEW-----

Content kinds form a closed set registered in CONTENT_KINDS. Each kind
supplies its own armor label, store path and YAML mapping.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, ClassVar

import yaml

from crev.errors import ProofFormatError, ProofValidationError
from crev.level import Level

PROOF_VERSION = -1


def normalize_timestamp(ts: datetime | str | None = None) -> str:
    """Generate normalized ISO timestamp in UTC.

    Format: 2026-01-31T10:00:00Z (no microseconds, always UTC)
    """
    if ts is None:
        ts = datetime.now(timezone.utc)
    elif isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)

    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


def key_to_id(pub_key_b64: str) -> str:
    """Url- and path-safe form of a base64 public key."""
    return pub_key_b64.replace("+", "-").replace("/", "_").rstrip("=")


@dataclass(frozen=True)
class FileReviewRecord:
    """One reviewed file: project-relative path and content digest."""

    path: str
    digest: str
    digest_type: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "digest": self.digest,
            "digest-type": self.digest_type,
        }

    @classmethod
    def from_dict(cls, data: Any) -> FileReviewRecord:
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise ProofValidationError("files", "entries must be mappings")
        for key in ("path", "digest", "digest-type"):
            if not data.get(key):
                raise ProofValidationError(f"files.{key}")
        return cls(
            path=str(data["path"]),
            digest=str(data["digest"]),
            digest_type=str(data["digest-type"]),
        )


@dataclass(frozen=True)
class ReviewProof:
    """Unsigned content of a code review proof."""

    KIND: ClassVar[str] = "review"
    ARMOR: ClassVar[str] = "CODE REVIEW"

    from_key: str
    from_url: str
    from_type: str
    project_id: str
    revision: str
    revision_type: str
    thoroughness: Level
    understanding: Level
    trust: Level
    files: tuple[FileReviewRecord, ...]
    comment: str = ""
    date: str = field(default_factory=normalize_timestamp)
    version: int = PROOF_VERSION

    def rel_project_path(self) -> PurePosixPath:
        """Store path of this proof relative to the proofs directory.

        Depends only on the reviewer, so every review by the same identity
        accumulates in one append target.
        """
        return PurePosixPath("reviews") / f"{key_to_id(self.from_key)}.crev"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary in serialization order."""
        return {
            "version": self.version,
            "date": self.date,
            "from": self.from_key,
            "from-url": self.from_url,
            "from-type": self.from_type,
            "project-id": self.project_id,
            "revision": self.revision,
            "revision-type": self.revision_type,
            "comment": self.comment,
            "thoroughness": self.thoroughness.value,
            "understanding": self.understanding.value,
            "trust": self.trust.value,
            "files": [f.to_dict() for f in self.files],
        }

    def to_yaml(self) -> str:
        """Deterministic YAML body."""
        return yaml.safe_dump(
            self.to_dict(),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
            width=1000,
        )

    @classmethod
    def from_dict(cls, data: Any) -> ReviewProof:
        """Create from dictionary, checking structural integrity only."""
        if not isinstance(data, dict):
            raise ProofValidationError("<root>", "must be a mapping")
        files = data.get("files")
        if not isinstance(files, list):
            raise ProofValidationError("files", "must be a list")
        try:
            version = int(data.get("version", PROOF_VERSION))
        except (TypeError, ValueError) as e:
            raise ProofValidationError("version", "must be an integer") from e
        date = data.get("date")
        if not date:
            raise ProofValidationError("date")
        comment = data.get("comment")
        return build_review(
            from_key=_str_field(data, "from"),
            from_url=_str_field(data, "from-url"),
            from_type=_str_field(data, "from-type"),
            revision=_str_field(data, "revision"),
            revision_type=_str_field(data, "revision-type"),
            project_id=_str_field(data, "project-id"),
            thoroughness=_level_field(data, "thoroughness"),
            understanding=_level_field(data, "understanding"),
            trust=_level_field(data, "trust"),
            files=[FileReviewRecord.from_dict(f) for f in files],
            comment="" if comment is None else str(comment),
            date=str(date),
            version=version,
        )

    @classmethod
    def from_yaml(cls, text: str) -> ReviewProof:
        """Parse a YAML body (e.g. after interactive editing)."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ProofFormatError(f"Proof content is not valid YAML: {e}") from e
        return cls.from_dict(data)


# Closed set of content kinds; add new kinds here.
ProofContent = ReviewProof
CONTENT_KINDS: dict[str, type[ReviewProof]] = {ReviewProof.KIND: ReviewProof}


def _str_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _level_field(data: dict[str, Any], key: str) -> Level:
    value = data.get(key)
    if isinstance(value, Level):
        return value
    try:
        return Level.from_string(str(value))
    except ValueError as e:
        raise ProofValidationError(key, f"has unknown level {value!r}") from e


def build_review(
    *,
    from_key: str,
    from_url: str,
    from_type: str,
    revision: str,
    revision_type: str,
    project_id: str,
    files: Iterable[FileReviewRecord],
    thoroughness: Level = Level.LOW,
    understanding: Level = Level.LOW,
    trust: Level = Level.LOW,
    comment: str = "",
    date: str | None = None,
    version: int = PROOF_VERSION,
) -> ReviewProof:
    """Build unsigned review content.

    Raises:
        ProofValidationError: Naming the first missing or invalid field
    """
    required = {
        "from": from_key,
        "from-url": from_url,
        "from-type": from_type,
        "revision": revision,
        "revision-type": revision_type,
        "project-id": project_id,
    }
    for name, value in required.items():
        if not value or not str(value).strip():
            raise ProofValidationError(name)

    for name, level in (
        ("thoroughness", thoroughness),
        ("understanding", understanding),
        ("trust", trust),
    ):
        if not isinstance(level, Level):
            raise ProofValidationError(name, f"must be a Level, got {level!r}")

    file_records = tuple(files)
    if not file_records:
        raise ProofValidationError("files")
    seen: set[str] = set()
    for record in file_records:
        if record.path in seen:
            raise ProofValidationError("files", f"lists {record.path} twice")
        seen.add(record.path)

    return ReviewProof(
        from_key=from_key,
        from_url=from_url,
        from_type=from_type,
        project_id=project_id,
        revision=revision,
        revision_type=revision_type,
        thoroughness=thoroughness,
        understanding=understanding,
        trust=trust,
        files=file_records,
        comment=comment,
        date=date or normalize_timestamp(),
        version=version,
    )


def _armor_lines(armor: str) -> tuple[str, str, str]:
    return (
        f"-----BEGIN {armor}-----",
        f"-----BEGIN {armor} SIGNATURE-----",
        f"-----END {armor}-----",
    )


@dataclass(frozen=True)
class SignedProof:
    """Serialized body plus detached signature. Immutable once produced."""

    kind: str
    body: str
    signature: str

    def __post_init__(self) -> None:
        if self.kind not in CONTENT_KINDS:
            raise ProofFormatError(f"Unknown proof kind: {self.kind}")

    def content(self) -> ProofContent:
        """Parse the signed body back into content."""
        return CONTENT_KINDS[self.kind].from_yaml(self.body)

    def to_string(self) -> str:
        begin, begin_sig, end = _armor_lines(CONTENT_KINDS[self.kind].ARMOR)
        body = self.body if self.body.endswith("\n") else self.body + "\n"
        return f"{begin}\n{body}{begin_sig}\n{self.signature}\n{end}\n"

    def __str__(self) -> str:
        return self.to_string()


def parse_signed_proofs(text: str) -> list[SignedProof]:
    """Split concatenated armored proofs back into SignedProof objects.

    Raises:
        ProofFormatError: On stray text or a truncated armor block
    """
    begin_to_kind = {
        _armor_lines(cls.ARMOR)[0]: kind for kind, cls in CONTENT_KINDS.items()
    }
    proofs: list[SignedProof] = []
    lines = text.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.strip():
            i += 1
            continue
        kind = begin_to_kind.get(line)
        if kind is None:
            raise ProofFormatError(f"Unexpected line {i + 1}: {line!r}")
        _, begin_sig, end = _armor_lines(CONTENT_KINDS[kind].ARMOR)
        start = i + 1
        try:
            sig_at = lines.index(begin_sig, start)
            end_at = lines.index(end, sig_at)
        except ValueError as e:
            raise ProofFormatError(f"Truncated proof starting at line {i + 1}") from e
        sig_lines = lines[sig_at + 1:end_at]
        if len(sig_lines) != 1 or not sig_lines[0].strip():
            raise ProofFormatError(f"Malformed signature in proof at line {i + 1}")
        body = "".join(f"{body_line}\n" for body_line in lines[start:sig_at])
        proofs.append(SignedProof(kind=kind, body=body, signature=sig_lines[0].strip()))
        i = end_at + 1
    return proofs
