"""Error taxonomy for crev operations.

Every failure raised by the commit pipeline derives from CrevError so the
CLI can report it verbatim and exit non-zero. Nothing here is retried.
"""

from __future__ import annotations

from collections.abc import Iterable


class CrevError(Exception):
    """Base class for all crev errors."""
    pass


# Configuration


class ConfigError(CrevError):
    """Project or user config is unreadable or malformed."""
    pass


class ProjectNotFoundError(ConfigError):
    """No `.crev` directory found in the current directory or its parents."""

    def __init__(self, start: object = None) -> None:
        msg = "Project config not-initialized. Use `crev init` to generate it."
        if start is not None:
            msg = f"{msg} (searched from {start})"
        super().__init__(msg)


class ProjectNotInitializedError(ConfigError):
    """`.crev` exists but holds no config.yaml."""

    def __init__(self, config_path: object) -> None:
        self.config_path = config_path
        super().__init__(
            f"Project config not-initialized: {config_path} is missing. "
            "Use `crev init` to generate it."
        )


class ConfigExistsError(ConfigError):
    """`init` was run on an already initialized project."""

    def __init__(self, config_path: object) -> None:
        self.config_path = config_path
        super().__init__(f"`{config_path}` already exists")


# Staging


class StagingError(CrevError):
    """Staging state could not be read or persisted."""
    pass


class PathOutsideProjectError(StagingError):
    """A path to stage lies outside the project root."""
    pass


class NothingToCommitError(StagingError):
    """Commit attempted with an empty staging area."""

    def __init__(self) -> None:
        super().__init__("No reviews to commit. Use `add` first.")


def _format_paths(paths: Iterable[str]) -> str:
    return ", ".join(sorted(paths))


class StagingConsistencyError(StagingError):
    """Staged files no longer match what is on disk."""

    def __init__(self, changed: Iterable[str] = (), missing: Iterable[str] = ()) -> None:
        self.changed = sorted(changed)
        self.missing = sorted(missing)
        parts = []
        if self.changed:
            parts.append(f"changed since staged: {_format_paths(self.changed)}")
        if self.missing:
            parts.append(f"missing: {_format_paths(self.missing)}")
        super().__init__(
            "Staged files are not current (" + "; ".join(parts) + "). "
            "Re-run `crev add` for these files."
        )

    @property
    def paths(self) -> list[str]:
        return sorted(self.changed + self.missing)


# Revision


class RevisionError(CrevError):
    """Revision information could not be obtained."""
    pass


class NoRevisionInfoError(RevisionError):
    """No supported version control system found for the project."""
    pass


class DirtyWorkingTreeError(RevisionError):
    """Tracked files have uncommitted changes, or an operation is in progress."""

    def __init__(self, message: str = "", paths: Iterable[str] = ()) -> None:
        self.paths = sorted(paths)
        if not message:
            message = "Git repository is not in a clean state"
        if self.paths:
            message = f"{message}: {_format_paths(self.paths)}"
        super().__init__(message)


# Signing


class SigningError(CrevError):
    """Identity could not be unlocked or proof could not be signed."""
    pass


class UserAbortedError(CrevError):
    """The user cancelled an interactive step."""
    pass


# Durability


class ProofStoreError(CrevError):
    """A proof could not be durably written."""
    pass


# Validation


class ProofValidationError(CrevError):
    """Proof content has a missing or invalid field."""

    def __init__(self, field: str, reason: str = "must not be empty") -> None:
        self.field = field
        super().__init__(f"Invalid proof content: `{field}` {reason}")


class ProofFormatError(CrevError):
    """Serialized proof text is malformed."""
    pass
