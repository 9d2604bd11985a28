"""Interactive collaborators: passphrase prompt and proof content editor."""

from __future__ import annotations

import os

import click

from crev.errors import UserAbortedError
from crev.proof import ProofContent, ReviewProof

PASSPHRASE_ENV = "CREV_PASSPHRASE"

EDIT_HEADER = (
    "# Review the proof below. Lines starting with '#' are ignored.\n"
    "# Save and exit to sign it; exit without saving to abort.\n"
)


def read_passphrase() -> str:
    """Passphrase from $CREV_PASSPHRASE, else a hidden prompt."""
    env_value = os.environ.get(PASSPHRASE_ENV)
    if env_value is not None:
        return env_value
    try:
        return click.prompt("Passphrase", hide_input=True, err=True)
    except click.Abort as e:
        raise UserAbortedError("Passphrase entry cancelled") from e


def edit_proof_content(content: ProofContent) -> ProofContent:
    """Open the proof body in $EDITOR and parse the result.

    Raises:
        UserAbortedError: If the editor exits without saving or the body is emptied
    """
    edited = click.edit(EDIT_HEADER + content.to_yaml(), extension=".yaml", require_save=True)
    if edited is None:
        raise UserAbortedError("Proof editing aborted: file was not saved")
    body = "\n".join(line for line in edited.splitlines() if not line.startswith("#"))
    if not body.strip():
        raise UserAbortedError("Proof editing aborted: empty content")
    return ReviewProof.from_yaml(body)


def keep_proof_content(content: ProofContent) -> ProofContent:
    """Non-interactive editor: accept content as built."""
    return content
