"""Unlocked reviewer identities and Ed25519 proof signing."""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from crev.errors import ProofFormatError, ProofValidationError, SigningError
from crev.proof import ProofContent, SignedProof, key_to_id

ID_TYPE = "crev"


class Identity:
    """A reviewer identity whose private key has been decrypted."""

    def __init__(self, private_key: Ed25519PrivateKey, url: str) -> None:
        """Initialize identity.

        Args:
            private_key: Unlocked Ed25519 signing key
            url: Where the reviewer publishes their proofs
        """
        self._signing_key = private_key
        self._url = url
        self._public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls, url: str) -> Identity:
        """Fresh identity with a random key."""
        return cls(Ed25519PrivateKey.generate(), url)

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def private_key(self) -> Ed25519PrivateKey:
        return self._signing_key

    def pub_key_as_base64(self) -> str:
        return base64.b64encode(self._public_key).decode("ascii")

    def to_pubid(self) -> str:
        """Url-safe identifier of this identity."""
        return key_to_id(self.pub_key_as_base64())

    def url(self) -> str:
        return self._url

    def type_as_string(self) -> str:
        return ID_TYPE

    def sign(self, content: ProofContent) -> SignedProof:
        """Sign proof content.

        Raises:
            SigningError: If the content was not issued by this identity or signing fails
        """
        if content.from_key != self.pub_key_as_base64():
            raise SigningError(
                "Proof `from` key does not match the unlocked identity "
                f"({self.to_pubid()})"
            )
        body = content.to_yaml()
        try:
            signature = self._signing_key.sign(body.encode("utf-8"))
        except Exception as e:
            raise SigningError(f"Signing failed: {e}") from e
        return SignedProof(
            kind=content.KIND,
            body=body,
            signature=base64.b64encode(signature).decode("ascii"),
        )


def verify_signature(proof: SignedProof) -> bool:
    """Check a signed proof against the public key named in its own body."""
    try:
        content = proof.content()
        pub_key = base64.b64decode(content.from_key, validate=True)
        signature = base64.b64decode(proof.signature, validate=True)
        verify_key = Ed25519PublicKey.from_public_bytes(pub_key)
    except (binascii.Error, ValueError, ProofFormatError, ProofValidationError):
        return False
    try:
        verify_key.verify(signature, proof.body.encode("utf-8"))
    except InvalidSignature:
        return False
    return True
