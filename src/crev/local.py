"""User-level crev store: current identity, sealed keys, personal proof copies.

Location: $CREV_CONFIG_DIR, or ~/.config/crev.

    config.yaml         {version, current-id}
    ids/<pubid>.yaml    {version, type, url, public-key, sealed-secret-key}
    proofs/...          copy of every proof signed by this user
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from crev.errors import ConfigError, SigningError
from crev.fsutil import atomic_write_text
from crev.identity import ID_TYPE, Identity
from crev.proof import ProofContent, SignedProof
from crev.store import ProofStore

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "CREV_CONFIG_DIR"
USER_CONFIG_VERSION = 0


def default_config_dir() -> Path:
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "crev"


@dataclass(frozen=True)
class UserConfig:
    version: int
    current_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "current-id": self.current_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserConfig:
        current_id = data.get("current-id")
        if not current_id:
            raise ConfigError("User config has no `current-id`")
        return cls(version=int(data.get("version", USER_CONFIG_VERSION)), current_id=str(current_id))


def _load_yaml_mapping(path: Path, what: str) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"{what} not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {what} {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {what} format in {path}")
    return data


class Local:
    """Handle on the user-level crev directory."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir
        self.proof_store = ProofStore(root_dir)

    @classmethod
    def auto_open(cls) -> Local:
        return cls(default_config_dir())

    @property
    def user_config_path(self) -> Path:
        return self.root_dir / "config.yaml"

    def id_path(self, pubid: str) -> Path:
        return self.root_dir / "ids" / f"{pubid}.yaml"

    def load_user_config(self) -> UserConfig:
        """Raises ConfigError if the user config is missing or malformed."""
        return UserConfig.from_dict(_load_yaml_mapping(self.user_config_path, "user config"))

    def store_user_config(self, config: UserConfig) -> None:
        atomic_write_text(
            self.user_config_path,
            yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False),
        )

    def save_locked_id(self, identity: Identity, passphrase: str) -> Path:
        """Seal `identity` with `passphrase`, store it and make it current."""
        sealed = identity.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
        ).decode("ascii")
        path = self.id_path(identity.to_pubid())
        atomic_write_text(
            path,
            yaml.safe_dump(
                {
                    "version": USER_CONFIG_VERSION,
                    "type": identity.type_as_string(),
                    "url": identity.url(),
                    "public-key": identity.pub_key_as_base64(),
                    "sealed-secret-key": sealed,
                },
                default_flow_style=False,
                sort_keys=False,
            ),
        )
        self.store_user_config(UserConfig(version=USER_CONFIG_VERSION, current_id=identity.to_pubid()))
        return path

    def read_unlocked_id(self, passphrase: str) -> Identity:
        """Decrypt the current identity.

        Raises:
            ConfigError: If user config or id file is missing or malformed
            SigningError: If the passphrase is wrong or the key is unusable
        """
        current_id = self.load_user_config().current_id
        path = self.id_path(current_id)
        data = _load_yaml_mapping(path, "identity file")
        if data.get("type", ID_TYPE) != ID_TYPE:
            raise SigningError(f"Unsupported identity type in {path}: {data.get('type')}")
        sealed = data.get("sealed-secret-key")
        if not sealed:
            raise SigningError(f"Identity file has no sealed secret key: {path}")
        try:
            private_key = serialization.load_pem_private_key(
                str(sealed).encode("ascii"),
                password=passphrase.encode("utf-8"),
            )
        except (ValueError, TypeError) as e:
            raise SigningError(f"Cannot unlock identity {current_id}: wrong passphrase?") from e
        if not isinstance(private_key, Ed25519PrivateKey):
            raise SigningError(f"Identity {current_id} is not an Ed25519 key")
        identity = Identity(private_key, str(data.get("url", "")))
        if data.get("public-key") and data["public-key"] != identity.pub_key_as_base64():
            raise SigningError(f"Identity file {path} public key does not match its secret key")
        logger.debug("Unlocked identity %s", identity.to_pubid())
        return identity

    def append_proof(self, proof: SignedProof, content: ProofContent) -> Path:
        """Keep a personal copy of a signed proof."""
        return self.proof_store.append(proof, ProofStore.rel_store_path(content))
