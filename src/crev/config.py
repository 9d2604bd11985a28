"""Project configuration and project root resolution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from crev.errors import ConfigError, ProjectNotFoundError
from crev.fsutil import random_id_str, write_new_text

CREV_DOT_NAME = ".crev"
CONFIG_FILE_NAME = "config.yaml"
CONFIG_VERSION = 0


@dataclass(frozen=True)
class ProjectConfig:
    """Per-project identity, created once by `crev init`."""

    version: int
    project_id: str
    project_trust_root: str

    @classmethod
    def create(cls, trust_root_id: str) -> ProjectConfig:
        """New config with a random project id."""
        return cls(
            version=CONFIG_VERSION,
            project_id=random_id_str(),
            project_trust_root=trust_root_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (on-disk key names)."""
        return {
            "version": self.version,
            "project-id": self.project_id,
            "project-trust-root": self.project_trust_root,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create from dictionary."""
        try:
            return cls(
                version=int(data["version"]),
                project_id=str(data["project-id"]),
                project_trust_root=str(data["project-trust-root"]),
            )
        except KeyError as e:
            raise ConfigError(f"Project config is missing key: {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid project config: {e}") from e

    @classmethod
    def from_yaml(cls, path: Path) -> ProjectConfig:
        """Load config from YAML file."""
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read project config {path}: {e}") from e
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid project config format in {path}")
        return cls.from_dict(data)

    def write_new_yaml(self, path: Path) -> None:
        """Write config to a file that must not exist yet.

        Raises:
            FileExistsError: If `path` already exists
        """
        text = yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        write_new_text(path, text)


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from `start` (default: cwd) to the directory holding `.crev`.

    Raises:
        ProjectNotFoundError: If no ancestor holds a `.crev` directory
    """
    path = (start or Path.cwd()).resolve()
    for candidate in (path, *path.parents):
        if (candidate / CREV_DOT_NAME).is_dir():
            return candidate
    raise ProjectNotFoundError(path)
