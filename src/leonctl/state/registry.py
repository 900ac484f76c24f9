"""Durable key-value storage for leonctl state.

The registry directory (``~/.local/share/leonctl/registry`` by default) stores
one YAML document per key, e.g. ``instances.yml``. Writes are atomic: the
payload lands in a temporary file next to the target and is moved into place
with :func:`os.replace`, so a crash right after ``set`` returns cannot lose
or truncate the file.
"""
from __future__ import annotations

import os
import tempfile
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path

import yaml


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """YAML-backed key-value store."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Return the filesystem path storing *key*."""
        normalized = key.strip()
        if not normalized or "/" in normalized or normalized.startswith("."):
            raise StateRegistryError(f"Invalid registry key {key!r}.")
        return self.root / f"{normalized}.yml"

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the value stored under *key*, or *default* when missing."""
        path = self.path_for(key)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        if not isinstance(data, dict) or key not in data:
            return deepcopy(default)
        return data[key]

    def set(self, key: str, value: object) -> None:
        """Atomically persist *value* under *key*."""
        self.ensure_root()
        path = self.path_for(key)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump({key: value}, handle, sort_keys=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["StateRegistry", "StateRegistryError"]
