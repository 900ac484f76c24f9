"""Read ``package.json`` manifests of Leon checkouts."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"


@dataclass(frozen=True, slots=True)
class PackageManifest:
    """Fields of a package manifest leonctl cares about."""

    name: str | None
    homepage: str | None
    version: str | None = None


def read_manifest(directory: Path) -> PackageManifest | None:
    """Return the manifest of *directory*, or None when absent or unreadable."""
    path = directory / MANIFEST_NAME
    if not path.is_file():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.debug("Ignoring unreadable manifest %s: %s", path, exc)
        return None
    if not isinstance(payload, dict):
        return None
    return PackageManifest(
        name=_optional_str(payload.get("name")),
        homepage=_optional_str(payload.get("homepage")),
        version=_optional_str(payload.get("version")),
    )


def is_core_checkout(directory: Path, *, name: str, homepage: str) -> bool:
    """Return True when *directory* looks like a checkout of the Leon core.

    This is a detection heuristic: a renamed fork will not match.
    """
    manifest = read_manifest(directory)
    if manifest is None:
        return False
    return manifest.name == name and manifest.homepage == homepage


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


__all__ = ["MANIFEST_NAME", "PackageManifest", "is_core_checkout", "read_manifest"]
