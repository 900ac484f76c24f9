"""Version comparison helpers for detected tool versions."""
from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

VERSION_PATTERN = re.compile(r"(\d+\.)(\d+\.)?(\*|\d+)")


def extract_version(text: object) -> str | None:
    """Return the first version-shaped substring of *text*, if any."""
    if not isinstance(text, str):
        return None
    match = VERSION_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0)


def check_version(version: object, requirement: object) -> bool:
    """Return True when *version* reports at least *requirement*.

    Both arguments are free-form strings such as ``"Python 3.7.2"``. Inputs
    without a version-shaped substring never satisfy anything.
    """
    required = extract_version(requirement)
    if required is None:
        return False
    detected = extract_version(version)
    if detected is None:
        return False
    try:
        return _as_version(detected) >= _as_version(required)
    except InvalidVersion:
        return False


def _as_version(value: str) -> Version:
    # A trailing wildcard ("3.7.*") compares as its zero release.
    parts = [segment for segment in value.split(".") if segment]
    numbers = ["0" if segment == "*" else segment for segment in parts]
    while len(numbers) < 3:
        numbers.append("0")
    return Version(".".join(numbers[:3]))


__all__ = ["VERSION_PATTERN", "check_version", "extract_version"]
