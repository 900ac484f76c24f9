"""Tests for tool version extraction and comparison."""
from __future__ import annotations

import pytest

from leonctl.versions import check_version, extract_version


@pytest.mark.parametrize(
    ("version", "requirement"),
    [
        ("3.7.2", "3.0.0"),
        ("3.7.2", "3.7.2"),
        ("Python 3.10.4", "3.9.0"),
        ("pipenv, version 2023.10.3", "2019.0.0"),
        ("pyenv 2.3.9", "0.0.0"),
    ],
)
def test_check_version_accepts_newer_or_equal(version: str, requirement: str) -> None:
    """Detected versions at or above the floor are accepted."""
    assert check_version(version, requirement) is True


@pytest.mark.parametrize(
    ("version", "requirement"),
    [
        ("python version is 3.2.0", "3.7.2"),
        ("3.7.2", "wrong requirement"),
        ("this command does not exist", "3.0.0"),
        ("", "3.0.0"),
    ],
)
def test_check_version_rejects_older_or_unparseable(version: str, requirement: str) -> None:
    """Older versions and inputs without a version never satisfy a floor."""
    assert check_version(version, requirement) is False


def test_check_version_tolerates_non_string_input() -> None:
    """Non-string arguments are treated as unparseable instead of raising."""
    assert check_version(None, "3.0.0") is False
    assert check_version("3.0.0", 3) is False


def test_extract_version_finds_first_match() -> None:
    """The first version-shaped substring wins."""
    assert extract_version("git version 2.39.2 (Apple Git-143)") == "2.39.2"
    assert extract_version("Docker version 24.0") == "24.0"
    assert extract_version("no digits here") is None


def test_wildcard_and_short_versions_compare_as_zero_padded() -> None:
    """``3.7.*`` and ``3.7`` compare like ``3.7.0``."""
    assert check_version("3.7.*", "3.7.0") is True
    assert check_version("3.7", "3.7.1") is False
