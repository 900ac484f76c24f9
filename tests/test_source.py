"""Tests for source code acquisition and transfer."""
from __future__ import annotations

import io
import subprocess
import zipfile
from collections.abc import Sequence
from pathlib import Path

import httpx
import pytest

from leonctl.config import RepositoryConfig
from leonctl.errors import SourceAcquisitionError
from leonctl.requirements import RequirementsChecker
from leonctl.source import (
    ArchiveDownloadStrategy,
    GitCloneStrategy,
    SourceAcquisition,
    SourceRequest,
    StagingArea,
    extract_zip,
    source_code_information,
)

REPOSITORY = RepositoryConfig()


def _zip_bytes(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _no_git(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
    raise FileNotFoundError(args[0])


class FakeGit:
    """Pretend to be git: ``--version`` succeeds and ``clone`` creates a tree."""

    def __init__(self, *, clone_rc: int = 0, checkout_rc: int = 0) -> None:
        self.clone_rc = clone_rc
        self.checkout_rc = checkout_rc
        self.calls: list[list[str]] = []

    def __call__(self, args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        self.calls.append(argv)
        if argv[1:] == ["--version"]:
            return subprocess.CompletedProcess(argv, 0, stdout="git version 2.39.2", stderr="")
        if argv[1] == "clone":
            if self.clone_rc:
                return subprocess.CompletedProcess(argv, self.clone_rc, "", "fatal: unreachable")
            destination = Path(argv[3])
            destination.mkdir(parents=True)
            (destination / "package.json").write_text('{"name": "leon"}', encoding="utf-8")
            return subprocess.CompletedProcess(argv, 0, "", "")
        return subprocess.CompletedProcess(argv, self.checkout_rc, "", "error: pathspec")


def _acquisition(
    tmp_path: Path,
    *,
    run_command: object = _no_git,
    download: object = None,
) -> SourceAcquisition:
    requirements = RequirementsChecker(run_command=run_command, environ={})  # type: ignore[arg-type]
    return SourceAcquisition(
        REPOSITORY,
        staging_root=tmp_path / "staging",
        requirements=requirements,
        run_command=run_command,  # type: ignore[arg-type]
        download=download,  # type: ignore[arg-type]
    )


def test_source_information_prefers_version_then_develop() -> None:
    """An explicit version wins over the develop flag, which wins over the default."""
    tagged = source_code_information(
        REPOSITORY, SourceRequest(version="1.0.0-beta.7", use_develop_branch=True)
    )
    assert tagged.ref == "1.0.0-beta.7"
    assert tagged.is_tag is True
    assert tagged.url == "https://github.com/leon-ai/leon/archive/refs/tags/1.0.0-beta.7.zip"
    assert tagged.folder_name == "leon-1.0.0-beta.7"

    develop = source_code_information(REPOSITORY, SourceRequest(use_develop_branch=True))
    assert develop.ref == "develop"
    assert develop.url == "https://github.com/leon-ai/leon/archive/develop.zip"

    default = source_code_information(REPOSITORY, SourceRequest())
    assert default.ref == "master"
    assert default.zip_name == "master.zip"
    assert default.is_tag is False


def test_select_strategy_uses_git_only_when_allowed_and_installed(tmp_path: Path) -> None:
    """Git is chosen when installed unless the request opts out."""
    with_git = _acquisition(tmp_path, run_command=FakeGit())
    without_git = _acquisition(tmp_path)

    assert isinstance(with_git.select_strategy(SourceRequest()), GitCloneStrategy)
    assert isinstance(
        with_git.select_strategy(SourceRequest(use_git=False)), ArchiveDownloadStrategy
    )
    assert isinstance(without_git.select_strategy(SourceRequest()), ArchiveDownloadStrategy)


def test_fetch_into_with_archive(tmp_path: Path) -> None:
    """The archive is downloaded, extracted and copied into the birth path."""
    urls: list[str] = []

    def download(url: str, timeout: float) -> bytes:
        urls.append(url)
        return _zip_bytes({"leon-master/package.json": '{"name": "leon"}'})

    destination = tmp_path / "birth"
    _acquisition(tmp_path, download=download).fetch_into(SourceRequest(), destination)

    assert urls == ["https://github.com/leon-ai/leon/archive/master.zip"]
    assert (destination / "package.json").is_file()
    assert list((tmp_path / "staging").iterdir()) == []
    assert sorted(p.name for p in tmp_path.iterdir()) == ["birth", "staging"]


def test_fetch_into_with_git_checks_out_ref(tmp_path: Path) -> None:
    """Git clones into staging, checks out the ref and transfers the tree."""
    git = FakeGit()
    destination = tmp_path / "birth"

    _acquisition(tmp_path, run_command=git).fetch_into(SourceRequest(version="1.2.0"), destination)

    assert (destination / "package.json").is_file()
    checkout = git.calls[-1]
    assert checkout[0] == "git"
    assert checkout[-2:] == ["checkout", "1.2.0"]


def test_git_failure_is_reported_without_touching_destination(tmp_path: Path) -> None:
    """A failing clone raises and never creates the birth path."""
    destination = tmp_path / "birth"

    with pytest.raises(SourceAcquisitionError, match="Could not download") as excinfo:
        _acquisition(tmp_path, run_command=FakeGit(clone_rc=128)).fetch_into(
            SourceRequest(), destination
        )

    assert "fatal: unreachable" in (excinfo.value.detail or "")
    assert not destination.exists()


def test_download_errors_are_wrapped(tmp_path: Path) -> None:
    """HTTP failures become SourceAcquisitionError."""

    def download(url: str, timeout: float) -> bytes:
        raise httpx.ConnectError("connection refused")

    with pytest.raises(SourceAcquisitionError, match="Could not download"):
        _acquisition(tmp_path, download=download).fetch_into(SourceRequest(), tmp_path / "birth")

    assert not (tmp_path / "birth").exists()


def test_corrupt_archive_is_wrapped(tmp_path: Path) -> None:
    """A download that is not a zip archive is reported, not raised raw."""

    def download(url: str, timeout: float) -> bytes:
        return b"<html>rate limited</html>"

    with pytest.raises(SourceAcquisitionError):
        _acquisition(tmp_path, download=download).fetch_into(SourceRequest(), tmp_path / "birth")


def test_corrupt_deflate_stream_is_wrapped(tmp_path: Path) -> None:
    """Damaged compressed data inside a valid zip is reported as a download failure."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("leon-master/README.md", "leon " * 4000)
    payload = bytearray(buffer.getvalue())
    # Local header is 30 bytes plus the member name; no extra field for writestr.
    data_start = 30 + len("leon-master/README.md")
    for offset in range(data_start + 2, data_start + 22):
        payload[offset] ^= 0xFF

    def download(url: str, timeout: float) -> bytes:
        return bytes(payload)

    destination = tmp_path / "birth"
    with pytest.raises(SourceAcquisitionError, match="Could not download"):
        _acquisition(tmp_path, download=download).fetch_into(SourceRequest(), destination)

    assert not destination.exists()


def test_non_ascii_git_output_is_wrapped(tmp_path: Path) -> None:
    """Decoding errors from git output surface as SourceAcquisitionError."""

    def git(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        if argv[1:] == ["--version"]:
            return subprocess.CompletedProcess(argv, 0, stdout="git version 2.39.2", stderr="")
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    with pytest.raises(SourceAcquisitionError, match="Could not download"):
        _acquisition(tmp_path, run_command=git).fetch_into(SourceRequest(), tmp_path / "birth")


def test_extract_zip_rejects_path_traversal(tmp_path: Path) -> None:
    """Members escaping the extraction directory are refused."""
    archive = tmp_path / "evil.zip"
    archive.write_bytes(_zip_bytes({"../outside.txt": "nope"}))
    target = tmp_path / "extract"
    target.mkdir()

    with pytest.raises(SourceAcquisitionError):
        extract_zip(archive, target)

    assert not (tmp_path / "outside.txt").exists()


def test_transfer_updates_existing_destination(tmp_path: Path) -> None:
    """Transferring into an existing tree overwrites files in place."""
    source = tmp_path / "source"
    source.mkdir()
    (source / "package.json").write_text("new", encoding="utf-8")
    destination = tmp_path / "birth"
    destination.mkdir()
    (destination / "package.json").write_text("old", encoding="utf-8")
    (destination / ".env").write_text("KEEP=1", encoding="utf-8")

    _acquisition(tmp_path).transfer_source_code(source, destination)

    assert (destination / "package.json").read_text(encoding="utf-8") == "new"
    assert (destination / ".env").exists()


def test_staging_area_is_removed_after_errors(tmp_path: Path) -> None:
    """The staging directory disappears even when the block raises."""
    staging = StagingArea(tmp_path / "staging")

    with pytest.raises(RuntimeError):
        with staging as path:
            (path / "file").write_text("x", encoding="utf-8")
            raise RuntimeError("boom")

    assert list((tmp_path / "staging").iterdir()) == []
