"""Obtain the Leon source tree and move it into an instance birth path.

Acquisition always happens inside a fresh :class:`StagingArea`. Exactly one
strategy is chosen per call: :class:`GitCloneStrategy` when git is usable and
allowed, :class:`ArchiveDownloadStrategy` otherwise. Both resolve the same ref
(explicit version tag, then develop branch, then default branch).
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import zipfile
import zlib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from .config import CommandsConfig, NetworkConfig, RepositoryConfig
from .errors import SourceAcquisitionError
from .requirements import RequirementsChecker

LOGGER = logging.getLogger(__name__)

DOWNLOAD_FAILED = "Could not download Leon source code"

RunCommand = Callable[..., subprocess.CompletedProcess[str]]
Download = Callable[[str, float], bytes]


@dataclass(frozen=True, slots=True)
class SourceRequest:
    """Which version of the source code to fetch, and how."""

    version: str | None = None
    use_develop_branch: bool = False
    use_git: bool = True


@dataclass(frozen=True, slots=True)
class SourceCodeInformation:
    """Ref and archive naming derived from a :class:`SourceRequest`."""

    ref: str
    url: str
    zip_name: str
    folder_name: str
    is_tag: bool


def source_code_information(
    repository: RepositoryConfig,
    request: SourceRequest,
) -> SourceCodeInformation:
    """Resolve the ref to fetch: version tag > develop branch > default branch."""
    url = f"{repository.url}/archive"
    is_tag = False
    if request.version:
        ref = request.version
        url += "/refs/tags"
        is_tag = True
    elif request.use_develop_branch:
        ref = repository.develop_branch
    else:
        ref = repository.default_branch
    zip_name = f"{ref}.zip"
    return SourceCodeInformation(
        ref=ref,
        url=f"{url}/{zip_name}",
        zip_name=zip_name,
        folder_name=f"{repository.name}-{ref}",
        is_tag=is_tag,
    )


class StagingArea:
    """A uniquely named temporary directory removed when the block exits."""

    def __init__(self, root: Path) -> None:
        """Stage under *root* (created on demand)."""
        self.root = root
        self.path: Path | None = None

    def __enter__(self) -> Path:
        """Create and return a fresh, empty staging directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix="staging-", dir=str(self.root)))
        LOGGER.debug("Created staging directory %s", self.path)
        return self.path

    def __exit__(self, *exc_info: object) -> None:
        """Remove the staging directory, whatever happened inside the block."""
        if self.path is not None:
            shutil.rmtree(self.path, ignore_errors=True)
            LOGGER.debug("Removed staging directory %s", self.path)
            self.path = None


class AcquisitionStrategy(Protocol):
    """Fetch the source tree for *info* into *staging*, returning its root."""

    name: str

    def acquire(self, info: SourceCodeInformation, staging: Path) -> Path:
        """Return the directory holding the fetched tree."""


@dataclass(slots=True)
class GitCloneStrategy:
    """Clone the repository and check out the requested ref."""

    repository: RepositoryConfig
    git_bin: str = "git"
    timeout: float = 600.0
    run_command: RunCommand = subprocess.run
    name: str = "git"

    def acquire(self, info: SourceCodeInformation, staging: Path) -> Path:
        """Clone into ``<staging>/<organization>-git`` and check out ``info.ref``."""
        destination = staging / f"{self.repository.organization}-git"
        self._git(["clone", self.repository.url, str(destination)])
        self._git(["-C", str(destination), "checkout", info.ref])
        return destination

    def _git(self, args: list[str]) -> None:
        command = [self.git_bin, *args]
        LOGGER.debug("Running %s", " ".join(command))
        result = self.run_command(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise SourceAcquisitionError(
                DOWNLOAD_FAILED,
                detail=f"{' '.join(command)} failed (exit {result.returncode}): {message}",
            )


def _http_download(url: str, timeout: float) -> bytes:
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        response = client.get(url)
        response.raise_for_status()
        return response.content


@dataclass(slots=True)
class ArchiveDownloadStrategy:
    """Download the ref's zip archive and extract it in the staging area."""

    timeout: float = 120.0
    download: Download = _http_download
    name: str = "archive"

    def acquire(self, info: SourceCodeInformation, staging: Path) -> Path:
        """Download ``info.url``, extract it and return the extracted folder."""
        LOGGER.debug("Downloading %s", info.url)
        archive_path = staging / info.zip_name
        archive_path.write_bytes(self.download(info.url, self.timeout))
        extract_zip(archive_path, staging)

        extracted = staging / info.folder_name
        if extracted.is_dir():
            return extracted
        # GitHub strips a leading "v" from tag folders.
        candidates = [child for child in staging.iterdir() if child.is_dir()]
        if len(candidates) == 1:
            return candidates[0]
        raise SourceAcquisitionError(
            DOWNLOAD_FAILED,
            detail=f"{info.zip_name} does not contain {info.folder_name}",
        )


def extract_zip(archive_path: Path, destination: Path) -> None:
    """Extract *archive_path* into *destination*, refusing members outside it."""
    root = destination.resolve()
    with zipfile.ZipFile(archive_path) as archive:
        for member in archive.namelist():
            target = (root / member).resolve()
            if target != root and root not in target.parents:
                raise SourceAcquisitionError(
                    DOWNLOAD_FAILED,
                    detail=f"Archive member escapes extraction directory: {member}",
                )
        archive.extractall(root)


class SourceAcquisition:
    """Fetch the Leon source code and copy it into birth paths."""

    def __init__(
        self,
        repository: RepositoryConfig,
        *,
        staging_root: Path,
        requirements: RequirementsChecker,
        network: NetworkConfig | None = None,
        commands: CommandsConfig | None = None,
        run_command: RunCommand | None = None,
        download: Download | None = None,
    ) -> None:
        """Wire the repository settings and the collaborators used by strategies."""
        self.repository = repository
        self.staging_root = staging_root
        self.requirements = requirements
        self.network = network or NetworkConfig()
        self.commands = commands or CommandsConfig()
        self._run = run_command or subprocess.run
        self._download = download or _http_download

    def information(self, request: SourceRequest) -> SourceCodeInformation:
        """Return the ref/URL details for *request*."""
        return source_code_information(self.repository, request)

    def select_strategy(self, request: SourceRequest) -> AcquisitionStrategy:
        """Pick git when allowed and installed, otherwise the archive download."""
        if request.use_git and self.requirements.check_git():
            return GitCloneStrategy(
                repository=self.repository,
                git_bin=self.commands.git_bin,
                timeout=self.network.clone_timeout,
                run_command=self._run,
            )
        return ArchiveDownloadStrategy(
            timeout=self.network.download_timeout,
            download=self._download,
        )

    def get_source_code(self, request: SourceRequest, staging: Path) -> Path:
        """Fetch the source tree into *staging* and return its root directory."""
        info = self.information(request)
        strategy = self.select_strategy(request)
        LOGGER.debug("Fetching %s (%s) with the %s strategy", info.ref, info.url, strategy.name)
        try:
            return strategy.acquire(info, staging)
        except SourceAcquisitionError:
            raise
        except (
            OSError,
            EOFError,
            RuntimeError,
            ValueError,
            subprocess.SubprocessError,
            httpx.HTTPError,
            zipfile.BadZipFile,
            zlib.error,
        ) as exc:
            raise SourceAcquisitionError(DOWNLOAD_FAILED, detail=str(exc)) from exc

    def transfer_source_code(self, source: Path, destination: Path) -> None:
        """Copy the staged tree at *source* into *destination*.

        A new destination is populated under a sibling name and renamed into
        place once the copy succeeded. An existing destination is updated in
        place.
        """
        try:
            if destination.exists():
                destination.mkdir(parents=True, exist_ok=True)
                shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
                return
            destination.parent.mkdir(parents=True, exist_ok=True)
            with _partial_directory(destination) as partial:
                shutil.copytree(source, partial, symlinks=True, dirs_exist_ok=True)
                os.replace(partial, destination)
        except (OSError, shutil.Error) as exc:
            raise SourceAcquisitionError(
                f"Could not copy Leon source code to {destination}",
                detail=str(exc),
            ) from exc

    def fetch_into(self, request: SourceRequest, destination: Path) -> Path:
        """Fetch the source code and transfer it into *destination*."""
        with StagingArea(self.staging_root) as staging:
            source_path = self.get_source_code(request, staging)
            self.transfer_source_code(source_path, destination)
        return destination


@contextmanager
def _partial_directory(destination: Path) -> Iterator[Path]:
    partial = Path(
        tempfile.mkdtemp(prefix=f".{destination.name}.partial-", dir=str(destination.parent))
    )
    try:
        yield partial
    finally:
        if partial.exists():
            shutil.rmtree(partial, ignore_errors=True)


__all__ = [
    "ArchiveDownloadStrategy",
    "GitCloneStrategy",
    "SourceAcquisition",
    "SourceCodeInformation",
    "SourceRequest",
    "StagingArea",
    "extract_zip",
    "source_code_information",
]
