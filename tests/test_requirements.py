"""Tests for native requirement detection and installation."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence

import pytest

from leonctl.errors import RequirementsError
from leonctl.requirements import Requirement, RequirementsChecker


class FakeRunner:
    """Answer ``<tool> --version`` from a table and record install commands."""

    def __init__(self, versions: dict[str, str], *, installs: dict[str, str] | None = None) -> None:
        self.versions = dict(versions)
        self.installs = installs or {}
        self.calls: list[list[str]] = []

    def __call__(self, args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        self.calls.append(argv)
        if len(argv) == 2 and argv[1] == "--version":
            if argv[0] not in self.versions:
                raise FileNotFoundError(argv[0])
            return subprocess.CompletedProcess(argv, 0, stdout=self.versions[argv[0]], stderr="")
        tool = self._installed_tool(argv)
        if tool is None:
            return subprocess.CompletedProcess(argv, 1, stdout="", stderr="install failed")
        self.versions[tool] = self.installs[tool]
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    def _installed_tool(self, argv: list[str]) -> str | None:
        joined = " ".join(argv)
        for tool in self.installs:
            if tool in joined:
                return tool
        return None


ALL_PRESENT = {
    "pyenv": "pyenv 2.3.9",
    "python": "Python 3.11.4",
    "pipenv": "pipenv, version 2023.10.3",
}


def test_check_tool_handles_missing_binary() -> None:
    """A binary that cannot be executed is reported as missing."""
    checker = RequirementsChecker(run_command=FakeRunner({}), environ={})

    assert checker.check_tool("python", "--version", "3.0.0") is False


def test_check_tool_handles_timeouts_and_failures() -> None:
    """Timeouts and non-zero exits count as not installed."""

    def timeout(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(list(args), 1)

    def failing(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(list(args), 127, stdout="", stderr="")

    assert RequirementsChecker(run_command=timeout, environ={}).check_python() is False
    assert RequirementsChecker(run_command=failing, environ={}).check_python() is False


def test_check_tool_compares_versions() -> None:
    """Tools older than the floor are reported as missing."""
    checker = RequirementsChecker(
        run_command=FakeRunner({"python": "Python 2.7.18", "pipenv": "pipenv, version 2023.1.1"}),
        environ={},
    )

    assert checker.check_python() is False
    assert checker.check_pipenv() is True


def test_check_tool_reads_version_from_stderr() -> None:
    """Older interpreters print their version on stderr."""

    def runner(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(list(args), 0, stdout="", stderr="Python 3.8.1")

    assert RequirementsChecker(run_command=runner, environ={}).check_python() is True


def test_check_environment_variable() -> None:
    """Variables must be set, non-empty and contain the substring."""
    checker = RequirementsChecker(
        run_command=FakeRunner({}),
        environ={"PIPENV_VENV_IN_PROJECT": "true", "EMPTY": ""},
    )

    assert checker.check_environment_variable("PIPENV_VENV_IN_PROJECT", "true") is True
    assert checker.check_environment_variable("PIPENV_VENV_IN_PROJECT", "false") is False
    assert checker.check_environment_variable("EMPTY", "") is False
    assert checker.check_environment_variable("UNSET", "") is False


def test_install_is_a_noop_when_everything_is_present() -> None:
    """Satisfied requirements trigger no install command."""
    runner = FakeRunner(ALL_PRESENT)
    checker = RequirementsChecker(run_command=runner, environ={"PIPENV_VENV_IN_PROJECT": "true"})

    report = checker.install()

    assert report.installed == []
    assert report.satisfied == ["pyenv", "python", "pipenv", "PIPENV_VENV_IN_PROJECT"]
    assert all(call[1] == "--version" for call in runner.calls)


def test_install_installs_missing_tools_and_exports_variable() -> None:
    """Missing requirements are installed in order and re-checked."""
    runner = FakeRunner(
        {"pyenv": "pyenv 2.3.9", "python": "Python 3.11.4"},
        installs={"pipenv": "pipenv, version 2023.10.3"},
    )
    environ: dict[str, str] = {}
    checker = RequirementsChecker(run_command=runner, environ=environ)

    report = checker.install()

    assert report.installed == ["pipenv", "PIPENV_VENV_IN_PROJECT"]
    assert environ["PIPENV_VENV_IN_PROJECT"] == "true"
    assert ["python", "-m", "pip", "install", "--user", "pipenv"] in runner.calls


def test_install_interactive_decline_raises() -> None:
    """Declining an install aborts with the requirement named."""
    runner = FakeRunner({"python": "Python 3.11.4"})
    checker = RequirementsChecker(run_command=runner, environ={})
    prompts: list[str] = []

    def decline(prompt: str) -> bool:
        prompts.append(prompt)
        return False

    with pytest.raises(RequirementsError, match="pyenv is required"):
        checker.install(interactive=True, confirm=decline)

    assert len(prompts) == 1
    assert all(call[1] == "--version" for call in runner.calls)


def test_install_failure_is_reported() -> None:
    """A failing install command surfaces as RequirementsError."""
    checker = RequirementsChecker(run_command=FakeRunner({}), environ={})

    with pytest.raises(RequirementsError, match="Could not install pyenv") as excinfo:
        checker.install()

    assert excinfo.value.detail is not None
    assert "install failed" in excinfo.value.detail


def test_install_rechecks_after_installation() -> None:
    """An install that succeeds but leaves the tool unusable is an error."""

    def runner(args: Sequence[str], **_: object) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        if argv[-1] == "--version":
            return subprocess.CompletedProcess(argv, 1, stdout="", stderr="")
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    checker = RequirementsChecker(run_command=runner, environ={})
    requirement = Requirement(name="tool", kind="tool", install_command=("true",))

    with pytest.raises(RequirementsError, match="still missing"):
        checker.install(requirements=[requirement])
