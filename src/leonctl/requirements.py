"""Detection and installation of the tools native instances depend on.

Checks are queries: a missing tool, a version that is too old or an unset
variable is answered with ``False`` and never raised. Only
:meth:`RequirementsChecker.install` turns an unmet requirement into a
:class:`~leonctl.errors.RequirementsError`.
"""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, MutableMapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from .config import CommandsConfig, RequirementsConfig
from .errors import RequirementsError
from .versions import check_version

LOGGER = logging.getLogger(__name__)

RunCommand = Callable[..., subprocess.CompletedProcess[str]]
Confirm = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class Requirement:
    """A single tool or environment variable a native instance needs."""

    name: str
    kind: Literal["tool", "env"]
    command: str | None = None
    version_flag: str = "--version"
    min_version: str = "0.0.0"
    variable: str | None = None
    required_substring: str = ""
    install_command: tuple[str, ...] = ()
    install_environment: str | None = None
    hint: str = ""

    def describe(self) -> str:
        """Return a short human readable description."""
        if self.kind == "env":
            return f"environment variable {self.variable} containing '{self.required_substring}'"
        return f"{self.name} >= {self.min_version}"


@dataclass(slots=True)
class RequirementsReport:
    """Outcome of :meth:`RequirementsChecker.install`."""

    satisfied: list[str] = field(default_factory=list)
    installed: list[str] = field(default_factory=list)


class RequirementsChecker:
    """Answer "is this installed?" and install what is missing."""

    def __init__(
        self,
        config: RequirementsConfig | None = None,
        commands: CommandsConfig | None = None,
        *,
        run_command: RunCommand | None = None,
        environ: MutableMapping[str, str] | None = None,
    ) -> None:
        """Initialise with version floors, binary names and injectable seams."""
        self.config = config or RequirementsConfig()
        self.commands = commands or CommandsConfig()
        self._run = run_command or subprocess.run
        self._environ = os.environ if environ is None else environ

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def check_tool(
        self,
        command: str,
        version_flag: str = "--version",
        min_version: str = "0.0.0",
        *,
        timeout: float | None = None,
    ) -> bool:
        """Return True when *command* reports a version of at least *min_version*."""
        try:
            result = self._run(  # noqa: S603
                [command, version_flag],
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout or self.config.command_timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            LOGGER.debug("'%s %s' unavailable: %s", command, version_flag, exc)
            return False
        if result.returncode != 0:
            LOGGER.debug("'%s %s' exited with %s", command, version_flag, result.returncode)
            return False
        output = (result.stdout or result.stderr or "").strip()
        return check_version(output, min_version)

    def check_environment_variable(self, name: str, required_substring: str) -> bool:
        """Return True when *name* is set, non-empty and contains *required_substring*."""
        value = self._environ.get(name)
        if not value:
            return False
        return required_substring in value

    def check_git(self) -> bool:
        """Return True when a git client is available."""
        return self.check_tool(self.commands.git_bin, "--version", "0.0.0")

    def check_python(self) -> bool:
        """Return True when the Python interpreter satisfies the configured floor."""
        return self.check_tool("python", "--version", self.config.python)

    def check_pyenv(self) -> bool:
        """Return True when pyenv is available."""
        return self.check_tool("pyenv", "--version", self.config.pyenv)

    def check_pipenv(self) -> bool:
        """Return True when pipenv satisfies the configured floor."""
        return self.check_tool("pipenv", "--version", self.config.pipenv)

    def check_docker(self) -> bool:
        """Return True when a docker client is available."""
        return self.check_tool(self.commands.docker_bin, "--version", "0.0.0")

    def is_satisfied(self, requirement: Requirement) -> bool:
        """Evaluate a single requirement."""
        if requirement.kind == "env":
            return self.check_environment_variable(
                requirement.variable or requirement.name,
                requirement.required_substring,
            )
        return self.check_tool(
            requirement.command or requirement.name,
            requirement.version_flag,
            requirement.min_version,
        )

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------
    def native_requirements(self) -> list[Requirement]:
        """Return the ordered requirement set for native instances."""
        return [
            Requirement(
                name="pyenv",
                kind="tool",
                command="pyenv",
                min_version=self.config.pyenv,
                install_command=("sh", "-c", "curl -fsSL https://pyenv.run | bash"),
                hint="See https://github.com/pyenv/pyenv#installation",
            ),
            Requirement(
                name="python",
                kind="tool",
                command="python",
                min_version=self.config.python,
                install_command=(
                    "pyenv",
                    "install",
                    "--skip-existing",
                    self.config.python_install_version,
                ),
                hint="Make sure pyenv shims are on your PATH.",
            ),
            Requirement(
                name="pipenv",
                kind="tool",
                command="pipenv",
                min_version=self.config.pipenv,
                install_command=("python", "-m", "pip", "install", "--user", "pipenv"),
                hint="Make sure the user base binary directory is on your PATH.",
            ),
            Requirement(
                name="PIPENV_VENV_IN_PROJECT",
                kind="env",
                variable="PIPENV_VENV_IN_PROJECT",
                required_substring="true",
                install_environment="true",
                hint="Add 'export PIPENV_VENV_IN_PROJECT=true' to your shell profile.",
            ),
        ]

    def install(
        self,
        interactive: bool = False,
        *,
        confirm: Confirm | None = None,
        requirements: Sequence[Requirement] | None = None,
    ) -> RequirementsReport:
        """Ensure every requirement holds, installing missing ones in order.

        Stops at the first requirement that cannot be satisfied.
        """
        report = RequirementsReport()
        for requirement in requirements or self.native_requirements():
            if self.is_satisfied(requirement):
                report.satisfied.append(requirement.name)
                continue

            if interactive:
                prompt = f"{requirement.describe()} is missing. Install it now?"
                accepted = confirm(prompt) if confirm is not None else False
                if not accepted:
                    raise RequirementsError(
                        f"{requirement.name} is required to create a native instance.",
                        detail=requirement.hint or None,
                    )

            self._install_requirement(requirement)
            if not self.is_satisfied(requirement):
                raise RequirementsError(
                    f"{requirement.name} is still missing after installation.",
                    detail=requirement.hint or None,
                )
            report.installed.append(requirement.name)
        return report

    def _install_requirement(self, requirement: Requirement) -> None:
        if requirement.install_environment is not None:
            variable = requirement.variable or requirement.name
            LOGGER.debug("Exporting %s=%s", variable, requirement.install_environment)
            self._environ[variable] = requirement.install_environment
            return

        if not requirement.install_command:
            raise RequirementsError(
                f"{requirement.name} is missing and cannot be installed automatically.",
                detail=requirement.hint or None,
            )

        LOGGER.debug("Installing %s: %s", requirement.name, " ".join(requirement.install_command))
        try:
            result = self._run(  # noqa: S603
                list(requirement.install_command),
                capture_output=True,
                text=True,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise RequirementsError(
                f"Could not install {requirement.name}.",
                detail=str(exc),
            ) from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise RequirementsError(
                f"Could not install {requirement.name}.",
                detail=f"exit {result.returncode}: {message}",
            )


__all__ = ["Requirement", "RequirementsChecker", "RequirementsReport"]
