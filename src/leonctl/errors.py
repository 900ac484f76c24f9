"""Fatal, user-facing error types raised by lifecycle operations.

Every orchestration call surfaces at most one of these. The CLI prints
``message`` and records ``detail`` (usually the underlying cause) in the
operation log.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class LeonctlError(RuntimeError):
    """Base class for fatal conditions reported to the user."""

    exit_code: ExitCode = ExitCode.PROVIDER

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        """Store the human readable *message* and an optional diagnostic *detail*."""
        super().__init__(message)
        self.message = message
        self.detail = detail


class InstanceExistsError(LeonctlError):
    """Raised when an instance name is already registered."""

    exit_code = ExitCode.VALIDATION


class InstanceNotFoundError(LeonctlError):
    """Raised when an instance name is not registered."""

    exit_code = ExitCode.VALIDATION


class BirthPathExistsError(LeonctlError):
    """Raised when the resolved birth path already exists on disk."""

    exit_code = ExitCode.VALIDATION


class InvalidInstanceNameError(LeonctlError):
    """Raised when an instance name cannot be used as a file name."""

    exit_code = ExitCode.VALIDATION


class ExternalCheckoutError(LeonctlError):
    """Raised when an operation would overwrite a checkout leonctl did not fetch."""

    exit_code = ExitCode.VALIDATION


class RequirementsError(LeonctlError):
    """Raised when a native-mode dependency cannot be satisfied."""

    exit_code = ExitCode.ENVIRONMENT


class SourceAcquisitionError(LeonctlError):
    """Raised when the Leon source tree cannot be obtained or transferred."""


class ConfigureError(LeonctlError):
    """Raised when the mode-specific configure step fails."""


class StartError(LeonctlError):
    """Raised when an instance process could not be launched."""


__all__ = [
    "BirthPathExistsError",
    "ConfigureError",
    "ExternalCheckoutError",
    "InstanceExistsError",
    "InstanceNotFoundError",
    "InvalidInstanceNameError",
    "LeonctlError",
    "RequirementsError",
    "SourceAcquisitionError",
    "StartError",
]
