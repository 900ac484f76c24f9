"""Shared plumbing for the native and containerized execution strategies."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, ClassVar

from ..config import CommandsConfig
from ..errors import ConfigureError, LeonctlError, StartError
from ..models import Instance, InstanceMode

LOGGER = logging.getLogger(__name__)

RunCommand = Callable[..., subprocess.CompletedProcess[str]]
Spawn = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class SpawnedProcess:
    """A detached instance process launched by ``start``."""

    pid: int
    command: tuple[str, ...]
    log_file: Path


@dataclass
class ModeProvider:
    """Configure and start instances of one :class:`InstanceMode`.

    Subclasses provide the configure step and the start command. Processes are
    detached into their own session; supervising them afterwards is not this
    class's job.
    """

    commands: CommandsConfig
    logs_dir: Path
    start_grace: float = 2.0
    run_command: RunCommand = subprocess.run
    spawn: Spawn = subprocess.Popen

    mode: ClassVar[InstanceMode]

    def configure(self, instance: Instance) -> None:
        """Prepare the instance tree so it can be started."""
        raise NotImplementedError

    def start_command(self, instance: Instance) -> list[str]:
        """Return the argv launching the instance."""
        raise NotImplementedError

    def log_path(self, instance: Instance) -> Path:
        """Return the file receiving the instance's stdout/stderr."""
        return self.logs_dir / "instances" / f"{instance.name}.log"

    def start(self, instance: Instance) -> SpawnedProcess:
        """Launch the instance in the background and return its process details."""
        command = self.start_command(instance)
        log_file = self.log_path(instance)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with log_file.open("ab") as handle:
                process = self._spawn(command, instance, handle)
        except OSError as exc:
            raise StartError(
                f"Could not start instance '{instance.name}'.",
                detail=f"{' '.join(command)}: {exc}",
            ) from exc

        try:
            returncode = process.wait(timeout=self.start_grace)
        except subprocess.TimeoutExpired:
            returncode = None
        if returncode:
            raise StartError(
                f"Instance '{instance.name}' exited right after starting (exit {returncode}).",
                detail=_tail(log_file),
            )
        LOGGER.debug("Started %s with pid %s", instance.name, process.pid)
        return SpawnedProcess(pid=int(process.pid), command=tuple(command), log_file=log_file)

    # ------------------------------------------------------------------
    def _spawn(self, command: Sequence[str], instance: Instance, handle: IO[bytes]) -> Any:
        LOGGER.debug("Spawning %s in %s", " ".join(command), instance.path)
        return self.spawn(  # noqa: S603
            list(command),
            cwd=str(instance.path),
            stdin=subprocess.DEVNULL,
            stdout=handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        error_prefix: str,
        error_cls: type[LeonctlError] = ConfigureError,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s in %s", " ".join(args), cwd)
        try:
            result = self.run_command(  # noqa: S603
                list(args),
                cwd=str(cwd),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise error_cls(f"{error_prefix} failed.", detail=f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise error_cls(
                f"{error_prefix} failed (exit {result.returncode}).",
                detail=message,
            )
        return result


def _tail(path: Path, lines: int = 20) -> str:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return "\n".join(content.splitlines()[-lines:])


__all__ = ["ModeProvider", "SpawnedProcess"]
