"""Instance lifecycle orchestration: create, update, start, check and run.

The controller owns no state of its own. Each operation reads the registry,
runs its steps strictly in order and raises at most one
:class:`~leonctl.errors.LeonctlError` at the first step that cannot proceed.
Nothing is retried; retrying an operation is the caller's decision.
"""
from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig
from .errors import (
    BirthPathExistsError,
    ExternalCheckoutError,
    InstanceExistsError,
    InstanceNotFoundError,
    InvalidInstanceNameError,
    LeonctlError,
    StartError,
)
from .manifest import is_core_checkout
from .models import Instance, InstanceMode, now_iso
from .providers import (
    HealthProbe,
    HealthResult,
    InstanceStatus,
    InstanceStatusProvider,
    ModeProvider,
    SpawnedProcess,
)
from .requirements import RequirementsChecker
from .source import SourceAcquisition, SourceRequest
from .state import InstanceRegistry

LOGGER = logging.getLogger(__name__)

StepReporter = Callable[[str, str, str | None], None]


@dataclass(slots=True)
class BirthOptions:
    """Options accepted by :meth:`InstanceLifecycleController.create_birth`."""

    name: str | None = None
    birth_path: Path | None = None
    version: str | None = None
    use_develop_branch: bool = False
    use_docker: bool = False
    use_git: bool = True
    interactive: bool = False


@dataclass(frozen=True, slots=True)
class RunResult:
    """Start followed by a readiness check."""

    process: SpawnedProcess
    health: HealthResult


class InstanceLifecycleController:
    """Drive instances through their lifecycle."""

    def __init__(
        self,
        config: AppConfig,
        registry: InstanceRegistry,
        requirements: RequirementsChecker,
        source: SourceAcquisition,
        providers: Mapping[InstanceMode, ModeProvider],
        health: HealthProbe,
        *,
        status_provider: InstanceStatusProvider | None = None,
        cwd: Path | None = None,
        confirm: Callable[[str], bool] | None = None,
        reporter: StepReporter | None = None,
    ) -> None:
        """Wire the collaborators each lifecycle step delegates to."""
        self.config = config
        self.registry = registry
        self.requirements = requirements
        self.source = source
        self.providers = dict(providers)
        self.health = health
        self.status_provider = status_provider or InstanceStatusProvider(health)
        self._cwd = cwd
        self._confirm = confirm
        self._reporter = reporter

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def resolve_birth_path(self, options: BirthOptions) -> tuple[Path, bool]:
        """Return ``(birth_path, reuse_cwd)`` for *options*.

        Inside a checkout of the Leon core, with no path, version or develop
        override, the current directory becomes the birth path.
        """
        default = self.config.default_birth_path
        birth_path = (
            Path(options.birth_path).expanduser().resolve()
            if options.birth_path is not None
            else default
        )
        if (
            birth_path == default
            and options.version is None
            and not options.use_develop_branch
        ):
            cwd = (self._cwd or Path.cwd()).resolve()
            repository = self.config.repository
            if is_core_checkout(cwd, name=repository.name, homepage=repository.homepage):
                LOGGER.debug("Reusing Leon checkout at %s as birth path", cwd)
                return cwd, True
        return birth_path, False

    def create_birth(self, options: BirthOptions) -> Instance:
        """Create, register and configure a new instance."""
        name = (options.name or "").strip() or str(uuid.uuid4())
        _validate_name(name)
        birth_path, reuse_cwd = self.resolve_birth_path(options)

        if not reuse_cwd and birth_path.exists():
            raise BirthPathExistsError(
                f"{birth_path} already exists, please provide another path."
            )
        if self.registry.find_by_name(name) is not None:
            raise InstanceExistsError(
                f"{name} already exists, please provide another instance name."
            )

        mode = InstanceMode.CONTAINERIZED if options.use_docker else InstanceMode.NATIVE
        provider = self._provider(mode)

        if mode is InstanceMode.NATIVE:
            report = self.requirements.install(options.interactive, confirm=self._confirm)
            self._step(
                "requirements",
                "success",
                f"installed={','.join(report.installed) or '-'}",
            )

        if not reuse_cwd:
            request = SourceRequest(
                version=options.version,
                use_develop_branch=options.use_develop_branch,
                use_git=options.use_git,
            )
            self.source.fetch_into(request, birth_path)
            self._step("source", "success", str(birth_path))
        else:
            self._step("source", "skipped", f"reusing {birth_path}")

        instance = Instance(
            name=name,
            path=birth_path,
            mode=mode,
            birth_date=now_iso(),
            external_checkout=reuse_cwd,
        )
        self.registry.add(instance)
        self._step("registry.add", "success", name)

        try:
            provider.configure(instance)
        except LeonctlError:
            self._step("configure", "error", None)
            if self.config.lifecycle.rollback_on_failure:
                self._rollback(instance, remove_tree=not reuse_cwd)
            raise
        self._step("configure", "success", mode.value)
        return instance

    def _rollback(self, instance: Instance, *, remove_tree: bool) -> None:
        try:
            self.registry.remove(instance.name)
        except InstanceNotFoundError:
            pass
        if remove_tree:
            shutil.rmtree(instance.path, ignore_errors=True)
        self._step("rollback", "success", instance.name)

    # ------------------------------------------------------------------
    # Update / start / check / run
    # ------------------------------------------------------------------
    def update(
        self,
        name: str,
        *,
        version: str | None = None,
        use_develop_branch: bool = False,
        use_git: bool = True,
    ) -> Instance:
        """Refresh the instance tree to a new ref and configure it again.

        The new tree is copied over the existing one, so files deleted upstream
        stay behind. Instances running from an external checkout are refused.
        """
        instance = self.registry.get(name)
        if instance.external_checkout:
            raise ExternalCheckoutError(
                f"Instance '{name}' runs from the checkout at {instance.path}; "
                "update it with git instead."
            )
        request = SourceRequest(
            version=version,
            use_develop_branch=use_develop_branch,
            use_git=use_git,
        )
        self.source.fetch_into(request, instance.path)
        self._step("source", "success", self.source.information(request).ref)
        self._provider(instance.mode).configure(instance)
        self._step("configure", "success", instance.mode.value)
        return instance

    def start(self, name: str) -> SpawnedProcess:
        """Launch the instance process and record how to reach it."""
        instance = self.registry.get(name)
        if not instance.path.exists():
            raise StartError(
                f"Could not start instance '{name}'.",
                detail=f"{instance.path} does not exist.",
            )
        process = self._provider(instance.mode).start(instance)
        self.registry.update(
            name,
            pid=process.pid,
            port=self.health.port_for(instance),
            log_file=process.log_file,
            start_count=instance.start_count + 1,
        )
        self._step("start", "success", f"pid={process.pid}")
        return process

    def check(self, name: str, *, timeout: float | None = None) -> HealthResult:
        """Poll the instance endpoint until it answers or *timeout* elapses."""
        instance = self.registry.get(name)
        result = self.health.wait_until_ready(self.health.url_for(instance), timeout=timeout)
        self._step(
            "check",
            "success" if result.healthy else "error",
            f"{result.url} attempts={result.attempts}",
        )
        return result

    def run(self, name: str, *, timeout: float | None = None) -> RunResult:
        """Start the instance, then check it.

        A launch failure raises :class:`StartError`; an unhealthy instance is
        reported through ``RunResult.health``.
        """
        process = self.start(name)
        return RunResult(process=process, health=self.check(name, timeout=timeout))

    # ------------------------------------------------------------------
    # Queries and removal
    # ------------------------------------------------------------------
    def list_instances(self) -> list[Instance]:
        """Return every registered instance."""
        return self.registry.list()

    def status(self, name: str) -> InstanceStatus:
        """Return the live status of the instance called *name*."""
        return self.status_provider.status(self.registry.get(name))

    def delete(self, name: str, *, keep_files: bool = False) -> Instance:
        """Unregister the instance and, unless *keep_files*, remove its tree.

        An external checkout is never removed.
        """
        instance = self.registry.remove(name)
        self._step("registry.remove", "success", name)
        if instance.external_checkout and not keep_files:
            self._step("files.remove", "skipped", f"external checkout {instance.path}")
            return instance
        if keep_files or not instance.path.exists():
            return instance
        try:
            shutil.rmtree(instance.path)
        except OSError as exc:
            raise LeonctlError(
                f"Instance '{name}' was unregistered but {instance.path} could not be removed.",
                detail=str(exc),
            ) from exc
        self._step("files.remove", "success", str(instance.path))
        return instance

    # ------------------------------------------------------------------
    def _provider(self, mode: InstanceMode) -> ModeProvider:
        try:
            return self.providers[mode]
        except KeyError:
            raise LeonctlError(f"No provider registered for mode '{mode.value}'.") from None

    def _step(self, name: str, status: str, detail: str | None) -> None:
        LOGGER.debug("step %s -> %s %s", name, status, detail or "")
        if self._reporter is not None:
            self._reporter(name, status, detail)


def _validate_name(name: str) -> None:
    if name in {".", ".."} or any(char in name for char in ("/", "\\", "\0")):
        raise InvalidInstanceNameError(
            f"Invalid instance name '{name}', names cannot contain path separators."
        )


__all__ = ["BirthOptions", "InstanceLifecycleController", "RunResult"]
