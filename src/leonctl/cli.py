"""Typer-powered command line interface for ``leonctl``.

Commands map one-to-one onto :class:`~leonctl.lifecycle.InstanceLifecycleController`
operations. Every command runs inside a structured logging operation; fatal
conditions print a single red message and exit with the matching
:class:`~leonctl.exit_codes.ExitCode`.
"""
from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import LeonctlError
from .exit_codes import ExitCode
from .lifecycle import BirthOptions, InstanceLifecycleController
from .logging import OperationScope, StructuredLogger
from .models import Instance, InstanceMode, InstanceState
from .providers import ContainerProvider, HealthProbe, ModeProvider, NativeProvider
from .requirements import RequirementsChecker
from .source import SourceAcquisition
from .state import InstanceRegistry, StateRegistry, StateRegistryError

console = Console()

app = typer.Typer(help="Create, configure and operate Leon instances.")
create_app = typer.Typer(help="Create Leon instances.")
app.add_typer(create_app, name="create")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to leonctl's YAML config file.",
)

NAME_ARGUMENT = typer.Argument(..., help="Name of the instance.")

VERSION_OPTION = typer.Option(
    None,
    "--version",
    help="Release tag of Leon to install (e.g. 1.0.0-beta.7).",
)

DEVELOP_OPTION = typer.Option(
    False,
    "--develop",
    help="Use the develop branch instead of the default branch.",
)

GIT_OPTION = typer.Option(
    True,
    "--git/--no-git",
    help="Clone with git when available instead of downloading an archive.",
)

TIMEOUT_OPTION = typer.Option(
    None,
    "--timeout",
    min=0.1,
    help="Seconds to wait for the instance to answer (defaults to health.timeout).",
)

JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of human output.")


@dataclass(slots=True)
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    registry: InstanceRegistry
    requirements: RequirementsChecker
    source: SourceAcquisition
    providers: dict[InstanceMode, ModeProvider]
    health: HealthProbe


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    logger = StructuredLogger(config.logs_dir)
    registry = InstanceRegistry(StateRegistry(config.registry_dir))
    requirements = RequirementsChecker(config.requirements, config.commands)
    source = SourceAcquisition(
        config.repository,
        staging_root=config.staging_dir,
        requirements=requirements,
        network=config.network,
        commands=config.commands,
    )
    providers: dict[InstanceMode, ModeProvider] = {
        InstanceMode.NATIVE: NativeProvider(
            commands=config.commands,
            logs_dir=config.logs_dir,
            start_grace=config.lifecycle.start_grace,
        ),
        InstanceMode.CONTAINERIZED: ContainerProvider(
            commands=config.commands,
            logs_dir=config.logs_dir,
            start_grace=config.lifecycle.start_grace,
        ),
    }
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        registry=registry,
        requirements=requirements,
        source=source,
        providers=providers,
        health=HealthProbe(config.health),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _controller(runtime: RuntimeContext, op: OperationScope) -> InstanceLifecycleController:
    def _report(name: str, status: str, detail: str | None) -> None:
        op.add_step(name, status=status, detail=detail)

    return InstanceLifecycleController(
        runtime.config,
        runtime.registry,
        runtime.requirements,
        runtime.source,
        runtime.providers,
        runtime.health,
        confirm=lambda prompt: typer.confirm(prompt, default=True),
        reporter=_report,
    )


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the leonctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"leonctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    detail: str | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    context = {"detail": detail} if detail else None
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _fail(op: OperationScope, exc: LeonctlError | StateRegistryError) -> NoReturn:
    if isinstance(exc, LeonctlError):
        _command_error(op, exc.message, rc=exc.exit_code, detail=exc.detail)
    _command_error(op, str(exc), rc=ExitCode.VALIDATION)


def _instance_payload(instance: Instance) -> dict[str, object]:
    payload = instance.to_dict()
    payload["path"] = str(instance.path)
    return payload


# ---------------------------------------------------------------------------
# Lifecycle commands
# ---------------------------------------------------------------------------


@create_app.command("birth")
def create_birth(
    ctx: typer.Context,
    name: str | None = typer.Option(
        None,
        "--name",
        help="Instance name (defaults to a random UUID).",
    ),
    birth_path: Path | None = typer.Option(
        None,
        "--birth-path",
        file_okay=False,
        help="Directory to install Leon into (defaults to ~/.leon).",
    ),
    version: str | None = VERSION_OPTION,
    develop: bool = DEVELOP_OPTION,
    docker: bool = typer.Option(
        False,
        "--docker",
        help="Run the instance in a container instead of natively.",
    ),
    git: bool = GIT_OPTION,
    interactive: bool = typer.Option(
        False,
        "--interactive/--yes",
        help="Ask before installing missing dependencies, or install them without asking.",
    ),
) -> None:
    """Give birth to a new Leon instance."""
    runtime = _get_runtime(ctx)
    options = BirthOptions(
        name=name,
        birth_path=birth_path,
        version=version,
        use_develop_branch=develop,
        use_docker=docker,
        use_git=git,
        interactive=interactive,
    )
    args = {
        "name": name,
        "birth_path": str(birth_path) if birth_path else None,
        "version": version,
        "develop": develop,
        "docker": docker,
        "git": git,
        "interactive": interactive,
    }
    with runtime.logger.operation(
        "create birth",
        args=args,
        target={"kind": "instance", "name": name},
    ) as op:
        controller = _controller(runtime, op)
        try:
            instance = controller.create_birth(options)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        console.print(
            f"[green]Leon instance '{instance.name}' created at {instance.path} "
            f"({instance.mode.value}).[/green]"
        )
        op.success("Instance created.", changed=1, context=_instance_payload(instance))


@app.command("update")
def update(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    version: str | None = VERSION_OPTION,
    develop: bool = DEVELOP_OPTION,
    git: bool = GIT_OPTION,
) -> None:
    """Refresh an instance's source code and configure it again."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "update",
        args={"name": name, "version": version, "develop": develop, "git": git},
        target={"kind": "instance", "name": name},
    ) as op:
        controller = _controller(runtime, op)
        try:
            instance = controller.update(
                name,
                version=version,
                use_develop_branch=develop,
                use_git=git,
            )
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        console.print(f"[green]Leon instance '{instance.name}' updated.[/green]")
        op.success("Instance updated.", changed=1)


@app.command("start")
def start(ctx: typer.Context, name: str = NAME_ARGUMENT) -> None:
    """Start an instance in the background."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        controller = _controller(runtime, op)
        try:
            process = controller.start(name)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        console.print(
            f"[green]Leon instance '{name}' started (pid {process.pid}). "
            f"Logs: {process.log_file}[/green]"
        )
        op.success("Instance started.", changed=1, context={"pid": process.pid})


@app.command("check")
def check(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Wait until an instance answers on its HTTP endpoint."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={"name": name, "timeout": timeout},
        target={"kind": "instance", "name": name},
    ) as op:
        console.print(f"Waiting for '{name}' to answer...")
        controller = _controller(runtime, op)
        try:
            result = controller.check(name, timeout=timeout)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        if not result.healthy:
            _command_error(
                op,
                f"Leon instance '{name}' did not answer at {result.url} "
                f"within {result.elapsed:.1f}s.",
                rc=ExitCode.UNHEALTHY,
            )
        console.print(f"[green]Leon instance '{name}' is healthy ({result.url}).[/green]")
        op.success("Instance healthy.", context={"attempts": result.attempts})


@app.command("run")
def run(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Start an instance and wait until it is healthy."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "run",
        args={"name": name, "timeout": timeout},
        target={"kind": "instance", "name": name},
    ) as op:
        console.print(f"Starting '{name}'...")
        controller = _controller(runtime, op)
        try:
            result = controller.run(name, timeout=timeout)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        if not result.health.healthy:
            _command_error(
                op,
                f"Leon instance '{name}' started (pid {result.process.pid}) but did not "
                f"become healthy within {result.health.elapsed:.1f}s. "
                f"Logs: {result.process.log_file}",
                rc=ExitCode.UNHEALTHY,
            )
        console.print(
            f"[green]Leon instance '{name}' is running (pid {result.process.pid}) "
            f"at {result.health.url}.[/green]"
        )
        op.success("Instance running.", changed=1, context={"pid": result.process.pid})


# ---------------------------------------------------------------------------
# Inventory commands
# ---------------------------------------------------------------------------


_STATE_STYLES = {
    InstanceState.RUNNING: "[green]running[/green]",
    InstanceState.STARTING: "[yellow]starting[/yellow]",
    InstanceState.STOPPED: "stopped",
    InstanceState.ABSENT: "[red]absent[/red]",
}


@app.command("list")
def list_instances(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List registered instances with their live status."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("list", target={"kind": "instances"}) as op:
        controller = _controller(runtime, op)
        try:
            instances = controller.list_instances()
        except StateRegistryError as exc:
            _fail(op, exc)
        rows = [(instance, controller.status_provider.status(instance)) for instance in instances]

        if json_output:
            payload = [
                {**_instance_payload(instance), "status": status.state.value}
                for instance, status in rows
            ]
            typer.echo(json.dumps({"instances": payload}, indent=2))
            op.success("Listed instances.", context={"count": len(rows)})
            return

        if not rows:
            console.print("No Leon instances registered. Use 'leonctl create birth'.")
            op.success("Listed instances.", context={"count": 0})
            return

        table = Table(title="Leon instances")
        table.add_column("Name", style="bold")
        table.add_column("Mode")
        table.add_column("Path")
        table.add_column("Birth date")
        table.add_column("Starts", justify="right")
        table.add_column("Status")
        for instance, status in rows:
            table.add_row(
                instance.name,
                instance.mode.value,
                str(instance.path),
                instance.birth_date,
                str(instance.start_count),
                _STATE_STYLES.get(status.state, status.state.value),
            )
        console.print(table)
        op.success("Listed instances.", context={"count": len(rows)})


@app.command("info")
def info(ctx: typer.Context, name: str = NAME_ARGUMENT, json_output: bool = JSON_OPTION) -> None:
    """Show the registry record and live status of an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "info",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        controller = _controller(runtime, op)
        try:
            instance = runtime.registry.get(name)
            status = controller.status(name)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        payload = {
            **_instance_payload(instance),
            "status": status.state.value,
            "status_detail": status.detail,
            "url": runtime.health.url_for(instance),
        }
        if json_output:
            typer.echo(json.dumps(payload, indent=2))
        else:
            for key, value in payload.items():
                console.print(f"[bold]{key}[/bold]: {value}")
        op.success("Reported instance info.")


@app.command("delete")
def delete(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    keep_files: bool = typer.Option(
        False,
        "--keep-files",
        help="Unregister the instance but leave its directory on disk.",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Unregister an instance and remove its files."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "delete",
        args={"name": name, "keep_files": keep_files},
        target={"kind": "instance", "name": name},
    ) as op:
        controller = _controller(runtime, op)
        try:
            instance = runtime.registry.get(name)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        if not yes and not keep_files:
            if not typer.confirm(f"Delete '{name}' and everything under {instance.path}?"):
                console.print("[yellow]Aborted.[/yellow]")
                op.warning("Delete aborted by user.", changed=0)
                return
        try:
            controller.delete(name, keep_files=keep_files)
        except (LeonctlError, StateRegistryError) as exc:
            _fail(op, exc)
        console.print(f"[green]Leon instance '{name}' deleted.[/green]")
        op.success("Instance deleted.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
