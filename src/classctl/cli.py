"""Typer-powered command line for ``classctl``.

The CLI is the process entry point: it loads the tool configuration, builds
the :class:`~classctl.context.ConfiguratorContext` once per invocation, takes
the locks the core leaves to its caller, and maps core errors to exit codes.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .applier import ApplyReport
from .config import ConfigError, load_config
from .context import ConfiguratorContext
from .exit_codes import ExitCode
from .locking import LockTimeoutError
from .logging import OperationScope
from .notify import RecordingNotifier
from .provisioning import (
    GenerationFailed,
    InvalidKeyFile,
    PersistFailed,
    ProvisionError,
    ReplaceExistingFailed,
)
from .roles import Role
from .settings import ConfigurationTree, format_listing
from .store import StoreError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to classctl's YAML config file.",
)
ROLE_OPTION = typer.Option(
    ...,
    "--role",
    "-r",
    case_sensitive=False,
    help="Role the key belongs to.",
)
DEST_DIR_OPTION = typer.Option(
    None,
    "--dest-dir",
    file_okay=False,
    help="Key directory to use instead of the configured keys_dir.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine readable JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Classroom remote-administration configurator.

        Provisions role key pairs and applies configuration snapshots to the
        system store, the agent service, and the host firewall.
        """
    ).strip(),
)
keys_app = typer.Typer(help="Create and import role keys.")
config_app = typer.Typer(help="Apply and list the product configuration.")

app.add_typer(keys_app, name="keys")
app.add_typer(config_app, name="config")


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    silent: bool = False,
    lock_timeout_override: float | None = None,
) -> ConfiguratorContext:
    runtime = ctx.obj
    if isinstance(runtime, ConfiguratorContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
        runtime = ConfiguratorContext.create(config, silent=silent)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    except StoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.PROVIDER) from exc
    ctx.obj = runtime
    ctx.call_on_close(runtime.close)
    return runtime


def _get_runtime(ctx: typer.Context) -> ConfiguratorContext:
    runtime = ctx.find_root().obj
    if isinstance(runtime, ConfiguratorContext):
        return runtime
    return _ensure_runtime(ctx.find_root(), None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the classctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    silent: bool = typer.Option(
        False,
        "--silent",
        "-s",
        help="Log notices without showing them and never prompt.",
    ),
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"classctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, silent, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _provision_error(op: OperationScope, exc: ProvisionError) -> NoReturn:
    if isinstance(exc, InvalidKeyFile):
        rc = ExitCode.VALIDATION
    elif isinstance(exc, (PersistFailed, ReplaceExistingFailed)):
        rc = ExitCode.ENVIRONMENT
    elif isinstance(exc, GenerationFailed):
        rc = ExitCode.PROVIDER
    else:  # pragma: no cover - every subclass is mapped above
        rc = ExitCode.PROVIDER
    _command_error(op, str(exc), rc=rc)


# ----------------------------------------------------------------------
# keys
# ----------------------------------------------------------------------
@keys_app.command("create")
def keys_create(
    ctx: typer.Context,
    role: Role = ROLE_OPTION,
    dest_dir: Path | None = DEST_DIR_OPTION,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Overwrite an existing key pair without asking.",
    ),
) -> None:
    """Generate a DSA key pair for a role."""
    runtime = _get_runtime(ctx)
    paths = runtime.resolver.paths_for(role, dest_dir)
    args = {"role": role.value, "dest_dir": str(dest_dir) if dest_dir else None}

    with runtime.logger.operation(
        "keys create",
        args=args,
        target={"kind": "role", "name": role.value},
    ) as op:
        try:
            with runtime.locks.mutate_roles([role.value]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                existing = [path for path in (paths.private, paths.public) if path.exists()]
                if existing and not (yes or runtime.silent):
                    confirmed = typer.confirm(
                        f"A {role.value} key pair already exists in "
                        f"{paths.private.parent.parent.parent}. Overwrite it?",
                        default=False,
                    )
                    if not confirmed:
                        console.print("[yellow]Key creation cancelled.[/yellow]")
                        op.warning("Key creation cancelled by operator.", warnings=["user-cancelled"])
                        return
                if existing:
                    op.add_step("keys.overwrite", status="success", detail=str(paths.private))

                created = runtime.provisioner().create_key_pair(role, dest_dir)
                op.add_step("keys.private", status="success", detail=str(created.private))
                op.add_step("keys.public", status="success", detail=str(created.public))
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        except ProvisionError as exc:
            _provision_error(op, exc)

        console.print(f"[green]Created {role.value} key pair.[/green]")
        op.success("Key pair created.", changed=2, context=created.to_dict())


@keys_app.command("import")
def keys_import(
    ctx: typer.Context,
    source: Path = typer.Argument(
        ...,
        dir_okay=False,
        help="Public key file to import (PEM or DER).",
    ),
    role: Role = ROLE_OPTION,
    dest_dir: Path | None = DEST_DIR_OPTION,
) -> None:
    """Validate a public key and install it for a role."""
    runtime = _get_runtime(ctx)
    args = {
        "role": role.value,
        "source": str(source),
        "dest_dir": str(dest_dir) if dest_dir else None,
    }
    with runtime.logger.operation(
        "keys import",
        args=args,
        target={"kind": "role", "name": role.value},
    ) as op:
        try:
            with runtime.locks.mutate_roles([role.value]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                destination = runtime.provisioner().import_public_key(role, source, dest_dir)
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        except ProvisionError as exc:
            _provision_error(op, exc)

        console.print(f"[green]Imported {role.value} public key to {destination}.[/green]")
        op.success(
            "Public key imported.",
            changed=1,
            context={"role": role.value, "destination": str(destination)},
        )


@keys_app.command("paths")
def keys_paths(
    ctx: typer.Context,
    role: Role = ROLE_OPTION,
    dest_dir: Path | None = DEST_DIR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show where the keys of a role are stored."""
    runtime = _get_runtime(ctx)
    paths = runtime.resolver.paths_for(role, dest_dir)
    with runtime.logger.operation(
        "keys paths",
        args={"role": role.value, "json": json_output},
        target={"kind": "role", "name": role.value},
    ) as op:
        if json_output:
            typer.echo(json.dumps(paths.to_dict(), indent=2))
        else:
            table = Table("Key", "Path", "Present")
            for label, path in (("private", paths.private), ("public", paths.public)):
                table.add_row(label, str(path), "yes" if path.exists() else "no")
            console.print(table)
        op.success("Reported key paths.", changed=0)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
def _load_snapshot(op: OperationScope, path: Path) -> ConfigurationTree:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        _command_error(op, f"Cannot read {path}: {exc}", rc=ExitCode.VALIDATION)
    except yaml.YAMLError as exc:
        _command_error(op, f"Failed to parse {path}: {exc}", rc=ExitCode.VALIDATION)
    if data is None:
        return ConfigurationTree()
    if not isinstance(data, dict):
        _command_error(
            op,
            f"{path} must contain a mapping at the top level.",
            rc=ExitCode.VALIDATION,
        )
    return ConfigurationTree.from_mapping(data)


def _render_apply_report(
    report: ApplyReport,
    notices: RecordingNotifier,
    *,
    json_output: bool,
) -> None:
    if json_output:
        payload = report.to_dict()
        payload["notices"] = [notice.to_dict() for notice in notices.notices]
        typer.echo(json.dumps(payload, indent=2))
        return
    table = Table("Step", "Status", "Details")
    for outcome in report.outcomes:
        status = "[green]ok[/green]" if outcome.success else "[red]failed[/red]"
        table.add_row(outcome.action, status, "" if outcome.success else outcome.message)
    console.print(table)


@config_app.command("apply")
def config_apply(
    ctx: typer.Context,
    snapshot: Path = typer.Argument(
        ...,
        dir_okay=False,
        help="YAML file holding the configuration to merge and apply.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Merge a configuration snapshot and apply it to this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config apply",
        args={"snapshot": str(snapshot), "json": json_output},
        target={"kind": "config", "scope": "system"},
    ) as op:
        incoming = _load_snapshot(op, snapshot)
        notices = RecordingNotifier(forward=runtime.notifier)
        try:
            with runtime.locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                report = runtime.applier(notices).apply(incoming)
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        for outcome in report.outcomes:
            op.add_step(
                outcome.action,
                status="success" if outcome.success else "error",
                detail=None if outcome.success else outcome.message,
            )
        _render_apply_report(report, notices, json_output=json_output)

        failures = [outcome.message for outcome in report.failures]
        if failures:
            op.warning(
                "Configuration applied with failures.",
                errors=failures,
                changed=len(report.outcomes) - len(failures),
                rc=int(ExitCode.PARTIAL),
                context={"report": report.to_dict()},
            )
            raise typer.Exit(code=ExitCode.PARTIAL)
        op.success(
            "Configuration applied.",
            changed=len(report.outcomes),
            context={"report": report.to_dict()},
        )


@config_app.command("list")
def config_list(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the listing to this file instead of stdout.",
    ),
) -> None:
    """List the system configuration as path=value lines."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config list",
        args={"output": str(output) if output else None},
        target={"kind": "config", "scope": "system"},
    ) as op:
        entries = runtime.applier().list()
        text = format_listing(entries)
        if output is None:
            typer.echo(text, nl=False)
        else:
            try:
                output.write_text(text, encoding="utf-8")
            except OSError as exc:
                _command_error(op, f"Cannot write {output}: {exc}", rc=ExitCode.ENVIRONMENT)
        op.success(f"Listed {len(entries)} configuration values.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective classctl settings after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "scope": "tool"},
    ) as op:
        if json_output:
            typer.echo(json.dumps(data, indent=2, sort_keys=True))
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


__all__ = ["app"]
