"""Typer-powered command line interface for ``tsupdater``.

The CLI is a thin layer over :class:`~tsupdater.manager.InstallationManager`:
it resolves configuration, wires the collaborators together, renders progress
with Rich and maps each failure family to its exit code. It is meant to be run
periodically (cron, systemd timer) by a single scheduler per symlink.
"""
from __future__ import annotations

import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import UpdaterError
from .exit_codes import ExitCode
from .extractor import ArchiveExtractor
from .logging import OperationScope, StructuredLogger
from .manager import InstallationManager, UpdateState
from .mirror import MirrorClient
from .swap import select_strategy
from .target import PlatformTarget, TargetError, supported_targets

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to tsupdater's YAML config file.",
)
SYMLINK_PATH_OPTION = typer.Option(
    None,
    "--symlink-path",
    help="Symlink pinning the active TeamSpeak release (default /opt/teamspeak).",
)
RELEASES_PATH_OPTION = typer.Option(
    None,
    "--releases-path",
    file_okay=False,
    help="Directory holding one sub-directory per release (default /opt/teamspeak-releases).",
)
MIRROR_URL_OPTION = typer.Option(
    None,
    "--mirror-url",
    help="Mirror index listing published server versions.",
)
TARGET_TUPLE_OPTION = typer.Option(
    None,
    "--target-tuple",
    help="Platform tuple of the archive to install (e.g. linux_amd64, win64).",
)
SWAP_STRATEGY_OPTION = typer.Option(
    None,
    "--swap-strategy",
    help="How the active symlink is replaced (auto|atomic|rename).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the report as JSON.",
)

_STATE_LABELS = {
    UpdateState.CHECKING: "Checking for updates...",
    UpdateState.DOWNLOADING: "Downloading the release archive...",
    UpdateState.EXTRACTING: "Extracting the archive...",
    UpdateState.SWAPPING: "Swapping symbolic links...",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Check for and install new TeamSpeak 3 server releases.

        Releases are unpacked into versioned directories and activated by
        repointing a symlink; the previous link is kept as
        <symlink>.<unix-timestamp>.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class _Invocation:
    """Root options captured before the runtime is built."""

    config_file: Path | None = None
    overrides: dict[str, object] = field(default_factory=dict)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    client: MirrorClient

    def build_manager(
        self,
        *,
        on_state: Callable[[UpdateState], None] | None = None,
    ) -> InstallationManager:
        """Return a fresh manager for one run."""
        return InstallationManager(
            symlink_path=self.config.symlink_path,
            releases_path=self.config.releases_path,
            mirror_url=self.config.mirror_url,
            target=self.config.target_tuple,
            client=self.client,
            extractor=ArchiveExtractor(),
            strategy=select_strategy(self.config.swap_strategy),
            on_state=on_state,
        )


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    """Return the runtime, building it from the root options on first use."""
    current = ctx.obj
    if isinstance(current, RuntimeContext):
        return current
    invocation = current if isinstance(current, _Invocation) else _Invocation()

    try:
        config = load_config(config_file=invocation.config_file, overrides=invocation.overrides)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        client=MirrorClient(timeout=config.http_timeout),
    )
    ctx.obj = runtime
    return runtime


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the tsupdater version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    symlink_path: Path | None = SYMLINK_PATH_OPTION,
    releases_path: Path | None = RELEASES_PATH_OPTION,
    mirror_url: str | None = MIRROR_URL_OPTION,
    target_tuple: str | None = TARGET_TUPLE_OPTION,
    swap_strategy: str | None = SWAP_STRATEGY_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"tsupdater {__version__}")
        raise typer.Exit(code=0)

    overrides: dict[str, object] = {
        "symlink_path": str(symlink_path) if symlink_path else None,
        "releases_path": str(releases_path) if releases_path else None,
        "mirror_url": mirror_url,
        "target_tuple": target_tuple,
        "swap_strategy": swap_strategy,
    }
    ctx.obj = _Invocation(
        config_file=config_file,
        overrides={key: value for key, value in overrides.items() if value is not None},
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _updater_error(op: OperationScope, exc: UpdaterError) -> NoReturn:
    _command_error(
        op,
        f"{exc.stage.capitalize()} stage failed ({type(exc).__name__}): {exc}",
        rc=exc.exit_code,
        errors=[str(exc)],
    )


def _print_header(config: AppConfig) -> None:
    console.print(f"[bold]TeamSpeak updater v{__version__}[/bold]")
    console.print(
        f"symlink={config.symlink_path} releases={config.releases_path} "
        f"target={config.target_tuple.token}",
        style="dim",
    )


@app.command()
def update(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report whether an update would be installed without changing files.",
    ),
) -> None:
    """Install the newest published release when it is newer than the active one."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    _print_header(config)

    with runtime.logger.operation(
        "update",
        args={"dry_run": dry_run},
        target={
            "kind": "release",
            "symlink": str(config.symlink_path),
            "target_tuple": config.target_tuple.token,
        },
    ) as op:

        def _on_state(state: UpdateState) -> None:
            op.add_step(f"state.{state.value}", status="info")
            label = _STATE_LABELS.get(state)
            if label:
                console.print(label)

        manager = runtime.build_manager(on_state=_on_state)

        if dry_run:
            try:
                status = manager.check()
            except UpdaterError as exc:
                _updater_error(op, exc)
            newest = status.latest
            if status.update_available and newest is not None:
                console.print(
                    "[yellow]Dry run[/yellow]: would install "
                    f"{newest} into {manager.release_dir(newest)} "
                    f"(installed {status.installed})."
                )
            else:
                console.print(f"[yellow]Dry run[/yellow]: {status.installed} is up to date.")
            op.success(
                "Dry run complete.",
                changed=0,
                context={"installed": str(status.installed), "latest": str(status.latest)},
            )
            return

        try:
            result = manager.run()
        except UpdaterError as exc:
            _updater_error(op, exc)

        if not result.updated:
            latest = result.latest if result.latest is not None else "none published"
            console.print(
                f"[green]Already up to date[/green]: installed {result.installed}, "
                f"latest {latest}."
            )
            op.success(
                "Installation is up to date.",
                changed=0,
                context={"installed": str(result.installed), "latest": str(result.latest)},
            )
            return

        transition = result.transition
        console.print(
            f"[green]Updated TeamSpeak {result.installed} -> {result.latest}.[/green]"
        )
        if transition is not None:
            console.print(f"Previous link saved as {transition.backup_path}.")
        op.success(
            "Update installed.",
            changed=2,
            context={
                "installed": str(result.installed),
                "latest": str(result.latest),
                "release_dir": str(result.release_dir),
                "backup_link": str(transition.backup_path) if transition else None,
            },
        )


@app.command()
def check(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Report the installed and latest published versions."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={"json": json_output},
        target={"kind": "release", "symlink": str(runtime.config.symlink_path)},
    ) as op:
        manager = runtime.build_manager()
        try:
            result = manager.check()
        except UpdaterError as exc:
            _updater_error(op, exc)

        payload = {
            "installed": str(result.installed),
            "latest": str(result.latest) if result.latest is not None else None,
            "update_available": result.update_available,
            "releases": [str(version) for version in sorted(result.releases)],
        }
        if json_output:
            console.print_json(data=payload)
        else:
            console.print(f"Installed version: {result.installed}")
            console.print(f"Latest published version: {payload['latest'] or '(none)'}")
            if result.update_available:
                console.print("[yellow]An update is available.[/yellow]")
            else:
                console.print("[green]Up to date.[/green]")
        op.success("Reported update status.", changed=0, context=payload)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Print the resolved configuration."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()
    with runtime.logger.operation("config show", args={"json": json_output}) as op:
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(title="Configuration Summary", show_header=True, header_style="bold magenta")
            table.add_column("Key", style="bold")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(key, "(none)" if value is None else str(value))
            console.print(table)
        op.success("Reported configuration.", changed=0)


@app.command()
def targets() -> None:
    """List the platform tuples published on the mirror."""
    try:
        host: PlatformTarget | None = PlatformTarget.deduce()
    except TargetError:
        host = None

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Tuple", style="bold")
    table.add_column("OS")
    table.add_column("Arch")
    table.add_column("Archive")
    table.add_column("Host")
    for target in supported_targets():
        table.add_row(
            target.token,
            target.os,
            target.arch,
            target.archive_type.extension,
            "*" if target == host else "",
        )
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
