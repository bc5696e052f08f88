from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.text import Text

from mirrorbot.config import (
    CONFIG_FILENAME,
    MirrorConfig,
    config_path,
    load_config,
    merge_config,
    save_config,
)
from mirrorbot.diff import preview_pass
from mirrorbot.engine import mirror
from mirrorbot.exceptions import ConfigError, LockError, MirrorBotError, ReconciliationError
from mirrorbot.filters import build_path_filter
from mirrorbot.locking import RunLock, lock_path_for
from mirrorbot.logging_setup import setup_logging
from mirrorbot.models import PhaseEvent, ReconcileResult
from mirrorbot.scanner import scan_tree
from mirrorbot.snapshot import get_meta, load_snapshot, temp_path_for


app = typer.Typer(help="Mirror Bot CLI")
console = Console()

PHASE_TITLES = {
    "load_snapshot": "Loading previous snapshot",
    "delete_primary": "Removing deleted files",
    "absorb": "Syncing unsynced files",
    "symlink": "Symlinking missing files",
    "delete_replica": "Removing files that no longer exist",
    "save_snapshot": "Saving latest snapshot",
    "permissions": "Setting permissions",
}
SUMMARY_PHASES = {"load_snapshot", "save_snapshot", "permissions"}

PrimaryOption = typer.Option(None, "--primary", help="Primary path (holds the real files).")
ReplicaOption = typer.Option(None, "--replica", help="Replica path (holds symlinks into primary).")
SnapshotOption = typer.Option(None, "--snapshot", help="Snapshot path.")
SafeDeleteOption = typer.Option(
    None,
    "--safe-delete",
    "--safeDelete",
    help="Maximum number of items a single deletion phase may remove (default 10).",
)
PermissionsOption = typer.Option(None, "--permissions", help="Replica permissions as an octal mode, e.g. 775.")
PuidOption = typer.Option(None, "--puid", help="Replica owner user id.")
PgidOption = typer.Option(None, "--pgid", help="Replica owner group id.")
ExcludeOption = typer.Option(
    None,
    "--exclude",
    help="Exclude glob pattern(s) for paths to leave untouched (repeatable).",
)
ConfigOption = typer.Option(None, "--config", help=f"Config file (defaults to ./{CONFIG_FILENAME} if present).")


def _render_path_summary(title: str, paths: list[str], style: str) -> None:
    if not paths:
        return
    console.print(Text(f"{title} ({len(paths)}):", style=style))
    for path in paths:
        console.print(f"  {escape(path)}")


def _render_event(event: PhaseEvent) -> None:
    title = PHASE_TITLES.get(event.phase, event.phase)
    if event.stage == "started":
        console.print(Text(f"\n[{title}]:", style="bold"))
    elif event.stage == "failed":
        console.print(Text(f"{title} failed: {event.error}", style="red"))
    elif event.phase in SUMMARY_PHASES:
        if event.phase != "permissions":
            console.print(f"  {len(event.paths)} path(s)")
    elif event.paths:
        for path in event.paths:
            console.print(f"  {escape(path)}")
    else:
        console.print("  [dim]nothing to do[/dim]")


def _render_result(result: ReconcileResult) -> None:
    if not result.has_changes:
        console.print("[green]Primary and replica already in sync.[/green]")
    console.print(f"Snapshot updated: {result.snapshot_count} tracked path(s)")


def _resolve_config(config_file: Path | None, **overrides) -> MirrorConfig:
    base: MirrorConfig | None = None
    if config_file is not None:
        base = load_config(config_file)
    elif config_path().exists():
        base = load_config(config_path())
    return merge_config(base, **overrides)


async def _run_async(config: MirrorConfig, *, use_lock: bool) -> int:
    try:
        options = config.to_options()
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    started = datetime.now()
    console.print("------------------------------")
    console.print(f"[bold]Starting Mirror Bot - {started:%Y-%m-%d %H:%M:%S}[/bold]")
    console.print(f"Primary: {config.primary_path}")
    console.print(f"Replica: {config.replica_path}")
    console.print(f"Snapshot: {config.snapshot_path}")

    try:
        if use_lock:
            with RunLock(lock_path_for(config.snapshot_path)):
                result = await mirror(
                    config.primary_path,
                    config.replica_path,
                    config.snapshot_path,
                    options,
                    on_event=_render_event,
                )
        else:
            result = await mirror(
                config.primary_path,
                config.replica_path,
                config.snapshot_path,
                options,
                on_event=_render_event,
            )
    except LockError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1
    except ReconciliationError as exc:
        console.print(f"\n[red]Mirror Bot failed - {datetime.now():%Y-%m-%d %H:%M:%S}[/red]")
        console.print(exc.full_message(), markup=False, highlight=False)
        return 1

    console.print()
    _render_result(result)
    console.print(f"[green]Mirror Bot complete - {datetime.now():%Y-%m-%d %H:%M:%S}[/green]")
    return 0


@app.command()
def init(
    primary: str = typer.Option(..., "--primary", help="Primary path (holds the real files)."),
    replica: str = typer.Option(..., "--replica", help="Replica path (holds symlinks into primary)."),
    snapshot: str = typer.Option(..., "--snapshot", help="Snapshot path."),
    safe_delete: str | None = SafeDeleteOption,
    permissions: str | None = PermissionsOption,
    puid: str | None = PuidOption,
    pgid: str | None = PgidOption,
    exclude: list[str] | None = ExcludeOption,
) -> None:
    """Write a Mirror Bot config file in the current directory."""
    config = MirrorConfig(
        primary=primary,
        replica=replica,
        snapshot=snapshot,
        safe_delete=safe_delete,
        permissions=permissions,
        puid=puid,
        pgid=pgid,
        exclude=list(exclude or []),
    )
    try:
        config.to_options()
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    path = save_config(config)
    console.print(f"[green]Initialized Mirror Bot[/green] config at {path}")


@app.command()
def run(
    primary: str | None = PrimaryOption,
    replica: str | None = ReplicaOption,
    snapshot: str | None = SnapshotOption,
    safe_delete: str | None = SafeDeleteOption,
    permissions: str | None = PermissionsOption,
    puid: str | None = PuidOption,
    pgid: str | None = PgidOption,
    exclude: list[str] | None = ExcludeOption,
    config_file: Path | None = ConfigOption,
    no_lock: bool = typer.Option(False, "--no-lock", help="Do not take the run lock next to the snapshot."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every filesystem operation."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write a debug log to this file."),
) -> None:
    """Reconcile the replica with the primary and save a new snapshot."""
    setup_logging(verbose=verbose, log_file=log_file)
    try:
        config = _resolve_config(
            config_file,
            primary=primary,
            replica=replica,
            snapshot=snapshot,
            safe_delete=safe_delete,
            permissions=permissions,
            puid=puid,
            pgid=pgid,
            exclude=exclude,
        )
    except (FileNotFoundError, ConfigError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    # asyncio.run cancels the pass on Ctrl-C and re-raises KeyboardInterrupt here.
    try:
        code = asyncio.run(_run_async(config, use_lock=not no_lock))
    except KeyboardInterrupt:
        console.print(
            "\n[yellow]Mirror Bot interrupted.[/yellow] Snapshot was not updated; "
            "the next run will finish the remaining work."
        )
        code = 130
    raise typer.Exit(code=code)


async def _status_async(config: MirrorConfig) -> int:
    try:
        options = config.to_options()
        path_filter = build_path_filter(options.exclude_patterns)
        skip = (
            config.snapshot_path,
            temp_path_for(config.snapshot_path),
            lock_path_for(config.snapshot_path),
        )
        snapshot = path_filter.filter_paths(await load_snapshot(config.snapshot_path))
        saved_at = await get_meta(config.snapshot_path, "saved_at")
        primary_records = scan_tree(config.primary_path, path_filter=path_filter, skip=skip)
        replica_records = scan_tree(config.replica_path, path_filter=path_filter, skip=skip)
    except MirrorBotError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    preview = preview_pass(snapshot, primary_records, replica_records)

    _render_path_summary("Delete from primary", preview.delete_from_primary, "yellow")
    _render_path_summary("Absorb into primary", preview.absorb, "green")
    _render_path_summary("Symlink into replica", preview.symlink, "green")
    _render_path_summary("Delete from replica", preview.delete_from_replica, "yellow")

    if not preview.has_changes:
        console.print("[green]Primary and replica are in sync.[/green]")

    limit = options.safe_delete_limit
    for title, paths in (
        ("primary", preview.delete_from_primary),
        ("replica", preview.delete_from_replica),
    ):
        if len(paths) > limit:
            console.print(
                f"[red]Deleting {len(paths)} item(s) from the {title} exceeds the safe delete "
                f"limit of {limit}; the next run will abort.[/red]"
            )

    if not config.snapshot_path.exists():
        console.print("No snapshot yet: the next run is a first run.")
    else:
        console.print(f"Snapshot: {len(snapshot)} tracked path(s), saved {saved_at or 'at an unknown time'}")
    return 0


@app.command()
def status(
    primary: str | None = PrimaryOption,
    replica: str | None = ReplicaOption,
    snapshot: str | None = SnapshotOption,
    safe_delete: str | None = SafeDeleteOption,
    exclude: list[str] | None = ExcludeOption,
    config_file: Path | None = ConfigOption,
) -> None:
    """Show what the next run would change, without touching either tree."""
    setup_logging()
    try:
        config = _resolve_config(
            config_file,
            primary=primary,
            replica=replica,
            snapshot=snapshot,
            safe_delete=safe_delete,
            exclude=exclude,
        )
    except (FileNotFoundError, ConfigError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    raise typer.Exit(code=asyncio.run(_status_async(config)))
