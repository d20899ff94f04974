"""CLI entry point: mark activities during a recording, manage labels and synced files."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from sensorlabel import __version__
from sensorlabel.config import (
    CONFIG_PATH,
    SESSION_PATH,
    init_config_if_missing,
    load_config,
)
from sensorlabel.link import FolderLink
from sensorlabel.logging_setup import setup_logging
from sensorlabel.models import FileSortOption, SyncState, sort_files
from sensorlabel.segments import SegmentStore
from sensorlabel.session import NotRecordingError, RecordingSession
from sensorlabel.sync import FileSyncReconciler, delete_files, list_raw_files, newest_file

console = Console(highlight=False)
err_console = Console(highlight=False, stderr=True)

_STATE_BADGES = {
    SyncState.SYNCED: "[green]synced[/green]",
    SyncState.PENDING: "[yellow]on device[/yellow]",
    SyncState.TRANSFERRING: "[cyan]transferring[/cyan]",
}


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _format_elapsed(seconds: float) -> str:
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}"


def _format_size(size: int) -> str:
    if size > 1_000_000:
        return f"{size / 1_000_000:.1f} MB"
    return f"{size / 1_000:.0f} KB"


def _data_folder(cfg: dict) -> Path:
    return Path(cfg.get("data_folder", "~/sensor_data")).expanduser()


def _store(cfg: dict) -> SegmentStore:
    return SegmentStore(_data_folder(cfg), raw_extension=cfg.get("raw_extension", ".csv"))


def _session(cfg: dict) -> RecordingSession:
    return RecordingSession(SESSION_PATH, store=_store(cfg))


def _link(cfg: dict) -> FolderLink:
    return FolderLink(
        cfg.get("device_folder", "~/sensor_device"),
        _data_folder(cfg),
        extension=cfg.get("raw_extension", ".csv"),
    )


def _resolve_file(cfg: dict, file_name: str | None) -> str | None:
    """Explicit --file wins; otherwise the newest local raw file."""
    if file_name:
        return file_name
    newest = newest_file(list_raw_files(_data_folder(cfg), cfg.get("raw_extension", ".csv")))
    return newest.name if newest else None


def _print_files(files, sort: FileSortOption) -> None:
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Recorded")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("State")
    for f in sort_files(files, sort):
        dim = f.sync_state is SyncState.PENDING
        name = f"[dim]{f.name}[/dim]" if dim else f.name
        table.add_row(
            f.data_date.strftime("%b %d, %Y %H:%M:%S"),
            name,
            _format_size(f.size),
            _STATE_BADGES[f.sync_state],
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Main command group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.version_option(__version__, prog_name="sensorlabel")
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """sensorlabel: label wearable sensor recordings with activities."""
    setup_logging(debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config()


# ---------------------------------------------------------------------------
# Recording session
# ---------------------------------------------------------------------------

@main.command()
@click.option("--file", "file_name", type=str, default=None,
              help="Raw data file to attach labels to (default: newest local file).")
@click.pass_context
def start(ctx: click.Context, file_name: str | None) -> None:
    """Start a labeling session."""
    cfg = ctx.obj["config"]
    session = _session(cfg)
    restarting = session.is_recording
    file_id = _resolve_file(cfg, file_name)
    session.start_recording(current_file_id=file_id)
    if restarting:
        console.print("  [yellow]Previous session discarded.[/yellow]")
    console.print("  [red]●[/red] [bold]Recording[/bold] labels")
    if file_id:
        console.print(f"  [dim]Labels go to {file_id}[/dim]")
    else:
        console.print("  [dim]No raw file yet; labels are kept in the session only.[/dim]")


@main.command()
@click.argument("label")
@click.option("--file", "file_name", type=str, default=None,
              help="Raw data file to attach labels to.")
@click.pass_context
def mark(ctx: click.Context, label: str, file_name: str | None) -> None:
    """Toggle LABEL on or off in the running session."""
    session = _session(ctx.obj["config"])
    try:
        event = session.toggle_activity(label, current_file_id=file_name)
    except NotRecordingError as exc:
        console.print(f"  [yellow]Warning:[/yellow] {exc}")
        console.print("  [dim]Run 'sensorlabel start' first.[/dim]")
        return
    console.print(
        f"  [bold]{label}[/bold] {event.action.value} at {_format_elapsed(event.elapsed_seconds)}"
    )


@main.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the session, closing any activity still running."""
    session = _session(ctx.obj["config"])
    if not session.is_recording:
        console.print("  No session running.")
        return
    file_id = session.current_file_id
    events = session.stop_recording()
    console.print(f"  [green]Stopped[/green]       {len(events)} events recorded")
    if file_id:
        console.print(f"  [dim]Labels saved for {file_id}[/dim]")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the running session."""
    session = _session(ctx.obj["config"])
    if not session.is_recording:
        console.print("  Idle.")
        return
    console.print(
        f"  [red]●[/red] [bold]REC[/bold]  {_format_elapsed(session.elapsed_seconds)}"
        f"  [dim]{session.current_file_id or 'no file'}[/dim]"
    )
    active = ", ".join(sorted(session.active_labels)) or "none"
    console.print(f"  Active: [bold]{active}[/bold]")
    for event in session.events:
        console.print(
            f"    {_format_elapsed(event.elapsed_seconds):>6}  {event.label} {event.action.value}"
        )


@main.command()
@click.pass_context
def activities(ctx: click.Context) -> None:
    """List the default activity labels."""
    for label in ctx.obj["config"].get("default_activities", []):
        console.print(f"  {label}")


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

@main.command()
@click.argument("file_name")
@click.option("--tag", type=str, default=None, help="Only segments with this tag.")
@click.option("--range", "time_range", type=(float, float), default=None,
              metavar="START END", help="Only segments overlapping this time range.")
@click.pass_context
def segments(
    ctx: click.Context,
    file_name: str,
    tag: str | None,
    time_range: tuple[float, float] | None,
) -> None:
    """List labeled segments for FILE_NAME."""
    store = _store(ctx.obj["config"])
    if tag is not None:
        found = store.query_by_tag(file_name, tag)
    elif time_range is not None:
        found = store.query_by_range(file_name, *time_range)
    else:
        found = store.load(file_name)

    if not found:
        console.print("  [dim]No segments.[/dim]")
        return
    for seg in sorted(found, key=lambda s: s.start_seconds):
        console.print(
            f"  {seg.start_seconds:8.1f}s - {seg.end_seconds:8.1f}s  "
            f"[bold]{', '.join(seg.tags)}[/bold]  [dim]{seg.id}[/dim]"
        )


@main.command(name="delete-segment")
@click.argument("file_name")
@click.argument("segment_id", required=False)
@click.option("--all", "delete_all", is_flag=True, default=False,
              help="Remove every segment for the file.")
@click.pass_context
def delete_segment(
    ctx: click.Context, file_name: str, segment_id: str | None, delete_all: bool
) -> None:
    """Delete one segment by id, or all with --all."""
    store = _store(ctx.obj["config"])
    if delete_all:
        store.delete_all(file_name)
        console.print(f"  Removed all segments for {file_name}")
        return
    if not segment_id:
        raise click.UsageError("Give a SEGMENT_ID or --all.")
    store.delete(file_name, segment_id)
    console.print(f"  Removed segment {segment_id}")


@main.command()
@click.argument("file_name", required=False)
@click.option("-o", "--output", type=click.Path(), default=None,
              help="Write CSV to this file (default: print).")
@click.option("--copy", "copy_clip", is_flag=True, default=False,
              help="Also copy the CSV to the clipboard.")
@click.pass_context
def export(ctx: click.Context, file_name: str | None, output: str | None, copy_clip: bool) -> None:
    """Export labels as CSV for one file or all files."""
    from sensorlabel.output import copy_to_clipboard, save_csv

    cfg = ctx.obj["config"]
    store = _store(cfg)
    csv = store.export_csv(file_name) if file_name else store.export_all_csv()

    if output:
        out = Path(output).expanduser()
        if out.is_dir() and not file_name:
            saved = store.write_export(out)
        elif out.is_dir():
            saved = save_csv(csv, out / f"{Path(file_name).stem}_labels.csv")
        else:
            saved = save_csv(csv, out)
        console.print(f"  [green]Saved[/green]         {saved}")
    else:
        click.echo(csv, nl=False)

    if copy_clip or cfg.get("auto_clipboard", False):
        if copy_to_clipboard(csv):
            err_console.print("  [green]Clipboard[/green]     copied")
        else:
            err_console.print("  [yellow]Clipboard unavailable.[/yellow]")


# ---------------------------------------------------------------------------
# Files and device
# ---------------------------------------------------------------------------

@main.command()
@click.option("--sort", "sort_key", type=click.Choice([o.value for o in FileSortOption]),
              default=FileSortOption.NEWEST_FIRST.value, show_default=True)
@click.pass_context
def files(ctx: click.Context, sort_key: str) -> None:
    """List local and on-device recordings."""
    cfg = ctx.obj["config"]
    link = _link(cfg)
    if not link.is_reachable:
        console.print("  [dim]Device not reachable; showing local files only.[/dim]")
    reconciler = FileSyncReconciler(transfer_timeout=cfg.get("transfer_timeout_seconds"))
    merged = reconciler.refresh(
        list_raw_files(_data_folder(cfg), cfg.get("raw_extension", ".csv")),
        link.pending_files,
    )
    console.print(f"  Files: {len(merged)}")
    _print_files(merged, FileSortOption(sort_key))


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def fetch(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Download NAMES from the device."""
    cfg = ctx.obj["config"]
    link = _link(cfg)
    if not link.is_reachable:
        console.print("  [red]Device not reachable.[/red]")
        sys.exit(1)
    reconciler = FileSyncReconciler(transfer_timeout=cfg.get("transfer_timeout_seconds"))
    pending = {f.name for f in link.pending_files}
    requested = []
    for name in names:
        if name not in pending:
            console.print(f"  [dim]\\[skip][/dim]  {name} is not pending on the device")
            continue
        reconciler.mark_transferring(name)
        link.request_file(name)
        requested.append(name)

    reconciler.refresh(
        list_raw_files(_data_folder(cfg), cfg.get("raw_extension", ".csv")),
        link.pending_files,
    )
    in_flight = reconciler.transferring
    for name in requested:
        if name in in_flight:
            console.print(f"  [cyan]In flight[/cyan]     {name}")
        else:
            console.print(f"  [green]Synced[/green]        {name}")


@main.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Download every pending file from the device."""
    link = _link(ctx.obj["config"])
    if not link.is_reachable:
        console.print("  [red]Device not reachable.[/red]")
        sys.exit(1)
    count = len(link.pending_files)
    link.request_sync_from_watch()
    remaining = len(link.pending_files)
    console.print(f"  [green]Synced[/green]        {count - remaining} of {count} files")


@main.command(name="delete-local")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def delete_local(ctx: click.Context, yes: bool) -> None:
    """Delete all synced raw files from the data folder."""
    cfg = ctx.obj["config"]
    local = list_raw_files(_data_folder(cfg), cfg.get("raw_extension", ".csv"))
    if not local:
        console.print("  [dim]No local files.[/dim]")
        return
    if not yes and not click.confirm(
        f"  Delete all {len(local)} local files? This cannot be undone", default=False
    ):
        return
    deleted = delete_files(local)
    console.print(f"  Deleted {deleted} of {len(local)} synced files")


@main.command(name="device-clean")
@click.option("--all", "clean_all", is_flag=True, default=False,
              help="Delete every file on the device, synced or not.")
@click.pass_context
def device_clean(ctx: click.Context, clean_all: bool) -> None:
    """Delete files on the device that are already synced (or all with --all)."""
    link = _link(ctx.obj["config"])
    if not link.is_reachable:
        console.print("  [red]Device not reachable.[/red]")
        sys.exit(1)
    if clean_all:
        link.request_delete_all_files_on_watch()
    else:
        link.request_delete_synced_files_on_watch()
    console.print(f"  Device now holds {len(link.pending_files)} unsynced files")


@main.command()
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_context
def collection(ctx: click.Context, state: str) -> None:
    """Turn sensor data collection on the device on or off."""
    link = _link(ctx.obj["config"])
    if not link.is_reachable:
        console.print("  [red]Device not reachable.[/red]")
        sys.exit(1)
    link.send_data_collection_state(state == "on")
    console.print(f"  Data collection [bold]{state}[/bold]")


# ---------------------------------------------------------------------------
# config / setup
# ---------------------------------------------------------------------------

@main.command()
@click.option("--show", is_flag=True, help="Show current config values.")
@click.pass_context
def config(ctx: click.Context, show: bool) -> None:
    """Show or edit configuration."""
    if show:
        for key, val in ctx.obj["config"].items():
            console.print(f"  [bold]{key}:[/bold] {val}")
    else:
        console.print(f"  Config file: [dim]{CONFIG_PATH}[/dim]")
        console.print(
            "  Edit it directly, or use [bold]'sensorlabel config --show'[/bold] to view current values."
        )


@main.command()
def setup() -> None:
    """Create the default config file and data folder."""
    created = init_config_if_missing()
    if created:
        console.print(f"  Created default config at [dim]{CONFIG_PATH}[/dim]")
    else:
        console.print(f"  Config already exists at [dim]{CONFIG_PATH}[/dim]")
    folder = _data_folder(load_config())
    folder.mkdir(parents=True, exist_ok=True)
    console.print(f"  Data folder: [dim]{folder}[/dim]")
