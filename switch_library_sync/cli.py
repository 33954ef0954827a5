"""Command-line interface for switch-library-sync."""

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from .exceptions import LibraryError, StateNotLoadedError
from .service import LibraryService
from .settings import AppSettings, OrganizeOptions, default_data_dir

console = Console()


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@contextmanager
def _progress_bar(description: str):
    """Yield a (curr, total, message) callback that drives a rich progress bar."""
    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=30),
        MofNCompleteColumn(),
        TextColumn("[dim]{task.fields[message]}"),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(description, total=None, message="")

        def callback(curr: int, total: int, message: str) -> None:
            progress.update(task_id, completed=curr, total=total or None, message=message[:50])

        yield callback


def _fail(e: Exception) -> None:
    console.print(f"[red]Error:[/red] {e}")
    if isinstance(e, StateNotLoadedError):
        console.print("Run 'scan' and 'update-db' first.")
    sys.exit(1)


def _load_state(svc: LibraryService, need_catalog: bool = True) -> None:
    """A CLI process starts empty: rebuild what the command needs."""
    try:
        if need_catalog:
            with _progress_bar("Title database") as cb:
                svc.update_catalog(on_progress=cb)
        with _progress_bar("Scanning") as cb:
            svc.update_library(on_progress=cb)
    except LibraryError as e:
        _fail(e)


@click.group()
@click.option(
    "--data-dir",
    envvar="SLS_DATA_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    help="Application data folder (or set SLS_DATA_DIR env var)",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, verbose: int) -> None:
    """Reconcile a local Switch library against the title database."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["service"] = LibraryService(data_dir=data_dir or default_data_dir())


@main.command(name="update-db")
@click.pass_context
def update_db(ctx: click.Context) -> None:
    """Download the title database (skipped when unchanged on the server)."""
    svc: LibraryService = ctx.obj["service"]
    try:
        with _progress_bar("Title database") as cb:
            result = svc.update_catalog(on_progress=cb)
    except LibraryError as e:
        _fail(e)

    console.print(f"[green]Title database updated:[/green] {result.title_count} titles")
    if not result.etags_saved:
        console.print("[dim]Server data unchanged since last update.[/dim]")


@main.command()
@click.option("--hard", is_flag=True, help="Clear the scan cache and re-read every file")
@click.pass_context
def scan(ctx: click.Context, hard: bool) -> None:
    """Scan the library folders and show a summary."""
    svc: LibraryService = ctx.obj["service"]
    try:
        with _progress_bar("Scanning") as cb:
            result = svc.update_library(hard=hard, on_progress=cb)
    except LibraryError as e:
        _fail(e)

    view = result.view
    console.print(f"[bold]Files scanned:[/bold] {view.num_files}")
    console.print(f"[bold]Titles:[/bold] {len(view.library_data)}")
    console.print(f"[bold]Issues:[/bold] {len(view.issues)}")
    for path, reason in view.issues:
        console.print(f"  [yellow]![/yellow] {path}: {reason}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.option("--offline", is_flag=True, help="Do not download the title database")
@click.pass_context
def library(ctx: click.Context, as_json: bool, offline: bool) -> None:
    """Show the library, one row per title."""
    svc: LibraryService = ctx.obj["service"]
    _load_state(svc, need_catalog=not offline)
    try:
        view = svc.library_view()
    except LibraryError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(view.to_dict(), indent=2))
        return

    table = Table(title="Library")
    table.add_column("Title", style="cyan")
    table.add_column("Title ID")
    table.add_column("Version", style="green")
    table.add_column("Update")
    table.add_column("Type")
    table.add_column("DLC", style="blue")
    for row in sorted(view.library_data, key=lambda r: r.name.lower()):
        table.add_row(
            row.name[:40],
            row.title_id.upper(),
            row.version or "-",
            str(row.update),
            row.type,
            row.dlc[:40] or "-",
        )
    console.print(table)
    console.print(f"[dim]{view.num_files} files, {len(view.issues)} issues[/dim]")


@main.command()
@click.argument("kind", type=click.Choice(["dlc", "updates", "games"]))
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def missing(ctx: click.Context, kind: str, as_json: bool) -> None:
    """
    List missing DLC, updates or games.

    KIND: dlc, updates or games
    """
    svc: LibraryService = ctx.obj["service"]
    _load_state(svc)
    try:
        if kind == "dlc":
            results = svc.get_missing_dlc()
        elif kind == "updates":
            results = svc.get_missing_updates()
        else:
            results = svc.get_missing_games()
    except LibraryError as e:
        _fail(e)

    results = sorted(results, key=lambda r: (r.name.lower(), r.title_id))
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        console.print("[green]Nothing missing![/green]")
        return

    table = Table(title=f"Missing {kind}")
    table.add_column("Title", style="cyan")
    table.add_column("Title ID")
    if kind == "dlc":
        table.add_column("Missing DLC", style="yellow")
        for r in results:
            table.add_row(r.name[:40], r.title_id.upper(), "\n".join(r.missing_dlc))
    elif kind == "updates":
        table.add_column("Local", style="green")
        table.add_column("Latest", style="blue")
        table.add_column("Released")
        for r in results:
            label = r.name[:40] if r.kind == "base" else f"{r.name[:34]} (DLC)"
            table.add_row(
                label,
                r.title_id.upper(),
                str(r.local_update),
                str(r.latest_update),
                r.latest_update_date or "-",
            )
    else:
        table.add_column("Region")
        table.add_column("Released")
        for r in results:
            table.add_row(r.name[:40], r.title_id.upper(), r.region or "-", r.release_date or "-")
    console.print(table)
    console.print(f"[dim]{len(results)} entries[/dim]")


@main.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def organize(ctx: click.Context, yes: bool) -> None:
    """Move and rename library files using the organize templates."""
    svc: LibraryService = ctx.obj["service"]
    if not yes:
        click.confirm("This will move files on disk. Continue?", abort=True)
    _load_state(svc)
    try:
        with _progress_bar("Organizing") as cb:
            result = svc.organize(on_progress=cb)
    except LibraryError as e:
        _fail(e)

    console.print(f"[green]Organized {result.titles_processed} titles[/green] ({result.files_moved} files moved)")
    if result.deleted:
        console.print(f"[bold]Deleted old updates:[/bold] {len(result.deleted)}")
    for err in result.errors + result.delete_errors:
        console.print(f"  [red]![/red] {err}")


@main.command(name="clear-cache")
@click.pass_context
def clear_cache(ctx: click.Context) -> None:
    """Discard cached scan results."""
    svc: LibraryService = ctx.obj["service"]
    svc.clear_scan_cache()
    console.print("[green]Scan cache cleared.[/green]")


@main.group()
def settings() -> None:
    """Show or change settings."""


@settings.command(name="show")
@click.pass_context
def settings_show(ctx: click.Context) -> None:
    svc: LibraryService = ctx.obj["service"]
    try:
        current = svc.load_settings()
    except LibraryError as e:
        _fail(e)
    click.echo(json.dumps(current.to_dict(), indent=2))


@settings.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def settings_set(ctx: click.Context, key: str, value: str) -> None:
    """
    Set one setting.

    KEY: setting name, organize options as organize_options.NAME
    VALUE: JSON value (plain text is taken as a string)
    """
    svc: LibraryService = ctx.obj["service"]
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value

    try:
        data = svc.load_settings().to_dict()
    except LibraryError as e:
        _fail(e)

    section, _, name = key.partition(".")
    if name:
        valid = {f.name for f in fields(OrganizeOptions)}
        if section != "organize_options" or name not in valid:
            _fail(LibraryError(f"Unknown setting: {key}"))
        data["organize_options"][name] = parsed
    else:
        if key not in {f.name for f in fields(AppSettings)}:
            _fail(LibraryError(f"Unknown setting: {key}"))
        data[key] = parsed

    try:
        svc.save_settings(AppSettings.from_dict(data))
    except LibraryError as e:
        _fail(e)
    console.print(f"[green]Saved[/green] {key} = {parsed!r}")


@main.command()
@click.option("--port", type=int, default=5000, help="Port (default 5000)")
@click.pass_context
def web(ctx: click.Context, port: int) -> None:
    """Run the web UI."""
    from .web import create_and_run

    svc: LibraryService = ctx.obj["service"]
    create_and_run(data_dir=svc.data_dir, port=port)
