"""CLI for internxt-backup."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .config import load_backup_config
from .constants import BACKUP_VERSION
from .core import RestoreOptions, SyncOptions
from .errors import BackupError, OperationCancelledError
from .restore import restore_files
from .storage import make_remote_storage
from .sync import sync_files

app = typer.Typer(help="""\
Back up a local directory to Internxt Drive and restore it again.
Repeated runs upload only files that changed since the last backup.""")

console = Console()


def configure_logging(quiet: bool = False, verbose: bool = False) -> None:
    """Route library logging through rich: --quiet warnings only, --verbose debug."""
    level = logging.WARNING if quiet else logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose, markup=False)],
        force=True,
    )


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"internxt-backup {BACKUP_VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Internxt backup and restore."""


def _exit_for(error: BackupError) -> None:
    if isinstance(error, OperationCancelledError):
        console.print(f"[yellow]⚠[/yellow] {error}")
        raise typer.Exit(130)
    console.print(f"[red]✗[/red] {error}")
    raise typer.Exit(1)


@app.command()
def backup(
    source: Path = typer.Argument(..., help="Local directory to back up"),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Remote target folder (default: /)"),
    cores: Optional[int] = typer.Option(None, "--cores", "-c", help="Concurrent uploads (default: 2/3 of CPUs)"),
    force: bool = typer.Option(False, "--force", help="Upload every file regardless of cache and baseline"),
    full: bool = typer.Option(False, "--full", help="Full backup: upload everything and write a new baseline"),
    sync_deletes: bool = typer.Option(False, "--sync-deletes", help="Delete remote files removed locally"),
    resume: bool = typer.Option(False, "--resume", help="Use resumable uploads for files over 100MB"),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", help="Resumable chunk size in MB"),
    storage: Optional[str] = typer.Option(None, "--storage", help="Alternate storage, e.g. fs:///mnt/backup"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Back up SOURCE to Internxt Drive.

    Examples:
        internxt-backup backup ~/Documents --target /Backups/Documents
        internxt-backup backup ~/Photos --target /Backups/Photos --full
        internxt-backup backup ~/Work --sync-deletes --resume
    """
    configure_logging(quiet, verbose)
    cfg = load_backup_config()
    options = SyncOptions(
        target=target or cfg.target,
        cores=cores if cores is not None else cfg.cores,
        force=force,
        full=full,
        sync_deletes=sync_deletes,
        resume=resume or cfg.resume,
        chunk_size_mb=chunk_size if chunk_size is not None else cfg.chunk_size_mb,
    )

    try:
        result = asyncio.run(sync_files(source, options, make_remote_storage(storage)))
    except BackupError as e:
        _exit_for(e)
    except (ValueError, NotImplementedError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Backup complete ({result.mode}): {result.summary()}")


@app.command()
def restore(
    source: str = typer.Option(..., "--source", "-s", help="Remote folder to restore from"),
    target: Path = typer.Option(..., "--target", "-t", help="Local directory to restore into"),
    pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="File name glob, e.g. '*.{jpg,png}'"),
    path: Optional[str] = typer.Option(None, "--path", help="Only restore this relative subpath"),
    cores: Optional[int] = typer.Option(None, "--cores", "-c", help="Concurrent downloads"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip checksum verification"),
    allow_partial: bool = typer.Option(
        False, "--allow-partial-restore", help="Finish with a warning instead of failing on errors"
    ),
    storage: Optional[str] = typer.Option(None, "--storage", help="Alternate storage, e.g. fs:///mnt/backup"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Restore files from Internxt Drive.

    Examples:
        internxt-backup restore --source /Backups/Photos --target ~/Photos
        internxt-backup restore --source /Backups/Photos --target ./out --pattern '*.jpg'
    """
    configure_logging(quiet, verbose)
    cfg = load_backup_config()
    options = RestoreOptions(
        source=source,
        target=str(target),
        pattern=pattern,
        path=path,
        cores=cores if cores is not None else cfg.cores,
        verify=not no_verify,
        allow_partial=allow_partial,
    )

    try:
        result = asyncio.run(restore_files(options, make_remote_storage(storage)))
    except BackupError as e:
        _exit_for(e)
    except (ValueError, NotImplementedError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if result.selected_files == 0:
        console.print("[green]✓[/green] No files match the criteria. Nothing to restore.")
    elif result.has_failures:
        console.print(f"[yellow]⚠[/yellow] {result.summary()}")
    else:
        console.print(f"[green]✓[/green] {result.summary()}")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
