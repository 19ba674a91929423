"""Backup run: scan, select, upload, then snapshot.

File selection, in order of precedence:

- ``full``: every scanned file is uploaded and a fresh baseline is written.
- baseline present and not ``force``: differential, files whose checksum
  differs from the baseline.
- otherwise: whatever the scanner selected (all files when forced, else
  those the hash cache reports changed).

The baseline and remote manifest are only replaced after every selected
file uploaded, so the baseline never lists files that are not backed up.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .backup_state import BackupState
from .constants import DEFAULT_CHUNK_SIZE, HASH_CACHE_FILE, LOCK_FILE, UPLOADS_DIR
from .core import BackupMode, FileInfo, SyncOptions, SyncResult, UploadBatchResult
from .errors import (
    BackupFailedError,
    ConfigError,
    OperationCancelledError,
    ProviderNotAuthenticatedError,
    ProviderNotInstalledError,
)
from .hash_cache import HashCache
from .lock import InstanceLock
from .path_utils import join_remote, normalize_safe_relative_path, normalize_target_dir
from .progress import ProgressTracker, RichProgressTracker
from .resumable import ResumableUploader
from .scanner import FileScanner
from .signals import cancel_on_signals
from .storage import RemoteStorage, make_remote_storage
from .uploader import Uploader
from .utils import get_optimal_concurrency, get_state_dir

logger = logging.getLogger(__name__)

MiB = 1024 * 1024


async def ensure_provider_ready(storage: RemoteStorage) -> None:
    """Fail before any transfer if the provider CLI is missing or logged out.

    Raises:
        ProviderNotInstalledError: If the CLI is not installed
        ProviderNotAuthenticatedError: If the CLI is not logged in
    """
    logger.info("Checking Internxt CLI...")
    status = await storage.check_cli()
    if not status.installed:
        raise ProviderNotInstalledError(status.error)
    if not status.authenticated:
        raise ProviderNotAuthenticatedError(status.error)
    logger.info("Internxt CLI v%s ready", status.version)


def select_files(
    options: SyncOptions,
    all_files: List[FileInfo],
    scanner_selection: List[FileInfo],
    backup_state: BackupState,
) -> Tuple[BackupMode, List[FileInfo]]:
    """Decide which files to upload and name the resulting backup mode."""
    if options.full:
        files = [f.mark_changed() for f in all_files]
        logger.info("Full backup: all %d files will be uploaded.", len(files))
        return "full", files

    if backup_state.get_baseline() is not None and not options.force:
        changed = set(backup_state.get_changed_since_baseline(all_files))
        files = [f.mark_changed() for f in all_files if f.relative_path in changed]
        logger.info("Differential backup: %d files changed since last full backup.", len(files))
        return "differential", files

    return ("forced" if options.force else "incremental"), scanner_selection


async def sync_deletions(storage: RemoteStorage, target_dir: str, deleted: List[str]) -> List[str]:
    """Delete locally removed files from the remote target.

    Returns:
        Remote paths that were deleted
    """
    logger.info("Syncing deletions to remote...")
    removed = []
    for relative_path in deleted:
        try:
            safe_path = normalize_safe_relative_path(relative_path)
        except ValueError:
            logger.warning("Path traversal blocked in deletion: %s", relative_path)
            continue
        remote_path = join_remote(target_dir, safe_path)
        if await storage.delete_file(remote_path):
            logger.info("Deleted remote: %s", remote_path)
            removed.append(remote_path)
        else:
            logger.warning("Failed to delete remote: %s", remote_path)
    return removed


async def sync_files(
    source_dir: Union[str, Path],
    options: SyncOptions,
    storage: Optional[RemoteStorage] = None,
    *,
    state_dir: Optional[Path] = None,
    progress_tracker: Optional[ProgressTracker] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> SyncResult:
    """Back up ``source_dir`` to ``options.target``.

    Holds the instance lock for the whole run and releases it however the
    run ends.

    Raises:
        ConfigError: If the source directory does not exist
        ProviderError: If the provider CLI is not ready
        LockHeldError: If another instance is running
        BackupFailedError: If any upload failed
        OperationCancelledError: If interrupted by SIGINT/SIGTERM
    """
    source = Path(source_dir).expanduser().resolve()
    if not source.is_dir():
        raise ConfigError(f"Source directory does not exist: {source_dir}")

    state_dir = Path(state_dir) if state_dir else get_state_dir()
    storage = storage or make_remote_storage()
    cancel_event = cancel_event or asyncio.Event()

    with InstanceLock(state_dir / LOCK_FILE), cancel_on_signals(cancel_event):
        try:
            return await _run_sync(source, options, storage, state_dir, progress_tracker, cancel_event)
        except Exception as e:
            logger.error("Error during file sync: %s", e)
            raise


async def _run_sync(
    source: Path,
    options: SyncOptions,
    storage: RemoteStorage,
    state_dir: Path,
    progress_tracker: Optional[ProgressTracker],
    cancel_event: asyncio.Event,
) -> SyncResult:
    await ensure_provider_ready(storage)
    target_dir = normalize_target_dir(options.target)

    scanner = FileScanner(source, force_upload=options.force or options.full, state_dir=state_dir)
    concurrency = get_optimal_concurrency(options.cores)
    resumable = None
    if options.resume:
        resumable = ResumableUploader(
            storage,
            chunk_size=options.chunk_size_mb * MiB if options.chunk_size_mb else DEFAULT_CHUNK_SIZE,
            resume_dir=state_dir / UPLOADS_DIR,
        )
    uploader = Uploader(
        storage,
        HashCache(state_dir / HASH_CACHE_FILE),
        target_dir=target_dir,
        max_concurrency=concurrency,
        progress_tracker=progress_tracker or RichProgressTracker("Upload"),
        resumable_uploader=resumable,
        cancel_event=cancel_event,
    )
    uploader.set_file_scanner(scanner)

    scan = await scanner.scan()

    backup_state = BackupState(state_dir)
    await backup_state.load_baseline()
    mode, files_to_upload = select_files(options, scan.all_files, scan.files_to_upload, backup_state)

    deleted = backup_state.detect_deletions({f.relative_path for f in scan.all_files})
    deleted_remote: List[str] = []
    if deleted:
        logger.warning("%d files were deleted locally since last backup:", len(deleted))
        for path in deleted:
            logger.warning("  - %s", path)
        if options.sync_deletes:
            deleted_remote = await sync_deletions(storage, target_dir, deleted)

    if cancel_event.is_set():
        await scanner.save_state()
        raise OperationCancelledError("backup")

    if files_to_upload:
        upload = await uploader.start_upload(files_to_upload)
    else:
        logger.info("All files are up to date. Nothing to upload.")
        upload = UploadBatchResult(success=True)

    # Files left out of the selection count as successful, skipped uploads
    unchanged = len(scan.all_files) - len(files_to_upload)
    if unchanged > 0:
        upload = upload.model_copy(
            update={
                "total_files": upload.total_files + unchanged,
                "succeeded_files": upload.succeeded_files + unchanged,
                "skipped_files": upload.skipped_files + unchanged,
            }
        )

    if not upload.success:
        if cancel_event.is_set():
            await scanner.save_state()
            raise OperationCancelledError("backup")
        raise BackupFailedError(upload.failed_files, upload.failed_paths)

    result = SyncResult(
        mode=mode,
        upload=upload,
        deletions_detected=deleted,
        deleted_remote=deleted_remote,
    )
    if options.full or files_to_upload or deleted:
        snapshot = backup_state.create_baseline_from_scan(str(source), target_dir, scan.all_files)
        await backup_state.save_baseline(snapshot)
        await backup_state.upload_manifest(storage, target_dir)
        result.baseline_saved = True
        if options.full:
            logger.info("Full backup baseline saved (%d files)", len(snapshot.files))
    return result
