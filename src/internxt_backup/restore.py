"""Restore run: list, filter, download, then apply the restore policy."""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .backup_state import BackupState
from .constants import LOCK_FILE, MANIFEST_FILENAME
from .core import RemoteFileEntry, RestoreOptions, RestoreResult
from .downloader import Downloader
from .errors import ManifestSignatureError, OperationCancelledError, RestoreFailedError
from .lock import InstanceLock
from .path_utils import normalize_target_dir, relative_to_remote_root
from .progress import ProgressTracker, RichProgressTracker
from .signals import cancel_on_signals
from .storage import RemoteStorage, make_remote_storage
from .storage_models import RemoteFile
from .sync import ensure_provider_ready
from .utils import get_optimal_concurrency, get_state_dir, match_pattern

logger = logging.getLogger(__name__)


def filter_remote_files(
    remote_files: Iterable[RemoteFile],
    source: str,
    path_filter: Optional[str] = None,
    pattern: Optional[str] = None,
) -> List[RemoteFileEntry]:
    """Select restorable entries.

    The manifest and folders are always dropped. ``path_filter`` keeps
    entries at or below that relative path; ``pattern`` is a glob matched
    against the file name.
    """
    entries = [
        RemoteFileEntry(uuid=f.uuid or f.path, name=f.name, remote_path=f.path, size=f.size)
        for f in remote_files
        if f.name != MANIFEST_FILENAME and not f.is_folder
    ]

    if path_filter:
        prefix = path_filter.replace("\\", "/").strip("/")
        entries = [
            e for e in entries
            if (rel := relative_to_remote_root(e.remote_path, source)) == prefix
            or rel.startswith(prefix + "/")
        ]
        logger.info("Filtered to %d files in path: %s", len(entries), path_filter)

    if pattern:
        entries = [e for e in entries if match_pattern(e.name, pattern)]
        logger.info("Filtered to %d files matching: %s", len(entries), pattern)

    return entries


def enforce_restore_policy(result: RestoreResult, allow_partial: bool) -> None:
    """Strict restores fail on any download failure or checksum mismatch.

    Raises:
        RestoreFailedError: If the restore is strict and had failures
    """
    if not result.has_failures:
        return
    if allow_partial:
        logger.warning("Partial restore: %s", result.summary())
        return
    raise RestoreFailedError(result.stats.failed, result.stats.verify_failed)


async def restore_files(
    options: RestoreOptions,
    storage: Optional[RemoteStorage] = None,
    *,
    state_dir: Optional[Path] = None,
    progress_tracker: Optional[ProgressTracker] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> RestoreResult:
    """Restore ``options.source`` from the remote drive into ``options.target``.

    Raises:
        ProviderError: If the provider CLI is not ready
        LockHeldError: If another instance is running
        ManifestSignatureError: If a strict restore finds an untrusted manifest
        RestoreFailedError: If a strict restore had failures
        OperationCancelledError: If interrupted by SIGINT/SIGTERM
    """
    state_dir = Path(state_dir) if state_dir else get_state_dir()
    storage = storage or make_remote_storage()
    cancel_event = cancel_event or asyncio.Event()

    with InstanceLock(state_dir / LOCK_FILE), cancel_on_signals(cancel_event):
        await ensure_provider_ready(storage)
        source = normalize_target_dir(options.source)

        logger.info("Scanning remote path: %s", source)
        remote_files = await storage.list_files_recursive(source)
        logger.info("Found %d remote files", len(remote_files))

        try:
            manifest = await BackupState(state_dir).load_remote_manifest(storage, source)
        except ManifestSignatureError as e:
            if not options.allow_partial:
                raise
            logger.warning("Ignoring untrusted backup manifest: %s", e)
            manifest = None
        if manifest is not None:
            logger.info("Loaded backup manifest from %s", manifest.timestamp)
        else:
            logger.warning(
                "No backup manifest found. Checksum verification and permission "
                "restoration will be unavailable."
            )

        selected = filter_remote_files(remote_files, source, options.path, options.pattern)
        result = RestoreResult(
            remote_files=len(remote_files),
            selected_files=len(selected),
            manifest_loaded=manifest is not None,
        )
        if not selected:
            logger.info("No files match the criteria. Nothing to restore.")
            return result

        downloader = Downloader(
            storage,
            source,
            Path(options.target).expanduser(),
            max_concurrency=get_optimal_concurrency(options.cores),
            progress_tracker=progress_tracker or RichProgressTracker("Download"),
            verify=options.verify,
            file_metadata=manifest.files if manifest else None,
            cancel_event=cancel_event,
        )
        result.stats = await downloader.start_download(selected)

        if result.stats.verified:
            logger.info("Checksums verified: %d files", result.stats.verified)
        if result.stats.verify_failed:
            logger.warning("Checksum mismatches: %d files", result.stats.verify_failed)

        if cancel_event.is_set():
            raise OperationCancelledError("restore")
        enforce_restore_policy(result, options.allow_partial)
        return result
