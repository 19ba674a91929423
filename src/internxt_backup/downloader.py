"""Per-file download handling for restores."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from .constants import PERMISSION_BITS
from .core import DownloadResult, DownloadStats, FileMetadata, RemoteFileEntry
from .errors import ChecksumMismatchError
from .hashing import compute_file_digest_async
from .path_utils import normalize_safe_relative_path, relative_to_remote_root
from .progress import NullProgressTracker, ProgressTracker
from .storage.base import RemoteStorage
from .work_pool import process_pool

logger = logging.getLogger(__name__)


class Downloader:
    """Downloads remote entries below ``source_remote_path`` into ``target_local_path``.

    Checksum mismatches are counted in ``stats.verify_failed`` but do not
    fail the entry; whether they fail the restore is the caller's policy.
    """

    def __init__(
        self,
        storage: RemoteStorage,
        source_remote_path: str,
        target_local_path: Path,
        max_concurrency: int = 1,
        progress_tracker: Optional[ProgressTracker] = None,
        verify: bool = True,
        file_metadata: Optional[Dict[str, FileMetadata]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.storage = storage
        self.source_remote_path = source_remote_path
        self.target_local_path = Path(target_local_path)
        self.max_concurrency = max_concurrency
        self.progress_tracker = progress_tracker or NullProgressTracker("Download")
        self.verify = verify
        self.file_metadata = file_metadata or {}
        self.cancel_event = cancel_event
        self.stats = DownloadStats()

    def _fail(self, entry: RemoteFileEntry, error: str, local_path: str = "") -> DownloadResult:
        self.stats.failed += 1
        self.progress_tracker.record_failure()
        return DownloadResult(success=False, remote_path=entry.remote_path, local_path=local_path, error=error)

    async def _verify(self, relative_path: str, local_file: Path, meta: FileMetadata) -> None:
        actual = await compute_file_digest_async(local_file)
        if actual == meta.checksum:
            self.stats.verified += 1
            logger.debug("Checksum verified: %s", relative_path)
            return
        self.stats.verify_failed += 1
        logger.warning("%s", ChecksumMismatchError(relative_path, meta.checksum, actual))

    def _restore_mode(self, relative_path: str, local_file: Path, mode: int) -> None:
        try:
            os.chmod(local_file, mode & PERMISSION_BITS)
            logger.debug("Restored permissions for %s", relative_path)
        except OSError as e:
            logger.warning("Could not restore permissions for %s: %s", relative_path, e)

    async def handle_file_download(self, entry: RemoteFileEntry) -> DownloadResult:
        """Download one entry. Never raises."""
        try:
            raw_relative = relative_to_remote_root(entry.remote_path, self.source_remote_path)
            try:
                relative_path = normalize_safe_relative_path(raw_relative)
            except ValueError as e:
                logger.error("Refusing to restore %s: %s", entry.remote_path, e)
                return self._fail(entry, str(e))

            local_file = self.target_local_path.joinpath(*relative_path.split("/"))
            local_dir = local_file.parent
            local_dir.mkdir(parents=True, exist_ok=True)

            result = await self.storage.download_file(entry.uuid, local_dir)
            if not result.success:
                logger.error("Failed to download %s: %s", relative_path, result.error)
                return self._fail(entry, result.error or "Download failed", str(local_dir))

            self.stats.downloaded += 1
            self.progress_tracker.record_success()

            meta = self.file_metadata.get(relative_path)
            if self.verify and meta is not None and meta.checksum:
                await self._verify(relative_path, local_file, meta)
            if meta is not None and meta.mode:
                self._restore_mode(relative_path, local_file, meta.mode)

            return DownloadResult(success=True, remote_path=entry.remote_path, local_path=str(local_file))
        except Exception as e:
            logger.error("Error downloading %s: %s", entry.remote_path, e)
            return self._fail(entry, str(e))

    async def start_download(self, files: List[RemoteFileEntry]) -> DownloadStats:
        """Download all entries and return the aggregate counters."""
        self.stats = DownloadStats()
        if not files:
            logger.info("No files to download.")
            return self.stats

        logger.info("Starting parallel download with %d concurrent downloads...", self.max_concurrency)
        self.progress_tracker.initialize(len(files))
        self.progress_tracker.start()
        try:
            await process_pool(files, self.handle_file_download, self.max_concurrency, self.cancel_event)
            self.progress_tracker.display_summary()
        finally:
            self.progress_tracker.stop()
        return self.stats
