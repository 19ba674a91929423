"""Per-file upload handling and batch orchestration.

A batch runs in four steps:

1. Check that the provider CLI is installed and authenticated.
2. Create the target root and every unique parent directory once.
3. Drive the work pool over ``handle_file_upload``.
4. Persist the hash cache and, on full success, the scanner ledger.

Handlers never raise: each returns a FileUploadOutcome, and any failed
file fails the whole batch.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Set

from .core import FileInfo, FileUploadOutcome, UploadBatchResult
from .hash_cache import HashCache
from .path_utils import normalize_path_info, normalize_target_dir
from .progress import NullProgressTracker, ProgressTracker
from .resumable import ResumableUploader
from .storage.base import RemoteStorage
from .work_pool import process_pool

logger = logging.getLogger(__name__)


class ScannerLedger(Protocol):
    """The part of FileScanner the uploader records confirmed uploads into."""

    def update_file_state(self, relative_path: str, checksum: str) -> None: ...

    def record_completion(self) -> None: ...

    async def save_state(self) -> None: ...


class Uploader:
    """Uploads scanned files to one remote target root."""

    def __init__(
        self,
        storage: RemoteStorage,
        hash_cache: HashCache,
        target_dir: str = "/",
        max_concurrency: int = 1,
        progress_tracker: Optional[ProgressTracker] = None,
        resumable_uploader: Optional[ResumableUploader] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.storage = storage
        self.hash_cache = hash_cache
        self.target_dir = normalize_target_dir(target_dir)
        self.max_concurrency = max_concurrency
        self.progress_tracker = progress_tracker or NullProgressTracker("Upload")
        self.resumable_uploader = resumable_uploader
        self.cancel_event = cancel_event
        self.file_scanner: Optional[ScannerLedger] = None

        # Session state, scoped to this instance
        self.uploaded_files: Set[str] = set()
        self.created_directories: Set[str] = set()
        self._in_flight_directories: Dict[str, "asyncio.Future[bool]"] = {}
        self._hash_cache_dirty = False
        self._save_lock = asyncio.Lock()

    def set_file_scanner(self, scanner: ScannerLedger) -> None:
        self.file_scanner = scanner
        logger.debug("File scanner set")

    async def ensure_directory_exists(self, directory: str) -> bool:
        """Create a remote directory at most once per session.

        Concurrent callers for the same directory share one create_folder call.
        """
        if not directory or directory == "/":
            return True
        if directory in self.created_directories:
            logger.debug("Directory already created in this session: %s", directory)
            return True

        in_flight = self._in_flight_directories.get(directory)
        if in_flight is not None:
            return await asyncio.shield(in_flight)

        future: "asyncio.Future[bool]" = asyncio.get_running_loop().create_future()
        self._in_flight_directories[directory] = future
        try:
            result = await self.storage.create_folder(directory)
            if result.success:
                self.created_directories.add(directory)
            else:
                logger.debug("Failed to create directory %s: %s", directory, result.error)
            future.set_result(result.success)
        except Exception as e:
            logger.error("Error creating directory %s: %s", directory, e)
            future.set_result(False)
        finally:
            self._in_flight_directories.pop(directory, None)
            if not future.done():
                future.cancel()
        return future.result()

    async def _flush_hash_cache(self) -> None:
        if not self._hash_cache_dirty:
            return
        async with self._save_lock:
            if not self._hash_cache_dirty:
                return
            self._hash_cache_dirty = False
            if not await self.hash_cache.save():
                self._hash_cache_dirty = True
                logger.error("Failed to persist hash cache; changes will be retried.")

    def _skip(self, file: FileInfo) -> FileUploadOutcome:
        logger.debug("File %s has not changed, skipping upload", file.relative_path)
        self.progress_tracker.record_success()
        return FileUploadOutcome(success=True, file_path=file.relative_path, skipped=True)

    def _fail(self, file: FileInfo, error: str) -> FileUploadOutcome:
        self.hash_cache.revert(file.absolute_path)
        self.progress_tracker.record_failure()
        return FileUploadOutcome(success=False, file_path=file.relative_path, error=error)

    async def handle_file_upload(self, file: FileInfo) -> FileUploadOutcome:
        """Upload one file if it changed. Never raises."""
        try:
            if file.relative_path in self.uploaded_files:
                logger.debug("File %s already uploaded in this session, skipping", file.relative_path)
                return FileUploadOutcome(success=True, file_path=file.relative_path, skipped=True)

            if file.has_changed is False:
                return self._skip(file)
            if file.has_changed is None and not await self.hash_cache.has_changed(file.absolute_path):
                return self._skip(file)

            logger.debug("File %s has changed, uploading...", file.relative_path)
            path_info = normalize_path_info(file.relative_path, self.target_dir)

            if not await self.ensure_directory_exists(self.target_dir):
                return self._fail(file, f"Failed to create target directory {self.target_dir}")
            if path_info.directory and not await self.ensure_directory_exists(path_info.full_directory_path):
                return self._fail(file, f"Failed to create directory {path_info.full_directory_path}")

            if self.resumable_uploader is not None and self.resumable_uploader.should_use_resumable(file.size):
                result = await self.resumable_uploader.upload_large_file(
                    file.absolute_path,
                    path_info.target_path,
                    lambda percent: logger.debug("Upload progress %s: %d%%", file.relative_path, percent),
                )
                success, error = result.success, result.error
            else:
                result = await self.storage.upload_file(file.absolute_path, path_info.target_path)
                success, error = result.success, result.error or result.output

            if not success:
                logger.error("Failed to upload %s: %s", file.relative_path, error or "Unknown error")
                return self._fail(file, error or "Unknown error")

            self.uploaded_files.add(file.relative_path)
            logger.info("Successfully uploaded %s", file.relative_path)
            if self.file_scanner is not None:
                self.file_scanner.update_file_state(file.relative_path, file.checksum)
            self.hash_cache.update_hash(file.absolute_path, file.checksum)
            self._hash_cache_dirty = True
            await self._flush_hash_cache()

            self.progress_tracker.record_success()
            return FileUploadOutcome(success=True, file_path=file.relative_path)
        except Exception as e:
            logger.error("Error uploading file %s: %s", file.relative_path, e)
            return self._fail(file, str(e))

    async def _precreate_directories(self, files: List[FileInfo]) -> List[str]:
        """Create every unique parent directory once; returns the ones that failed."""
        unique_dirs: List[str] = []
        for file in files:
            try:
                info = normalize_path_info(file.relative_path, self.target_dir)
            except ValueError:
                # Rejected again, and reported, by the per-file handler
                continue
            if info.directory and info.full_directory_path not in unique_dirs:
                unique_dirs.append(info.full_directory_path)

        logger.debug("Pre-creating %d unique directories...", len(unique_dirs))
        results = await process_pool(unique_dirs, self.ensure_directory_exists, self.max_concurrency)
        return [r.item for r in results if not r.success or not r.value]

    def _reset_session(self) -> None:
        self.uploaded_files.clear()
        self.created_directories.clear()
        self._in_flight_directories.clear()
        self._hash_cache_dirty = False

    async def start_upload(self, files_to_upload: List[FileInfo]) -> UploadBatchResult:
        """Upload a batch; ``success`` is False if any single file failed."""
        await self.hash_cache.load()
        self._reset_session()
        total_files = len(files_to_upload)

        cli_status = await self.storage.check_cli()
        if not cli_status.installed or not cli_status.authenticated:
            logger.error("Internxt CLI not ready. Upload cannot proceed.")
            if cli_status.error:
                logger.error(cli_status.error)
            return UploadBatchResult.all_failed(files_to_upload)

        if not await self.ensure_directory_exists(self.target_dir):
            logger.error("Failed to create target directory %s", self.target_dir)
            return UploadBatchResult.all_failed(files_to_upload)

        if not files_to_upload:
            logger.info("All files are up to date.")
            return UploadBatchResult(success=True)

        if total_files > 1:
            failed_dirs = await self._precreate_directories(files_to_upload)
            if failed_dirs:
                logger.error("Failed to create %d remote directories before upload.", len(failed_dirs))
                return UploadBatchResult.all_failed(files_to_upload)

        logger.info("Starting parallel upload with %d concurrent uploads...", self.max_concurrency)
        self.progress_tracker.initialize(total_files)
        self.progress_tracker.start()
        try:
            results = await process_pool(
                files_to_upload, self.handle_file_upload, self.max_concurrency, self.cancel_event
            )
            handled = {r.item.relative_path for r in results}
            failed_paths = [
                r.value.file_path if r.success else r.item.relative_path
                for r in results
                if not r.success or not r.value.success
            ]
            # Files never started (cancelled run) did not upload either
            failed_paths.extend(f.relative_path for f in files_to_upload if f.relative_path not in handled)
            skipped = sum(1 for r in results if r.success and r.value.success and r.value.skipped)

            batch = UploadBatchResult(
                success=not failed_paths,
                total_files=total_files,
                succeeded_files=total_files - len(failed_paths),
                failed_files=len(failed_paths),
                skipped_files=skipped,
                failed_paths=failed_paths,
            )

            await self._flush_hash_cache()
            if self.file_scanner is not None and batch.success:
                self.file_scanner.record_completion()
                await self.file_scanner.save_state()

            self.progress_tracker.display_summary()
            if not batch.success:
                logger.error("Upload completed with %d failed files.", batch.failed_files)
            return batch
        finally:
            self.progress_tracker.stop()
