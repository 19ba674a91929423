"""Resumable uploads for large files.

Files above the threshold are sent whole on every attempt; chunks exist
only for progress accounting and resume bookkeeping. The chunk state is
persisted when all attempts fail, and discarded once the file's content
no longer matches the recorded checksum.
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from .config import get_retry_delay_ms
from .constants import (
    DEFAULT_CHUNK_SIZE,
    MAX_RETRY_DELAY_MS,
    MAX_UPLOAD_ATTEMPTS,
    PRIVATE_DIR_MODE,
    RESUMABLE_THRESHOLD,
    STATE_FILE_EXTENSION,
    UPLOADS_DIR,
)
from .core import ChunkedUploadState, ResumableUploadResult
from .hashing import compute_file_digest_async, hash_text
from .storage.base import RemoteStorage
from .utils import atomic_write_json, get_state_dir, load_json

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def should_use_resumable(file_size: int) -> bool:
    return file_size > RESUMABLE_THRESHOLD


class ResumableUploader:
    """Retrying large-file uploader with on-disk resume state."""

    def __init__(
        self,
        storage: RemoteStorage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        resume_dir: Optional[Path] = None,
        retry_delay_ms: Optional[int] = None,
        max_attempts: int = MAX_UPLOAD_ATTEMPTS,
    ):
        self.storage = storage
        self.chunk_size = chunk_size
        self.resume_dir = Path(resume_dir) if resume_dir else get_state_dir() / UPLOADS_DIR
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else get_retry_delay_ms()
        self.max_attempts = max_attempts
        if not self.resume_dir.exists():
            self.resume_dir.mkdir(parents=True, exist_ok=True)
            self.resume_dir.chmod(PRIVATE_DIR_MODE)

    should_use_resumable = staticmethod(should_use_resumable)

    def get_state_file_path(self, file_path: PathLike) -> Path:
        """``<basename>.<sha256(path)>.upload-state.json`` inside the resume directory."""
        file_path = str(file_path)
        return self.resume_dir / f"{Path(file_path).name}.{hash_text(file_path)}{STATE_FILE_EXTENSION}"

    async def _load_state(self, file_path: PathLike) -> Optional[ChunkedUploadState]:
        """Load resume state, evicting it if the file changed since it was saved."""
        state_path = self.get_state_file_path(file_path)
        data = await asyncio.to_thread(load_json, state_path, None)
        if data is None:
            return None
        try:
            state = ChunkedUploadState.model_validate(data)
            current_checksum = await compute_file_digest_async(file_path)
        except (ValidationError, OSError) as e:
            logger.debug("Failed to load upload state for %s: %s", file_path, e)
            return None

        if state.checksum != current_checksum:
            logger.debug("File changed since last upload, starting fresh: %s", file_path)
            await self.clear_state(file_path)
            return None

        logger.debug(
            "Found existing upload state: %d/%d chunks",
            len(state.uploadedChunks),
            state.totalChunks,
        )
        return state

    async def _save_state(self, state: ChunkedUploadState) -> None:
        try:
            await asyncio.to_thread(
                atomic_write_json, self.get_state_file_path(state.filePath), state.model_dump()
            )
        except OSError as e:
            logger.debug("Failed to save upload state for %s: %s", state.filePath, e)

    async def clear_state(self, file_path: PathLike) -> None:
        """Remove any persisted resume state (idempotent)."""
        try:
            self.get_state_file_path(file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Failed to clear upload state for %s: %s", file_path, e)

    def _retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt``."""
        if self.retry_delay_ms is not None:
            return self.retry_delay_ms / 1000
        return min(1000 * 2 ** attempt, MAX_RETRY_DELAY_MS) / 1000

    async def upload_large_file(
        self,
        file_path: PathLike,
        remote_path: str,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> ResumableUploadResult:
        """Upload ``file_path``, retrying up to ``max_attempts`` times.

        Files at or below the threshold take a single plain upload. Never
        raises; failures come back as ``success=False`` with a message.
        """
        file_path = str(file_path)
        try:
            file_size = Path(file_path).stat().st_size

            if not should_use_resumable(file_size):
                logger.debug("File size %d is below threshold, using regular upload", file_size)
                result = await self.storage.upload_file_with_progress(file_path, remote_path, on_progress)
                return ResumableUploadResult(
                    success=result.success,
                    file_path=file_path,
                    remote_path=remote_path,
                    bytes_uploaded=file_size if result.success else 0,
                    error=result.error,
                )

            checksum = await compute_file_digest_async(file_path)
            state = await self._load_state(file_path)
            if state is None:
                state = ChunkedUploadState(
                    filePath=file_path,
                    remotePath=remote_path,
                    chunkSize=self.chunk_size,
                    totalChunks=math.ceil(file_size / self.chunk_size),
                    checksum=checksum,
                )

            logger.info(
                "Starting resumable upload: %s (%d/%d chunks already uploaded)",
                Path(file_path).name,
                len(state.uploadedChunks),
                state.totalChunks,
            )

            high_water = 0

            def report(percent: int) -> None:
                # Retries restart the provider at 0; only forward new highs
                nonlocal high_water
                base = len(state.uploadedChunks) / state.totalChunks * 100
                total = round(min(100.0, base + percent / state.totalChunks))
                if total > high_water:
                    high_water = total
                    if on_progress:
                        on_progress(total)

            attempt = 0
            while True:
                try:
                    result = await self.storage.upload_file_with_progress(file_path, remote_path, report)
                    if result.success:
                        await self.clear_state(file_path)
                        if on_progress and high_water < 100:
                            on_progress(100)
                        return ResumableUploadResult(
                            success=True,
                            file_path=file_path,
                            remote_path=remote_path,
                            bytes_uploaded=file_size,
                        )
                    error_message = result.error or "Upload failed"
                except Exception as e:
                    error_message = str(e)

                attempt += 1
                logger.debug("Upload attempt %d failed: %s", attempt, error_message)
                if attempt >= self.max_attempts:
                    await self._save_state(state)
                    return ResumableUploadResult(
                        success=False,
                        file_path=file_path,
                        remote_path=remote_path,
                        bytes_uploaded=int(len(state.uploadedChunks) / state.totalChunks * file_size),
                        error=f"Upload failed after {self.max_attempts} attempts: {error_message}",
                    )

                delay = self._retry_delay(attempt)
                logger.debug("Retrying in %dms...", delay * 1000)
                await asyncio.sleep(delay)
        except OSError as e:
            return ResumableUploadResult(
                success=False, file_path=file_path, remote_path=remote_path, error=str(e)
            )

    async def get_upload_progress(self, file_path: PathLike) -> int:
        """Percent of chunks confirmed by persisted state, 0 without state."""
        state = await self._load_state(file_path)
        return state.progress_percent if state else 0

    async def can_resume(self, file_path: PathLike) -> bool:
        """True when checksum-valid state exists with chunks left to upload."""
        state = await self._load_state(file_path)
        return state is not None and len(state.uploadedChunks) < state.totalChunks
