"""Source directory scanning and the per-path checksum ledger."""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .constants import HASH_CACHE_FILE, SCANNER_STATE_FILE
from .core import FileInfo, ScannerState, ScanResult
from .hash_cache import HashCache
from .hashing import compute_file_digest_async
from .utils import atomic_write_json, get_iso_timestamp, get_state_dir, load_json

logger = logging.getLogger(__name__)


class FileScanner:
    """Walks a source directory and decides which files need uploading.

    The scanner consults its own HashCache instance and never saves it;
    only the uploader persists hashes, after confirmed uploads.
    """

    def __init__(self, source_dir: Path, force_upload: bool = False, state_dir: Optional[Path] = None):
        self.source_dir = Path(source_dir).resolve()
        self.force_upload = force_upload
        state_dir = Path(state_dir) if state_dir else get_state_dir()
        self.state_path = (state_dir / SCANNER_STATE_FILE).resolve()
        self.hash_cache = HashCache(state_dir / HASH_CACHE_FILE)
        self.state = ScannerState()

    # ============= Ledger =============

    async def load_state(self) -> None:
        data = await asyncio.to_thread(load_json, self.state_path, None)
        try:
            self.state = ScannerState.model_validate(data) if data is not None else ScannerState()
        except ValidationError as e:
            logger.warning("Ignoring invalid scanner state %s: %s", self.state_path, e)
            self.state = ScannerState()
        logger.debug("Loaded state with %d saved file checksums", len(self.state.files))

    async def save_state(self) -> None:
        await asyncio.to_thread(atomic_write_json, self.state_path, self.state.model_dump())
        logger.debug("Saved state with %d file checksums", len(self.state.files))

    def update_file_state(self, relative_path: str, checksum: str) -> None:
        self.state.files[relative_path] = checksum

    def record_completion(self) -> None:
        self.state.lastRun = get_iso_timestamp()

    # ============= Scanning =============

    async def _scan_directory(self, directory: Path) -> List[FileInfo]:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.error("Error scanning directory %s: %s", directory, e)
            return []

        files: List[FileInfo] = []
        for entry in entries:
            full_path = Path(entry.path)
            if entry.name.startswith(".") or full_path == self.state_path:
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    files.extend(await self._scan_directory(full_path))
                elif entry.is_file():
                    stats = entry.stat()
                    relative_path = full_path.relative_to(self.source_dir).as_posix()
                    logger.debug("Calculating checksum for %s", relative_path)
                    files.append(
                        FileInfo(
                            relative_path=relative_path,
                            absolute_path=str(full_path),
                            size=stats.st_size,
                            checksum=await compute_file_digest_async(full_path),
                            mode=stats.st_mode,
                        )
                    )
            except OSError as e:
                logger.error("Error reading %s: %s", full_path, e)
        return files

    async def determine_files_to_upload(self, files: List[FileInfo]) -> List[FileInfo]:
        if self.force_upload:
            return [f.mark_changed() for f in files]

        selected = []
        for file in files:
            changed = await self.hash_cache.has_changed(file.absolute_path)
            if changed:
                selected.append(file.mark_changed())
        return selected

    async def scan(self) -> ScanResult:
        logger.info("Scanning directory...")
        await self.load_state()
        await self.hash_cache.load()

        all_files = await self._scan_directory(self.source_dir)
        logger.info("Found %d files.", len(all_files))

        files_to_upload = await self.determine_files_to_upload(all_files)
        if self.force_upload and files_to_upload:
            logger.info("Force upload enabled. All %d files will be uploaded.", len(files_to_upload))
        else:
            logger.info("%d files need to be uploaded.", len(files_to_upload))

        result = ScanResult(
            all_files=all_files,
            files_to_upload=files_to_upload,
            total_size_bytes=sum(f.size for f in files_to_upload),
        )
        if files_to_upload:
            logger.info("Total upload size: %s.", result.total_size_display)
        return result
