"""Persistent content-hash cache for change detection.

Keyed by absolute path: a file that moves to a different source root is
treated as new. Values reflect the checksum at the time of the last
successful upload of that path.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

from .hashing import compute_file_digest_async
from .utils import atomic_write_json

logger = logging.getLogger(__name__)


class HashCache:
    """Map of absolute path -> sha256 hex, persisted as a JSON object."""

    def __init__(self, cache_path: Path):
        self.cache_path = Path(cache_path)
        self.cache: Dict[str, str] = {}
        # Values replaced by has_changed, kept until the upload outcome is known
        self._previous: Dict[str, Optional[str]] = {}

    @staticmethod
    def _key(file_path: Union[str, Path]) -> str:
        return os.path.normpath(str(file_path))

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, file_path: object) -> bool:
        return isinstance(file_path, (str, Path)) and self._key(file_path) in self.cache

    def get(self, file_path: Union[str, Path]):
        return self.cache.get(self._key(file_path))

    async def load(self) -> bool:
        """Load the cache from disk.

        Returns:
            True if a cache file was read. A missing or malformed file leaves
            the cache empty and returns False (treated as a first run).
        """
        if not self.cache_path.exists():
            return False
        try:
            text = await asyncio.to_thread(self.cache_path.read_text, encoding="utf-8")
            data = json.loads(text)
        except (OSError, ValueError) as e:
            logger.error("Error loading hash cache: %s", e)
            return False
        if not isinstance(data, dict):
            logger.error("Error loading hash cache: expected a JSON object in %s", self.cache_path)
            return False

        self.cache.update({str(k): str(v) for k, v in data.items()})
        logger.debug("Loaded hash cache from %s (%d entries)", self.cache_path, len(self.cache))
        return True

    def _confirmed(self) -> Dict[str, str]:
        """Cache contents with hashes still awaiting an upload outcome rolled back."""
        confirmed = dict(self.cache)
        for key, previous in self._previous.items():
            if previous is None:
                confirmed.pop(key, None)
            else:
                confirmed[key] = previous
        return confirmed

    async def save(self) -> bool:
        """Atomically persist the confirmed entries with owner-only permissions.

        Returns:
            False if the write failed (logged, non-fatal)
        """
        try:
            await asyncio.to_thread(atomic_write_json, self.cache_path, self._confirmed())
        except OSError as e:
            logger.error("Error saving hash cache: %s", e)
            return False
        logger.debug("Saved hash cache to %s", self.cache_path)
        return True

    async def calculate_hash(self, file_path: Union[str, Path]) -> str:
        return await compute_file_digest_async(file_path)

    async def has_changed(self, file_path: Union[str, Path]) -> bool:
        """Report whether the file's content differs from the cached hash.

        A missing entry or a different hash records the new hash and reports
        changed. Any error while hashing reports changed, so a file is
        re-uploaded rather than silently skipped.
        """
        key = self._key(file_path)
        try:
            current = await self.calculate_hash(key)
        except OSError as e:
            logger.error("Error checking file changes for %s: %s", key, e)
            return True

        stored = self.cache.get(key)
        if stored is None:
            logger.debug("No cached hash for %s, marking as changed", key)
            self._previous.setdefault(key, None)
            self.cache[key] = current
            return True

        if current != stored:
            logger.debug("File hash changed for %s", key)
            self._previous.setdefault(key, stored)
            self.cache[key] = current
            return True

        logger.debug("File %s unchanged (hash match)", key)
        return False

    def update_hash(self, file_path: Union[str, Path], checksum: str) -> None:
        """Record a confirmed upload without re-hashing the file."""
        self.cache[self._key(file_path)] = checksum
        self._previous.pop(self._key(file_path), None)

    def revert(self, file_path: Union[str, Path]) -> None:
        """Undo the hash recorded by has_changed after a failed upload.

        Keeps the cache equal to the last successfully uploaded content.
        """
        key = self._key(file_path)
        if key not in self._previous:
            return
        previous = self._previous.pop(key)
        if previous is None:
            self.cache.pop(key, None)
        else:
            self.cache[key] = previous
