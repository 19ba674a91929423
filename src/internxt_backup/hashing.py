"""Hashing utilities for change detection and integrity checks."""

import asyncio
import hashlib
from pathlib import Path
from typing import Union


def compute_file_digest(path: Union[str, Path]) -> str:
    """Compute SHA256 hash of file contents.

    Simple byte-for-byte hashing - any change invalidates the digest.

    Args:
        path: Path to file to hash

    Returns:
        64-character lowercase hex digest
    """
    sha256 = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


async def compute_file_digest_async(path: Union[str, Path]) -> str:
    """Hash a file in a worker thread so the event loop keeps scheduling transfers."""
    return await asyncio.to_thread(compute_file_digest, path)


def hash_text(text: str) -> str:
    """SHA256 hex digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


__all__ = [
    "compute_file_digest",
    "compute_file_digest_async",
    "hash_text",
]
