"""Baseline snapshots and the remote backup manifest.

The baseline lists every file believed present at the remote target. It is
persisted locally after each fully successful run and mirrored to the
remote target as ``.internxt-backup-meta.json``. When
``INTERNXT_BACKUP_MANIFEST_KEY`` is set the manifest carries an
HMAC-SHA256 signature over its canonical JSON, and an unsigned, unverifiable
or tampered manifest is rejected on download.

Any read or parse failure degrades to "no baseline", so the next run
re-uploads rather than skipping changed files.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Collection, Iterable, List, Optional

from pydantic import ValidationError

from .config import get_manifest_key
from .constants import BASELINE_FILE, MANIFEST_FILENAME, MANIFEST_SIGNATURE_ALGORITHM, RESTORE_TMP_DIR
from .core import BaselineSnapshot, FileInfo, FileMetadata
from .errors import ManifestSignatureError
from .path_utils import join_remote, normalize_target_dir
from .storage.base import RemoteStorage
from .utils import atomic_write_json, atomic_write_text, get_state_dir, load_json

logger = logging.getLogger(__name__)


# ============= Signing =============

def canonical_json(payload: dict) -> str:
    """Deterministic JSON used as the signed message."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_signature(snapshot: BaselineSnapshot, key: bytes) -> str:
    message = canonical_json(snapshot.unsigned_payload()).encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def sign_snapshot(snapshot: BaselineSnapshot, key: bytes) -> BaselineSnapshot:
    """Copy of ``snapshot`` with signature fields set."""
    return snapshot.model_copy(
        update={
            "signature": compute_signature(snapshot, key),
            "signatureAlgorithm": MANIFEST_SIGNATURE_ALGORITHM,
        }
    )


def verify_snapshot(snapshot: BaselineSnapshot, key: Optional[bytes]) -> None:
    """Check a downloaded manifest against the configured key.

    Unsigned manifests are accepted only when no key is configured.

    Raises:
        ManifestSignatureError: If the manifest cannot be trusted
    """
    if key is None:
        if snapshot.signature is not None:
            raise ManifestSignatureError(
                "Manifest is signed but INTERNXT_BACKUP_MANIFEST_KEY is not set"
            )
        return

    if snapshot.signature is None:
        raise ManifestSignatureError("Manifest is unsigned but a signing key is configured")
    if snapshot.signatureAlgorithm != MANIFEST_SIGNATURE_ALGORITHM:
        raise ManifestSignatureError(
            f"Unsupported manifest signature algorithm: {snapshot.signatureAlgorithm}"
        )
    expected = compute_signature(snapshot, key)
    if not hmac.compare_digest(expected, snapshot.signature):
        raise ManifestSignatureError("Manifest signature mismatch")


def manifest_remote_path(target_dir: str) -> str:
    return join_remote(normalize_target_dir(target_dir), MANIFEST_FILENAME)


# ============= BackupState =============

class BackupState:
    """Owns the local baseline and its remote manifest copy."""

    def __init__(self, state_dir: Optional[Path] = None, manifest_key: Optional[bytes] = None):
        self.state_dir = Path(state_dir) if state_dir else get_state_dir()
        self.baseline_path = self.state_dir / BASELINE_FILE
        self.manifest_key = manifest_key if manifest_key is not None else get_manifest_key()
        self._baseline: Optional[BaselineSnapshot] = None

    def get_baseline(self) -> Optional[BaselineSnapshot]:
        return self._baseline

    async def load_baseline(self) -> Optional[BaselineSnapshot]:
        """Load the local baseline; a missing or malformed file yields None."""
        data = await asyncio.to_thread(load_json, self.baseline_path, None)
        self._baseline = None
        if data is None:
            return None
        try:
            self._baseline = BaselineSnapshot.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid baseline %s: %s", self.baseline_path, e)
            return None
        logger.debug(
            "Loaded baseline from %s with %d files",
            self._baseline.timestamp,
            len(self._baseline.files),
        )
        return self._baseline

    async def save_baseline(self, snapshot: BaselineSnapshot) -> None:
        """Atomically persist ``snapshot`` and make it the current baseline."""
        self._baseline = snapshot
        await asyncio.to_thread(atomic_write_json, self.baseline_path, snapshot.model_dump(exclude_none=True))
        logger.debug("Saved baseline with %d files", len(snapshot.files))

    def create_baseline_from_scan(
        self, source_dir: str, target_dir: str, files: Iterable[FileInfo]
    ) -> BaselineSnapshot:
        """Build a snapshot from scanned files, taking mode and mtime from a live stat."""
        entries = {}
        for file in files:
            stats = os.stat(file.absolute_path)
            entries[file.relative_path] = FileMetadata(
                checksum=file.checksum,
                size=file.size,
                mode=stats.st_mode,
                mtime=datetime.fromtimestamp(stats.st_mtime, timezone.utc)
                .isoformat(timespec="milliseconds")
                .replace("+00:00", "Z"),
            )
        return BaselineSnapshot(sourceDir=str(source_dir), targetDir=target_dir, files=entries)

    def get_changed_since_baseline(self, current_files: Iterable[FileInfo]) -> List[str]:
        """Relative paths that are new or whose checksum differs; all paths without a baseline."""
        if self._baseline is None:
            return [f.relative_path for f in current_files]
        changed = []
        for file in current_files:
            entry = self._baseline.files.get(file.relative_path)
            if entry is None or entry.checksum != file.checksum:
                changed.append(file.relative_path)
        return changed

    def detect_deletions(self, current_paths: Collection[str]) -> List[str]:
        """Baseline paths missing from the current scan."""
        if self._baseline is None:
            return []
        current = set(current_paths)
        return [p for p in self._baseline.files if p not in current]

    # ============= Remote manifest =============

    async def upload_manifest(self, storage: RemoteStorage, target_dir: str) -> bool:
        """Upload the current baseline as the remote manifest (signed if a key is set)."""
        if self._baseline is None:
            return False

        snapshot = self._baseline
        if self.manifest_key is not None:
            snapshot = sign_snapshot(snapshot, self.manifest_key)

        tmp_manifest = self.state_dir / MANIFEST_FILENAME
        await asyncio.to_thread(
            atomic_write_text, tmp_manifest, json.dumps(snapshot.model_dump(exclude_none=True), indent=2)
        )
        remote_path = manifest_remote_path(target_dir)
        try:
            result = await storage.upload_file(tmp_manifest, remote_path)
        finally:
            tmp_manifest.unlink(missing_ok=True)

        if result.success:
            logger.debug("Uploaded backup manifest to %s", remote_path)
        else:
            logger.warning("Failed to upload backup manifest: %s", result.error)
        return result.success

    async def download_manifest(self, storage: RemoteStorage, remote_path: str) -> Optional[BaselineSnapshot]:
        """Fetch and verify the manifest stored in ``remote_path``.

        Returns:
            The manifest, or None if it is absent, unreadable or fails verification
        """
        try:
            return await self.load_remote_manifest(storage, remote_path)
        except ManifestSignatureError as e:
            logger.warning("Rejecting backup manifest: %s", e)
            return None

    async def load_remote_manifest(self, storage: RemoteStorage, remote_path: str) -> Optional[BaselineSnapshot]:
        """Like ``download_manifest`` but an untrusted manifest raises.

        Returns:
            The manifest, or None if it is absent or unreadable

        Raises:
            ManifestSignatureError: If the manifest exists but cannot be trusted
        """
        listing = await storage.list_files(normalize_target_dir(remote_path))
        if not listing.success:
            return None

        manifest_file = next(
            (f for f in listing.files if f.name == MANIFEST_FILENAME and not f.is_folder),
            None,
        )
        if manifest_file is None or not manifest_file.uuid:
            return None

        tmp_dir = self.state_dir / RESTORE_TMP_DIR
        tmp_dir.mkdir(parents=True, exist_ok=True)
        try:
            download = await storage.download_file(manifest_file.uuid, tmp_dir)
            if not download.success:
                logger.warning("Failed to download manifest: %s", download.error)
                return None
            data = await asyncio.to_thread(load_json, tmp_dir / MANIFEST_FILENAME, None)
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        if data is None:
            return None
        try:
            manifest = BaselineSnapshot.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid backup manifest: %s", e)
            return None

        verify_snapshot(manifest, self.manifest_key)

        logger.debug(
            "Downloaded manifest from %s with %d files", manifest.timestamp, len(manifest.files)
        )
        return manifest
