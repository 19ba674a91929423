"""Core data models for internxt-backup.

Scan/Upload/Snapshot Lifecycle:
-------------------------------
1. Scan: every local file becomes an immutable FileInfo with its checksum.
2. Select: FileInfo entries are diffed against the BaselineSnapshot (or the
   HashCache when no baseline exists or a full/forced run is requested).
3. Transfer: selected files are uploaded; each success updates the HashCache.
4. Snapshot: only a fully successful run replaces the BaselineSnapshot and
   the remote manifest, so the baseline never lists files that are not backed up.

Wire models (BaselineSnapshot, ChunkedUploadState, ScannerState) keep the
camelCase field names of the persisted JSON so files stay interchangeable.
"""

from typing import Dict, List, Literal, Optional
import time

from pydantic import BaseModel, ConfigDict, Field

from .constants import BASELINE_VERSION, DEFAULT_CHUNK_SIZE
from .utils import get_iso_timestamp, humanize_size


# ============= Scanning =============

class FileInfo(BaseModel):
    """One scanned local file."""

    model_config = ConfigDict(frozen=True)

    relative_path: str  # POSIX, unique within a scan
    absolute_path: str
    size: int
    checksum: str  # sha256 hex
    has_changed: Optional[bool] = None  # None = unknown, consult the hash cache
    mode: Optional[int] = None

    def mark_changed(self) -> "FileInfo":
        """Copy of this file flagged for upload."""
        return self.model_copy(update={"has_changed": True})


class ScanResult(BaseModel):
    """Results of a source directory scan."""

    all_files: List[FileInfo] = Field(default_factory=list)
    files_to_upload: List[FileInfo] = Field(default_factory=list)
    total_size_bytes: int = 0

    @property
    def total_size_display(self) -> str:
        return humanize_size(self.total_size_bytes)


class ScannerState(BaseModel):
    """Scanner ledger (stored in internxt-backup-state.json)."""

    files: Dict[str, str] = Field(default_factory=dict)  # relative path -> checksum
    lastRun: str = ""


# ============= Baseline / Manifest =============

class FileMetadata(BaseModel):
    """Metadata stored per file in baselines and remote manifests."""

    checksum: str
    size: int
    mode: int
    mtime: str


class BaselineSnapshot(BaseModel):
    """Point-in-time listing of every file believed present at the remote target."""

    version: int = BASELINE_VERSION
    timestamp: str = Field(default_factory=get_iso_timestamp)
    sourceDir: str
    targetDir: str
    files: Dict[str, FileMetadata] = Field(default_factory=dict)
    # Present only on signed remote manifests
    signature: Optional[str] = None
    signatureAlgorithm: Optional[str] = None

    def unsigned_payload(self) -> dict:
        """Snapshot as a plain dict without signature fields."""
        return self.model_dump(exclude={"signature", "signatureAlgorithm"})


# ============= Resumable Uploads =============

class ChunkedUploadState(BaseModel):
    """Resume record for one large file upload."""

    filePath: str
    remotePath: str
    chunkSize: int = DEFAULT_CHUNK_SIZE
    totalChunks: int
    uploadedChunks: List[int] = Field(default_factory=list)
    checksum: str
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @property
    def progress_percent(self) -> int:
        if self.totalChunks <= 0:
            return 0
        return round(len(self.uploadedChunks) / self.totalChunks * 100)


class ResumableUploadResult(BaseModel):
    """Outcome of a (possibly resumable) large file upload."""

    success: bool
    file_path: str
    remote_path: str
    bytes_uploaded: int = 0
    error: Optional[str] = None


# ============= Upload Results =============

class FileUploadOutcome(BaseModel):
    """Per-file result returned by the upload handler."""

    success: bool
    file_path: str  # relative path
    skipped: bool = False
    error: Optional[str] = None


class UploadBatchResult(BaseModel):
    """Aggregate result of one upload batch."""

    success: bool
    total_files: int = 0
    succeeded_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    failed_paths: List[str] = Field(default_factory=list)

    @classmethod
    def all_failed(cls, files: List[FileInfo]) -> "UploadBatchResult":
        return cls(
            success=False,
            total_files=len(files),
            failed_files=len(files),
            failed_paths=[f.relative_path for f in files],
        )

    def summary(self) -> str:
        parts = [f"✓ {self.succeeded_files - self.skipped_files} uploaded"]
        if self.skipped_files:
            parts.append(f"{self.skipped_files} unchanged")
        if self.failed_files:
            parts.append(f"✗ {self.failed_files} failed")
        return ", ".join(parts)


BackupMode = Literal["full", "forced", "differential", "incremental"]


class SyncResult(BaseModel):
    """Result of a completed backup run."""

    mode: BackupMode
    upload: UploadBatchResult
    deletions_detected: List[str] = Field(default_factory=list)
    deleted_remote: List[str] = Field(default_factory=list)
    baseline_saved: bool = False

    def summary(self) -> str:
        parts = [self.upload.summary()]
        if self.deletions_detected:
            parts.append(f"{len(self.deletions_detected)} deleted locally")
        if self.deleted_remote:
            parts.append(f"{len(self.deleted_remote)} removed remotely")
        return ", ".join(parts)


# ============= Download Results =============

class RemoteFileEntry(BaseModel):
    """A remote file selected for restore."""

    uuid: str
    name: str
    remote_path: str
    size: int = 0
    is_folder: bool = False


class DownloadResult(BaseModel):
    """Per-entry result returned by the download handler."""

    success: bool
    remote_path: str
    local_path: str = ""
    error: Optional[str] = None


class DownloadStats(BaseModel):
    """Aggregate download counters."""

    downloaded: int = 0
    failed: int = 0
    verified: int = 0
    verify_failed: int = 0


class RestoreResult(BaseModel):
    """Result of a completed restore run."""

    remote_files: int = 0
    selected_files: int = 0
    manifest_loaded: bool = False
    stats: DownloadStats = Field(default_factory=DownloadStats)

    @property
    def has_failures(self) -> bool:
        return bool(self.stats.failed or self.stats.verify_failed)

    def summary(self) -> str:
        parts = [f"✓ Restored {self.stats.downloaded}/{self.selected_files} files"]
        if self.stats.verified:
            parts.append(f"{self.stats.verified} verified")
        if self.stats.failed:
            parts.append(f"✗ {self.stats.failed} failed")
        if self.stats.verify_failed:
            parts.append(f"⚠ {self.stats.verify_failed} checksum mismatches")
        return ", ".join(parts)


# ============= Run Options =============

class SyncOptions(BaseModel):
    """Backup run configuration (immutable for one run)."""

    model_config = ConfigDict(frozen=True)

    target: str = "/"
    cores: Optional[int] = None
    force: bool = False
    full: bool = False
    sync_deletes: bool = False
    resume: bool = False
    chunk_size_mb: Optional[int] = None


class RestoreOptions(BaseModel):
    """Restore run configuration (immutable for one run)."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    pattern: Optional[str] = None
    path: Optional[str] = None
    cores: Optional[int] = None
    verify: bool = True
    allow_partial: bool = False
