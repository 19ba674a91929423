"""Custom exceptions for internxt-backup.

This module defines typed exceptions for better error handling and clearer
error messages throughout the application.
"""

from typing import List, Optional


class BackupError(RuntimeError):
    """Base class for all backup-related errors."""
    pass


# Configuration Errors
class ConfigError(BackupError):
    """Invalid options, configuration or source directory."""
    pass


# Provider Errors
class ProviderError(BackupError):
    """Base class for storage provider precondition errors."""
    pass


class ProviderNotInstalledError(ProviderError):
    """Provider CLI binary is not available."""

    def __init__(self, detail: Optional[str] = None):
        message = "Internxt CLI not found. Please install it with: npm install -g @internxt/cli"
        if detail:
            message += f"\nError: {detail}"
        super().__init__(message)


class ProviderNotAuthenticatedError(ProviderError):
    """Provider CLI is installed but not logged in."""

    def __init__(self, detail: Optional[str] = None):
        message = "Not authenticated with Internxt. Please run: internxt login"
        if detail:
            message += f"\nError: {detail}"
        super().__init__(message)


# Concurrency Errors
class LockError(BackupError):
    """Base class for instance lock errors."""
    pass


class LockHeldError(LockError):
    """Another live process holds the instance lock."""

    def __init__(self, pid: int, lock_path: str):
        self.pid = pid
        self.lock_path = lock_path
        super().__init__(
            f"Another instance is already running (PID: {pid}). "
            f"Delete {lock_path} if the process is no longer running."
        )


# Path Errors
class PathTraversalError(BackupError, ValueError):
    """Relative path would escape the target root."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Unsafe path (traversal or absolute): {path!r}")


# Integrity Errors
class IntegrityError(BackupError):
    """Base class for data integrity errors."""
    pass


class ChecksumMismatchError(IntegrityError):
    """Downloaded file checksum doesn't match the manifest."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum verification failed for {path}\n"
            f"  Expected: {expected}\n"
            f"  Got:      {actual}"
        )


class ManifestSignatureError(IntegrityError):
    """Manifest signature is missing, unsupported or invalid."""
    pass


# Run-level Errors
class BackupFailedError(BackupError):
    """A backup run finished with failed uploads."""

    def __init__(self, failed_files: int, failed_paths: List[str]):
        self.failed_files = failed_files
        self.failed_paths = failed_paths
        preview = ", ".join(failed_paths[:5])
        if len(failed_paths) > 5:
            preview += f" and {len(failed_paths) - 5} more"
        super().__init__(
            f"Backup failed: {failed_files} uploads did not complete. Failed files: {preview}"
        )


class RestoreFailedError(BackupError):
    """A strict restore finished with failed downloads or checksum mismatches."""

    def __init__(self, failed: int, verify_failed: int):
        self.failed = failed
        self.verify_failed = verify_failed
        parts = []
        if failed:
            parts.append(f"{failed} downloads failed")
        if verify_failed:
            parts.append(f"{verify_failed} checksum mismatches")
        super().__init__(
            f"Restore failed: {', '.join(parts)}. "
            f"Use --allow-partial-restore to accept a partial restore."
        )


class OperationCancelledError(BackupError):
    """The run was interrupted; persisted state allows resuming later."""

    def __init__(self, operation: str = "operation"):
        super().__init__(f"{operation.capitalize()} cancelled; progress was saved and can be resumed")
